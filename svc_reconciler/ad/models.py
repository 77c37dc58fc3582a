from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from ..ad_utils import domain_to_base_dn, build_dc_fqdn
from ..utils.dn import dn_key, parent_dn


class AccountKind(str, Enum):
    USER = "user"
    SERVICE = "service"
    COMPUTER = "computer"


DEFAULT_KINDS = frozenset({AccountKind.USER, AccountKind.SERVICE})


@dataclass
class ADConfig:
    dc_short: str
    domain: str
    port: int
    use_ssl: bool
    starttls: bool
    bind_username: str
    bind_password: str
    tls_validate: bool = False
    ca_pem: str = ""
    timeout_s: float = 30.0

    @property
    def host(self) -> str:
        return build_dc_fqdn(self.dc_short, self.domain)

    @property
    def base_dn(self) -> str:
        return domain_to_base_dn(self.domain)

    @property
    def bind_principal(self) -> str:
        u = (self.bind_username or "").strip()
        d = (self.domain or "").strip().strip(".")
        if not u:
            return ""
        if "@" in u:
            return u
        return f"{u}@{d}" if d else u


@dataclass(frozen=True)
class DirectoryAccount:
    """Account found in the container scope."""

    name: str
    dn: str
    kind: AccountKind = AccountKind.USER
    classification: str = ""

    @property
    def container(self) -> str:
        return parent_dn(self.dn)

    @property
    def name_key(self) -> str:
        return self.name.casefold()

    @property
    def dn_key(self) -> str:
        return dn_key(self.dn)


@dataclass(frozen=True)
class GroupMember:
    dn: str
    name: str = ""

    @property
    def name_key(self) -> str:
        return self.name.casefold()

    @property
    def dn_key(self) -> str:
        return dn_key(self.dn)


@dataclass(frozen=True)
class ReferenceGroup:
    dn: str
    name: str
