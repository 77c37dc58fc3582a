from __future__ import annotations

from typing import Any, Iterable
import hashlib
import logging
import os
import ssl

from ldap3 import (
    Server,
    Connection,
    ALL,
    SUBTREE,
    LEVEL,
    BASE,
    Tls,
    MODIFY_ADD,
    MODIFY_DELETE,
    MODIFY_REPLACE,
)
from ldap3.core.exceptions import (
    LDAPException,
    LDAPResponseTimeoutError,
    LDAPSocketOpenError,
    LDAPSocketReceiveError,
)

from ..errors import (
    AccountOperationError,
    DirectoryTimeoutError,
    DirectoryUnavailableError,
    DiscoveryError,
    NotFoundError,
)
from ..ad_utils import is_valid_dn
from ..utils.dn import dn_first_component_value
from .models import ADConfig, AccountKind, DirectoryAccount, GroupMember, ReferenceGroup
from .utils import escape_ldap_filter_value, group_lookup_filter, kind_filter

log = logging.getLogger(__name__)

_TIMEOUT_ERRORS = (LDAPResponseTimeoutError, LDAPSocketReceiveError, LDAPSocketOpenError)

_PAGE_SIZE = 500


def _first(entry: dict, attr: str, default: str = "") -> str:
    """Безопасное извлечение первого значения атрибута из ответа ldap3."""
    attrs = entry.get("attributes") or {}
    v = attrs.get(attr)
    if isinstance(v, (list, tuple)):
        return str(v[0]) if v else default
    if v is None:
        return default
    return str(v)


def _values(entry: dict, attr: str) -> list[str]:
    v = (entry.get("attributes") or {}).get(attr)
    if v is None:
        return []
    if isinstance(v, (list, tuple)):
        return [str(x) for x in v if x]
    return [str(v)] if v else []


class ADClient:
    """ldap3 implementation of the directory gateway.

    A fresh connection is opened per call, so one client instance can be
    shared by worker threads.
    """

    @staticmethod
    def _normalize_pem(pem: str) -> str:
        data = (pem or "").strip()
        # Normalize Windows newlines to \n to avoid hash mismatches.
        return data.replace("\r\n", "\n").replace("\r", "\n")

    @staticmethod
    def _ensure_ca_file(pem: str) -> str:
        """Materialize CA PEM into a stable file path.

        ldap3.Tls supports ca_certs_file across versions. PEM is stored
        under /tmp with a content hash, so multiple workers can reuse it.
        """
        data = ADClient._normalize_pem(pem)
        if not data:
            return ""

        if "-----BEGIN CERTIFICATE-----" not in data or "-----END CERTIFICATE-----" not in data:
            raise ValueError("CA PEM не похож на сертификат (ожидается блок BEGIN/END CERTIFICATE)")

        h = hashlib.sha256(data.encode("utf-8")).hexdigest()[:16]
        path = f"/tmp/svc_reconciler_ca_{h}.pem"

        try:
            if os.path.exists(path):
                with open(path, "r", encoding="utf-8") as f:
                    if f.read().strip() == data:
                        return path

            with open(path, "w", encoding="utf-8") as f:
                f.write(data + "\n")
            os.chmod(path, 0o600)
        except OSError:
            # Read-only FS: fall back to system trust store.
            log.warning("Не удалось сохранить CA PEM в %s, используется системное хранилище", path)
            return ""

        return path

    def __init__(self, cfg: ADConfig) -> None:
        self.cfg = cfg

        tls_kwargs: dict[str, Any] = {
            "validate": ssl.CERT_REQUIRED if cfg.tls_validate else ssl.CERT_NONE,
        }
        # Custom CA only makes sense when verification is enabled.
        ca_pem = self._normalize_pem(cfg.ca_pem or "")
        if cfg.tls_validate and ca_pem:
            ca_file = self._ensure_ca_file(ca_pem)
            if ca_file:
                tls_kwargs["ca_certs_file"] = ca_file

        self.server = Server(
            host=cfg.host,
            port=cfg.port,
            use_ssl=cfg.use_ssl,
            get_info=ALL,
            tls=Tls(**tls_kwargs),
            connect_timeout=float(cfg.timeout_s),
        )

    def _conn(self, user: str, password: str) -> Connection:
        conn = Connection(
            self.server,
            user=user,
            password=password,
            auto_bind=False,
            receive_timeout=float(self.cfg.timeout_s),
            auto_range=True,
        )
        conn.open()
        if self.cfg.starttls:
            conn.start_tls()
        return conn

    def _bound(self) -> Connection:
        """Open a service-bound connection or raise DirectoryUnavailableError."""
        try:
            conn = self._conn(self.cfg.bind_principal, self.cfg.bind_password)
        except LDAPException as e:
            raise DirectoryUnavailableError(f"Не удалось подключиться к {self.cfg.host}:{self.cfg.port}: {e}") from e
        if not conn.bind():
            res = dict(conn.result or {})
            self._close(conn)
            raise DirectoryUnavailableError(f"Ошибка bind: {res.get('description', 'неизвестная ошибка')}")
        return conn

    @staticmethod
    def _close(conn: Connection | None) -> None:
        try:
            if conn:
                conn.unbind()
        except LDAPException:
            pass

    def service_bind(self) -> tuple[bool, dict]:
        conn: Connection | None = None
        try:
            conn = self._conn(self.cfg.bind_principal, self.cfg.bind_password)
            ok = bool(conn.bind())
            res = dict(conn.result or {})
            return ok, res
        except LDAPException as e:
            return False, {"error": str(e), "description": str(e), "message": str(e)}
        finally:
            self._close(conn)

    def _paged_search(self, conn: Connection, base: str, flt: str, scope: str, attrs: list[str]) -> list[dict]:
        entries: list[dict] = []
        for e in conn.extend.standard.paged_search(
            search_base=base,
            search_filter=flt,
            search_scope=scope,
            attributes=attrs,
            paged_size=_PAGE_SIZE,
            generator=True,
        ):
            # paged_search also yields referrals (type=searchResRef)
            if e.get("type") == "searchResEntry":
                entries.append(e)
        return entries

    def find_accounts(
        self,
        scope_dn: str,
        kinds: Iterable[AccountKind],
        attributes: Iterable[str],
        subtree: bool = True,
    ) -> list[DirectoryAccount]:
        """Search the container once per account kind.

        `attributes` must name the classification attribute; the identifier
        and DN are always requested.
        """
        scope_dn = (scope_dn or "").strip()
        if not is_valid_dn(scope_dn):
            raise ValueError(f"Некорректный DN контейнера: {scope_dn!r}")

        extra = [a for a in attributes if a not in ("sAMAccountName", "distinguishedName")]
        attrs = ["distinguishedName", "sAMAccountName", *extra]
        classification_attr = extra[0] if extra else ""

        conn = self._bound()
        try:
            found: list[DirectoryAccount] = []
            for kind in sorted(set(kinds), key=lambda k: k.value):
                try:
                    entries = self._paged_search(conn, scope_dn, kind_filter(kind), SUBTREE if subtree else LEVEL, attrs)
                except LDAPException as e:
                    raise DiscoveryError(f"Поиск в {scope_dn} не выполнен: {e}") from e
                res = dict(conn.result or {})
                if res.get("result") not in (None, 0):
                    raise DiscoveryError(f"Поиск в {scope_dn} не выполнен: {res.get('description', 'неизвестная ошибка')}")

                for e in entries:
                    dn = _first(e, "distinguishedName") or str(e.get("dn") or "")
                    sam = _first(e, "sAMAccountName")
                    if not dn or not sam:
                        continue
                    found.append(
                        DirectoryAccount(
                            name=sam,
                            dn=dn,
                            kind=kind,
                            classification=_first(e, classification_attr) if classification_attr else "",
                        )
                    )
                log.debug("Найдено %d учётных записей вида %s в %s", len(entries), kind.value, scope_dn)
            return found
        finally:
            self._close(conn)

    def resolve_group(self, name: str) -> ReferenceGroup:
        name = (name or "").strip()
        if not name:
            raise NotFoundError(name)
        base = self.cfg.base_dn
        if not base:
            raise DirectoryUnavailableError("BaseDN пустой (проверьте домен в настройках).")

        conn = self._bound()
        try:
            if is_valid_dn(name):
                ok = conn.search(
                    search_base=name,
                    search_filter="(objectClass=group)",
                    search_scope=BASE,
                    attributes=["distinguishedName", "sAMAccountName", "cn"],
                )
            else:
                ok = conn.search(
                    search_base=base,
                    search_filter=group_lookup_filter(name),
                    search_scope=SUBTREE,
                    attributes=["distinguishedName", "sAMAccountName", "cn"],
                    size_limit=2,
                )
            entries = list(conn.response or []) if ok else []
            entries = [e for e in entries if e.get("type") == "searchResEntry"]
            if len(entries) != 1:
                raise NotFoundError(name, matches=len(entries) if len(entries) > 1 else 0)

            e = entries[0]
            dn = _first(e, "distinguishedName") or str(e.get("dn") or "")
            gname = _first(e, "sAMAccountName") or _first(e, "cn") or dn_first_component_value(dn)
            return ReferenceGroup(dn=dn, name=gname)
        except LDAPException as e:
            raise DirectoryUnavailableError(f"LDAP ошибка: {e}") from e
        finally:
            self._close(conn)

    def list_members(self, group: ReferenceGroup) -> list[GroupMember]:
        """Direct members of the group.

        Names come from the memberOf back-link under the domain base DN. The
        group's own `member` attribute (ldap3 follows ranged retrieval) adds
        members stored outside that partition, named by their first RDN.
        """
        base = self.cfg.base_dn
        if not base:
            raise DirectoryUnavailableError("BaseDN пустой (проверьте домен в настройках).")

        conn = self._bound()
        try:
            flt = f"(memberOf={escape_ldap_filter_value(group.dn)})"
            entries = self._paged_search(conn, base, flt, SUBTREE, ["distinguishedName", "sAMAccountName", "cn"])
            self._check_members_result(conn, group)

            ok = conn.search(
                search_base=group.dn,
                search_filter="(objectClass=group)",
                search_scope=BASE,
                attributes=["member"],
            )
            self._check_members_result(conn, group)
            if not ok:
                raise DiscoveryError(f"Не удалось получить состав группы {group.name}: группа не прочитана")
            member_dns: list[str] = []
            for e in conn.response or []:
                if e.get("type") == "searchResEntry":
                    member_dns = _values(e, "member")
        except LDAPException as e:
            raise DiscoveryError(f"Не удалось получить состав группы {group.name}: {e}") from e
        finally:
            self._close(conn)

        members: list[GroupMember] = []
        seen: set[str] = set()
        for e in entries:
            dn = _first(e, "distinguishedName") or str(e.get("dn") or "")
            if not dn:
                continue
            m = GroupMember(dn=dn, name=_first(e, "sAMAccountName") or _first(e, "cn"))
            seen.add(m.dn_key)
            members.append(m)
        for dn in member_dns:
            m = GroupMember(dn=dn, name=dn_first_component_value(dn))
            if m.dn_key not in seen:
                seen.add(m.dn_key)
                members.append(m)
        return members

    @staticmethod
    def _check_members_result(conn: Connection, group: ReferenceGroup) -> None:
        # A failed search without an exception must not look like an empty group
        res = dict(conn.result or {})
        if res.get("result") not in (None, 0):
            raise DiscoveryError(
                f"Не удалось получить состав группы {group.name}: {res.get('description', 'неизвестная ошибка')}"
            )

    def _modify(self, dn: str, changes: dict, *, tolerate: str = "") -> None:
        """Single modify call; raises AccountOperationError on failure.

        `tolerate` is an LDAP result description (lower-case) that counts as
        success, e.g. "attributeorvalueexists" when the member is already there.
        """
        conn: Connection | None = None
        try:
            conn = self._conn(self.cfg.bind_principal, self.cfg.bind_password)
            if not conn.bind():
                res = dict(conn.result or {})
                raise AccountOperationError(f"Ошибка bind: {res.get('description', 'неизвестная ошибка')}")
            ok = conn.modify(dn, changes)
            res = dict(conn.result or {})
            if ok:
                return
            desc = (res.get("description") or "").lower()
            if tolerate and tolerate in desc:
                return
            detail = res.get("message") or ""
            raise AccountOperationError(f"{res.get('description', 'неизвестная ошибка')} {detail}".strip())
        except _TIMEOUT_ERRORS as e:
            raise DirectoryTimeoutError(f"Таймаут LDAP: {e}") from e
        except LDAPException as e:
            raise AccountOperationError(f"LDAP ошибка: {e}") from e
        finally:
            self._close(conn)

    def add_member(self, group: ReferenceGroup, account: DirectoryAccount) -> None:
        # AD returns "attributeOrValueExists" when already in group.
        self._modify(group.dn, {"member": [(MODIFY_ADD, [account.dn])]}, tolerate="attributeorvalueexists")

    def remove_member(self, group: ReferenceGroup, account: GroupMember | DirectoryAccount) -> None:
        # If not a member, AD may return "noSuchAttribute".
        self._modify(group.dn, {"member": [(MODIFY_DELETE, [account.dn])]}, tolerate="nosuchattribute")

    def set_attribute(self, account: DirectoryAccount, attribute: str, value: str) -> None:
        self._modify(account.dn, {attribute: [(MODIFY_REPLACE, [value])]})
