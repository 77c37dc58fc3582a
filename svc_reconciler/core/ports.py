"""Contract between the reconciler and the directory service.

`ad.client.ADClient` implements it over LDAP; tests use an in-memory fake.
"""
from __future__ import annotations

from typing import Iterable, Protocol

from ..ad.models import AccountKind, DirectoryAccount, GroupMember, ReferenceGroup


class DirectoryGateway(Protocol):
    def find_accounts(
        self,
        scope_dn: str,
        kinds: Iterable[AccountKind],
        attributes: Iterable[str],
        subtree: bool = True,
    ) -> list[DirectoryAccount]:
        """Accounts of the given kinds in the container; DiscoveryError on failure."""
        ...

    def resolve_group(self, name: str) -> ReferenceGroup:
        """Exactly one group or NotFoundError."""
        ...

    def list_members(self, group: ReferenceGroup) -> list[GroupMember]:
        ...

    def add_member(self, group: ReferenceGroup, account: DirectoryAccount) -> None:
        ...

    def remove_member(self, group: ReferenceGroup, account: GroupMember) -> None:
        ...

    def set_attribute(self, account: DirectoryAccount, attribute: str, value: str) -> None:
        ...
