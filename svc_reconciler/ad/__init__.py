"""Active Directory (LDAP) access.

Public API:
    - ADConfig
    - ADClient
    - AccountKind, DirectoryAccount, GroupMember, ReferenceGroup
"""

from .models import ADConfig, AccountKind, DEFAULT_KINDS, DirectoryAccount, GroupMember, ReferenceGroup
from .client import ADClient

__all__ = [
    "ADConfig",
    "ADClient",
    "AccountKind",
    "DEFAULT_KINDS",
    "DirectoryAccount",
    "GroupMember",
    "ReferenceGroup",
]
