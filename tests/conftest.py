"""Shared pytest configuration and fixtures."""

import os
import tempfile

import pytest

# The engine is created at import time, so point it at a scratch DB first.
os.environ["SQLITE_PATH"] = os.path.join(tempfile.mkdtemp(prefix="svc_reconciler_"), "test.db")
for _var in ("AD_DC_SHORT", "AD_DOMAIN", "AD_BIND_USERNAME", "APP_API_TOKEN", "RECONCILE_INTERVAL_MIN"):
    os.environ.pop(_var, None)

from svc_reconciler.ad.models import AccountKind, DirectoryAccount, GroupMember, ReferenceGroup  # noqa: E402
from svc_reconciler.errors import NotFoundError  # noqa: E402
from svc_reconciler.schema import ensure_schema  # noqa: E402
from svc_reconciler.utils.dn import dn_first_component_value, dn_key, parent_dn  # noqa: E402

SCOPE = "OU=Service Accounts,DC=corp,DC=local"
OTHER_OU = "OU=Users,DC=corp,DC=local"
GROUP_DN = "CN=SG-ServiceAccounts,OU=Groups,DC=corp,DC=local"
GROUP_NAME = "SG-ServiceAccounts"
ATTRIBUTE = "employeeType"
SENTINEL = "ServiceAccount"


def account_dn(name: str, ou: str = SCOPE) -> str:
    return f"CN={name},{ou}"


class FakeDirectory:
    """In-memory directory gateway.

    `fail` maps (method, account name) to an exception or a list of
    exceptions raised on consecutive calls (None in the list = succeed).
    `hooks` maps a method name to a callable run before each call.
    """

    def __init__(self, groups=None):
        self.groups = list(groups or [(GROUP_NAME, GROUP_DN)])
        self.accounts = {}
        self.members = {dn_key(dn): {} for _, dn in self.groups}
        self.calls = []
        self.fail = {}
        self.hooks = {}
        self.discovery_error = None

    def add_account(self, name, ou=SCOPE, kind=AccountKind.USER, classification=""):
        dn = account_dn(name, ou)
        self.accounts[dn_key(dn)] = {
            "name": name,
            "dn": dn,
            "kind": kind,
            "attrs": {ATTRIBUTE: classification} if classification else {},
        }
        return dn

    def add_group_member(self, dn, name=None, group_dn=GROUP_DN):
        self.members[dn_key(group_dn)][dn_key(dn)] = (dn, name or dn_first_component_value(dn))

    def member_names(self, group_dn=GROUP_DN):
        return {name.casefold() for _, name in self.members[dn_key(group_dn)].values()}

    def classification(self, name):
        for a in self.accounts.values():
            if a["name"].casefold() == name.casefold():
                return a["attrs"].get(ATTRIBUTE, "")
        raise KeyError(name)

    def mutations(self):
        return [c for c in self.calls if c[0] in ("add_member", "remove_member", "set_attribute")]

    def _enter(self, method, name=""):
        self.calls.append((method, name))
        hook = self.hooks.get(method)
        if hook:
            hook(name)
        plan = self.fail.get((method, name.casefold()))
        if plan is None:
            return
        if isinstance(plan, list):
            if not plan:
                return
            exc = plan.pop(0)
            if exc is not None:
                raise exc
            return
        raise plan

    def find_accounts(self, scope_dn, kinds, attributes, subtree=True):
        self._enter("find_accounts", scope_dn)
        if self.discovery_error:
            raise self.discovery_error
        scope_key = dn_key(scope_dn)
        attr = [a for a in attributes if a not in ("sAMAccountName", "distinguishedName")][0]
        out = []
        for a in self.accounts.values():
            key = dn_key(a["dn"])
            if subtree:
                inside = key.endswith("," + scope_key)
            else:
                inside = dn_key(parent_dn(a["dn"])) == scope_key
            if inside and a["kind"] in kinds:
                out.append(
                    DirectoryAccount(name=a["name"], dn=a["dn"], kind=a["kind"], classification=a["attrs"].get(attr, ""))
                )
        return out

    def resolve_group(self, name):
        self._enter("resolve_group", name)
        matches = [(n, dn) for n, dn in self.groups if n.casefold() == name.casefold()]
        if len(matches) != 1:
            raise NotFoundError(name, matches=len(matches) if len(matches) > 1 else 0)
        n, dn = matches[0]
        return ReferenceGroup(dn=dn, name=n)

    def list_members(self, group):
        self._enter("list_members", group.name)
        return [GroupMember(dn=dn, name=name) for dn, name in self.members[dn_key(group.dn)].values()]

    def add_member(self, group, account):
        self._enter("add_member", account.name)
        self.members[dn_key(group.dn)][account.dn_key] = (account.dn, account.name)

    def remove_member(self, group, account):
        self._enter("remove_member", account.name)
        self.members[dn_key(group.dn)].pop(account.dn_key, None)

    def set_attribute(self, account, attribute, value):
        self._enter("set_attribute", account.name)
        self.accounts[account.dn_key]["attrs"][attribute] = value


@pytest.fixture
def directory():
    """Container has {A, B}; group has {B, C} (C lives in another OU)."""
    d = FakeDirectory()
    d.add_account("svc-a", kind=AccountKind.USER)
    b_dn = d.add_account("svc-b", kind=AccountKind.SERVICE)
    c_dn = d.add_account("svc-c", ou=OTHER_OU)
    d.add_group_member(b_dn, "svc-b")
    d.add_group_member(c_dn, "svc-c")
    return d


@pytest.fixture(scope="session", autouse=True)
def _schema():
    ensure_schema()
