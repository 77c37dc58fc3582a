import logging
import threading

import pytest

from conftest import GROUP_NAME, OTHER_OU, SCOPE, SENTINEL, FakeDirectory, account_dn
from svc_reconciler.ad.models import AccountKind
from svc_reconciler.core import (
    Action,
    GroupMembershipReconciler,
    Outcome,
    ReconcileStatus,
    make_removal_guard,
)
from svc_reconciler.errors import (
    AccountOperationError,
    DirectoryTimeoutError,
    DiscoveryError,
    NotFoundError,
    ResolutionError,
)


def _actions(result):
    return [(e.action, e.account) for e in result.log]


def test_example_scenario(directory):
    result = GroupMembershipReconciler(directory).reconcile(SCOPE, GROUP_NAME)

    assert _actions(result) == [
        (Action.ADD, "svc-a"),
        (Action.UPDATE_ATTRIBUTE, "svc-a"),
        (Action.UPDATE_ATTRIBUTE, "svc-b"),
        (Action.REMOVE, "svc-c"),
    ]
    assert all(e.outcome is Outcome.APPLIED for e in result.log)
    assert directory.member_names() == {"svc-a", "svc-b"}
    assert result.status is ReconcileStatus.RECONCILED
    assert result.success
    assert result.group == GROUP_NAME


def test_passes_run_add_update_remove_in_order(directory):
    GroupMembershipReconciler(directory).reconcile(SCOPE, GROUP_NAME)

    methods = [m for m, _ in directory.mutations()]
    assert methods == ["add_member", "set_attribute", "set_attribute", "remove_member"]


def test_second_run_is_a_noop(directory):
    reconciler = GroupMembershipReconciler(directory)
    reconciler.reconcile(SCOPE, GROUP_NAME)
    before = len(directory.mutations())

    again = reconciler.reconcile(SCOPE, GROUP_NAME)

    assert len(again.log) == 0
    assert again.status is ReconcileStatus.RECONCILED
    assert len(directory.mutations()) == before


def test_converges_with_parallel_workers():
    d = FakeDirectory()
    wanted = set()
    for i in range(40):
        name = f"svc-{i:02d}"
        d.add_account(name, kind=AccountKind.SERVICE if i % 2 else AccountKind.USER,
                      classification=SENTINEL if i % 3 == 0 else "")
        wanted.add(name)
        if i % 4 == 0:
            d.add_group_member(account_dn(name), name)
    for i in range(15):
        d.add_group_member(account_dn(f"old-{i}", OTHER_OU), f"old-{i}")

    result = GroupMembershipReconciler(d, workers=8).reconcile(SCOPE, GROUP_NAME)

    assert result.status is ReconcileStatus.RECONCILED
    assert d.member_names() == wanted
    assert all(d.classification(n) == SENTINEL for n in wanted)
    # log keeps pass order even with a thread pool
    order = [e.action for e in result.log]
    assert order == sorted(order, key=[Action.ADD, Action.UPDATE_ATTRIBUTE, Action.REMOVE].index)
    assert len(result.log.actions(Action.REMOVE)) == 15


def test_attribute_already_set_is_left_alone():
    d = FakeDirectory()
    dn = d.add_account("svc-ok", classification=SENTINEL)
    d.add_group_member(dn, "svc-ok")

    result = GroupMembershipReconciler(d).reconcile(SCOPE, GROUP_NAME)

    assert len(result.log) == 0
    assert d.mutations() == []


def test_custom_attribute_and_sentinel():
    d = FakeDirectory()
    d.add_account("svc-x", classification="ServiceAccount")

    result = GroupMembershipReconciler(d, sentinel="Managed").reconcile(SCOPE, GROUP_NAME)

    assert (Action.UPDATE_ATTRIBUTE, "svc-x") in _actions(result)
    assert d.classification("svc-x") == "Managed"


def test_dry_run_changes_nothing_but_reports_same_actions(directory):
    members_before = {k: dict(v) for k, v in directory.members.items()}

    dry = GroupMembershipReconciler(directory).reconcile(SCOPE, GROUP_NAME, dry_run=True)

    assert directory.mutations() == []
    assert {k: dict(v) for k, v in directory.members.items()} == members_before
    assert directory.classification("svc-a") == ""
    assert all(e.outcome is Outcome.SKIPPED_DRYRUN for e in dry.log)
    assert dry.dry_run

    live = GroupMembershipReconciler(directory).reconcile(SCOPE, GROUP_NAME)
    assert _actions(dry) == _actions(live)


def test_single_failure_does_not_stop_the_run(directory):
    directory.add_account("svc-d")
    directory.fail[("add_member", "svc-a")] = AccountOperationError("insufficientAccessRights")

    result = GroupMembershipReconciler(directory).reconcile(SCOPE, GROUP_NAME)

    failed = result.log.failures()
    assert len(failed) == 1
    assert failed[0].account == "svc-a"
    assert failed[0].action is Action.ADD
    assert "insufficientAccessRights" in failed[0].reason
    assert result.status is ReconcileStatus.PARTIAL
    assert not result.success
    assert result.failures == 1
    # everything else went through, nothing rolled back
    assert directory.member_names() == {"svc-b", "svc-d"}
    assert directory.classification("svc-a") == SENTINEL
    assert "svc-c" not in directory.member_names()


def test_unexpected_exception_is_recorded_as_failure(directory):
    directory.fail[("set_attribute", "svc-b")] = RuntimeError("boom")

    result = GroupMembershipReconciler(directory).reconcile(SCOPE, GROUP_NAME)

    assert [e.account for e in result.log.failures()] == ["svc-b"]
    assert "RuntimeError" in result.log.failures()[0].reason
    assert "svc-c" not in directory.member_names()


def test_name_match_is_case_insensitive():
    d = FakeDirectory()
    d.add_account("svc-backup", classification=SENTINEL)
    d.add_group_member("CN=SVC-Backup,OU=Service Accounts,DC=corp,DC=local", "SVC-Backup")

    result = GroupMembershipReconciler(d).reconcile(SCOPE, GROUP_NAME)

    assert result.log.actions(Action.ADD) == []
    assert result.log.actions(Action.REMOVE) == []


def test_removal_uses_full_path_identity():
    d = FakeDirectory()
    d.add_account("svc-dup", classification=SENTINEL)
    # same name, other container
    d.add_group_member(account_dn("svc-dup", OTHER_OU), "svc-dup")

    result = GroupMembershipReconciler(d).reconcile(SCOPE, GROUP_NAME)

    assert _actions(result) == [(Action.ADD, "svc-dup"), (Action.REMOVE, "svc-dup")]
    assert [e.account_dn for e in result.log.actions(Action.REMOVE)] == [account_dn("svc-dup", OTHER_OU)]
    assert list(d.members.values())[0].keys() == {account_dn("svc-dup").casefold()}

    assert len(GroupMembershipReconciler(d).reconcile(SCOPE, GROUP_NAME).log) == 0


def test_unknown_group_is_fatal_before_any_change(directory):
    with pytest.raises(NotFoundError):
        GroupMembershipReconciler(directory).reconcile(SCOPE, "SG-Missing")
    assert directory.mutations() == []


def test_ambiguous_group_is_a_resolution_error():
    d = FakeDirectory(groups=[("SG-Dup", "CN=SG-Dup,OU=A,DC=corp,DC=local"), ("sg-dup", "CN=SG-Dup,OU=B,DC=corp,DC=local")])

    with pytest.raises(ResolutionError) as exc:
        GroupMembershipReconciler(d).reconcile(SCOPE, "SG-Dup")

    assert exc.value.matches == 2


def test_empty_group_name_is_not_found(directory):
    with pytest.raises(NotFoundError):
        GroupMembershipReconciler(directory).reconcile(SCOPE, "  ")
    assert directory.calls == []


def test_discovery_failure_is_fatal(directory):
    directory.discovery_error = DiscoveryError("noSuchObject")

    with pytest.raises(DiscoveryError):
        GroupMembershipReconciler(directory).reconcile(SCOPE, GROUP_NAME)
    assert directory.mutations() == []


@pytest.mark.parametrize("scope", ["", "not a dn", "Service Accounts", "OU=,DC=corp"])
def test_malformed_scope_is_rejected(directory, scope):
    with pytest.raises(ValueError):
        GroupMembershipReconciler(directory).reconcile(scope, GROUP_NAME)
    assert directory.calls == []


def test_non_recursive_scope_skips_nested_containers():
    d = FakeDirectory()
    d.add_account("svc-top", classification=SENTINEL)
    d.add_account("svc-nested", ou=f"OU=Legacy,{SCOPE}", classification=SENTINEL)

    flat = GroupMembershipReconciler(d, subtree=False).plan(SCOPE, GROUP_NAME)
    deep = GroupMembershipReconciler(d, subtree=True).plan(SCOPE, GROUP_NAME)

    assert [a.name for a in flat.accounts] == ["svc-top"]
    assert sorted(a.name for a in deep.accounts) == ["svc-nested", "svc-top"]


def test_only_configured_kinds_are_discovered():
    d = FakeDirectory()
    d.add_account("svc-user", kind=AccountKind.USER)
    d.add_account("svc-gmsa", kind=AccountKind.SERVICE)
    d.add_account("ws-01", kind=AccountKind.COMPUTER)

    plan = GroupMembershipReconciler(d).plan(SCOPE, GROUP_NAME)

    assert sorted(a.name for a in plan.accounts) == ["svc-gmsa", "svc-user"]


def test_timeout_is_retried_once():
    d = FakeDirectory()
    d.add_account("svc-slow", classification=SENTINEL)
    d.fail[("add_member", "svc-slow")] = [DirectoryTimeoutError("timeout"), None]

    result = GroupMembershipReconciler(d).reconcile(SCOPE, GROUP_NAME)

    entry = result.log.actions(Action.ADD)[0]
    assert entry.outcome is Outcome.APPLIED
    assert entry.attempts == 2
    assert d.member_names() == {"svc-slow"}


def test_timeout_without_retries_fails():
    d = FakeDirectory()
    d.add_account("svc-slow", classification=SENTINEL)
    d.fail[("add_member", "svc-slow")] = [DirectoryTimeoutError("timeout"), None]

    result = GroupMembershipReconciler(d, retries=0).reconcile(SCOPE, GROUP_NAME)

    entry = result.log.actions(Action.ADD)[0]
    assert entry.outcome is Outcome.FAILED
    assert entry.attempts == 1


def test_non_timeout_errors_are_not_retried():
    d = FakeDirectory()
    d.add_account("svc-denied", classification=SENTINEL)
    d.fail[("add_member", "svc-denied")] = [AccountOperationError("denied"), None]

    result = GroupMembershipReconciler(d, retries=3).reconcile(SCOPE, GROUP_NAME)

    assert result.log.failures()[0].attempts == 1


def test_cancel_stops_current_pass_and_skips_the_rest():
    d = FakeDirectory()
    for name in ("svc-1", "svc-2", "svc-3"):
        d.add_account(name)
    d.add_group_member(account_dn("gone", OTHER_OU), "gone")
    cancel = threading.Event()
    d.hooks["add_member"] = lambda name: cancel.set()

    result = GroupMembershipReconciler(d, cancel_event=cancel).reconcile(SCOPE, GROUP_NAME)

    assert result.status is ReconcileStatus.CANCELLED
    assert not result.success
    assert _actions(result) == [(Action.ADD, "svc-1")]
    assert [m for m, _ in d.mutations()] == ["add_member"]
    assert "gone" in d.member_names()


def test_cancel_during_dry_run_stops_reporting():
    d = FakeDirectory()
    for name in ("svc-1", "svc-2", "svc-3"):
        d.add_account(name)
    cancel = threading.Event()

    def _confirm(pa):
        cancel.set()
        return True

    result = GroupMembershipReconciler(d, confirm=_confirm, cancel_event=cancel).reconcile(
        SCOPE, GROUP_NAME, dry_run=True
    )

    assert result.status is ReconcileStatus.CANCELLED
    assert _actions(result) == [(Action.ADD, "svc-1")]
    assert result.log.actions(Action.ADD)[0].outcome is Outcome.SKIPPED_DRYRUN
    assert d.mutations() == []


def test_cancel_before_run_applies_nothing(directory):
    reconciler = GroupMembershipReconciler(directory)
    reconciler.cancel()

    result = reconciler.reconcile(SCOPE, GROUP_NAME)

    assert result.status is ReconcileStatus.CANCELLED
    assert directory.mutations() == []


def test_confirm_predicate_can_decline(directory):
    result = GroupMembershipReconciler(
        directory, confirm=lambda pa: pa.action is not Action.UPDATE_ATTRIBUTE
    ).reconcile(SCOPE, GROUP_NAME)

    declined = [e for e in result.log if e.outcome is Outcome.SKIPPED_DECLINED]
    assert [e.account for e in declined] == ["svc-a", "svc-b"]
    assert directory.classification("svc-a") == ""
    assert result.status is ReconcileStatus.RECONCILED


def test_removal_guard_blocks_mass_removal():
    d = FakeDirectory()
    d.add_account("svc-keep", classification=SENTINEL)
    d.add_group_member(account_dn("svc-keep"), "svc-keep")
    for i in range(3):
        d.add_group_member(account_dn(f"old-{i}", OTHER_OU), f"old-{i}")

    result = GroupMembershipReconciler(d, confirm=make_removal_guard(2)).reconcile(SCOPE, GROUP_NAME)

    removals = result.log.actions(Action.REMOVE)
    assert len(removals) == 3
    assert all(e.outcome is Outcome.SKIPPED_DECLINED for e in removals)
    assert len(d.member_names()) == 4


def test_removal_guard_disabled_with_zero():
    assert make_removal_guard(0) is None


def test_explicit_logger_receives_failures(directory, caplog):
    directory.fail[("remove_member", "svc-c")] = AccountOperationError("noSuchObject")
    logger = logging.getLogger("tests.reconcile")

    with caplog.at_level(logging.INFO, logger="tests.reconcile"):
        GroupMembershipReconciler(directory, logger=logger).reconcile(SCOPE, GROUP_NAME)

    errors = [r for r in caplog.records if r.name == "tests.reconcile" and r.levelno == logging.ERROR]
    assert len(errors) == 1
    assert "svc-c" in errors[0].getMessage()


def test_result_dict_shape(directory):
    data = GroupMembershipReconciler(directory).reconcile(SCOPE, GROUP_NAME, dry_run=True).to_dict()

    assert data["status"] == "reconciled"
    assert data["dry_run"] is True
    assert data["failures"] == 0
    assert data["message"].startswith("Согласовано: [dry-run]")
    assert data["log"][0] == {
        "account": "svc-a",
        "account_dn": account_dn("svc-a"),
        "action": "add",
        "outcome": "skipped-dryrun",
        "reason": "",
        "attempts": 0,
    }


def test_empty_kinds_rejected(directory):
    with pytest.raises(ValueError):
        GroupMembershipReconciler(directory, kinds=[])
