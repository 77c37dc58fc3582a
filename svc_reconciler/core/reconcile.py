"""Service-account group reconciliation.

Makes the membership of a reference group equal to the set of accounts found
in a container (OU) and stamps a classification attribute on those accounts.

Passes run in a fixed order:

    A. add missing accounts to the group
    B. set the classification attribute where it differs from the sentinel
    C. remove members that are no longer in the container

Removals always come last: the group is never transiently under-populated.
Within a pass the per-account actions are independent and
may run on a thread pool. A failed action is recorded in the operation log
and does not stop the run; nothing is rolled back.
"""
from __future__ import annotations

import logging
import threading
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from typing import Callable, Iterable, Optional, Union

from ..ad.models import DEFAULT_KINDS, AccountKind, DirectoryAccount, GroupMember, ReferenceGroup
from ..ad_utils import is_valid_dn
from ..errors import AccountOperationError, DirectoryTimeoutError, NotFoundError
from .oplog import Action, OperationEntry, OperationLog, Outcome, ReconcileResult, ReconcileStatus
from .ports import DirectoryGateway

DEFAULT_ATTRIBUTE = "employeeType"
DEFAULT_SENTINEL = "ServiceAccount"


@dataclass(frozen=True)
class PlannedAction:
    action: Action
    target: Union[DirectoryAccount, GroupMember]
    # number of actions of the same kind in this run
    pass_size: int = 1

    @property
    def account(self) -> str:
        return self.target.name

    @property
    def account_dn(self) -> str:
        return self.target.dn


@dataclass
class ReconcilePlan:
    group: ReferenceGroup
    accounts: list[DirectoryAccount] = field(default_factory=list)
    members: list[GroupMember] = field(default_factory=list)
    adds: list[PlannedAction] = field(default_factory=list)
    updates: list[PlannedAction] = field(default_factory=list)
    removes: list[PlannedAction] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not (self.adds or self.updates or self.removes)


ConfirmFn = Callable[[PlannedAction], bool]


def make_removal_guard(max_removals: int) -> Optional[ConfirmFn]:
    """Decline every removal when a run would remove more than `max_removals` members.

    Protects the group from being emptied by a wrong or temporarily empty
    container. 0 disables the guard.
    """
    if max_removals <= 0:
        return None

    def _confirm(pa: PlannedAction) -> bool:
        return pa.action is not Action.REMOVE or pa.pass_size <= max_removals

    return _confirm


class GroupMembershipReconciler:
    def __init__(
        self,
        directory: DirectoryGateway,
        *,
        attribute: str = DEFAULT_ATTRIBUTE,
        sentinel: str = DEFAULT_SENTINEL,
        kinds: Iterable[AccountKind] = DEFAULT_KINDS,
        subtree: bool = True,
        workers: int = 1,
        retries: int = 1,
        confirm: Optional[ConfirmFn] = None,
        cancel_event: Optional[threading.Event] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.directory = directory
        self.attribute = attribute
        self.sentinel = sentinel
        self.kinds = frozenset(kinds)
        self.subtree = subtree
        self.workers = max(1, int(workers))
        self.retries = max(0, int(retries))
        self.confirm = confirm
        self.cancel_event = cancel_event or threading.Event()
        self.log = logger or logging.getLogger(__name__)

        if not self.kinds:
            raise ValueError("Не задан ни один вид учётных записей.")

    def cancel(self) -> None:
        self.cancel_event.set()

    @property
    def cancelled(self) -> bool:
        return self.cancel_event.is_set()

    def plan(self, scope_dn: str, group_name: str) -> ReconcilePlan:
        """Read-only part of a run: resolve, snapshot, discover and diff.

        Raises ValueError for a malformed scope and the fatal errors
        (ResolutionError, DiscoveryError, DirectoryUnavailableError).
        """
        scope_dn = (scope_dn or "").strip()
        if not is_valid_dn(scope_dn):
            raise ValueError(f"Некорректный DN контейнера: {scope_dn!r}")
        group_name = (group_name or "").strip()
        if not group_name:
            raise NotFoundError(group_name)

        group = self.directory.resolve_group(group_name)
        members = self.directory.list_members(group)
        found = self.directory.find_accounts(
            scope_dn,
            self.kinds,
            ["sAMAccountName", "distinguishedName", self.attribute],
            subtree=self.subtree,
        )

        # Union of both kinds, de-duplicated by DN
        accounts: list[DirectoryAccount] = []
        seen: set[str] = set()
        for a in found:
            if a.dn_key in seen:
                continue
            seen.add(a.dn_key)
            accounts.append(a)

        # Removal is decided by full path identity; addition by name against
        # the members that stay, so a same-named member from another
        # container does not hide a missing account.
        kept_names = {m.name_key for m in members if m.dn_key in seen and m.name}
        kept_dns = {m.dn_key for m in members if m.dn_key in seen}

        to_add = [a for a in accounts if a.name_key not in kept_names and a.dn_key not in kept_dns]
        to_update = [a for a in accounts if (a.classification or "") != self.sentinel]
        to_remove = [m for m in members if m.dn_key not in seen]

        plan = ReconcilePlan(group=group, accounts=accounts, members=members)
        plan.adds = [PlannedAction(Action.ADD, a, len(to_add)) for a in to_add]
        plan.updates = [PlannedAction(Action.UPDATE_ATTRIBUTE, a, len(to_update)) for a in to_update]
        plan.removes = [PlannedAction(Action.REMOVE, m, len(to_remove)) for m in to_remove]

        self.log.info(
            "Группа %s: участников %d, в контейнере %s найдено %d; план: +%d, ~%d, -%d",
            group.name, len(members), scope_dn, len(accounts),
            len(plan.adds), len(plan.updates), len(plan.removes),
        )
        return plan

    def reconcile(self, scope_dn: str, group_name: str, dry_run: bool = False) -> ReconcileResult:
        plan = self.plan(scope_dn, group_name)
        result = ReconcileResult(
            status=ReconcileStatus.RECONCILED,
            scope_dn=scope_dn.strip(),
            group=plan.group.name,
            dry_run=dry_run,
        )

        for actions in (plan.adds, plan.updates, plan.removes):
            if self.cancelled:
                result.status = ReconcileStatus.CANCELLED
                break
            entries, interrupted = self._run_pass(plan.group, actions, dry_run)
            result.log.extend(entries)
            if interrupted:
                result.status = ReconcileStatus.CANCELLED
                break

        if result.status is ReconcileStatus.RECONCILED and result.failures:
            result.status = ReconcileStatus.PARTIAL
        result.message = result.summary()

        level = logging.WARNING if result.status is not ReconcileStatus.RECONCILED else logging.INFO
        self.log.log(level, "Группа %s: %s", plan.group.name, result.message)
        return result

    def _run_pass(
        self,
        group: ReferenceGroup,
        actions: list[PlannedAction],
        dry_run: bool,
    ) -> tuple[list[OperationEntry], bool]:
        """Execute one pass; returns entries in planned order and whether it was cancelled."""
        if not actions:
            return [], False

        decided: list[Optional[OperationEntry]] = []
        pending: list[int] = []
        for i, pa in enumerate(actions):
            if self.cancelled:
                break
            if self.confirm is not None and not self.confirm(pa):
                decided.append(self._entry(pa, Outcome.SKIPPED_DECLINED, reason="Отклонено подтверждением"))
            elif dry_run:
                decided.append(self._entry(pa, Outcome.SKIPPED_DRYRUN))
            else:
                decided.append(None)
                pending.append(i)

        if self.workers == 1 or len(pending) <= 1:
            for i in pending:
                decided[i] = self._execute_unless_cancelled(group, actions[i])
        else:
            with ThreadPoolExecutor(max_workers=min(self.workers, len(pending))) as ex:
                futs = {ex.submit(self._execute_unless_cancelled, group, actions[i]): i for i in pending}
                for fut in as_completed(futs):
                    decided[futs[fut]] = fut.result()

        entries = [e for e in decided if e is not None]
        return entries, len(entries) < len(actions)

    def _execute_unless_cancelled(self, group: ReferenceGroup, pa: PlannedAction) -> Optional[OperationEntry]:
        if self.cancelled:
            return None
        return self._execute(group, pa)

    def _execute(self, group: ReferenceGroup, pa: PlannedAction) -> OperationEntry:
        """One account, one action: the unit of work of a worker.

        Timeouts are retried `retries` times; any other failure is recorded.
        """
        attempts = 0
        while True:
            attempts += 1
            try:
                self._apply(group, pa)
                self.log.info("%s %s (%s): выполнено", pa.action.value, pa.account, pa.account_dn)
                return self._entry(pa, Outcome.APPLIED, attempts=attempts)
            except DirectoryTimeoutError as e:
                if attempts <= self.retries:
                    self.log.warning("%s %s: таймаут, повтор (%d): %s", pa.action.value, pa.account, attempts, e)
                    continue
                self.log.error("%s %s: %s", pa.action.value, pa.account, e)
                return self._entry(pa, Outcome.FAILED, reason=str(e), attempts=attempts)
            except AccountOperationError as e:
                self.log.error("%s %s: %s", pa.action.value, pa.account, e)
                return self._entry(pa, Outcome.FAILED, reason=str(e), attempts=attempts)
            except Exception as e:
                self.log.exception("%s %s: непредвиденная ошибка", pa.action.value, pa.account)
                return self._entry(pa, Outcome.FAILED, reason=f"{type(e).__name__}: {e}", attempts=attempts)

    def _apply(self, group: ReferenceGroup, pa: PlannedAction) -> None:
        if pa.action is Action.ADD:
            self.directory.add_member(group, pa.target)
        elif pa.action is Action.UPDATE_ATTRIBUTE:
            self.directory.set_attribute(pa.target, self.attribute, self.sentinel)
        else:
            self.directory.remove_member(group, pa.target)

    @staticmethod
    def _entry(pa: PlannedAction, outcome: Outcome, reason: str = "", attempts: int = 0) -> OperationEntry:
        return OperationEntry(
            account=pa.account,
            account_dn=pa.account_dn,
            action=pa.action,
            outcome=outcome,
            reason=reason,
            attempts=attempts,
        )
