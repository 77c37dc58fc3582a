from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Iterator


class Action(str, Enum):
    ADD = "add"
    REMOVE = "remove"
    UPDATE_ATTRIBUTE = "updateAttribute"


class Outcome(str, Enum):
    APPLIED = "applied"
    SKIPPED_DRYRUN = "skipped-dryrun"
    SKIPPED_DECLINED = "skipped-declined"
    FAILED = "failed"


class ReconcileStatus(str, Enum):
    RECONCILED = "reconciled"
    PARTIAL = "partial"
    ABORTED = "aborted"
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class OperationEntry:
    account: str
    account_dn: str
    action: Action
    outcome: Outcome
    reason: str = ""
    attempts: int = 0

    def to_dict(self) -> dict:
        return {
            "account": self.account,
            "account_dn": self.account_dn,
            "action": self.action.value,
            "outcome": self.outcome.value,
            "reason": self.reason,
            "attempts": self.attempts,
        }


@dataclass
class OperationLog:
    """Ordered list of attempted actions with their outcome."""

    entries: list[OperationEntry] = field(default_factory=list)

    def append(self, entry: OperationEntry) -> None:
        self.entries.append(entry)

    def extend(self, entries: list[OperationEntry]) -> None:
        self.entries.extend(entries)

    def __iter__(self) -> Iterator[OperationEntry]:
        return iter(self.entries)

    def __len__(self) -> int:
        return len(self.entries)

    def failures(self) -> list[OperationEntry]:
        return [e for e in self.entries if e.outcome is Outcome.FAILED]

    def actions(self, action: Action) -> list[OperationEntry]:
        return [e for e in self.entries if e.action is action]

    def to_dicts(self) -> list[dict]:
        return [e.to_dict() for e in self.entries]


@dataclass
class ReconcileResult:
    status: ReconcileStatus
    scope_dn: str
    group: str
    dry_run: bool = False
    log: OperationLog = field(default_factory=OperationLog)
    message: str = ""

    @property
    def failures(self) -> int:
        return len(self.log.failures())

    @property
    def success(self) -> bool:
        return self.status is ReconcileStatus.RECONCILED

    def summary(self) -> str:
        if self.status is ReconcileStatus.ABORTED:
            return f"Прервано до внесения изменений: {self.message}"
        counts = {a: len(self.log.actions(a)) for a in Action}
        text = (
            f"добавлено {counts[Action.ADD]}, "
            f"атрибут обновлён {counts[Action.UPDATE_ATTRIBUTE]}, "
            f"удалено {counts[Action.REMOVE]}"
        )
        if self.dry_run:
            text = f"[dry-run] {text}"
        if self.status is ReconcileStatus.CANCELLED:
            return f"Отменено: {text}"
        if self.status is ReconcileStatus.PARTIAL:
            return f"Частично согласовано ({self.failures} ошибок): {text}"
        return f"Согласовано: {text}"

    def to_dict(self) -> dict:
        return {
            "status": self.status.value,
            "success": self.success,
            "scope_dn": self.scope_dn,
            "group": self.group,
            "dry_run": self.dry_run,
            "failures": self.failures,
            "message": self.message or self.summary(),
            "log": self.log.to_dicts(),
        }
