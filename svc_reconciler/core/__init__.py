"""Reconciliation core: directory port, operation log and the reconciler."""

from .oplog import Action, Outcome, OperationEntry, OperationLog, ReconcileResult, ReconcileStatus
from .ports import DirectoryGateway
from .reconcile import GroupMembershipReconciler, PlannedAction, make_removal_guard

__all__ = [
    "Action",
    "Outcome",
    "OperationEntry",
    "OperationLog",
    "ReconcileResult",
    "ReconcileStatus",
    "DirectoryGateway",
    "GroupMembershipReconciler",
    "PlannedAction",
    "make_removal_guard",
]
