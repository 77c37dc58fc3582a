"""Application service layer."""

from .ad import ad_cfg_from_env, build_directory
from .reconcile import build_reconciler, run_reconciliation

__all__ = [
    "ad_cfg_from_env",
    "build_directory",
    "build_reconciler",
    "run_reconciliation",
]
