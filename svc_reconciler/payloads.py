from __future__ import annotations

from pydantic import BaseModel, Field, field_validator

from .ad_utils import is_valid_dn


class ReconcileRequest(BaseModel):
    """Body of POST /api/reconcile; empty scope/group fall back to env settings."""

    scope_dn: str = Field(default="", max_length=1024)
    group: str = Field(default="", max_length=256)
    dry_run: bool = Field(default=False)
    background: bool = Field(default=False)

    @field_validator("scope_dn", "group")
    @classmethod
    def _strip(cls, v: str) -> str:
        return (v or "").strip()

    @field_validator("scope_dn")
    @classmethod
    def _validate_scope(cls, v: str) -> str:
        if v and not is_valid_dn(v):
            raise ValueError("Некорректный DN контейнера (ожидается вид OU=...,DC=...).")
        return v
