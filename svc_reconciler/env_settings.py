from functools import lru_cache
from typing import Literal

from pydantic_settings import BaseSettings
from pydantic import Field, field_validator

from .ad.models import AccountKind
from .ad.utils import parse_kinds
from .ad_utils import split_csv


class EnvSettings(BaseSettings):
    # AD connection
    ad_dc_short: str = Field("", alias="AD_DC_SHORT")
    ad_domain: str = Field("", alias="AD_DOMAIN")
    ad_conn_mode: Literal["ldaps", "starttls"] = Field("ldaps", alias="AD_CONN_MODE")
    ad_bind_username: str = Field("", alias="AD_BIND_USERNAME")
    ad_bind_password: str = Field("", alias="AD_BIND_PASSWORD")
    ad_tls_validate: bool = Field(False, alias="AD_TLS_VALIDATE")
    ad_ca_pem: str = Field("", alias="AD_CA_PEM")
    ad_timeout_s: int = Field(30, alias="AD_TIMEOUT_S", ge=1, le=600)

    # Reconciliation
    reconcile_scope_dn: str = Field("", alias="RECONCILE_SCOPE_DN")
    reconcile_group: str = Field("", alias="RECONCILE_GROUP")
    reconcile_subtree: bool = Field(True, alias="RECONCILE_SUBTREE")
    reconcile_kinds: str = Field("user,service", alias="RECONCILE_KINDS")
    reconcile_attribute: str = Field("employeeType", alias="RECONCILE_ATTRIBUTE")
    reconcile_sentinel: str = Field("ServiceAccount", alias="RECONCILE_SENTINEL")
    reconcile_workers: int = Field(4, alias="RECONCILE_WORKERS", ge=1, le=64)
    reconcile_retries: int = Field(1, alias="RECONCILE_RETRIES", ge=0, le=5)
    reconcile_max_removals: int = Field(0, alias="RECONCILE_MAX_REMOVALS", ge=0)
    reconcile_interval_min: int = Field(0, alias="RECONCILE_INTERVAL_MIN", ge=0)  # 0 = по расписанию не запускать

    # Storage / queue
    sqlite_path: str = Field("data/app.db", alias="SQLITE_PATH")
    redis_url: str = Field("redis://redis:6379/0", alias="REDIS_URL")

    api_token: str = Field("", alias="APP_API_TOKEN")

    # Logging
    log_level: str = Field("INFO", alias="LOG_LEVEL")
    log_retention_days: int = Field(30, alias="LOG_RETENTION_DAYS")
    log_max_size_mb: int = Field(50, alias="LOG_MAX_SIZE_MB")

    class Config:
        populate_by_name = True

    @field_validator("ad_dc_short", "ad_domain", "ad_bind_username", "reconcile_scope_dn", "reconcile_group")
    @classmethod
    def _strip(cls, v: str) -> str:
        return (v or "").strip()

    @field_validator("reconcile_kinds")
    @classmethod
    def _validate_kinds(cls, v: str) -> str:
        if not parse_kinds(split_csv(v)):
            raise ValueError("RECONCILE_KINDS: укажите хотя бы один вид (user, service, computer).")
        return v

    @property
    def kinds(self) -> frozenset[AccountKind]:
        return parse_kinds(split_csv(self.reconcile_kinds))


@lru_cache(maxsize=1)
def get_env() -> EnvSettings:
    return EnvSettings()
