from __future__ import annotations

from ..ad import ADClient, ADConfig
from ..env_settings import EnvSettings
from ..errors import DirectoryUnavailableError


def ad_cfg_from_env(env: EnvSettings) -> ADConfig | None:
    if not env.ad_dc_short or not env.ad_domain or not env.ad_bind_username:
        return None

    if env.ad_conn_mode == "ldaps":
        port, use_ssl, starttls = 636, True, False
    else:
        port, use_ssl, starttls = 389, False, True

    return ADConfig(
        dc_short=env.ad_dc_short,
        domain=env.ad_domain,
        port=port,
        use_ssl=use_ssl,
        starttls=starttls,
        bind_username=env.ad_bind_username,
        bind_password=env.ad_bind_password,
        tls_validate=env.ad_tls_validate,
        ca_pem=env.ad_ca_pem or "",
        timeout_s=float(env.ad_timeout_s),
    )


def build_directory(env: EnvSettings) -> ADClient:
    cfg = ad_cfg_from_env(env)
    if not cfg:
        raise DirectoryUnavailableError("AD не настроен (задайте AD_DC_SHORT, AD_DOMAIN, AD_BIND_USERNAME).")
    try:
        return ADClient(cfg)
    except ValueError as e:
        # malformed AD_CA_PEM
        raise DirectoryUnavailableError(f"AD настроен некорректно: {e}") from e
