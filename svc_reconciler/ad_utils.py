from __future__ import annotations

import ipaddress
import re

_DN_PATTERN = re.compile(
    r"^(?:(?:CN|OU|DC|O|L|ST|C)=[^,]+,)*(?:CN|OU|DC|O|L|ST|C)=[^,]+$",
    re.IGNORECASE,
)


def domain_to_base_dn(domain: str) -> str:
    domain = (domain or "").strip().strip(".")
    if not domain or "." not in domain:
        return ""
    parts = [p for p in domain.split(".") if p]
    return ",".join([f"DC={p}" for p in parts])


def build_dc_fqdn(dc_short: str, domain: str) -> str:
    dc_short = (dc_short or "").strip()
    domain = (domain or "").strip().strip(".")
    if not dc_short:
        return domain

    # IP-адрес контроллера используем как есть
    try:
        ipaddress.ip_address(dc_short)
        return dc_short
    except ValueError:
        if "." in dc_short:
            return dc_short
        return f"{dc_short}.{domain}" if domain else dc_short


def is_valid_dn(dn: str) -> bool:
    """Базовая проверка формата Distinguished Name.

    Escaped commas inside an RDN value (``CN=Doe\\, John``) are accepted.
    """
    s = (dn or "").strip()
    if not s:
        return False
    return bool(_DN_PATTERN.match(s.replace("\\,", "")))


def split_csv(text: str) -> list[str]:
    if not text:
        return []
    return [x.strip() for x in re.split(r"[,;]", text) if x.strip()]
