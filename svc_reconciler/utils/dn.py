from __future__ import annotations


def _split_first_rdn(dn: str) -> tuple[str, str]:
    """Split DN into (first RDN, rest), honouring escaped commas."""
    first: list[str] = []
    esc = False
    for i, ch in enumerate(dn):
        if esc:
            first.append(ch)
            esc = False
            continue
        if ch == "\\":
            first.append(ch)
            esc = True
            continue
        if ch == ",":
            return "".join(first).strip(), dn[i + 1:].strip()
        first.append(ch)
    return "".join(first).strip(), ""


def dn_first_component_value(dn: str) -> str:
    """Return first RDN value from a DN (e.g. CN=svc-backup,OU=... -> svc-backup)."""
    s = (dn or "").strip()
    if not s:
        return ""

    rdn, _ = _split_first_rdn(s)
    if "=" in rdn:
        _, val = rdn.split("=", 1)
        val = val.strip()
    else:
        val = rdn

    # Unescape common DN escapes
    val = val.replace("\\,", ",").replace("\\+", "+").replace("\\=", "=").replace('\\"', '"')
    return val.replace("\\\\", "\\").strip()


def parent_dn(dn: str) -> str:
    """Return the container part of a DN (CN=a,OU=Svc,DC=x -> OU=Svc,DC=x)."""
    s = (dn or "").strip()
    if not s:
        return ""
    _, rest = _split_first_rdn(s)
    return rest


def dn_key(dn: str) -> str:
    """Case-insensitive identity of a DN (AD compares DNs without regard to case)."""
    parts: list[str] = []
    rest = (dn or "").strip()
    while rest:
        rdn, rest = _split_first_rdn(rest)
        if "=" in rdn:
            attr, val = rdn.split("=", 1)
            rdn = f"{attr.strip()}={val.strip()}"
        parts.append(rdn)
    return ",".join(parts).casefold()
