from __future__ import annotations

from typing import Iterable

from .models import AccountKind


# Фильтры поиска по видам учётных записей.
# Компьютеры тоже имеют objectClass=user, поэтому для "user" ограничиваемся person.
_KIND_FILTERS: dict[AccountKind, str] = {
    AccountKind.USER: "(&(objectCategory=person)(objectClass=user))",
    AccountKind.SERVICE: "(|(objectClass=msDS-ManagedServiceAccount)(objectClass=msDS-GroupManagedServiceAccount))",
    AccountKind.COMPUTER: "(&(objectClass=computer)(!(objectClass=msDS-ManagedServiceAccount)))",
}


def escape_ldap_filter_value(value: str) -> str:
    """RFC 4515 escaping for LDAP filter values."""
    out: list[str] = []
    for ch in value:
        if ch == "\\":
            out.append("\\5c")
        elif ch == "*":
            out.append("\\2a")
        elif ch == "(":
            out.append("\\28")
        elif ch == ")":
            out.append("\\29")
        elif ch == "\x00":
            out.append("\\00")
        else:
            out.append(ch)
    return "".join(out)


def kind_filter(kind: AccountKind) -> str:
    return _KIND_FILTERS[kind]


def group_lookup_filter(name: str) -> str:
    """Filter matching a group by sAMAccountName or CN."""
    safe = escape_ldap_filter_value((name or "").strip())
    return f"(&(objectClass=group)(|(sAMAccountName={safe})(cn={safe})))"


def parse_kinds(values: Iterable[str]) -> frozenset[AccountKind]:
    """Parse kind names ("user", "service", "computer"); unknown names raise ValueError."""
    kinds: set[AccountKind] = set()
    for v in values:
        s = (v or "").strip().lower()
        if not s:
            continue
        try:
            kinds.add(AccountKind(s))
        except ValueError:
            raise ValueError(f"Неизвестный вид учётной записи: {v!r}") from None
    return frozenset(kinds)
