from __future__ import annotations

from ldap3.utils.dn import escape_rdn

from ..errors import InvalidFormatError


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


def split_rdn(dn: str) -> tuple[str, str]:
    """Split ``CN=a\\,b,OU=x,DC=y`` into (``CN=a\\,b``, ``OU=x,DC=y``)."""
    s = (dn or "").strip()
    esc = False
    for i, ch in enumerate(s):
        if esc:
            esc = False
            continue
        if ch == "\\":
            esc = True
            continue
        if ch == ",":
            rdn, parent = s[:i].strip(), s[i + 1:].strip()
            if rdn and parent:
                return rdn, parent
            break
    raise InvalidFormatError("DN", dn)


def build_dn(cn: str, ou: str) -> str:
    return f"CN={escape_rdn(cn)},{ou}"


def in_list_ci(item: str, items: list[str]) -> bool:
    item = (item or "").lower()
    return any((x or "").lower() == item for x in items)
