from __future__ import annotations

MIN_LENGTH = 7
SPECIAL_CHARS = "~`!@#$%^&*()_-+={}[]|\\:;<,>.?/"


def shares_username_pair(username: str, password: str) -> bool:
    """True if any two consecutive characters of the username occur in the password."""
    u = (username or "").lower()
    p = (password or "").lower()
    return any(u[i:i + 2] in p for i in range(len(u) - 1))


def is_strong_password(username: str, password: str) -> bool:
    """Domain complexity policy, checked locally before touching the directory.

    - at least 7 characters
    - at least 3 of: upper, lower, digit, symbol
    - no 2-character piece of the account name
    """
    if len(password or "") < MIN_LENGTH:
        return False

    classes = set()
    for ch in password:
        if ch.isupper():
            classes.add("upper")
        elif ch.islower():
            classes.add("lower")
        elif ch.isdigit():
            classes.add("digit")
        elif ch in SPECIAL_CHARS:
            classes.add("special")

    if shares_username_pair(username, password):
        return False
    return len(classes) >= 3
