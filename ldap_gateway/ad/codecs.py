"""Decoders for the vendor-specific attribute encodings used by AD.

- objectSid: binary SID -> ``S-1-5-21-...``
- objectGUID: mixed-endian 16 bytes <-> canonical hyphenated hex
- Integer8 timestamps (pwdLastSet, lockoutTime, ...): FILETIME ticks
- GeneralizedTime (whenCreated, whenChanged)
"""
from __future__ import annotations

import re
import uuid
from datetime import datetime, timedelta, timezone

from ldap3.protocol.formatters.formatters import format_sid as _ldap3_format_sid

from ..errors import InvalidFormatError

# 100ns intervals since 1601-01-01 UTC
WIN32_EPOCH = datetime(1601, 1, 1, tzinfo=timezone.utc)

# "Never" marker used by accountExpires & co.
FILETIME_NEVER = "9223372036854775807"

# Largest offset added in a single step: what a signed 64-bit nanosecond
# duration can hold, expressed in ticks and rounded down to whole microseconds.
MAX_CHUNK_TICKS = ((2**63 - 1) // 100) // 10 * 10

_GT_RE = re.compile(r"^(\d{14})(?:[.,](\d+))?(Z|[+-]\d{4})$")


def format_sid(data: bytes) -> str:
    """Render a binary objectSid. Truncated input is an error, not passed through."""
    if len(data) < 8 or len(data) < 8 + 4 * data[1]:
        raise InvalidFormatError("SID", data.hex())
    sid = _ldap3_format_sid(bytes(data))
    if not isinstance(sid, str):
        raise InvalidFormatError("SID", data.hex())
    return sid


def format_guid(data: bytes) -> str:
    """Render objectGUID bytes: first three groups little-endian, the rest as stored."""
    if len(data) != 16:
        raise InvalidFormatError("GUID", data.hex())
    return str(uuid.UUID(bytes_le=bytes(data)))


def unformat_guid(text: str) -> bytes:
    """Inverse of :func:`format_guid`: the raw bytes as stored in the directory."""
    try:
        return uuid.UUID((text or "").strip()).bytes_le
    except ValueError:
        raise InvalidFormatError("GUID", text) from None


def parse_generalized_time(value: str) -> datetime:
    """Parse AD GeneralizedTime, e.g. ``20240126042000.0Z``."""
    m = _GT_RE.match((value or "").strip())
    if not m:
        raise InvalidFormatError("GeneralizedTime", value)

    dt = datetime.strptime(m.group(1), "%Y%m%d%H%M%S")
    frac = m.group(2)
    if frac:
        dt = dt.replace(microsecond=int(frac[:6].ljust(6, "0")))

    zone = m.group(3)
    if zone == "Z":
        return dt.replace(tzinfo=timezone.utc)
    sign = 1 if zone[0] == "+" else -1
    offset = timedelta(hours=int(zone[1:3]), minutes=int(zone[3:5]))
    return dt.replace(tzinfo=timezone(sign * offset))


def add_ticks_chunked(start: datetime, ticks: int, chunk: int = MAX_CHUNK_TICKS) -> datetime:
    """Add ``ticks`` (100ns units) to ``start`` at most ``chunk`` ticks at a time.

    Sub-microsecond remainders are truncated once, on the total, so the result
    equals ``start + timedelta(microseconds=ticks // 10)`` for any chunk size.
    """
    step = chunk - chunk % 10
    if step <= 0:
        raise ValueError("chunk must be at least 10 ticks")

    remaining = ticks
    while remaining >= step:
        start += timedelta(microseconds=step // 10)
        remaining -= step
    return start + timedelta(microseconds=remaining // 10)


def parse_file_time(value: str) -> datetime | None:
    """Decode a FILETIME tick count. ``None`` means "never" / not set."""
    s = (value or "").strip()
    if s == FILETIME_NEVER:
        return None
    try:
        ticks = int(s)
    except ValueError:
        raise InvalidFormatError("FILETIME", value) from None
    if ticks <= 1:
        return None
    try:
        return add_ticks_chunked(WIN32_EPOCH, ticks)
    except OverflowError:
        raise InvalidFormatError("FILETIME", value) from None


def encode_password(password: str) -> bytes:
    """unicodePwd wire value: the quoted password in UTF-16LE."""
    return f'"{password}"'.encode("utf-16-le")
