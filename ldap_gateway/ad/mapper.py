"""Schema-driven translation of directory entries into records.

The attribute list sent to the server is exactly what the schema declares.
Values are read from ``raw_attributes`` so binary attributes (objectSid,
objectGUID) reach the codecs untouched.
"""
from __future__ import annotations

import logging
from typing import Any

from ldap3 import SUBTREE
from ldap3.core.exceptions import LDAPException

from ..errors import InvalidFormatError, NotFoundError, OptFailedError
from .codecs import format_guid, format_sid, parse_file_time, parse_generalized_time
from .models import COMMON_FIELDS, CommonFields, Decode, FieldSpec, RecordSchema
from .pool import ConnectionPool

log = logging.getLogger(__name__)

RESULT_SUCCESS = 0
RESULT_SIZE_LIMIT_EXCEEDED = 4
RESULT_NO_SUCH_OBJECT = 32

_SKIP = object()


def run_search(conn, search_base: str, search_filter: str, attributes: list[str]) -> list[dict]:
    """Subtree search returning the ``searchResEntry`` items of the response."""
    try:
        conn.search(
            search_base=search_base,
            search_filter=search_filter,
            search_scope=SUBTREE,
            attributes=attributes,
        )
    except LDAPException as e:
        raise OptFailedError(f"search '{search_filter}'", str(e)) from e

    res = dict(conn.result or {})
    code = res.get("result", RESULT_SUCCESS)
    if code == RESULT_NO_SUCH_OBJECT:
        raise NotFoundError(search_base)
    if code not in (RESULT_SUCCESS, RESULT_SIZE_LIMIT_EXCEEDED):
        raise OptFailedError(
            f"search '{search_filter}'",
            res.get("description") or res.get("message") or f"result code {code}",
        )
    return [r for r in (conn.response or []) if r.get("type") == "searchResEntry"]


def _text(v: Any) -> str:
    if isinstance(v, (bytes, bytearray)):
        return bytes(v).decode("utf-8", errors="replace")
    return str(v)


def decode_values(fs: FieldSpec, values: list) -> Any:
    """Decode a raw value list according to ``fs.kind``.

    Binary identifiers raise ``InvalidFormatError``; numbers, booleans and
    timestamps that do not parse leave the field at its default.
    """
    if fs.kind is Decode.STRING_LIST:
        return tuple(_text(v) for v in values)
    if not values:
        return _SKIP

    raw = values[0]
    if fs.kind is Decode.SID:
        return format_sid(bytes(raw))
    if fs.kind is Decode.GUID:
        return format_guid(bytes(raw))

    text = _text(raw)
    if fs.kind is Decode.STRING:
        return text
    try:
        if fs.kind is Decode.INTEGER:
            return int(text)
        if fs.kind is Decode.FLOAT:
            return float(text)
        if fs.kind is Decode.BOOLEAN:
            t = text.strip().lower()
            if t in ("true", "t", "1"):
                return True
            if t in ("false", "f", "0"):
                return False
            return _SKIP
        if fs.kind is Decode.GENERALIZED_TIME:
            return parse_generalized_time(text)
        if fs.kind is Decode.FILETIME:
            return parse_file_time(text)
    except (ValueError, InvalidFormatError) as e:
        log.debug("Атрибут %s не разобран (%s): %s", fs.attribute, fs.kind.value, e)
        return _SKIP
    return _SKIP


def build_record(schema: RecordSchema, raw_attributes: dict) -> Any:
    by_attr: dict[str, list[FieldSpec]] = {}
    for f in schema.all_fields:
        by_attr.setdefault(f.attribute.lower(), []).append(f)

    common: dict[str, Any] = {}
    own: dict[str, Any] = {}
    for attr_name, values in (raw_attributes or {}).items():
        for fs in by_attr.get(str(attr_name).lower(), []):
            value = decode_values(fs, list(values or []))
            if value is _SKIP:
                continue
            target = common if fs in COMMON_FIELDS else own
            target[fs.field] = value

    return schema.factory(common=CommonFields(**common), **own)


class ObjectMapper:
    def __init__(self, pool: ConnectionPool, base_dn: str) -> None:
        self.pool = pool
        self.base_dn = base_dn

    def search(self, schema: RecordSchema, search_filter: str, search_base: str | None = None) -> Any:
        """Fetch one record matching ``search_filter``.

        Raises ``NotFoundError`` when nothing matches. When several entries
        match, the first one returned by the server wins and the ambiguity is
        logged.
        """
        base = search_base or self.base_dn
        with self.pool.connection() as conn:
            entries = run_search(conn, base, search_filter, schema.attributes)

        if not entries:
            raise NotFoundError(search_filter)
        if len(entries) > 1:
            log.warning(
                "Фильтр %s вернул %d объектов (%s), используется первый: %s",
                search_filter, len(entries), schema.name, entries[0].get("dn", ""),
            )
        return build_record(schema, entries[0].get("raw_attributes") or {})
