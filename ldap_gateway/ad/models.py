from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Callable, List


@dataclass
class ADConfig:
    host: str
    port: int
    bind_username: str
    bind_password: str
    base_dn: str
    domain: str = ""
    zones: List[str] = field(default_factory=list)
    pool_size: int = 10
    use_ssl: bool = True
    starttls: bool = False
    tls_validate: bool = False
    ca_cert_file: str = ""
    acquire_timeout: float = 5.0

    @property
    def address(self) -> str:
        return f"{self.host}:{self.port}"

    @property
    def bind_principal(self) -> str:
        u = (self.bind_username or "").strip()
        d = (self.domain or "").strip().strip(".")
        if not u:
            return ""
        if "@" in u or "=" in u or "\\" in u:
            return u
        return f"{u}@{d}" if d else u


class Decode(str, Enum):
    """How a raw attribute value list becomes a Python value."""

    STRING = "string"
    INTEGER = "integer"
    FLOAT = "float"
    BOOLEAN = "boolean"
    SID = "sid"
    GUID = "guid"
    GENERALIZED_TIME = "generalized_time"
    FILETIME = "filetime"
    STRING_LIST = "string_list"


@dataclass(frozen=True)
class FieldSpec:
    field: str
    attribute: str
    kind: Decode = Decode.STRING
    # Filled by a separate ranged retrieval, never requested by the main search.
    paged: bool = False


@dataclass(frozen=True)
class CommonFields:
    name: str = ""
    display_name: str = ""
    sam_account_name: str = ""
    distinguished_name: str = ""
    description: str = ""
    when_created: datetime | None = None
    when_changed: datetime | None = None
    object_class: tuple[str, ...] = ()
    object_category: str = ""
    object_guid: str = ""
    object_sid: str = ""


COMMON_FIELDS: tuple[FieldSpec, ...] = (
    FieldSpec("name", "name"),
    FieldSpec("display_name", "displayName"),
    FieldSpec("sam_account_name", "sAMAccountName"),
    FieldSpec("distinguished_name", "distinguishedName"),
    FieldSpec("description", "description"),
    FieldSpec("when_created", "whenCreated", Decode.GENERALIZED_TIME),
    FieldSpec("when_changed", "whenChanged", Decode.GENERALIZED_TIME),
    FieldSpec("object_class", "objectClass", Decode.STRING_LIST),
    FieldSpec("object_category", "objectCategory"),
    FieldSpec("object_guid", "objectGUID", Decode.GUID),
    FieldSpec("object_sid", "objectSid", Decode.SID),
)


def _json_value(v: Any) -> Any:
    if isinstance(v, datetime):
        return v.isoformat()
    if isinstance(v, tuple):
        return list(v)
    return v


@dataclass(frozen=True)
class RecordSchema:
    """Declarative table: wire attribute -> record field + decode rule.

    ``COMMON_FIELDS`` is shared by every schema; ``fields`` lists only what the
    concrete record adds on top.
    """

    name: str
    fields: tuple[FieldSpec, ...]
    factory: Callable[..., Any]

    @property
    def all_fields(self) -> tuple[FieldSpec, ...]:
        return COMMON_FIELDS + self.fields

    @property
    def attributes(self) -> list[str]:
        seen: set[str] = set()
        out: list[str] = []
        for f in self.all_fields:
            key = f.attribute.lower()
            if f.paged or key in seen:
                continue
            seen.add(key)
            out.append(f.attribute)
        return out

    def to_dict(self, record: Any) -> dict[str, Any]:
        data = {f.attribute: _json_value(getattr(record.common, f.field)) for f in COMMON_FIELDS}
        for f in self.fields:
            data[f.attribute] = _json_value(getattr(record, f.field))
        return data


@dataclass(frozen=True)
class User:
    common: CommonFields = field(default_factory=CommonFields)
    company: str = ""
    department: str = ""
    physical_delivery_office_name: str = ""
    member_of: tuple[str, ...] = ()
    pwd_last_set: datetime | None = None
    lockout_time: datetime | None = None
    last_logon: datetime | None = None
    pwd_expiry_time: datetime | None = None
    proxy_addresses: tuple[str, ...] = ()
    mail: str = ""
    mail_nickname: str = ""
    user_principal_name: str = ""
    user_account_control: str = ""
    legacy_exchange_dn: str = ""
    home_mdb: str = ""
    mdb_use_defaults: bool = False
    mdb_storage_quota: int = 0
    mdb_over_quota_limit: int = 0
    mdb_over_hard_quota_limit: int = 0

    @property
    def dn(self) -> str:
        return self.common.distinguished_name

    def to_dict(self) -> dict[str, Any]:
        return USER_SCHEMA.to_dict(self)


@dataclass(frozen=True)
class Group:
    common: CommonFields = field(default_factory=CommonFields)
    cn: str = ""
    member: tuple[str, ...] = ()
    mail: str = ""
    mail_nickname: str = ""
    ms_exch_co_managed_by_link: tuple[str, ...] = ()
    proxy_addresses: tuple[str, ...] = ()
    managed_by: str = ""
    group_type: str = ""

    @property
    def dn(self) -> str:
        return self.common.distinguished_name

    def to_dict(self) -> dict[str, Any]:
        return GROUP_SCHEMA.to_dict(self)


@dataclass(frozen=True)
class Entry:
    """Bare directory object: only the common attributes (availability checks)."""

    common: CommonFields = field(default_factory=CommonFields)

    @property
    def dn(self) -> str:
        return self.common.distinguished_name

    def to_dict(self) -> dict[str, Any]:
        return ENTRY_SCHEMA.to_dict(self)


ENTRY_SCHEMA = RecordSchema(name="object", fields=(), factory=Entry)

USER_SCHEMA = RecordSchema(
    name="user",
    factory=User,
    fields=(
        FieldSpec("company", "company"),
        FieldSpec("department", "department"),
        FieldSpec("physical_delivery_office_name", "physicalDeliveryOfficeName"),
        FieldSpec("member_of", "memberOf", Decode.STRING_LIST),
        FieldSpec("pwd_last_set", "pwdLastSet", Decode.FILETIME),
        FieldSpec("lockout_time", "lockoutTime", Decode.FILETIME),
        FieldSpec("last_logon", "lastLogon", Decode.FILETIME),
        FieldSpec("pwd_expiry_time", "msDS-UserPasswordExpiryTimeComputed", Decode.FILETIME),
        FieldSpec("proxy_addresses", "proxyAddresses", Decode.STRING_LIST),
        FieldSpec("mail", "mail"),
        FieldSpec("mail_nickname", "mailNickname"),
        FieldSpec("user_principal_name", "userPrincipalName"),
        FieldSpec("user_account_control", "userAccountControl"),
        FieldSpec("legacy_exchange_dn", "legacyExchangeDN"),
        FieldSpec("home_mdb", "homeMDB"),
        FieldSpec("mdb_use_defaults", "mDBUseDefaults", Decode.BOOLEAN),
        FieldSpec("mdb_storage_quota", "mDBStorageQuota", Decode.INTEGER),
        FieldSpec("mdb_over_quota_limit", "mDBOverQuotaLimit", Decode.INTEGER),
        FieldSpec("mdb_over_hard_quota_limit", "mDBOverHardQuotaLimit", Decode.INTEGER),
    ),
)

GROUP_SCHEMA = RecordSchema(
    name="group",
    factory=Group,
    fields=(
        FieldSpec("cn", "cn"),
        FieldSpec("member", "member", Decode.STRING_LIST, paged=True),
        FieldSpec("mail", "mail"),
        FieldSpec("mail_nickname", "mailNickname"),
        FieldSpec("ms_exch_co_managed_by_link", "msExchCoManagedByLink", Decode.STRING_LIST),
        FieldSpec("proxy_addresses", "proxyAddresses", Decode.STRING_LIST),
        FieldSpec("managed_by", "managedBy"),
        FieldSpec("group_type", "groupType"),
    ),
)
