from __future__ import annotations

import logging
import re
from dataclasses import replace
from typing import Any, Iterable

from ldap3 import MODIFY_ADD, MODIFY_DELETE, MODIFY_REPLACE
from ldap3.core.exceptions import LDAPException
from ldap3.utils.conv import escape_bytes

from ..errors import (
    AlreadyExistsError,
    ForbiddenError,
    GatewayError,
    InvalidFormatError,
    NotFoundError,
    OptFailedError,
    UnsupportedError,
    WeakPasswordError,
)
from .codecs import encode_password, unformat_guid
from .mapper import ObjectMapper
from .models import ENTRY_SCHEMA, GROUP_SCHEMA, USER_SCHEMA, ADConfig, Entry, Group, User
from .paging import PAGE_SIZE, MembershipPager
from .password import is_strong_password
from .pool import ConnectionPool
from .utils import build_dn, escape_ldap_filter_value, in_list_ci, split_rdn

log = logging.getLogger(__name__)

RESULT_ENTRY_ALREADY_EXISTS = 68

# Имена, зарезервированные системой
RESERVED_NAMES = frozenset(
    {"service", "network service", "local service", "local system", "network", "local"}
)

DEFAULT_GROUP_DESCRIPTION = "Synced by ldap-gateway"

UAC_ACCOUNTDISABLE = 0x0002
UAC_NORMAL_ACCOUNT = 0x0200
INSTANCE_TYPE_WRITABLE = 0x00000004

GROUP_TYPE_GLOBAL = 0x00000002
GROUP_TYPE_SECURITY_ENABLED = 0x80000000

USER_FILTER = "(&(objectClass=user)(objectCategory=person)({attr}={value}))"
GROUP_FILTER = "(&(objectClass=group)(objectCategory=group)({attr}={value}))"

_ATTR_NAME_RE = re.compile(r"^[A-Za-z][A-Za-z0-9-]*$")


def id_filter(template: str, id_type: str, value: str) -> str:
    """Build a lookup filter for ``value`` of attribute ``id_type``.

    objectGUID lookups are matched on the stored byte order, escaped per byte.
    """
    id_type = (id_type or "sAMAccountName").strip()
    if not _ATTR_NAME_RE.match(id_type):
        raise InvalidFormatError("id type", id_type)
    if id_type.lower() == "objectguid":
        escaped = escape_bytes(unformat_guid(value))
    else:
        escaped = escape_ldap_filter_value(value or "")
    return template.format(attr=id_type, value=escaped)


def build_replace_map(fields: dict[str, Any]) -> dict[str, list[str]]:
    """Keep only the values the caller actually set.

    Empty strings, zero numbers, empty lists and ``None`` mean "leave as is";
    clearing an attribute is not possible this way.
    """
    out: dict[str, list[str]] = {}
    for attr, value in fields.items():
        if value is None or isinstance(value, bool):
            continue
        if isinstance(value, (list, tuple)):
            values = [str(v) for v in value if str(v).strip()]
            if values:
                out[attr] = values
        elif isinstance(value, int):
            if value != 0:
                out[attr] = [str(value)]
        else:
            s = str(value).strip()
            if s:
                out[attr] = [s]
    return out


def to_int32(value: int) -> int:
    """AD stores groupType as a signed 32-bit integer."""
    value &= 0xFFFFFFFF
    return value - 0x100000000 if value & 0x80000000 else value


def _describe(result: dict | None) -> str:
    res = dict(result or {})
    desc = res.get("description") or ""
    msg = res.get("message") or ""
    if desc and msg:
        return f"{desc} ({msg})"
    return desc or msg or "unknown error"


def _dn_key(dn: str) -> str:
    return (dn or "").strip().lower()


class ADClient:
    """Unit-of-work operations over the shared connection pool.

    Each protocol step takes its own connection from the pool and returns it
    right away; multi-step operations are not transactional.
    """

    def __init__(self, cfg: ADConfig, pool: ConnectionPool, page_size: int = PAGE_SIZE) -> None:
        self.cfg = cfg
        self.pool = pool
        self.mapper = ObjectMapper(pool, cfg.base_dn)
        self.pager = MembershipPager(cfg.base_dn, page_size=page_size)

    # ------------------------------------------------------------------
    # protocol primitives

    def _add(self, dn: str, attrs: dict[str, Any], option: str) -> None:
        with self.pool.connection() as conn:
            try:
                ok = bool(conn.add(dn, attributes=attrs))
            except LDAPException as e:
                raise OptFailedError(option, str(e)) from e
            if not ok:
                res = dict(conn.result or {})
                if res.get("result") == RESULT_ENTRY_ALREADY_EXISTS:
                    raise AlreadyExistsError(f"dn='{dn}'")
                raise OptFailedError(option, _describe(res))

    def _modify(self, dn: str, changes: dict[str, list], option: str) -> None:
        with self.pool.connection() as conn:
            try:
                ok = bool(conn.modify(dn, changes))
            except LDAPException as e:
                raise OptFailedError(option, str(e)) from e
            if not ok:
                raise OptFailedError(option, _describe(conn.result))

    # ------------------------------------------------------------------
    # lookups

    def get_user(self, user_id: str, id_type: str = "sAMAccountName", search_base: str | None = None) -> User:
        flt = id_filter(USER_FILTER, id_type, user_id)
        return self.mapper.search(USER_SCHEMA, flt, search_base)

    def get_group(self, group_id: str, id_type: str = "sAMAccountName", search_base: str | None = None) -> Group:
        """Group with its complete member list (ranged retrieval)."""
        flt = id_filter(GROUP_FILTER, id_type, group_id)
        group = self.mapper.search(GROUP_SCHEMA, flt, search_base)
        with self.pool.connection() as conn:
            members = self.pager.fetch_members(conn, flt, search_base)
        return replace(group, member=tuple(members))

    def _refetch_user(self, user: User, fallback_id: str, id_type: str, search_base: str | None) -> User:
        if user.common.object_guid:
            return self.get_user(user.common.object_guid, "objectGUID")
        return self.get_user(fallback_id, id_type, search_base)

    def _refetch_group(self, group: Group, fallback_id: str, id_type: str, search_base: str | None) -> Group:
        if group.common.object_guid:
            return self.get_group(group.common.object_guid, "objectGUID")
        return self.get_group(fallback_id, id_type, search_base)

    def healthz(self) -> User:
        return self.get_user("Administrator", "sAMAccountName")

    def check_availability(self, name: str) -> tuple[bool, Entry | None]:
        """Is ``name`` free both as sAMAccountName and as a mail prefix in every zone?

        Returns (available, conflicting object).
        """
        if not (name or "").strip():
            raise ForbiddenError("name cannot be an empty string")
        if name.strip().lower() in RESERVED_NAMES:
            raise ForbiddenError("this name is reserved for the system")

        safe = escape_ldap_filter_value(name)
        parts = [f"(sAMAccountName={safe})"]
        for zone in self.cfg.zones:
            parts.append(f"(proxyAddresses=smtp:{safe}@{escape_ldap_filter_value(zone)})")
        flt = f"(|{''.join(parts)})"

        try:
            obj = self.mapper.search(ENTRY_SCHEMA, flt)
        except NotFoundError:
            return True, None
        return False, obj

    def _require_available(self, name: str) -> None:
        log.info("Проверка доступности имени `%s`...", name)
        try:
            ok, _ = self.check_availability(name)
        except GatewayError as e:
            raise e.add_context(f"check availability of '{name}'")
        if not ok:
            raise AlreadyExistsError(f"sAMAccountName='{name}'")

    # ------------------------------------------------------------------
    # users

    def create_user(self, user_dn: str, account: str, display_name: str, domain: str = "") -> None:
        """Add a disabled, password-less user object."""
        username = account.lower()
        domain = (domain or self.cfg.domain).strip().strip(".")

        attrs: dict[str, Any] = {
            "objectClass": ["top", "user", "organizationalPerson", "person"],
            "name": username,
            "sAMAccountName": username,
            "instanceType": str(INSTANCE_TYPE_WRITABLE),
            "userAccountControl": str(UAC_NORMAL_ACCOUNT | UAC_ACCOUNTDISABLE),
            "userPrincipalName": f"{username}@{domain}",
            "accountExpires": "0",
        }
        if display_name:
            attrs["displayName"] = display_name
        self._add(user_dn, attrs, "create user")

    def set_password(self, user_dn: str, password: str, account: str) -> None:
        if not is_strong_password(account, password):
            raise WeakPasswordError(account)
        self._modify(
            user_dn,
            {"unicodePwd": [(MODIFY_REPLACE, [encode_password(password)])]},
            f"set password for '{user_dn}'",
        )

    def enable_user(self, user_dn: str) -> None:
        self.update_object_attributes(user_dn, {"userAccountControl": [str(UAC_NORMAL_ACCOUNT)]})

    def unlock_user(self, user_dn: str) -> None:
        self._modify(user_dn, {"lockoutTime": [(MODIFY_REPLACE, ["0"])]}, f"unlock user '{user_dn}'")

    def create_enabled_user(
        self,
        account: str,
        display_name: str,
        ou: str,
        password: str,
        domain: str,
    ) -> str:
        """Create, set the password, enable. Returns the new DN.

        ``domain`` is checked against the configured zones exactly as given,
        so an empty value is rejected.

        Four separate protocol calls without rollback: a failure after the add
        leaves a disabled account behind.
        """
        log.info("Создание пользователя %s (OU=%s, домен=%s)", account, ou, domain)
        if not in_list_ci(domain, self.cfg.zones):
            raise UnsupportedError(domain, "domain")
        if not is_strong_password(account, password):
            raise WeakPasswordError(account)

        self._require_available(account)

        user_dn = build_dn(account, ou)
        log.info("Имя свободно, создаётся объект `%s`...", user_dn)
        self.create_user(user_dn, account, display_name, domain)

        try:
            log.info("Установка пароля для `%s`...", user_dn)
            self.set_password(user_dn, password, account)
            log.info("Включение учётной записи `%s`...", user_dn)
            self.enable_user(user_dn)
        except GatewayError as e:
            log.error("Пользователь `%s` создан, но не включён: %s", user_dn, e)
            raise e.add_context(f"finish creation of '{account}'")
        return user_dn

    def set_user_password(
        self,
        user_id: str,
        id_type: str,
        password: str,
        search_base: str | None = None,
    ) -> None:
        """Reset the password, then clear lockoutTime."""
        if (id_type or "sAMAccountName").lower() == "samaccountname" and not is_strong_password(user_id, password):
            raise WeakPasswordError(user_id)

        log.info("Смена пароля: поиск пользователя %s=%s", id_type, user_id)
        try:
            user = self.get_user(user_id, id_type, search_base)
        except GatewayError as e:
            raise e.add_context(f"look up user {id_type}='{user_id}'")

        self.set_password(user.dn, password, user.common.sam_account_name or user_id)
        log.info("Пароль установлен, разблокировка `%s`", user.dn)
        try:
            self.unlock_user(user.dn)
        except GatewayError as e:
            raise e.add_context(f"unlock '{user.dn}'")

    def update_user(
        self,
        user_id: str,
        id_type: str,
        fields: dict[str, Any],
        ou: str = "",
        search_base: str | None = None,
    ) -> User:
        user = self.get_user(user_id, id_type, search_base)
        replace_map = build_replace_map(fields)
        if replace_map or not ou:
            self.update_object_attributes(user.dn, replace_map)
        # OU меняется отдельным modify DN, после остальных атрибутов
        if ou:
            self.move_object(user.dn, ou)
        return self._refetch_user(user, user_id, id_type, search_base)

    # ------------------------------------------------------------------
    # generic objects

    def update_object_attributes(self, dn: str, replace_map: dict[str, list[str]]) -> None:
        option = f"modify obj '{dn}'"
        if not replace_map:
            raise OptFailedError(option, "no valid field in replaceAttr")
        changes = {attr: [(MODIFY_REPLACE, list(values))] for attr, values in replace_map.items()}
        self._modify(dn, changes, option)

    def move_object(self, dn: str, new_ou: str) -> None:
        rdn, _ = split_rdn(dn)
        option = f"move '{dn}' to OU '{new_ou}'"
        with self.pool.connection() as conn:
            try:
                ok = bool(conn.modify_dn(dn, rdn, delete_old_dn=True, new_superior=new_ou))
            except LDAPException as e:
                raise OptFailedError(option, str(e)) from e
            if not ok:
                raise OptFailedError(option, _describe(conn.result))

    # ------------------------------------------------------------------
    # groups

    def create_group(
        self,
        account: str,
        ou: str,
        display_name: str = "",
        description: str = "",
        group_type: int = 0,
    ) -> str:
        log.info("Создание группы %s (OU=%s)", account, ou)
        self._require_available(account)

        group_dn = build_dn(account, ou)
        name = account.lower()
        attrs: dict[str, Any] = {
            "objectClass": ["top", "group"],
            "name": name,
            "sAMAccountName": name,
            "groupType": str(to_int32(group_type or (GROUP_TYPE_GLOBAL | GROUP_TYPE_SECURITY_ENABLED))),
            "description": description or DEFAULT_GROUP_DESCRIPTION,
        }
        if display_name:
            attrs["displayName"] = display_name
        self._add(group_dn, attrs, "create group")
        return group_dn

    def update_group(
        self,
        group_id: str,
        id_type: str,
        fields: dict[str, Any],
        search_base: str | None = None,
    ) -> Group:
        group = self.get_group(group_id, id_type, search_base)
        self.update_object_attributes(group.dn, build_replace_map(fields))
        return self._refetch_group(group, group_id, id_type, search_base)

    def _change_members(
        self,
        group_id: str,
        id_type: str,
        member_dns: Iterable[str],
        search_base: str | None,
        add: bool,
    ) -> Group:
        verb = "add" if add else "remove"
        group = self.get_group(group_id, id_type, search_base)
        current = {_dn_key(m) for m in group.member}

        pending: list[str] = []
        seen: set[str] = set()
        for dn in member_dns:
            key = _dn_key(dn)
            if not key or key in seen:
                continue
            seen.add(key)
            if (key in current) == add:
                log.warning(
                    "Участник `%s` %s, пропуск",
                    dn, "уже в группе" if add else "не найден в группе",
                )
                continue
            pending.append(dn)

        # Пустой список в modify удалил бы всех участников
        if not pending:
            return group

        log.info("%s: %d участник(ов) группы `%s`", verb, len(pending), group.dn)
        self._modify(
            group.dn,
            {"member": [(MODIFY_ADD if add else MODIFY_DELETE, pending)]},
            f"{verb} member {'to' if add else 'from'} group '{group.dn}'",
        )
        return self._refetch_group(group, group_id, id_type, search_base)

    def add_group_members(
        self,
        group_id: str,
        id_type: str,
        member_dns: Iterable[str],
        search_base: str | None = None,
    ) -> Group:
        return self._change_members(group_id, id_type, member_dns, search_base, add=True)

    def remove_group_members(
        self,
        group_id: str,
        id_type: str,
        member_dns: Iterable[str],
        search_base: str | None = None,
    ) -> Group:
        return self._change_members(group_id, id_type, member_dns, search_base, add=False)

    def update_group_members(
        self,
        group_id: str,
        id_type: str,
        add: Iterable[str] = (),
        remove: Iterable[str] = (),
        member_id_type: str = "sAMAccountName",
        search_base: str | None = None,
    ) -> tuple[Group, str]:
        """Resolve member ids to DNs, then add/remove them.

        Failures of single members do not abort the batch; they are collected
        into the returned message (``"ok;add failed: ..."``).
        """
        group = self.get_group(group_id, id_type, search_base)
        messages = ["ok"]

        def resolve(ids: Iterable[str], verb: str) -> list[str]:
            dns: list[str] = []
            for member_id in ids:
                try:
                    dns.append(self.get_user(member_id, member_id_type, search_base).dn)
                except GatewayError as e:
                    messages.append(f"{verb} failed: {e}")
            return dns

        add_dns = resolve(add, "add")
        remove_dns = resolve(remove, "remove")

        for dns, op, verb in ((add_dns, self.add_group_members, "add"), (remove_dns, self.remove_group_members, "remove")):
            if not dns:
                continue
            try:
                op(group.dn, "distinguishedName", dns)
            except GatewayError as e:
                messages.append(f"{verb} failed: {e}")

        return self._refetch_group(group, group_id, id_type, search_base), ";".join(messages)
