"""
pytest configuration and fixtures.

``FakeDirectory`` stands in for a domain controller: it understands the
filters the client builds (&, |, !, equality), AD-style ranged retrieval of
``member`` and the add / modify / modify DN calls, and hands out
``FakeConnection`` objects shaped like ``ldap3.Connection``.
"""

import re
import struct
import threading
import uuid
from typing import Optional

import pytest
from ldap3 import MODIFY_ADD, MODIFY_DELETE, MODIFY_REPLACE
from ldap3.core.exceptions import LDAPException

from ldap_gateway.ad import ADClient, ADConfig, ConnectionPool


BASE_DN = "DC=example,DC=com"
STAFF_OU = "OU=Staff,DC=example,DC=com"
GROUPS_OU = "OU=Groups,DC=example,DC=com"

PERSON_CATEGORY = "CN=Person,CN=Schema,CN=Configuration,DC=example,DC=com"
GROUP_CATEGORY = "CN=Group,CN=Schema,CN=Configuration,DC=example,DC=com"

_RANGE_RE = re.compile(r"^member;range=(\d+)-(\d+|\*)$", re.IGNORECASE)


def make_sid(*subs: int, revision: int = 1, authority: int = 5) -> bytes:
    """Binary SID: revision, count, 6-byte big-endian authority, LE sub-authorities."""
    return (
        bytes([revision, len(subs)])
        + authority.to_bytes(6, "big")
        + b"".join(struct.pack("<I", s) for s in subs)
    )


def _to_bytes(v) -> bytes:
    if isinstance(v, (bytes, bytearray)):
        return bytes(v)
    return str(v).encode("utf-8")


def _values(v) -> list:
    if isinstance(v, (list, tuple)):
        return [_to_bytes(x) for x in v]
    return [_to_bytes(v)]


def _unescape(value: str) -> bytes:
    out = bytearray()
    i = 0
    while i < len(value):
        ch = value[i]
        if ch == "\\" and re.fullmatch(r"[0-9a-fA-F]{2}", value[i + 1:i + 3]):
            out.append(int(value[i + 1:i + 3], 16))
            i += 3
            continue
        out.extend(ch.encode("utf-8"))
        i += 1
    return bytes(out)


def _split_children(body: str) -> list[str]:
    children, depth, start = [], 0, None
    for i, ch in enumerate(body):
        if ch == "(":
            if depth == 0:
                start = i
            depth += 1
        elif ch == ")":
            depth -= 1
            if depth == 0:
                children.append(body[start:i + 1])
    return children


def _first_rdn_value(dn: bytes) -> bytes:
    first = dn.split(b",", 1)[0]
    return first.split(b"=", 1)[-1]


def matches(flt: str, attrs: dict) -> bool:
    flt = flt.strip()
    assert flt.startswith("(") and flt.endswith(")"), flt
    inner = flt[1:-1]
    if inner[0] == "&":
        return all(matches(c, attrs) for c in _split_children(inner[1:]))
    if inner[0] == "|":
        return any(matches(c, attrs) for c in _split_children(inner[1:]))
    if inner[0] == "!":
        return not matches(inner[1:], attrs)

    name, value = inner.split("=", 1)
    wanted = _unescape(value).lower()
    stored = attrs.get(name.lower(), [])
    for v in stored:
        v_low = v.lower()
        if v_low == wanted:
            return True
        if name.lower() == "objectcategory" and _first_rdn_value(v_low) == wanted:
            return True
    return False


class FakeEntry:
    def __init__(self, dn: str, attrs: dict):
        self.dn = dn
        # lower-case name -> (wire name, [bytes])
        self.names: dict[str, str] = {}
        self.values: dict[str, list] = {}
        for k, v in attrs.items():
            self.set(k, _values(v))
        self.set("distinguishedName", [_to_bytes(dn)])

    def set(self, name: str, values: list) -> None:
        key = name.lower()
        self.names.setdefault(key, name)
        self.values[key] = list(values)

    def get(self, name: str) -> list:
        return self.values.get(name.lower(), [])

    def text(self, name: str) -> list[str]:
        return [v.decode("utf-8") for v in self.get(name)]


class FakeDirectory:
    def __init__(self, base_dn: str = BASE_DN, max_val_range: int = 1500):
        self.base_dn = base_dn
        self.max_val_range = max_val_range
        self.entries: dict[str, FakeEntry] = {}
        self.lock = threading.Lock()
        self.dials = 0
        self.connections: list["FakeConnection"] = []
        self.searches: list[tuple] = []
        self.writes: list[tuple] = []
        self.fail_modify_attr: Optional[str] = None
        self.dial_error: Optional[Exception] = None

    # --- seeding -------------------------------------------------------

    def add_entry(self, dn: str, attrs: dict) -> FakeEntry:
        entry = FakeEntry(dn, attrs)
        self.entries[dn.lower()] = entry
        return entry

    def add_user(self, sam: str, ou: str = STAFF_OU, rid: int = 1100, **extra) -> FakeEntry:
        dn = f"CN={sam},{ou}"
        attrs = {
            "objectClass": ["top", "person", "organizationalPerson", "user"],
            "objectCategory": PERSON_CATEGORY,
            "name": sam,
            "cn": sam,
            "sAMAccountName": sam,
            "displayName": sam.title(),
            "userPrincipalName": f"{sam}@example.com",
            "userAccountControl": "512",
            "objectGUID": uuid.uuid5(uuid.NAMESPACE_DNS, dn).bytes_le,
            "objectSid": make_sid(21, 1004336348, 1177238915, 682003330, rid),
            "whenCreated": "20240126042000.0Z",
            "whenChanged": "20240301101500.0Z",
            "pwdLastSet": "133511508000000000",
            "lockoutTime": "0",
            "accountExpires": "9223372036854775807",
        }
        attrs.update(extra)
        return self.add_entry(dn, attrs)

    def add_group(self, sam: str, members=(), ou: str = GROUPS_OU, **extra) -> FakeEntry:
        dn = f"CN={sam},{ou}"
        attrs = {
            "objectClass": ["top", "group"],
            "objectCategory": GROUP_CATEGORY,
            "name": sam,
            "cn": sam,
            "sAMAccountName": sam,
            "groupType": "-2147483646",
            "objectGUID": uuid.uuid5(uuid.NAMESPACE_DNS, dn).bytes_le,
            "objectSid": make_sid(21, 1004336348, 1177238915, 682003330, 5000),
            "member": list(members),
        }
        attrs.update(extra)
        return self.add_entry(dn, attrs)

    def get(self, dn: str) -> Optional[FakeEntry]:
        return self.entries.get(dn.lower())

    def find(self, sam: str) -> Optional[FakeEntry]:
        for e in self.entries.values():
            if [v.lower() for v in e.text("sAMAccountName")] == [sam.lower()]:
                return e
        return None

    # --- connections ---------------------------------------------------

    def connect(self, slot: int) -> "FakeConnection":
        with self.lock:
            self.dials += 1
        if self.dial_error is not None:
            raise self.dial_error
        conn = FakeConnection(self, slot)
        self.connections.append(conn)
        return conn

    @property
    def member_searches(self) -> list[tuple]:
        return [s for s in self.searches if any(a.lower().startswith("member;range=") for a in s[2])]

    @property
    def modifies(self) -> list[tuple]:
        return [w for w in self.writes if w[0] == "modify"]

    # --- operations ----------------------------------------------------

    def search(self, base: str, flt: str, attributes: list) -> list[dict]:
        self.searches.append((base, flt, tuple(attributes or ())))
        base_l = base.lower()
        out = []
        for entry in list(self.entries.values()):
            if not (entry.dn.lower() == base_l or entry.dn.lower().endswith("," + base_l)):
                continue
            if not matches(flt, entry.values):
                continue
            out.append({"type": "searchResEntry", "dn": entry.dn, "raw_attributes": self._project(entry, attributes)})
        return out

    def _project(self, entry: FakeEntry, attributes: list) -> dict:
        raw = {}
        for attr in attributes or ():
            m = _RANGE_RE.match(attr)
            if m:
                values = entry.get("member")
                lo = int(m.group(1))
                hi = len(values) - 1 if m.group(2) == "*" else int(m.group(2))
                hi = min(hi, lo + self.max_val_range - 1)
                chunk = values[lo:hi + 1]
                if not values:
                    continue
                if lo + len(chunk) >= len(values):
                    raw[f"member;range={lo}-*"] = chunk
                else:
                    raw[f"member;range={lo}-{lo + len(chunk) - 1}"] = chunk
                continue
            key = attr.lower()
            if key in entry.values and entry.values[key]:
                raw[entry.names[key]] = list(entry.values[key])
        return raw

    def add(self, dn: str, attributes: dict) -> int:
        self.writes.append(("add", dn, attributes))
        if dn.lower() in self.entries:
            return 68
        classes = [c.lower() for c in _values(attributes.get("objectClass", []))]
        attrs = dict(attributes)
        attrs.setdefault("objectCategory", GROUP_CATEGORY if b"group" in classes else PERSON_CATEGORY)
        attrs.setdefault("objectGUID", uuid.uuid5(uuid.NAMESPACE_DNS, dn).bytes_le)
        attrs.setdefault("objectSid", make_sid(21, 1, 2, 3, 9000 + len(self.entries)))
        attrs.setdefault("whenCreated", "20250101000000.0Z")
        self.add_entry(dn, attrs)
        return 0

    def modify(self, dn: str, changes: dict) -> int:
        self.writes.append(("modify", dn, changes))
        entry = self.get(dn)
        if entry is None:
            return 32
        if self.fail_modify_attr and self.fail_modify_attr in changes:
            return 53
        for attr, ops in changes.items():
            for op, values in ops:
                current = entry.get(attr)
                new = _values(values)
                if op == MODIFY_REPLACE:
                    entry.set(attr, new)
                elif op == MODIFY_ADD:
                    entry.set(attr, current + new)
                elif op == MODIFY_DELETE:
                    drop = {v.lower() for v in new}
                    entry.set(attr, [v for v in current if v.lower() not in drop])
        return 0

    def modify_dn(self, dn: str, rdn: str, new_superior: Optional[str]) -> int:
        self.writes.append(("modify_dn", dn, rdn, new_superior))
        entry = self.entries.pop(dn.lower(), None)
        if entry is None:
            return 32
        parent = new_superior or dn.split(",", 1)[1]
        entry.dn = f"{rdn},{parent}"
        entry.set("distinguishedName", [_to_bytes(entry.dn)])
        self.entries[entry.dn.lower()] = entry
        return 0


_DESCRIPTIONS = {0: "success", 32: "noSuchObject", 53: "unwillingToPerform", 68: "entryAlreadyExists"}


class FakeConnection:
    """Subset of ``ldap3.Connection`` used by the pool and the client."""

    def __init__(self, directory: FakeDirectory, slot: int):
        self.directory = directory
        self.slot = slot
        self.alive = True
        self.closed = False
        self.result: dict = {}
        self.response: list = []

    def _done(self, code: int) -> bool:
        self.result = {"result": code, "description": _DESCRIPTIONS.get(code, "other"), "message": ""}
        return code == 0

    def search(self, search_base, search_filter, search_scope=None, attributes=None):
        if not self.alive:
            raise LDAPException("socket closed")
        if search_scope == "BASE":
            self.response = []
            self._done(0)
            return False
        self.response = self.directory.search(search_base, search_filter, list(attributes or ()))
        self._done(0)
        return bool(self.response)

    def add(self, dn, attributes=None):
        return self._done(self.directory.add(dn, attributes or {}))

    def modify(self, dn, changes):
        return self._done(self.directory.modify(dn, changes))

    def modify_dn(self, dn, relative_dn, delete_old_dn=True, new_superior=None):
        return self._done(self.directory.modify_dn(dn, relative_dn, new_superior))

    def unbind(self):
        self.closed = True
        return True


@pytest.fixture
def directory() -> FakeDirectory:
    d = FakeDirectory()
    d.add_user("Administrator", ou="CN=Users,DC=example,DC=com", rid=500)
    alice = d.add_user("alice", rid=1101, mail="alice@example.com", proxyAddresses=["SMTP:alice@example.com"])
    bob = d.add_user("bob", rid=1102, proxyAddresses=["SMTP:bob@example.com", "smtp:robert@mail.example.com"])
    d.add_user("carol", rid=1103)
    d.add_group("staff", members=[alice.dn, bob.dn], description="All staff")
    return d


@pytest.fixture
def cfg() -> ADConfig:
    return ADConfig(
        host="dc01.example.com",
        port=636,
        bind_username="svc-gateway",
        bind_password="secret",
        base_dn=BASE_DN,
        domain="example.com",
        zones=["example.com", "mail.example.com"],
        pool_size=3,
        acquire_timeout=0.3,
    )


@pytest.fixture
def pool(cfg: ADConfig, directory: FakeDirectory) -> ConnectionPool:
    return ConnectionPool(cfg, connect=directory.connect)


@pytest.fixture
def client(cfg: ADConfig, pool: ConnectionPool) -> ADClient:
    return ADClient(cfg, pool)
