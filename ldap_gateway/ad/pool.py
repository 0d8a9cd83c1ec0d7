"""Bounded pool of bound ldap3 connections to a single domain controller.

One pool per process, built at startup from ``ADConfig`` and handed to
``ADClient``. At most ``pool_size`` connections exist at any time; a caller
that finds the pool exhausted waits on the idle queue up to
``acquire_timeout`` seconds and then gets ``PoolTimeoutError``.
"""
from __future__ import annotations

import logging
import queue
import ssl
import threading
import time
from contextlib import contextmanager
from typing import Callable, Iterator

from ldap3 import BASE, NONE, Connection, Server, Tls
from ldap3.core.exceptions import LDAPException

from ..errors import LdapBindError, LdapConnectError, PoolTimeoutError
from .models import ADConfig

log = logging.getLogger(__name__)

LIVENESS_FILTER = "(&(objectClass=user)(objectCategory=person)(name=Administrator))"

# Longest single wait on the idle queue before growth is retried.
WAIT_SLICE = 0.1


class PooledConnection:
    """A bound connection checked out of the pool by exactly one caller."""

    def __init__(self, conn: Connection, pool: "ConnectionPool", slot: int) -> None:
        self.conn = conn
        self.pool = pool
        self.slot = slot
        self.checked_out = False

    def is_alive(self) -> bool:
        try:
            if getattr(self.conn, "closed", False):
                return False
            self.conn.search(
                search_base=self.pool.cfg.base_dn,
                search_filter=LIVENESS_FILTER,
                search_scope=BASE,
                attributes=["name"],
            )
        except LDAPException as e:
            log.info("LDAP соединение #%d не отвечает: %s", self.slot, e)
            return False
        res = dict(self.conn.result or {})
        return res.get("result") == 0

    def release(self) -> None:
        self.pool.release(self)

    def __enter__(self) -> Connection:
        return self.conn

    def __exit__(self, exc_type, exc_val, exc_tb) -> bool:
        self.release()
        return False


class ConnectionPool:
    def __init__(
        self,
        cfg: ADConfig,
        connect: Callable[[int], Connection] | None = None,
        timeout: float | None = None,
    ) -> None:
        self.cfg = cfg
        self.capacity = max(1, int(cfg.pool_size))
        self.timeout = float(cfg.acquire_timeout if timeout is None else timeout)

        self._idle: queue.Queue[PooledConnection] = queue.Queue(maxsize=self.capacity)
        self._lock = threading.Lock()
        self._slots: set[int] = set()
        self._connect = connect or self._open_connection
        self.server: Server | None = None
        if connect is None:
            self.server = self._build_server()

    @property
    def created(self) -> int:
        """Number of slots currently backed by a connection."""
        return len(self._slots)

    @property
    def idle(self) -> int:
        return self._idle.qsize()

    def _build_server(self) -> Server:
        tls_kwargs: dict = {
            "validate": ssl.CERT_REQUIRED if self.cfg.tls_validate else ssl.CERT_NONE,
        }
        if self.cfg.tls_validate and self.cfg.ca_cert_file:
            tls_kwargs["ca_certs_file"] = self.cfg.ca_cert_file

        return Server(
            host=self.cfg.host,
            port=self.cfg.port,
            use_ssl=self.cfg.use_ssl,
            get_info=NONE,
            tls=Tls(**tls_kwargs),
            connect_timeout=self.timeout,
        )

    def _open_connection(self, slot: int) -> Connection:
        """Dial, optionally StartTLS, and bind with the service account."""
        conn = Connection(
            self.server,
            user=self.cfg.bind_principal,
            password=self.cfg.bind_password,
            auto_bind=False,
            auto_range=False,
            raise_exceptions=False,
        )
        try:
            conn.open()
            if self.cfg.starttls:
                conn.start_tls()
        except LDAPException as e:
            raise LdapConnectError(self.cfg.address, str(e)) from e

        try:
            ok = bool(conn.bind())
        except LDAPException as e:
            raise LdapConnectError(self.cfg.address, str(e)) from e

        if not ok:
            res = dict(conn.result or {})
            _safe_unbind(conn)
            raise LdapBindError(
                self.cfg.bind_principal,
                res.get("description") or res.get("message") or "unknown error",
            )

        log.debug("LDAP соединение #%d установлено (%s)", slot, self.cfg.address)
        return conn

    def _grow(self) -> PooledConnection | None:
        # Connection setup runs under the lock: growth is serialized so the
        # slot count can never pass capacity.
        with self._lock:
            if len(self._slots) >= self.capacity:
                return None
            slot = next(i for i in range(self.capacity) if i not in self._slots)
            conn = self._connect(slot)
            self._slots.add(slot)
        return PooledConnection(conn, self, slot)

    def _replace(self, pc: PooledConnection) -> PooledConnection:
        log.warning("LDAP соединение #%d потеряно, переподключение", pc.slot)
        _safe_unbind(pc.conn)
        try:
            conn = self._connect(pc.slot)
        except Exception:
            self._forget(pc.slot)
            raise
        return PooledConnection(conn, self, pc.slot)

    def _forget(self, slot: int) -> None:
        with self._lock:
            self._slots.discard(slot)

    def _checkout(self, pc: PooledConnection) -> PooledConnection:
        if not pc.is_alive():
            pc = self._replace(pc)
        pc.checked_out = True
        return pc

    def acquire(self) -> PooledConnection:
        try:
            return self._checkout(self._idle.get_nowait())
        except queue.Empty:
            pass

        pc = self._grow()
        if pc is not None:
            pc.checked_out = True
            return pc

        # Slots freed by _forget() are not announced on the queue, so the
        # wait is sliced and growth retried between slices.
        deadline = time.monotonic() + self.timeout
        while True:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                raise PoolTimeoutError("get ldap conn", self.timeout)
            try:
                pc = self._idle.get(timeout=min(remaining, WAIT_SLICE))
            except queue.Empty:
                pc = self._grow()
                if pc is not None:
                    pc.checked_out = True
                    return pc
                continue
            return self._checkout(pc)

    def release(self, pc: PooledConnection) -> None:
        if not pc.checked_out:
            return
        pc.checked_out = False
        try:
            self._idle.put_nowait(pc)
        except queue.Full:
            log.warning("Очередь LDAP соединений заполнена, соединение #%d закрыто", pc.slot)
            _safe_unbind(pc.conn)
            self._forget(pc.slot)

    @contextmanager
    def connection(self) -> Iterator[Connection]:
        pc = self.acquire()
        try:
            yield pc.conn
        finally:
            pc.release()

    def close(self) -> None:
        """Unbind every idle connection (process shutdown)."""
        while True:
            try:
                pc = self._idle.get_nowait()
            except queue.Empty:
                break
            _safe_unbind(pc.conn)
            self._forget(pc.slot)
        log.info("Пул LDAP соединений закрыт")


def _safe_unbind(conn: Connection) -> None:
    try:
        conn.unbind()
    except LDAPException as e:
        log.debug("unbind: %s", e)
