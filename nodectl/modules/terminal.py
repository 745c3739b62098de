"""Interactive terminal sessions bridged onto a bidirectional transport."""
import codecs
import logging
import secrets
import socket
import threading
import time
from dataclasses import dataclass, field, replace
from typing import Any, Callable, Dict, List, Optional, Protocol

import paramiko

from ..config import Config
from .errors import NodectlError, NotFoundError, OwnershipError, TerminalBusyError
from .models import RemoteEndpoint, TerminalSession, TerminalStatus
from .ssh import SessionPool

logger = logging.getLogger("terminal")

TERM = "xterm-256color"
DEFAULT_COLS = 80
DEFAULT_ROWS = 24
READ_SIZE = 4096


class TransportClosed(NodectlError):
    """The client side of a terminal transport went away."""


class TerminalTransport(Protocol):
    """Message channel to the client, e.g. a websocket.

    Messages are dicts: ``{"type": "input"|"output", "data": str}`` or
    ``{"type": "resize", "cols": int, "rows": int}``.
    """

    def send(self, message: Dict[str, Any]) -> None:
        """Deliver a message, raising ``TransportClosed`` if the peer is gone."""
        ...

    def receive(self) -> Optional[Dict[str, Any]]:
        """Block for the next message; None once the peer has closed."""
        ...

    def close(self) -> None:
        ...


@dataclass
class _Entry:
    meta: TerminalSession
    channel: Any
    attached: bool = False
    shell_ended: bool = False
    lock: threading.Lock = field(default_factory=threading.Lock)


def _new_session_id() -> str:
    return secrets.token_hex(32)


class TerminalRegistry:
    """Owns every live terminal session in the process.

    The registry map is guarded by one lock taken only on insert, delete
    and lookup. Each session allows a single live attachment at a time.
    """

    def __init__(
        self,
        pool: SessionPool,
        id_factory: Callable[[], str] = _new_session_id,
        clock: Callable[[], float] = time.monotonic,
        poll_interval: float = 0.5,
    ):
        self.pool = pool
        self._id_factory = id_factory
        self._clock = clock
        self._poll_interval = poll_interval
        self._entries: Dict[str, _Entry] = {}
        self._issued: set = set()
        self._lock = threading.Lock()

    def open(
        self,
        node_id: str,
        endpoint: RemoteEndpoint,
        account_id: str,
        cols: int = DEFAULT_COLS,
        rows: int = DEFAULT_ROWS,
    ) -> TerminalSession:
        """Start a remote shell and register it under a fresh session ID.

        Raises:
            ConnectivityError: If the node cannot be reached or refuses a shell
        """
        remote = self.pool.acquire(endpoint)
        channel = remote.open_shell(term=TERM, cols=cols, rows=rows)
        channel.settimeout(self._poll_interval)

        with self._lock:
            session_id = self._id_factory()
            while session_id in self._issued:
                session_id = self._id_factory()
            self._issued.add(session_id)
            meta = TerminalSession(
                id=session_id,
                node_id=node_id,
                account_id=account_id,
                host=endpoint.host,
                last_activity=self._clock(),
            )
            self._entries[session_id] = _Entry(meta=meta, channel=channel)

        logger.info(f"🖥️  Terminal {session_id[:8]} opened on {endpoint.host} for account {account_id}")
        return replace(meta)

    def get(self, session_id: str, account_id: str) -> TerminalSession:
        """Return a copy of a session's metadata for its owner."""
        return replace(self._owned(session_id, account_id).meta)

    def list(self, account_id: str) -> List[TerminalSession]:
        with self._lock:
            return [replace(e.meta) for e in self._entries.values() if e.meta.account_id == account_id]

    def attach(self, session_id: str, account_id: str, transport: TerminalTransport) -> TerminalStatus:
        """Bridge a session's shell onto a transport until either side closes.

        Returns:
            TerminalStatus: ``DETACHED`` if the transport dropped (the shell
            keeps running and can be attached again), ``STOPPED`` if the
            shell ended

        Raises:
            NotFoundError: If the session does not exist
            OwnershipError: If the session belongs to another account
            TerminalBusyError: If the session already has a live attachment
        """
        entry = self._owned(session_id, account_id)
        with entry.lock:
            if entry.meta.status is TerminalStatus.STOPPED:
                raise NotFoundError(f"Terminal session {session_id} has stopped")
            if entry.attached:
                raise TerminalBusyError(f"Terminal session {session_id} is already attached")
            entry.attached = True
            entry.meta.status = TerminalStatus.ATTACHED
            entry.meta.last_activity = self._clock()

        stop = threading.Event()
        pump = threading.Thread(
            target=self._pump_output,
            args=(entry, transport, stop),
            name=f"terminal-{session_id[:8]}",
            daemon=True,
        )
        pump.start()
        try:
            while not entry.shell_ended:
                try:
                    message = transport.receive()
                except TransportClosed:
                    break
                if message is None:
                    break
                self._handle_message(entry, message)
        finally:
            stop.set()
            pump.join(timeout=self._poll_interval * 4)
            with entry.lock:
                entry.attached = False
                ended = entry.shell_ended or entry.meta.status is TerminalStatus.STOPPED

        if ended:
            self._finish(session_id)
            return TerminalStatus.STOPPED

        with entry.lock:
            entry.meta.status = TerminalStatus.DETACHED
        logger.info(f"Terminal {session_id[:8]} detached")
        return TerminalStatus.DETACHED

    def stop(self, session_id: str, account_id: str) -> None:
        """Close a session's shell and remove it from the registry.

        Raises:
            NotFoundError: If the session does not exist
            OwnershipError: If ``account_id`` does not own the session; the
                session is left untouched
        """
        self._owned(session_id, account_id)
        self._finish(session_id)

    def evict_idle(self, max_idle: Optional[float] = None) -> List[str]:
        """Stop unattached sessions idle for longer than ``max_idle`` seconds."""
        max_idle = Config.TERMINAL_IDLE_TIMEOUT if max_idle is None else max_idle
        now = self._clock()
        with self._lock:
            idle = [
                sid for sid, e in self._entries.items()
                if not e.attached and now - e.meta.last_activity > max_idle
            ]
        for session_id in idle:
            logger.info(f"Evicting idle terminal {session_id[:8]}")
            self._finish(session_id)
        return idle

    def _owned(self, session_id: str, account_id: str) -> _Entry:
        with self._lock:
            entry = self._entries.get(session_id)
        if entry is None:
            raise NotFoundError(f"Terminal session {session_id} not found")
        if entry.meta.account_id != account_id:
            raise OwnershipError(f"Terminal session {session_id} belongs to another account")
        return entry

    def _finish(self, session_id: str) -> None:
        with self._lock:
            entry = self._entries.pop(session_id, None)
        if entry is None:
            return
        with entry.lock:
            entry.meta.status = TerminalStatus.STOPPED
        try:
            entry.channel.close()
        except (OSError, paramiko.SSHException) as e:
            logger.debug(f"Error closing terminal channel {session_id[:8]}: {e}")
        logger.info(f"Terminal {session_id[:8]} stopped")

    def _handle_message(self, entry: _Entry, message: Dict[str, Any]) -> None:
        kind = message.get("type")
        entry.meta.last_activity = self._clock()
        if kind == "input":
            entry.channel.send(message.get("data", ""))
        elif kind == "resize":
            try:
                cols = int(message.get("cols") or DEFAULT_COLS)
                rows = int(message.get("rows") or DEFAULT_ROWS)
            except (TypeError, ValueError):
                logger.debug(f"Ignoring malformed resize {message!r}")
                return
            if cols <= 0 or rows <= 0:
                logger.debug(f"Ignoring malformed resize {message!r}")
                return
            entry.channel.resize_pty(width=cols, height=rows)
        else:
            logger.debug(f"Ignoring terminal message of type {kind!r}")

    def _pump_output(self, entry: _Entry, transport: TerminalTransport, stop: threading.Event) -> None:
        decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        while not stop.is_set():
            try:
                data = entry.channel.recv(READ_SIZE)
            except socket.timeout:
                continue
            except (OSError, paramiko.SSHException) as e:
                logger.debug(f"Terminal {entry.meta.id[:8]} read failed: {e}")
                data = b""
            if not data:
                break
            entry.meta.last_activity = self._clock()
            try:
                transport.send({"type": "output", "data": decoder.decode(data)})
            except TransportClosed:
                return

        if not stop.is_set():
            entry.shell_ended = True
            try:
                transport.close()
            except TransportClosed:
                logger.debug(f"Transport for terminal {entry.meta.id[:8]} already closed")
