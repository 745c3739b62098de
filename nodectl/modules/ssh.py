"""
SSH session management built on paramiko.

A ``SessionPool`` keeps one authenticated transport per endpoint and hands it
out to every caller that needs to run commands on that node. Each command
opens its own exec channel on the shared transport, so callers never share
shell state.
"""
import io
import logging
import socket
import threading
import time
from typing import Callable, Dict, List, Optional, Tuple

import paramiko

from ..config import Config
from .errors import CommandError, CommandTimeout, ConnectivityError
from .models import RemoteEndpoint

logger = logging.getLogger("ssh")

KEY_CLASSES = (paramiko.Ed25519Key, paramiko.ECDSAKey, paramiko.RSAKey)
RECV_CHUNK = 32768


def load_private_key(pem: str) -> paramiko.PKey:
    """Parse a PEM/OpenSSH private key of any supported type.

    Args:
        pem: Private key material as text

    Returns:
        paramiko.PKey: The parsed key

    Raises:
        ConnectivityError: If no supported key type can parse the material
    """
    for key_class in KEY_CLASSES:
        try:
            return key_class.from_private_key(io.StringIO(pem))
        except (paramiko.SSHException, ValueError) as e:
            logger.debug(f"Key is not {key_class.__name__}: {e}")
    raise ConnectivityError("Unsupported or malformed private key")


class RemoteSession:
    """An authenticated SSH transport bound to one endpoint."""

    def __init__(self, endpoint: RemoteEndpoint, client: paramiko.SSHClient):
        self.endpoint = endpoint
        self.client = client

    def _transport(self) -> paramiko.Transport:
        transport = self.client.get_transport()
        if transport is None or not transport.is_active():
            raise ConnectivityError(f"Session to {self.endpoint} is closed")
        return transport

    def exec(self, command: str, timeout: float) -> Tuple[int, str]:
        """Run a command on a fresh channel and return (exit code, combined output).

        Args:
            command: Shell command to execute
            timeout: Maximum wall-clock seconds the command may take

        Raises:
            ConnectivityError: If a channel cannot be opened
            CommandTimeout: If the command does not finish in time
        """
        try:
            channel = self._transport().open_session(timeout=timeout)
        except (paramiko.SSHException, OSError) as e:
            raise ConnectivityError(f"Failed to open channel to {self.endpoint}: {e}") from e

        deadline = time.monotonic() + timeout
        chunks = []
        try:
            channel.set_combine_stderr(True)
            channel.settimeout(timeout)
            channel.exec_command(command)
            while True:
                data = channel.recv(RECV_CHUNK)
                if not data:
                    break
                chunks.append(data)
                if time.monotonic() > deadline:
                    raise socket.timeout()
            exit_code = channel.recv_exit_status()
        except socket.timeout as e:
            raise CommandTimeout(
                f"Command timed out after {timeout}s on {self.endpoint}"
            ) from e
        except paramiko.SSHException as e:
            raise ConnectivityError(f"Channel to {self.endpoint} failed: {e}") from e
        finally:
            channel.close()

        return exit_code, b"".join(chunks).decode("utf-8", errors="replace")

    def put_text(self, content: str, path: str, mode: Optional[int] = None) -> None:
        """Write text to a remote file over SFTP."""
        try:
            sftp = self.client.open_sftp()
        except (paramiko.SSHException, OSError) as e:
            raise ConnectivityError(f"Failed to open SFTP to {self.endpoint}: {e}") from e
        try:
            with sftp.open(path, 'w') as fh:
                fh.write(content)
            if mode is not None:
                sftp.chmod(path, mode)
        except paramiko.SSHException as e:
            raise CommandError(f"Failed to write {path} on {self.endpoint}: {e}") from e
        finally:
            sftp.close()

    def open_shell(self, term: str = 'xterm-256color', cols: int = 80, rows: int = 24):
        """Start an interactive shell on a pseudo-terminal and return its channel."""
        try:
            channel = self._transport().open_session()
            channel.get_pty(term=term, width=cols, height=rows)
            channel.invoke_shell()
        except (paramiko.SSHException, OSError) as e:
            raise ConnectivityError(f"Failed to start shell on {self.endpoint}: {e}") from e
        return channel

    def is_active(self) -> bool:
        transport = self.client.get_transport()
        return transport is not None and transport.is_active()

    def close(self) -> None:
        try:
            self.client.close()
        except Exception as e:
            logger.debug(f"Error closing session to {self.endpoint}: {e}")


def dial(endpoint: RemoteEndpoint, timeout: Optional[float] = None) -> RemoteSession:
    """Open a new authenticated session to an endpoint.

    Args:
        endpoint: Host, user, port and PEM credential to use
        timeout: Connect/auth timeout (default: Config.SSH_CONNECT_TIMEOUT)

    Returns:
        RemoteSession: A connected session

    Raises:
        ConnectivityError: If the node cannot be reached or rejects the key
    """
    timeout = timeout or Config.SSH_CONNECT_TIMEOUT
    pkey = load_private_key(endpoint.credential)

    client = paramiko.SSHClient()
    client.set_missing_host_key_policy(paramiko.AutoAddPolicy())
    try:
        client.connect(
            hostname=endpoint.host,
            port=endpoint.port,
            username=endpoint.ssh_user,
            pkey=pkey,
            timeout=timeout,
            banner_timeout=timeout,
            auth_timeout=timeout,
            look_for_keys=False,
            allow_agent=False,
        )
    except (paramiko.SSHException, OSError) as e:
        client.close()
        raise ConnectivityError(f"Failed to connect to {endpoint}: {e}") from e

    transport = client.get_transport()
    if transport is not None:
        transport.set_keepalive(30)
    logger.debug(f"Connected to {endpoint}")
    return RemoteSession(endpoint, client)


class SessionPool:
    """Thread-safe registry of SSH sessions keyed by endpoint identity.

    Sessions are keyed by ``(host, user, port, credential fingerprint)``.
    Concurrent ``acquire`` calls for the same endpoint wait on a per-key lock
    so only one of them dials; different endpoints dial in parallel.
    """

    def __init__(
        self,
        dialer: Callable[[RemoteEndpoint, Optional[float]], RemoteSession] = dial,
        connect_timeout: Optional[float] = None,
    ):
        self._dialer = dialer
        self._connect_timeout = connect_timeout or Config.SSH_CONNECT_TIMEOUT
        self._sessions: Dict[tuple, RemoteSession] = {}
        self._key_locks: Dict[tuple, threading.Lock] = {}
        self._retired: List[RemoteSession] = []
        self._lock = threading.Lock()
        self._dials = 0

    @property
    def connection_count(self) -> int:
        """Number of successful dials over the pool's lifetime."""
        with self._lock:
            return self._dials

    @property
    def active_count(self) -> int:
        """Number of sessions currently held."""
        with self._lock:
            return len(self._sessions)

    def acquire(self, endpoint: RemoteEndpoint) -> RemoteSession:
        """Get a session for an endpoint, dialing only if none is usable.

        Dial failures are not retried here; the caller decides whether to
        retry or report the node as unreachable.

        Raises:
            ConnectivityError: If a new session cannot be established
        """
        key = endpoint.key
        with self._lock:
            key_lock = self._key_locks.setdefault(key, threading.Lock())

        with key_lock:
            with self._lock:
                session = self._sessions.get(key)
            if session is not None:
                if session.is_active():
                    return session
                logger.debug(f"Session to {endpoint} is no longer active, redialing")
                session.close()

            session = self._dialer(endpoint, self._connect_timeout)
            with self._lock:
                self._sessions[key] = session
                self._dials += 1
                self._retired = [s for s in self._retired if s.is_active()]
            logger.info(f"🔌 Opened SSH session to {endpoint}")
            return session

    def evict(self, endpoint: RemoteEndpoint) -> None:
        """Close and forget the session for an endpoint, if any.

        Any caller still using the session loses its transport; use
        ``mark_suspect`` when the session may be shared.
        """
        with self._lock:
            session = self._sessions.pop(endpoint.key, None)
            self._prune_key_lock(endpoint.key)
        if session is not None:
            logger.debug(f"Evicting session to {endpoint}")
            session.close()

    def mark_suspect(self, endpoint: RemoteEndpoint, session: Optional[RemoteSession] = None) -> None:
        """Stop handing out a session after a timeout, without closing it.

        The next ``acquire`` dials a fresh session while current holders keep
        their transport until they finish. When ``session`` is given, the
        entry is dropped only if it is still that session.
        """
        with self._lock:
            current = self._sessions.get(endpoint.key)
            if current is None or (session is not None and current is not session):
                return
            del self._sessions[endpoint.key]
            self._prune_key_lock(endpoint.key)
            if current.is_active():
                self._retired.append(current)
        if not current.is_active():
            current.close()
        logger.debug(f"Session to {endpoint} marked suspect")

    def close_all(self) -> None:
        """Close all sessions in the pool, including retired suspect ones."""
        with self._lock:
            sessions = list(self._sessions.values()) + self._retired
            self._sessions.clear()
            self._retired = []
            self._key_locks.clear()
        for session in sessions:
            session.close()

    def _prune_key_lock(self, key: tuple) -> None:
        # caller holds self._lock; a held key lock belongs to an in-progress acquire
        key_lock = self._key_locks.get(key)
        if key_lock is not None and not key_lock.locked():
            del self._key_locks[key]
