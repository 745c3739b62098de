import queue
import socket
from typing import Dict, List

import pytest

from nodectl.modules.crypto import account_key
from nodectl.modules.errors import ConnectivityError
from nodectl.modules.models import Caller, RemoteEndpoint, Server, ServerType, SSLMaterial
from nodectl.modules.ssh import SessionPool
from nodectl.modules.terminal import TransportClosed


class FakeChannel:
    """Stands in for a paramiko shell channel."""

    def __init__(self):
        self.output = queue.Queue()
        self.sent: List[str] = []
        self.resizes: List[tuple] = []
        self.closed = False
        self.timeout = 0.05

    def settimeout(self, timeout):
        self.timeout = timeout

    def recv(self, size):
        try:
            return self.output.get(timeout=self.timeout)
        except queue.Empty:
            raise socket.timeout()

    def send(self, data):
        self.sent.append(data)
        return len(data)

    def resize_pty(self, width, height):
        self.resizes.append((width, height))

    def close(self):
        self.closed = True


class FakeSession:
    """Scripted RemoteSession: the first matching substring decides the result."""

    def __init__(self, endpoint, responses):
        self.endpoint = endpoint
        self.responses = responses
        self.commands: List[str] = []
        self.uploads: Dict[str, str] = {}
        self.modes: Dict[str, int] = {}
        self.channel = FakeChannel()
        self.active = True
        self.closed = False

    def exec(self, command, timeout):
        self.commands.append(command)
        for substring, outcome in self.responses:
            if substring in command:
                if isinstance(outcome, Exception):
                    raise outcome
                return outcome
        return 0, ""

    def put_text(self, content, path, mode=None):
        self.uploads[path] = content
        if mode is not None:
            self.modes[path] = mode

    def open_shell(self, term="xterm-256color", cols=80, rows=24):
        self.shell_size = (cols, rows)
        return self.channel

    def is_active(self):
        return self.active

    def close(self):
        self.closed = True
        self.active = False


class FakeDialer:
    """Dial function for SessionPool that hands out FakeSessions."""

    def __init__(self):
        self.responses = []
        self.sessions: List[FakeSession] = []
        self.error = None

    def respond(self, substring, exit_code=0, output=""):
        self.responses.append((substring, (exit_code, output)))

    def fail(self, substring, error):
        self.responses.append((substring, error))

    def __call__(self, endpoint, timeout=None):
        if self.error is not None:
            raise self.error
        session = FakeSession(endpoint, self.responses)
        self.sessions.append(session)
        return session

    @property
    def calls(self):
        return len(self.sessions)

    @property
    def session(self):
        return self.sessions[-1]

    @property
    def commands(self):
        return [c for s in self.sessions for c in s.commands]

    @property
    def uploads(self):
        merged = {}
        for s in self.sessions:
            merged.update(s.uploads)
        return merged

    def ran(self, substring):
        return any(substring in c for c in self.commands)

    def index(self, substring):
        for i, command in enumerate(self.commands):
            if substring in command:
                return i
        raise AssertionError(f"no command containing {substring!r}: {self.commands}")


class FakeStore:
    """Dict-backed ConfigStore."""

    def __init__(self):
        self.data: Dict[str, Dict[str, object]] = {}

    def get(self, account_id, key):
        return self.data.get(account_id, {}).get(key)

    def put(self, account_id, key, value):
        self.data.setdefault(account_id, {})[key] = value

    def delete(self, account_id, key):
        self.data.get(account_id, {}).pop(key, None)

    def list_keys(self, account_id, prefix=""):
        return sorted(k for k in self.data.get(account_id, {}) if k.startswith(prefix))


class FakeTransport:
    """Queue-backed terminal transport."""

    def __init__(self, messages=()):
        self.incoming = queue.Queue()
        for message in messages:
            self.incoming.put(message)
        self.sent = []
        self.closed = False

    def send(self, message):
        if self.closed:
            raise TransportClosed("closed")
        self.sent.append(message)

    def receive(self):
        try:
            return self.incoming.get(timeout=5)
        except queue.Empty:
            return None

    def close(self):
        self.closed = True
        self.incoming.put(None)


class FakeCertAuthority:
    def __init__(self):
        self.issued = []

    def issue_cert(self, domain):
        self.issued.append(domain)
        return SSLMaterial(domain=domain, certificate="CERT-PEM", private_key="KEY-PEM")


class FakeDNS:
    def __init__(self, error=None):
        self.calls = []
        self.error = error

    def point_domain(self, domain, ip):
        self.calls.append((domain, ip))
        if self.error is not None:
            raise self.error


class FakeProvider:
    def __init__(self):
        self.created = []
        self.deleted = []
        self.power_calls = []
        self.types = [
            ServerType(name="cx22", cores=2, memory=4.0, price=4.5),
            ServerType(name="cx42", cores=8, memory=16.0, price=17.0),
            ServerType(name="cpx31", cores=4, memory=8.0, price=13.0),
        ]

    def create_server(self, name, server_type, location, ssh_public_key):
        self.created.append((name, server_type, location, ssh_public_key))
        return Server(id=f"srv-{len(self.created)}", name=name, ip="203.0.113.50")

    def delete_server(self, server_id):
        self.deleted.append(server_id)

    def power(self, server_id, action):
        self.power_calls.append((server_id, action))

    def list_server_types(self):
        return list(self.types)


class FakeIdentity:
    def __init__(self, tokens):
        self.tokens = tokens
        self.calls = 0

    def validate(self, token):
        self.calls += 1
        if token not in self.tokens:
            raise PermissionError("invalid token")
        return self.tokens[token]


def no_sleep(seconds):
    pass


@pytest.fixture
def dialer():
    return FakeDialer()


@pytest.fixture
def pool(dialer):
    return SessionPool(dialer=dialer)


@pytest.fixture
def store():
    return FakeStore()


@pytest.fixture
def caller():
    return Caller(account_id="acct-a", token="token-a", key_material=account_key("acct-a", "test-secret"))


@pytest.fixture
def endpoint():
    return RemoteEndpoint(host="203.0.113.10", credential="PEM-A")


@pytest.fixture
def unreachable(dialer):
    dialer.error = ConnectivityError("connection refused")
    return dialer
