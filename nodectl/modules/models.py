"""Data models shared by the nodectl components."""

import hashlib
from dataclasses import dataclass, field, asdict
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional


def utcnow() -> str:
    """Current UTC time as an ISO-8601 string."""
    return datetime.now(timezone.utc).isoformat()


@dataclass(frozen=True)
class RemoteEndpoint:
    """A machine reachable over SSH with a PEM private key."""
    host: str
    credential: str = field(repr=False)
    ssh_user: str = 'root'
    port: int = 22

    @property
    def fingerprint(self) -> str:
        """SHA-256 digest of the credential, used to key pooled sessions."""
        return hashlib.sha256(self.credential.encode()).hexdigest()

    @property
    def key(self) -> tuple:
        return (self.host, self.ssh_user, self.port, self.fingerprint)

    def __str__(self) -> str:
        return f"{self.ssh_user}@{self.host}:{self.port}"


@dataclass(frozen=True)
class CommandResult:
    """Outcome of a single remote command."""
    command: str
    output: str
    exit_code: int
    duration: float
    error: Optional[str] = None
    note: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.exit_code == 0 and self.error is None


class NodeStatus(str, Enum):
    """Provisioning phases reported by a node's status marker."""
    INSTALLING = 'INSTALLING'
    INSTALLING_RUNTIME = 'INSTALLING_RUNTIME'
    WAITING_RUNTIME = 'WAITING_RUNTIME'
    INSTALLING_PACKAGE_MANAGER = 'INSTALLING_PACKAGE_MANAGER'
    VERIFYING = 'VERIFYING'
    READY = 'READY'
    UNKNOWN = 'UNKNOWN'
    UNREACHABLE = 'UNREACHABLE'

    @property
    def message(self) -> str:
        return STATUS_MESSAGES[self]

    @classmethod
    def from_marker(cls, marker: str) -> 'NodeStatus':
        """Map the literal marker content to a status; unknown content is UNKNOWN."""
        literal = (marker or '').strip().upper()
        literal = MARKER_ALIASES.get(literal, literal)
        try:
            status = cls(literal)
        except ValueError:
            return cls.UNKNOWN
        # UNREACHABLE is never read from a marker
        if status is cls.UNREACHABLE:
            return cls.UNKNOWN
        return status


STATUS_MESSAGES: Dict[NodeStatus, str] = {
    NodeStatus.INSTALLING: "Initializing server setup...",
    NodeStatus.INSTALLING_RUNTIME: "Installing K3s Kubernetes cluster...",
    NodeStatus.WAITING_RUNTIME: "Waiting for K3s to be ready...",
    NodeStatus.INSTALLING_PACKAGE_MANAGER: "Installing Helm package manager...",
    NodeStatus.VERIFYING: "Verifying all components...",
    NodeStatus.READY: "Server is ready! All components installed and verified.",
    NodeStatus.UNKNOWN: "Setup status unknown (server may still be initializing)",
    NodeStatus.UNREACHABLE: "Server is not reachable over SSH",
}

# Literals written by the cloud-init scripts already in the field
MARKER_ALIASES: Dict[str, str] = {
    'INSTALLING_K3S': NodeStatus.INSTALLING_RUNTIME.value,
    'WAITING_K3S': NodeStatus.WAITING_RUNTIME.value,
    'INSTALLING_HELM': NodeStatus.INSTALLING_PACKAGE_MANAGER.value,
}


@dataclass
class HealthReport:
    """Result of one health check against a node."""
    status: NodeStatus
    message: str
    runtime_status: str = 'unknown'
    services: Dict[str, str] = field(default_factory=dict)
    uptime: Optional[str] = None
    memory: Optional[str] = None
    disk: Optional[str] = None
    error: Optional[str] = None
    checked_at: str = field(default_factory=utcnow)

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data['status'] = self.status.value
        return {k: v for k, v in data.items() if v is not None}


class AppStatus(str, Enum):
    """Lifecycle states of a deployed application."""
    PENDING = 'pending'
    DEPLOYED = 'deployed'
    FAILED = 'failed'
    UPDATING = 'updating'


class AppKind(str, Enum):
    """Application families with their own install conveniences."""
    EDITOR = 'editor'
    GITOPS = 'gitops'
    GENERIC = 'generic'


class SourceType(str, Enum):
    """Where a package template's chart comes from."""
    GIT = 'git'
    HELM_REPO = 'helm_repo'


@dataclass
class Application:
    """An application deployed (or being deployed) onto a node."""
    id: str
    name: str
    app_type: str
    app_version: str
    subdomain: str
    domain: str
    node_id: str
    node_name: str = ''
    namespace: str = 'default'
    status: AppStatus = AppStatus.PENDING
    url: str = ''
    description: str = ''
    created_at: str = field(default_factory=utcnow)
    updated_at: str = field(default_factory=utcnow)

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data['status'] = self.status.value
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Application':
        values = {k: v for k, v in data.items() if k in cls.__dataclass_fields__}
        values['status'] = AppStatus(values.get('status', AppStatus.PENDING.value))
        return cls(**values)


@dataclass(frozen=True)
class PackageTemplate:
    """Read-only catalog entry describing how to install an application type."""
    app_type: str
    name: str
    source_type: SourceType
    source_ref: str
    chart_name: str
    chart_version: str = ''
    namespace: str = 'default'
    values_template_ref: str = ''
    placeholders: Dict[str, str] = field(default_factory=dict)
    kind: AppKind = AppKind.GENERIC
    description: str = ''
    category: str = ''
    default_port: int = 80
    secret_names: List[str] = field(default_factory=list)
    password_grace_seconds: float = 0
    version_source: Dict[str, str] = field(default_factory=dict)

    @property
    def has_password(self) -> bool:
        return self.kind in (AppKind.EDITOR, AppKind.GITOPS) or bool(self.secret_names)


@dataclass(frozen=True)
class AppSecret:
    """Encrypted application password as persisted in the config store."""
    app_id: str
    encrypted_password: str
    secret_name: str = ''


@dataclass(frozen=True)
class SSLMaterial:
    """Certificate and private key issued for a domain."""
    domain: str
    certificate: str
    private_key: str = field(repr=False)


@dataclass(frozen=True)
class Caller:
    """Authenticated principal.

    ``token`` is the session token and changes on every refresh;
    ``key_material`` is stable per account and keys stored secrets.
    """
    account_id: str
    token: str = field(repr=False)
    key_material: str = field(repr=False)


class TerminalStatus(str, Enum):
    """Lifecycle states of an interactive terminal session."""
    CREATED = 'created'
    ATTACHED = 'attached'
    DETACHED = 'detached'
    STOPPED = 'stopped'


@dataclass
class TerminalSession:
    """Metadata for a live remote shell."""
    id: str
    node_id: str
    account_id: str
    host: str
    status: TerminalStatus = TerminalStatus.CREATED
    created_at: str = field(default_factory=utcnow)
    last_activity: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'node_id': self.node_id,
            'host': self.host,
            'status': self.status.value,
            'created_at': self.created_at,
        }


@dataclass(frozen=True)
class Server:
    """A virtual machine as returned by the provider."""
    id: str
    name: str
    ip: str
    status: str = 'initializing'


@dataclass(frozen=True)
class ServerType:
    """A purchasable machine size."""
    name: str
    cores: int
    memory: float
    price: float


class PowerAction(str, Enum):
    """Power operations a node supports."""
    POWER_ON = 'poweron'
    POWER_OFF = 'poweroff'
    REBOOT = 'reboot'


class ServerTypeSort(str, Enum):
    """Sort orders for server type listings."""
    PRICE_ASC = 'price_asc'
    PRICE_DESC = 'price_desc'
    CPU_ASC = 'cpu_asc'
    CPU_DESC = 'cpu_desc'
    MEMORY_ASC = 'memory_asc'
    MEMORY_DESC = 'memory_desc'
