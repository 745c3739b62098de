"""
Interfaces of the external services nodectl depends on.

Concrete clients (cloud provider SDK, DNS/PKI provider, encrypted KV store,
token issuer) live outside this package; everything here is consumed as a
narrow synchronous call that returns a value or raises.
"""
from typing import Any, List, Optional, Protocol, runtime_checkable

from .models import PackageTemplate, PowerAction, Server, ServerType, SSLMaterial


@runtime_checkable
class ProviderClient(Protocol):
    """Cloud provider that creates and controls virtual machines."""

    def create_server(self, name: str, server_type: str, location: str, ssh_public_key: str) -> Server:
        """Create a VM and return it once it has an address."""
        ...

    def delete_server(self, server_id: str) -> None:
        ...

    def power(self, server_id: str, action: PowerAction) -> None:
        """Apply a power operation to a VM."""
        ...

    def list_server_types(self) -> List[ServerType]:
        ...


@runtime_checkable
class CertAuthority(Protocol):
    """Issues TLS certificates for domains."""

    def issue_cert(self, domain: str) -> SSLMaterial:
        ...


@runtime_checkable
class DNSClient(Protocol):
    """Manages DNS records for domains."""

    def point_domain(self, domain: str, ip: str) -> None:
        """Point the domain (and its wildcard) at an IP address."""
        ...


@runtime_checkable
class ConfigStore(Protocol):
    """Per-account key-value store.

    Values are JSON-compatible structures; keys follow the ``app:<id>``,
    ``app:<id>:password``, ``node:<id>:config`` and ``domain:<d>:ssl``
    conventions.
    """

    def get(self, account_id: str, key: str) -> Optional[Any]:
        """Return the stored value, or None when the key is absent."""
        ...

    def put(self, account_id: str, key: str, value: Any) -> None:
        ...

    def delete(self, account_id: str, key: str) -> None:
        ...

    def list_keys(self, account_id: str, prefix: str = "") -> List[str]:
        ...


@runtime_checkable
class Identity(Protocol):
    """Validates session tokens."""

    def validate(self, token: str) -> str:
        """Return the account ID the token belongs to, raising on invalid tokens."""
        ...


@runtime_checkable
class VersionCatalog(Protocol):
    """Resolves the newest released version of an application."""

    def latest(self, template: PackageTemplate) -> str:
        ...
