"""Per-domain TLS certificate storage."""
import logging
from typing import Optional

from .collaborators import CertAuthority, ConfigStore
from .errors import NodectlError
from .models import Caller, SSLMaterial

logger = logging.getLogger("certs")


def ssl_key(domain: str) -> str:
    return f"domain:{domain}:ssl"


class CertificateManager:
    """Looks up certificates in the config store, issuing them on demand."""

    def __init__(self, store: ConfigStore, authority: Optional[CertAuthority] = None):
        self.store = store
        self.authority = authority

    def lookup(self, caller: Caller, domain: str) -> Optional[SSLMaterial]:
        """Return stored SSL material for a domain, or None if none exists."""
        data = self.store.get(caller.account_id, ssl_key(domain))
        if not data or not data.get("certificate") or not data.get("private_key"):
            return None
        return SSLMaterial(
            domain=domain,
            certificate=data["certificate"],
            private_key=data["private_key"],
        )

    def ensure(self, caller: Caller, domain: str) -> SSLMaterial:
        """Return stored material or issue and store a new certificate.

        Raises:
            NodectlError: If no material is stored and no authority is configured
        """
        existing = self.lookup(caller, domain)
        if existing is not None:
            return existing
        if self.authority is None:
            raise NodectlError(f"No SSL material for {domain} and no certificate authority configured")

        logger.info(f"📜 Issuing certificate for {domain}")
        material = self.authority.issue_cert(domain)
        self.store.put(caller.account_id, ssl_key(domain), {
            "certificate": material.certificate,
            "private_key": material.private_key,
        })
        return material
