"""Post-creation provisioning: DNS, TLS and the default admin ingress."""
import logging
import time
from typing import Callable, Optional

from ..config import Config
from ..utils import dashed
from . import kube
from .certs import CertificateManager
from .collaborators import DNSClient
from .errors import NodectlError
from .models import Caller, RemoteEndpoint
from .ssh import SessionPool

logger = logging.getLogger("pipeline")

ADMIN_NAMESPACE = "argocd"
ADMIN_SERVICE = "argocd-server"
ADMIN_SERVICE_PORT = 80


class ProvisioningPipeline:
    """Finishes a freshly created node in the background.

    The node creation call has already returned by the time this runs, so
    no step raises: each failure is logged with enough context to follow up
    by hand and the pipeline stops there.
    """

    def __init__(
        self,
        pool: SessionPool,
        certs: CertificateManager,
        dns: Optional[DNSClient] = None,
        sleep: Callable[[float], None] = time.sleep,
        warmup_seconds: Optional[float] = None,
    ):
        self.pool = pool
        self.certs = certs
        self.dns = dns
        self.sleep = sleep
        self.warmup_seconds = Config.PIPELINE_WARMUP_SECONDS if warmup_seconds is None else warmup_seconds

    def run(self, caller: Caller, node_id: str, domain: str, endpoint: RemoteEndpoint) -> bool:
        """Run every provisioning step for a node.

        Args:
            caller: Account that owns the node
            node_id: Provider ID of the node (for log context)
            domain: Domain to serve the node under
            endpoint: SSH endpoint of the node

        Returns:
            bool: True if every step completed, False if the pipeline stopped early
        """
        context = f"node {node_id} ({endpoint.host}, {domain})"
        logger.info(f"🚀 Provisioning pipeline started for {context}")

        if self.dns is not None:
            try:
                self.dns.point_domain(domain, endpoint.host)
                logger.info(f"🌐 DNS for {domain} points at {endpoint.host}")
            except Exception as e:
                # DNS can be fixed up later; TLS and ingress do not depend on it
                logger.warning(f"⚠️  DNS configuration failed for {context}: {e}")

        if self.warmup_seconds:
            logger.debug(f"Waiting {self.warmup_seconds}s for {context} to finish cloud-init")
            self.sleep(self.warmup_seconds)

        try:
            ssl = self.certs.ensure(caller, domain)
        except Exception as e:
            logger.warning(f"⚠️  Could not obtain SSL material for {context}: {e}")
            return False

        try:
            session = self.pool.acquire(endpoint)
        except NodectlError as e:
            logger.warning(f"⚠️  Could not connect to {context}: {e}")
            return False

        steps = [
            ("install node certificate", lambda: kube.install_tls_material(session, ssl)),
            ("create TLS secret", lambda: kube.create_tls_secret(session, domain, ssl, ADMIN_NAMESPACE)),
            ("configure admin ingress", lambda: self._apply_admin_ingress(session, domain)),
        ]
        for description, step in steps:
            try:
                step()
            except NodectlError as e:
                logger.warning(f"⚠️  Failed to {description} for {context}: {e}")
                return False

        logger.info(f"✅ Provisioning pipeline finished for {context}")
        return True

    @staticmethod
    def _apply_admin_ingress(session, domain: str) -> None:
        name = f"{dashed(domain)}-argocd-ingress"
        ingress = kube.build_ingress(
            name=name,
            namespace=ADMIN_NAMESPACE,
            host=f"argocd.{domain}",
            service=ADMIN_SERVICE,
            port=ADMIN_SERVICE_PORT,
            tls_secret=kube.tls_secret_name(domain),
        )
        kube.apply_manifest(session, name, kube.to_manifest(ingress))
        logger.info(f"🔀 Ingress argocd.{domain} configured")
