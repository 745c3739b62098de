"""Wiring of the long-lived objects the API serves from."""
from dataclasses import dataclass
from typing import Optional

from ..config import Config
from ..modules.apps import ApplicationService
from ..modules.cache import TTLCache
from ..modules.catalog import Catalog
from ..modules.certs import CertificateManager
from ..modules.collaborators import CertAuthority, ConfigStore, DNSClient, Identity, ProviderClient, VersionCatalog
from ..modules.credentials import SecretManager
from ..modules.deploy import DeploymentOrchestrator
from ..modules.health import HealthChecker
from ..modules.nodes import NodeService
from ..modules.pipeline import ProvisioningPipeline
from ..modules.ssh import SessionPool
from ..modules.tasks import TaskRunner
from ..modules.terminal import TerminalRegistry
from ..modules.versions import ReleaseVersionCatalog
from ..store import JsonFileStore


@dataclass
class Services:
    """Everything a request handler may need; one instance per process."""
    pool: SessionPool
    tasks: TaskRunner
    store: ConfigStore
    catalog: Catalog
    nodes: NodeService
    apps: ApplicationService
    terminals: TerminalRegistry
    identity: Identity
    identity_cache: TTLCache
    secret_key: str

    def close(self) -> None:
        self.tasks.shutdown(wait_for_tasks=False)
        self.pool.close_all()


def build_services(
    provider: ProviderClient,
    identity: Identity,
    authority: Optional[CertAuthority] = None,
    dns: Optional[DNSClient] = None,
    store: Optional[ConfigStore] = None,
    versions: Optional[VersionCatalog] = None,
    pool: Optional[SessionPool] = None,
    tasks: Optional[TaskRunner] = None,
    catalog: Optional[Catalog] = None,
    secret_key: Optional[str] = None,
) -> Services:
    """Assemble the component graph around the given external clients."""
    store = store if store is not None else JsonFileStore()
    pool = pool if pool is not None else SessionPool()
    tasks = tasks if tasks is not None else TaskRunner()
    catalog = catalog if catalog is not None else Catalog()
    versions = versions if versions is not None else ReleaseVersionCatalog()

    certs = CertificateManager(store, authority)
    secrets = SecretManager(pool, store)
    orchestrator = DeploymentOrchestrator(pool, catalog, certs, secrets)
    pipeline = ProvisioningPipeline(pool, certs, dns)
    nodes = NodeService(store, provider, tasks, pipeline, HealthChecker(pool))
    apps = ApplicationService(store, catalog, orchestrator, secrets, tasks, nodes, versions)

    return Services(
        pool=pool,
        tasks=tasks,
        store=store,
        catalog=catalog,
        nodes=nodes,
        apps=apps,
        terminals=TerminalRegistry(pool),
        identity=identity,
        identity_cache=TTLCache(Config.IDENTITY_CACHE_TTL),
        secret_key=secret_key if secret_key is not None else Config.SECRET_KEY,
    )
