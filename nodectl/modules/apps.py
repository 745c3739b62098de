"""Application records and their deployment lifecycle."""
import logging
import threading
import uuid
from typing import Callable, Dict, List, Optional, Tuple

from .catalog import Catalog
from .collaborators import ConfigStore, VersionCatalog
from .credentials import SecretManager
from .crypto import generate_password
from .deploy import DeploymentOrchestrator
from .errors import ConnectivityError, NodectlError, NotFoundError
from .models import Application, AppStatus, Caller, RemoteEndpoint, utcnow
from .nodes import NodeService
from .tasks import TaskRunner

logger = logging.getLogger("apps")

LATEST = "latest"


def app_key(app_id: str) -> str:
    return f"app:{app_id}"


def _new_app_id() -> str:
    return f"app-{uuid.uuid4().hex[:12]}"


class ApplicationService:
    """Accepts deploy requests and drives them to ``deployed`` or ``failed``.

    Install and upgrade run as background tasks. While an attempt is in
    flight the application lives only in memory; the store record is written
    once, after the attempt concludes, so it is never half-written. A newer
    upgrade supersedes an older one still running; only the newest attempt's
    outcome is persisted.
    """

    def __init__(
        self,
        store: ConfigStore,
        catalog: Catalog,
        orchestrator: DeploymentOrchestrator,
        secrets: SecretManager,
        tasks: TaskRunner,
        nodes: NodeService,
        versions: Optional[VersionCatalog] = None,
        id_factory: Callable[[], str] = _new_app_id,
    ):
        self.store = store
        self.catalog = catalog
        self.orchestrator = orchestrator
        self.secrets = secrets
        self.tasks = tasks
        self.nodes = nodes
        self.versions = versions
        self._id_factory = id_factory
        self._in_flight: Dict[Tuple[str, str], Application] = {}
        self._lock = threading.Lock()

    def create(
        self,
        caller: Caller,
        node_id: str,
        app_type: str,
        subdomain: str,
        version: Optional[str] = None,
        name: Optional[str] = None,
        description: str = "",
    ) -> Application:
        """Accept a deploy request and start installing in the background.

        Returns:
            Application: The accepted application with status ``pending``

        Raises:
            NotFoundError: If the application type or node is unknown
        """
        template = self.catalog.get(app_type)
        node = self.nodes.get_node(caller, node_id)
        endpoint = self.nodes.endpoint_for(caller, node_id)
        domain = node.get("domain", "")

        app = Application(
            id=self._id_factory(),
            name=name or template.name,
            app_type=app_type,
            app_version=self._resolve_version(template, version),
            subdomain=subdomain,
            domain=domain,
            node_id=node_id,
            node_name=node.get("name", ""),
            namespace=template.namespace,
            url=f"https://{subdomain}.{domain}" if domain else "",
            description=description,
        )
        self._track(caller, app)
        accepted = self._copy(app)
        logger.info(f"📥 Accepted {app_type} deployment {app.id} on node {node_id}")
        self.tasks.submit(f"deploy {app.id}", self._run_install, caller, endpoint, app, template)
        return accepted

    def upgrade(self, caller: Caller, app_id: str, version: str = LATEST) -> Application:
        """Start upgrading an application to a new version in the background.

        Returns:
            Application: A copy with status ``updating``
        """
        app = self._stored(caller, app_id)
        template = self.catalog.get(app.app_type)
        endpoint = self.nodes.endpoint_for(caller, app.node_id)
        target = self._resolve_version(template, version)

        app.status = AppStatus.UPDATING
        self._track(caller, app)
        accepted = self._copy(app)
        self.tasks.submit(f"upgrade {app.id}", self._run_upgrade, caller, endpoint, app, template, target)
        return accepted

    def delete(self, caller: Caller, app_id: str) -> None:
        """Remove an application; release cleanup on the node is best-effort."""
        app = self.get(caller, app_id)
        try:
            endpoint = self.nodes.endpoint_for(caller, app.node_id)
        except NotFoundError as e:
            logger.warning(f"Skipping release cleanup for {app_id}: {e}")
        else:
            self.orchestrator.uninstall(endpoint, app)

        with self._lock:
            self._in_flight.pop((caller.account_id, app_id), None)
            self.store.delete(caller.account_id, app_key(app_id))
            self.secrets.delete(caller, app_id)
        logger.info(f"🗑️  Deleted application {app_id}")

    def get(self, caller: Caller, app_id: str) -> Application:
        with self._lock:
            app = self._in_flight.get((caller.account_id, app_id))
        if app is not None:
            return self._copy(app)
        return self._stored(caller, app_id)

    def list(self, caller: Caller) -> List[Application]:
        apps: Dict[str, Application] = {}
        for key in self.store.list_keys(caller.account_id, "app:"):
            if key.count(":") != 1:
                continue
            data = self.store.get(caller.account_id, key)
            if data:
                app = Application.from_dict(data)
                apps[app.id] = app
        with self._lock:
            for (account_id, app_id), app in self._in_flight.items():
                if account_id == caller.account_id:
                    apps[app_id] = self._copy(app)
        return sorted(apps.values(), key=lambda a: a.created_at)

    def get_password(self, caller: Caller, app_id: str) -> str:
        self.get(caller, app_id)
        return self.secrets.get(caller, app_id)

    def rotate_password(self, caller: Caller, app_id: str, new_password: Optional[str] = None) -> str:
        """Set a new password on the running application and return it."""
        app = self._stored(caller, app_id)
        template = self.catalog.get(app.app_type)
        endpoint = self.nodes.endpoint_for(caller, app.node_id)
        password = new_password or generate_password()
        self.secrets.rotate(endpoint, caller, app, template, password)
        return password

    def retry_password_capture(self, caller: Caller, app_id: str) -> bool:
        """Re-attempt capturing the generated password after a failed install-time capture."""
        app = self._stored(caller, app_id)
        template = self.catalog.get(app.app_type)
        endpoint = self.nodes.endpoint_for(caller, app.node_id)
        return self.orchestrator.capture_password(endpoint, caller, app, template, wait=False)

    def release_status(self, caller: Caller, app_id: str) -> Optional[str]:
        app = self._stored(caller, app_id)
        return self.orchestrator.release_status(self.nodes.endpoint_for(caller, app.node_id), app)

    def _run_install(self, caller: Caller, endpoint: RemoteEndpoint, app: Application, template) -> Application:
        try:
            self.orchestrator.install(endpoint, caller, app, template)
            app.status = AppStatus.DEPLOYED
        except Exception as e:
            self._on_failure(endpoint, app, "Deployment", e)
        return self._conclude(caller, app)

    def _run_upgrade(
        self, caller: Caller, endpoint: RemoteEndpoint, app: Application, template, version: str
    ) -> Application:
        try:
            self.orchestrator.upgrade(endpoint, caller, app, template, version)
            app.app_version = version
            app.status = AppStatus.DEPLOYED
        except Exception as e:
            self._on_failure(endpoint, app, "Upgrade", e)
        return self._conclude(caller, app)

    def _on_failure(self, endpoint: RemoteEndpoint, app: Application, what: str, error: Exception) -> None:
        app.status = AppStatus.FAILED
        if isinstance(error, ConnectivityError):
            self.orchestrator.pool.mark_suspect(endpoint)
        if isinstance(error, NodectlError):
            logger.error(f"❌ {what} of {app.id} failed: {error}")
        else:
            logger.error(f"❌ {what} of {app.id} failed: {error}", exc_info=True)

    def _conclude(self, caller: Caller, app: Application) -> Application:
        """Persist an attempt's outcome if it is still the newest attempt for the app."""
        app.updated_at = utcnow()
        key = (caller.account_id, app.id)
        with self._lock:
            current = self._in_flight.get(key)
            if current is app:
                del self._in_flight[key]
                self.store.put(caller.account_id, app_key(app.id), app.to_dict())
                logger.info(f"Application {app.id} is {app.status.value}")
                return app
            if current is not None:
                logger.info(f"Discarding superseded attempt for {app.id} ({app.status.value})")
                return app
            if self.store.get(caller.account_id, app_key(app.id)) is None:
                # deleted while in flight; drop anything the attempt captured
                self.secrets.delete(caller, app.id)
                logger.info(f"Application {app.id} was deleted during its attempt")
        return app

    @staticmethod
    def _copy(app: Application) -> Application:
        return Application.from_dict(app.to_dict())

    def _track(self, caller: Caller, app: Application) -> None:
        with self._lock:
            self._in_flight[(caller.account_id, app.id)] = app

    def _stored(self, caller: Caller, app_id: str) -> Application:
        data = self.store.get(caller.account_id, app_key(app_id))
        if not data:
            raise NotFoundError(f"Application {app_id} not found")
        return Application.from_dict(data)

    def _resolve_version(self, template, version: Optional[str]) -> str:
        if version and version != LATEST:
            return version
        if self.versions is None:
            return LATEST
        try:
            return self.versions.latest(template)
        except NodectlError as e:
            logger.warning(f"Could not resolve latest {template.app_type} version, using '{LATEST}': {e}")
            return LATEST
