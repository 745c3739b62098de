"""Application deployment onto a node with Helm."""
import json
import logging
import shlex
import time
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional

from . import executor, kube
from .catalog import Catalog
from .certs import CertificateManager
from .credentials import SecretManager
from .errors import CommandError, DeploymentError, NodectlError
from .helm import RemoteHelm
from .models import AppKind, Application, Caller, PackageTemplate, RemoteEndpoint, SourceType
from .ssh import SessionPool
from .values import (
    builtin_values,
    normalize_repo_url,
    pinned_chart_version,
    release_name,
    render_values,
)

logger = logging.getLogger("deploy")

EDITOR_SETTINGS = {
    "workbench.colorTheme": "Default Dark Modern",
    "editor.fontSize": 14,
    "editor.tabSize": 2,
    "editor.formatOnSave": True,
    "files.autoSave": "afterDelay",
    "terminal.integrated.defaultProfile.linux": "bash",
    "telemetry.telemetryLevel": "off",
}

ARGOCD_CLI_INSTALL = (
    'ARCH=$(uname -m); '
    'case "$ARCH" in x86_64) ARCH=amd64;; aarch64|arm64) ARCH=arm64;; esac; '
    'curl -sSL -o /usr/local/bin/argocd '
    'https://github.com/argoproj/argo-cd/releases/latest/download/argocd-linux-$ARCH '
    '&& chmod +x /usr/local/bin/argocd'
)


@dataclass
class DeployOutcome:
    """What an install or upgrade did, including skipped conveniences."""
    release: str
    chart_ref: str
    chart_version: Optional[str] = None
    password_captured: bool = False
    warnings: List[str] = field(default_factory=list)


class DeploymentOrchestrator:
    """Installs, upgrades and removes Helm releases for applications.

    Steps marked critical (namespace, source resolution, values upload, the
    Helm call itself, TLS secret creation) raise. Conveniences (pre-install
    hooks, password capture, temp-file cleanup) only log a warning.
    """

    def __init__(
        self,
        pool: SessionPool,
        catalog: Catalog,
        certs: CertificateManager,
        secrets: SecretManager,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.pool = pool
        self.catalog = catalog
        self.certs = certs
        self.secrets = secrets
        self.sleep = sleep
        self.pre_install_hooks: Dict[AppKind, Callable] = {
            AppKind.EDITOR: self._write_editor_settings,
            AppKind.GITOPS: self._install_gitops_cli,
        }

    def install(
        self,
        endpoint: RemoteEndpoint,
        caller: Caller,
        app: Application,
        template: PackageTemplate,
    ) -> DeployOutcome:
        """Deploy an application release onto a node.

        Args:
            endpoint: Node to deploy on
            caller: Account the application belongs to
            app: Application record (id, subdomain, domain, version, namespace)
            template: Catalog entry describing the chart and values

        Returns:
            DeployOutcome: Release details and any best-effort warnings

        Raises:
            ConnectivityError: If the node cannot be reached
            TemplateError: If the values template cannot be rendered
            DeploymentError: If a critical remote step fails
        """
        session = self.pool.acquire(endpoint)
        release = release_name(app.subdomain, app.id)
        namespace = app.namespace or template.namespace
        logger.info(f"📦 Installing {template.app_type} as {release} in {namespace} on {endpoint.host}")

        self._critical(f"create namespace {namespace}", kube.ensure_namespace, session, namespace)
        helm = RemoteHelm(session)
        chart_ref = self._resolve_source(session, helm, app, template)
        version = pinned_chart_version(template.chart_version)
        values_path = self._upload_values(session, app, template, release, app.app_version)

        outcome = DeployOutcome(release=release, chart_ref=chart_ref, chart_version=version)
        try:
            hook = self.pre_install_hooks.get(template.kind)
            if hook is not None:
                try:
                    hook(session, release, namespace)
                except NodectlError as e:
                    self._warn(outcome, f"Pre-install step for {template.kind.value} failed: {e}")

            helm.install(release, chart_ref, namespace, values_path, version=version)
            logger.info(f"✅ Release {release} installed")
        finally:
            executor.remove(session, values_path)

        if app.domain:
            ssl = self.certs.lookup(caller, app.domain)
            if ssl is None:
                self._warn(outcome, f"No SSL material for {app.domain}; skipping TLS secret")
            else:
                self._critical(
                    f"create TLS secret for {app.domain}",
                    kube.create_tls_secret, session, app.domain, ssl, namespace,
                )

        if template.has_password:
            outcome.password_captured = self.capture_password(endpoint, caller, app, template, outcome)
        return outcome

    def capture_password(
        self,
        endpoint: RemoteEndpoint,
        caller: Caller,
        app: Application,
        template: PackageTemplate,
        outcome: Optional[DeployOutcome] = None,
        wait: bool = True,
    ) -> bool:
        """Best-effort capture of the generated password; False on failure."""
        if wait and template.password_grace_seconds:
            logger.debug(f"Waiting {template.password_grace_seconds}s for {app.id} to generate its password")
            self.sleep(template.password_grace_seconds)
        try:
            self.secrets.capture(endpoint, caller, app, template)
        except NodectlError as e:
            message = f"Password capture for {app.id} failed, it can be retried later: {e}"
            if outcome is not None:
                self._warn(outcome, message)
            else:
                logger.warning(message)
            return False
        return True

    def upgrade(
        self,
        endpoint: RemoteEndpoint,
        caller: Caller,
        app: Application,
        template: PackageTemplate,
        version: str,
    ) -> DeployOutcome:
        """Re-render values for a new application version and upgrade the release.

        The chart version stays pinned to the template's; ``version`` only
        changes the rendered values.

        Raises:
            ConnectivityError: If the node cannot be reached
            TemplateError: If the values template cannot be rendered
            DeploymentError: If the upgrade fails
        """
        session = self.pool.acquire(endpoint)
        release = release_name(app.subdomain, app.id)
        namespace = app.namespace or template.namespace
        logger.info(f"⬆️  Upgrading {release} to {version}")

        helm = RemoteHelm(session)
        chart_ref = self._resolve_source(session, helm, app, template)
        chart_version = pinned_chart_version(template.chart_version)
        values_path = self._upload_values(session, app, template, release, version)
        try:
            helm.upgrade(release, chart_ref, namespace, values_path, version=chart_version)
        finally:
            executor.remove(session, values_path)

        logger.info(f"✅ Release {release} upgraded to {version}")
        return DeployOutcome(release=release, chart_ref=chart_ref, chart_version=chart_version)

    def uninstall(self, endpoint: RemoteEndpoint, app: Application) -> bool:
        """Remove an application's release; failures are logged, not raised."""
        release = release_name(app.subdomain, app.id)
        try:
            session = self.pool.acquire(endpoint)
            RemoteHelm(session).uninstall(release, app.namespace)
        except NodectlError as e:
            logger.warning(f"Failed to uninstall {release} from {endpoint.host}: {e}")
            return False
        logger.info(f"🗑️  Uninstalled {release}")
        return True

    def release_status(self, endpoint: RemoteEndpoint, app: Application) -> Optional[str]:
        """Current Helm status of an application's release, if it exists."""
        session = self.pool.acquire(endpoint)
        return RemoteHelm(session).status(release_name(app.subdomain, app.id), app.namespace)

    def _resolve_source(
        self, session, helm: RemoteHelm, app: Application, template: PackageTemplate
    ) -> str:
        """Make the chart available on the node and return its reference."""
        if template.source_type is SourceType.GIT:
            clone_dir = f"/tmp/{app.id}-chart"
            repo_url = normalize_repo_url(template.source_ref)
            self._critical(
                f"clone {repo_url}",
                executor.run,
                session,
                f"rm -rf {shlex.quote(clone_dir)} && "
                f"git clone --depth 1 {shlex.quote(repo_url)} {shlex.quote(clone_dir)}",
            )
            return f"{clone_dir}/{template.chart_name}"

        helm.add_repo(template.app_type, template.source_ref)
        helm.update_repos()
        return f"{template.app_type}/{template.chart_name}"

    def _upload_values(
        self,
        session,
        app: Application,
        template: PackageTemplate,
        release: str,
        version: str,
    ) -> str:
        raw = self.catalog.load_values(template)
        rendered = render_values(
            raw,
            builtin_values(version, app.subdomain, app.domain, release),
            template.placeholders,
        )
        path = f"/tmp/{release}-values.yaml"
        self._critical(f"write values to {path}", executor.upload, session, rendered, path)
        return path

    def _write_editor_settings(self, session, release: str, namespace: str) -> None:
        configmap = kube.build_configmap(
            f"{release}-vscode-settings",
            namespace,
            {"settings.json": json.dumps(EDITOR_SETTINGS, indent=2)},
        )
        kube.apply_manifest(session, f"{release}-vscode-settings", kube.to_manifest(configmap))
        logger.info(f"📝 Default editor settings written for {release}")

    def _install_gitops_cli(self, session, release: str, namespace: str) -> None:
        result = executor.run_privileged(session, ARGOCD_CLI_INSTALL)
        logger.info(f"🔧 ArgoCD CLI installed ({result.note})")

    @staticmethod
    def _critical(description: str, fn: Callable, *args):
        try:
            return fn(*args)
        except CommandError as e:
            raise DeploymentError(f"Failed to {description}: {e}") from e

    @staticmethod
    def _warn(outcome: DeployOutcome, message: str) -> None:
        logger.warning(f"⚠️  {message}")
        outcome.warnings.append(message)
