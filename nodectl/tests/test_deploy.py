import base64
import logging
import threading

import pytest
import yaml

from conftest import FakeProvider, no_sleep
from nodectl.modules.apps import ApplicationService
from nodectl.modules.catalog import Catalog
from nodectl.modules.certs import CertificateManager, ssl_key
from nodectl.modules.credentials import SecretManager
from nodectl.modules.deploy import DeploymentOrchestrator
from nodectl.modules.errors import DeploymentError, NotFoundError
from nodectl.modules.health import HealthChecker
from nodectl.modules.models import Application, AppStatus
from nodectl.modules.nodes import SSH_CONFIG_KEY, NodeService, node_key
from nodectl.modules.pipeline import ProvisioningPipeline
from nodectl.modules.tasks import TaskRunner

EDITOR_ENTRY = """
id: ide
name: Editor
kind: editor
chart:
  source_type: git
  repository: github.com/x/chart
  chart: editor
  version: 1.2.3
  namespace: tools
  values_template: ide.yaml
  placeholders:
    SETTINGS_CONFIGMAP: "{{RELEASE_NAME}}-vscode-settings"
password:
  grace_seconds: 5
  secret_names:
    - "{release}-code-server"
"""

EDITOR_VALUES = """
image:
  tag: "{{VERSION}}"
host: "{{SUBDOMAIN}}.{{DOMAIN}}"
settings: "{{SETTINGS_CONFIGMAP}}"
"""

DASHBOARD_ENTRY = """
id: dash
name: Dashboard
kind: generic
chart:
  source_type: helm_repo
  repository: https://charts.example.com/dash
  chart: dashboard
  version: 0.25.0
  namespace: dash
  values_template: dash.yaml
"""

DASHBOARD_VALUES = """
ingress:
  host: "{{SUBDOMAIN}}.{{DOMAIN}}"
"""

INSTALL_COMMAND = (
    "helm install ide-app-42 /tmp/app-42-chart/editor --namespace tools "
    "--values /tmp/ide-app-42-values.yaml --version 1.2.3 --wait --timeout 10m"
)


@pytest.fixture
def catalog(tmp_path):
    (tmp_path / "templates").mkdir()
    (tmp_path / "ide.yaml").write_text(EDITOR_ENTRY)
    (tmp_path / "templates" / "ide.yaml").write_text(EDITOR_VALUES)
    (tmp_path / "dash.yaml").write_text(DASHBOARD_ENTRY)
    (tmp_path / "templates" / "dash.yaml").write_text(DASHBOARD_VALUES)
    return Catalog(tmp_path)


@pytest.fixture
def tasks():
    runner = TaskRunner(max_workers=2)
    yield runner
    runner.shutdown()


@pytest.fixture
def apps(pool, store, caller, catalog, tasks):
    store.put(caller.account_id, SSH_CONFIG_KEY, {"private_key": "PEM-A"})
    store.put(caller.account_id, node_key("n1"), {
        "id": "n1", "name": "node-one", "ip": "203.0.113.10", "domain": "example.com",
    })
    store.put(caller.account_id, ssl_key("example.com"), {
        "certificate": "CERT-PEM", "private_key": "KEY-PEM",
    })

    certs = CertificateManager(store)
    secrets = SecretManager(pool, store)
    orchestrator = DeploymentOrchestrator(pool, catalog, certs, secrets, sleep=no_sleep)
    pipeline = ProvisioningPipeline(pool, certs, sleep=no_sleep, warmup_seconds=0)
    nodes = NodeService(store, FakeProvider(), tasks, pipeline, HealthChecker(pool))
    return ApplicationService(
        store, catalog, orchestrator, secrets, tasks, nodes, id_factory=lambda: "app-42"
    )


def password_output(value):
    return base64.b64encode(value.encode()).decode()


def test_install_end_to_end(apps, dialer, store, caller, tasks):
    dialer.respond("get secret -n tools ide-app-42-code-server", 0, password_output("s3cret-pass"))

    accepted = apps.create(caller, node_id="n1", app_type="ide", subdomain="ide", version="4.90.0")
    assert accepted.status is AppStatus.PENDING
    assert accepted.url == "https://ide.example.com"
    assert tasks.wait_all(timeout=10)

    assert dialer.ran("git clone --depth 1 https://github.com/x/chart /tmp/app-42-chart")
    assert INSTALL_COMMAND in dialer.commands
    assert dialer.index("kubectl create namespace tools") < dialer.index("git clone") < dialer.index("helm install")
    assert dialer.ran("rm -f /tmp/ide-app-42-values.yaml")

    values = yaml.safe_load(dialer.uploads["/tmp/ide-app-42-values.yaml"])
    assert values == {
        "image": {"tag": "4.90.0"},
        "host": "ide.example.com",
        "settings": "ide-app-42-vscode-settings",
    }
    assert "settings.json" in dialer.uploads["/tmp/ide-app-42-vscode-settings.yaml"]
    assert dialer.ran("kubectl create secret tls example.com-tls")

    app = apps.get(caller, "app-42")
    assert app.status is AppStatus.DEPLOYED
    assert store.get(caller.account_id, "app:app-42")["status"] == "deployed"
    assert apps.get_password(caller, "app-42") == "s3cret-pass"


def test_password_capture_failure_does_not_fail_deploy(apps, caller, tasks):
    apps.create(caller, node_id="n1", app_type="ide", subdomain="ide", version="4.90.0")
    assert tasks.wait_all(timeout=10)

    assert apps.get(caller, "app-42").status is AppStatus.DEPLOYED
    with pytest.raises(NotFoundError):
        apps.get_password(caller, "app-42")


def test_retry_password_capture(apps, dialer, caller, tasks):
    apps.create(caller, node_id="n1", app_type="ide", subdomain="ide", version="4.90.0")
    assert tasks.wait_all(timeout=10)

    dialer.respond("get secret -n tools ide-app-42-code-server", 0, password_output("later-pass"))
    assert apps.retry_password_capture(caller, "app-42") is True
    assert apps.get_password(caller, "app-42") == "later-pass"


def test_helm_failure_marks_app_failed(apps, dialer, store, caller, tasks):
    dialer.respond("helm install", 1, "Error: chart not found")
    apps.create(caller, node_id="n1", app_type="ide", subdomain="ide", version="4.90.0")
    assert tasks.wait_all(timeout=10)

    assert apps.get(caller, "app-42").status is AppStatus.FAILED
    assert store.get(caller.account_id, "app:app-42")["status"] == "failed"
    assert dialer.ran("rm -f /tmp/ide-app-42-values.yaml")


def test_upgrade_rerenders_values(apps, dialer, store, caller, tasks):
    apps.create(caller, node_id="n1", app_type="ide", subdomain="ide", version="4.90.0")
    assert tasks.wait_all(timeout=10)

    accepted = apps.upgrade(caller, "app-42", "4.91.0")
    assert accepted.status is AppStatus.UPDATING
    assert tasks.wait_all(timeout=10)

    assert dialer.ran(
        "helm upgrade ide-app-42 /tmp/app-42-chart/editor --namespace tools "
        "--values /tmp/ide-app-42-values.yaml --version 1.2.3"
    )
    record = store.get(caller.account_id, "app:app-42")
    assert record["app_version"] == "4.91.0"
    assert record["status"] == "deployed"


def test_delete_removes_release_and_records(apps, dialer, store, caller, tasks):
    dialer.respond("get secret -n tools ide-app-42-code-server", 0, password_output("s3cret-pass"))
    apps.create(caller, node_id="n1", app_type="ide", subdomain="ide", version="4.90.0")
    assert tasks.wait_all(timeout=10)

    apps.delete(caller, "app-42")

    assert dialer.ran("helm uninstall ide-app-42 --namespace tools")
    assert store.get(caller.account_id, "app:app-42") is None
    assert store.get(caller.account_id, "app:app-42:password") is None
    assert apps.list(caller) == []


def test_unknown_node(apps, caller):
    with pytest.raises(NotFoundError):
        apps.create(caller, node_id="missing", app_type="ide", subdomain="ide")


def test_failed_uninstall_still_removes_records(apps, dialer, store, caller, tasks):
    apps.create(caller, node_id="n1", app_type="ide", subdomain="ide", version="4.90.0")
    assert tasks.wait_all(timeout=10)
    dialer.respond("helm uninstall", 1, "Error: release: not found")

    apps.delete(caller, "app-42")

    assert dialer.ran("helm uninstall ide-app-42")
    assert store.get(caller.account_id, "app:app-42") is None
    with pytest.raises(NotFoundError):
        apps.get(caller, "app-42")


def test_install_without_ssl_material_still_deploys(apps, dialer, store, caller, tasks, caplog):
    store.delete(caller.account_id, ssl_key("example.com"))

    with caplog.at_level(logging.WARNING, logger="deploy"):
        apps.create(caller, node_id="n1", app_type="ide", subdomain="ide", version="4.90.0")
        assert tasks.wait_all(timeout=10)

    assert apps.get(caller, "app-42").status is AppStatus.DEPLOYED
    assert not dialer.ran("kubectl create secret tls")
    assert "No SSL material for example.com" in caplog.text


def test_helm_repo_source(apps, dialer, caller, catalog):
    app = Application(
        id="app-9", name="Dashboard", app_type="dash", app_version="latest",
        subdomain="dash", domain="example.com", node_id="n1", namespace="dash",
    )
    endpoint = apps.nodes.endpoint_for(caller, "n1")

    outcome = apps.orchestrator.install(endpoint, caller, app, catalog.get("dash"))

    assert outcome.chart_ref == "dash/dashboard"
    assert outcome.warnings == []
    assert (
        dialer.index("helm repo add dash https://charts.example.com/dash")
        < dialer.index("helm repo update")
        < dialer.index("helm install")
    )
    assert dialer.ran(
        "helm install dash-app-9 dash/dashboard --namespace dash "
        "--values /tmp/dash-app-9-values.yaml --version 0.25.0"
    )
    assert not dialer.ran("git clone")


def test_failing_pre_install_hook_does_not_abort(apps, dialer, caller, catalog):
    dialer.respond("kubectl apply -f /tmp/ide-app-42-vscode-settings", 1, "error: forbidden")
    app = Application(
        id="app-42", name="Editor", app_type="ide", app_version="4.90.0",
        subdomain="ide", domain="example.com", node_id="n1", namespace="tools",
    )
    endpoint = apps.nodes.endpoint_for(caller, "n1")

    outcome = apps.orchestrator.install(endpoint, caller, app, catalog.get("ide"))

    assert INSTALL_COMMAND in dialer.commands
    assert any("Pre-install step for editor failed" in w for w in outcome.warnings)


def test_newest_upgrade_outcome_wins(apps, store, caller, tasks, monkeypatch):
    apps.create(caller, node_id="n1", app_type="ide", subdomain="ide", version="4.90.0")
    assert tasks.wait_all(timeout=10)

    real_upgrade = apps.orchestrator.upgrade

    def upgrade(endpoint, caller, app, template, version):
        if version == "4.92.0":
            raise DeploymentError("helm upgrade exited 1")
        return real_upgrade(endpoint, caller, app, template, version)

    monkeypatch.setattr(apps.orchestrator, "upgrade", upgrade)
    serial = TaskRunner(max_workers=1)
    apps.tasks = serial
    hold = threading.Event()
    try:
        serial.submit("hold", hold.wait, 5)
        apps.upgrade(caller, "app-42", "4.91.0")
        apps.upgrade(caller, "app-42", "4.92.0")
        hold.set()
        assert serial.wait_all(timeout=10)
    finally:
        serial.shutdown()

    assert store.get(caller.account_id, "app:app-42")["status"] == "failed"
    assert apps.get(caller, "app-42").status is AppStatus.FAILED


def test_delete_during_install_leaves_no_records(apps, dialer, store, caller, tasks, monkeypatch):
    dialer.respond("get secret -n tools ide-app-42-code-server", 0, password_output("s3cret-pass"))
    release = threading.Event()
    real_install = apps.orchestrator.install

    def install(*args):
        release.wait(5)
        return real_install(*args)

    monkeypatch.setattr(apps.orchestrator, "install", install)
    apps.create(caller, node_id="n1", app_type="ide", subdomain="ide", version="4.90.0")

    apps.delete(caller, "app-42")
    release.set()
    assert tasks.wait_all(timeout=10)

    assert store.get(caller.account_id, "app:app-42") is None
    assert store.get(caller.account_id, "app:app-42:password") is None
    assert apps.list(caller) == []
