import base64

import pytest

from nodectl.modules import crypto
from nodectl.modules.credentials import SecretManager, password_key
from nodectl.modules.errors import CommandError, NotFoundError, SecretNotFoundError
from nodectl.modules.models import AppKind, Application, Caller, PackageTemplate, SourceType

GITOPS = PackageTemplate(
    app_type="argocd",
    name="Argo CD",
    source_type=SourceType.HELM_REPO,
    source_ref="https://argoproj.github.io/argo-helm",
    chart_name="argo-cd",
    namespace="argocd",
    kind=AppKind.GITOPS,
)

APP = Application(
    id="app-7",
    name="Argo CD",
    app_type="argocd",
    app_version="2.9.0",
    subdomain="cd",
    domain="example.com",
    node_id="n1",
    namespace="argocd",
)


def encoded(value):
    return base64.b64encode(value.encode()).decode()


def test_candidate_names_are_deduplicated():
    template = PackageTemplate(
        app_type="ide",
        name="Editor",
        source_type=SourceType.GIT,
        source_ref="github.com/x/chart",
        chart_name="editor",
        kind=AppKind.EDITOR,
        secret_names=["{release}-code-server"],
    )
    app = Application(
        id="app-1", name="e", app_type="ide", app_version="1", subdomain="ide", domain="", node_id="n1"
    )
    assert SecretManager.candidate_names(app, template) == ["ide-app-1-code-server", "ide-app-1"]


def test_capture_tries_alternate_names(pool, dialer, store, caller, endpoint):
    dialer.respond("get secret -n argocd argocd-secret ", 0, encoded("admin-pass"))
    manager = SecretManager(pool, store)

    secret = manager.capture(endpoint, caller, APP, GITOPS)

    assert secret.secret_name == "argocd-secret"
    assert dialer.index("argocd-initial-admin-secret") < dialer.index("argocd-secret ")
    assert manager.get(caller, "app-7") == "admin-pass"
    stored = store.get(caller.account_id, password_key("app-7"))
    assert "admin-pass" not in stored["password"]


def test_capture_without_any_secret(pool, store, caller, endpoint):
    with pytest.raises(SecretNotFoundError):
        SecretManager(pool, store).capture(endpoint, caller, APP, GITOPS)
    assert store.get(caller.account_id, password_key("app-7")) is None


def test_get_without_capture(pool, store, caller):
    with pytest.raises(NotFoundError):
        SecretManager(pool, store).get(caller, "app-7")


def test_rotate_patches_restarts_then_persists(pool, dialer, store, caller, endpoint):
    store.put(caller.account_id, password_key("app-7"), {
        "password": crypto.encrypt("old-password", caller.key_material),
        "secret_name": "argocd-initial-admin-secret",
    })
    manager = SecretManager(pool, store)

    manager.rotate(endpoint, caller, APP, GITOPS, "brand-new-pass")

    patch = dialer.index("kubectl patch secret argocd-initial-admin-secret -n argocd")
    restart = dialer.index("kubectl rollout restart deployment -n argocd -l app.kubernetes.io/instance=cd-app-7")
    assert patch < restart
    assert encoded("brand-new-pass") in dialer.commands[patch]
    assert manager.get(caller, "app-7") == "brand-new-pass"


def test_rotate_failure_keeps_old_password(pool, dialer, store, caller, endpoint):
    store.put(caller.account_id, password_key("app-7"), {
        "password": crypto.encrypt("old-password", caller.key_material),
        "secret_name": "argocd-initial-admin-secret",
    })
    dialer.respond("kubectl patch", 1, "forbidden")
    manager = SecretManager(pool, store)

    with pytest.raises(CommandError):
        manager.rotate(endpoint, caller, APP, GITOPS, "brand-new-pass")

    assert not dialer.ran("rollout restart")
    assert manager.get(caller, "app-7") == "old-password"


def test_rotate_rejects_short_password(pool, store, caller, endpoint):
    with pytest.raises(ValueError):
        SecretManager(pool, store).rotate(endpoint, caller, APP, GITOPS, "short")


def test_password_survives_token_refresh(pool, dialer, store, caller, endpoint):
    dialer.respond("get secret -n argocd argocd-initial-admin-secret", 0, encoded("admin-pass"))
    manager = SecretManager(pool, store)
    manager.capture(endpoint, caller, APP, GITOPS)

    refreshed = Caller(account_id=caller.account_id, token="token-a-refreshed", key_material=caller.key_material)

    assert manager.get(refreshed, "app-7") == "admin-pass"
