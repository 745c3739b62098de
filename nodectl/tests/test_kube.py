import base64

import pytest
import yaml

from nodectl.modules import kube
from nodectl.modules.errors import CommandError, DeploymentError
from nodectl.modules.helm import RemoteHelm
from nodectl.modules.models import SSLMaterial

SSL = SSLMaterial(domain="example.com", certificate="CERT-PEM", private_key="KEY-PEM")


def test_ingress_manifest():
    ingress = kube.build_ingress(
        name="example-com-argocd-ingress",
        namespace="argocd",
        host="argocd.example.com",
        service="argocd-server",
        port=80,
        tls_secret="example.com-tls",
    )
    manifest = yaml.safe_load(kube.to_manifest(ingress))

    assert manifest["kind"] == "Ingress"
    assert manifest["metadata"]["annotations"]["traefik.ingress.kubernetes.io/router.tls"] == "true"
    spec = manifest["spec"]
    assert spec["ingressClassName"] == "traefik"
    assert spec["tls"] == [{"hosts": ["argocd.example.com"], "secretName": "example.com-tls"}]
    backend = spec["rules"][0]["http"]["paths"][0]["backend"]["service"]
    assert backend == {"name": "argocd-server", "port": {"number": 80}}


def test_create_tls_secret_replaces_and_cleans_up(pool, dialer, endpoint):
    session = pool.acquire(endpoint)
    name = kube.create_tls_secret(session, "example.com", SSL, "tools")

    assert name == "example.com-tls"
    assert session.uploads["/tmp/example-com-cert.crt"] == "CERT-PEM"
    assert session.modes["/tmp/example-com-key.key"] == 0o600
    assert dialer.index("kubectl delete secret example.com-tls -n tools --ignore-not-found") < dialer.index(
        "kubectl create secret tls example.com-tls"
    )
    assert dialer.ran("rm -f /tmp/example-com-key.key")


def test_create_tls_secret_cleans_up_on_failure(pool, dialer, endpoint):
    dialer.respond("create secret tls", 1, "error")
    with pytest.raises(CommandError):
        kube.create_tls_secret(pool.acquire(endpoint), "example.com", SSL, "tools")
    assert dialer.ran("rm -f /tmp/example-com-cert.crt")
    assert dialer.ran("rm -f /tmp/example-com-key.key")


def test_install_tls_material(pool, dialer, endpoint):
    kube.install_tls_material(pool.acquire(endpoint), SSL, cert_dir="/opt/nodectl/ssl")
    assert dialer.ran("install -m 600 /tmp/example-com-server.key /opt/nodectl/ssl/server.key")


def test_read_secret_password(pool, dialer, endpoint):
    dialer.respond("ok-secret", 0, base64.b64encode(b"pa55word").decode())
    dialer.respond("bad-secret", 0, "%%%")
    session = pool.acquire(endpoint)
    assert kube.read_secret_password(session, "ns", "ok-secret") == "pa55word"
    assert kube.read_secret_password(session, "ns", "bad-secret") is None
    assert kube.read_secret_password(session, "ns", "missing") is None


def test_helm_repo_add_falls_back_to_update(pool, dialer, endpoint):
    dialer.respond("helm repo add", 1, "repository name (dash) already exists")
    RemoteHelm(pool.acquire(endpoint)).add_repo("dash", "https://charts.example.com")
    assert dialer.commands[-1] == "helm repo update dash"


def test_helm_install_without_pinned_version(pool, dialer, endpoint):
    RemoteHelm(pool.acquire(endpoint)).install("r", "repo/chart", "ns", "/tmp/v.yaml")
    assert dialer.commands[-1] == "helm install r repo/chart --namespace ns --values /tmp/v.yaml --wait --timeout 10m"


def test_helm_status(pool, dialer, endpoint):
    dialer.respond("helm status present", 0, '{"info": {"status": "deployed"}}')
    dialer.respond("helm status absent", 1, "Error: release: not found")
    helm = RemoteHelm(pool.acquire(endpoint))
    assert helm.status("present", "ns") == "deployed"
    assert helm.status("absent", "ns") is None


def test_helm_failure_is_deployment_error(pool, dialer, endpoint):
    dialer.respond("helm uninstall", 1, "boom")
    with pytest.raises(DeploymentError):
        RemoteHelm(pool.acquire(endpoint)).uninstall("r", "ns")
