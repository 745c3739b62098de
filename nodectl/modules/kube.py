"""Kubernetes objects and kubectl operations on a node."""
import base64
import binascii
import json
import logging
import shlex
from typing import Any, Dict, Optional

import yaml
from kubernetes import client

from ..config import Config
from ..utils import dashed
from . import executor
from .models import CommandResult, SSLMaterial

logger = logging.getLogger("kube")


def to_manifest(obj: Any) -> str:
    """Serialize a kubernetes client model to a YAML manifest."""
    data = client.ApiClient().sanitize_for_serialization(obj)
    return yaml.safe_dump(data, default_flow_style=False, sort_keys=False)


def ensure_namespace(session, namespace: str) -> CommandResult:
    """Create a namespace if missing (idempotent)."""
    ns = shlex.quote(namespace)
    return executor.run(
        session,
        f"kubectl create namespace {ns} --dry-run=client -o yaml | kubectl apply -f -",
    )


def apply_manifest(session, name: str, manifest: str) -> CommandResult:
    """Write a manifest to a temp file, apply it, and remove the file.

    Raises:
        CommandError: If the manifest cannot be written or applied
    """
    path = f"/tmp/{name}.yaml"
    executor.upload(session, manifest, path)
    try:
        return executor.run(session, f"kubectl apply -f {shlex.quote(path)}")
    finally:
        executor.remove(session, path)


def tls_secret_name(domain: str) -> str:
    return f"{domain}-tls"


def create_tls_secret(session, domain: str, ssl: SSLMaterial, namespace: str) -> str:
    """Materialize certificate and key as a TLS secret in a namespace.

    Any existing secret of the same name is replaced.

    Args:
        session: Session to the node
        domain: Domain the certificate was issued for
        ssl: Certificate and private key
        namespace: Target namespace

    Returns:
        str: The secret name (``<domain>-tls``)

    Raises:
        CommandError: If any kubectl step fails
    """
    name = tls_secret_name(domain)
    cert_path = f"/tmp/{dashed(domain)}-cert.crt"
    key_path = f"/tmp/{dashed(domain)}-key.key"

    executor.upload(session, ssl.certificate, cert_path, mode=0o644)
    executor.upload(session, ssl.private_key, key_path, mode=0o600)
    try:
        ensure_namespace(session, namespace)
        ns = shlex.quote(namespace)
        executor.run(
            session,
            f"kubectl delete secret {shlex.quote(name)} -n {ns} --ignore-not-found",
        )
        executor.run(
            session,
            f"kubectl create secret tls {shlex.quote(name)} "
            f"--cert={shlex.quote(cert_path)} --key={shlex.quote(key_path)} -n {ns}",
        )
    finally:
        executor.remove(session, cert_path)
        executor.remove(session, key_path)

    logger.info(f"🔐 TLS secret {name} ready in namespace {namespace}")
    return name


def install_tls_material(session, ssl: SSLMaterial, cert_dir: Optional[str] = None) -> None:
    """Install the node-level certificate (644) and private key (600).

    Raises:
        CommandError: If the files cannot be installed
    """
    cert_dir = cert_dir or Config.CERT_DIR
    tmp_cert = f"/tmp/{dashed(ssl.domain)}-server.crt"
    tmp_key = f"/tmp/{dashed(ssl.domain)}-server.key"

    executor.upload(session, ssl.certificate, tmp_cert, mode=0o644)
    executor.upload(session, ssl.private_key, tmp_key, mode=0o600)
    try:
        target = shlex.quote(cert_dir)
        executor.run_privileged(
            session,
            f"mkdir -p {target} && "
            f"install -m 644 {shlex.quote(tmp_cert)} {target}/server.crt && "
            f"install -m 600 {shlex.quote(tmp_key)} {target}/server.key",
        )
    finally:
        executor.remove(session, tmp_cert)
        executor.remove(session, tmp_key)
    logger.info(f"🔐 Installed certificate for {ssl.domain} under {cert_dir}")


def build_ingress(
    name: str,
    namespace: str,
    host: str,
    service: str,
    port: int,
    tls_secret: str,
) -> client.V1Ingress:
    """Traefik ingress routing ``host`` over HTTPS to a service port."""
    backend = client.V1IngressBackend(
        service=client.V1IngressServiceBackend(
            name=service,
            port=client.V1ServiceBackendPort(number=port),
        )
    )
    return client.V1Ingress(
        api_version="networking.k8s.io/v1",
        kind="Ingress",
        metadata=client.V1ObjectMeta(
            name=name,
            namespace=namespace,
            annotations={
                "traefik.ingress.kubernetes.io/router.tls": "true",
                "traefik.ingress.kubernetes.io/router.entrypoints": "websecure",
            },
        ),
        spec=client.V1IngressSpec(
            ingress_class_name="traefik",
            tls=[client.V1IngressTLS(hosts=[host], secret_name=tls_secret)],
            rules=[
                client.V1IngressRule(
                    host=host,
                    http=client.V1HTTPIngressRuleValue(
                        paths=[
                            client.V1HTTPIngressPath(
                                path="/", path_type="Prefix", backend=backend
                            )
                        ]
                    ),
                )
            ],
        ),
    )


def build_configmap(name: str, namespace: str, data: Dict[str, str]) -> client.V1ConfigMap:
    return client.V1ConfigMap(
        api_version="v1",
        kind="ConfigMap",
        metadata=client.V1ObjectMeta(name=name, namespace=namespace),
        data=data,
    )


def read_secret_password(session, namespace: str, name: str) -> Optional[str]:
    """Read and decode the ``password`` field of a cluster secret.

    Returns:
        The decoded password, or None if the secret or field is absent
    """
    result = executor.run(
        session,
        f"kubectl get secret -n {shlex.quote(namespace)} {shlex.quote(name)} "
        "-o jsonpath='{.data.password}'",
        check=False,
    )
    if result.exit_code != 0 or not result.output:
        return None
    try:
        return base64.b64decode(result.output, validate=True).decode("utf-8")
    except (binascii.Error, UnicodeDecodeError) as e:
        logger.warning(f"Secret {namespace}/{name} has an undecodable password: {e}")
        return None


def patch_secret_password(session, namespace: str, name: str, password: str) -> CommandResult:
    encoded = base64.b64encode(password.encode("utf-8")).decode("ascii")
    patch = json.dumps({"data": {"password": encoded}})
    return executor.run(
        session,
        f"kubectl patch secret {shlex.quote(name)} -n {shlex.quote(namespace)} -p {shlex.quote(patch)}",
    )


def rollout_restart(session, namespace: str, release: str) -> CommandResult:
    """Restart every deployment belonging to a Helm release."""
    return executor.run(
        session,
        f"kubectl rollout restart deployment -n {shlex.quote(namespace)} "
        f"-l app.kubernetes.io/instance={shlex.quote(release)}",
    )
