"""Application password lifecycle: capture, retrieval and rotation."""
import logging
from typing import Dict, List, Optional

from . import crypto, kube
from .collaborators import ConfigStore
from .errors import NotFoundError, SecretNotFoundError
from .models import AppKind, AppSecret, Application, Caller, PackageTemplate, RemoteEndpoint
from .ssh import SessionPool
from .values import release_name

logger = logging.getLogger("credentials")

MIN_PASSWORD_LENGTH = 8

# Names charts use for their generated credential, per application family
ALTERNATE_SECRET_NAMES: Dict[AppKind, List[str]] = {
    AppKind.GITOPS: [
        "argocd-initial-admin-secret",
        "{release}-argocd-initial-admin-secret",
        "argocd-secret",
        "{release}-argocd-secret",
    ],
    AppKind.EDITOR: [
        "{release}-code-server",
        "{release}",
    ],
    AppKind.GENERIC: [
        "{release}",
    ],
}


def password_key(app_id: str) -> str:
    return f"app:{app_id}:password"


class SecretManager:
    """Moves generated application passwords between the cluster and the store.

    Passwords are stored encrypted with the caller's per-account key
    material, under ``app:<id>:password`` in the caller's account.
    """

    def __init__(self, pool: SessionPool, store: ConfigStore):
        self.pool = pool
        self.store = store

    @staticmethod
    def candidate_names(app: Application, template: PackageTemplate) -> List[str]:
        """Secret names to try, in order, without duplicates."""
        release = release_name(app.subdomain, app.id)
        names = []
        for pattern in list(template.secret_names) + ALTERNATE_SECRET_NAMES[template.kind]:
            name = pattern.format(release=release)
            if name not in names:
                names.append(name)
        return names

    def capture(
        self, endpoint: RemoteEndpoint, caller: Caller, app: Application, template: PackageTemplate
    ) -> AppSecret:
        """Read the generated password from the cluster and persist it encrypted.

        Raises:
            SecretNotFoundError: If none of the candidate secrets holds a password
            ConnectivityError: If the node cannot be reached
        """
        session = self.pool.acquire(endpoint)
        names = self.candidate_names(app, template)
        for name in names:
            password = kube.read_secret_password(session, app.namespace, name)
            if not password:
                logger.debug(f"No password in secret {app.namespace}/{name}")
                continue
            secret = AppSecret(
                app_id=app.id,
                encrypted_password=crypto.encrypt(password, caller.key_material),
                secret_name=name,
            )
            self._persist(caller, secret)
            logger.info(f"🔑 Captured password for {app.id} from secret {name}")
            return secret

        raise SecretNotFoundError(
            f"No password secret found for {app.id} in namespace {app.namespace} "
            f"(tried: {', '.join(names)})"
        )

    def get(self, caller: Caller, app_id: str) -> str:
        """Decrypt the stored password for one of the caller's applications.

        Raises:
            NotFoundError: If no password has been captured for the application
        """
        data = self.store.get(caller.account_id, password_key(app_id))
        if not data or not data.get("password"):
            raise NotFoundError(f"No stored password for application {app_id}")
        return crypto.decrypt(data["password"], caller.key_material)

    def rotate(
        self,
        endpoint: RemoteEndpoint,
        caller: Caller,
        app: Application,
        template: PackageTemplate,
        new_password: str,
    ) -> AppSecret:
        """Apply a new password to the cluster, restart the workload, then persist.

        Nothing is stored unless the patch and restart both succeed.

        Raises:
            ValueError: If the password is too short
            SecretNotFoundError: If the application's secret cannot be located
            CommandError: If patching or restarting fails
        """
        if len(new_password) < MIN_PASSWORD_LENGTH:
            raise ValueError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters")

        session = self.pool.acquire(endpoint)
        name = self._locate_secret(session, caller, app, template)

        kube.patch_secret_password(session, app.namespace, name, new_password)
        kube.rollout_restart(session, app.namespace, release_name(app.subdomain, app.id))

        secret = AppSecret(
            app_id=app.id,
            encrypted_password=crypto.encrypt(new_password, caller.key_material),
            secret_name=name,
        )
        self._persist(caller, secret)
        logger.info(f"🔑 Rotated password for {app.id}")
        return secret

    def delete(self, caller: Caller, app_id: str) -> None:
        self.store.delete(caller.account_id, password_key(app_id))

    def _locate_secret(
        self, session, caller: Caller, app: Application, template: PackageTemplate
    ) -> str:
        stored: Optional[dict] = self.store.get(caller.account_id, password_key(app.id))
        if stored and stored.get("secret_name"):
            return stored["secret_name"]
        for name in self.candidate_names(app, template):
            if kube.read_secret_password(session, app.namespace, name):
                return name
        raise SecretNotFoundError(f"No password secret found for {app.id}")

    def _persist(self, caller: Caller, secret: AppSecret) -> None:
        self.store.put(caller.account_id, password_key(secret.app_id), {
            "password": secret.encrypted_password,
            "secret_name": secret.secret_name,
        })
