"""Node lifecycle: creation, power control and connection details."""
import logging
from typing import Any, Callable, Dict, List, Optional, Tuple

from .collaborators import ConfigStore, ProviderClient
from .errors import ConnectivityError, NotFoundError
from .health import HealthChecker
from .models import (
    Caller,
    HealthReport,
    PowerAction,
    RemoteEndpoint,
    ServerType,
    ServerTypeSort,
    utcnow,
)
from .pipeline import ProvisioningPipeline
from .ssh import load_private_key
from .tasks import TaskRunner

logger = logging.getLogger("nodes")

SSH_CONFIG_KEY = "config:ssh"

# Status a node reports right after each power action is accepted
POWER_TRANSITIONS: Dict[PowerAction, str] = {
    PowerAction.POWER_ON: "starting",
    PowerAction.POWER_OFF: "stopping",
    PowerAction.REBOOT: "rebooting",
}

SERVER_TYPE_ORDER: Dict[ServerTypeSort, Tuple[Callable[[ServerType], Any], bool]] = {
    ServerTypeSort.PRICE_ASC: (lambda t: t.price, False),
    ServerTypeSort.PRICE_DESC: (lambda t: t.price, True),
    ServerTypeSort.CPU_ASC: (lambda t: t.cores, False),
    ServerTypeSort.CPU_DESC: (lambda t: t.cores, True),
    ServerTypeSort.MEMORY_ASC: (lambda t: t.memory, False),
    ServerTypeSort.MEMORY_DESC: (lambda t: t.memory, True),
}


def node_key(node_id: str) -> str:
    return f"node:{node_id}:config"


class NodeService:
    """Creates nodes through the provider and tracks them in the config store."""

    def __init__(
        self,
        store: ConfigStore,
        provider: ProviderClient,
        tasks: TaskRunner,
        pipeline: ProvisioningPipeline,
        health: Optional[HealthChecker] = None,
    ):
        self.store = store
        self.provider = provider
        self.tasks = tasks
        self.pipeline = pipeline
        self.health = health or HealthChecker(pipeline.pool)

    def create_node(
        self, caller: Caller, name: str, server_type: str, location: str, domain: str
    ) -> Dict[str, Any]:
        """Create a server and start provisioning it in the background.

        The returned record is final from the caller's point of view; DNS,
        TLS and ingress setup happen afterwards and only log on failure.

        Raises:
            NotFoundError: If the account has no SSH key configured
        """
        ssh = self._ssh_config(caller)
        server = self.provider.create_server(name, server_type, location, ssh.get("public_key", ""))
        record = {
            "id": server.id,
            "name": server.name,
            "ip": server.ip,
            "domain": domain,
            "server_type": server_type,
            "location": location,
            "ssh_user": "root",
            "ssh_port": 22,
            "status": server.status,
            "created_at": utcnow(),
        }
        self.store.put(caller.account_id, node_key(server.id), record)
        logger.info(f"🖥️  Created node {server.name} ({server.id}) at {server.ip}")

        endpoint = self._endpoint(record, ssh["private_key"])
        self.tasks.submit(
            f"provision node {server.id}", self.pipeline.run, caller, server.id, domain, endpoint
        )
        return record

    def get_node(self, caller: Caller, node_id: str) -> Dict[str, Any]:
        record = self.store.get(caller.account_id, node_key(node_id))
        if record is None:
            raise NotFoundError(f"Node {node_id} not found")
        return record

    def list_nodes(self, caller: Caller) -> List[Dict[str, Any]]:
        keys = self.store.list_keys(caller.account_id, "node:")
        records = [self.store.get(caller.account_id, k) for k in keys if k.endswith(":config")]
        return [r for r in records if r is not None]

    def delete_node(self, caller: Caller, node_id: str) -> None:
        self.get_node(caller, node_id)
        self.provider.delete_server(node_id)
        self.store.delete(caller.account_id, node_key(node_id))
        logger.info(f"🗑️  Deleted node {node_id}")

    def power(self, caller: Caller, node_id: str, action: PowerAction) -> str:
        """Apply a power action and return the node's transitional status."""
        record = self.get_node(caller, node_id)
        self.provider.power(node_id, action)
        record["status"] = POWER_TRANSITIONS[action]
        self.store.put(caller.account_id, node_key(node_id), record)
        logger.info(f"⚡ {action.value} requested for node {node_id}")
        return record["status"]

    def list_server_types(self, sort: ServerTypeSort = ServerTypeSort.PRICE_ASC) -> List[ServerType]:
        key, reverse = SERVER_TYPE_ORDER[sort]
        return sorted(self.provider.list_server_types(), key=key, reverse=reverse)

    def endpoint_for(self, caller: Caller, node_id: str) -> RemoteEndpoint:
        """SSH endpoint for one of the caller's nodes.

        Raises:
            NotFoundError: If the node or the account's SSH key is unknown
        """
        record = self.get_node(caller, node_id)
        return self._endpoint(record, self._ssh_config(caller)["private_key"])

    def check_health(self, caller: Caller, node_id: str) -> HealthReport:
        return self.health.check(self.endpoint_for(caller, node_id))

    def set_ssh_key(self, caller: Caller, private_key: str, public_key: str = "") -> str:
        """Store the account's node key pair; returns the key's fingerprint."""
        try:
            load_private_key(private_key)
        except ConnectivityError as e:
            raise ValueError(str(e)) from e
        self.store.put(caller.account_id, SSH_CONFIG_KEY, {
            "private_key": private_key,
            "public_key": public_key,
        })
        return RemoteEndpoint(host="", credential=private_key).fingerprint

    def _ssh_config(self, caller: Caller) -> Dict[str, str]:
        ssh = self.store.get(caller.account_id, SSH_CONFIG_KEY)
        if not ssh or not ssh.get("private_key"):
            raise NotFoundError("No SSH key configured for this account")
        return ssh

    @staticmethod
    def _endpoint(record: Dict[str, Any], private_key: str) -> RemoteEndpoint:
        return RemoteEndpoint(
            host=record["ip"],
            credential=private_key,
            ssh_user=record.get("ssh_user", "root"),
            port=int(record.get("ssh_port", 22)),
        )
