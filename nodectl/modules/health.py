"""Node health checks and provisioning status."""
import logging
import shlex
from typing import Callable, Optional, Sequence

from ..config import Config
from . import executor
from .errors import ConnectivityError, NodectlError
from .models import HealthReport, NodeStatus, RemoteEndpoint
from .ssh import SessionPool

logger = logging.getLogger("health")

MEMORY_COMMAND = "free -h | awk '/^Mem:/ {print $3 \"/\" $2}'"
DISK_COMMAND = "df -h / | awk 'NR==2 {print $3 \"/\" $2 \" (\" $5 \")\"}'"
UPTIME_COMMAND = "uptime -p"


class HealthChecker:
    """Reads a node's provisioning marker and service states.

    Every field is collected independently: a failing probe degrades that
    one field and never prevents the rest of the report from being built.
    """

    def __init__(
        self,
        pool: SessionPool,
        marker_path: Optional[str] = None,
        runtime_service: Optional[str] = None,
        services: Optional[Sequence[str]] = None,
        timeout: Optional[float] = None,
    ):
        self.pool = pool
        self.marker_path = marker_path or Config.STATUS_MARKER_PATH
        self.runtime_service = runtime_service or Config.RUNTIME_SERVICE
        self.services = tuple(services if services is not None else Config.MONITORED_SERVICES)
        self.timeout = timeout or Config.HEALTH_COMMAND_TIMEOUT

    def check(self, endpoint: RemoteEndpoint) -> HealthReport:
        """Check a node's health.

        Args:
            endpoint: The node to check

        Returns:
            HealthReport: Always returned; an unreachable node yields
            ``NodeStatus.UNREACHABLE`` with the connection error recorded
        """
        try:
            session = self.pool.acquire(endpoint)
        except ConnectivityError as e:
            logger.info(f"Node {endpoint} is unreachable: {e}")
            return HealthReport(
                status=NodeStatus.UNREACHABLE,
                message=NodeStatus.UNREACHABLE.message,
                error=str(e),
            )

        suspect = []

        def probe(command: str) -> Optional[str]:
            try:
                result = executor.run(session, command, timeout=self.timeout, check=False)
            except ConnectivityError as e:
                suspect.append(e)
                logger.debug(f"[{endpoint}] probe '{command}' failed: {e}")
                return None
            except NodectlError as e:
                logger.debug(f"[{endpoint}] probe '{command}' failed: {e}")
                return None
            return result.output or None

        report = self._read_status(probe)
        report.runtime_status = self._service_state(probe, self.runtime_service)
        report.services = {name: self._service_state(probe, name) for name in self.services}
        report.uptime = probe(UPTIME_COMMAND)
        report.memory = probe(MEMORY_COMMAND)
        report.disk = probe(DISK_COMMAND)

        if suspect:
            # the next caller gets a fresh dial; current holders keep theirs
            self.pool.mark_suspect(endpoint, session)

        logger.debug(f"[{endpoint}] health: {report.status.value}")
        return report

    def _read_status(self, probe: Callable[[str], Optional[str]]) -> HealthReport:
        marker = probe(f"cat {shlex.quote(self.marker_path)} 2>/dev/null || echo 'UNKNOWN'")
        if marker is None:
            return HealthReport(status=NodeStatus.UNKNOWN, message="Cannot determine setup status")
        status = NodeStatus.from_marker(marker)
        return HealthReport(status=status, message=status.message)

    @staticmethod
    def _service_state(probe: Callable[[str], Optional[str]], service: str) -> str:
        state = probe(f"systemctl is-active {shlex.quote(service)}")
        return state.splitlines()[0] if state else "unknown"
