"""Helm invocations over a remote session."""
import json
import logging
import shlex
from typing import List, Optional

from ..config import Config
from . import executor
from .errors import CommandError, DeploymentError
from .models import CommandResult

logger = logging.getLogger("helm")


class RemoteHelm:
    """
    Thin wrapper around the `helm` CLI on a node.
    - Mirrors CLI usage: 'repo add/update', 'install', 'upgrade', 'uninstall', 'status'.
    - Every call is one fresh remote command; no shell state is shared.
    """

    def __init__(self, session, wait_timeout: str = "10m"):
        self.session = session
        self.wait_timeout = wait_timeout

    def _run(self, argv: List[str], timeout: Optional[float] = None) -> CommandResult:
        command = " ".join(shlex.quote(arg) for arg in argv)
        try:
            return executor.run(self.session, command, timeout=timeout)
        except CommandError as e:
            raise DeploymentError(f"helm failed for '{command}': {e}") from e

    def add_repo(self, name: str, url: str) -> None:
        """Register a chart repository, refreshing it if it is already known."""
        try:
            self._run(["helm", "repo", "add", name, url])
        except DeploymentError as e:
            logger.debug(f"helm repo add {name} failed ({e}), refreshing existing repo")
            self._run(["helm", "repo", "update", name])

    def update_repos(self) -> None:
        self._run(["helm", "repo", "update"])

    def install(
        self,
        release: str,
        chart: str,
        namespace: str,
        values_file: str,
        version: Optional[str] = None,
    ) -> CommandResult:
        argv = ["helm", "install", release, chart, "--namespace", namespace, "--values", values_file]
        if version:
            argv += ["--version", version]
        argv += ["--wait", "--timeout", self.wait_timeout]
        return self._run(argv, timeout=Config.INSTALL_TIMEOUT)

    def upgrade(
        self,
        release: str,
        chart: str,
        namespace: str,
        values_file: str,
        version: Optional[str] = None,
    ) -> CommandResult:
        argv = ["helm", "upgrade", release, chart, "--namespace", namespace, "--values", values_file]
        if version:
            argv += ["--version", version]
        argv += ["--wait", "--timeout", self.wait_timeout]
        return self._run(argv, timeout=Config.INSTALL_TIMEOUT)

    def uninstall(self, release: str, namespace: str) -> CommandResult:
        return self._run(["helm", "uninstall", release, "--namespace", namespace])

    def status(self, release: str, namespace: str) -> Optional[str]:
        """Return the release status (e.g. ``deployed``) or None if it does not exist."""
        try:
            result = self._run(["helm", "status", release, "--namespace", namespace, "-o", "json"])
        except DeploymentError:
            return None
        try:
            return json.loads(result.output).get("info", {}).get("status")
        except ValueError:
            logger.warning(f"Unparseable helm status for {release}: {result.output[:200]}")
            return None
