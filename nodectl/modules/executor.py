"""Remote command execution over pooled sessions."""
import logging
import shlex
import time
from typing import Optional

from ..config import Config
from .errors import CommandError, NodectlError
from .models import CommandResult

logger = logging.getLogger("executor")


def run(session, command: str, timeout: Optional[float] = None, check: bool = True) -> CommandResult:
    """Run a single non-interactive command.

    Args:
        session: A pooled ``RemoteSession``
        command: Shell command to run
        timeout: Seconds before the command is abandoned (default: Config.COMMAND_TIMEOUT)
        check: Raise ``CommandError`` on a non-zero exit status

    Returns:
        CommandResult with combined output, exit code and duration

    Raises:
        CommandError: If ``check`` is set and the command exits non-zero
        CommandTimeout: If the command exceeds ``timeout``
        ConnectivityError: If no channel could be opened
    """
    timeout = timeout or Config.COMMAND_TIMEOUT
    start = time.monotonic()
    exit_code, output = session.exec(command, timeout)
    result = CommandResult(
        command=command,
        output=output.strip(),
        exit_code=exit_code,
        duration=time.monotonic() - start,
        error=None if exit_code == 0 else f"exit status {exit_code}",
    )
    logger.debug(f"[{session.endpoint}] '{command}' -> {exit_code} ({result.duration:.2f}s)")

    if check and exit_code != 0:
        raise CommandError(
            f"Command failed with status {exit_code}: {result.output}", result=result
        )
    return result


def run_privileged(session, command: str, timeout: Optional[float] = None) -> CommandResult:
    """Run a command through sudo, falling back to running it directly.

    Nodes may be logged into as root (no sudo installed) or as a user with
    passwordless sudo. The returned result's ``note`` records which path
    produced it: ``"sudo"`` or ``"direct"``.

    Raises:
        CommandError: If both the sudo and direct attempts fail
    """
    sudo_command = f"sudo -n sh -c {shlex.quote(command)}"
    result = run(session, sudo_command, timeout=timeout, check=False)
    if result.exit_code == 0:
        return _with_note(result, "sudo")

    logger.debug(f"[{session.endpoint}] sudo unavailable or failed ({result.output}), running directly")
    direct = run(session, command, timeout=timeout, check=False)
    if direct.exit_code != 0:
        raise CommandError(
            f"Privileged command failed with status {direct.exit_code}: {direct.output}",
            result=_with_note(direct, "direct"),
        )
    return _with_note(direct, "direct")


def upload(session, content: str, path: str, mode: Optional[int] = None) -> None:
    """Write a text file on the remote host.

    Raises:
        CommandError: If the transfer fails
    """
    try:
        session.put_text(content, path, mode=mode)
    except NodectlError:
        raise
    except OSError as e:
        raise CommandError(f"Failed to write {path} on {session.endpoint}: {e}") from e
    logger.debug(f"[{session.endpoint}] wrote {path}")


def remove(session, path: str) -> None:
    """Delete a remote temp file, ignoring failures."""
    try:
        run(session, f"rm -f {shlex.quote(path)}", check=False)
    except NodectlError as e:
        logger.debug(f"[{session.endpoint}] could not remove {path}: {e}")


def _with_note(result: CommandResult, note: str) -> CommandResult:
    return CommandResult(
        command=result.command,
        output=result.output,
        exit_code=result.exit_code,
        duration=result.duration,
        error=result.error,
        note=note,
    )
