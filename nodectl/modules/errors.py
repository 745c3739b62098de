"""Exception hierarchy shared by all nodectl components."""
from typing import Optional


class NodectlError(RuntimeError):
    """Base class for all nodectl failures."""


class ConnectivityError(NodectlError):
    """Dialing or authenticating to a node failed."""


class CommandTimeout(ConnectivityError):
    """A remote operation exceeded its allotted time.

    Treated like a connectivity failure: the session that produced it is
    suspect and callers should mark it so before retrying. It is not closed,
    other holders may still be using it.
    """


class CommandError(NodectlError):
    """A remote command exited non-zero.

    The captured ``CommandResult`` is kept on ``result`` for diagnostics.
    """

    def __init__(self, message: str, result: Optional[object] = None):
        super().__init__(message)
        self.result = result


class OwnershipError(NodectlError):
    """The caller acted on a resource owned by another account."""


class TemplateError(NodectlError):
    """A package template or values document could not be resolved."""


class DeploymentError(NodectlError):
    """The package manager failed to install, upgrade or uninstall a release."""


class SecretNotFoundError(NodectlError):
    """No cluster secret carrying the application password was found."""


class NotFoundError(NodectlError):
    """A stored record (application, node, session) does not exist."""


class TerminalBusyError(NodectlError):
    """A terminal session already has a live attachment."""
