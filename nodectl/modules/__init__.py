"""
Node provisioning and application lifecycle modules.
"""
from .apps import ApplicationService
from .catalog import Catalog
from .certs import CertificateManager
from .credentials import SecretManager
from .deploy import DeploymentOrchestrator
from .health import HealthChecker
from .nodes import NodeService
from .pipeline import ProvisioningPipeline
from .ssh import SessionPool
from .tasks import TaskRunner
from .terminal import TerminalRegistry

__all__ = [
    'ApplicationService',
    'Catalog',
    'CertificateManager',
    'SecretManager',
    'DeploymentOrchestrator',
    'HealthChecker',
    'NodeService',
    'ProvisioningPipeline',
    'SessionPool',
    'TaskRunner',
    'TerminalRegistry',
]
