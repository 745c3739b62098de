"""nodectl - provision single-node Kubernetes hosts and manage their applications."""

__version__ = "0.1.0"
