"""nodectl: command-line client for managing Kubernetes OS nodes."""

__version__ = "0.1.0"
