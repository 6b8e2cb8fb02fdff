"""apitracker: cached view of the API resource types served by a Kubernetes cluster."""

__version__ = "0.1.0"
