"""krelease: multi-tenant release tracker for Kubernetes workloads."""

__version__ = "0.1.0"
