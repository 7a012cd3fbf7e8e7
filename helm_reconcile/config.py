"""Configuration objects for helm-reconcile."""

from dataclasses import dataclass

DEFAULT_SERVICE_NAMESPACE = "kube-system"
DEFAULT_TIMEOUT = 300


@dataclass
class HelmConfig:
    """Configuration for talking to the release service through helm."""

    helm_bin: str = "helm"
    """Path or name of the helm binary."""

    page_size: int = 256
    """Maximum number of releases returned by one list request."""

    probe_timeout: float = 30.0
    """Seconds to wait for the helm binary to answer when opening a tunnel."""
