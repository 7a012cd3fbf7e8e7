"""Exceptions related to helm-reconcile."""

__all__ = [
    "ReconcileException",
    "InputException",
    "CommandException",
    "HelmException",
    "ChartError",
    "ChartNotFound",
    "ChartLoadError",
    "ClusterConnectionError",
    "CredentialNotFound",
    "ReleaseError",
    "InstallError",
    "UpdateError",
]


class ReconcileException(Exception):
    """Generic base exception used for this library."""


class InputException(ReconcileException):
    """Raised when the input files or values are not formatted as expected."""


class CommandException(ReconcileException):
    """Raised when there is a failure running a subcommand."""


class HelmException(CommandException):
    """Raised when there is a failure running a helm command."""


class ChartError(ReconcileException):
    """Raised when a chart can't be turned into an artifact."""


class ChartNotFound(ChartError):
    """Raised when the chart location does not exist."""

    def __init__(self, path: str) -> None:
        super().__init__(f"Cannot find helm chart at {path}")
        self.path = path


class ChartLoadError(ChartError):
    """Raised when the chart contents are malformed or unreadable."""


class ClusterConnectionError(ReconcileException):
    """Raised when the cluster client, tunnel or release manager can't be acquired."""


class CredentialNotFound(ClusterConnectionError):
    """Raised when no stored kubeconfig credential matches an identifier."""

    def __init__(self, credential_id: str) -> None:
        super().__init__(f"Cannot find kubeconfig credentials with id {credential_id}")
        self.credential_id = credential_id


class ReleaseError(ReconcileException):
    """Raised when a mutating release operation fails."""

    def __init__(self, release_name: str, message: str | None) -> None:
        super().__init__(
            f"Release {release_name} failed: {message or 'Unknown error'}"
        )
        self.release_name = release_name
        self.message = message


class InstallError(ReleaseError):
    """Raised when installing a new release fails."""


class UpdateError(ReleaseError):
    """Raised when updating an existing release fails."""
