"""
helm-reconcile installs a helm chart as a new release or updates the existing
release of the same name.

The library can be driven directly:
```python
from helm_reconcile.credentials import InMemoryCredentialStore, StoreCredentialResolver
from helm_reconcile.reconciler import DeploymentContext, Reconciler
from helm_reconcile.status import LoggingStatusReporter

reconciler = Reconciler(
    StoreCredentialResolver(InMemoryCredentialStore()),
    LoggingStatusReporter(),
    workspace=Path("/ws"),
)
outcome = await reconciler.reconcile(
    DeploymentContext(chart_location="app", target_namespace="prod", release_name="demo")
)
```
"""

__all__ = [
    "chart",
    "credentials",
    "exceptions",
    "reconciler",
    "release",
    "session",
    "status",
    # Note this is exposed for CLI documentation, not to be used as a library
    "tool",
]
