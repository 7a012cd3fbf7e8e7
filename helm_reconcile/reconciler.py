"""Reconciler that installs or updates a single release.

One reconciliation walks through these states, and every failure moves
directly to FAILED without retrying:

    START -> CHART_LOADED -> CONNECTION_RESOLVED -> SESSION_OPEN
          -> INSTALLING | UPDATING -> SUCCEEDED | FAILED

The reconciler only raises to propagate cancellation of its caller. Errors are
reported through the StatusReporter and returned as a FAILED
`ReconcileOutcome`.
"""

import asyncio
from collections.abc import Callable
from contextlib import AbstractAsyncContextManager
from dataclasses import dataclass, replace
from enum import StrEnum
import logging
from pathlib import Path

from .chart import ChartArtifact, ChartLoader, resolve_chart_path
from .config import DEFAULT_SERVICE_NAMESPACE, DEFAULT_TIMEOUT, HelmConfig
from .credentials import SYSTEM, ClusterConnection, CredentialResolver, Principal
from .exceptions import (
    ChartError,
    ClusterConnectionError,
    InstallError,
    ReconcileException,
    UpdateError,
)
from .release import (
    InstallReleaseRequest,
    Release,
    ReleaseManager,
    UpdateReleaseRequest,
    query_release_status,
)
from .session import ClusterSession
from .status import CommandState, StatusReporter

__all__ = [
    "DeploymentContext",
    "ReconcileState",
    "ReconcileAction",
    "ReconcileOutcome",
    "Reconciler",
]

_LOGGER = logging.getLogger(__name__)

SessionFactory = Callable[
    [ClusterConnection], AbstractAsyncContextManager[ReleaseManager]
]


def _cancelling() -> bool:
    """Return True if the current task has been asked to cancel."""
    task = asyncio.current_task()
    return task is not None and task.cancelling() > 0


@dataclass(frozen=True, kw_only=True)
class DeploymentContext:
    """Describes one desired deployment."""

    chart_location: str
    """Chart directory, relative to the workspace or absolute."""

    target_namespace: str
    """Namespace a new release is installed into."""

    release_name: str
    """Name of the release."""

    service_namespace: str = DEFAULT_SERVICE_NAMESPACE
    """Namespace of the cluster side release service."""

    wait: bool = False
    """Wait for the resources of the release to be ready."""

    timeout: int = DEFAULT_TIMEOUT
    """Seconds the release service is given for install or update."""

    credential_id: str | None = None
    """Id of the kubeconfig credential, or None for the ambient cluster."""


class ReconcileState(StrEnum):
    """Progress of a reconciliation."""

    START = "Start"
    CHART_LOADED = "ChartLoaded"
    CONNECTION_RESOLVED = "ConnectionResolved"
    SESSION_OPEN = "SessionOpen"
    INSTALLING = "Installing"
    UPDATING = "Updating"
    SUCCEEDED = "Succeeded"
    FAILED = "Failed"


class ReconcileAction(StrEnum):
    """Terminal result of a reconciliation."""

    INSTALLED = "Installed"
    UPDATED = "Updated"
    FAILED = "Failed"


@dataclass(frozen=True)
class ReconcileOutcome:
    """The terminal result surfaced to the caller."""

    action: ReconcileAction
    release: Release | None = None
    error: BaseException | None = None
    warnings: tuple[str, ...] = ()

    @property
    def succeeded(self) -> bool:
        """Return True if the release was installed or updated."""
        return self.action != ReconcileAction.FAILED

    @property
    def reason(self) -> str | None:
        """Return the failure reason."""
        if self.error is None:
            return None
        return f"{type(self.error).__name__}: {self.error}"

    def __str__(self) -> str:
        """Return a string representation of the outcome."""
        if self.reason:
            return f"{self.action}: {self.reason}"
        return str(self.action)


class Reconciler:
    """Decides between install and update for a release and carries it out.

    Reconciliations on one instance run one at a time and `state` tracks the
    one in progress, or the last one to finish. Use separate instances to
    reconcile releases concurrently.
    """

    def __init__(
        self,
        credential_resolver: CredentialResolver,
        reporter: StatusReporter,
        *,
        workspace: Path | None = None,
        principal: Principal = SYSTEM,
        config: HelmConfig | None = None,
        session_factory: SessionFactory | None = None,
    ) -> None:
        """Initialize the reconciler.

        Args:
            credential_resolver: Resolves the kubeconfig credential id
            reporter: Receives progress, errors and the command state
            workspace: Root that relative chart locations are resolved against
            principal: Identity credential lookups run as
            config: Configuration for the helm binary
            session_factory: Opens the cluster session for a connection
        """
        self._credential_resolver = credential_resolver
        self._reporter = reporter
        self._workspace = workspace or Path.cwd()
        self._principal = principal
        self._config = config or HelmConfig()
        self._session_factory = session_factory or self._default_session
        self.state = ReconcileState.START
        self._lock = asyncio.Lock()

    def _default_session(
        self, connection: ClusterConnection
    ) -> AbstractAsyncContextManager[ReleaseManager]:
        return ClusterSession(connection, self._config)

    def _transition(self, state: ReconcileState) -> None:
        _LOGGER.debug("Reconcile state %s -> %s", self.state, state)
        self.state = state

    async def reconcile(self, context: DeploymentContext) -> ReconcileOutcome:
        """Run one reconciliation of the release described by the context.

        Cancelling the caller reports the reconciliation as failed and then
        propagates the cancellation.
        """
        async with self._lock:
            return await self._reconcile_locked(context)

    async def _reconcile_locked(self, context: DeploymentContext) -> ReconcileOutcome:
        self.state = ReconcileState.START
        _LOGGER.info(
            "Reconciling release %s in namespace %s",
            context.release_name,
            context.target_namespace,
        )
        try:
            outcome = await self._reconcile(context)
        except asyncio.CancelledError:
            _LOGGER.warning("Reconcile of release %s cancelled", context.release_name)
            self._fail(
                ReconcileException(
                    f"Reconcile of release {context.release_name} was cancelled"
                )
            )
            raise
        except ReconcileException as err:
            outcome = self._fail(err)
        except Exception as err:  # pylint: disable=broad-except
            _LOGGER.exception(
                "Failed to reconcile release %s: %s", context.release_name, str(err)
            )
            outcome = self._fail(err)
        else:
            self._transition(ReconcileState.SUCCEEDED)
            self._reporter.log_status(
                f"Release {context.release_name} {outcome.action.lower()}"
            )
            self._reporter.set_command_state(CommandState.SUCCESS)
        return outcome

    def _fail(self, err: BaseException) -> ReconcileOutcome:
        self._transition(ReconcileState.FAILED)
        self._reporter.log_error(err)
        self._reporter.set_command_state(CommandState.HAS_ERROR)
        return ReconcileOutcome(ReconcileAction.FAILED, error=err)

    async def _reconcile(self, context: DeploymentContext) -> ReconcileOutcome:
        chart = await self._load_chart(context)
        self._transition(ReconcileState.CHART_LOADED)

        connection = await self._resolve_connection(context)
        connection = replace(connection, service_namespace=context.service_namespace)
        self._transition(ReconcileState.CONNECTION_RESOLVED)

        async with self._session_factory(connection) as manager:
            self._transition(ReconcileState.SESSION_OPEN)
            self._reporter.log_status(str(chart.source))
            result = await query_release_status(
                manager, context.release_name, context.target_namespace
            )
            for warning in result.warnings:
                self._reporter.log_status(f"Warning: {warning}")
            if result.exists:
                release = await self._update(
                    manager,
                    context,
                    chart,
                    result.release.namespace if result.release else None,
                )
                action = ReconcileAction.UPDATED
            else:
                release = await self._install(manager, context, chart)
                action = ReconcileAction.INSTALLED
            assert release is not None
        return ReconcileOutcome(
            action, release=release, warnings=tuple(result.warnings)
        )

    async def _load_chart(self, context: DeploymentContext) -> ChartArtifact:
        path = resolve_chart_path(self._workspace, context.chart_location)
        try:
            async with ChartLoader() as loader:
                return await loader.load(path)
        except ChartError:
            raise
        except (OSError, ValueError) as err:
            raise ChartError(f"Unable to load chart at {path}: {err}") from err

    async def _resolve_connection(
        self, context: DeploymentContext
    ) -> ClusterConnection:
        try:
            return await self._credential_resolver.resolve(
                context.credential_id, self._principal
            )
        except ClusterConnectionError:
            raise
        except Exception as err:  # pylint: disable=broad-except
            _LOGGER.debug(
                "Resolving credential %s failed", context.credential_id, exc_info=True
            )
            raise ClusterConnectionError(
                f"Unable to resolve cluster credential {context.credential_id}: {err}"
            ) from err

    async def _install(
        self,
        manager: ReleaseManager,
        context: DeploymentContext,
        chart: ChartArtifact,
    ) -> Release:
        self._transition(ReconcileState.INSTALLING)
        request = InstallReleaseRequest(
            name=context.release_name,
            namespace=context.target_namespace,
            timeout=context.timeout,
            wait=context.wait,
        )
        try:
            return await manager.install(request, chart)
        except asyncio.CancelledError as err:
            if _cancelling():
                raise
            raise InstallError(context.release_name, "interrupted") from err
        except Exception as err:  # pylint: disable=broad-except
            _LOGGER.debug("Install of %s failed", context.release_name, exc_info=True)
            raise InstallError(context.release_name, str(err)) from err

    async def _update(
        self,
        manager: ReleaseManager,
        context: DeploymentContext,
        chart: ChartArtifact,
        namespace: str | None,
    ) -> Release:
        self._transition(ReconcileState.UPDATING)
        request = UpdateReleaseRequest(
            name=context.release_name,
            namespace=namespace,
            timeout=context.timeout,
            wait=context.wait,
        )
        try:
            return await manager.update(request, chart)
        except asyncio.CancelledError as err:
            if _cancelling():
                raise
            raise UpdateError(context.release_name, "interrupted") from err
        except Exception as err:  # pylint: disable=broad-except
            _LOGGER.debug("Update of %s failed", context.release_name, exc_info=True)
            raise UpdateError(context.release_name, str(err)) from err
