"""Scoped access to the release service of a cluster.

A `ClusterSession` acquires the cluster client, the tunnel and the release
manager as one unit and hands out only the release manager:
```python
async with ClusterSession(connection) as manager:
    releases = await manager.list(ListReleasesRequest.for_release("demo"))
```
The three resources are released in reverse order of acquisition on every
exit path, including a failure part way through acquisition.
"""

from contextlib import AsyncExitStack
import logging
from types import TracebackType

from .config import HelmConfig
from .credentials import ClusterConnection
from .exceptions import ClusterConnectionError
from .release import ReleaseManager
from .tunnel import ClusterClient, Tunnel

__all__ = [
    "ClusterSession",
]

_LOGGER = logging.getLogger(__name__)


class ClusterSession:
    """Owns the cluster client, tunnel and release manager for one reconciliation."""

    def __init__(
        self, connection: ClusterConnection, config: HelmConfig | None = None
    ) -> None:
        """Initialize ClusterSession."""
        self._connection = connection
        self._config = config or HelmConfig()
        self._exit_stack: AsyncExitStack | None = None

    async def __aenter__(self) -> ReleaseManager:
        if self._exit_stack is not None:
            raise ClusterConnectionError("Cluster session is already open")
        async with AsyncExitStack() as stack:
            try:
                client = await ClusterClient.open(self._connection)
                stack.push_async_callback(client.close)

                tunnel = Tunnel(
                    client, self._connection.service_namespace, self._config
                )
                await tunnel.open()
                stack.push_async_callback(tunnel.close)

                manager = ReleaseManager(tunnel, self._config)
                stack.push_async_callback(manager.close)
            except ClusterConnectionError:
                raise
            except (OSError, ValueError) as err:
                raise ClusterConnectionError(
                    f"Unable to open cluster session: {err}"
                ) from err
            self._exit_stack = stack.pop_all()
        _LOGGER.debug(
            "Opened cluster session for service namespace %s",
            self._connection.service_namespace,
        )
        return manager

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        if self._exit_stack is None:
            return
        stack, self._exit_stack = self._exit_stack, None
        await stack.aclose()
        _LOGGER.debug("Closed cluster session")
