"""Connection primitives for reaching the cluster side release service.

A `ClusterClient` holds the kubeconfig for one cluster and a `Tunnel` binds
the helm binary to that client and a service namespace. Both are opened and
closed by a `ClusterSession`; nothing outside the session uses them directly.
"""

import logging
import os
from pathlib import Path
import shutil
import tempfile
from typing import Any

import aiofiles
import yaml

from . import command
from .config import HelmConfig
from .credentials import ClusterConnection
from .exceptions import ClusterConnectionError, HelmException

__all__ = [
    "ClusterClient",
    "Tunnel",
]

_LOGGER = logging.getLogger(__name__)


def _check_kubeconfig(content: str) -> None:
    """Assert that the kubeconfig content can be used to reach a cluster."""
    try:
        doc: Any = yaml.safe_load(content)
    except yaml.YAMLError as err:
        raise ClusterConnectionError(f"Unable to parse kubeconfig: {err}") from err
    if not isinstance(doc, dict):
        raise ClusterConnectionError("Invalid kubeconfig, expected a mapping")
    if not doc.get("clusters"):
        raise ClusterConnectionError("Invalid kubeconfig missing clusters")


class ClusterClient:
    """A client for one cluster, backed by a private kubeconfig file."""

    def __init__(self, kubeconfig_path: Path | None) -> None:
        """Initialize ClusterClient."""
        self._kubeconfig_path = kubeconfig_path

    @classmethod
    async def open(cls, connection: ClusterConnection) -> "ClusterClient":
        """Create a client for the connection.

        The kubeconfig content is written to a file only readable by the
        current user so the helm binary can consume it.
        """
        if connection.ambient or connection.kubeconfig is None:
            _LOGGER.debug("Using ambient cluster context")
            return cls(None)
        _check_kubeconfig(connection.kubeconfig)
        fd, name = tempfile.mkstemp(prefix="kubeconfig-", suffix=".yaml")
        os.close(fd)
        path = Path(name)
        try:
            async with aiofiles.open(path, mode="w") as kubeconfig_file:
                await kubeconfig_file.write(connection.kubeconfig)
        except OSError as err:
            path.unlink(missing_ok=True)
            raise ClusterConnectionError(f"Unable to write kubeconfig: {err}") from err
        return cls(path)

    @property
    def kubeconfig_path(self) -> Path | None:
        """Return the kubeconfig file, or None when using the ambient context."""
        return self._kubeconfig_path

    @property
    def env(self) -> dict[str, str]:
        """Environment variables that point a subprocess at this cluster."""
        if self._kubeconfig_path is None:
            return {}
        return {"KUBECONFIG": str(self._kubeconfig_path)}

    async def close(self) -> None:
        """Remove the kubeconfig file."""
        if self._kubeconfig_path is not None:
            self._kubeconfig_path.unlink(missing_ok=True)
            self._kubeconfig_path = None


class Tunnel:
    """The helm binary bound to a cluster client and a service namespace.

    Helm keeps its cache, configuration and data in a private working
    directory so that concurrent tunnels never share state.
    """

    def __init__(
        self, client: ClusterClient, namespace: str, config: HelmConfig
    ) -> None:
        """Initialize Tunnel."""
        self._client = client
        self._namespace = namespace
        self._config = config
        self._work_dir: Path | None = None

    @property
    def namespace(self) -> str:
        """Return the service namespace of the tunnel."""
        return self._namespace

    @property
    def work_dir(self) -> Path:
        """Return the private working directory of the tunnel."""
        if self._work_dir is None:
            raise ClusterConnectionError("Tunnel is not open")
        return self._work_dir

    @property
    def env(self) -> dict[str, str]:
        """Environment variables for helm commands issued through the tunnel."""
        work_dir = self.work_dir
        return {
            **self._client.env,
            "HELM_NAMESPACE": self._namespace,
            "HELM_CACHE_HOME": str(work_dir / "cache"),
            "HELM_CONFIG_HOME": str(work_dir / "config"),
            "HELM_DATA_HOME": str(work_dir / "data"),
        }

    async def open(self) -> None:
        """Prepare the working directory and probe the helm binary."""
        self._work_dir = Path(tempfile.mkdtemp(prefix="helm-reconcile-"))
        try:
            version = await command.run(
                self.command(["version", "--short"]), timeout=self._config.probe_timeout
            )
        except HelmException as err:
            await self.close()
            raise ClusterConnectionError(
                f"Unable to reach release service in namespace {self._namespace}: {err}"
            ) from err
        except BaseException:
            # Cancelled or failed unexpectedly while probing
            await self.close()
            raise
        _LOGGER.debug(
            "Opened tunnel in namespace %s using helm %s",
            self._namespace,
            version.strip(),
        )

    def command(self, args: list[str]) -> command.Command:
        """Return a helm command issued through the tunnel."""
        return command.Command(
            [self._config.helm_bin] + args,
            exc=HelmException,
            env=self.env,
        )

    async def close(self) -> None:
        """Remove the working directory."""
        if self._work_dir is not None:
            shutil.rmtree(self._work_dir, ignore_errors=True)
            self._work_dir = None
