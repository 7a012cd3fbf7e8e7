"""Library for querying and mutating releases through the release service.

The `ReleaseManager` is the only handle a caller gets from a `ClusterSession`.
Listing is awaited directly while install and update are submitted as
asyncio tasks that the caller waits on:
```python
result = await query_release_status(manager, "demo", "prod")
if not result.exists:
    task = manager.install(
        InstallReleaseRequest(name="demo", namespace="prod", timeout=300),
        chart,
    )
    release = await task
```
"""

import asyncio
from dataclasses import dataclass, field
from enum import StrEnum
import json
import logging
import re
from collections.abc import Callable, Coroutine
from typing import Any

import aiofiles
from mashumaro import DataClassDictMixin
from mashumaro.config import BaseConfig

from . import command
from .chart import ChartArtifact
from .config import HelmConfig
from .exceptions import HelmException
from .tunnel import Tunnel

__all__ = [
    "ReleaseStatus",
    "ArgsBuilder",
    "Release",
    "ListReleasesRequest",
    "InstallReleaseRequest",
    "UpdateReleaseRequest",
    "ReleaseManager",
    "ReleaseQueryResult",
    "query_release_status",
]

_LOGGER = logging.getLogger(__name__)


class ReleaseStatus(StrEnum):
    """State of a named release as seen by the release service."""

    NOT_FOUND = "not-found"
    DEPLOYED = "deployed"
    FAILED = "failed"
    OTHER = "other"

    @classmethod
    def from_helm(cls, value: str | None) -> "ReleaseStatus":
        """Map a helm reported status onto a ReleaseStatus."""
        if value == cls.DEPLOYED.value:
            return cls.DEPLOYED
        if value == cls.FAILED.value:
            return cls.FAILED
        return cls.OTHER


EXISTING_STATUSES = (ReleaseStatus.FAILED, ReleaseStatus.DEPLOYED)

# Builds helm CLI arguments given the path of the chart archive
ArgsBuilder = Callable[[str], list[str]]

# Helm list flags selecting each status
_STATUS_FLAGS = {
    ReleaseStatus.DEPLOYED: "--deployed",
    ReleaseStatus.FAILED: "--failed",
}


@dataclass
class Release(DataClassDictMixin):
    """A release descriptor reported by the release service."""

    name: str
    """The name of the release."""

    namespace: str
    """The namespace the release is installed into."""

    revision: int
    """The revision of the release."""

    status: str
    """The helm status string of the release e.g. deployed."""

    chart: str | None = None
    """The chart name and version of the release."""

    app_version: str | None = None
    """The app version of the chart."""

    updated: str | None = None
    """When the release was last deployed."""

    @property
    def release_status(self) -> ReleaseStatus:
        """Return the status of the release."""
        return ReleaseStatus.from_helm(self.status)

    @classmethod
    def parse_list_doc(cls, doc: dict[str, Any]) -> "Release":
        """Parse a Release from an entry of `helm list --output json`."""
        if not (name := doc.get("name")):
            raise HelmException(f"Invalid release missing name: {doc}")
        return cls(
            name=name,
            namespace=doc.get("namespace", ""),
            revision=int(doc.get("revision", 0)),
            status=doc.get("status", ""),
            chart=doc.get("chart"),
            app_version=doc.get("app_version"),
            updated=doc.get("updated"),
        )

    @classmethod
    def parse_release_doc(cls, doc: dict[str, Any]) -> "Release":
        """Parse a Release from the output of `helm install|upgrade --output json`."""
        if not (name := doc.get("name")):
            raise HelmException(f"Invalid release missing name: {doc}")
        info = doc.get("info") or {}
        metadata = (doc.get("chart") or {}).get("metadata") or {}
        chart = None
        if metadata.get("name"):
            chart = f"{metadata['name']}-{metadata.get('version', '')}"
        return cls(
            name=name,
            namespace=doc.get("namespace", ""),
            revision=int(doc.get("version", 0)),
            status=info.get("status", ""),
            chart=chart,
            app_version=metadata.get("appVersion"),
            updated=info.get("last_deployed"),
        )

    class Config(BaseConfig):
        omit_none = True


@dataclass(frozen=True)
class ListReleasesRequest:
    """A request to list releases."""

    filter: str
    """Regular expression matched against release names."""

    status_codes: tuple[ReleaseStatus, ...] = EXISTING_STATUSES
    """Only releases in these states are listed."""

    namespace: str | None = None
    """Namespace to list, or None to list every namespace."""

    @classmethod
    def for_release(cls, release_name: str) -> "ListReleasesRequest":
        """Return a request listing existing releases with exactly this name."""
        return cls(filter=f"^{re.escape(release_name)}$")

    def args(self, page_size: int) -> list[str]:
        """Helm list CLI arguments built from the request."""
        args = ["list", "--filter", self.filter]
        for status in self.status_codes:
            if flag := _STATUS_FLAGS.get(status):
                args.append(flag)
        args.extend(["--output", "json", "--max", str(page_size)])
        if self.namespace:
            args.extend(["--namespace", self.namespace])
        else:
            args.append("--all-namespaces")
        return args


@dataclass(frozen=True, kw_only=True)
class InstallReleaseRequest:
    """A request to install a new release."""

    name: str
    namespace: str
    timeout: int
    """Seconds the release service waits for the operation."""
    wait: bool = False
    """Wait until all resources of the release are ready."""

    def args(self, chart_path: str) -> list[str]:
        """Helm install CLI arguments built from the request."""
        args = [
            "install",
            self.name,
            chart_path,
            "--namespace",
            self.namespace,
            "--timeout",
            f"{self.timeout}s",
            "--output",
            "json",
        ]
        if self.wait:
            args.append("--wait")
        return args


@dataclass(frozen=True, kw_only=True)
class UpdateReleaseRequest:
    """A request to update an existing release.

    Recreate and force are never requested.
    """

    name: str
    timeout: int
    wait: bool = False
    namespace: str | None = None
    """Namespace of the existing release, or None for the service default."""

    def args(self, chart_path: str) -> list[str]:
        """Helm upgrade CLI arguments built from the request."""
        args = ["upgrade", self.name, chart_path]
        if self.namespace:
            args.extend(["--namespace", self.namespace])
        args.extend(["--timeout", f"{self.timeout}s", "--output", "json"])
        if self.wait:
            args.append("--wait")
        return args


class ReleaseManager:
    """Issues release operations through a tunnel."""

    def __init__(self, tunnel: Tunnel, config: HelmConfig | None = None) -> None:
        """Initialize ReleaseManager."""
        self._tunnel = tunnel
        self._config = config or HelmConfig()
        self._tasks: set[asyncio.Task[Release]] = set()

    async def list(self, request: ListReleasesRequest) -> list[Release]:
        """Return the first page of releases matching the request."""
        cmd = self._tunnel.command(request.args(self._config.page_size))
        out = await command.run(cmd)
        if not out.strip():
            return []
        try:
            docs = json.loads(out)
        except json.JSONDecodeError as err:
            raise HelmException(f"Unable to parse release list: {err}") from err
        return [Release.parse_list_doc(doc) for doc in docs or []]

    def install(
        self, request: InstallReleaseRequest, chart: ChartArtifact
    ) -> asyncio.Task[Release]:
        """Submit an install of a new release."""
        return self._submit(
            self._run(request.args, chart), name=f"install {request.name}"
        )

    def update(
        self, request: UpdateReleaseRequest, chart: ChartArtifact
    ) -> asyncio.Task[Release]:
        """Submit an update of an existing release."""
        return self._submit(
            self._run(request.args, chart), name=f"update {request.name}"
        )

    def _submit(
        self, coro: Coroutine[Any, Any, Release], name: str
    ) -> asyncio.Task[Release]:
        task = asyncio.create_task(coro, name=name)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _run(self, args: ArgsBuilder, chart: ChartArtifact) -> Release:
        chart_path = self._tunnel.work_dir / f"{chart.chart_name}.tgz"
        async with aiofiles.open(chart_path, mode="wb") as chart_file:
            await chart_file.write(chart.serialize())
        out = await command.run(self._tunnel.command(args(str(chart_path))))
        try:
            doc = json.loads(out)
        except json.JSONDecodeError as err:
            raise HelmException(f"Unable to parse release: {err}") from err
        return Release.parse_release_doc(doc)

    async def close(self) -> None:
        """Cancel any submitted operation that is still running."""
        for task in list(self._tasks):
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
            except Exception as err:  # pylint: disable=broad-except
                _LOGGER.debug("Release task %s failed: %s", task.get_name(), err)


@dataclass
class ReleaseQueryResult:
    """Outcome of looking up an existing release."""

    status: ReleaseStatus
    """Status of the release, NOT_FOUND when no existing release matches."""

    release: Release | None = None
    """The first matching release."""

    namespace_collision: bool = False
    """The release exists but in a namespace other than the expected one."""

    warnings: list[str] = field(default_factory=list)
    """Non fatal findings of the query."""

    @property
    def exists(self) -> bool:
        """Return True if the release counts as existing."""
        return self.status in EXISTING_STATUSES


async def query_release_status(
    manager: ReleaseManager, release_name: str, expected_namespace: str
) -> ReleaseQueryResult:
    """Look up whether a deployed or failed release with this name exists."""
    releases = await manager.list(ListReleasesRequest.for_release(release_name))
    if not releases:
        _LOGGER.debug("No existing release %s", release_name)
        return ReleaseQueryResult(status=ReleaseStatus.NOT_FOUND)
    release = releases[0]
    result = ReleaseQueryResult(status=release.release_status, release=release)
    if release.namespace != expected_namespace:
        # TODO: Decide whether a release in another namespace should block the update
        message = (
            f"Release name {release_name} is already used in namespace "
            f"{release.namespace}, expected {expected_namespace}"
        )
        _LOGGER.warning("%s", message)
        result.namespace_collision = True
        result.warnings.append(message)
    _LOGGER.debug("Found release %s with status %s", release_name, result.status)
    return result
