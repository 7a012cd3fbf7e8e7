"""Library for loading a helm chart directory into memory.

A chart is read once, fully, into a `ChartArtifact` which can then be handed
to the release service as a serialized payload:
```python
from helm_reconcile.chart import ChartLoader

async with ChartLoader() as loader:
    chart = await loader.load(Path("/ws/app"))
payload = chart.serialize()
```
"""

from dataclasses import dataclass, field
import io
import logging
from pathlib import Path, PurePosixPath
import re
import tarfile
from types import TracebackType
from typing import Any, Self

import aiofiles
from aiofiles.ospath import exists, isdir
from mashumaro import DataClassDictMixin, field_options
from mashumaro.config import BaseConfig
import yaml

from .exceptions import ChartLoadError, ChartNotFound

__all__ = [
    "resolve_chart_path",
    "ChartArtifact",
    "ChartLoader",
    "ChartMetadata",
]

_LOGGER = logging.getLogger(__name__)

CHART_FILE = "Chart.yaml"
VALUES_FILE = "values.yaml"
TEMPLATES_DIR = "templates"
HELMIGNORE_FILE = ".helmignore"


def resolve_chart_path(workspace: Path, location: str) -> Path:
    """Resolve a chart location relative to the workspace root."""
    return (workspace / location).absolute()


@dataclass
class ChartMetadata(DataClassDictMixin):
    """Contents of the Chart.yaml file of a chart."""

    name: str
    """The name of the chart."""

    version: str
    """The SemVer version of the chart."""

    api_version: str = field(default="v2", metadata=field_options(alias="apiVersion"))
    """The chart API version."""

    app_version: str | None = field(
        default=None, metadata=field_options(alias="appVersion")
    )
    """The version of the app that this chart contains."""

    description: str | None = None
    """A one-sentence description of the chart."""

    @classmethod
    def parse_doc(cls, doc: Any) -> "ChartMetadata":
        """Parse the ChartMetadata from a loaded Chart.yaml document."""
        if not isinstance(doc, dict):
            raise ChartLoadError(f"Invalid {CHART_FILE}, expected a mapping: {doc}")
        if not (name := doc.get("name")):
            raise ChartLoadError(f"Invalid {CHART_FILE} missing name: {doc}")
        if (version := doc.get("version")) is None:
            raise ChartLoadError(f"Invalid {CHART_FILE} missing version: {doc}")
        app_version = doc.get("appVersion")
        return cls(
            name=str(name),
            version=str(version),
            api_version=str(doc.get("apiVersion", "v2")),
            app_version=str(app_version) if app_version is not None else None,
            description=doc.get("description"),
        )

    class Config(BaseConfig):
        omit_none = True
        serialize_by_alias = True


@dataclass(frozen=True, kw_only=True)
class ChartArtifact:
    """An immutable chart loaded into memory."""

    source: Path
    """The directory the chart was loaded from, for informational purposes."""

    metadata: ChartMetadata
    """Parsed Chart.yaml."""

    values: dict[str, Any]
    """Default values from values.yaml."""

    files: dict[str, bytes]
    """Every chart file keyed by its path relative to the chart root."""

    @property
    def name(self) -> str:
        """Return the name of the chart."""
        return self.metadata.name

    @property
    def chart_name(self) -> str:
        """Return the chart name and version as used by helm archives."""
        return f"{self.metadata.name}-{self.metadata.version}"

    @property
    def templates(self) -> dict[str, bytes]:
        """Return the template files of the chart."""
        prefix = f"{TEMPLATES_DIR}/"
        return {
            path: content
            for path, content in self.files.items()
            if path.startswith(prefix)
        }

    def serialize(self) -> bytes:
        """Return the chart as a gzipped tar archive, the layout of `helm package`."""
        buf = io.BytesIO()
        with tarfile.open(fileobj=buf, mode="w:gz") as archive:
            for path, content in sorted(self.files.items()):
                info = tarfile.TarInfo(name=f"{self.metadata.name}/{path}")
                info.size = len(content)
                info.mode = 0o644
                archive.addfile(info, io.BytesIO(content))
        return buf.getvalue()


def _glob_regex(glob: str) -> re.Pattern[str]:
    """Translate a shell glob whose wildcards never match a `/`."""
    parts = []
    i = 0
    while i < len(glob):
        c = glob[i]
        if c == "*":
            parts.append("[^/]*")
        elif c == "?":
            parts.append("[^/]")
        elif c == "[" and (end := glob.find("]", i + 1)) > i + 1:
            body = glob[i + 1 : end].replace("\\", "\\\\")
            if body[0] in "!^":
                body = "^" + body[1:]
            if body == "^":
                parts.append(re.escape(glob[i : end + 1]))
            else:
                parts.append(f"[{body}]")
            i = end
        else:
            parts.append(re.escape(c))
        i += 1
    return re.compile("".join(parts))


@dataclass(frozen=True)
class IgnoreRule:
    """A single pattern of a .helmignore file."""

    pattern: re.Pattern[str]
    negate: bool = False
    """The rule re-includes paths matched by an earlier rule."""
    dir_only: bool = False
    """The rule only applies to directories."""
    match_path: bool = False
    """Match the full relative path rather than the base name."""

    @classmethod
    def parse(cls, line: str) -> "IgnoreRule":
        """Parse a single non-comment line of a .helmignore file."""
        negate = line.startswith("!")
        if negate:
            line = line[1:]
        dir_only = line.endswith("/")
        line = line.rstrip("/")
        match_path = "/" in line
        return cls(
            pattern=_glob_regex(line.lstrip("/")),
            negate=negate,
            dir_only=dir_only,
            match_path=match_path,
        )

    def matches(self, path: PurePosixPath, is_dir: bool) -> bool:
        """Return True if the rule applies to the relative path."""
        if self.dir_only and not is_dir:
            return False
        target = str(path) if self.match_path else path.name
        return self.pattern.fullmatch(target) is not None


class HelmIgnore:
    """Rules from a .helmignore file.

    Wildcards stay within one path segment. Rules are applied in order and
    the last matching rule decides, so a `!` rule re-includes a path excluded
    by an earlier rule.
    """

    def __init__(self, rules: list[IgnoreRule]) -> None:
        """Initialize HelmIgnore."""
        self._rules = rules

    @classmethod
    def parse(cls, content: str) -> "HelmIgnore":
        """Parse the contents of a .helmignore file."""
        rules = []
        for line in content.splitlines():
            line = line.strip()
            if not line or line.startswith("#") or line == "!":
                continue
            rules.append(IgnoreRule.parse(line))
        return cls(rules)

    def ignored(self, path: PurePosixPath, is_dir: bool) -> bool:
        """Return True if the relative path is excluded from the chart."""
        ignored = False
        for rule in self._rules:
            if rule.matches(path, is_dir):
                ignored = not rule.negate
        return ignored


class ChartLoader:
    """Reads a chart directory fully into memory.

    The loader is scoped: any partially read content is dropped when the
    loader is closed, and a closed loader refuses further loads.
    """

    def __init__(self) -> None:
        """Initialize ChartLoader."""
        self._files: dict[str, bytes] = {}
        self._closed = False

    async def __aenter__(self) -> Self:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.close()

    def close(self) -> None:
        """Release any content read so far."""
        self._files = {}
        self._closed = True

    async def load(self, path: Path) -> ChartArtifact:
        """Load the chart directory at the specified path."""
        if self._closed:
            raise ChartLoadError("Chart loader is already closed")
        if not await exists(path):
            raise ChartNotFound(str(path))
        if not await isdir(path):
            raise ChartLoadError(f"Chart location {path} is not a directory")
        _LOGGER.debug("Loading chart from %s", path)
        self._files = {}
        try:
            ignore = HelmIgnore([])
            if await exists(path / HELMIGNORE_FILE):
                ignore = HelmIgnore.parse(
                    (await self._read(path / HELMIGNORE_FILE)).decode("utf-8")
                )
            await self._read_dir(path, path, ignore)
        except (OSError, UnicodeDecodeError) as err:
            raise ChartLoadError(f"Unable to read chart at {path}: {err}") from err

        if not (chart_content := self._files.get(CHART_FILE)):
            raise ChartLoadError(f"Chart at {path} is missing {CHART_FILE}")
        metadata = ChartMetadata.parse_doc(
            _parse_yaml(path / CHART_FILE, chart_content)
        )
        values: dict[str, Any] = {}
        if (values_content := self._files.get(VALUES_FILE)) is not None:
            doc = _parse_yaml(path / VALUES_FILE, values_content)
            if doc is not None and not isinstance(doc, dict):
                raise ChartLoadError(
                    f"Invalid {VALUES_FILE} in {path}, expected a mapping"
                )
            values = doc or {}

        chart = ChartArtifact(
            source=path,
            metadata=metadata,
            values=values,
            files=dict(self._files),
        )
        _LOGGER.info(
            "Loaded chart %s with %d templates", chart.chart_name, len(chart.templates)
        )
        return chart

    async def _read_dir(self, root: Path, directory: Path, ignore: HelmIgnore) -> None:
        for child in sorted(directory.iterdir()):
            rel_path = PurePosixPath(child.relative_to(root).as_posix())
            is_dir = child.is_dir()
            if ignore.ignored(rel_path, is_dir):
                _LOGGER.debug("Ignoring %s", rel_path)
                continue
            if is_dir:
                await self._read_dir(root, child, ignore)
            else:
                self._files[str(rel_path)] = await self._read(child)

    async def _read(self, path: Path) -> bytes:
        async with aiofiles.open(path, mode="rb") as chart_file:
            return await chart_file.read()


def _parse_yaml(path: Path, content: bytes) -> Any:
    try:
        return yaml.safe_load(content)
    except yaml.YAMLError as err:
        raise ChartLoadError(f"Unable to parse {path}: {err}") from err
