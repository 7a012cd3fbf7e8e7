"""Test helpers for helm-reconcile."""

import io
import json
import re
import tarfile
from pathlib import Path
from typing import Any

import yaml

from helm_reconcile import command
from helm_reconcile.exceptions import HelmException

CHART_YAML = """\
apiVersion: v2
name: app
description: A test application
version: 0.1.0
appVersion: "1.14.2"
"""

VALUES_YAML = """\
replicaCount: 1
image:
  repository: nginx
"""

DEPLOYMENT_YAML = """\
apiVersion: apps/v1
kind: Deployment
metadata:
  name: {{ .Release.Name }}
"""

KUBECONFIG = """\
apiVersion: v1
kind: Config
clusters:
- name: prod
  cluster:
    server: https://prod.example.com
contexts:
- name: prod
  context:
    cluster: prod
    user: deployer
current-context: prod
users:
- name: deployer
  user:
    token: secret-token
"""


class FakeHelm:
    """Stands in for the helm binary, keeping releases in memory."""

    def __init__(self) -> None:
        self.commands: list[command.Command] = []
        self.releases: list[dict[str, Any]] = []
        self.errors: dict[str, Exception] = {}
        self.charts: list[dict[str, Any]] = []

    @property
    def calls(self) -> list[list[str]]:
        """Return the arguments of every helm invocation."""
        return [cmd.cmd[1:] for cmd in self.commands]

    @property
    def subcommands(self) -> list[str]:
        """Return the helm subcommand of every invocation."""
        return [args[0] for args in self.calls]

    async def run(self, cmd: command.Task, timeout: float | None = None) -> str:
        assert isinstance(cmd, command.Command)
        self.commands.append(cmd)
        args = cmd.cmd[1:]
        subcommand = args[0]
        if (err := self.errors.get(subcommand)) is not None:
            raise err
        if subcommand == "version":
            return "v3.14.2+gc309b6f\n"
        if subcommand == "list":
            pattern = args[args.index("--filter") + 1]
            return json.dumps(
                [
                    {**release, "revision": str(release["revision"])}
                    for release in self.releases
                    if re.search(pattern, release["name"])
                ]
            )
        if subcommand in ("install", "upgrade"):
            return self._apply(subcommand, args)
        raise HelmException(f"Unexpected helm command {args}")

    def _apply(self, subcommand: str, args: list[str]) -> str:
        name = args[1]
        metadata = self._read_chart(Path(args[2]))
        namespace = "default"
        if "--namespace" in args:
            namespace = args[args.index("--namespace") + 1]
        existing = next(
            iter([release for release in self.releases if release["name"] == name]),
            None,
        )
        if subcommand == "install":
            if existing:
                raise HelmException(f"cannot re-use a name that is still in use: {name}")
            existing = {
                "name": name,
                "namespace": namespace,
                "revision": 0,
                "status": "deployed",
            }
            self.releases.append(existing)
        elif existing is None:
            raise HelmException(f'"{name}" has no deployed releases')
        existing["revision"] += 1
        existing["chart"] = f"{metadata['name']}-{metadata['version']}"
        existing["app_version"] = metadata.get("appVersion")
        return json.dumps(
            {
                "name": name,
                "namespace": existing["namespace"],
                "version": existing["revision"],
                "info": {"status": "deployed", "last_deployed": "2024-01-01T00:00:00Z"},
                "chart": {"metadata": metadata},
            }
        )

    def _read_chart(self, chart_path: Path) -> dict[str, Any]:
        """Unpack the serialized chart payload and return its Chart.yaml."""
        with tarfile.open(fileobj=io.BytesIO(chart_path.read_bytes())) as archive:
            members = {member.name: member for member in archive.getmembers()}
            chart_file = next(
                name for name in members if name.endswith("/Chart.yaml")
            )
            extracted = archive.extractfile(members[chart_file])
            assert extracted
            metadata: dict[str, Any] = yaml.safe_load(extracted.read())
        self.charts.append(metadata)
        return metadata


