"""Test fixtures for helm-reconcile."""

from pathlib import Path

import pytest

from helm_reconcile import command

from . import CHART_YAML, DEPLOYMENT_YAML, VALUES_YAML, FakeHelm


@pytest.fixture(name="fake_helm")
def fake_helm_fixture(monkeypatch: pytest.MonkeyPatch) -> FakeHelm:
    """Fixture replacing helm invocations with an in-memory release service."""
    helm = FakeHelm()
    monkeypatch.setattr(command, "run", helm.run)
    return helm


@pytest.fixture(name="chart_dir")
def chart_dir_fixture(tmp_path: Path) -> Path:
    """Create a chart directory at <tmp>/ws/app and return its path."""
    chart_dir = tmp_path / "ws" / "app"
    (chart_dir / "templates").mkdir(parents=True)
    (chart_dir / "Chart.yaml").write_text(CHART_YAML)
    (chart_dir / "values.yaml").write_text(VALUES_YAML)
    (chart_dir / "templates" / "deployment.yaml").write_text(DEPLOYMENT_YAML)
    (chart_dir / "templates" / "_helpers.tpl").write_text('{{- define "app.name" -}}app{{- end }}\n')
    return chart_dir


@pytest.fixture(name="workspace")
def workspace_fixture(chart_dir: Path) -> Path:
    """Return the workspace root containing the chart directory."""
    return chart_dir.parent
