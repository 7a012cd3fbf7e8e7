"""Tests for the cluster session."""

import asyncio
from pathlib import Path

import pytest

from helm_reconcile import command
from helm_reconcile.credentials import ClusterConnection
from helm_reconcile.exceptions import ClusterConnectionError, HelmException
from helm_reconcile.release import ListReleasesRequest, ReleaseManager
from helm_reconcile.session import ClusterSession
from helm_reconcile.tunnel import ClusterClient, Tunnel

from . import KUBECONFIG, FakeHelm


@pytest.fixture(name="close_events")
def close_events_fixture(monkeypatch: pytest.MonkeyPatch) -> list[str]:
    """Fixture recording the order session resources are released in."""
    events: list[str] = []
    client_close = ClusterClient.close
    tunnel_close = Tunnel.close
    manager_close = ReleaseManager.close

    async def close_client(self: ClusterClient) -> None:
        events.append("client")
        await client_close(self)

    async def close_tunnel(self: Tunnel) -> None:
        events.append("tunnel")
        await tunnel_close(self)

    async def close_manager(self: ReleaseManager) -> None:
        events.append("manager")
        await manager_close(self)

    monkeypatch.setattr(ClusterClient, "close", close_client)
    monkeypatch.setattr(Tunnel, "close", close_tunnel)
    monkeypatch.setattr(ReleaseManager, "close", close_manager)
    return events


async def test_ambient_session(fake_helm: FakeHelm) -> None:
    """Test a session using the ambient cluster context."""
    async with ClusterSession(ClusterConnection()) as manager:
        releases = await manager.list(ListReleasesRequest.for_release("demo"))

    assert releases == []
    assert fake_helm.subcommands == ["version", "list"]
    env = fake_helm.commands[0].env or {}
    assert "KUBECONFIG" not in env
    assert env["HELM_NAMESPACE"] == "kube-system"


async def test_kubeconfig_session(fake_helm: FakeHelm) -> None:
    """Test a session with explicit kubeconfig content."""
    connection = ClusterConnection(kubeconfig=KUBECONFIG, service_namespace="tiller")
    async with ClusterSession(connection) as manager:
        await manager.list(ListReleasesRequest.for_release("demo"))
        env = fake_helm.commands[-1].env or {}
        kubeconfig_path = Path(env["KUBECONFIG"])
        work_dir = Path(env["HELM_CACHE_HOME"]).parent
        assert kubeconfig_path.read_text() == KUBECONFIG
        assert work_dir.is_dir()
        assert env["HELM_NAMESPACE"] == "tiller"

    # Everything the session created is removed on exit
    assert not kubeconfig_path.exists()
    assert not work_dir.exists()


async def test_release_order(fake_helm: FakeHelm, close_events: list[str]) -> None:
    """Test resources are released in reverse order of acquisition."""
    async with ClusterSession(ClusterConnection(kubeconfig=KUBECONFIG)):
        assert close_events == []
    assert close_events == ["manager", "tunnel", "client"]


async def test_release_order_on_error(
    fake_helm: FakeHelm, close_events: list[str]
) -> None:
    """Test resources are released once when the session body fails."""
    with pytest.raises(ValueError, match="body failed"):
        async with ClusterSession(ClusterConnection(kubeconfig=KUBECONFIG)):
            raise ValueError("body failed")
    assert close_events == ["manager", "tunnel", "client"]


@pytest.mark.parametrize(
    ("kubeconfig", "match"),
    [
        ("clusters: [prod\n", "Unable to parse kubeconfig"),
        ("- prod\n", "expected a mapping"),
        ("apiVersion: v1\nkind: Config\n", "missing clusters"),
    ],
)
async def test_invalid_kubeconfig(
    fake_helm: FakeHelm, close_events: list[str], kubeconfig: str, match: str
) -> None:
    """Test a kubeconfig that can't be used fails before reaching helm."""
    with pytest.raises(ClusterConnectionError, match=match):
        async with ClusterSession(ClusterConnection(kubeconfig=kubeconfig)):
            pass
    assert fake_helm.calls == []
    assert close_events == []


async def test_tunnel_failure(fake_helm: FakeHelm, close_events: list[str]) -> None:
    """Test a failure opening the tunnel releases the cluster client."""
    fake_helm.errors["version"] = HelmException("helm: command not found")
    with pytest.raises(ClusterConnectionError, match="Unable to reach release service"):
        async with ClusterSession(ClusterConnection(kubeconfig=KUBECONFIG)):
            pass
    assert close_events == ["tunnel", "client"]


async def test_cancelled_during_probe(
    monkeypatch: pytest.MonkeyPatch, close_events: list[str]
) -> None:
    """Test cancelling while probing helm removes the tunnel working directory."""
    started = asyncio.Event()
    work_dirs: list[Path] = []

    async def run(cmd: command.Task, timeout: float | None = None) -> str:
        assert isinstance(cmd, command.Command)
        work_dirs.append(Path((cmd.env or {})["HELM_CACHE_HOME"]).parent)
        started.set()
        await asyncio.sleep(3600)
        return ""

    monkeypatch.setattr(command, "run", run)

    async def open_session() -> None:
        async with ClusterSession(ClusterConnection(kubeconfig=KUBECONFIG)):
            pass

    task = asyncio.create_task(open_session())
    await started.wait()
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task

    assert len(work_dirs) == 1
    assert not work_dirs[0].exists()
    assert close_events == ["tunnel", "client"]


async def test_unexpected_probe_error(
    monkeypatch: pytest.MonkeyPatch, close_events: list[str]
) -> None:
    """Test an unexpected error while probing helm still releases the tunnel."""

    async def run(cmd: command.Task, timeout: float | None = None) -> str:
        raise RuntimeError("probe exploded")

    monkeypatch.setattr(command, "run", run)
    with pytest.raises(RuntimeError, match="probe exploded"):
        async with ClusterSession(ClusterConnection(kubeconfig=KUBECONFIG)):
            pass
    assert close_events == ["tunnel", "client"]


async def test_session_not_reentrant(fake_helm: FakeHelm) -> None:
    """Test a session can't be opened twice at the same time."""
    session = ClusterSession(ClusterConnection())
    async with session:
        with pytest.raises(ClusterConnectionError, match="already open"):
            await session.__aenter__()
