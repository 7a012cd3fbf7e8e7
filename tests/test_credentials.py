"""Tests for credential resolution."""

from pathlib import Path

import pytest

from helm_reconcile.credentials import (
    SYSTEM,
    ClusterConnection,
    FileCredentialStore,
    InMemoryCredentialStore,
    KubeconfigCredential,
    Principal,
    StoreCredentialResolver,
)
from helm_reconcile.exceptions import (
    ClusterConnectionError,
    CredentialNotFound,
    InputException,
)

from . import KUBECONFIG

CREDENTIALS_YAML = """\
credentials:
- id: prod-cluster
  description: Production cluster
  content: |
    apiVersion: v1
    kind: Config
  owners:
  - deployer
- id: dev-cluster
  content: dev-kubeconfig
"""


@pytest.fixture(name="store")
def store_fixture() -> InMemoryCredentialStore:
    """Fixture for a store with a global and a scoped credential."""
    return InMemoryCredentialStore(
        [
            KubeconfigCredential(id="prod-cluster", content=KUBECONFIG),
            KubeconfigCredential(
                id="team-cluster", content="team-kubeconfig", owners=["alice"]
            ),
        ]
    )


@pytest.mark.parametrize("credential_id", [None, "", "   "])
async def test_blank_id_is_ambient(
    store: InMemoryCredentialStore, credential_id: str | None
) -> None:
    """Test a blank credential id resolves to the ambient cluster context."""
    resolver = StoreCredentialResolver(store)
    connection = await resolver.resolve(credential_id, SYSTEM)
    assert connection.ambient
    assert connection.kubeconfig is None


async def test_resolve(store: InMemoryCredentialStore) -> None:
    """Test resolving a stored kubeconfig."""
    resolver = StoreCredentialResolver(store)
    connection = await resolver.resolve("prod-cluster", SYSTEM)
    assert not connection.ambient
    assert connection.kubeconfig == KUBECONFIG


async def test_credential_not_found(store: InMemoryCredentialStore) -> None:
    """Test resolving an id with no stored credential."""
    resolver = StoreCredentialResolver(store)
    with pytest.raises(CredentialNotFound, match="missing-cluster") as exc_info:
        await resolver.resolve("missing-cluster", SYSTEM)
    assert exc_info.value.credential_id == "missing-cluster"
    assert isinstance(exc_info.value, ClusterConnectionError)


async def test_first_match_wins(store: InMemoryCredentialStore) -> None:
    """Test the first credential in store order wins for a duplicate id."""
    store.add(KubeconfigCredential(id="prod-cluster", content="shadowed"))
    resolver = StoreCredentialResolver(store)
    connection = await resolver.resolve("prod-cluster", SYSTEM)
    assert connection.kubeconfig == KUBECONFIG


async def test_owner_scoping(store: InMemoryCredentialStore) -> None:
    """Test scoped credentials are only visible to their owners."""
    resolver = StoreCredentialResolver(store)
    connection = await resolver.resolve("team-cluster", Principal("alice"))
    assert connection.kubeconfig == "team-kubeconfig"

    with pytest.raises(CredentialNotFound):
        await resolver.resolve("team-cluster", Principal("bob"))

    # Global credentials are visible to everyone
    connection = await resolver.resolve("prod-cluster", Principal("bob"))
    assert connection.kubeconfig == KUBECONFIG


async def test_system_sees_scoped_credentials(store: InMemoryCredentialStore) -> None:
    """Test the trusted system identity can use scoped credentials."""
    resolver = StoreCredentialResolver(store)
    connection = await resolver.resolve("team-cluster", SYSTEM)
    assert connection.kubeconfig == "team-kubeconfig"


def test_secret_content_not_in_repr() -> None:
    """Test kubeconfig content is never rendered in debug output."""
    credential = KubeconfigCredential(id="prod-cluster", content="secret-token")
    connection = ClusterConnection(kubeconfig="secret-token")
    assert "secret-token" not in repr(credential)
    assert "secret-token" not in repr(connection)


def test_parse_credentials_file() -> None:
    """Test parsing a credentials file."""
    store = FileCredentialStore.parse_yaml(CREDENTIALS_YAML)
    credentials = store.lookup(SYSTEM)
    assert [cred.id for cred in credentials] == ["prod-cluster", "dev-cluster"]
    assert credentials[0].owners == ["deployer"]
    assert credentials[0].description == "Production cluster"
    assert credentials[0].get_content() == "apiVersion: v1\nkind: Config\n"
    assert credentials[1].owners == []

    assert [cred.id for cred in store.lookup(Principal("bob"))] == ["dev-cluster"]


def test_parse_empty_credentials_file() -> None:
    """Test parsing an empty credentials file."""
    store = FileCredentialStore.parse_yaml("")
    assert store.lookup(SYSTEM) == []


def test_parse_invalid_credentials_file() -> None:
    """Test a credential missing its content."""
    with pytest.raises(InputException, match="Invalid credentials file"):
        FileCredentialStore.parse_yaml("credentials:\n- id: prod-cluster\n")


async def test_load_credentials_file(tmp_path: Path) -> None:
    """Test reading a credentials file from disk."""
    credentials_file = tmp_path / "credentials.yaml"
    credentials_file.write_text(CREDENTIALS_YAML)
    store = await FileCredentialStore.load(credentials_file)
    resolver = StoreCredentialResolver(store)
    connection = await resolver.resolve("dev-cluster", Principal("bob"))
    assert connection.kubeconfig == "dev-kubeconfig"


async def test_load_missing_credentials_file(tmp_path: Path) -> None:
    """Test reading a credentials file that does not exist."""
    with pytest.raises(InputException, match="Unable to read credentials file"):
        await FileCredentialStore.load(tmp_path / "missing.yaml")
