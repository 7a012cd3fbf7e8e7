"""Module for resolving cluster connections from stored kubeconfig credentials.

The reconciler never reaches into a credential backend directly. It is handed a
`CredentialResolver` which turns an optional credential id into a
`ClusterConnection` on behalf of a `Principal`.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
import logging
from pathlib import Path

import aiofiles
from mashumaro import DataClassDictMixin
from mashumaro.codecs.yaml import yaml_decode
from mashumaro.exceptions import InvalidFieldValue, MissingField
import yaml

from .config import DEFAULT_SERVICE_NAMESPACE
from .exceptions import CredentialNotFound, InputException

__all__ = [
    "SYSTEM",
    "Principal",
    "ClusterConnection",
    "KubeconfigCredential",
    "CredentialStore",
    "InMemoryCredentialStore",
    "FileCredentialStore",
    "CredentialResolver",
    "StoreCredentialResolver",
]

_LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class Principal:
    """The identity a credential lookup runs as."""

    name: str

    @property
    def trusted(self) -> bool:
        """Return True for the system identity which can see every credential."""
        return self == SYSTEM


SYSTEM = Principal("SYSTEM")


@dataclass(frozen=True)
class ClusterConnection:
    """Resolved connection material for reaching a cluster."""

    kubeconfig: str | None = field(default=None, repr=False)
    """Raw kubeconfig content, or None to use the ambient cluster context."""

    service_namespace: str = DEFAULT_SERVICE_NAMESPACE
    """Namespace of the cluster side release service."""

    @property
    def ambient(self) -> bool:
        """Return True when no explicit kubeconfig was resolved."""
        return not self.kubeconfig


@dataclass
class KubeconfigCredential(DataClassDictMixin):
    """A stored kubeconfig."""

    id: str
    """Identifier the credential is looked up by."""

    content: str = field(repr=False)
    """The kubeconfig text."""

    description: str | None = None
    """Informational description of the credential."""

    owners: list[str] = field(default_factory=list)
    """Principals the credential is scoped to, or empty for a global credential."""

    def get_content(self) -> str:
        """Return the kubeconfig text."""
        return self.content

    def visible_to(self, principal: Principal) -> bool:
        """Return True if the principal may use this credential."""
        return principal.trusted or not self.owners or principal.name in self.owners


@dataclass
class CredentialFile(DataClassDictMixin):
    """Serialized form of a FileCredentialStore."""

    credentials: list[KubeconfigCredential] = field(default_factory=list)


class CredentialStore(ABC):
    """A backing store of kubeconfig credentials with a stable order."""

    @abstractmethod
    def lookup(
        self,
        owner: Principal,
        domain_requirements: list[str] | None = None,
    ) -> list[KubeconfigCredential]:
        """Return the credentials visible to the owner, in store order."""


def first_with_id(
    credentials: list[KubeconfigCredential], credential_id: str
) -> KubeconfigCredential | None:
    """Return the first credential with the specified id."""
    return next(iter([cred for cred in credentials if cred.id == credential_id]), None)


class InMemoryCredentialStore(CredentialStore):
    """Credential store holding credentials in insertion order."""

    def __init__(self, credentials: list[KubeconfigCredential] | None = None) -> None:
        """Initialize InMemoryCredentialStore."""
        self._credentials: list[KubeconfigCredential] = list(credentials or [])

    def add(self, credential: KubeconfigCredential) -> None:
        """Add a credential to the end of the store."""
        self._credentials.append(credential)

    def lookup(
        self,
        owner: Principal,
        domain_requirements: list[str] | None = None,
    ) -> list[KubeconfigCredential]:
        """Return the credentials visible to the owner, in insertion order."""
        return [cred for cred in self._credentials if cred.visible_to(owner)]


class FileCredentialStore(InMemoryCredentialStore):
    """Credential store read from a YAML file.

    The file has the form:
    ```yaml
    credentials:
    - id: prod-cluster
      content: |
        apiVersion: v1
        kind: Config
        ...
      owners: [deployer]
    ```
    """

    @classmethod
    def parse_yaml(cls, content: str) -> "FileCredentialStore":
        """Parse the credential file contents."""
        if not content.strip():
            return cls()
        try:
            credential_file = yaml_decode(content, CredentialFile)
        except (yaml.YAMLError, MissingField, InvalidFieldValue) as err:
            raise InputException(f"Invalid credentials file: {err}") from err
        return cls(credential_file.credentials)

    @classmethod
    async def load(cls, path: Path) -> "FileCredentialStore":
        """Read the credential file at the specified path."""
        try:
            async with aiofiles.open(path, mode="r") as credential_file:
                content = await credential_file.read()
        except OSError as err:
            raise InputException(
                f"Unable to read credentials file {path}: {err}"
            ) from err
        store = cls.parse_yaml(content)
        _LOGGER.debug("Loaded %d credentials from %s", len(store._credentials), path)
        return store


class CredentialResolver(ABC):
    """Resolves an optional credential id into cluster connection material."""

    @abstractmethod
    async def resolve(
        self, credential_id: str | None, principal: Principal
    ) -> ClusterConnection:
        """Return the ClusterConnection for the credential id.

        A blank id resolves to the ambient cluster context. Raises
        CredentialNotFound when the id does not match any visible credential.
        """


class StoreCredentialResolver(CredentialResolver):
    """Resolves credentials against a CredentialStore."""

    def __init__(self, store: CredentialStore) -> None:
        """Initialize StoreCredentialResolver."""
        self._store = store

    async def resolve(
        self, credential_id: str | None, principal: Principal
    ) -> ClusterConnection:
        """Return the ClusterConnection for the credential id."""
        if not credential_id or not credential_id.strip():
            _LOGGER.debug("No kubeconfig credential id, using ambient cluster context")
            return ClusterConnection()
        credentials = self._store.lookup(principal)
        if (credential := first_with_id(credentials, credential_id)) is None:
            raise CredentialNotFound(credential_id)
        _LOGGER.debug(
            "Resolved kubeconfig credential %s for %s", credential_id, principal.name
        )
        return ClusterConnection(kubeconfig=credential.get_content())
