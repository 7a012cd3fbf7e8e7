"""Flags and helpers shared by the helm-reconcile actions."""

from argparse import ArgumentParser
import pathlib

from helm_reconcile.config import DEFAULT_SERVICE_NAMESPACE, HelmConfig
from helm_reconcile.credentials import (
    CredentialResolver,
    FileCredentialStore,
    InMemoryCredentialStore,
    Principal,
    StoreCredentialResolver,
    SYSTEM,
)


def add_cluster_flags(args: ArgumentParser) -> None:
    """Add flags selecting the cluster and the release service."""
    args.add_argument(
        "--kubeconfig-id",
        type=str,
        default=None,
        help="Id of the stored kubeconfig credential, or the ambient cluster if unset",
    )
    args.add_argument(
        "--credentials-file",
        type=pathlib.Path,
        default=None,
        help="YAML file holding the stored kubeconfig credentials",
    )
    args.add_argument(
        "--principal",
        type=str,
        default=None,
        help="Identity credential lookups run as, defaults to the system identity",
    )
    args.add_argument(
        "--service-namespace",
        type=str,
        default=DEFAULT_SERVICE_NAMESPACE,
        help="Namespace of the cluster side release service",
    )
    args.add_argument(
        "--helm-bin",
        type=str,
        default=HelmConfig.helm_bin,
        help="Path of the helm binary",
    )


async def build_resolver(credentials_file: pathlib.Path | None) -> CredentialResolver:
    """Return a CredentialResolver for the credentials file flag."""
    if credentials_file is None:
        return StoreCredentialResolver(InMemoryCredentialStore())
    return StoreCredentialResolver(await FileCredentialStore.load(credentials_file))


def build_principal(principal: str | None) -> Principal:
    """Return the Principal for the principal flag."""
    if not principal:
        return SYSTEM
    return Principal(principal)
