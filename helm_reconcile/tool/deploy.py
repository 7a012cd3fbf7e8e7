"""helm-reconcile deploy action."""

import logging
import pathlib
import sys
from argparse import (
    ArgumentParser,
    BooleanOptionalAction,
    _SubParsersAction as SubParsersAction,
)
from typing import cast

from helm_reconcile.config import DEFAULT_TIMEOUT, HelmConfig
from helm_reconcile.reconciler import DeploymentContext, Reconciler
from helm_reconcile.status import LoggingStatusReporter

from . import common

_LOGGER = logging.getLogger(__name__)


class DeployAction:
    """Install or update a release from a local chart directory."""

    @classmethod
    def register(
        cls, subparsers: SubParsersAction  # type: ignore[type-arg]
    ) -> ArgumentParser:
        """Register the subparser commands."""
        args = cast(
            ArgumentParser,
            subparsers.add_parser(
                "deploy",
                help="Install or update a release",
                description=(
                    "Installs the chart as a new release, or updates the release "
                    "when a deployed or failed release of the same name exists."
                ),
            ),
        )
        args.add_argument(
            "chart",
            type=str,
            help="Chart directory, relative to the workspace",
        )
        args.add_argument(
            "--release",
            type=str,
            required=True,
            help="Name of the release",
        )
        args.add_argument(
            "--namespace",
            "-n",
            type=str,
            required=True,
            help="Namespace a new release is installed into",
        )
        args.add_argument(
            "--workspace",
            type=pathlib.Path,
            default=pathlib.Path.cwd(),
            help="Root directory the chart location is resolved against",
        )
        args.add_argument(
            "--wait",
            default=False,
            action=BooleanOptionalAction,
            help="Wait until the resources of the release are ready",
        )
        args.add_argument(
            "--timeout",
            type=int,
            default=DEFAULT_TIMEOUT,
            help="Seconds the release service is given to install or update",
        )
        common.add_cluster_flags(args)
        args.set_defaults(cls=cls)
        return args

    async def run(  # type: ignore[no-untyped-def]
        self,
        chart: str,
        release: str,
        namespace: str,
        workspace: pathlib.Path,
        wait: bool,
        timeout: int,
        **kwargs,  # pylint: disable=unused-argument
    ) -> None:
        """Async Action implementation."""
        reconciler = Reconciler(
            await common.build_resolver(kwargs.get("credentials_file")),
            LoggingStatusReporter(_LOGGER),
            workspace=workspace,
            principal=common.build_principal(kwargs.get("principal")),
            config=HelmConfig(helm_bin=kwargs["helm_bin"]),
        )
        outcome = await reconciler.reconcile(
            DeploymentContext(
                chart_location=chart,
                target_namespace=namespace,
                release_name=release,
                service_namespace=kwargs["service_namespace"],
                wait=wait,
                timeout=timeout,
                credential_id=kwargs.get("kubeconfig_id"),
            )
        )
        print(f"{release}: {outcome}")
        if not outcome.succeeded:
            sys.exit(1)
