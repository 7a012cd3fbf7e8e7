"""helm-reconcile status action."""

from dataclasses import replace
import logging
from argparse import ArgumentParser, _SubParsersAction as SubParsersAction
from typing import Any, cast

from helm_reconcile.config import HelmConfig
from helm_reconcile.release import query_release_status
from helm_reconcile.session import ClusterSession

from . import common
from .format import print_struct, print_table

_LOGGER = logging.getLogger(__name__)


class StatusAction:
    """Report whether a release exists and would be installed or updated."""

    @classmethod
    def register(
        cls, subparsers: SubParsersAction  # type: ignore[type-arg]
    ) -> ArgumentParser:
        """Register the subparser commands."""
        args = cast(
            ArgumentParser,
            subparsers.add_parser(
                "status",
                help="Show the status of a release",
                description="Query the release service for an existing release",
            ),
        )
        args.add_argument(
            "release",
            type=str,
            help="Name of the release",
        )
        args.add_argument(
            "--namespace",
            "-n",
            type=str,
            default="default",
            help="Namespace the release is expected in",
        )
        args.add_argument(
            "--output",
            "-o",
            choices=["table", "json", "yaml"],
            default="table",
            help="Output format of the command",
        )
        common.add_cluster_flags(args)
        args.set_defaults(cls=cls)
        return args

    async def run(  # type: ignore[no-untyped-def]
        self,
        release: str,
        namespace: str,
        output: str,
        **kwargs,  # pylint: disable=unused-argument
    ) -> None:
        """Async Action implementation."""
        resolver = await common.build_resolver(kwargs.get("credentials_file"))
        connection = await resolver.resolve(
            kwargs.get("kubeconfig_id"), common.build_principal(kwargs.get("principal"))
        )
        config = HelmConfig(helm_bin=kwargs["helm_bin"])
        connection = replace(connection, service_namespace=kwargs["service_namespace"])
        async with ClusterSession(connection, config) as manager:
            result = await query_release_status(manager, release, namespace)

        row: dict[str, Any] = {
            "name": release,
            "status": str(result.status),
            "action": "update" if result.exists else "install",
        }
        if result.release:
            row["namespace"] = result.release.namespace
            row["revision"] = result.release.revision
            row["chart"] = result.release.chart or ""
        if output == "table":
            print_table([row])
        else:
            print_struct({**row, "warnings": result.warnings}, output)
