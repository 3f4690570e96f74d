"""Command line tool for running a Go program as a Kubernetes Job."""

from argparse import ArgumentParser, BooleanOptionalAction
from argparse import _SubParsersAction as SubParsersAction
import logging
from typing import cast

from jctl.config import (
    DEFAULT_NAMESPACE,
    DEFAULT_TIMEOUT_SECONDS,
    Config,
    resolve_kubeconfig,
)
from jctl.context import timings_context
from jctl.job import JobResult
from jctl.workflow import Workflow

from . import format

_LOGGER = logging.getLogger(__name__)

RESULT_KEYS = ["name", "namespace", "status", "reason", "image"]


def result_record(result: JobResult) -> dict[str, str | None]:
    """Return the job result as a flat record for printing."""
    return {
        "name": result.name,
        "namespace": result.namespace,
        "status": result.state.value,
        "reason": result.condition.reason,
        "message": result.condition.message,
        "image": result.image,
    }


class RunAction:
    """Run a program as a Job."""

    @classmethod
    def register(
        cls, subparsers: SubParsersAction  # type: ignore[type-arg]
    ) -> ArgumentParser:
        """Register the subparser commands."""
        args = cast(
            ArgumentParser,
            subparsers.add_parser(
                "run",
                help="Build a Go program, publish it and run it as a Job",
                description=(
                    "Compile the Go command at PATH, package it with its jctldata "
                    "directory, publish the image and wait for a Job running it."
                ),
            ),
        )
        args.add_argument(
            "path",
            help="Import path or local path (e.g. `.`) of a Go command",
            type=str,
        )
        args.add_argument(
            "--namespace",
            "-n",
            default=DEFAULT_NAMESPACE,
            help="Namespace to create the Job in",
        )
        args.add_argument(
            "--kubeconfig",
            default=None,
            help="Cluster credentials file, defaults to $KUBECONFIG or ~/.kube/config",
        )
        args.add_argument(
            "--timeout",
            "-t",
            type=float,
            default=DEFAULT_TIMEOUT_SECONDS,
            help="Seconds to wait for the Job to finish",
        )
        args.add_argument(
            "--allow-failure",
            default=False,
            action=BooleanOptionalAction,
            help="Exit successfully when the Job finishes with a Failed condition",
        )
        args.add_argument(
            "--output",
            "-o",
            choices=format.FORMATS,
            default=format.TEXT,
            help="Output format of the job result",
        )
        args.set_defaults(cls=cls)
        return args

    async def run(  # type: ignore[no-untyped-def]
        self,
        path: str,
        namespace: str,
        kubeconfig: str | None,
        timeout: float,
        allow_failure: bool,
        output: str,
        **kwargs,  # pylint: disable=unused-argument
    ) -> None:
        """Async Action implementation."""
        config = Config.from_env()
        config.namespace = namespace
        config.kubeconfig = resolve_kubeconfig(kubeconfig)
        config.timeout = timeout

        with timings_context() as timings:
            workflow = await Workflow.from_config(config)
            result = await workflow.execute(
                path, timeout=config.timeout, allow_failure=allow_failure
            )
        for stage, elapsed in timings.items():
            _LOGGER.info("%s took %0.2fs", stage, elapsed)

        keys = RESULT_KEYS if output == format.TEXT else None
        format.formatter(output, keys).print([result_record(result)])
