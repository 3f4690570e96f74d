"""Command line tool for publishing a Go program image."""

from argparse import ArgumentParser
from argparse import _SubParsersAction as SubParsersAction
import logging
from typing import cast

from jctl.config import Config
from jctl.workflow import Workflow

from . import format

_LOGGER = logging.getLogger(__name__)


class PublishAction:
    """Publish a program image without running it."""

    @classmethod
    def register(
        cls, subparsers: SubParsersAction  # type: ignore[type-arg]
    ) -> ArgumentParser:
        """Register the subparser commands."""
        args = cast(
            ArgumentParser,
            subparsers.add_parser(
                "publish",
                help="Build a Go program and publish its image",
                description="Build the Go command at PATH and print the image reference.",
            ),
        )
        args.add_argument(
            "path",
            help="Import path or local path (e.g. `.`) of a Go command",
            type=str,
        )
        args.add_argument(
            "--output",
            "-o",
            choices=format.FORMATS,
            default=format.TEXT,
            help="Output format of the published reference",
        )
        args.set_defaults(cls=cls)
        return args

    async def run(  # type: ignore[no-untyped-def]
        self,
        path: str,
        output: str,
        **kwargs,  # pylint: disable=unused-argument
    ) -> None:
        """Async Action implementation."""
        workflow = await Workflow.from_config(Config.from_env())
        published = await workflow.publish(path)
        if output == format.TEXT:
            print(published.reference.name)
            return
        format.formatter(output).print(
            [
                {
                    "program": published.program.import_path,
                    "image": published.reference.name,
                    "tag": published.reference.tagged_name,
                }
            ]
        )
