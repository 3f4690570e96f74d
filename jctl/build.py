"""Library for assembling a container image for a Go command.

The image is the base image plus two layers: the contents of the program's
`jctldata` directory and the compiled binary. The binary layer is appended
last and the entrypoint points at the file it writes.
"""

import datetime
import logging
from pathlib import Path
import posixpath

from .exceptions import (
    CompileError,
    ConfigMutationError,
    PackagingError,
)
from .gobuild import Compiler, GoCompiler
from .image import History, Image, Layer
from .layer import build_layer, build_single_file_layer
from .path import Program

__all__ = [
    "Builder",
    "app_path",
]

_LOGGER = logging.getLogger(__name__)

AUTHOR = "github.com/toshi0607/jctl"
APP_DIR = "/jctl-app"
DEFAULT_APP_FILENAME = "jctl-app"
DATA_ROOT = "/var/app/jctl"
DATA_PATH_ENV = "JCTL_DATA_PATH"


def app_filename(import_path: str) -> str:
    """Return the file name of the binary inside the image."""
    base = posixpath.basename(import_path.rstrip("/"))
    if base in ("", ".", "/"):
        return DEFAULT_APP_FILENAME
    return base


def app_path(import_path: str) -> str:
    """Return the path of the binary inside the image."""
    return posixpath.join(APP_DIR, app_filename(import_path))


class Builder:
    """Builds images for Go commands on top of a base image."""

    def __init__(
        self,
        base_image: Image,
        compiler: Compiler | None = None,
        creation_time: datetime.datetime | None = None,
    ) -> None:
        """Initialize Builder.

        When a creation time is given every image built is stamped with it,
        so repeated builds of the same program produce the same image.
        """
        self._base_image = base_image
        self._compiler = compiler or GoCompiler()
        self._creation_time = creation_time

    def _data_layer(self, program: Program) -> Layer:
        try:
            blob = build_layer(program.data_dir, DATA_ROOT)
        except PackagingError as err:
            raise PackagingError(
                f"Unable to package data layer for {program}: {err}"
            ) from err
        return Layer(
            blob=blob,
            history=History(
                author=AUTHOR,
                created_by=f"jctl {program}",
                comment=f"jctl contents, at ${DATA_PATH_ENV}",
            ),
        )

    def _binary_layer(
        self, program: Program, binary_path: str, binary: Path
    ) -> Layer:
        try:
            blob = build_single_file_layer(binary, binary_path)
        except PackagingError as err:
            raise PackagingError(
                f"Unable to package binary layer for {program}: {err}"
            ) from err
        return Layer(
            blob=blob,
            history=History(
                author=AUTHOR,
                created_by=f"jctl {program}",
                comment=f"go build output, at {binary_path}",
            ),
        )

    def _configure(self, image: Image, program: Program, binary_path: str) -> Image:
        """Point the entrypoint at the binary and expose the data directory."""
        config_file = image.config_file.deep_copy()
        config_file.config.entrypoint = [binary_path]
        config_file.config.env = list(config_file.config.env or []) + [
            f"{DATA_PATH_ENV}={DATA_ROOT}"
        ]
        config_file.author = AUTHOR
        try:
            return image.with_config(config_file)
        except ConfigMutationError as err:
            raise ConfigMutationError(
                f"Unable to configure image for {program}: {err}"
            ) from err

    async def build(self, program: Program) -> Image:
        """Compile the program and assemble its image."""
        platform = self._base_image.platform
        binary_path = app_path(program.import_path)
        try:
            async with self._compiler.compile(program, platform) as binary:
                data_layer = self._data_layer(program)
                binary_layer = self._binary_layer(program, binary_path, binary)
        except CompileError as err:
            raise CompileError(f"Failed to build {program}: {err}") from err
        _LOGGER.debug(
            "Built layers for %s: data %s, binary %s",
            program,
            data_layer.digest,
            binary_layer.digest,
        )
        image = self._base_image.append(data_layer, binary_layer)
        image = self._configure(image, program, binary_path)
        if self._creation_time is not None:
            image = image.with_created(self._creation_time)
        return image

