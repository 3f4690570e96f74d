"""Library for compiling a Go command into a static binary.

The binary is written into a private temporary directory. Use `compile` as a
context manager so the directory is removed once the binary has been
packaged:

```python
async with GoCompiler().compile(program, Platform("linux", "amd64")) as binary:
    layer = build_single_file_layer(binary, "/jctl-app/hello")
```
"""

from collections.abc import AsyncGenerator
from contextlib import AbstractAsyncContextManager, asynccontextmanager
import logging
from pathlib import Path
import shutil
import tempfile
from typing import Protocol

from . import command
from .command import Command
from .exceptions import CompileError
from .image import Platform
from .path import Program

__all__ = [
    "Compiler",
    "GoCompiler",
]

_LOGGER = logging.getLogger(__name__)

GO_BIN = "go"
OUTPUT_NAME = "out"


class Compiler(Protocol):
    """Builds a program into an executable for a target platform."""

    def compile(
        self, program: Program, platform: Platform
    ) -> AbstractAsyncContextManager[Path]:
        """Build the program, yielding the path of the binary.

        The binary and its directory only exist within the context.
        """


def _build_env(platform: Platform) -> dict[str, str]:
    env = {
        "CGO_ENABLED": "0",
        "GOOS": platform.os,
        "GOARCH": platform.architecture,
    }
    if platform.variant and platform.architecture == "arm":
        env["GOARM"] = platform.variant.lstrip("v")
    return env


class GoCompiler:
    """Compiles programs with `go build`."""

    def __init__(self, cwd: Path | None = None) -> None:
        """Initialize GoCompiler."""
        self._cwd = cwd

    @asynccontextmanager
    async def compile(
        self, program: Program, platform: Platform
    ) -> AsyncGenerator[Path, None]:
        """Build a static binary for the program and platform."""
        tmp_dir = Path(tempfile.mkdtemp(prefix="jctl-"))
        try:
            binary = tmp_dir / OUTPUT_NAME
            cmd = Command(
                [GO_BIN, "build", "-o", str(binary), program.import_path],
                cwd=self._cwd,
                exc=CompileError,
                env=_build_env(platform),
            )
            _LOGGER.info("Building %s for %s", program, platform)
            await command.run(cmd)
            yield binary
        finally:
            shutil.rmtree(tmp_dir, ignore_errors=True)
