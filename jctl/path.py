"""Library for resolving a program reference to a buildable Go command.

A program reference is either a fully qualified import path such as
`github.com/x/hello` or a local path relative to the working directory such
as `.` or `./cmd/hello`. Local paths are expanded with `go list`:

```python
from jctl.path import Resolver

program = await Resolver().resolve("./cmd/hello")
print(program.import_path, program.dir)
```
"""

from collections.abc import Awaitable, Callable
from dataclasses import dataclass
import logging
from pathlib import Path
from typing import Any

from . import command
from .command import Command, iter_json_documents
from .exceptions import (
    AmbiguousTargetError,
    CommandException,
    NotExecutableError,
    TargetNotFoundError,
)

__all__ = [
    "Program",
    "Resolver",
    "is_local_path",
]

_LOGGER = logging.getLogger(__name__)

GO_BIN = "go"

# Package name of Go packages that build to an executable.
COMMAND_PACKAGE = "main"

PackageLister = Callable[[str, bool], Awaitable[list[dict[str, Any]]]]


@dataclass(frozen=True)
class Program:
    """A resolved, fully qualified Go command."""

    import_path: str
    """The canonical import path of the command."""

    dir: Path
    """Directory containing the package sources."""

    @property
    def data_dir(self) -> Path:
        """Directory of auxiliary files shipped next to the command."""
        return self.dir / "jctldata"

    def __str__(self) -> str:
        return self.import_path


def is_local_path(ref: str) -> bool:
    """Return True if the reference is relative to the working directory."""
    return ref in (".", "..") or ref.startswith("./") or ref.startswith("../")


class GoList:
    """Query Go package metadata with `go list -json`."""

    def __init__(self, cwd: Path | None = None) -> None:
        """Initialize GoList."""
        self._cwd = cwd

    async def __call__(self, pattern: str, tolerate_errors: bool) -> list[dict[str, Any]]:
        """Return the metadata of every package matching the pattern.

        When errors are tolerated, packages that fail to load are returned
        with their `Error` field set instead of failing the command.
        """
        args = [GO_BIN, "list", "-json"]
        if tolerate_errors:
            args.append("-e")
        args.append(pattern)
        out = await command.run(Command(args, cwd=self._cwd))
        docs, rest = iter_json_documents(out)
        if rest.strip():
            raise CommandException(f"Unable to parse `go list` output: {rest}")
        return docs


class Resolver:
    """Resolves a user supplied program reference into a Program."""

    def __init__(self, lister: PackageLister | None = None) -> None:
        """Initialize Resolver."""
        self._lister = lister or GoList()

    async def _expand(self, ref: str) -> dict[str, Any]:
        """Expand a local path into the metadata of exactly one package."""
        try:
            packages = await self._lister(ref, True)
        except CommandException as err:
            raise AmbiguousTargetError(
                f"Unable to expand path {ref} into a package: {err}"
            ) from err
        candidates = [pkg for pkg in packages if not pkg.get("Error")]
        for pkg in packages:
            if error := pkg.get("Error"):
                _LOGGER.debug("Skipping package %s: %s", pkg.get("ImportPath"), error)
        if len(candidates) != 1:
            raise AmbiguousTargetError(
                f"Found {len(candidates)} packages for path {ref}, expected exactly one"
            )
        return candidates[0]

    async def _lookup(self, ref: str) -> dict[str, Any]:
        try:
            packages = await self._lister(ref, False)
        except CommandException as err:
            raise TargetNotFoundError(f"Unable to find package {ref}: {err}") from err
        if len(packages) != 1:
            raise TargetNotFoundError(
                f"Found {len(packages)} packages for {ref}, expected exactly one"
            )
        return packages[0]

    async def resolve(self, ref: str) -> Program:
        """Resolve the reference to a canonical, executable program."""
        if not ref:
            raise TargetNotFoundError("Program path must not be empty")
        if is_local_path(ref):
            pkg = await self._expand(ref)
            _LOGGER.debug("Expanded %s to %s", ref, pkg.get("ImportPath"))
        else:
            pkg = await self._lookup(ref)
        import_path = pkg.get("ImportPath")
        if not import_path or not pkg.get("Dir"):
            raise TargetNotFoundError(f"Package {ref} has no import path or directory")
        if pkg.get("Name") != COMMAND_PACKAGE:
            raise NotExecutableError(
                f"Package {import_path} is a library (package {pkg.get('Name')}), "
                f"not a command"
            )
        return Program(import_path=import_path, dir=Path(pkg["Dir"]))
