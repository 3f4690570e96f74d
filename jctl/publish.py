"""Library for publishing images to a registry.

Images are pushed to `<docker repo>/<name>:latest` where the name is the
lower-cased base name of the program followed by a hash of the full import
path, so two programs with the same base name never collide. The returned
reference is pinned to the manifest digest.
"""

from dataclasses import dataclass
import hashlib
import logging
import posixpath

from .exceptions import PublishError, RegistryConfigError
from .image import Image
from .path import Program
from .registry import Registry

__all__ = [
    "Publisher",
    "Reference",
    "package_with_md5",
]

_LOGGER = logging.getLogger(__name__)

DEFAULT_TAG = "latest"


def package_with_md5(import_path: str) -> str:
    """Return the repository name for an import path."""
    digest = hashlib.md5(import_path.encode("utf-8")).hexdigest()
    return f"{posixpath.basename(import_path)}-{digest}"


@dataclass(frozen=True)
class Reference:
    """The published identity of an image."""

    repository: str
    """Registry qualified repository the image was pushed to."""

    tag: str
    """The tag that was pushed."""

    digest: str
    """Content digest of the image manifest."""

    @property
    def name(self) -> str:
        """The digest pinned reference, suitable for running the image."""
        return f"{self.repository}@{self.digest}"

    @property
    def tagged_name(self) -> str:
        return f"{self.repository}:{self.tag}"

    def __str__(self) -> str:
        return self.name


class Publisher:
    """Pushes images under a name derived from the program."""

    def __init__(self, docker_repo: str, registry: Registry) -> None:
        """Initialize Publisher.

        The docker repo is checked here so a missing configuration is
        reported before any program is built or pushed.
        """
        if not docker_repo or not docker_repo.strip():
            raise RegistryConfigError("Destination docker repository is not configured")
        self._base = docker_repo.strip().rstrip("/")
        self._registry = registry

    def repository(self, program: Program) -> str:
        """Return the repository that the program is published to."""
        return f"{self._base}/{package_with_md5(program.import_path.lower())}"

    async def publish(self, image: Image, program: Program) -> Reference:
        """Push the image and return its digest reference."""
        repository = self.repository(program)
        tag = f"{repository}:{DEFAULT_TAG}"
        try:
            await self._registry.push(tag, image)
        except PublishError as err:
            raise PublishError(f"Failed to publish {program}: {err}") from err
        except ValueError as err:
            raise PublishError(f"Invalid image name {tag} for {program}: {err}") from err
        reference = Reference(
            repository=repository, tag=DEFAULT_TAG, digest=image.digest()
        )
        _LOGGER.info("Published %s as %s", program, reference)
        return reference
