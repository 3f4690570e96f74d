"""Library for reading and writing images in an OCI registry.

The `Registry` protocol is the narrow surface the builder and publisher need:
fetching a base image and pushing an assembled image. `OrasRegistry`
implements it on top of `oras`, resolving credentials from the Docker
credential store and falling back to anonymous access.
"""

from dataclasses import dataclass
import logging
from pathlib import Path
import tempfile
from typing import Any, Protocol

import aiofiles
import oras.provider

from .auth import get_auth
from .exceptions import PackagingError, PublishError
from .image import (
    INDEX_TYPES,
    MANIFEST_TYPES,
    ConfigFile,
    Descriptor,
    Image,
    Platform,
)

__all__ = [
    "ImageName",
    "Registry",
    "OrasRegistry",
]

_LOGGER = logging.getLogger(__name__)

DEFAULT_REGISTRY = "docker.io"
DEFAULT_TAG = "latest"
_CHUNK_SIZE = 1024 * 1024
_OK_STATUS = (200, 201, 202)


@dataclass(frozen=True)
class ImageName:
    """A parsed image reference `registry/repository[:tag][@digest]`."""

    registry: str
    repository: str
    tag: str | None = None
    digest: str | None = None

    @classmethod
    def parse(cls, reference: str) -> "ImageName":
        """Parse an image reference, filling in Docker Hub defaults."""
        if not reference or reference != reference.strip():
            raise ValueError(f"Invalid image reference '{reference}'")
        name, _, digest = reference.partition("@")
        tag: str | None = None
        last = name.rsplit("/", 1)[-1]
        if ":" in last:
            name, tag = name.rsplit(":", 1)
        parts = name.split("/", 1)
        if len(parts) == 2 and (
            "." in parts[0] or ":" in parts[0] or parts[0] == "localhost"
        ):
            registry, repository = parts
        else:
            registry, repository = DEFAULT_REGISTRY, name
            if "/" not in repository:
                repository = f"library/{repository}"
        if not repository:
            raise ValueError(f"Invalid image reference '{reference}'")
        if not tag and not digest:
            tag = DEFAULT_TAG
        return cls(
            registry=registry, repository=repository, tag=tag, digest=digest or None
        )

    @property
    def repository_name(self) -> str:
        """The registry qualified repository."""
        return f"{self.registry}/{self.repository}"

    @property
    def identifier(self) -> str:
        """The digest if pinned, otherwise the tag."""
        return self.digest or self.tag or DEFAULT_TAG

    def __str__(self) -> str:
        out = self.repository_name
        if self.tag:
            out += f":{self.tag}"
        if self.digest:
            out += f"@{self.digest}"
        return out


class Registry(Protocol):
    """Reads base images from and pushes images to a registry."""

    async def image(self, reference: str, platform: Platform) -> Image:
        """Return the image for the platform, selecting from an index if needed."""

    async def push(self, tag: str, image: Image) -> None:
        """Upload every blob of the image and tag its manifest."""


def _check_response(response: Any, what: str, exc: type[Exception]) -> None:
    if response.status_code not in _OK_STATUS:
        raise exc(
            f"Registry request for {what} failed "
            f"({response.status_code}): {response.text}"
        )


class OrasRegistry:
    """A Registry that talks to OCI registries with oras."""

    def __init__(
        self, insecure: bool = False, docker_config_dir: Path | None = None
    ) -> None:
        """Initialize OrasRegistry."""
        self._insecure = insecure
        self._docker_config_dir = docker_config_dir
        self._clients: dict[str, oras.provider.Registry] = {}

    def _client(self, hostname: str) -> oras.provider.Registry:
        """Return a client for the registry host using any matching credentials.

        Credentials are only held in memory; the credential store is never
        written.
        """
        if (client := self._clients.get(hostname)) is not None:
            return client
        client = oras.provider.Registry(hostname=hostname, insecure=self._insecure)
        if auth := get_auth(hostname, self._docker_config_dir):
            _LOGGER.info("Using authentication for registry %s", hostname)
            client.auth.set_basic_auth(auth.username, auth.password)
        else:
            _LOGGER.warning(
                "No credentials matched registry %s, falling back on anonymous access",
                hostname,
            )
        self._clients[hostname] = client
        return client

    def _get_manifest(
        self, client: oras.provider.Registry, container: Any, identifier: str
    ) -> dict[str, Any]:
        url = f"{client.prefix}://{container.manifest_url(identifier)}"
        response = client.do_request(
            url, "GET", headers={"Accept": ", ".join(MANIFEST_TYPES + INDEX_TYPES)}
        )
        _check_response(response, f"manifest {container}", PackagingError)
        return response.json()

    async def image(self, reference: str, platform: Platform) -> Image:
        """Fetch the manifest and configuration of a base image."""
        name = ImageName.parse(reference)
        _LOGGER.info("Fetching base image %s for %s", name, platform)
        client = self._client(name.registry)
        container = client.get_container(str(name))
        try:
            manifest = self._get_manifest(client, container, name.identifier)
            if manifest.get("mediaType") in INDEX_TYPES or "manifests" in manifest:
                entry = next(
                    (
                        m
                        for m in manifest["manifests"]
                        if platform.matches(m.get("platform", {}))
                    ),
                    None,
                )
                if entry is None:
                    raise PackagingError(
                        f"Base image {name} has no image for platform {platform}"
                    )
                manifest = self._get_manifest(client, container, entry["digest"])
            response = client.get_blob(container, manifest["config"]["digest"])
            _check_response(response, f"config of {name}", PackagingError)
            config_file = ConfigFile.parse_json(response.content)
            base_layers = tuple(Descriptor.from_dict(d) for d in manifest["layers"])
        except (OSError, ValueError, KeyError) as err:
            raise PackagingError(f"Unable to fetch base image {name}: {err}") from err
        return Image(
            config_file=config_file,
            base_layers=base_layers,
            base_reference=name.repository_name,
        )

    async def _copy_blob(
        self,
        client: oras.provider.Registry,
        container: Any,
        source_client: oras.provider.Registry,
        source: Any,
        descriptor: Descriptor,
        path: Path,
    ) -> None:
        """Copy a base image blob into the destination repository."""
        response = source_client.get_blob(source, descriptor.digest, stream=True)
        _check_response(response, f"blob {descriptor.digest}", PublishError)
        async with aiofiles.open(path, "wb") as fd:
            for chunk in response.iter_content(chunk_size=_CHUNK_SIZE):
                await fd.write(chunk)
        self._upload(client, container, descriptor, path)

    def _upload(
        self,
        client: oras.provider.Registry,
        container: Any,
        descriptor: Descriptor,
        path: Path,
    ) -> None:
        _LOGGER.debug("Uploading blob %s to %s", descriptor.digest, container)
        response = client.upload_blob(str(path), container, descriptor.to_dict())
        _check_response(response, f"blob {descriptor.digest}", PublishError)

    async def _write_blob(self, path: Path, content: bytes) -> None:
        async with aiofiles.open(path, "wb") as fd:
            await fd.write(content)

    async def push(self, tag: str, image: Image) -> None:
        """Push the image blobs, configuration and manifest under the tag."""
        name = ImageName.parse(tag)
        client = self._client(name.registry)
        container = client.get_container(str(name))
        _LOGGER.info("Pushing %s", name)
        try:
            with tempfile.TemporaryDirectory(prefix="jctl-push-") as tmp_dir:
                tmp = Path(tmp_dir)
                if image.base_layers:
                    if not image.base_reference:
                        raise PublishError(f"Image for {name} has no base repository")
                    source_name = ImageName.parse(image.base_reference)
                    source_client = self._client(source_name.registry)
                    source = source_client.get_container(str(source_name))
                    for i, descriptor in enumerate(image.base_layers):
                        await self._copy_blob(
                            client,
                            container,
                            source_client,
                            source,
                            descriptor,
                            tmp / f"base-{i}",
                        )
                for i, layer in enumerate(image.layers):
                    path = tmp / f"layer-{i}"
                    await self._write_blob(path, layer.blob)
                    self._upload(client, container, layer.descriptor, path)
                config_path = tmp / "config"
                await self._write_blob(config_path, image.config_file.json())
                self._upload(client, container, image.config_descriptor(), config_path)
                response = client.upload_manifest(image.manifest(), container)
                _check_response(response, f"manifest {name}", PublishError)
        except (OSError, ValueError) as err:
            raise PublishError(f"Unable to push {name}: {err}") from err
