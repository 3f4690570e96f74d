"""Representation of an OCI container image.

An image is a base image (its layer descriptors and configuration) plus an
ordered list of layers appended by jctl. Appending a layer records its
diff id in the configuration rootfs and adds a history entry, so the config
and the manifest always describe the same layers in the same order.
"""

import copy
from dataclasses import dataclass, field
import datetime
import gzip
import hashlib
import json
import logging
from typing import Any

from mashumaro import DataClassDictMixin, field_options
from mashumaro.config import BaseConfig
from mashumaro.exceptions import MissingField, InvalidFieldValue

from .exceptions import ConfigMutationError

__all__ = [
    "Platform",
    "History",
    "ContainerConfig",
    "RootFS",
    "ConfigFile",
    "Descriptor",
    "Layer",
    "Image",
]

_LOGGER = logging.getLogger(__name__)

OCI_MANIFEST = "application/vnd.oci.image.manifest.v1+json"
OCI_INDEX = "application/vnd.oci.image.index.v1+json"
OCI_CONFIG = "application/vnd.oci.image.config.v1+json"
OCI_LAYER = "application/vnd.oci.image.layer.v1.tar+gzip"
DOCKER_MANIFEST = "application/vnd.docker.distribution.manifest.v2+json"
DOCKER_MANIFEST_LIST = "application/vnd.docker.distribution.manifest.list.v2+json"

MANIFEST_TYPES = [OCI_MANIFEST, DOCKER_MANIFEST]
INDEX_TYPES = [OCI_INDEX, DOCKER_MANIFEST_LIST]

SHA256 = "sha256"


def sha256_digest(data: bytes) -> str:
    """Return the content digest of the data."""
    return f"{SHA256}:{hashlib.sha256(data).hexdigest()}"


def format_time(when: datetime.datetime) -> str:
    """Format a timestamp the way image configs store them."""
    return when.astimezone(datetime.timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


@dataclass(frozen=True)
class Platform:
    """An operating system and architecture pair an image runs on."""

    os: str
    architecture: str
    variant: str | None = None

    @classmethod
    def parse(cls, value: str) -> "Platform":
        """Parse a platform of the form `os/arch[/variant]`."""
        parts = value.split("/")
        if len(parts) not in (2, 3) or not all(parts):
            raise ValueError(f"Invalid platform '{value}', expected os/arch[/variant]")
        return cls(*parts)

    def matches(self, spec: dict[str, Any]) -> bool:
        """Return True if an index platform entry describes this platform."""
        if spec.get("os") != self.os or spec.get("architecture") != self.architecture:
            return False
        return self.variant is None or spec.get("variant") == self.variant

    def __str__(self) -> str:
        return "/".join(p for p in (self.os, self.architecture, self.variant) if p)


@dataclass
class _OCIModel(DataClassDictMixin):
    """Base class for OCI json documents."""

    class Config(BaseConfig):
        omit_none = True
        serialize_by_alias = True


@dataclass
class History(_OCIModel):
    """Provenance of one layer of an image."""

    created: str | None = None
    created_by: str | None = None
    author: str | None = None
    comment: str | None = None
    empty_layer: bool | None = None


@dataclass
class ContainerConfig(_OCIModel):
    """Execution parameters of a container started from the image."""

    user: str | None = field(metadata=field_options(alias="User"), default=None)
    exposed_ports: dict[str, Any] | None = field(
        metadata=field_options(alias="ExposedPorts"), default=None
    )
    env: list[str] | None = field(metadata=field_options(alias="Env"), default=None)
    entrypoint: list[str] | None = field(
        metadata=field_options(alias="Entrypoint"), default=None
    )
    cmd: list[str] | None = field(metadata=field_options(alias="Cmd"), default=None)
    volumes: dict[str, Any] | None = field(
        metadata=field_options(alias="Volumes"), default=None
    )
    working_dir: str | None = field(
        metadata=field_options(alias="WorkingDir"), default=None
    )
    labels: dict[str, str] | None = field(
        metadata=field_options(alias="Labels"), default=None
    )
    stop_signal: str | None = field(
        metadata=field_options(alias="StopSignal"), default=None
    )


@dataclass
class RootFS(_OCIModel):
    """The uncompressed layer digests of an image, in order."""

    type: str = "layers"
    diff_ids: list[str] = field(default_factory=list)


@dataclass
class ConfigFile(_OCIModel):
    """An OCI image configuration."""

    architecture: str
    os: str
    variant: str | None = None
    os_version: str | None = field(
        metadata=field_options(alias="os.version"), default=None
    )
    created: str | None = None
    author: str | None = None
    config: ContainerConfig = field(default_factory=ContainerConfig)
    rootfs: RootFS = field(default_factory=RootFS)
    history: list[History] = field(default_factory=list)

    @property
    def platform(self) -> Platform:
        """The platform the image was built for."""
        return Platform(os=self.os, architecture=self.architecture, variant=self.variant)

    @classmethod
    def parse_json(cls, content: bytes) -> "ConfigFile":
        """Parse a serialized image configuration."""
        try:
            return cls.from_dict(json.loads(content))
        except (ValueError, MissingField, InvalidFieldValue) as err:
            raise ConfigMutationError(f"Invalid image configuration: {err}") from err

    def json(self) -> bytes:
        """Serialize the configuration."""
        return json.dumps(self.to_dict(), separators=(",", ":")).encode("utf-8")

    def deep_copy(self) -> "ConfigFile":
        """Return a copy that can be mutated without affecting this config."""
        return copy.deepcopy(self)


@dataclass
class Descriptor(_OCIModel):
    """A reference to a blob stored in a registry."""

    media_type: str = field(metadata=field_options(alias="mediaType"))
    digest: str
    size: int


@dataclass(frozen=True)
class Layer:
    """A gzip compressed tar archive and the history that produced it."""

    blob: bytes
    """The compressed layer contents, exactly as pushed to the registry."""

    history: History
    """Provenance of the layer."""

    media_type: str = OCI_LAYER

    @property
    def digest(self) -> str:
        """Digest of the compressed blob."""
        return sha256_digest(self.blob)

    @property
    def diff_id(self) -> str:
        """Digest of the uncompressed tar archive."""
        return sha256_digest(gzip.decompress(self.blob))

    @property
    def size(self) -> int:
        return len(self.blob)

    @property
    def descriptor(self) -> Descriptor:
        return Descriptor(media_type=self.media_type, digest=self.digest, size=self.size)


@dataclass(frozen=True)
class Image:
    """A base image with appended layers and a rewritten configuration.

    Instances are never mutated; every operation returns a new image.
    """

    config_file: ConfigFile
    """The image configuration."""

    base_layers: tuple[Descriptor, ...] = ()
    """Layers of the base image, stored in the base image repository."""

    layers: tuple[Layer, ...] = ()
    """Layers appended to the base image, in order."""

    base_reference: str | None = None
    """Repository that the base layers can be fetched from."""

    @property
    def platform(self) -> Platform:
        return self.config_file.platform

    def append(self, *layers: Layer) -> "Image":
        """Return an image with the layers added on top, in order."""
        config_file = self.config_file.deep_copy()
        for layer in layers:
            config_file.rootfs.diff_ids.append(layer.diff_id)
            config_file.history.append(copy.deepcopy(layer.history))
        return Image(
            config_file=config_file,
            base_layers=self.base_layers,
            layers=self.layers + tuple(layers),
            base_reference=self.base_reference,
        )

    def with_config(self, config_file: ConfigFile) -> "Image":
        """Return an image with a replaced configuration."""
        num_layers = len(self.base_layers) + len(self.layers)
        if len(config_file.rootfs.diff_ids) != num_layers:
            raise ConfigMutationError(
                f"Image configuration lists {len(config_file.rootfs.diff_ids)} "
                f"layers but the image has {num_layers}"
            )
        return Image(
            config_file=config_file,
            base_layers=self.base_layers,
            layers=self.layers,
            base_reference=self.base_reference,
        )

    def with_created(self, created: datetime.datetime) -> "Image":
        """Return an image stamped with the creation time."""
        config_file = self.config_file.deep_copy()
        config_file.created = format_time(created)
        return self.with_config(config_file)

    def config_descriptor(self) -> Descriptor:
        content = self.config_file.json()
        return Descriptor(media_type=OCI_CONFIG, digest=sha256_digest(content), size=len(content))

    def manifest(self) -> dict[str, Any]:
        """Return the OCI image manifest."""
        return {
            "schemaVersion": 2,
            "mediaType": OCI_MANIFEST,
            "config": self.config_descriptor().to_dict(),
            "layers": [d.to_dict() for d in self.base_layers]
            + [layer.descriptor.to_dict() for layer in self.layers],
        }

    def raw_manifest(self) -> bytes:
        """Serialize the manifest the way it is uploaded to the registry."""
        return json.dumps(self.manifest()).encode("utf-8")

    def digest(self) -> str:
        """Return the content digest of the manifest."""
        return sha256_digest(self.raw_manifest())
