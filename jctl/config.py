"""Configuration objects for jctl.

Values are read from the environment once by the command line tool and then
passed explicitly to the components that need them.
"""

from collections.abc import Mapping
from dataclasses import dataclass
import logging
import os
from pathlib import Path

from .exceptions import ConfigError, RegistryConfigError

_LOGGER = logging.getLogger(__name__)

__all__ = [
    "Config",
    "resolve_kubeconfig",
]

DOCKER_REPO_ENV = "JCTL_DOCKER_REPO"
BASE_IMAGE_ENV = "JCTL_BASE_IMAGE"
INSECURE_REGISTRY_ENV = "JCTL_INSECURE_REGISTRY"
IMAGE_PULL_SECRET_ENV = "JCTL_IMAGE_PULL_SECRET"
PLATFORM_ENV = "JCTL_PLATFORM"
DOCKER_CONFIG_ENV = "DOCKER_CONFIG"
KUBECONFIG_ENV = "KUBECONFIG"

DEFAULT_BASE_IMAGE = "gcr.io/distroless/static:latest"
DEFAULT_IMAGE_PULL_SECRET = "image-puller"
DEFAULT_NAMESPACE = "default"
DEFAULT_PLATFORM = "linux/amd64"
DEFAULT_TIMEOUT_SECONDS = 300.0

_TRUE_VALUES = {"1", "true", "yes", "on"}


def _home_dir(env: Mapping[str, str]) -> str | None:
    return env.get("HOME") or env.get("USERPROFILE")


def resolve_kubeconfig(
    explicit: str | None = None, env: Mapping[str, str] | None = None
) -> Path:
    """Return the path of the cluster credentials file.

    An explicit path wins over `KUBECONFIG`, which wins over `~/.kube/config`.
    """
    env = os.environ if env is None else env
    if explicit:
        return Path(explicit)
    if kubeconfig := env.get(KUBECONFIG_ENV):
        return Path(kubeconfig)
    if home := _home_dir(env):
        return Path(home) / ".kube" / "config"
    raise ConfigError(
        f"Unable to locate cluster credentials: pass --kubeconfig or set {KUBECONFIG_ENV}"
    )


def _docker_config_dir(env: Mapping[str, str]) -> Path | None:
    if docker_config := env.get(DOCKER_CONFIG_ENV):
        return Path(docker_config)
    if home := _home_dir(env):
        return Path(home) / ".docker"
    return None


@dataclass
class Config:
    """Configuration for building, publishing and running a program."""

    docker_repo: str
    """Registry and repository prefix that images are pushed under."""

    base_image: str = DEFAULT_BASE_IMAGE
    """Image reference that programs are layered on top of."""

    platform: str = DEFAULT_PLATFORM
    """Platform to select when the base image is a multi-platform index."""

    insecure_registry: bool = False
    """Talk to the registry over plain http."""

    image_pull_secret: str = DEFAULT_IMAGE_PULL_SECRET
    """Secret the cluster uses to pull the published image."""

    docker_config_dir: Path | None = None
    """Directory holding the `config.json` registry credential store."""

    namespace: str = DEFAULT_NAMESPACE
    """Namespace that jobs are created in."""

    kubeconfig: Path | None = None
    """Cluster credentials file."""

    timeout: float = DEFAULT_TIMEOUT_SECONDS
    """Seconds to wait for the job to finish."""

    @classmethod
    def from_env(cls, env: Mapping[str, str] | None = None) -> "Config":
        """Build the configuration from environment variables."""
        env = os.environ if env is None else env
        if not (docker_repo := env.get(DOCKER_REPO_ENV, "").strip()):
            raise RegistryConfigError(
                f"{DOCKER_REPO_ENV} environment variable is required"
            )
        return cls(
            docker_repo=docker_repo.rstrip("/"),
            base_image=env.get(BASE_IMAGE_ENV) or DEFAULT_BASE_IMAGE,
            platform=env.get(PLATFORM_ENV) or DEFAULT_PLATFORM,
            insecure_registry=env.get(INSECURE_REGISTRY_ENV, "").lower()
            in _TRUE_VALUES,
            image_pull_secret=env.get(IMAGE_PULL_SECRET_ENV)
            or DEFAULT_IMAGE_PULL_SECRET,
            docker_config_dir=_docker_config_dir(env),
        )
