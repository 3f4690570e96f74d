"""Module for resolving registry credentials.

Credentials are read from the `auths` section of a Docker `config.json`
credential store, keyed by registry host.
"""

import base64
import binascii
import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from .exceptions import PublishError

_LOGGER = logging.getLogger(__name__)

__all__ = [
    "Auth",
    "get_auth",
]

CONFIG_FILE = "config.json"

# Registry hosts that Docker stores under a legacy key.
_HOST_ALIASES = {
    "docker.io": ["https://index.docker.io/v1/", "index.docker.io"],
    "index.docker.io": ["https://index.docker.io/v1/", "docker.io"],
}


@dataclass
class Auth:
    """Authentication credentials."""

    username: str
    password: str


def _candidate_keys(hostname: str) -> list[str]:
    return [
        hostname,
        f"https://{hostname}",
        f"http://{hostname}",
        *_HOST_ALIASES.get(hostname, []),
    ]


def _decode_auth(hostname: str, server_auth: dict[str, Any]) -> Auth | None:
    if (username := server_auth.get("username")) and (
        password := server_auth.get("password")
    ):
        return Auth(username=username, password=password)
    if not (auth_str := server_auth.get("auth")):
        _LOGGER.debug("No auth string found for registry %s", hostname)
        return None
    try:
        decoded_auth = base64.b64decode(auth_str).decode("utf-8")
    except (binascii.Error, UnicodeDecodeError) as err:
        raise PublishError(f"Invalid credentials for registry {hostname}") from err
    if ":" not in decoded_auth:
        raise PublishError(f"Invalid credentials for registry {hostname}")
    username, password = decoded_auth.split(":", 1)
    return Auth(username=username, password=password)


def get_auth(hostname: str, config_dir: Path | None) -> Auth | None:
    """Return the credentials stored for the registry host, if any.

    Returns None when no credential store exists or no entry matches, in
    which case the registry is accessed anonymously.
    """
    if config_dir is None:
        return None
    config_path = config_dir / CONFIG_FILE
    if not config_path.exists():
        _LOGGER.debug("No registry credential store at %s", config_path)
        return None
    try:
        docker_config = json.loads(config_path.read_text())
    except (OSError, json.JSONDecodeError) as err:
        raise PublishError(
            f"Unable to read registry credentials from {config_path}: {err}"
        ) from err

    if not (auths := docker_config.get("auths")):
        _LOGGER.debug("No auths found in %s", config_path)
        return None
    for key in _candidate_keys(hostname):
        if (server_auth := auths.get(key)) is not None:
            return _decode_auth(hostname, server_auth)
    _LOGGER.debug("No auth found for registry %s in %s", hostname, config_path)
    return None
