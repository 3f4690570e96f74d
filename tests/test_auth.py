"""Tests for the auth library."""

import base64
import json
from pathlib import Path

import pytest

from jctl.auth import Auth, get_auth
from jctl.exceptions import PublishError


def write_config(path: Path, auths: dict[str, dict[str, str]]) -> Path:
    (path / "config.json").write_text(json.dumps({"auths": auths}))
    return path


def encode(value: str) -> str:
    return base64.b64encode(value.encode()).decode()


def test_get_auth_encoded(tmp_path: Path) -> None:
    """Test credentials stored as a base64 `auth` string."""
    config_dir = write_config(
        tmp_path, {"registry.example.com": {"auth": encode("user:pa:ss")}}
    )
    assert get_auth("registry.example.com", config_dir) == Auth("user", "pa:ss")


def test_get_auth_plain(tmp_path: Path) -> None:
    """Test credentials stored as username and password."""
    config_dir = write_config(
        tmp_path,
        {"https://registry.example.com": {"username": "user", "password": "pw"}},
    )
    assert get_auth("registry.example.com", config_dir) == Auth("user", "pw")


def test_get_auth_docker_hub(tmp_path: Path) -> None:
    """Test Docker Hub credentials stored under the legacy key."""
    config_dir = write_config(
        tmp_path, {"https://index.docker.io/v1/": {"auth": encode("user:pw")}}
    )
    assert get_auth("docker.io", config_dir) == Auth("user", "pw")


def test_get_auth_no_match(tmp_path: Path) -> None:
    """Test anonymous access when no credentials match."""
    config_dir = write_config(tmp_path, {"other.example.com": {"auth": encode("a:b")}})
    assert get_auth("registry.example.com", config_dir) is None
    assert get_auth("registry.example.com", tmp_path / "missing") is None
    assert get_auth("registry.example.com", None) is None


def test_get_auth_invalid(tmp_path: Path) -> None:
    """Test malformed credential stores."""
    config_dir = write_config(
        tmp_path, {"registry.example.com": {"auth": encode("no-separator")}}
    )
    with pytest.raises(PublishError, match="Invalid credentials"):
        get_auth("registry.example.com", config_dir)

    (tmp_path / "config.json").write_text("{")
    with pytest.raises(PublishError, match="Unable to read"):
        get_auth("registry.example.com", tmp_path)
