"""Tests for the jctl command line tool."""

from pathlib import Path
from typing import Any
from unittest.mock import patch

import pytest
import yaml

from jctl.cluster import JobCondition
from jctl.exceptions import JobFailedError
from jctl.job import JobResult
from jctl.path import Program
from jctl.publish import Reference
from jctl.tool.jctl import main
from jctl.workflow import Published

IMAGE = "registry.example.com/team/hello-0123@sha256:abc"


class FakeWorkflow:
    """Records calls made by the command line actions."""

    def __init__(self, error: Exception | None = None) -> None:
        self.error = error
        self.calls: list[tuple[str, dict[str, Any]]] = []

    async def publish(self, path: str) -> Published:
        self.calls.append(("publish", {"path": path}))
        return Published(
            program=Program(import_path="github.com/x/hello", dir=Path("/src")),
            reference=Reference(
                repository="registry.example.com/team/hello-0123",
                tag="latest",
                digest="sha256:abc",
            ),
        )

    async def execute(self, path: str, **kwargs: Any) -> JobResult:
        self.calls.append(("execute", {"path": path, **kwargs}))
        if self.error:
            raise self.error
        return JobResult(
            name="hello-abcde",
            namespace="batch",
            image=IMAGE,
            condition=JobCondition(type="Complete", status="True"),
        )


@pytest.fixture(autouse=True)
def environment(monkeypatch: pytest.MonkeyPatch) -> None:
    """Fixture that configures the environment of the tool."""
    monkeypatch.setenv("JCTL_DOCKER_REPO", "registry.example.com/team")
    monkeypatch.setenv("KUBECONFIG", "/kube/config")


def run_main(argv: list[str], workflow: FakeWorkflow) -> list[Any]:
    """Run the tool with a fake workflow, returning the configs it was built from."""
    configs = []

    async def from_config(config: Any) -> FakeWorkflow:
        configs.append(config)
        return workflow

    with patch("jctl.workflow.Workflow.from_config", side_effect=from_config):
        main(argv)
    return configs


def test_run(capsys: pytest.CaptureFixture[str]) -> None:
    """Test running a program prints the job result."""
    workflow = FakeWorkflow()
    configs = run_main(["run", ".", "-n", "batch", "-t", "30"], workflow)

    assert workflow.calls == [
        ("execute", {"path": ".", "timeout": 30.0, "allow_failure": False})
    ]
    (config,) = configs
    assert config.namespace == "batch"
    assert config.kubeconfig == Path("/kube/config")
    assert config.docker_repo == "registry.example.com/team"

    lines = capsys.readouterr().out.strip().split("\n")
    assert lines[0].split() == ["NAME", "NAMESPACE", "STATUS", "REASON", "IMAGE"]
    assert lines[1].split() == ["hello-abcde", "batch", "Complete", IMAGE]


def test_run_yaml_output(capsys: pytest.CaptureFixture[str]) -> None:
    """Test printing the job result as yaml."""
    run_main(["run", ".", "-o", "yaml", "--allow-failure"], FakeWorkflow())
    (doc,) = yaml.safe_load_all(capsys.readouterr().out)
    assert doc["name"] == "hello-abcde"
    assert doc["status"] == "Complete"
    assert doc["image"] == IMAGE


def test_run_failed(capsys: pytest.CaptureFixture[str]) -> None:
    """Test a failed job exits with an error."""
    workflow = FakeWorkflow(error=JobFailedError("hello-abcde", "exit code 1"))
    with pytest.raises(SystemExit) as exc:
        run_main(["run", "."], workflow)
    assert exc.value.code == 1
    assert "jctl error:" in capsys.readouterr().err


def test_run_missing_repo(
    monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str]
) -> None:
    """Test an unconfigured registry exits before anything is built."""
    monkeypatch.delenv("JCTL_DOCKER_REPO")
    workflow = FakeWorkflow()
    with pytest.raises(SystemExit) as exc:
        run_main(["run", "."], workflow)
    assert exc.value.code == 1
    assert "JCTL_DOCKER_REPO" in capsys.readouterr().err
    assert not workflow.calls


def test_publish(capsys: pytest.CaptureFixture[str]) -> None:
    """Test publishing prints the digest reference."""
    workflow = FakeWorkflow()
    run_main(["publish", "./cmd/hello"], workflow)
    assert workflow.calls == [("publish", {"path": "./cmd/hello"})]
    assert capsys.readouterr().out.strip() == (
        "registry.example.com/team/hello-0123@sha256:abc"
    )


def test_version(capsys: pytest.CaptureFixture[str]) -> None:
    """Test the version flag."""
    with pytest.raises(SystemExit) as exc:
        main(["--version"])
    assert exc.value.code == 0
    assert capsys.readouterr().out.startswith("jctl ")
