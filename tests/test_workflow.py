"""Tests for the end to end workflow."""

from pathlib import Path
from typing import Any

import pytest

from jctl.build import Builder
from jctl.cluster import WatchEvent
from jctl.config import Config
from jctl.context import timings_context
from jctl.exceptions import (
    ConfigError,
    JobCreateError,
    JobFailedError,
    JobTimeoutError,
    NotExecutableError,
    RegistryConfigError,
)
from jctl.image import Image, Platform
from jctl.job import JobOrchestrator, JobState
from jctl.path import Program, Resolver
from jctl.publish import Publisher
from jctl.workflow import Workflow

from .conftest import FakeCluster, FakeCompiler, FakeRegistry, job_doc

DOCKER_REPO = "registry.example.com/team"


def lister_for(program: Program, name: str = "main") -> Any:
    async def lister(pattern: str, tolerate_errors: bool) -> list[dict[str, Any]]:
        return [
            {"ImportPath": program.import_path, "Dir": str(program.dir), "Name": name}
        ]

    return lister


def finished(conditions: list[dict[str, Any]]) -> WatchEvent:
    return WatchEvent(type="MODIFIED", object=job_doc("hello-abcde", conditions))


def make_workflow(
    tmp_path: Path,
    base_image: Image,
    program: Program,
    cluster: FakeCluster | None,
    registry: FakeRegistry,
    name: str = "main",
) -> Workflow:
    return Workflow(
        Resolver(lister_for(program, name)),
        Builder(base_image, compiler=FakeCompiler(tmp_path)),
        Publisher(DOCKER_REPO, registry),
        JobOrchestrator(cluster) if cluster else None,
    )


async def test_execute(tmp_path: Path, base_image: Image, program: Program) -> None:
    """Test a program is built, published and run by digest."""
    registry = FakeRegistry()
    cluster = FakeCluster([finished([{"type": "Complete", "status": "True"}])])
    workflow = make_workflow(tmp_path, base_image, program, cluster, registry)

    with timings_context() as timings:
        result = await workflow.execute(".", timeout=10)

    assert result.state == JobState.COMPLETE
    ((tag, image),) = registry.pushed.items()
    assert tag.startswith(f"{DOCKER_REPO}/hello-")
    assert tag.endswith(":latest")
    assert result.image == f"{tag.removesuffix(':latest')}@{image.digest()}"
    assert cluster.created[0].image == result.image
    assert cluster.created[0].generate_name == "hello-"
    assert set(timings) == {"Resolve", "Build", "Publish", "Run"}


async def test_execute_failed_job(
    tmp_path: Path, base_image: Image, program: Program
) -> None:
    """Test a failed Job is an error unless failures are allowed."""
    conditions = [{"type": "Failed", "status": "True", "message": "exit code 1"}]
    workflow = make_workflow(
        tmp_path,
        base_image,
        program,
        FakeCluster([finished(conditions)]),
        FakeRegistry(),
    )
    with pytest.raises(JobFailedError, match="hello-abcde failed: exit code 1") as exc:
        await workflow.execute(".")
    assert str(exc.value).startswith("Failed to run github.com/x/hello: ")
    assert exc.value.job_name == "hello-abcde"
    assert exc.value.program == "github.com/x/hello"

    workflow = make_workflow(
        tmp_path,
        base_image,
        program,
        FakeCluster([finished(conditions)]),
        FakeRegistry(),
    )
    result = await workflow.execute(".", allow_failure=True)
    assert result.failed


async def test_execute_timeout(
    tmp_path: Path, base_image: Image, program: Program
) -> None:
    """Test a Job that never finishes names the program and keeps the job name."""
    cluster = FakeCluster([])
    workflow = make_workflow(tmp_path, base_image, program, cluster, FakeRegistry())
    with pytest.raises(JobTimeoutError, match="github.com/x/hello") as exc:
        await workflow.execute(".", timeout=0.05)
    assert exc.value.job_name == "hello-abcde"
    assert exc.value.timeout == 0.05
    assert isinstance(exc.value.__cause__, JobTimeoutError)
    assert cluster.watches_opened == cluster.watches_closed == 1


async def test_execute_create_error(
    tmp_path: Path, base_image: Image, program: Program
) -> None:
    """Test a Job that can't be created names the program."""
    cluster = FakeCluster(create_error=JobCreateError("forbidden"))
    workflow = make_workflow(tmp_path, base_image, program, cluster, FakeRegistry())
    with pytest.raises(
        JobCreateError, match="Failed to run github.com/x/hello: .*forbidden"
    ):
        await workflow.execute(".")
    assert not cluster.created


async def test_publish_library(
    tmp_path: Path, base_image: Image, program: Program
) -> None:
    """Test a library is rejected before anything is built or pushed."""
    registry = FakeRegistry()
    compiler_dir = tmp_path / "compiler"
    compiler_dir.mkdir()
    workflow = make_workflow(
        compiler_dir, base_image, program, None, registry, name="hello"
    )
    with pytest.raises(NotExecutableError):
        await workflow.publish(".")
    assert not registry.pushed
    assert not list(compiler_dir.iterdir())


async def test_execute_without_cluster(
    tmp_path: Path, base_image: Image, program: Program
) -> None:
    """Test running requires cluster credentials."""
    workflow = make_workflow(tmp_path, base_image, program, None, FakeRegistry())
    with pytest.raises(ConfigError):
        await workflow.execute(".")


async def test_from_config(tmp_path: Path, program: Program) -> None:
    """Test the workflow fetches the base image for the configured platform."""
    registry = FakeRegistry()
    cluster = FakeCluster([finished([{"type": "Complete", "status": "True"}])])
    config = Config(docker_repo=DOCKER_REPO, platform="linux/arm64", namespace="batch")

    workflow = await Workflow.from_config(config, registry=registry, cluster=cluster)

    assert registry.requested == [
        ("gcr.io/distroless/static:latest", Platform("linux", "arm64"))
    ]
    assert workflow._orchestrator is not None


async def test_from_config_missing_repo() -> None:
    """Test an unconfigured registry fails before the base image is fetched."""
    registry = FakeRegistry()
    with pytest.raises(RegistryConfigError):
        await Workflow.from_config(Config(docker_repo=""), registry=registry)
    assert not registry.requested
