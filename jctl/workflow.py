"""Library for running a Go program end to end as a Kubernetes Job.

The workflow resolves the program, builds its image, publishes it and then
runs it as a Job, tracing each stage:

```python
from jctl.config import Config
from jctl.workflow import Workflow

workflow = await Workflow.from_config(Config.from_env())
result = await workflow.execute("./cmd/hello", timeout=60)
```
"""

import datetime
from dataclasses import dataclass
import logging
from pathlib import Path

from .build import Builder
from .cluster import ClusterClient, Kubectl
from .config import DEFAULT_TIMEOUT_SECONDS, Config
from .context import trace_context
from .exceptions import (
    ClusterError,
    ConfigError,
    JobCreateError,
    JobFailedError,
    JobTimeoutError,
    WatchStreamError,
)
from .gobuild import GoCompiler
from .image import Platform
from .job import JobOrchestrator, JobResult
from .path import GoList, Program, Resolver
from .publish import Publisher, Reference
from .registry import OrasRegistry, Registry

__all__ = [
    "Workflow",
    "Published",
]

_LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class Published:
    """A program and the reference its image was published under."""

    program: Program
    reference: Reference


class Workflow:
    """Resolves, builds, publishes and runs programs."""

    def __init__(
        self,
        resolver: Resolver,
        builder: Builder,
        publisher: Publisher,
        orchestrator: JobOrchestrator | None = None,
    ) -> None:
        """Initialize Workflow."""
        self._resolver = resolver
        self._builder = builder
        self._publisher = publisher
        self._orchestrator = orchestrator

    @classmethod
    async def from_config(
        cls,
        config: Config,
        registry: Registry | None = None,
        cluster: ClusterClient | None = None,
        cwd: Path | None = None,
    ) -> "Workflow":
        """Create a workflow from configuration, fetching the base image.

        The destination repository is validated before the base image is
        fetched. A cluster client is only created when a kubeconfig is set.
        """
        registry = registry or OrasRegistry(
            insecure=config.insecure_registry,
            docker_config_dir=config.docker_config_dir,
        )
        publisher = Publisher(config.docker_repo, registry)
        with trace_context("Fetch base image"):
            base_image = await registry.image(
                config.base_image, Platform.parse(config.platform)
            )
        builder = Builder(
            base_image,
            compiler=GoCompiler(cwd),
            creation_time=datetime.datetime.now(datetime.timezone.utc),
        )
        orchestrator: JobOrchestrator | None = None
        if cluster is None and config.kubeconfig is not None:
            cluster = Kubectl(config.kubeconfig)
        if cluster is not None:
            orchestrator = JobOrchestrator(
                cluster,
                namespace=config.namespace,
                image_pull_secret=config.image_pull_secret,
            )
        return cls(Resolver(GoList(cwd)), builder, publisher, orchestrator)

    async def publish(self, path: str) -> Published:
        """Resolve, build and publish the program at the path."""
        with trace_context("Resolve"):
            program = await self._resolver.resolve(path)
        _LOGGER.info("Resolved %s to %s", path, program)
        with trace_context("Build"):
            image = await self._builder.build(program)
        with trace_context("Publish"):
            reference = await self._publisher.publish(image, program)
        return Published(program=program, reference=reference)

    async def execute(
        self,
        path: str,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        allow_failure: bool = False,
    ) -> JobResult:
        """Publish the program at the path and run it as a Job.

        A Job that finishes with a Failed condition raises `JobFailedError`
        unless failures are allowed, in which case the result is returned.
        """
        if self._orchestrator is None:
            raise ConfigError("Workflow was created without cluster credentials")
        published = await self.publish(path)
        program = published.program
        with trace_context("Run"):
            try:
                result = await self._orchestrator.run(
                    published.reference.name,
                    timeout=timeout,
                    program_path=program.import_path,
                )
            except JobTimeoutError as err:
                raise JobTimeoutError(
                    err.job_name, err.timeout, program=str(program)
                ) from err
            except (JobCreateError, WatchStreamError) as err:
                raise type(err)(f"Failed to run {program}: {err}") from err
            except ClusterError as err:
                raise ClusterError(f"Failed to run {program}: {err}") from err
        if result.failed and not allow_failure:
            raise JobFailedError(
                result.name, result.condition.message, program=str(program)
            )
        return result
