"""Submits a Job for a published image and waits for it to finish.

The orchestrator creates the Job and then watches every Job in the
namespace, picking out the one it created, until the Job reports a terminal
condition or the deadline expires. The watch is always stopped before
returning.

A Job that finishes with a `Failed` condition is a result, not an error, at
this layer; `JobResult.failed` tells the caller which way it went.
"""

import asyncio
from collections.abc import AsyncIterator
from dataclasses import dataclass
from enum import Enum
import logging
import posixpath

from slugify import slugify

from .cluster import (
    CONDITION_FAILED,
    JOB_KIND,
    ClusterClient,
    Job,
    JobCondition,
    JobSpec,
    WatchEvent,
)
from .config import (
    DEFAULT_IMAGE_PULL_SECRET,
    DEFAULT_NAMESPACE,
    DEFAULT_TIMEOUT_SECONDS,
)
from .exceptions import (
    ClusterError,
    JobCreateError,
    JobTimeoutError,
    WatchStreamError,
)

__all__ = [
    "JobOrchestrator",
    "JobResult",
    "JobState",
]

_LOGGER = logging.getLogger(__name__)

CONTAINER_NAME = "jctl-job"
DEFAULT_NAME_PREFIX = "jctl-job-"
MAX_PREFIX_LENGTH = 40


class JobState(str, Enum):
    """The lifecycle of a submitted Job as seen by the orchestrator."""

    SUBMITTED = "Submitted"
    RUNNING = "Running"
    COMPLETE = "Complete"
    FAILED = "Failed"
    TIMED_OUT = "TimedOut"


@dataclass
class JobResult:
    """The outcome of a Job that ran to a terminal condition."""

    name: str
    namespace: str
    image: str
    condition: JobCondition

    @property
    def state(self) -> JobState:
        if self.condition.type == CONDITION_FAILED:
            return JobState.FAILED
        return JobState.COMPLETE

    @property
    def failed(self) -> bool:
        return self.state == JobState.FAILED


def name_prefix(program_path: str | None) -> str:
    """Return the generateName prefix for a Job running the program."""
    if program_path:
        base = posixpath.basename(program_path.rstrip("/"))
        if slug := slugify(base, max_length=MAX_PREFIX_LENGTH, lowercase=True):
            return f"{slug}-"
    return DEFAULT_NAME_PREFIX


class JobOrchestrator:
    """Runs an image as a Job and waits for it to finish."""

    def __init__(
        self,
        client: ClusterClient,
        namespace: str = DEFAULT_NAMESPACE,
        image_pull_secret: str | None = DEFAULT_IMAGE_PULL_SECRET,
    ) -> None:
        """Initialize JobOrchestrator."""
        self._client = client
        self._namespace = namespace
        self._image_pull_secret = image_pull_secret

    def job_spec(self, image: str, program_path: str | None = None) -> JobSpec:
        """Return the Job that runs the image once without restarts."""
        return JobSpec(
            namespace=self._namespace,
            generate_name=name_prefix(program_path),
            container_name=CONTAINER_NAME,
            image=image,
            image_pull_secret=self._image_pull_secret,
        )

    async def submit(self, spec: JobSpec) -> Job:
        """Create the Job in the cluster."""
        try:
            job = await self._client.create_job(spec)
        except JobCreateError:
            raise
        except ClusterError as err:
            raise JobCreateError(
                f"Unable to create job for {spec.image}: {err}"
            ) from err
        _LOGGER.info("Job %s created in namespace %s", job.name, self._namespace)
        return job

    async def _wait_finished(
        self, events: AsyncIterator[WatchEvent], job_name: str
    ) -> JobCondition:
        """Consume watch events until the named Job reports a terminal condition."""
        state = JobState.SUBMITTED
        async for event in events:
            if event.kind != JOB_KIND:
                _LOGGER.warning(
                    "Ignoring %s event for unexpected object %s", event.type, event.kind
                )
                continue
            try:
                observed = Job.parse_doc(event.object)
            except ClusterError as err:
                _LOGGER.warning("Ignoring invalid %s event: %s", event.type, err)
                continue
            if observed.name != job_name:
                continue
            if condition := observed.finished_condition():
                return condition
            if state == JobState.SUBMITTED:
                state = JobState.RUNNING
                _LOGGER.debug("Job %s is %s", job_name, state.value)
        raise WatchStreamError(f"Watch for job {job_name} ended before it finished")

    async def watch(
        self, job: Job, timeout: float = DEFAULT_TIMEOUT_SECONDS
    ) -> JobCondition:
        """Wait for the Job to finish, giving up after timeout seconds."""
        try:
            async with asyncio.timeout(timeout):
                async with self._client.watch_namespace(self._namespace) as events:
                    condition = await self._wait_finished(events, job.name)
        except TimeoutError as err:
            _LOGGER.info("Job %s is %s", job.name, JobState.TIMED_OUT.value)
            raise JobTimeoutError(job.name, timeout) from err
        except WatchStreamError:
            raise
        except ClusterError as err:
            raise WatchStreamError(f"Watch for job {job.name} failed: {err}") from err
        _LOGGER.info("Job %s finished: %s", job.name, condition.type)
        return condition

    async def run(
        self,
        image: str,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        program_path: str | None = None,
    ) -> JobResult:
        """Create a Job for the image and wait for it to finish."""
        job = await self.submit(self.job_spec(image, program_path))
        condition = await self.watch(job, timeout)
        return JobResult(
            name=job.name, namespace=self._namespace, image=image, condition=condition
        )
