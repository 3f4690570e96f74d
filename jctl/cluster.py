"""Library for creating and watching Kubernetes Jobs.

The `ClusterClient` protocol is the surface the job orchestrator needs:
creating a Job and watching the Jobs of a namespace. `Kubectl` implements it
by issuing `kubectl` commands.
"""

from collections.abc import AsyncGenerator, AsyncIterator
from contextlib import AbstractAsyncContextManager, asynccontextmanager
from dataclasses import dataclass, field
import json
import logging
from pathlib import Path
from typing import Any, Protocol

from mashumaro import DataClassDictMixin
from mashumaro.config import BaseConfig
import yaml

from . import command
from .command import Command, StreamCommand
from .exceptions import ClusterError, JobCreateError, WatchStreamError

__all__ = [
    "ClusterClient",
    "Job",
    "JobCondition",
    "JobSpec",
    "Kubectl",
    "WatchEvent",
]

_LOGGER = logging.getLogger(__name__)

KUBECTL_BIN = "kubectl"
JOB_KIND = "Job"
BATCH_API_VERSION = "batch/v1"

CONDITION_COMPLETE = "Complete"
CONDITION_FAILED = "Failed"
CONDITION_TRUE = "True"
TERMINAL_CONDITIONS = (CONDITION_COMPLETE, CONDITION_FAILED)

RESTART_POLICY_NEVER = "Never"


@dataclass
class JobCondition(DataClassDictMixin):
    """A status fact reported by the cluster for a Job."""

    type: str
    status: str
    reason: str | None = None
    message: str | None = None

    class Config(BaseConfig):
        omit_none = True

    @property
    def is_terminal(self) -> bool:
        """Return True if the condition marks the Job as finished."""
        return self.type in TERMINAL_CONDITIONS and self.status == CONDITION_TRUE


@dataclass
class Job:
    """A Job as observed in the cluster."""

    name: str
    namespace: str | None
    conditions: list[JobCondition] = field(default_factory=list)

    @classmethod
    def parse_doc(cls, doc: dict[str, Any]) -> "Job":
        """Parse a Job from a kubernetes resource object."""
        if doc.get("kind") != JOB_KIND:
            raise ClusterError(f"Expected a {JOB_KIND} but got {doc.get('kind')}")
        if not (metadata := doc.get("metadata")) or not (name := metadata.get("name")):
            raise ClusterError(f"Invalid {JOB_KIND} missing metadata.name: {doc}")
        status = doc.get("status") or {}
        return cls(
            name=name,
            namespace=metadata.get("namespace"),
            conditions=[
                JobCondition.from_dict(c) for c in status.get("conditions") or []
            ],
        )

    def finished_condition(self) -> JobCondition | None:
        """Return the first Complete or Failed condition that is True.

        There is no preference between the two; the first one listed wins.
        """
        for condition in self.conditions:
            if condition.is_terminal:
                return condition
        return None

    @property
    def is_finished(self) -> bool:
        return self.finished_condition() is not None


@dataclass
class JobSpec:
    """A request to run one container to completion."""

    namespace: str
    generate_name: str
    container_name: str
    image: str
    image_pull_secret: str | None = None
    restart_policy: str = RESTART_POLICY_NEVER

    def manifest(self) -> dict[str, Any]:
        """Return the Job as a kubernetes resource object."""
        pod_spec: dict[str, Any] = {
            "containers": [{"name": self.container_name, "image": self.image}],
            "restartPolicy": self.restart_policy,
        }
        if self.image_pull_secret:
            pod_spec["imagePullSecrets"] = [{"name": self.image_pull_secret}]
        return {
            "apiVersion": BATCH_API_VERSION,
            "kind": JOB_KIND,
            "metadata": {
                "generateName": self.generate_name,
                "namespace": self.namespace,
            },
            "spec": {"template": {"spec": pod_spec}},
        }


@dataclass
class WatchEvent:
    """A change to a resource reported by a watch."""

    type: str
    object: dict[str, Any]

    @property
    def kind(self) -> str | None:
        return self.object.get("kind")


class ClusterClient(Protocol):
    """Creates Jobs and watches them in the cluster."""

    async def create_job(self, spec: JobSpec) -> Job:
        """Create the Job, returning it with its generated name."""

    def watch_namespace(
        self, namespace: str
    ) -> AbstractAsyncContextManager[AsyncIterator[WatchEvent]]:
        """Watch all Jobs in the namespace.

        The watch is stopped when the context exits.
        """


async def _events(stream: StreamCommand) -> AsyncGenerator[WatchEvent, None]:
    async for doc in stream.documents():
        if not isinstance(doc, dict) or not isinstance(doc.get("object"), dict):
            _LOGGER.debug("Ignoring unexpected watch output: %s", doc)
            continue
        yield WatchEvent(type=doc.get("type", ""), object=doc["object"])


class Kubectl:
    """A ClusterClient that issues kubectl commands."""

    def __init__(self, kubeconfig: Path | None = None) -> None:
        """Initialize Kubectl."""
        self._kubeconfig = kubeconfig

    def _args(self) -> list[str]:
        args = [KUBECTL_BIN]
        if self._kubeconfig:
            args.extend(["--kubeconfig", str(self._kubeconfig)])
        return args

    async def create_job(self, spec: JobSpec) -> Job:
        """Create the Job with `kubectl create`."""
        content = yaml.dump(spec.manifest(), sort_keys=False, explicit_start=True)
        cmd = Command(
            self._args()
            + [
                "create",
                "--namespace",
                spec.namespace,
                "--filename",
                "-",
                "--output",
                "json",
            ],
            exc=JobCreateError,
        )
        out = await command.run(cmd, stdin=content.encode("utf-8"))
        try:
            return Job.parse_doc(json.loads(out))
        except (json.JSONDecodeError, ClusterError) as err:
            raise JobCreateError(f"Unable to parse created job: {err}") from err

    @asynccontextmanager
    async def watch_namespace(
        self, namespace: str
    ) -> AsyncGenerator[AsyncIterator[WatchEvent], None]:
        """Watch Jobs with `kubectl get --watch`."""
        stream = StreamCommand(
            self._args()
            + [
                "get",
                "jobs",
                "--namespace",
                namespace,
                "--watch",
                "--output-watch-events",
                "--output",
                "json",
            ],
            exc=WatchStreamError,
        )
        async with stream:
            yield _events(stream)
