"""Fixtures and in-memory collaborators shared by the tests."""

import asyncio
from collections.abc import AsyncGenerator, AsyncIterator
from contextlib import asynccontextmanager
import logging
from pathlib import Path
from typing import Any

import pytest

from jctl.cluster import Job, JobSpec, WatchEvent
from jctl.exceptions import CompileError
from jctl.image import (
    ConfigFile,
    ContainerConfig,
    Descriptor,
    History,
    Image,
    OCI_LAYER,
    Platform,
    RootFS,
)
from jctl.path import Program

_LOGGER = logging.getLogger(__name__)

BASE_LAYER_DIGEST = "sha256:" + "a" * 64
BASE_DIFF_ID = "sha256:" + "b" * 64
BINARY_CONTENT = b"\x7fELF fake binary"


def job_doc(
    name: str,
    conditions: list[dict[str, Any]] | None = None,
    kind: str = "Job",
    namespace: str = "default",
) -> dict[str, Any]:
    """Return a Job resource as reported by the cluster."""
    doc: dict[str, Any] = {
        "apiVersion": "batch/v1",
        "kind": kind,
        "metadata": {"name": name, "namespace": namespace},
    }
    if conditions is not None:
        doc["status"] = {"conditions": conditions}
    return doc


def make_base_image() -> Image:
    """Return a single layer linux/amd64 base image."""
    config_file = ConfigFile(
        architecture="amd64",
        os="linux",
        config=ContainerConfig(env=["PATH=/usr/bin"], user="65532"),
        rootfs=RootFS(diff_ids=[BASE_DIFF_ID]),
        history=[History(created_by="base", created="2020-01-01T00:00:00Z")],
    )
    return Image(
        config_file=config_file,
        base_layers=(
            Descriptor(media_type=OCI_LAYER, digest=BASE_LAYER_DIGEST, size=10),
        ),
        base_reference="gcr.io/distroless/static",
    )


@pytest.fixture(name="base_image")
def base_image_fixture() -> Image:
    """Fixture for the base image."""
    return make_base_image()


@pytest.fixture(name="program")
def program_fixture(tmp_path: Path) -> Program:
    """Fixture for a resolved program with a data directory."""
    program_dir = tmp_path / "hello"
    data_dir = program_dir / "jctldata"
    data_dir.mkdir(parents=True)
    (data_dir / "greeting.txt").write_text("hello")
    return Program(import_path="github.com/x/hello", dir=program_dir)


class FakeCompiler:
    """A compiler that writes a fixed binary into a temporary directory."""

    def __init__(self, tmp_path: Path, error: str | None = None) -> None:
        self.tmp_path = tmp_path
        self.error = error
        self.platforms: list[Platform] = []
        self.out_dirs: list[Path] = []

    @asynccontextmanager
    async def compile(
        self, program: Program, platform: Platform
    ) -> AsyncGenerator[Path, None]:
        self.platforms.append(platform)
        out_dir = self.tmp_path / f"build-{len(self.out_dirs)}"
        out_dir.mkdir()
        self.out_dirs.append(out_dir)
        try:
            if self.error:
                raise CompileError(self.error)
            binary = out_dir / "out"
            binary.write_bytes(BINARY_CONTENT)
            yield binary
        finally:
            for child in out_dir.iterdir():
                child.unlink()
            out_dir.rmdir()


class FakeRegistry:
    """A registry that records pushed images in memory."""

    def __init__(self, base_image: Image | None = None) -> None:
        self.base_image = base_image or make_base_image()
        self.pushed: dict[str, Image] = {}
        self.requested: list[tuple[str, Platform]] = []

    async def image(self, reference: str, platform: Platform) -> Image:
        self.requested.append((reference, platform))
        return self.base_image

    async def push(self, tag: str, image: Image) -> None:
        self.pushed[tag] = image


class FakeCluster:
    """A cluster client that replays a fixed list of watch events.

    Once the events are exhausted the watch blocks until cancelled, unless
    `close_stream` is set in which case the stream ends.
    """

    def __init__(
        self,
        events: list[WatchEvent] | None = None,
        job_name: str = "hello-abcde",
        create_error: Exception | None = None,
        close_stream: bool = False,
    ) -> None:
        self.events = events or []
        self.job_name = job_name
        self.create_error = create_error
        self.close_stream = close_stream
        self.created: list[JobSpec] = []
        self.watches_opened = 0
        self.watches_closed = 0

    async def create_job(self, spec: JobSpec) -> Job:
        if self.create_error is not None:
            raise self.create_error
        self.created.append(spec)
        return Job(name=self.job_name, namespace=spec.namespace)

    async def _stream(self) -> AsyncGenerator[WatchEvent, None]:
        for event in self.events:
            yield event
        if not self.close_stream:
            await block_forever()

    @asynccontextmanager
    async def watch_namespace(
        self, namespace: str
    ) -> AsyncGenerator[AsyncIterator[WatchEvent], None]:
        self.watches_opened += 1
        try:
            yield self._stream()
        finally:
            self.watches_closed += 1


async def block_forever() -> None:
    """Block until cancelled."""
    await asyncio.Event().wait()

