"""Library for issuing commands using asyncio and returning the result."""

import asyncio
from abc import ABC, abstractmethod
from collections.abc import AsyncGenerator
import json
import logging
import shlex
import subprocess
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any
import os

from .exceptions import CommandException

_LOGGER = logging.getLogger(__name__)

_TIMEOUT = 300.0
_READ_SIZE = 64 * 1024


# No public API
__all__: list[str] = []


class Task(ABC):
    """An instance of a async task to execute."""

    @abstractmethod
    async def run(self, stdin: bytes | None = None) -> bytes:
        """Execute the task and return the result."""


def format_path(path: Path) -> str:
    """Format path for debugging."""
    if path.is_absolute():
        cwd = Path.cwd()
        if path.is_relative_to(cwd):
            rel_path = str(path.relative_to(cwd))
            return f"{rel_path} (abs)"
    return str(path)


def _env(extra: dict[str, str] | None) -> dict[str, str]:
    """Merge the process environment with command specific variables."""
    return {
        **os.environ,
        **(extra if extra else {}),
    }


@dataclass
class Command(Task):
    """An instance of a command to run."""

    cmd: list[str]
    """Array of command line arguments."""

    cwd: Path | None = None
    """Current working directory."""

    exc: type[CommandException] = CommandException
    """Exception to throw in case of an error."""

    env: dict[str, str] | None = None
    """Environment variables for the subprocess, overriding the current environment."""

    @property
    def string(self) -> str:
        """Render the command as a single string."""
        return " ".join([shlex.quote(arg) for arg in self.cmd])

    def __str__(self) -> str:
        """Render as a debug string."""
        cwd: str = ""
        if self.cwd:
            cwd = f"({format_path(self.cwd)}) "
        return f"{cwd}{self.string}"

    async def run(self, stdin: bytes | None = None) -> bytes:
        """Run the command, returning stdout."""
        _LOGGER.debug("Running command: %s", self)
        proc = await asyncio.create_subprocess_exec(
            *self.cmd,
            stdin=subprocess.PIPE,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            cwd=self.cwd,
            env=_env(self.env),
        )
        out, err = await proc.communicate(stdin)
        if proc.returncode:
            errors = [f"Command '{self}' failed with return code {proc.returncode}"]
            if out:
                errors.append(out.decode("utf-8"))
            if err:
                errors.append(err.decode("utf-8"))
            _LOGGER.debug("\n".join(errors))
            raise self.exc("\n".join(errors))
        return out


async def run(cmd: Task, stdin: bytes | None = None) -> str:
    """Run the specified command and return stdout."""
    try:
        out = await asyncio.wait_for(cmd.run(stdin), _TIMEOUT)
    except asyncio.TimeoutError as err:
        if isinstance(cmd, Command):
            raise cmd.exc(f"Command '{cmd}' timed out") from err
        raise err
    return out.decode("utf-8") if out else ""


def iter_json_documents(buf: str) -> tuple[list[Any], str]:
    """Decode all complete JSON documents in the buffer.

    Returns the decoded documents and the remaining partial input.
    """
    decoder = json.JSONDecoder()
    docs: list[Any] = []
    pos = 0
    while True:
        while pos < len(buf) and buf[pos].isspace():
            pos += 1
        if pos >= len(buf):
            return docs, ""
        try:
            doc, end = decoder.raw_decode(buf, pos)
        except json.JSONDecodeError:
            return docs, buf[pos:]
        docs.append(doc)
        pos = end


@dataclass
class StreamCommand:
    """A long running command whose stdout is a stream of JSON documents.

    The process is started on entry and is always stopped on exit.
    """

    cmd: list[str]
    """Array of command line arguments."""

    exc: type[CommandException] = CommandException
    """Exception to throw when the stream breaks."""

    env: dict[str, str] | None = None
    """Environment variables for the subprocess, overriding the current environment."""

    _proc: asyncio.subprocess.Process | None = None

    _stderr: bytearray = field(default_factory=bytearray)

    _stderr_task: asyncio.Task[None] | None = None

    def __str__(self) -> str:
        """Render as a debug string."""
        return " ".join([shlex.quote(arg) for arg in self.cmd])

    async def __aenter__(self) -> "StreamCommand":
        _LOGGER.debug("Starting stream command: %s", self)
        self._proc = await asyncio.create_subprocess_exec(
            *self.cmd,
            stdin=subprocess.DEVNULL,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            env=_env(self.env),
        )
        if self._proc.stderr is not None:
            self._stderr_task = asyncio.create_task(
                self._drain_stderr(self._proc.stderr)
            )
        return self

    async def _drain_stderr(self, stream: asyncio.StreamReader) -> None:
        """Collect error output while stdout is being read."""
        while chunk := await stream.read(_READ_SIZE):
            self._stderr.extend(chunk)

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.stop()

    async def stop(self) -> None:
        """Terminate the process if it is still running."""
        if (proc := self._proc) is None:
            return
        self._proc = None
        if proc.returncode is None:
            _LOGGER.debug("Stopping stream command: %s", self)
            proc.terminate()
        await proc.wait()
        if (task := self._stderr_task) is not None:
            self._stderr_task = None
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)

    async def documents(self) -> AsyncGenerator[Any, None]:
        """Yield each JSON document written by the command.

        Raises the command exception if the stream ends for any reason.
        """
        if (proc := self._proc) is None or proc.stdout is None:
            raise self.exc(f"Command '{self}' is not running")
        buf = ""
        while chunk := await proc.stdout.read(_READ_SIZE):
            buf += chunk.decode("utf-8")
            docs, buf = iter_json_documents(buf)
            for doc in docs:
                yield doc
        await proc.wait()
        if self._stderr_task is not None:
            await asyncio.gather(self._stderr_task, return_exceptions=True)
        errors = [f"Command '{self}' exited with return code {proc.returncode}"]
        if self._stderr:
            errors.append(self._stderr.decode("utf-8", errors="replace"))
        raise self.exc("\n".join(errors))
