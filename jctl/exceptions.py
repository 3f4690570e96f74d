"""Exceptions related to jctl."""

__all__ = [
    "JctlException",
    "ConfigError",
    "CommandException",
    "ResolutionError",
    "AmbiguousTargetError",
    "NotExecutableError",
    "TargetNotFoundError",
    "CompileError",
    "PackagingError",
    "ConfigMutationError",
    "PublishError",
    "RegistryConfigError",
    "ClusterError",
    "JobCreateError",
    "JobTimeoutError",
    "WatchStreamError",
    "JobFailedError",
]


class JctlException(Exception):
    """Generic base exception used for this library."""


class ConfigError(JctlException):
    """Raised when the environment is missing required configuration."""


class CommandException(JctlException):
    """Raised when there is a failure running a subcommand."""


class ResolutionError(JctlException):
    """Raised when a program reference can't be resolved to a buildable program."""


class AmbiguousTargetError(ResolutionError):
    """Raised when a local path expands to zero or several packages."""


class NotExecutableError(ResolutionError):
    """Raised when the program reference is a library, not a command."""


class TargetNotFoundError(ResolutionError):
    """Raised when the program reference can't be located."""


class CompileError(CommandException):
    """Raised when there is a failure running `go build`."""


class PackagingError(JctlException):
    """Raised when an image layer archive can't be written."""


class ConfigMutationError(JctlException):
    """Raised when the image configuration can't be rewritten."""


class PublishError(JctlException):
    """Raised when an image can't be pushed to the registry."""


class RegistryConfigError(PublishError):
    """Raised when the destination registry is not configured."""


class ClusterError(JctlException):
    """Raised when there is a failure talking to the cluster."""


class JobCreateError(ClusterError):
    """Raised when the cluster rejects the job."""


class WatchStreamError(ClusterError):
    """Raised when the job watch stream breaks before the job finished."""


class JobTimeoutError(ClusterError):
    """Raised when the job did not finish before the deadline."""

    def __init__(
        self, job_name: str, timeout: float, program: str | None = None
    ) -> None:
        message = f"Job {job_name} did not finish within {timeout:g} seconds"
        if program:
            message = f"Failed to run {program}: {message}"
        super().__init__(message)
        self.job_name = job_name
        self.timeout = timeout
        self.program = program


class JobFailedError(ClusterError):
    """Raised when a job finished with a Failed condition."""

    def __init__(
        self, job_name: str, message: str | None, program: str | None = None
    ) -> None:
        text = f"Job {job_name} failed: {message or 'Unknown error'}"
        if program:
            text = f"Failed to run {program}: {text}"
        super().__init__(text)
        self.job_name = job_name
        self.message = message
        self.program = program
