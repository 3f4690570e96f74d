"""
jctl builds a Go command into a container image, publishes it and runs it
to completion as a Kubernetes Job.
"""

__all__ = [
    "build",
    "cluster",
    "config",
    "exceptions",
    "image",
    "job",
    "layer",
    "path",
    "publish",
    "registry",
    "workflow",
    # Note this is exposed for CLI documentation, not to be used as a library
    "tool",
]
