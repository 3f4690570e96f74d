"""Library for building deterministic image layer archives.

A layer is a gzip compressed tar archive that is overlaid onto a base image.
Archives built from the same inputs are byte identical: every header uses a
fixed mode with no owner or timestamp, directories are walked in lexical
order and the gzip header carries no name or modification time.

Layers are compressed here, before any digest is taken, and are pushed to the
registry exactly as built.
"""

from collections.abc import Generator
from contextlib import contextmanager
import gzip
import io
import logging
from pathlib import Path, PurePosixPath
import tarfile

from .exceptions import PackagingError

__all__ = [
    "build_layer",
    "build_single_file_layer",
]

_LOGGER = logging.getLogger(__name__)

# Fixed so the archive is not sensitive to the umask it was created under.
MODE_READ_EXEC = 0o555

# Fastest compression level.
COMPRESS_LEVEL = 1


@contextmanager
def _archive(buf: io.BytesIO) -> Generator[tarfile.TarFile, None, None]:
    """Write a gzip compressed tar archive into the buffer.

    Both the tar and the gzip stream are closed on exit, whether or not an
    error was raised.
    """
    with gzip.GzipFile(
        fileobj=buf, mode="wb", compresslevel=COMPRESS_LEVEL, mtime=0
    ) as gz:
        with tarfile.open(fileobj=gz, mode="w", format=tarfile.PAX_FORMAT) as tar:
            yield tar


def _member_name(path: PurePosixPath) -> str:
    """Archive names are relative to the root of the image."""
    return str(path).lstrip("/")


def _add_directory(tar: tarfile.TarFile, path: PurePosixPath) -> None:
    if not (name := _member_name(path)):
        return
    info = tarfile.TarInfo(name)
    info.type = tarfile.DIRTYPE
    info.mode = MODE_READ_EXEC
    tar.addfile(info)


def _add_parent_directories(tar: tarfile.TarFile, path: PurePosixPath) -> None:
    """Write an entry for every ancestor of path, shallowest first."""
    for parent in reversed(path.parents):
        if _member_name(parent) in ("", "."):
            continue
        _add_directory(tar, parent)


def _add_file(tar: tarfile.TarFile, source: Path, dest: PurePosixPath) -> None:
    with source.open("rb") as fd:
        info = tarfile.TarInfo(_member_name(dest))
        info.type = tarfile.REGTYPE
        info.mode = MODE_READ_EXEC
        info.size = source.stat().st_size
        tar.addfile(info, fd)


def _walk_tree(tar: tarfile.TarFile, root: Path, chroot: PurePosixPath) -> None:
    """Write the tree under root into the archive, relocated under chroot.

    The walk root gets a directory entry; plain sub directories do not, only
    the files within them. Symlinks are resolved and their targets archived
    in place of the link. A symlink to a directory is walked as a new root.
    """
    # TODO: Track visited real paths so a symlink back into the tree is not
    # walked forever.
    stack: list[tuple[Path, PurePosixPath, bool]] = [(root, chroot, True)]
    while stack:
        source, dest, is_root = stack.pop()
        if is_root:
            _add_directory(tar, dest)
            if not source.is_dir():
                _LOGGER.debug("No data directory at %s", source)
                continue
        elif source.is_symlink() or not source.is_dir():
            real = source.resolve(strict=True)
            if real.is_dir():
                stack.append((real, dest, True))
                continue
            if not real.is_file():
                raise PackagingError(f"Unsupported file type for {source}")
            _add_file(tar, real, dest)
            continue
        children = sorted(source.iterdir(), key=lambda p: p.name, reverse=True)
        stack.extend((child, dest / child.name, False) for child in children)


def build_layer(source_root: Path, dest_root: str) -> bytes:
    """Build a layer with the contents of source_root placed at dest_root."""
    dest = PurePosixPath(dest_root)
    buf = io.BytesIO()
    try:
        with _archive(buf) as tar:
            _add_parent_directories(tar, dest)
            _walk_tree(tar, source_root, dest)
    except OSError as err:
        raise PackagingError(
            f"Unable to archive {source_root} at {dest_root}: {err}"
        ) from err
    return buf.getvalue()


def build_single_file_layer(source_file: Path, dest_path: str) -> bytes:
    """Build a layer containing a single file at dest_path."""
    dest = PurePosixPath(dest_path)
    buf = io.BytesIO()
    try:
        with _archive(buf) as tar:
            _add_parent_directories(tar, dest)
            _add_file(tar, source_file, dest)
    except OSError as err:
        raise PackagingError(
            f"Unable to archive {source_file} at {dest_path}: {err}"
        ) from err
    return buf.getvalue()
