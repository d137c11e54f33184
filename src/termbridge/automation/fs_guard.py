"""Filesystem guards for the automation directory and working directories.

Every read or write of the automation directory, its config file or its
credential file first checks the path with ``lstat`` so that a symlink
planted at a predictable location can never redirect our I/O. Requested
working directories are canonicalized together with the allowlist before
they are compared.
"""

from __future__ import annotations

import logging
import os
import stat
import tempfile
from pathlib import Path
from typing import Iterable

from termbridge.automation.errors import (
    InvalidWorkingDirectoryError,
    NoAllowedRootsError,
    NotARegularFileError,
    PathNotAllowedError,
    SymlinkError,
)

logger = logging.getLogger(__name__)

PRIVATE_DIR_MODE = 0o700
PRIVATE_FILE_MODE = 0o600


def ensure_not_symlink(*paths: Path) -> None:
    """Raise :class:`SymlinkError` if any existing path is a symbolic link."""
    for path in paths:
        try:
            st = os.lstat(path)
        except FileNotFoundError:
            continue
        if stat.S_ISLNK(st.st_mode):
            logger.warning("Refusing symlinked automation path %s", path)
            raise SymlinkError(str(path))


def ensure_private_dir(path: Path) -> None:
    """Create ``path`` with owner-only permissions unless it already exists."""
    ensure_not_symlink(path)
    path.mkdir(mode=PRIVATE_DIR_MODE, parents=True, exist_ok=True)
    # mkdir may have raced with a link being created in its place
    ensure_not_symlink(path)


def read_private_file(path: Path) -> str | None:
    """Read a guarded file without following links. Returns None if absent.

    Raises:
        SymlinkError: The file or its directory is a link.
        NotARegularFileError: The path is a directory, FIFO or device.
        UnicodeDecodeError: The contents are not UTF-8.
    """
    ensure_not_symlink(path.parent, path)
    try:
        fd = os.open(
            path, os.O_RDONLY | os.O_NONBLOCK | getattr(os, "O_NOFOLLOW", 0)
        )
    except FileNotFoundError:
        return None
    except OSError as e:
        if not path.is_symlink():
            raise
        raise SymlinkError(str(path)) from e
    if not stat.S_ISREG(os.fstat(fd).st_mode):
        os.close(fd)
        raise NotARegularFileError(str(path))
    with os.fdopen(fd, "r", encoding="utf-8") as f:
        return f.read()


def write_private_file(path: Path, content: str) -> None:
    """Atomically replace ``path`` with ``content`` at mode 0600.

    The data lands in a temporary file next to the target which is then
    renamed over it; rename replaces a link rather than writing through it.
    """
    ensure_private_dir(path.parent)
    ensure_not_symlink(path)
    fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
    try:
        os.fchmod(fd, PRIVATE_FILE_MODE)
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(content)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_name, path)
    except BaseException:
        try:
            os.unlink(tmp_name)
        except FileNotFoundError:
            pass
        raise


def remove_private_file(path: Path) -> None:
    """Delete a guarded file if present. Links are refused, not followed."""
    ensure_not_symlink(path.parent, path)
    try:
        path.unlink()
    except FileNotFoundError:
        pass


def _is_within(path: str, root: str) -> bool:
    if path == root:
        return True
    prefix = root if root.endswith(os.sep) else root + os.sep
    return path.startswith(prefix)


def assert_path_allowed(cwd: str, allowed_roots: Iterable[str]) -> str:
    """Check that ``cwd`` canonically resolves inside an allowed root.

    Both sides are passed through ``realpath`` so that a link inside an
    allowed root cannot lead outside it. Returns the canonical ``cwd``.

    Raises:
        NoAllowedRootsError: The allowlist is empty.
        InvalidWorkingDirectoryError: ``cwd`` is relative, missing or not a
            directory while lying inside an allowed root.
        PathNotAllowedError: ``cwd`` resolves outside every allowed root.
    """
    roots = list(allowed_roots)
    if not roots:
        raise NoAllowedRootsError("Automation API has no allowed roots configured")
    if not os.path.isabs(cwd):
        raise InvalidWorkingDirectoryError("cwd must be an absolute path")

    canonical_cwd = os.path.realpath(cwd)
    canonical_roots = [os.path.realpath(root) for root in roots]
    if not any(_is_within(canonical_cwd, root) for root in canonical_roots):
        raise PathNotAllowedError("cwd is outside the allowed roots")

    try:
        st = os.stat(canonical_cwd)
    except FileNotFoundError as e:
        raise InvalidWorkingDirectoryError("cwd does not exist") from e
    except OSError as e:
        raise InvalidWorkingDirectoryError(f"cwd is not accessible: {e.strerror}") from e
    if not stat.S_ISDIR(st.st_mode):
        raise InvalidWorkingDirectoryError("cwd is not a directory")
    return canonical_cwd
