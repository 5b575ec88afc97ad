"""Atomic file writes, directory management, and root discovery."""

from __future__ import annotations

import os
import tempfile
from pathlib import Path

from quikim.errors import ProjectRootError

QUIKIM_DIR = ".quikim"
QUIKIM_ROOT_ENV = "QUIKIM_ROOT"
TEMP_PREFIX = ".tmp."


def _fsync_directory(path: Path) -> None:
    """Fsync a directory so renames inside it are durable.

    Some platforms (notably macOS HFS+) may not support fsync on directory
    file descriptors, so ``OSError`` is silently ignored.
    """
    try:
        fd = os.open(str(path), os.O_RDONLY)
        try:
            os.fsync(fd)
        finally:
            os.close(fd)
    except OSError:
        pass


def atomic_write(path: Path, content: str | bytes) -> None:
    """Write content to path atomically via temp file + fsync + rename.

    The temp file is created in the same directory as the target so that
    ``os.replace()`` stays on one filesystem.

    Raises:
        FileNotFoundError: If the parent directory does not exist.
    """
    parent = path.parent
    if not parent.is_dir():
        raise FileNotFoundError(f"Parent directory does not exist: {parent}")

    data = content.encode("utf-8") if isinstance(content, str) else content

    fd, tmp_path = tempfile.mkstemp(dir=parent, prefix=TEMP_PREFIX)
    closed = False
    try:
        # os.write() can short-write; loop until all bytes are flushed.
        mv = memoryview(data)
        while mv:
            written = os.write(fd, mv)
            mv = mv[written:]
        os.fsync(fd)
        os.close(fd)
        closed = True
        os.replace(tmp_path, path)
        _fsync_directory(parent)
    except BaseException:
        if not closed:
            os.close(fd)
        try:
            os.unlink(tmp_path)
        except OSError:
            pass
        raise


def atomic_rename(source: Path, target: Path) -> None:
    """Move *source* onto *target*, replacing it atomically."""
    os.replace(source, target)
    _fsync_directory(target.parent)


def ensure_quikim_dirs(root: Path) -> Path:
    """Create the ``.quikim/`` directory structure under *root* and return it."""
    quikim = root / QUIKIM_DIR
    for subdir in ("artifacts", "locks"):
        (quikim / subdir).mkdir(parents=True, exist_ok=True)
    return quikim


def find_root(start: Path | None = None) -> Path | None:
    """Find the project root containing ``.quikim/``.

    Checks ``QUIKIM_ROOT`` first. If set, validates it and returns the path
    or raises (no fallback to walk-up).

    Otherwise, walks up from *start* (defaults to cwd) looking for
    ``.quikim/``.

    Returns:
        Path to the directory containing ``.quikim/``, or ``None`` if not found.

    Raises:
        ProjectRootError: If ``QUIKIM_ROOT`` is set but invalid.
    """
    env_root = os.environ.get(QUIKIM_ROOT_ENV)
    if env_root is not None:
        if not env_root:
            raise ProjectRootError("QUIKIM_ROOT is set but empty")
        env_path = Path(env_root)
        if not env_path.is_dir():
            raise ProjectRootError(f"QUIKIM_ROOT points to a path that does not exist: {env_root}")
        if not (env_path / QUIKIM_DIR).is_dir():
            raise ProjectRootError(
                f"QUIKIM_ROOT points to a directory with no {QUIKIM_DIR}/ inside: {env_root}"
            )
        return env_path

    current = (start or Path.cwd()).resolve()
    while True:
        if (current / QUIKIM_DIR).is_dir():
            return current
        parent = current.parent
        if parent == current:
            return None
        current = parent
