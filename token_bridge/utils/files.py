"""Crash-safe JSON file persistence."""

from __future__ import annotations

import json
import os
import time
from pathlib import Path
from typing import Any

DIR_MODE = 0o700
FILE_MODE = 0o600


def ensure_private_dir(path: Path) -> None:
    """Create ``path`` (and parents) readable only by the current user."""
    path.mkdir(mode=DIR_MODE, parents=True, exist_ok=True)


def read_json(path: Path) -> Any | None:
    """Return the parsed document at ``path`` or ``None`` when it does not exist."""
    try:
        raw = path.read_text(encoding="utf-8")
    except FileNotFoundError:
        return None
    return json.loads(raw)


def write_json_atomic(path: Path, payload: Any) -> None:
    """Atomic write: write to a unique temp file, fsync, then ``os.replace``.

    The temp file lives in the target directory so the rename never crosses a
    filesystem. Readers observe either the previous or the new document.
    """
    ensure_private_dir(path.parent)
    tmp_path = path.with_name(f"{path.name}.{os.getpid()}.{time.time_ns()}.tmp")
    contents = json.dumps(payload, indent=2, sort_keys=True).encode("utf-8")

    fd = os.open(tmp_path, os.O_WRONLY | os.O_CREAT | os.O_EXCL, FILE_MODE)
    try:
        with os.fdopen(fd, "wb") as handle:
            handle.write(contents)
            handle.flush()
            os.fsync(handle.fileno())
        os.replace(tmp_path, path)
    except BaseException:
        tmp_path.unlink(missing_ok=True)
        raise

    _fsync_directory(path.parent)


def _fsync_directory(directory: Path) -> None:
    # Persist the rename itself; not supported on every platform.
    try:
        fd = os.open(directory, os.O_RDONLY)
    except OSError:
        return
    try:
        os.fsync(fd)
    except OSError:
        pass
    finally:
        os.close(fd)


__all__ = ["ensure_private_dir", "read_json", "write_json_atomic"]
