"""Atomic file writes for server configuration and PID files."""

import os
import tempfile
from pathlib import Path


def atomic_write(file_path: Path, content: str):
    """
    Write content to file atomically.

    Writes a temporary file in the same directory, fsyncs it, then renames
    it over the target so readers never observe a half-written file.

    Args:
        file_path: Target file path
        content: String content to write

    Raises:
        OSError: If write or rename fails
    """
    file_path.parent.mkdir(parents=True, exist_ok=True)

    temp_fd, temp_path = tempfile.mkstemp(
        dir=file_path.parent,
        prefix=f".{file_path.name}.tmp."
    )

    try:
        with os.fdopen(temp_fd, "wb") as f:
            f.write(content.encode("utf-8"))
            f.flush()
            os.fsync(f.fileno())
        os.replace(temp_path, file_path)
    except BaseException:
        try:
            os.unlink(temp_path)
        except FileNotFoundError:
            pass
        raise
