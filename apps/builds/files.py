"""Atomic file writes shared by both backends.

Content goes to a temporary file in the destination directory and is moved
into place with ``os.replace``, so readers see either the old file or the
complete new one.
"""
import os
import shutil
import tempfile
from pathlib import Path
from typing import BinaryIO

CHUNK_SIZE = 1024 * 1024


def _atomic_write(path: Path, fill) -> int:
    fd, tmp_name = tempfile.mkstemp(dir=str(path.parent), prefix=f".{path.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "wb") as f:
            written = fill(f)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_name, path)
    except BaseException:
        try:
            os.unlink(tmp_name)
        except FileNotFoundError:
            pass
        raise
    return written


def write_bytes_atomic(path: Path, data: bytes) -> int:
    return _atomic_write(path, lambda f: f.write(data))


def write_text_atomic(path: Path, text: str) -> int:
    return write_bytes_atomic(path, text.encode("utf-8"))


def write_stream_atomic(path: Path, stream: BinaryIO) -> int:
    """Copy a readable binary stream to ``path``; returns the bytes written."""

    def _copy(f):
        start = f.tell()
        shutil.copyfileobj(stream, f, CHUNK_SIZE)
        return f.tell() - start

    return _atomic_write(path, _copy)