"""Streaming file transforms: SQL marker check, gzip, checksum.

All functions work chunk-by-chunk so dumps larger than memory are fine.
"""

import gzip
import hashlib
import re
import shutil
from pathlib import Path

CHUNK_SIZE = 1024 * 1024

GZIP_MAGIC = b"\x1f\x8b"

# Any of these anywhere in the content marks it as SQL.  Tool banners are
# listed so a schema-only dump of an empty database still passes.
SQL_MARKER_RE = re.compile(
    rb"\b(?:CREATE|INSERT|COPY|SET|DROP|ALTER)\b"
    rb"|db-vault|MySQL dump|PostgreSQL database dump"
)
# Longest marker, so a token split across two chunks is still seen
_MARKER_OVERLAP = 32


def has_sql_markers(path: Path, open_func=open) -> bool:
    """Return True if the file contains at least one SQL marker token.

    Args:
        path: File to scan.
        open_func: ``open`` or ``gzip.open``, to scan compressed content.
    """
    tail = b""
    with open_func(path, "rb") as f:
        while chunk := f.read(CHUNK_SIZE):
            window = tail + chunk
            if SQL_MARKER_RE.search(window):
                return True
            tail = window[-_MARKER_OVERLAP:]
    return False


def text_has_sql_markers(text: str) -> bool:
    return SQL_MARKER_RE.search(text.encode("utf-8", errors="replace")) is not None


def gzip_file(src: Path, dest: Path, level: int = 6) -> None:
    """Compress ``src`` into ``dest`` in a single streaming pass."""
    with open(src, "rb") as f_in, gzip.open(dest, "wb", compresslevel=level) as f_out:
        shutil.copyfileobj(f_in, f_out, CHUNK_SIZE)


def gunzip_file(src: Path, dest: Path) -> None:
    """Decompress gzip ``src`` into ``dest``."""
    with gzip.open(src, "rb") as f_in, open(dest, "wb") as f_out:
        shutil.copyfileobj(f_in, f_out, CHUNK_SIZE)


def sha256_file(path: Path) -> str:
    """Hex SHA-256 of the file's bytes."""
    digest = hashlib.sha256()
    with open(path, "rb") as f:
        while chunk := f.read(CHUNK_SIZE):
            digest.update(chunk)
    return digest.hexdigest()


def read_magic(path: Path, size: int = 8) -> bytes:
    with open(path, "rb") as f:
        return f.read(size)


def is_gzip(path: Path) -> bool:
    return read_magic(path, 2) == GZIP_MAGIC
