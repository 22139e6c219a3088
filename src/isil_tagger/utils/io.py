from __future__ import annotations

import gzip
import io
import sys
from collections.abc import Iterable, Iterator
from pathlib import Path
from typing import IO

import zstandard as zstd


def open_text(path: Path, mode: str = "rt") -> IO[str]:
    """Open a text file, decompressing ``.gz`` and ``.zst`` transparently."""
    if path.suffix == ".gz":
        return gzip.open(path, mode, encoding="utf-8")
    if path.suffix == ".zst":
        try:
            if "r" in mode:
                stream = zstd.ZstdDecompressor().stream_reader(path.open("rb"))
                return io.TextIOWrapper(stream, encoding="utf-8")
            stream = zstd.ZstdCompressor().stream_writer(path.open("wb"))
            return io.TextIOWrapper(stream, encoding="utf-8")
        except zstd.ZstdError as e:
            raise OSError(f"Failed to open zstd file {path}: {e}") from e
    return open(path, mode.replace("t", ""), encoding="utf-8")


def iter_lines(paths: Iterable[Path] | None = None) -> Iterator[str]:
    """Yield lines from the given files in order, or from stdin if none given.

    Files are opened one at a time and only when the previous one is
    exhausted, so the stream can be restarted per run by calling again.
    """
    sources = list(paths or [])
    if not sources:
        yield from sys.stdin
        return
    for path in sources:
        try:
            with open_text(path, "rt") as f:
                yield from f
        except zstd.ZstdError as e:
            raise OSError(f"Failed to read zstd file {path}: {e}") from e
