"""Holdings file containers.

Holdings files arrive as plain KBART text, gzip streams, or ZIP archives with
one or more lists inside. Archives are read member by member without being
extracted to disk; the member count and compression ratio are bounded so a
hostile or broken archive cannot exhaust memory.
"""

from __future__ import annotations

import gzip
import io
import logging
import zipfile
import zlib
from collections.abc import Iterator
from pathlib import Path

from isil_tagger.exceptions import HoldingsParseError

logger = logging.getLogger(__name__)

DEFAULT_MAX_MEMBERS = 1_000
DEFAULT_MAX_EXTRACTED_BYTES = 2 * 1024 * 1024 * 1024
DEFAULT_MAX_COMPRESSION_RATIO = 200
GZIP_MAGIC = b"\x1f\x8b"


class ArchiveLimitError(HoldingsParseError):
    code = "archive_limit_error"


def check_zip_limits(
    zf: zipfile.ZipFile,
    compressed_size: int,
    *,
    max_members: int = DEFAULT_MAX_MEMBERS,
    max_extracted_bytes: int = DEFAULT_MAX_EXTRACTED_BYTES,
    max_compression_ratio: int = DEFAULT_MAX_COMPRESSION_RATIO,
) -> list[zipfile.ZipInfo]:
    members = [m for m in zf.infolist() if not m.is_dir()]
    if len(members) > max_members:
        raise ArchiveLimitError(
            f"Archive contains {len(members)} files, exceeds limit of {max_members}",
            context={"members": len(members)},
        )
    total_uncompressed = sum(m.file_size for m in members)
    if total_uncompressed > max_extracted_bytes:
        raise ArchiveLimitError(
            f"Total uncompressed size {total_uncompressed} exceeds limit {max_extracted_bytes}",
            context={"bytes": total_uncompressed},
        )
    if compressed_size > 0:
        ratio = total_uncompressed / compressed_size
        if ratio > max_compression_ratio:
            raise ArchiveLimitError(
                f"Compression ratio {ratio:.1f}x exceeds limit {max_compression_ratio}x",
                context={"ratio": round(ratio, 1)},
            )
    return members


def _text(stream: io.BufferedIOBase) -> io.TextIOWrapper:
    return io.TextIOWrapper(stream, encoding="utf-8-sig", errors="replace", newline="")


def open_holdings(path: Path) -> Iterator[tuple[str, io.TextIOWrapper]]:
    """Yield ``(name, text stream)`` for every holdings list in the container.

    ZIP archives are tried first, then gzip, then the file is read as text.
    Streams are only valid until the generator advances.
    """
    try:
        if zipfile.is_zipfile(path):
            with zipfile.ZipFile(path) as zf:
                members = check_zip_limits(zf, path.stat().st_size)
                for member in members:
                    with zf.open(member) as raw:
                        yield f"{path.name}!{member.filename}", _text(raw)
            return
        with path.open("rb") as f:
            magic = f.read(2)
        if magic == GZIP_MAGIC:
            with gzip.open(path, "rb") as raw:
                yield path.name, _text(raw)
            return
        with path.open("rb") as raw:
            yield path.name, _text(raw)
    except HoldingsParseError:
        raise
    except (zipfile.BadZipFile, zlib.error, EOFError, OSError) as exc:
        raise HoldingsParseError(
            f"cannot read holdings file {path}: {exc}",
            context={"path": str(path)},
        ) from exc
