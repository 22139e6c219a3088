"""Holdings file cache.

Maps a holdings file reference (a URL or a local path) to a parsed
:class:`CoverageIndex` and the local file it was read from. Remote files are
downloaded once into a content addressed cache directory
(``<cache dir>/<sha1 of the reference>``) and reused by later runs; parsed
indices are kept in memory for the lifetime of the cache object. Entries are
only ever added, never evicted or replaced.
"""

from __future__ import annotations

import csv
import datetime
import logging
import os
import tempfile
import threading
import time
import zipfile
import zlib
from pathlib import Path
from urllib.parse import urlparse

import requests

from isil_tagger.exceptions import HoldingsFetchError, HoldingsParseError
from isil_tagger.holdings.archive import open_holdings
from isil_tagger.holdings.coverage import CoverageIndex
from isil_tagger.holdings.kbart import ParseStats, load_into
from isil_tagger.logging_config import LogContext
from isil_tagger.network_utils import (
    DEFAULT_TIMEOUT,
    RetryConfig,
    _with_retries,
    create_retry_session,
)
from isil_tagger.record import Record
from isil_tagger.utils.hash import sha1_text
from isil_tagger.utils.logging import log_event
from isil_tagger.utils.paths import default_cache_dir, ensure_dir

logger = logging.getLogger(__name__)

CHUNK_SIZE = 1024 * 1024
REMOTE_SCHEMES = {"http", "https"}


class _CacheEntry:
    def __init__(self) -> None:
        self.event = threading.Event()
        self.path: Path | None = None
        self.value: CoverageIndex | None = None
        self.error: BaseException | None = None


class HoldingsCache:
    def __init__(
        self,
        cache_dir: Path | None = None,
        *,
        session: requests.Session | None = None,
        retry: RetryConfig | None = None,
        timeout: tuple[float, float] = DEFAULT_TIMEOUT,
        force_download: bool = False,
    ) -> None:
        self.cache_dir = Path(cache_dir) if cache_dir else default_cache_dir()
        self.session = session or create_retry_session(total_retries=0)
        self.retry = retry or RetryConfig()
        self.timeout = timeout
        self.force_download = force_download
        self.fetch_count = 0
        self._lock = threading.Lock()
        self._entries: dict[str, _CacheEntry] = {}

    def cache_path(self, ref: str) -> Path:
        """Return the on-disk location for a remote holdings reference."""
        return self.cache_dir / sha1_text(ref)

    def resolve(self, ref: str) -> CoverageIndex:
        """Return the coverage index for ``ref``, fetching and parsing on first use.

        Concurrent callers asking for the same reference wait for a single
        in-flight load. Failed loads are not cached; every waiter sees the error.
        """
        entry = self._entry(ref)
        assert entry.value is not None
        return entry.value

    def local_path(self, ref: str) -> Path:
        """Return the file the index for ``ref`` was parsed from, loading it if needed."""
        entry = self._entry(ref)
        assert entry.path is not None
        return entry.path

    def _entry(self, ref: str) -> _CacheEntry:
        with self._lock:
            entry = self._entries.get(ref)
            if entry is None:
                entry = _CacheEntry()
                self._entries[ref] = entry
                should_load = True
            else:
                should_load = False
        if should_load:
            try:
                entry.path, entry.value = self._load(ref)
            except BaseException as exc:
                entry.error = exc
                with self._lock:
                    self._entries.pop(ref, None)
                raise
            finally:
                entry.event.set()
        else:
            entry.event.wait()
        if entry.error is not None:
            raise entry.error
        return entry

    def covers(self, ref: str, record: Record, *, today: datetime.date | None = None) -> bool:
        index = self.resolve(ref)
        return index.covers(
            record.serial_numbers, record.raw_date, record.volume, record.issue, today=today
        )

    def _load(self, ref: str) -> tuple[Path, CoverageIndex]:
        with LogContext(holdings_ref=ref):
            path = self.materialize(ref)
            return path, self.parse(ref, path)

    def materialize(self, ref: str) -> Path:
        """Return a local path holding the raw file for ``ref``."""
        parsed = urlparse(ref)
        scheme = parsed.scheme.lower()
        if scheme in REMOTE_SCHEMES:
            path = self.cache_path(ref)
            if path.exists() and not self.force_download:
                logger.debug("Using cached holdings file %s for %s", path, ref)
                return path
            self._download(ref, path)
            return path
        local = Path(parsed.path if scheme == "file" else ref).expanduser()
        if not local.is_file():
            raise HoldingsFetchError(
                f"holdings file not found: {ref}",
                context={"ref": ref, "path": str(local)},
            )
        return local

    def _download(self, url: str, path: Path) -> None:
        ensure_dir(path.parent)
        started = time.monotonic()

        def on_retry(attempt: int, exc: Exception) -> None:
            logger.warning("Retrying holdings download %s (attempt %d): %s", url, attempt, exc)

        def fetch() -> int:
            fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f"{path.name}.", suffix=".part")
            tmp_path = Path(tmp_name)
            try:
                written = 0
                with os.fdopen(fd, "wb") as f:
                    with self.session.get(url, stream=True, timeout=self.timeout) as r:
                        r.raise_for_status()
                        for chunk in r.iter_content(chunk_size=CHUNK_SIZE):
                            if chunk:
                                f.write(chunk)
                                written += len(chunk)
                    f.flush()
                    os.fsync(f.fileno())
                tmp_path.replace(path)
                return written
            finally:
                tmp_path.unlink(missing_ok=True)

        with self._lock:
            self.fetch_count += 1
        try:
            size = _with_retries(
                fetch,
                max_attempts=self.retry.max_attempts,
                backoff_base=self.retry.backoff_base,
                backoff_max=self.retry.backoff_max,
                on_retry=on_retry,
            )
        except requests.exceptions.RequestException as exc:
            raise HoldingsFetchError(
                f"failed to download holdings file {url}: {exc}",
                context={"ref": url, "attempts": self.retry.max_attempts},
            ) from exc
        log_event(
            logger,
            "Downloaded holdings file",
            ref=url,
            path=str(path),
            bytes=size,
            seconds=round(time.monotonic() - started, 3),
        )

    def parse(self, ref: str, path: Path) -> CoverageIndex:
        index = CoverageIndex(source=ref)
        stats = ParseStats()
        try:
            for name, stream in open_holdings(path):
                load_into(index, stream, name=name, stats=stats)
        except HoldingsParseError:
            raise
        except (zipfile.BadZipFile, zlib.error, EOFError, OSError, csv.Error) as exc:
            raise HoldingsParseError(
                f"cannot parse holdings file {ref}: {exc}",
                context={"ref": ref, "path": str(path)},
            ) from exc
        if len(index) == 0:
            logger.warning("Holdings file %s yielded no entries, it may not be KBART", ref)
        else:
            log_event(
                logger,
                "Parsed holdings file",
                ref=ref,
                serials=len(index),
                entries=stats.entries,
                skipped_rows=stats.skipped,
            )
        return index
