"""Attachment rules and the rule store.

The rule store is an SQLite file (table ``amsl``) describing which
institution wants which source and collection, and whether a holdings file
has to be consulted. Lookups are keyed by source id and the record's
collections; results are cached per run in a :class:`RuleMatchCache`.

SQLite serializes access through a connection, so every worker thread gets
its own read-only connection (``threading.local``) instead of sharing one
handle behind a lock.
"""

from __future__ import annotations

import enum
import json
import logging
import os
import sqlite3
import tempfile
import threading
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from isil_tagger.exceptions import ConfigurationError, RuleStoreError
from isil_tagger.utils.logging import log_event
from isil_tagger.utils.paths import ensure_dir

logger = logging.getLogger(__name__)

TABLE = "amsl"
COLUMNS = ("isil", "sid", "tcid", "mc", "hflink", "hfeval", "cflink", "cfelink")
SCHEMA = f"""
CREATE TABLE IF NOT EXISTS {TABLE} (
    isil TEXT NOT NULL,
    sid TEXT NOT NULL,
    tcid TEXT,
    mc TEXT,
    hflink TEXT,
    hfeval TEXT,
    cflink TEXT,
    cfelink TEXT
);
CREATE INDEX IF NOT EXISTS idx_{TABLE}_sid ON {TABLE} (sid);
"""

# AMSL discovery keys, in table column order.
DISCOVERY_KEYS = (
    "ISIL",
    "sourceID",
    "technicalCollectionID",
    "megaCollection",
    "linkToHoldingsFile",
    "evaluateHoldingsFileForLibrary",
    "contentFileURI",
    "externalLinkToContentFile",
)


class AttachmentMode(enum.Enum):
    UNCONDITIONAL = "unconditional"
    HOLDINGS = "holdings"
    CONTENT_FILE = "content_file"


@dataclass(frozen=True)
class AttachmentRule:
    institution: str
    source_id: str
    technical_collection_id: str = ""
    mega_collection: str = ""
    holdings_file_ref: str = ""
    evaluate_holdings: str = ""
    content_file_ref: str = ""
    external_content_ref: str = ""

    @classmethod
    def from_row(cls, row: Sequence[Any]) -> AttachmentRule:
        values = ["" if value is None else str(value).strip() for value in row]
        return cls(*values)

    def as_dict(self) -> dict[str, str]:
        return {
            "institution": self.institution,
            "source_id": self.source_id,
            "technical_collection_id": self.technical_collection_id,
            "mega_collection": self.mega_collection,
            "holdings_file_ref": self.holdings_file_ref,
            "evaluate_holdings": self.evaluate_holdings,
            "content_file_ref": self.content_file_ref,
            "external_content_ref": self.external_content_ref,
        }

    def attachment_mode(self) -> AttachmentMode:
        """Classify the rule; contradictory or incomplete rules are rejected."""
        evaluate = self.evaluate_holdings.lower()
        if evaluate == "no" and self.holdings_file_ref:
            raise ConfigurationError(
                "rule provides a holdings file, but does not want to evaluate it",
                context={"rule": self.as_dict()},
            )
        if evaluate == "yes" and self.holdings_file_ref:
            return AttachmentMode.HOLDINGS
        if evaluate == "no":
            return AttachmentMode.UNCONDITIONAL
        if self.content_file_ref:
            return AttachmentMode.CONTENT_FILE
        raise ConfigurationError(
            "none of the attachment modes match rule",
            context={"rule": self.as_dict()},
        )


def cache_key(source_id: str, collections: Iterable[str]) -> str:
    """Order independent key for a (source, collections) lookup."""
    return "@".join([source_id, *sorted(set(collections))])


class RuleStore:
    """Read-only access to the rule database, one connection per thread."""

    def __init__(self, path: Path) -> None:
        self.path = Path(path)
        if not self.path.is_file():
            raise RuleStoreError(
                f"rule database not found: {self.path}", context={"path": str(self.path)}
            )
        self._local = threading.local()
        self._connections: list[sqlite3.Connection] = []
        self._lock = threading.Lock()
        self.query_count = 0

    def _connection(self) -> sqlite3.Connection:
        conn = getattr(self._local, "conn", None)
        if conn is None:
            try:
                conn = sqlite3.connect(
                    f"{self.path.resolve().as_uri()}?mode=ro", uri=True, check_same_thread=False
                )
            except sqlite3.Error as exc:
                raise RuleStoreError(
                    f"cannot open rule database {self.path}: {exc}",
                    context={"path": str(self.path)},
                ) from exc
            self._local.conn = conn
            with self._lock:
                self._connections.append(conn)
        return conn

    def query(self, source_id: str, collections: Sequence[str]) -> list[AttachmentRule]:
        """Rows where the source matches and the mega collection or technical
        collection id is one of ``collections``."""
        if not collections:
            return []
        placeholders = ", ".join("?" for _ in collections)
        sql = (
            f"SELECT {', '.join(COLUMNS)} FROM {TABLE} "
            f"WHERE sid = ? AND (mc IN ({placeholders}) OR tcid IN ({placeholders}))"
        )
        params = [source_id, *collections, *collections]
        with self._lock:
            self.query_count += 1
        try:
            rows = self._connection().execute(sql, params).fetchall()
        except sqlite3.Error as exc:
            raise RuleStoreError(
                f"rule query failed: {exc}",
                context={"source_id": source_id, "collections": list(collections)},
            ) from exc
        return [AttachmentRule.from_row(row) for row in rows]

    def close(self) -> None:
        with self._lock:
            for conn in self._connections:
                conn.close()
            self._connections.clear()
        self._local = threading.local()


class RuleMatchCache:
    """Insert-if-absent map from cache key to matched rules."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._entries: dict[str, tuple[AttachmentRule, ...]] = {}

    def get(self, key: str) -> tuple[AttachmentRule, ...] | None:
        with self._lock:
            return self._entries.get(key)

    def put(self, key: str, rules: tuple[AttachmentRule, ...]) -> tuple[AttachmentRule, ...]:
        with self._lock:
            return self._entries.setdefault(key, rules)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


class RuleMatcher:
    def __init__(self, store: RuleStore, cache: RuleMatchCache | None = None) -> None:
        self.store = store
        self.cache = cache if cache is not None else RuleMatchCache()

    def match(self, source_id: str, collections: Iterable[str]) -> tuple[AttachmentRule, ...]:
        """Return the rules for a source and its collections.

        A record without collections matches nothing. Every returned rule has
        a valid attachment mode; a contradictory rule raises
        :class:`ConfigurationError` and is not cached.
        """
        collections = sorted(set(collections))
        if not collections:
            return ()
        key = cache_key(source_id, collections)
        cached = self.cache.get(key)
        if cached is not None:
            return cached
        rules = tuple(self.store.query(source_id, collections))
        for rule in rules:
            rule.attachment_mode()
        return self.cache.put(key, rules)


def import_rules(entries: Iterable[dict[str, Any]], path: Path) -> int:
    """Build a rule database from AMSL discovery entries.

    The database is written to a temporary file in a single transaction and
    moved into place, so readers never see a partial store.
    """
    ensure_dir(path.parent)
    fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f"{path.name}.", suffix=".part")
    tmp_path = Path(tmp_name)
    count = 0
    try:
        os.close(fd)
        conn = sqlite3.connect(str(tmp_path))
        try:
            conn.executescript(SCHEMA)
            with conn:
                for entry in entries:
                    if not entry.get("ISIL") or not entry.get("sourceID"):
                        logger.warning("Skipping discovery entry without ISIL or sourceID: %s", entry)
                        continue
                    row = ["" if entry.get(key) is None else str(entry.get(key)) for key in DISCOVERY_KEYS]
                    conn.execute(
                        f"INSERT INTO {TABLE} ({', '.join(COLUMNS)}) VALUES ({', '.join('?' for _ in COLUMNS)})",
                        row,
                    )
                    count += 1
        finally:
            conn.close()
        tmp_path.replace(path)
    except sqlite3.Error as exc:
        raise RuleStoreError(
            f"cannot build rule database {path}: {exc}", context={"path": str(path)}
        ) from exc
    finally:
        tmp_path.unlink(missing_ok=True)
    log_event(logger, "Imported rules", path=str(path), rules=count)
    return count


def load_discovery(path: Path) -> list[dict[str, Any]]:
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as exc:
        raise ConfigurationError(
            f"cannot read discovery document {path}: {exc}", context={"path": str(path)}
        ) from exc
    if not isinstance(data, list):
        raise ConfigurationError(
            "discovery document must be a JSON array", context={"path": str(path)}
        )
    return data
