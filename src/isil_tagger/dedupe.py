"""Drop labels already granted through a more preferred source.

For every record with a DOI the search index is queried; if an indexed
document from a source with equal or higher preference already carries one
of the record's labels, that label is dropped from the record. When the
indexed document is the less preferred one it cannot be updated from here,
so the record keeps its label and a message is logged.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field

import requests

from isil_tagger.exceptions import DedupeQueryError
from isil_tagger.network_utils import DEFAULT_TIMEOUT, RetryConfig, _with_retries, create_retry_session
from isil_tagger.record import Record

logger = logging.getLogger(__name__)

LOWEST_PRIORITY = 1000


def prepend_http(server: str) -> str:
    server = server.strip().rstrip("/")
    if not server.startswith(("http://", "https://")):
        server = f"http://{server}"
    return server


@dataclass(frozen=True)
class IndexDoc:
    id: str
    source_id: str
    institutions: tuple[str, ...] = ()


@dataclass
class SourcePreference:
    """Ordered source ids, most preferred first."""

    order: Sequence[str]
    _positions: dict[str, int] = field(init=False, repr=False)

    def __post_init__(self) -> None:
        self._positions = {}
        for pos, sid in enumerate(self.order):
            self._positions.setdefault(str(sid).strip(), pos)

    @classmethod
    def parse(cls, text: str) -> SourcePreference:
        return cls(text.split())

    def position(self, source_id: str) -> int:
        """Smaller means more preferred; unknown sources rank last."""
        return self._positions.get(str(source_id).strip(), LOWEST_PRIORITY)


def droppable_labels(
    record: Record,
    docs: Iterable[IndexDoc],
    preference: SourcePreference,
    *,
    ignore_same_identifier: bool = False,
) -> list[str]:
    """Labels of ``record`` that a preferred indexed document already carries."""
    docs = list(docs)
    labels: list[str] = []
    ignored = 0
    for label in record.sorted_labels():
        for doc in docs:
            if ignore_same_identifier and doc.id == record.record_id:
                ignored += 1
                continue
            if label not in doc.institutions:
                continue
            if preference.position(record.source_id) >= preference.position(doc.source_id):
                labels.append(label)
                break
            logger.info(
                "%s (%s) has lower priority in index, but index documents cannot be updated, skipping",
                record.record_id,
                record.doi,
            )
    if ignored:
        logger.debug("Ignored %d index documents with the same id as %s", ignored, record.record_id)
    return labels


class IndexDeduplicator:
    """Query a Solr style ``/select`` endpoint by DOI and drop shadowed labels."""

    def __init__(
        self,
        server: str,
        preference: SourcePreference,
        *,
        ignore_same_identifier: bool = False,
        session: requests.Session | None = None,
        retry: RetryConfig | None = None,
        timeout: tuple[float, float] = DEFAULT_TIMEOUT,
        rows: int = 100,
    ) -> None:
        self.server = prepend_http(server)
        self.preference = preference
        self.ignore_same_identifier = ignore_same_identifier
        self.session = session or create_retry_session(total_retries=0)
        self.retry = retry or RetryConfig()
        self.timeout = timeout
        self.rows = rows

    def lookup(self, doi: str) -> list[IndexDoc]:
        params = {
            "q": f'"{doi}"',
            "df": "allfields",
            "wt": "json",
            "fl": "id,source_id,institution",
            "rows": str(self.rows),
        }
        url = f"{self.server}/select"

        def fetch() -> dict:
            response = self.session.get(url, params=params, timeout=self.timeout)
            response.raise_for_status()
            return response.json()

        try:
            payload = _with_retries(
                fetch,
                max_attempts=self.retry.max_attempts,
                backoff_base=self.retry.backoff_base,
                backoff_max=self.retry.backoff_max,
            )
        except (requests.exceptions.RequestException, ValueError) as exc:
            raise DedupeQueryError(
                f"index query failed for {doi}: {exc}", context={"doi": doi, "server": self.server}
            ) from exc
        try:
            docs = payload["response"]["docs"]
            return [
                IndexDoc(
                    id=str(doc.get("id", "")),
                    source_id=str(doc.get("source_id", "")),
                    institutions=tuple(doc.get("institution") or ()),
                )
                for doc in docs
            ]
        except (KeyError, TypeError, AttributeError) as exc:
            raise DedupeQueryError(
                f"unexpected index response for {doi}", context={"doi": doi, "server": self.server}
            ) from exc

    def apply(self, record: Record) -> Record:
        doi = record.doi.strip()
        if not doi or not record.labels:
            return record
        try:
            docs = self.lookup(doi)
        except DedupeQueryError as exc:
            exc.context.setdefault("record_id", record.record_id)
            raise
        droppable = droppable_labels(
            record,
            docs,
            self.preference,
            ignore_same_identifier=self.ignore_same_identifier,
        )
        if droppable:
            before = len(record.labels)
            record.labels.difference_update(droppable)
            logger.debug(
                "[%s] from %d to %d labels: %s",
                record.record_id,
                before,
                len(record.labels),
                record.sorted_labels(),
            )
        return record
