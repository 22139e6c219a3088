"""KBART holdings list parsing.

A KBART file is a tab separated table with a header row. Rows that cannot be
interpreted (unparseable dates or embargo values) are skipped with a warning;
only an unreadable file is an error, and that is handled by the caller.
"""

from __future__ import annotations

import csv
import logging
from collections.abc import Iterable, Iterator
from dataclasses import dataclass

from isil_tagger.holdings.coverage import CoverageIndex, Entry, RecordDate, normalize_issn, parse_embargo
from isil_tagger.utils.text import leading_int

logger = logging.getLogger(__name__)

KBART_COLUMNS = (
    "publication_title",
    "print_identifier",
    "online_identifier",
    "date_first_issue_online",
    "num_first_vol_online",
    "num_first_issue_online",
    "date_last_issue_online",
    "num_last_vol_online",
    "num_last_issue_online",
    "title_url",
    "first_author",
    "title_id",
    "embargo_info",
    "coverage_depth",
    "notes",
    "publisher_name",
)
IDENTIFIER_COLUMNS = ("print_identifier", "online_identifier")


class MalformedRowError(ValueError):
    pass


@dataclass
class ParseStats:
    rows: int = 0
    entries: int = 0
    skipped: int = 0


def _year(value: str, column: str) -> int | None:
    value = value.strip()
    if not value:
        return None
    date = RecordDate.parse(value)
    if date is None:
        raise MalformedRowError(f"{column}: cannot parse date {value!r}")
    return date.year


def parse_row(row: dict[str, str]) -> tuple[list[str], Entry]:
    """Turn one KBART row into its serial numbers and an entry."""
    issns = []
    for column in IDENTIFIER_COLUMNS:
        value = normalize_issn(row.get(column) or "")
        if value and value not in issns:
            issns.append(value)
    try:
        from_delay, to_delay = parse_embargo(row.get("embargo_info"))
    except ValueError as exc:
        raise MalformedRowError(f"embargo_info: {exc}") from exc
    entry = Entry(
        from_year=_year(row.get("date_first_issue_online") or "", "date_first_issue_online"),
        from_volume=leading_int(row.get("num_first_vol_online") or None),
        from_issue=leading_int(row.get("num_first_issue_online") or None),
        to_year=_year(row.get("date_last_issue_online") or "", "date_last_issue_online"),
        to_volume=leading_int(row.get("num_last_vol_online") or None),
        to_issue=leading_int(row.get("num_last_issue_online") or None),
        from_delay=from_delay,
        to_delay=to_delay,
        title=(row.get("publication_title") or "").strip(),
    )
    return issns, entry


def _normalize_header(header: list[str]) -> list[str]:
    columns = []
    for name in header:
        columns.append(name.strip().lstrip("\ufeff").lower())
    return columns


def iter_rows(lines: Iterable[str]) -> Iterator[tuple[int, dict[str, str]]]:
    """Yield ``(line number, row)`` pairs keyed by the header's column names."""
    reader = csv.reader(lines, delimiter="\t", quoting=csv.QUOTE_NONE)
    header: list[str] | None = None
    for cells in reader:
        if not cells or not any(cell.strip() for cell in cells):
            continue
        if header is None:
            header = _normalize_header(cells)
            continue
        if len(cells) < len(header):
            cells = cells + [""] * (len(header) - len(cells))
        yield reader.line_num, dict(zip(header, cells))


def load_into(
    index: CoverageIndex,
    lines: Iterable[str],
    *,
    name: str = "",
    stats: ParseStats | None = None,
) -> ParseStats:
    """Parse KBART lines and add every entry to ``index``."""
    stats = stats or ParseStats()
    for line_num, row in iter_rows(lines):
        stats.rows += 1
        try:
            issns, entry = parse_row(row)
        except MalformedRowError as exc:
            stats.skipped += 1
            logger.warning("Skipping malformed KBART row %s:%d: %s", name, line_num, exc)
            continue
        if not issns:
            continue
        for issn in issns:
            index.add(issn, entry)
        stats.entries += 1
    return stats


def parse_kbart(lines: Iterable[str], *, source: str = "") -> CoverageIndex:
    index = CoverageIndex(source=source)
    load_into(index, lines, name=source)
    return index
