"""Replace record labels from a prepared label file.

The label file holds one record per line, ``<record id><sep><ISIL><sep>...``.
The two column output of ``tag``/``tagger --format tsv`` (id, tab, comma
separated ISILs) is accepted as well, so a run's compact output can be edited
and applied back onto the full records.

Ids are matched against ``finc.id`` first, then against the source system's
``finc.record_id``.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from pathlib import Path

from isil_tagger.exceptions import ConfigurationError
from isil_tagger.record import RECORD_ID_KEY, Record
from isil_tagger.utils.io import open_text
from isil_tagger.utils.logging import log_event
from isil_tagger.utils.text import safe_text

logger = logging.getLogger(__name__)


def parse_label_line(line: str, sep: str = ",") -> tuple[str, list[str]]:
    line = line.rstrip("\r\n")
    if "\t" in line and sep != "\t":
        record_id, _, rest = line.partition("\t")
        parts = rest.split(",")
    else:
        record_id, *parts = line.split(sep)
    labels = [p.strip() for p in parts if p.strip()]
    return record_id.strip(), labels


class LabelUpdater:
    def __init__(self, labels: dict[str, list[str]]) -> None:
        self.labels = labels

    @classmethod
    def from_lines(cls, lines: Iterable[str], *, sep: str = ",", source: str = "<labels>") -> LabelUpdater:
        labels: dict[str, list[str]] = {}
        for lineno, line in enumerate(lines, start=1):
            if not line.strip() or line.startswith("#"):
                continue
            record_id, isils = parse_label_line(line, sep)
            if not record_id:
                raise ConfigurationError(
                    "label line without record id", context={"source": source, "line": lineno}
                )
            labels[record_id] = isils
        log_event(logger, "Loaded label updates", source=source, records=len(labels))
        return cls(labels)

    @classmethod
    def from_file(cls, path: Path, *, sep: str = ",") -> LabelUpdater:
        try:
            with open_text(path, "rt") as f:
                return cls.from_lines(f, sep=sep, source=str(path))
        except OSError as exc:
            raise ConfigurationError(
                f"cannot read label file {path}: {exc}", context={"path": str(path)}
            ) from exc

    def apply(self, record: Record) -> Record:
        """Replace labels of listed records; others pass through unchanged."""
        isils = self.labels.get(record.record_id)
        if isils is None:
            source_record_id = safe_text(record.raw.get(RECORD_ID_KEY))
            isils = self.labels.get(source_record_id) if source_record_id else None
        if isils is None:
            return record
        record.labels = set(isils)
        return record
