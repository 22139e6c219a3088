"""The subset of an intermediate schema record the tagger reads and writes.

Records travel as newline delimited JSON. Only the fields below are decoded;
everything else is kept in ``raw`` and written back untouched, so the tagger
never loses information when it emits full records.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any

from isil_tagger.exceptions import RecordDecodeError
from isil_tagger.utils.text import as_string_list, safe_text

ID_KEY = "finc.id"
RECORD_ID_KEY = "finc.record_id"
SOURCE_ID_KEY = "finc.source_id"
COLLECTIONS_KEY = "finc.mega_collection"
ISSN_KEY = "rft.issn"
EISSN_KEY = "rft.eissn"
DATE_KEY = "rft.date"
VOLUME_KEY = "rft.volume"
ISSUE_KEY = "rft.issue"
DOI_KEY = "doi"
PACKAGES_KEY = "x.packages"
LABELS_KEY = "x.labels"


@dataclass
class Record:
    record_id: str
    source_id: str
    collections: list[str] = field(default_factory=list)
    issn: list[str] = field(default_factory=list)
    eissn: list[str] = field(default_factory=list)
    raw_date: str = ""
    volume: str = ""
    issue: str = ""
    doi: str = ""
    packages: list[str] = field(default_factory=list)
    labels: set[str] = field(default_factory=set)
    raw: dict[str, Any] = field(default_factory=dict, repr=False)

    @property
    def serial_numbers(self) -> list[str]:
        """ISSN followed by EISSN, duplicates removed, order kept."""
        seen: dict[str, None] = {}
        for value in self.issn + self.eissn:
            seen.setdefault(value, None)
        return list(seen)

    @classmethod
    def from_dict(cls, doc: dict[str, Any]) -> Record:
        return cls(
            record_id=safe_text(doc.get(ID_KEY)),
            source_id=safe_text(doc.get(SOURCE_ID_KEY)).strip(),
            collections=as_string_list(doc.get(COLLECTIONS_KEY)),
            issn=as_string_list(doc.get(ISSN_KEY)),
            eissn=as_string_list(doc.get(EISSN_KEY)),
            raw_date=safe_text(doc.get(DATE_KEY)).strip(),
            volume=safe_text(doc.get(VOLUME_KEY)).strip(),
            issue=safe_text(doc.get(ISSUE_KEY)).strip(),
            doi=safe_text(doc.get(DOI_KEY)).strip(),
            packages=as_string_list(doc.get(PACKAGES_KEY)),
            labels=set(as_string_list(doc.get(LABELS_KEY))),
            raw=doc,
        )

    @classmethod
    def from_json(cls, line: str | bytes) -> Record:
        try:
            doc = json.loads(line)
        except json.JSONDecodeError as exc:
            raise RecordDecodeError(f"invalid record JSON: {exc}") from exc
        if not isinstance(doc, dict):
            raise RecordDecodeError(
                "record must be a JSON object", context={"type": type(doc).__name__}
            )
        return cls.from_dict(doc)

    def sorted_labels(self) -> list[str]:
        return sorted(self.labels)

    def to_dict(self) -> dict[str, Any]:
        doc = dict(self.raw)
        doc[LABELS_KEY] = self.sorted_labels()
        return doc

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), ensure_ascii=False, separators=(",", ":"))

    def to_tsv(self) -> str:
        return f"{self.record_id}\t{','.join(self.sorted_labels())}"
