from __future__ import annotations

import json
import logging
from collections.abc import Mapping
from pathlib import Path
from typing import Any

import yaml

from isil_tagger.config_validator import parse_document, validate_config
from isil_tagger.exceptions import ConfigurationError, TaggerError
from isil_tagger.filters.base import Filter, FilterContext, decode_filter
from isil_tagger.record import Record

logger = logging.getLogger(__name__)

SCHEMA_NAME = "filterconfig"


class Tagger:
    """Institution to an ordered list of predicates.

    An institution's label is attached if any of its predicates accepts the
    record. Stricter rules are written as a single combined predicate
    (``holdings`` with collections, ``blacklist`` around an inner filter).
    """

    def __init__(self, filters: Mapping[str, list[Filter]]) -> None:
        self.filters: dict[str, list[Filter]] = {isil: list(fs) for isil, fs in filters.items()}

    @property
    def institutions(self) -> list[str]:
        return list(self.filters)

    def labels_for(self, record: Record) -> set[str]:
        return {
            isil for isil, filters in self.filters.items() if any(f.apply(record) for f in filters)
        }

    def tag(self, record: Record) -> Record:
        try:
            record.labels = self.labels_for(record)
        except TaggerError as exc:
            exc.context.setdefault("record_id", record.record_id)
            raise
        return record

    @classmethod
    def from_document(
        cls,
        document: Any,
        *,
        holdings: Any = None,
        base_dir: Path | None = None,
        source: str = "<config>",
    ) -> Tagger:
        validate_config(document, SCHEMA_NAME, config_path=source)
        ctx = FilterContext(holdings=holdings, base_dir=base_dir)
        filters: dict[str, list[Filter]] = {}
        for isil, declarations in document.items():
            decoded: list[Filter] = []
            for position, declaration in enumerate(declarations):
                try:
                    decoded.append(decode_filter(declaration, ctx))
                except ConfigurationError as exc:
                    exc.context.update({"institution": isil, "index": position, "source": source})
                    raise
            filters[str(isil)] = decoded
        return cls(filters)

    @classmethod
    def load(cls, config: str, *, holdings: Any = None) -> Tagger:
        """Load from a YAML/JSON file, or from an inline JSON document."""
        path = Path(config).expanduser()
        if path.is_file():
            text = path.read_text(encoding="utf-8")
            document = parse_document(text, source=str(path))
            return cls.from_document(
                document, holdings=holdings, base_dir=path.parent, source=str(path)
            )
        stripped = config.strip()
        if stripped.startswith("{"):
            return cls.from_document(
                parse_document(stripped, source="<inline>"), holdings=holdings, source="<inline>"
            )
        raise ConfigurationError(
            f"filter configuration not found: {config}", context={"config": config}
        )

    def to_document(self) -> dict[str, list[dict[str, Any]]]:
        return {isil: [f.to_config() for f in filters] for isil, filters in self.filters.items()}

    def dump(self, fmt: str = "json") -> str:
        document = self.to_document()
        if fmt == "yaml":
            return yaml.safe_dump(document, sort_keys=False, allow_unicode=True)
        return json.dumps(document, indent=2, ensure_ascii=False) + "\n"
