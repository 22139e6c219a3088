from __future__ import annotations

import logging
from collections.abc import Mapping
from pathlib import Path
from typing import Any

from isil_tagger.exceptions import ConfigurationError
from isil_tagger.filters.base import Filter, FilterContext, decode_filter, register
from isil_tagger.holdings.coverage import normalize_issn
from isil_tagger.record import Record

logger = logging.getLogger(__name__)

IDENTIFIER_FIELDS = ("id", "doi", "issn")


def _values(params: Mapping[str, Any], kind: str, key: str = "values") -> list[Any]:
    values = params.get(key)
    if not isinstance(values, list):
        raise ConfigurationError(
            f"filter {kind} requires a list of {key}", context={"kind": kind, "params": dict(params)}
        )
    return list(values)


def _normalize(field: str, value: Any) -> str:
    text = str(value).strip()
    if field == "doi":
        return text.lower()
    if field == "issn":
        return normalize_issn(text)
    return text


def record_identifiers(record: Record, field: str) -> list[str]:
    if field == "id":
        return [record.record_id] if record.record_id else []
    if field == "doi":
        return [record.doi.lower()] if record.doi else []
    return [normalize_issn(issn) for issn in record.serial_numbers]


def _identifier_field(params: Mapping[str, Any], kind: str) -> str:
    field = params.get("field")
    if field not in IDENTIFIER_FIELDS:
        raise ConfigurationError(
            f"filter {kind} requires field to be one of {', '.join(IDENTIFIER_FIELDS)}",
            context={"kind": kind, "field": field},
        )
    return field


def _read_list_file(ref: str, ctx: FilterContext, kind: str) -> list[str]:
    path = Path(ref).expanduser()
    if not path.is_absolute() and ctx.base_dir is not None:
        path = Path(ctx.base_dir) / path
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as exc:
        raise ConfigurationError(
            f"cannot read list file for filter {kind}: {path}",
            context={"kind": kind, "file": str(path), "error": str(exc)},
        ) from exc
    values = [line.strip() for line in text.splitlines()]
    return [value for value in values if value and not value.startswith("#")]


def _identifier_set(params: Mapping[str, Any], ctx: FilterContext, kind: str, field: str) -> frozenset[str]:
    if "values" not in params and "file" not in params:
        raise ConfigurationError(
            f"filter {kind} requires values or file", context={"kind": kind}
        )
    values: list[Any] = _values(params, kind) if "values" in params else []
    if "file" in params:
        values.extend(_read_list_file(str(params["file"]), ctx, kind))
    return frozenset(_normalize(field, value) for value in values if str(value).strip())


def _list_params(field: str, declared_values: list[Any] | None, file: str | None) -> dict[str, Any]:
    params: dict[str, Any] = {"field": field}
    if declared_values is not None:
        params["values"] = list(declared_values)
    if file is not None:
        params["file"] = file
    return params


@register
class AnyFilter(Filter):
    kind = "any"

    def apply(self, record: Record) -> bool:
        return True

    def params(self) -> dict[str, Any]:
        return {}

    @classmethod
    def from_params(cls, params: Mapping[str, Any], ctx: FilterContext) -> AnyFilter:
        if params:
            raise ConfigurationError("filter any takes no parameters", context={"params": dict(params)})
        return cls()


class _ValuesFilter(Filter):
    """Base for predicates that compare one record attribute to a value set."""

    def __init__(self, values: list[Any]) -> None:
        self.declared = list(values)
        self.values = frozenset(str(value).strip() for value in values)

    def params(self) -> dict[str, Any]:
        return {"values": list(self.declared)}

    @classmethod
    def from_params(cls, params: Mapping[str, Any], ctx: FilterContext) -> Filter:
        extra = set(params) - {"values"}
        if extra:
            raise ConfigurationError(
                f"unexpected parameters for filter {cls.kind}: {sorted(extra)}",
                context={"kind": cls.kind},
            )
        return cls(_values(params, cls.kind))


@register
class SourceFilter(_ValuesFilter):
    kind = "source"

    def apply(self, record: Record) -> bool:
        return record.source_id in self.values


@register
class CollectionFilter(_ValuesFilter):
    kind = "collection"

    def apply(self, record: Record) -> bool:
        return any(name in self.values for name in record.collections)


@register
class PackageFilter(_ValuesFilter):
    kind = "package"

    def apply(self, record: Record) -> bool:
        return any(name in self.values for name in record.packages)


@register
class ListFilter(Filter):
    """Explicit list of record ids, DOIs or ISSNs."""

    kind = "list"

    def __init__(
        self,
        field: str,
        identifiers: frozenset[str],
        *,
        declared_values: list[Any] | None = None,
        file: str | None = None,
    ) -> None:
        self.field = field
        self.identifiers = identifiers
        self.declared_values = declared_values
        self.file = file

    def apply(self, record: Record) -> bool:
        return any(value in self.identifiers for value in record_identifiers(record, self.field))

    def params(self) -> dict[str, Any]:
        return _list_params(self.field, self.declared_values, self.file)

    @classmethod
    def from_params(cls, params: Mapping[str, Any], ctx: FilterContext) -> ListFilter:
        field = _identifier_field(params, cls.kind)
        return cls(
            field,
            _identifier_set(params, ctx, cls.kind, field),
            declared_values=list(params["values"]) if "values" in params else None,
            file=str(params["file"]) if "file" in params else None,
        )


@register
class HoldingsFilter(Filter):
    """Collection membership combined with coverage by a holdings file."""

    kind = "holdings"

    def __init__(self, files: list[str], holdings: Any, collections: list[Any] | None = None) -> None:
        self.files = list(files)
        self.holdings = holdings
        self.collections = list(collections) if collections is not None else None
        self._collection_set = (
            frozenset(str(name).strip() for name in collections) if collections is not None else None
        )

    def apply(self, record: Record) -> bool:
        if self._collection_set is not None and not any(
            name in self._collection_set for name in record.collections
        ):
            return False
        return any(self.holdings.covers(ref, record) for ref in self.files)

    def params(self) -> dict[str, Any]:
        params: dict[str, Any] = {"files": list(self.files)}
        if self.collections is not None:
            params["collections"] = list(self.collections)
        return params

    @classmethod
    def from_params(cls, params: Mapping[str, Any], ctx: FilterContext) -> HoldingsFilter:
        if ctx.holdings is None:
            raise ConfigurationError("filter holdings requires a holdings cache")
        files = _values(params, cls.kind, "files")
        if not files:
            raise ConfigurationError("filter holdings requires at least one file")
        collections = _values(params, cls.kind, "collections") if "collections" in params else None
        return cls([str(ref) for ref in files], ctx.holdings, collections)


@register
class BlacklistFilter(Filter):
    """Pass records accepted by the inner filter unless their identifier is listed."""

    kind = "blacklist"

    def __init__(
        self,
        field: str,
        identifiers: frozenset[str],
        inner: Filter,
        *,
        declared_values: list[Any] | None = None,
        file: str | None = None,
    ) -> None:
        self.field = field
        self.identifiers = identifiers
        self.inner = inner
        self.declared_values = declared_values
        self.file = file

    def apply(self, record: Record) -> bool:
        if any(value in self.identifiers for value in record_identifiers(record, self.field)):
            return False
        return self.inner.apply(record)

    def params(self) -> dict[str, Any]:
        params = _list_params(self.field, self.declared_values, self.file)
        params["filter"] = self.inner.to_config()
        return params

    @classmethod
    def from_params(cls, params: Mapping[str, Any], ctx: FilterContext) -> BlacklistFilter:
        field = _identifier_field(params, cls.kind)
        if "filter" not in params:
            raise ConfigurationError("filter blacklist requires an inner filter")
        return cls(
            field,
            _identifier_set(params, ctx, cls.kind, field),
            decode_filter(params["filter"], ctx),
            declared_values=list(params["values"]) if "values" in params else None,
            file=str(params["file"]) if "file" in params else None,
        )
