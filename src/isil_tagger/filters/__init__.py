"""Declarative per-institution filters, an alternative to the rule store."""

from isil_tagger.filters import predicates  # noqa: F401  (registers predicate kinds)
from isil_tagger.filters.base import Filter, FilterContext, decode_filter, registered_kinds
from isil_tagger.filters.predicates import (
    AnyFilter,
    BlacklistFilter,
    CollectionFilter,
    HoldingsFilter,
    ListFilter,
    PackageFilter,
    SourceFilter,
)
from isil_tagger.filters.tagger import Tagger

__all__ = [
    "AnyFilter",
    "BlacklistFilter",
    "CollectionFilter",
    "Filter",
    "FilterContext",
    "HoldingsFilter",
    "ListFilter",
    "PackageFilter",
    "SourceFilter",
    "Tagger",
    "decode_filter",
    "registered_kinds",
]
