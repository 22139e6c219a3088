"""Holdings files: parsing, caching and coverage evaluation."""

from isil_tagger.holdings.cache import HoldingsCache
from isil_tagger.holdings.coverage import CoverageIndex, Delay, Entry, covers, parse_embargo
from isil_tagger.holdings.kbart import parse_kbart

__all__ = [
    "CoverageIndex",
    "Delay",
    "Entry",
    "HoldingsCache",
    "covers",
    "parse_embargo",
    "parse_kbart",
]
