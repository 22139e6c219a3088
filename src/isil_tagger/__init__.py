"""Attach institution labels (ISILs) to bibliographic records."""

from isil_tagger.__version__ import __version__
from isil_tagger.dedupe import IndexDeduplicator, SourcePreference
from isil_tagger.exceptions import (
    ConfigurationError,
    DedupeQueryError,
    HoldingsFetchError,
    HoldingsParseError,
    PipelineError,
    RecordDecodeError,
    RuleStoreError,
    TaggerError,
)
from isil_tagger.filters import Tagger
from isil_tagger.holdings import CoverageIndex, Entry, HoldingsCache, covers
from isil_tagger.labeler import Labeler
from isil_tagger.pipeline import BatchProcessor, build_line_processor
from isil_tagger.record import Record
from isil_tagger.rules import AttachmentRule, RuleMatchCache, RuleMatcher, RuleStore

__all__ = [
    "__version__",
    "AttachmentRule",
    "BatchProcessor",
    "ConfigurationError",
    "CoverageIndex",
    "DedupeQueryError",
    "Entry",
    "HoldingsCache",
    "HoldingsFetchError",
    "HoldingsParseError",
    "IndexDeduplicator",
    "Labeler",
    "PipelineError",
    "Record",
    "RecordDecodeError",
    "RuleMatchCache",
    "RuleMatcher",
    "RuleStore",
    "RuleStoreError",
    "SourcePreference",
    "Tagger",
    "TaggerError",
    "build_line_processor",
    "covers",
]
