from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Mapping


@dataclass
class TaggerError(Exception):
    message: str
    code: str = "tagger_error"
    context: dict[str, Any] = field(default_factory=dict)

    def __init__(self, message: str, *, code: str | None = None, context: Mapping[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.code = code or self.code
        self.context = dict(context or {})

    def __str__(self) -> str:
        return self.message

    def as_log_fields(self) -> dict[str, Any]:
        return {
            "error_code": self.code,
            "error_message": self.message,
            "error_context": self.context,
        }


class ConfigurationError(TaggerError):
    code = "configuration_error"


class ConfigValidationError(ConfigurationError):
    code = "config_validation_error"


class YamlParseError(ConfigurationError):
    code = "yaml_parse_error"


class HoldingsFetchError(TaggerError):
    code = "holdings_fetch_error"


class HoldingsParseError(TaggerError):
    code = "holdings_parse_error"


class RuleStoreError(TaggerError):
    code = "rule_store_error"


class DedupeQueryError(TaggerError):
    code = "dedupe_query_error"


class RecordDecodeError(TaggerError):
    code = "record_decode_error"


class PipelineError(TaggerError):
    code = "pipeline_error"
