"""Run settings for the tagger commands.

Values are resolved with the precedence CLI flag > ``ISIL_TAGGER_*``
environment variable > YAML settings file > default.
"""

from __future__ import annotations

import dataclasses
import os
from collections.abc import Mapping
from pathlib import Path
from typing import Any

from isil_tagger.config_validator import read_yaml
from isil_tagger.exceptions import ConfigurationError
from isil_tagger.network_utils import DEFAULT_CONNECT_TIMEOUT, DEFAULT_READ_TIMEOUT, RetryConfig
from isil_tagger.utils.paths import default_cache_dir

ENV_PREFIX = "ISIL_TAGGER_"
DEFAULT_BATCH_SIZE = 20000
DEFAULT_PREFS = "85 55 89 60 50 105 34 101 53 49 28 48 121"
OUTPUT_FORMATS = ("full", "tsv")


def _default_workers() -> int:
    return os.cpu_count() or 1


@dataclasses.dataclass
class DedupeSettings:
    server: str | None = None
    prefs: str = DEFAULT_PREFS
    ignore_same_identifier: bool = False


@dataclasses.dataclass
class TaggerSettings:
    db: Path | None = None
    filter_config: str | None = None
    cache_dir: Path = dataclasses.field(default_factory=default_cache_dir)
    workers: int = dataclasses.field(default_factory=_default_workers)
    batch_size: int = DEFAULT_BATCH_SIZE
    output_format: str = "full"
    force_download: bool = False
    retry: RetryConfig = dataclasses.field(default_factory=RetryConfig)
    timeout: tuple[float, float] = (DEFAULT_CONNECT_TIMEOUT, DEFAULT_READ_TIMEOUT)
    dedupe: DedupeSettings = dataclasses.field(default_factory=DedupeSettings)

    def __post_init__(self) -> None:
        if self.workers < 1:
            raise ConfigurationError("workers must be at least 1", context={"workers": self.workers})
        if self.batch_size < 1:
            raise ConfigurationError(
                "batch size must be at least 1", context={"batch_size": self.batch_size}
            )
        if self.output_format not in OUTPUT_FORMATS:
            raise ConfigurationError(
                f"unknown output format: {self.output_format}",
                context={"output_format": self.output_format, "allowed": list(OUTPUT_FORMATS)},
            )


def _parse_bool(value: str) -> bool:
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _parse_env_int(name: str, value: str) -> int:
    try:
        return int(value)
    except ValueError as exc:
        raise ConfigurationError(
            f"environment variable {ENV_PREFIX}{name} must be an integer",
            context={"variable": f"{ENV_PREFIX}{name}", "value": value},
        ) from exc


def settings_from_env(environ: Mapping[str, str] | None = None) -> dict[str, Any]:
    env = os.environ if environ is None else environ
    values: dict[str, Any] = {}
    for key in ("DB", "FILTER_CONFIG", "CACHE_DIR", "OUTPUT_FORMAT"):
        if env.get(ENV_PREFIX + key):
            values[key.lower()] = env[ENV_PREFIX + key]
    for key in ("WORKERS", "BATCH_SIZE"):
        if env.get(ENV_PREFIX + key):
            values[key.lower()] = _parse_env_int(key, env[ENV_PREFIX + key])
    if env.get(ENV_PREFIX + "FORCE_DOWNLOAD"):
        values["force_download"] = _parse_bool(env[ENV_PREFIX + "FORCE_DOWNLOAD"])
    dedupe: dict[str, Any] = {}
    if env.get(ENV_PREFIX + "SERVER"):
        dedupe["server"] = env[ENV_PREFIX + "SERVER"]
    if env.get(ENV_PREFIX + "PREFS"):
        dedupe["prefs"] = env[ENV_PREFIX + "PREFS"]
    if dedupe:
        values["dedupe"] = dedupe
    return values


def _merge(base: dict[str, Any], override: Mapping[str, Any]) -> dict[str, Any]:
    merged = dict(base)
    for key, value in override.items():
        if value is None:
            continue
        if isinstance(value, Mapping) and isinstance(merged.get(key), Mapping):
            merged[key] = _merge(dict(merged[key]), value)
        else:
            merged[key] = value
    return merged


def build_settings(values: Mapping[str, Any]) -> TaggerSettings:
    kwargs: dict[str, Any] = {}
    for key in ("workers", "batch_size", "output_format", "force_download", "filter_config"):
        if key in values:
            kwargs[key] = values[key]
    if values.get("db"):
        kwargs["db"] = Path(values["db"]).expanduser()
    if values.get("cache_dir"):
        kwargs["cache_dir"] = Path(values["cache_dir"]).expanduser()
    if "retry" in values:
        kwargs["retry"] = RetryConfig(**values["retry"])
    if "timeout" in values:
        timeout = values["timeout"]
        kwargs["timeout"] = (
            float(timeout.get("connect", DEFAULT_CONNECT_TIMEOUT)),
            float(timeout.get("read", DEFAULT_READ_TIMEOUT)),
        )
    if "dedupe" in values:
        kwargs["dedupe"] = DedupeSettings(**values["dedupe"])
    return TaggerSettings(**kwargs)


def load_settings(
    settings_path: Path | None = None,
    *,
    overrides: Mapping[str, Any] | None = None,
    environ: Mapping[str, str] | None = None,
) -> TaggerSettings:
    """Resolve run settings from file, environment and explicit overrides."""
    values: dict[str, Any] = {}
    if settings_path is not None:
        try:
            values = read_yaml(settings_path, schema_name="settings")
        except OSError as exc:
            raise ConfigurationError(
                f"cannot read settings file {settings_path}: {exc}",
                context={"path": str(settings_path)},
            ) from exc
    values = _merge(values, settings_from_env(environ))
    values = _merge(values, overrides or {})
    return build_settings(values)
