#!/usr/bin/env python3
"""Command line entry point for the ISIL tagger."""

from __future__ import annotations

import argparse
import json
import logging
import sys
from collections.abc import Callable, Mapping
from contextlib import ExitStack
from pathlib import Path
from typing import IO, Any

from isil_tagger.__version__ import __version__ as VERSION
from isil_tagger.dedupe import IndexDeduplicator, SourcePreference
from isil_tagger.exceptions import ConfigurationError, TaggerError
from isil_tagger.filters import Tagger
from isil_tagger.holdings import HoldingsCache
from isil_tagger.labeler import Labeler
from isil_tagger.logging_config import add_logging_args, configure_logging
from isil_tagger.pipeline import BatchProcessor, Transform, build_line_processor, chain
from isil_tagger.relabel import LabelUpdater
from isil_tagger.rules import RuleMatcher, RuleStore, import_rules, load_discovery
from isil_tagger.settings import TaggerSettings, load_settings
from isil_tagger.utils.io import iter_lines, open_text
from isil_tagger.utils.logging import log_event

logger = logging.getLogger(__name__)

COMMAND_TAGGER = "tagger"
COMMAND_TAG = "tag"
COMMAND_UPDATE_LABELS = "update-labels"
COMMAND_IMPORT_RULES = "import-rules"
COMMAND_DUMP_CONFIG = "dump-config"
COMMAND_CACHE = "cache"


def _add_settings_args(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--settings", type=Path, help="YAML settings file.")
    parser.add_argument("--cache-dir", type=Path, help="Holdings cache directory.")
    parser.add_argument(
        "--force-download",
        action="store_true",
        default=None,
        help="Re-download remote holdings files even if cached.",
    )


def _add_run_args(parser: argparse.ArgumentParser) -> None:
    _add_settings_args(parser)
    parser.add_argument("-w", "--workers", type=int, help="Number of worker threads.")
    parser.add_argument("-b", "--batch-size", type=int, help="Records per batch.")
    parser.add_argument(
        "--format",
        dest="output_format",
        choices=["full", "tsv"],
        help="Output full records or id<TAB>labels (default: full).",
    )
    parser.add_argument("-o", "--output", type=Path, help="Output file (default: stdout).")
    parser.add_argument("inputs", nargs="*", type=Path, help="Input files (default: stdin).")


def _parse_args(argv: list[str] | None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="isil-tagger", description="Attach institution labels (ISILs) to records."
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {VERSION}")
    add_logging_args(parser)
    sub = parser.add_subparsers(dest="command")

    tagger = sub.add_parser(COMMAND_TAGGER, help="Label records from a rule database.")
    tagger.add_argument("--db", type=Path, help="SQLite rule database.")
    _add_run_args(tagger)

    tag = sub.add_parser(COMMAND_TAG, help="Label records from a filter configuration.")
    tag.add_argument("-c", "--config", dest="filter_config", help="Filter config file or inline JSON.")
    tag.add_argument("--server", help="Index server for DOI based deduplication.")
    tag.add_argument("--prefs", help="Source ids by preference, most preferred first.")
    tag.add_argument(
        "--ignore-same-identifier",
        action="store_true",
        default=None,
        help="Ignore index documents with the record's own id when deduplicating.",
    )
    _add_run_args(tag)

    update = sub.add_parser(COMMAND_UPDATE_LABELS, help="Replace labels from a label file.")
    update.add_argument("-f", "--file", dest="label_file", type=Path, required=True)
    update.add_argument("--sep", default=",", help="Label file separator (default: ,).")
    _add_run_args(update)

    imp = sub.add_parser(COMMAND_IMPORT_RULES, help="Build a rule database from discovery JSON.")
    imp.add_argument("discovery", type=Path, help="AMSL discovery JSON file.")
    imp.add_argument("--db", type=Path, required=True, help="Database to write.")

    dump = sub.add_parser(COMMAND_DUMP_CONFIG, help="Decode and re-serialize a filter config.")
    dump.add_argument("-c", "--config", dest="filter_config", required=True)
    dump.add_argument("--as", dest="dump_format", choices=["json", "yaml"], default="json")

    cache = sub.add_parser(COMMAND_CACHE, help="Inspect or warm the holdings cache.")
    cache.add_argument("action", choices=["warm", "path"])
    cache.add_argument("refs", nargs="+", help="Holdings file URLs or paths.")
    _add_settings_args(cache)

    return parser.parse_args(argv)


def _compact(values: Mapping[str, Any]) -> dict[str, Any]:
    out: dict[str, Any] = {}
    for key, value in values.items():
        if isinstance(value, Mapping):
            value = _compact(value)
            if not value:
                continue
        if value is not None:
            out[key] = value
    return out


def resolve_settings(args: argparse.Namespace) -> TaggerSettings:
    overrides = {
        "db": getattr(args, "db", None),
        "filter_config": getattr(args, "filter_config", None),
        "cache_dir": getattr(args, "cache_dir", None),
        "workers": getattr(args, "workers", None),
        "batch_size": getattr(args, "batch_size", None),
        "output_format": getattr(args, "output_format", None),
        "force_download": getattr(args, "force_download", None),
        "dedupe": {
            "server": getattr(args, "server", None),
            "prefs": getattr(args, "prefs", None),
            "ignore_same_identifier": getattr(args, "ignore_same_identifier", None),
        },
    }
    return load_settings(getattr(args, "settings", None), overrides=_compact(overrides))


def build_holdings_cache(settings: TaggerSettings) -> HoldingsCache:
    return HoldingsCache(
        settings.cache_dir,
        retry=settings.retry,
        timeout=settings.timeout,
        force_download=settings.force_download,
    )


def _run_pipeline(args: argparse.Namespace, settings: TaggerSettings, transform: Transform) -> int:
    processor = BatchProcessor(
        build_line_processor(transform, settings.output_format),
        workers=settings.workers,
        batch_size=settings.batch_size,
    )
    with ExitStack() as stack:
        sink: IO[str] = sys.stdout
        if args.output:
            sink = stack.enter_context(open_text(args.output, "wt"))
        processor.run(iter_lines(args.inputs), sink)
    return 0


def run_tagger(args: argparse.Namespace, settings: TaggerSettings) -> int:
    if settings.db is None:
        raise ConfigurationError("no rule database given (use --db)")
    store = RuleStore(settings.db)
    try:
        labeler = Labeler(RuleMatcher(store), build_holdings_cache(settings))
        return _run_pipeline(args, settings, labeler.label)
    finally:
        store.close()


def run_tag(args: argparse.Namespace, settings: TaggerSettings) -> int:
    if not settings.filter_config:
        raise ConfigurationError("no filter configuration given (use -c)")
    tagger = Tagger.load(settings.filter_config, holdings=build_holdings_cache(settings))
    steps: list[Transform] = [tagger.tag]
    if settings.dedupe.server:
        deduplicator = IndexDeduplicator(
            settings.dedupe.server,
            SourcePreference.parse(settings.dedupe.prefs),
            ignore_same_identifier=settings.dedupe.ignore_same_identifier,
            retry=settings.retry,
            timeout=settings.timeout,
        )
        steps.append(deduplicator.apply)
    return _run_pipeline(args, settings, chain(*steps))


def run_update_labels(args: argparse.Namespace, settings: TaggerSettings) -> int:
    updater = LabelUpdater.from_file(args.label_file, sep=args.sep)
    return _run_pipeline(args, settings, updater.apply)


def run_import_rules(args: argparse.Namespace) -> int:
    count = import_rules(load_discovery(args.discovery), args.db)
    print(f"{count} rules written to {args.db}")
    return 0


def run_dump_config(args: argparse.Namespace) -> int:
    # Decoding never fetches; holdings predicates only keep their references.
    tagger = Tagger.load(args.filter_config, holdings=HoldingsCache())
    sys.stdout.write(tagger.dump(args.dump_format))
    return 0


def run_cache(args: argparse.Namespace, settings: TaggerSettings) -> int:
    cache = build_holdings_cache(settings)
    for ref in args.refs:
        if args.action == "warm":
            index = cache.resolve(ref)
            log_event(logger, "Warmed holdings file", ref=ref, serials=len(index))
            print(f"{cache.local_path(ref)}\t{ref}")
        else:
            print(cache.cache_path(ref))
    return 0


def main(argv: list[str] | None = None) -> int:
    args = _parse_args(argv)
    configure_logging(level=args.log_level, fmt=args.log_format)

    if not args.command:
        print("No command specified. Use --help to list commands.", file=sys.stderr)
        return 1

    handlers: dict[str, Callable[[argparse.Namespace, TaggerSettings], int]] = {
        COMMAND_TAGGER: run_tagger,
        COMMAND_TAG: run_tag,
        COMMAND_UPDATE_LABELS: run_update_labels,
        COMMAND_CACHE: run_cache,
    }
    try:
        if args.command == COMMAND_IMPORT_RULES:
            return run_import_rules(args)
        if args.command == COMMAND_DUMP_CONFIG:
            return run_dump_config(args)
        return handlers[args.command](args, resolve_settings(args))
    except TaggerError as exc:
        logger.error(
            "Run failed | %s", json.dumps(exc.as_log_fields(), sort_keys=True, default=str)
        )
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
