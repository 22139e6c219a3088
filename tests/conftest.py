"""
Shared pytest fixtures for ISIL tagger tests.

Provides common helpers and fixtures for:
- Intermediate schema records
- KBART holdings files
- Rule databases
- HTTP sessions and responses
"""

from __future__ import annotations

import datetime
import json
import sys
from collections.abc import Callable, Generator
from pathlib import Path
from types import SimpleNamespace
from typing import Any

import pytest

SRC_ROOT = Path(__file__).resolve().parents[1] / "src"
if SRC_ROOT.is_dir():
    sys.path.insert(0, str(SRC_ROOT))


# Fixed reference date for moving wall computations.
TODAY = datetime.date(2024, 6, 15)


# =============================================================================
# Record fixtures
# =============================================================================


def make_record_dict(**overrides: Any) -> dict[str, Any]:
    """An intermediate schema record, the end-to-end example by default."""
    doc: dict[str, Any] = {
        "finc.id": "ai-49-abc",
        "finc.source_id": "49",
        "finc.mega_collection": ["ColA"],
        "rft.issn": ["1234-5678"],
        "rft.date": "2004-06-01",
        "rft.volume": "3",
        "rft.issue": "4",
        "rft.atitle": "An article",
    }
    doc.update(overrides)
    return doc


def create_sample_jsonl(path: Path, records: list[dict[str, Any]]) -> None:
    """Create a JSONL file with sample records."""
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("w", encoding="utf-8") as f:
        for record in records:
            f.write(json.dumps(record, ensure_ascii=False) + "\n")


@pytest.fixture
def today() -> datetime.date:
    return TODAY


@pytest.fixture
def record_factory() -> Callable[..., dict[str, Any]]:
    return make_record_dict


@pytest.fixture
def jsonl_writer() -> Callable[[Path, list[dict[str, Any]]], None]:
    return create_sample_jsonl


# =============================================================================
# KBART fixtures
# =============================================================================

KBART_HEADER = (
    "publication_title",
    "print_identifier",
    "online_identifier",
    "date_first_issue_online",
    "num_first_vol_online",
    "num_first_issue_online",
    "date_last_issue_online",
    "num_last_vol_online",
    "num_last_issue_online",
    "title_url",
    "first_author",
    "title_id",
    "embargo_info",
    "coverage_depth",
    "notes",
    "publisher_name",
)


def kbart_row(**values: str) -> dict[str, str]:
    row = {column: "" for column in KBART_HEADER}
    row.update(values)
    return row


def kbart_text(rows: list[dict[str, str]]) -> str:
    """Render KBART rows as a tab separated document with header."""
    lines = ["\t".join(KBART_HEADER)]
    for row in rows:
        lines.append("\t".join(row.get(column, "") for column in KBART_HEADER))
    return "\n".join(lines) + "\n"


@pytest.fixture
def kbart() -> SimpleNamespace:
    """KBART helpers: ``kbart.row(**columns)`` and ``kbart.text(rows)``."""
    return SimpleNamespace(row=kbart_row, text=kbart_text, header=KBART_HEADER)


@pytest.fixture
def sample_kbart() -> str:
    return kbart_text(
        [
            kbart_row(
                publication_title="Journal of Tests",
                print_identifier="1234-5678",
                online_identifier="8765-4321",
                date_first_issue_online="2000",
                date_last_issue_online="2010",
            ),
            kbart_row(
                publication_title="Embargoed Letters",
                print_identifier="2222-3333",
                date_first_issue_online="1990-01-01",
                embargo_info="P1Y",
            ),
        ]
    )


@pytest.fixture
def kbart_file(tmp_path: Path, sample_kbart: str) -> Path:
    path = tmp_path / "holdings.tsv"
    path.write_text(sample_kbart, encoding="utf-8")
    return path


# =============================================================================
# Rule database fixtures
# =============================================================================


def discovery_entry(**overrides: Any) -> dict[str, Any]:
    entry: dict[str, Any] = {
        "ISIL": "DE-15",
        "sourceID": "49",
        "technicalCollectionID": "sid-49-col-a",
        "megaCollection": "ColA",
        "linkToHoldingsFile": "",
        "evaluateHoldingsFileForLibrary": "no",
        "contentFileURI": "",
        "externalLinkToContentFile": "",
    }
    entry.update(overrides)
    return entry


@pytest.fixture
def rule_entry() -> Callable[..., dict[str, Any]]:
    return discovery_entry


@pytest.fixture
def rule_db(tmp_path: Path) -> Callable[[list[dict[str, Any]]], Path]:
    """Build a rule database from discovery entries and return its path."""
    from isil_tagger.rules import import_rules

    def _build(entries: list[dict[str, Any]]) -> Path:
        path = tmp_path / "amsl.db"
        import_rules(entries, path)
        return path

    return _build


# =============================================================================
# HTTP fixtures
# =============================================================================


class FakeResponse:
    """Minimal stand-in for a streamed requests response."""

    def __init__(
        self,
        content: bytes = b"",
        status_code: int = 200,
        payload: Any = None,
        url: str = "https://example.com/test",
    ) -> None:
        self.content = content
        self.status_code = status_code
        self.payload = payload
        self.url = url
        self.closed = False

    def __enter__(self) -> FakeResponse:
        return self

    def __exit__(self, *args: Any) -> None:
        self.closed = True

    def iter_content(self, chunk_size: int = 1024) -> Generator[bytes, None, None]:
        for start in range(0, len(self.content), chunk_size):
            yield self.content[start : start + chunk_size]

    def raise_for_status(self) -> None:
        import requests

        if self.status_code >= 400:
            raise requests.exceptions.HTTPError(f"HTTP {self.status_code}", response=self)

    def json(self) -> Any:
        if self.payload is None:
            return json.loads(self.content.decode("utf-8"))
        return self.payload


class FakeSession:
    """Records calls and answers from a list of responses or exceptions."""

    def __init__(self, responses: list[Any] | Callable[..., Any]) -> None:
        self.responses = responses
        self.calls: list[dict[str, Any]] = []

    def get(self, url: str, **kwargs: Any) -> Any:
        self.calls.append({"url": url, **kwargs})
        if callable(self.responses):
            result = self.responses(url, **kwargs)
        else:
            result = self.responses.pop(0)
        if isinstance(result, BaseException):
            raise result
        return result


@pytest.fixture
def fake_response() -> type[FakeResponse]:
    return FakeResponse


@pytest.fixture
def fake_session() -> Callable[[Any], FakeSession]:
    return FakeSession


@pytest.fixture
def no_sleep(monkeypatch: pytest.MonkeyPatch) -> list[float]:
    """Disable retry backoff sleeps and record the requested durations."""
    sleeps: list[float] = []
    monkeypatch.setattr("isil_tagger.network_utils.time.sleep", sleeps.append)
    return sleeps


@pytest.fixture(autouse=True)
def isolated_cache_dir(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Keep the default holdings cache out of the user's home directory."""
    cache_dir = tmp_path / "cache"
    monkeypatch.setenv("ISIL_TAGGER_CACHE_DIR", str(cache_dir))
    return cache_dir


@pytest.fixture(autouse=True)
def reset_log_context() -> Generator[None, None, None]:
    from isil_tagger.logging_config import clear_log_context

    clear_log_context()
    yield
    clear_log_context()
