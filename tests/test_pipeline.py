from __future__ import annotations

import io
import json
import threading
from typing import Any

import pytest

from isil_tagger.exceptions import ConfigurationError, PipelineError, RecordDecodeError
from isil_tagger.filters import SourceFilter, Tagger
from isil_tagger.pipeline import BatchProcessor, build_line_processor, chain, iter_batches
from isil_tagger.record import Record


def lines_for(record_factory: Any, count: int) -> list[str]:
    return [
        json.dumps(record_factory(**{"finc.id": f"id-{i}", "finc.source_id": str(i % 3)})) + "\n"
        for i in range(count)
    ]


def source_tagger() -> Tagger:
    return Tagger({"DE-15": [SourceFilter(["0"])], "DE-14": [SourceFilter(["0", "1"])]})


def test_iter_batches() -> None:
    assert [len(b) for b in iter_batches(range(7), 3)] == [3, 3, 1]
    assert list(iter_batches([], 3)) == []


def test_chain_applies_in_order() -> None:
    seen: list[str] = []

    def step(name: str):
        def apply(record: Record) -> Record:
            seen.append(name)
            return record

        return apply

    chain(step("a"), step("b"))(Record(record_id="x", source_id="1"))
    assert seen == ["a", "b"]


def test_unknown_output_format() -> None:
    with pytest.raises(ConfigurationError):
        build_line_processor(lambda r: r, "xml")


def test_invalid_worker_settings() -> None:
    with pytest.raises(ConfigurationError):
        BatchProcessor(lambda line: line, workers=0)


@pytest.mark.parametrize(("workers", "batch_size"), [(1, 1), (4, 7), (8, 1000)])
def test_every_record_produces_one_output(record_factory: Any, workers: int, batch_size: int) -> None:
    lines = lines_for(record_factory, 100)
    sink = io.StringIO()
    processor = BatchProcessor(
        build_line_processor(source_tagger().tag, "full"), workers=workers, batch_size=batch_size
    )
    stats = processor.run(iter(lines), sink)
    out = [json.loads(line) for line in sink.getvalue().splitlines()]
    assert stats.records_in == 100
    assert stats.records_out == 100
    assert len(out) == 100
    assert sorted(doc["finc.id"] for doc in out) == sorted(f"id-{i}" for i in range(100))
    by_id = {doc["finc.id"]: doc for doc in out}
    assert by_id["id-0"]["x.labels"] == ["DE-14", "DE-15"]
    assert by_id["id-1"]["x.labels"] == ["DE-14"]
    assert by_id["id-2"]["x.labels"] == []
    assert by_id["id-0"]["rft.atitle"] == "An article"


def test_tsv_output(record_factory: Any) -> None:
    sink = io.StringIO()
    BatchProcessor(build_line_processor(source_tagger().tag, "tsv"), workers=2, batch_size=2).run(
        iter(lines_for(record_factory, 3)), sink
    )
    assert sorted(sink.getvalue().splitlines()) == ["id-0\tDE-14,DE-15", "id-1\tDE-14", "id-2\t"]


def test_blank_lines_are_skipped(record_factory: Any) -> None:
    lines = ["\n", *lines_for(record_factory, 2), "   \n"]
    sink = io.StringIO()
    stats = BatchProcessor(build_line_processor(source_tagger().tag, "tsv")).run(iter(lines), sink)
    assert stats.records_in == 4
    assert stats.records_out == 2


def test_runs_are_idempotent(record_factory: Any) -> None:
    lines = lines_for(record_factory, 50)
    outputs = []
    for _ in range(2):
        sink = io.StringIO()
        BatchProcessor(build_line_processor(source_tagger().tag, "tsv"), workers=4, batch_size=3).run(
            iter(lines), sink
        )
        outputs.append(sorted(sink.getvalue().splitlines()))
    assert outputs[0] == outputs[1]


def test_invalid_json_is_fatal_with_line_context(record_factory: Any) -> None:
    lines = [*lines_for(record_factory, 3), "{not json\n"]
    with pytest.raises(RecordDecodeError) as excinfo:
        BatchProcessor(build_line_processor(lambda r: r, "full"), batch_size=2).run(iter(lines), io.StringIO())
    assert excinfo.value.context["batch"] == 2
    assert excinfo.value.context["line"] == 4


def test_unexpected_error_is_wrapped(record_factory: Any) -> None:
    def explode(record: Record) -> Record:
        raise KeyError("boom")

    with pytest.raises(PipelineError) as excinfo:
        BatchProcessor(build_line_processor(explode), workers=2).run(
            iter(lines_for(record_factory, 2)), io.StringIO()
        )
    assert excinfo.value.context["line"] == 1


def test_in_flight_batches_are_bounded(record_factory: Any) -> None:
    active = 0
    peak = 0
    lock = threading.Lock()
    release = threading.Event()

    def slow(line: str) -> str:
        nonlocal active, peak
        with lock:
            active += 1
            peak = max(peak, active)
        release.wait(0.01)
        with lock:
            active -= 1
        return line.strip()

    processor = BatchProcessor(slow, workers=2, batch_size=1)
    stats = processor.run(iter(lines_for(record_factory, 40)), io.StringIO())
    assert stats.records_out == 40
    assert peak <= 2
    assert processor.max_in_flight == 4


class BrokenSink(io.StringIO):
    def write(self, s: str) -> int:
        raise OSError("disk full")


def test_sink_failure_is_pipeline_error(record_factory: Any) -> None:
    with pytest.raises(PipelineError) as excinfo:
        BatchProcessor(build_line_processor(lambda r: r), workers=2, batch_size=5).run(
            iter(lines_for(record_factory, 20)), BrokenSink()
        )
    assert "disk full" in str(excinfo.value)


class ClosedPipe:
    def write(self, s: str) -> int:
        raise BrokenPipeError("broken pipe")

    def flush(self) -> None:
        raise BrokenPipeError("broken pipe")


def test_closed_pipe_is_pipeline_error(record_factory: Any) -> None:
    with pytest.raises(PipelineError) as excinfo:
        BatchProcessor(build_line_processor(lambda r: r), batch_size=2).run(
            iter(lines_for(record_factory, 4)), ClosedPipe()
        )
    assert "broken pipe" in str(excinfo.value)
    assert isinstance(excinfo.value.__cause__, BrokenPipeError)


def test_input_failure_is_pipeline_error(record_factory: Any) -> None:
    def lines():
        yield from lines_for(record_factory, 3)
        raise OSError("truncated input")

    with pytest.raises(PipelineError) as excinfo:
        BatchProcessor(build_line_processor(lambda r: r), batch_size=2).run(lines(), io.StringIO())
    assert "truncated input" in str(excinfo.value)
