"""Concurrent batch pipeline.

The calling thread reads raw lines and cuts them into batches, a thread pool
turns every batch into serialized output lines, and a single writer thread
drains a bounded queue into the sink. At most ``2 * workers`` batches are in
flight and the output queue is bounded, so a slow sink stalls the workers and
a saturated pool stalls the reader. Output order follows batch completion,
not input order.
"""

from __future__ import annotations

import itertools
import logging
import queue
import threading
import time
from collections.abc import Callable, Iterable, Iterator, Sequence
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from dataclasses import dataclass
from typing import IO

from isil_tagger.exceptions import ConfigurationError, PipelineError, TaggerError
from isil_tagger.logging_config import LogContext
from isil_tagger.record import Record
from isil_tagger.settings import DEFAULT_BATCH_SIZE
from isil_tagger.utils.logging import log_event

logger = logging.getLogger(__name__)

Transform = Callable[[Record], Record]
LineProcessor = Callable[[str], "str | None"]

SERIALIZERS: dict[str, Callable[[Record], str]] = {
    "full": Record.to_json,
    "tsv": Record.to_tsv,
}

_STOP = object()


def chain(*steps: Transform) -> Transform:
    """Compose record transforms left to right."""

    def apply(record: Record) -> Record:
        for step in steps:
            record = step(record)
        return record

    return apply


def build_line_processor(transform: Transform, output_format: str = "full") -> LineProcessor:
    """Decode a JSON line, transform the record and serialize it.

    Blank lines yield ``None`` and produce no output.
    """
    try:
        serialize = SERIALIZERS[output_format]
    except KeyError as exc:
        raise ConfigurationError(
            f"unknown output format: {output_format}",
            context={"output_format": output_format, "allowed": sorted(SERIALIZERS)},
        ) from exc

    def process(line: str) -> str | None:
        if not line.strip():
            return None
        return serialize(transform(Record.from_json(line)))

    return process


@dataclass
class PipelineStats:
    batches: int = 0
    records_in: int = 0
    records_out: int = 0
    elapsed_seconds: float = 0.0

    def as_dict(self) -> dict[str, float | int]:
        return {
            "batches": self.batches,
            "records_in": self.records_in,
            "records_out": self.records_out,
            "elapsed_seconds": round(self.elapsed_seconds, 3),
        }


def iter_batches(lines: Iterable[str], size: int) -> Iterator[list[str]]:
    it = iter(lines)
    while True:
        batch = list(itertools.islice(it, size))
        if not batch:
            return
        yield batch


class BatchProcessor:
    def __init__(
        self,
        process_line: LineProcessor,
        *,
        workers: int = 1,
        batch_size: int = DEFAULT_BATCH_SIZE,
        queue_size: int | None = None,
        log_every: int = 10,
    ) -> None:
        if workers < 1 or batch_size < 1:
            raise ConfigurationError(
                "workers and batch size must be at least 1",
                context={"workers": workers, "batch_size": batch_size},
            )
        self.process_line = process_line
        self.workers = workers
        self.batch_size = batch_size
        self.max_in_flight = 2 * workers
        self.queue_size = queue_size or self.max_in_flight
        self.log_every = log_every

    def _process_batch(self, number: int, offset: int, lines: Sequence[str], out: queue.Queue) -> int:
        produced: list[str] = []
        with LogContext(batch=number):
            for index, line in enumerate(lines):
                try:
                    result = self.process_line(line)
                except TaggerError as exc:
                    exc.context.setdefault("batch", number)
                    exc.context.setdefault("line", offset + index + 1)
                    raise
                except Exception as exc:
                    raise PipelineError(
                        f"unexpected failure in batch {number}: {exc!r}",
                        context={"batch": number, "line": offset + index + 1},
                    ) from exc
                if result is not None:
                    produced.append(result)
        out.put(produced)
        return len(produced)

    def run(self, lines: Iterable[str], sink: IO[str]) -> PipelineStats:
        stats = PipelineStats()
        started = time.monotonic()
        out: queue.Queue = queue.Queue(maxsize=self.queue_size)
        writer_errors: list[BaseException] = []

        def drain() -> None:
            while True:
                item = out.get()
                if item is _STOP:
                    return
                if writer_errors or not item:
                    continue
                try:
                    sink.write("\n".join(item) + "\n")
                except (OSError, ValueError) as exc:
                    # Keep draining so blocked workers can finish.
                    writer_errors.append(exc)

        writer = threading.Thread(target=drain, name="isil-tagger-writer", daemon=True)
        writer.start()

        executor = ThreadPoolExecutor(max_workers=self.workers, thread_name_prefix="isil-tagger")
        futures: set[Future[int]] = set()
        batches = iter_batches(lines, self.batch_size)
        offset = 0
        completed = 0

        def submit_next() -> bool:
            nonlocal offset
            if writer_errors:
                return False
            try:
                batch = next(batches)
            except StopIteration:
                return False
            except (OSError, EOFError, ValueError) as exc:
                raise PipelineError(
                    f"reading input failed: {exc}", context={"batch_start_line": offset + 1}
                ) from exc
            stats.batches += 1
            stats.records_in += len(batch)
            futures.add(executor.submit(self._process_batch, stats.batches, offset, batch, out))
            offset += len(batch)
            return True

        try:
            while len(futures) < self.max_in_flight and submit_next():
                continue
            while futures:
                done, _ = wait(futures, return_when=FIRST_COMPLETED)
                for fut in done:
                    futures.discard(fut)
                    stats.records_out += fut.result()
                    completed += 1
                    if self.log_every and completed % self.log_every == 0:
                        log_event(logger, "Pipeline progress", **stats.as_dict())
                while len(futures) < self.max_in_flight and submit_next():
                    continue
        finally:
            executor.shutdown(wait=True, cancel_futures=True)
            out.put(_STOP)
            writer.join()
            try:
                sink.flush()
            except (OSError, ValueError) as exc:
                writer_errors.append(exc)
            stats.elapsed_seconds = time.monotonic() - started

        if writer_errors:
            raise PipelineError(
                f"writing output failed: {writer_errors[0]}", context=stats.as_dict()
            ) from writer_errors[0]
        log_event(logger, "Pipeline finished", workers=self.workers, **stats.as_dict())
        return stats
