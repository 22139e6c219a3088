"""Entitlement entries and the coverage decision.

An entry describes one coverage interval of a serial: a lower bound
``(from_year, from_volume, from_issue)``, an upper bound
``(to_year, to_volume, to_issue)`` and optional moving walls. Bounds are
compared lexicographically: the volume of a bound only matters when the
record falls into the bound's year, the issue only when it also falls into
the bound's volume. A level that is missing on either the entry or the record
is skipped, which falls back to the coarser comparison.

Moving walls are relative offsets resolved against "today":

* ``from_delay`` (e.g. ``-1 year``): records newer than ``today + from_delay``
  are not (yet) covered. KBART ``P1Y`` maps here.
* ``to_delay`` (e.g. ``-10 years``): records older than ``today + to_delay``
  are no longer covered. KBART ``R10Y`` maps here.
"""

from __future__ import annotations

import calendar
import datetime
import re
from collections.abc import Iterable
from dataclasses import dataclass

from isil_tagger.utils.text import leading_int

_DELAY_RE = re.compile(
    r"^\s*(?P<amount>[+-]?\s*\d+)\s*(?P<unit>y|yr|yrs|years?|m|mo|months?|d|days?)\s*$",
    re.IGNORECASE,
)
_EMBARGO_RE = re.compile(r"^\s*(?P<kind>[PR])(?P<amount>\d+)(?P<unit>[YMD])\s*$", re.IGNORECASE)
_DATE_RE = re.compile(r"^\s*(?P<year>\d{4})(?:-(?P<month>\d{1,2})(?:-(?P<day>\d{1,2}))?)?")
_ISSN_RE = re.compile(r"^(\d{4})-?(\d{3}[\dX])$")


def normalize_issn(value: str) -> str:
    """Uppercase and hyphenate an ISSN; other values are returned stripped."""
    text = (value or "").strip().upper()
    match = _ISSN_RE.match(text)
    if not match:
        return text
    return f"{match.group(1)}-{match.group(2)}"


@dataclass(frozen=True)
class Delay:
    """A signed calendar offset such as ``-1 year`` or ``-6 months``."""

    months: int = 0
    days: int = 0

    @classmethod
    def parse(cls, text: str | None) -> Delay | None:
        """Parse ``-1 year``, ``-6M``, ``-30 days`` and the like.

        Empty input means "no delay" and returns None; anything else that does
        not parse raises ValueError.
        """
        if text is None or not str(text).strip():
            return None
        match = _DELAY_RE.match(str(text))
        if not match:
            raise ValueError(f"cannot parse delay: {text!r}")
        amount = int(match.group("amount").replace(" ", ""))
        unit = match.group("unit").lower()[0]
        if unit == "y":
            return cls(months=12 * amount)
        if unit == "m":
            return cls(months=amount)
        return cls(days=amount)

    def apply(self, today: datetime.date) -> datetime.date:
        total = today.year * 12 + (today.month - 1) + self.months
        year, month = divmod(total, 12)
        month += 1
        day = min(today.day, calendar.monthrange(year, month)[1])
        return datetime.date(year, month, day) + datetime.timedelta(days=self.days)


def parse_embargo(text: str | None) -> tuple[Delay | None, Delay | None]:
    """Translate a KBART ``embargo_info`` value into ``(from_delay, to_delay)``.

    ``P<n><unit>`` embargoes the most recent n units; ``R<n><unit>`` restricts
    coverage to the most recent n units. Both can be given, separated by ``;``.
    """
    from_delay: Delay | None = None
    to_delay: Delay | None = None
    if text is None:
        return from_delay, to_delay
    for part in str(text).split(";"):
        if not part.strip():
            continue
        match = _EMBARGO_RE.match(part)
        if not match:
            raise ValueError(f"cannot parse embargo: {text!r}")
        delay = Delay.parse(f"-{match.group('amount')}{match.group('unit')}")
        if match.group("kind").upper() == "P":
            from_delay = delay
        else:
            to_delay = delay
    return from_delay, to_delay


@dataclass(frozen=True)
class RecordDate:
    year: int
    month: int | None = None
    day: int | None = None

    @classmethod
    def parse(cls, raw: str | None) -> RecordDate | None:
        if not raw:
            return None
        match = _DATE_RE.match(str(raw))
        if not match:
            return None
        month = int(match.group("month")) if match.group("month") else None
        day = int(match.group("day")) if match.group("day") and month else None
        if month is not None and not 1 <= month <= 12:
            month, day = None, None
        return cls(int(match.group("year")), month, day)

    def key(self) -> tuple[int, ...]:
        parts = [self.year]
        if self.month is not None:
            parts.append(self.month)
            if self.day is not None:
                parts.append(self.day)
        return tuple(parts)

    def is_after(self, boundary: datetime.date) -> bool:
        """Compare at the record's own precision."""
        key = self.key()
        return key > (boundary.year, boundary.month, boundary.day)[: len(key)]

    def is_before(self, boundary: datetime.date) -> bool:
        key = self.key()
        return key < (boundary.year, boundary.month, boundary.day)[: len(key)]


@dataclass(frozen=True)
class Entry:
    """One entitlement: a coverage interval with optional moving walls."""

    from_year: int | None = None
    from_volume: int | None = None
    from_issue: int | None = None
    to_year: int | None = None
    to_volume: int | None = None
    to_issue: int | None = None
    from_delay: Delay | None = None
    to_delay: Delay | None = None
    title: str = ""

    @property
    def unbounded(self) -> bool:
        return (
            self.from_year is None
            and self.to_year is None
            and self.from_delay is None
            and self.to_delay is None
        )

    def _after_start(self, date: RecordDate, volume: int | None, issue: int | None) -> bool:
        if self.from_year is None:
            return True
        if date.year != self.from_year:
            return date.year > self.from_year
        if self.from_volume is None or volume is None:
            return True
        if volume != self.from_volume:
            return volume > self.from_volume
        if self.from_issue is None or issue is None:
            return True
        return issue >= self.from_issue

    def _before_end(self, date: RecordDate, volume: int | None, issue: int | None) -> bool:
        if self.to_year is None:
            return True
        if date.year != self.to_year:
            return date.year < self.to_year
        if self.to_volume is None or volume is None:
            return True
        if volume != self.to_volume:
            return volume < self.to_volume
        if self.to_issue is None or issue is None:
            return True
        return issue <= self.to_issue

    def covers(
        self,
        raw_date: str | None,
        volume: str | int | None = None,
        issue: str | int | None = None,
        *,
        today: datetime.date | None = None,
    ) -> bool:
        date = RecordDate.parse(raw_date)
        if date is None:
            return self.unbounded
        vol = leading_int(volume)
        iss = leading_int(issue)
        if not self._after_start(date, vol, iss) or not self._before_end(date, vol, iss):
            return False
        if self.from_delay is not None or self.to_delay is not None:
            today = today or datetime.date.today()
            if self.from_delay is not None and date.is_after(self.from_delay.apply(today)):
                return False
            if self.to_delay is not None and date.is_before(self.to_delay.apply(today)):
                return False
        return True


class CoverageIndex:
    """Serial number to entitlement entries, as parsed from one holdings file."""

    def __init__(self, source: str = "") -> None:
        self.source = source
        self._entries: dict[str, list[Entry]] = {}

    def add(self, issn: str, entry: Entry) -> None:
        key = normalize_issn(issn)
        if key:
            self._entries.setdefault(key, []).append(entry)

    def lookup(self, issn: str) -> list[Entry]:
        return self._entries.get(normalize_issn(issn), [])

    @property
    def serial_numbers(self) -> list[str]:
        return list(self._entries)

    @property
    def entry_count(self) -> int:
        return sum(len(entries) for entries in self._entries.values())

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, issn: object) -> bool:
        return isinstance(issn, str) and normalize_issn(issn) in self._entries

    def covers(
        self,
        serial_numbers: Iterable[str],
        raw_date: str | None,
        volume: str | None = None,
        issue: str | None = None,
        *,
        today: datetime.date | None = None,
    ) -> bool:
        return covers(self, serial_numbers, raw_date, volume, issue, today=today)


def covers(
    index: CoverageIndex,
    serial_numbers: Iterable[str],
    raw_date: str | None,
    volume: str | None = None,
    issue: str | None = None,
    *,
    today: datetime.date | None = None,
) -> bool:
    """Return True as soon as any entry of any serial number covers the record."""
    today = today or datetime.date.today()
    for issn in serial_numbers:
        for entry in index.lookup(issn):
            if entry.covers(raw_date, volume, issue, today=today):
                return True
    return False
