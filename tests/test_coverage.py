from __future__ import annotations

import datetime

import pytest

from isil_tagger.holdings.coverage import (
    CoverageIndex,
    Delay,
    Entry,
    RecordDate,
    covers,
    normalize_issn,
    parse_embargo,
)


class TestDelay:
    @pytest.mark.parametrize(
        ("text", "expected"),
        [
            ("-1 year", Delay(months=-12)),
            ("-2 years", Delay(months=-24)),
            ("-1Y", Delay(months=-12)),
            ("-6M", Delay(months=-6)),
            ("-6 months", Delay(months=-6)),
            ("-30 days", Delay(days=-30)),
            ("-30D", Delay(days=-30)),
        ],
    )
    def test_parse(self, text: str, expected: Delay) -> None:
        assert Delay.parse(text) == expected

    def test_empty_is_no_delay(self) -> None:
        assert Delay.parse("") is None
        assert Delay.parse(None) is None
        assert Delay.parse("   ") is None

    def test_garbage_raises(self) -> None:
        with pytest.raises(ValueError):
            Delay.parse("soon")

    def test_apply_clamps_day_of_month(self) -> None:
        assert Delay(months=-1).apply(datetime.date(2024, 3, 31)) == datetime.date(2024, 2, 29)

    def test_apply_years_and_days(self, today: datetime.date) -> None:
        assert Delay(months=-12).apply(today) == datetime.date(2023, 6, 15)
        assert Delay(days=-15).apply(today) == datetime.date(2024, 5, 31)


def test_parse_embargo_maps_p_to_from_and_r_to_to() -> None:
    from_delay, to_delay = parse_embargo("P1Y;R10Y")
    assert from_delay == Delay(months=-12)
    assert to_delay == Delay(months=-120)
    assert parse_embargo("") == (None, None)
    assert parse_embargo("P6M") == (Delay(months=-6), None)


def test_parse_embargo_rejects_unknown_syntax() -> None:
    with pytest.raises(ValueError):
        parse_embargo("6 months")


def test_record_date_parse() -> None:
    assert RecordDate.parse("2004-06-01") == RecordDate(2004, 6, 1)
    assert RecordDate.parse("2004") == RecordDate(2004)
    assert RecordDate.parse("2004-13-01") == RecordDate(2004)
    assert RecordDate.parse("n.d.") is None
    assert RecordDate.parse("") is None


def test_normalize_issn() -> None:
    assert normalize_issn("12345678") == "1234-5678"
    assert normalize_issn(" 1234-567x ") == "1234-567X"
    assert normalize_issn("not an issn") == "NOT AN ISSN"


class TestStaticBounds:
    def test_year_range(self, today: datetime.date) -> None:
        entry = Entry(from_year=1999, to_year=2001)
        assert entry.covers("2000", today=today) is True
        assert entry.covers("2002", today=today) is False
        assert entry.covers("1998-12-31", today=today) is False

    def test_bounds_are_inclusive(self, today: datetime.date) -> None:
        entry = Entry(from_year=1999, to_year=2001)
        assert entry.covers("1999-01-01", today=today) is True
        assert entry.covers("2001-12-31", today=today) is True

    @pytest.mark.parametrize(("volume", "issue"), [("1", "1"), ("999", "42"), ("", ""), ("Suppl.", "x")])
    def test_year_only_entry_ignores_volume_and_issue(
        self, volume: str, issue: str, today: datetime.date
    ) -> None:
        entry = Entry(from_year=2000, to_year=2010)
        assert entry.covers("2005", volume, issue, today=today) is True
        assert entry.covers("2011", volume, issue, today=today) is False

    def test_open_ended_entry(self, today: datetime.date) -> None:
        entry = Entry(from_year=2000)
        assert entry.covers("2024-01-01", today=today) is True
        assert entry.covers("1999", today=today) is False

    def test_volume_only_matters_in_boundary_year(self, today: datetime.date) -> None:
        entry = Entry(from_year=2000, from_volume=5)
        assert entry.covers("2000", "3", today=today) is False
        assert entry.covers("2000", "6", today=today) is True
        assert entry.covers("2001", "1", today=today) is True

    def test_issue_only_matters_in_boundary_volume(self, today: datetime.date) -> None:
        entry = Entry(from_year=2000, to_year=2010, to_volume=10, to_issue=2)
        assert entry.covers("2010", "10", "3", today=today) is False
        assert entry.covers("2010", "10", "2", today=today) is True
        assert entry.covers("2010", "9", "12", today=today) is True

    def test_missing_record_volume_falls_back_to_year(self, today: datetime.date) -> None:
        entry = Entry(from_year=2000, from_volume=5, from_issue=3)
        assert entry.covers("2000", "", "", today=today) is True
        assert entry.covers("2000", "Suppl. A", None, today=today) is True
        assert entry.covers("2000", "5", "", today=today) is True
        assert entry.covers("2000", "5", "2", today=today) is False

    def test_missing_date_only_covered_by_unbounded_entry(self, today: datetime.date) -> None:
        assert Entry(from_year=2000, to_year=2010).covers("", today=today) is False
        assert Entry().covers("", today=today) is True
        assert Entry().covers("undated", today=today) is True


class TestMovingWall:
    def test_record_after_from_delay_is_not_covered(self, today: datetime.date) -> None:
        entry = Entry(from_year=1990, to_year=2030, from_delay=Delay.parse("-1 year"))
        # Wall is 2023-06-15.
        assert entry.covers("2024-01-01", today=today) is False
        assert entry.covers("2023-07-01", today=today) is False
        assert entry.covers("2023-06-15", today=today) is True
        assert entry.covers("2022-12-31", today=today) is True

    def test_year_precision_record_compares_by_year(self, today: datetime.date) -> None:
        entry = Entry(from_year=1990, from_delay=Delay.parse("-1 year"))
        assert entry.covers("2023", today=today) is True
        assert entry.covers("2024", today=today) is False

    def test_record_before_to_delay_is_not_covered(self, today: datetime.date) -> None:
        entry = Entry(to_delay=Delay.parse("-10 years"))
        # Wall is 2014-06-15.
        assert entry.covers("2010", today=today) is False
        assert entry.covers("2014-06-14", today=today) is False
        assert entry.covers("2015-01-01", today=today) is True

    def test_wall_moves_with_today(self) -> None:
        entry = Entry(from_year=1990, from_delay=Delay.parse("-1 year"))
        assert entry.covers("2020-03-01", today=datetime.date(2021, 1, 1)) is False
        assert entry.covers("2020-03-01", today=datetime.date(2021, 6, 1)) is True


class TestCoverageIndex:
    def test_lookup_normalizes_issn(self) -> None:
        index = CoverageIndex(source="test")
        index.add("12345678", Entry(from_year=2000))
        assert "1234-5678" in index
        assert index.lookup("1234-5678") == [Entry(from_year=2000)]
        assert len(index) == 1
        assert index.entry_count == 1

    def test_any_entry_of_any_serial_number_covers(self, today: datetime.date) -> None:
        index = CoverageIndex()
        index.add("1111-1111", Entry(from_year=1990, to_year=1995))
        index.add("2222-2222", Entry(from_year=1990, to_year=1995))
        index.add("2222-2222", Entry(from_year=2000, to_year=2010))
        assert covers(index, ["1111-1111", "2222-2222"], "2004", today=today) is True
        assert covers(index, ["1111-1111"], "2004", today=today) is False
        assert index.covers(["3333-3333"], "2004", today=today) is False

    def test_unknown_serial_number_is_not_covered(self, today: datetime.date) -> None:
        index = CoverageIndex()
        assert index.covers([], "2004", today=today) is False
