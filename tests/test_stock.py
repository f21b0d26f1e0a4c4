from datetime import date, datetime, timedelta
from types import SimpleNamespace

import pytest

from sitestock.stock import (
    PeriodFilter,
    alert_severity,
    contractor_summary,
    low_stock_items,
    parse_timestamp,
    period_totals,
    steel_tally_discrepancies,
    stock_summary,
    supplier_summary,
)

NOW = datetime(2024, 6, 15, 12, 0, 0)


def txn(direction, subtype, quantity, *, days_ago=1, weight=None, supplier=None, recipient=None, timestamp=None):
    return SimpleNamespace(
        direction=direction,
        subtype=subtype,
        quantity=quantity,
        weight=weight if weight is not None else quantity,
        imported_from=supplier,
        recipient=recipient,
        timestamp=timestamp if timestamp is not None else NOW - timedelta(days=days_ago),
    )


# ---------------------------------------------------------------------
# Stock summary
# ---------------------------------------------------------------------
def test_opening_is_closing_minus_in_plus_out():
    transactions = [
        txn("incoming", "river_sand", 10, supplier="Quarry A"),
        txn("incoming", "river_sand", 5, supplier="Quarry B"),
        txn("outgoing", "river_sand", 3, recipient="Crew 1"),
    ]

    summary = stock_summary(["river_sand", "sea_sand"], {"river_sand": 20}, transactions)

    row = summary["river_sand"]
    assert row.closing == 20
    assert row.incoming == 15
    assert row.outgoing == 3
    assert row.opening == 8
    assert len(row.transactions) == 3
    assert summary["sea_sand"].opening == 0


def test_opening_is_clamped_to_zero():
    summary = stock_summary(["10mm"], {"10mm": 2}, [txn("incoming", "10mm", 10)])
    assert summary["10mm"].opening == 0


def test_unknown_subtypes_are_ignored():
    summary = stock_summary(["fine_sand"], {}, [txn("incoming", "moon_dust", 4)])
    assert list(summary) == ["fine_sand"]
    assert summary["fine_sand"].incoming == 0


def test_weights_are_summed_separately():
    summary = stock_summary(
        ["12"], {"12": 100},
        [txn("incoming", "12", 93, weight=0.991), txn("outgoing", "12", 10, weight=0.107)],
    )
    assert summary["12"].incoming_weight == pytest.approx(0.991)
    assert summary["12"].outgoing_weight == pytest.approx(0.107)


# ---------------------------------------------------------------------
# Period filter
# ---------------------------------------------------------------------
def test_rolling_periods():
    recent = txn("incoming", "x", 1, days_ago=6)
    older = txn("incoming", "x", 1, days_ago=8)

    assert PeriodFilter("last7days").apply([recent, older], NOW) == [recent]
    assert PeriodFilter("last30days").apply([recent, older], NOW) == [recent, older]


def test_unknown_kind_behaves_like_last30days():
    inside = txn("incoming", "x", 1, days_ago=29)
    outside = txn("incoming", "x", 1, days_ago=31)
    assert PeriodFilter("fortnight").apply([inside, outside], NOW) == [inside]


def test_last_year_on_leap_day():
    start, end = PeriodFilter("lastYear").bounds(datetime(2024, 2, 29, 10, 0))
    assert start == datetime(2023, 2, 28, 10, 0)
    assert end is None


def test_custom_range_includes_whole_end_day():
    period = PeriodFilter("custom", date(2024, 6, 1), date(2024, 6, 10))
    late_on_end_day = txn("incoming", "x", 1, timestamp=datetime(2024, 6, 10, 23, 59, 59))
    next_day = txn("incoming", "x", 1, timestamp=datetime(2024, 6, 11, 0, 0, 1))
    before = txn("incoming", "x", 1, timestamp=datetime(2024, 5, 31, 23, 59))

    assert period.apply([late_on_end_day, next_day, before], NOW) == [late_on_end_day]


def test_custom_range_missing_a_date_keeps_everything():
    period = PeriodFilter("custom", date(2024, 6, 1), None)
    ancient = txn("incoming", "x", 1, days_ago=3000)
    assert period.apply([ancient], NOW) == [ancient]


def test_unparsable_timestamp_is_in_range():
    broken = txn("incoming", "x", 1, timestamp="not a date")
    assert PeriodFilter("last7days").apply([broken], NOW) == [broken]


def test_iso_strings_with_zulu_suffix():
    assert parse_timestamp("2024-06-14T10:00:00Z") == datetime(2024, 6, 14, 10, 0)
    assert parse_timestamp("2024-06-14T12:00:00+02:00") == datetime(2024, 6, 14, 10, 0)
    assert parse_timestamp("") is None


def test_from_args_uses_default_and_parses_dates():
    assert PeriodFilter.from_args({}, "last90days").kind == "last90days"

    period = PeriodFilter.from_args({"period": "custom", "start_date": "2024-01-01", "end_date": "bad"})
    assert period.start_date == date(2024, 1, 1)
    assert period.end_date is None


# ---------------------------------------------------------------------
# Breakdowns
# ---------------------------------------------------------------------
def test_supplier_summary_groups_incoming_by_supplier_and_subtype():
    transactions = [
        txn("incoming", "20mm", 4, supplier="Rock Co"),
        txn("incoming", "10mm", 2, supplier="Rock Co"),
        txn("incoming", "20mm", 1, supplier="  "),
        txn("outgoing", "20mm", 3, recipient="Crew"),
    ]

    summary = supplier_summary(transactions)

    assert list(summary) == ["Rock Co"]
    assert summary["Rock Co"]["count"] == 2
    assert summary["Rock Co"]["total_quantity"] == 6
    assert summary["Rock Co"]["subtypes"]["20mm"]["quantity"] == 4


def test_contractor_summary_groups_outgoing():
    transactions = [
        txn("outgoing", "PPC", 10, weight=0.5, recipient="Foundation Crew"),
        txn("outgoing", "PPC", 4, weight=0.2, recipient="Foundation Crew"),
        txn("outgoing", "PPC", 1, recipient=None),
        txn("incoming", "PPC", 50, supplier="Cement Co"),
    ]

    summary = contractor_summary(transactions)

    crew = summary["Foundation Crew"]
    assert crew["total_quantity"] == 14
    assert crew["total_weight"] == pytest.approx(0.7)
    assert len(crew["transactions"]) == 2
    assert crew["subtypes"]["PPC"]["quantity"] == 14
    assert len(summary) == 1


def test_period_totals():
    totals = period_totals([txn("incoming", "a", 5), txn("outgoing", "a", 2), txn("incoming", "b", 1)])
    assert totals == {"incoming": 6, "outgoing": 2}


# ---------------------------------------------------------------------
# Stock levels
# ---------------------------------------------------------------------
def test_low_stock_is_strictly_below_threshold():
    assert low_stock_items({"a": 9.99, "b": 10, "c": 0}, 10) == {"a": 9.99, "c": 0}


def test_alert_severity():
    assert alert_severity(4, 10) == "high"
    assert alert_severity(5, 10) == "medium"


def test_steel_tally_flags_mismatched_weight():
    good = SimpleNamespace(subtype="12", quantity=93, weight=0.991008, length=12)
    bad = SimpleNamespace(subtype="10", quantity=10, weight=0.2, length=None)

    discrepancies = steel_tally_discrepancies([good, bad], tolerance=0.001)

    assert [d["diameter"] for d in discrepancies] == ["10"]
    assert discrepancies[0]["calculated_weight"] == pytest.approx(0.07404)


def test_alert_severity_with_fixed_cut_off():
    assert alert_severity(22, 50, high_below=20) == "medium"
    assert alert_severity(19, 50, high_below=20) == "high"
    assert alert_severity(4, 20, high_below=5) == "high"
    assert alert_severity(8, 20, high_below=5) == "medium"


def test_steel_tally_is_checked_at_each_row_length():
    short_bars = SimpleNamespace(subtype="12", quantity=102, weight=0.90576, length=10)
    standard = SimpleNamespace(subtype="12", quantity=93, weight=0.991008, length=12)

    assert steel_tally_discrepancies([short_bars, standard]) == []

    wrong = SimpleNamespace(subtype="12", quantity=102, weight=0.90576, length=12)
    discrepancies = steel_tally_discrepancies([wrong])
    assert discrepancies[0]["length"] == 12


def test_query_args_round_trips_custom_period():
    period = PeriodFilter.from_args({"period": "custom", "start_date": "2024-01-01", "end_date": "2024-03-31"})

    assert period.query_args() == {"period": "custom", "start_date": "2024-01-01", "end_date": "2024-03-31"}
    assert PeriodFilter.from_args(period.query_args()) == period
    assert PeriodFilter(kind="last7days").query_args() == {"period": "last7days"}
