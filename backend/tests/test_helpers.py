import datetime as dt

from expense_desk.utils.helpers import (
    coerce_iso_date,
    is_iso_date,
    month_bounds,
    subtract_months,
)


def test_is_iso_date():
    assert is_iso_date("2024-02-29")
    assert not is_iso_date("2023-02-29")
    assert not is_iso_date("15/03/2024")
    assert not is_iso_date("2024-3-5")
    assert not is_iso_date("")


def test_coerce_iso_date_falls_back_to_today():
    today = dt.date(2024, 6, 1)
    assert coerce_iso_date("2024-03-15", today=today) == "2024-03-15"
    assert coerce_iso_date("15/03/2024", today=today) == "2024-06-01"
    assert coerce_iso_date(None, today=today) == "2024-06-01"


def test_month_bounds_wraps_december():
    assert month_bounds(dt.date(2024, 12, 17)) == (dt.date(2024, 12, 1), dt.date(2025, 1, 1))
    assert month_bounds(dt.date(2024, 2, 10)) == (dt.date(2024, 2, 1), dt.date(2024, 3, 1))


def test_subtract_months_clamps_day():
    assert subtract_months(dt.date(2024, 3, 31), 1) == dt.date(2024, 2, 29)
    assert subtract_months(dt.date(2024, 1, 15), 3) == dt.date(2023, 10, 15)
    assert subtract_months(dt.date(2024, 5, 5), 12) == dt.date(2023, 5, 5)
