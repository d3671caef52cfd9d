from datetime import date

import pytest

import smb_pulse.periods as periods


def test_single_month_label() -> None:
    assert periods.format_period_label(date(2026, 1, 1), date(2026, 1, 31)) == "Jan 2026"


def test_multi_month_label() -> None:
    label = periods.format_period_label(date(2026, 1, 1), date(2026, 3, 31))
    assert label == "Jan – Mar 2026"


def test_month_period_handles_leap_year() -> None:
    p = periods.month_period(2028, 2)

    assert p.start == date(2028, 2, 1)
    assert p.end == date(2028, 2, 29)
    assert p.label == "Feb 2028"


def test_period_dict_round_trip_and_defaults() -> None:
    p = periods.month_period(2026, 3)
    assert periods.Period.from_dict(p.to_dict()) == p

    derived = periods.Period.from_dict({"start": "2026-03-01T00:00:00Z"})
    assert derived.end == date(2026, 3, 1)
    assert derived.label == "Mar 2026"


@pytest.mark.parametrize("raw", [None, "", "31/03/2026"])
def test_parse_date_rejects_invalid_values(raw) -> None:
    with pytest.raises(ValueError):
        periods.parse_date(raw)
