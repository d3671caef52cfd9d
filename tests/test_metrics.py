from datetime import date

import pytest

import smb_pulse.metrics as metrics
from smb_pulse.periods import month_period
from smb_pulse.statements import CashPosition, ExpenseCategory, PeriodStatement


def _statement(
    month: int = 1,
    revenue: float = 0.0,
    cogs: float = 0.0,
    gross_profit=None,
    expenses: float = 0.0,
    net_income: float = 0.0,
    categories: dict[str, float] | None = None,
    year: int = 2026,
) -> PeriodStatement:
    return PeriodStatement.build(
        period=month_period(year, month),
        total_revenue=revenue,
        total_cogs=cogs,
        gross_profit=gross_profit,
        total_expenses=expenses,
        net_income=net_income,
        expense_categories=[
            ExpenseCategory(name=name, amount=amount)
            for name, amount in (categories or {}).items()
        ],
    )


# ---------------------------------------------------------------------------
# Variances
# ---------------------------------------------------------------------------


def test_revenue_variance_at_twenty_percent_is_medium() -> None:
    """Exactly 20% is not strictly above the high threshold."""
    previous = _statement(1, revenue=100_000)
    current = _statement(2, revenue=120_000)

    variances = metrics.compute_variances(current, previous)
    revenue = next(v for v in variances if v.metric == metrics.REVENUE)

    assert revenue.percent_change == 20.0
    assert revenue.direction == "up"
    assert revenue.significance == "medium"
    assert revenue.absolute_change == pytest.approx(20_000)


def test_metric_skipped_only_when_both_values_are_zero() -> None:
    previous = _statement(1, revenue=0, expenses=500)
    current = _statement(2, revenue=0, expenses=800)

    names = [v.metric for v in metrics.compute_variances(current, previous)]

    assert metrics.REVENUE not in names
    assert metrics.TOTAL_EXPENSES in names


def test_variance_from_zero_previous_has_zero_percent_but_up_direction() -> None:
    previous = _statement(1, revenue=0)
    current = _statement(2, revenue=5_000)

    revenue = metrics.compute_variances(current, previous)[0]

    assert revenue.percent_change == 0.0
    assert revenue.direction == "up"
    assert revenue.significance == "low"


@pytest.mark.parametrize(
    "previous_value, current_value, expected",
    [
        (100_000.0, 100_001.0, "up"),
        (100_000.0, 99_999.0, "down"),
        (100_000.0, 100_000.0, "flat"),
        (-1_000.0, -900.0, "up"),
    ],
)
def test_variance_direction_follows_absolute_change(
    previous_value: float, current_value: float, expected: str
) -> None:
    """A tiny change rounds to 0.0% but still sets the direction."""
    previous = _statement(1, net_income=previous_value)
    current = _statement(2, net_income=current_value)

    net = next(
        v
        for v in metrics.compute_variances(current, previous)
        if v.metric == metrics.NET_INCOME
    )

    assert net.direction == expected


def test_negative_previous_uses_absolute_denominator() -> None:
    previous = _statement(1, net_income=-1_000)
    current = _statement(2, net_income=500)

    net = next(
        v
        for v in metrics.compute_variances(current, previous)
        if v.metric == metrics.NET_INCOME
    )

    assert net.percent_change == 150.0
    assert net.significance == "high"


def test_headline_variances_keep_fixed_order() -> None:
    previous = _statement(1, revenue=100, cogs=40, expenses=30, net_income=30)
    current = _statement(2, revenue=110, cogs=50, expenses=35, net_income=25)

    names = [v.metric for v in metrics.compute_variances(current, previous)]

    assert names == list(metrics.HEADLINE_METRICS)


def test_expense_variances_filter_noise_and_sort_by_dollar_change() -> None:
    previous = _statement(
        1,
        categories={"Rent": 10_000, "Software": 100, "Travel": 2_000, "Meals": 1_000},
    )
    current = _statement(
        2,
        categories={"Rent": 10_300, "Software": 300, "Travel": 2_500, "Ads": 700},
    )

    variances = metrics.compute_expense_variances(current, previous)
    names = [v.metric for v in variances]

    # Rent +3% is noise; Meals disappears (-100%); Ads appears (0% from zero)
    assert "Rent" not in names
    assert "Ads" not in names
    assert names == ["Meals", "Travel", "Software"]
    assert all(abs(v.percent_change) >= 5 for v in variances)

    software = variances[-1]
    assert software.percent_change == 200.0
    assert software.significance == "high"


def test_expense_variances_use_25_and_10_thresholds() -> None:
    previous = _statement(1, categories={"A": 1_000, "B": 1_000, "C": 1_000})
    current = _statement(2, categories={"A": 1_250, "B": 1_110, "C": 1_060})

    by_name = {
        v.metric: v.significance
        for v in metrics.compute_expense_variances(current, previous)
    }

    assert by_name == {"A": "medium", "B": "medium", "C": "low"}


# ---------------------------------------------------------------------------
# Ratios
# ---------------------------------------------------------------------------


def test_ratios_without_previous_are_stable() -> None:
    current = _statement(1, revenue=10_000, cogs=4_000, expenses=3_000, net_income=3_000)

    ratios = {r.name: r for r in metrics.compute_ratios(current)}

    assert set(ratios) == {
        metrics.GROSS_MARGIN,
        metrics.PROFIT_MARGIN,
        metrics.EXPENSE_RATIO,
    }
    assert ratios[metrics.GROSS_MARGIN].value == 60.0
    assert ratios[metrics.PROFIT_MARGIN].value == 30.0
    assert ratios[metrics.EXPENSE_RATIO].value == 30.0
    assert all(r.trend == "stable" for r in ratios.values())
    assert all(r.previous_value is None for r in ratios.values())


def test_margins_are_zero_without_revenue() -> None:
    current = _statement(1, revenue=0, expenses=1_000, net_income=-1_000)

    ratios = {r.name: r for r in metrics.compute_ratios(current)}

    assert ratios[metrics.GROSS_MARGIN].value == 0.0
    assert ratios[metrics.PROFIT_MARGIN].value == 0.0


def test_expense_ratio_trend_is_inverted() -> None:
    previous = _statement(1, revenue=10_000, expenses=5_000, net_income=5_000)
    current = _statement(2, revenue=10_000, expenses=4_000, net_income=6_000)

    ratios = {r.name: r for r in metrics.compute_ratios(current, previous)}

    assert ratios[metrics.EXPENSE_RATIO].trend == "improving"
    assert ratios[metrics.PROFIT_MARGIN].trend == "improving"
    assert ratios[metrics.EXPENSE_RATIO].previous_value == 50.0


@pytest.mark.parametrize(
    "current_revenue, expected",
    [(10_300, "improving"), (10_200, "stable"), (9_700, "declining")],
)
def test_revenue_growth_uses_two_percent_bands(current_revenue: float, expected: str) -> None:
    previous = _statement(1, revenue=10_000)
    current = _statement(2, revenue=current_revenue)

    ratios = {r.name: r for r in metrics.compute_ratios(current, previous)}

    assert ratios[metrics.REVENUE_GROWTH].trend == expected


def test_revenue_growth_requires_previous_revenue() -> None:
    previous = _statement(1, revenue=0)
    current = _statement(2, revenue=10_000)

    names = [r.name for r in metrics.compute_ratios(current, previous)]

    assert metrics.REVENUE_GROWTH not in names


def test_cash_runway_three_months_is_stable() -> None:
    current = _statement(1, revenue=15_000, expenses=20_000, net_income=-5_000)
    cash = CashPosition(current_balance=15_000, previous_balance=0, as_of_date=date(2026, 1, 31))

    runway = next(
        r for r in metrics.compute_ratios(current, None, cash) if r.name == metrics.CASH_RUNWAY
    )

    assert runway.value == 3.0
    assert runway.trend == "stable"
    assert runway.unit == "months"


def test_cash_runway_is_clamped_when_not_burning() -> None:
    current = _statement(1, revenue=30_000, expenses=20_000, net_income=10_000)
    cash = CashPosition(current_balance=1_000, previous_balance=0, as_of_date=date(2026, 1, 31))

    runway = next(
        r for r in metrics.compute_ratios(current, None, cash) if r.name == metrics.CASH_RUNWAY
    )

    assert runway.value == metrics.MAX_RUNWAY_MONTHS
    assert runway.trend == "improving"


def test_cash_runway_is_capped_and_needs_expenses() -> None:
    cash = CashPosition(current_balance=10_000_000, previous_balance=0, as_of_date=date(2026, 1, 31))
    burning = _statement(1, revenue=0, expenses=1_000)
    idle = _statement(1, revenue=0, expenses=0)

    runway = [r for r in metrics.compute_ratios(burning, None, cash) if r.name == metrics.CASH_RUNWAY]
    assert runway[0].value == 99.0

    assert metrics.CASH_RUNWAY not in [r.name for r in metrics.compute_ratios(idle, None, cash)]


# ---------------------------------------------------------------------------
# Trends
# ---------------------------------------------------------------------------


def test_decreasing_gross_profit_over_five_months() -> None:
    gross = [10_000, 9_000, 8_000, 7_000, 6_000]
    history = [
        _statement(i + 1, revenue=20_000, gross_profit=g, expenses=5_000, net_income=5_000)
        for i, g in enumerate(gross)
    ]

    trends = {t.metric: t for t in metrics.detect_trends(history)}

    trend = trends["Gross Profit"]
    assert trend.direction == "decreasing"
    assert trend.periods == 5
    assert trend.magnitude == 40.0
    assert "Revenue" not in trends  # flat revenue is stable
    assert trend.description == (
        "Gross Profit has been declining over the past 5 months (40% total change)."
    )


@pytest.mark.parametrize(
    "values, expected",
    [
        ([100, 110, 121, 133], "increasing"),
        ([100, 90, 81], "decreasing"),
        ([100, 120, 90, 130, 95], "volatile"),
        ([100, 101, 100, 102], "stable"),
        ([100], "stable"),
    ],
)
def test_classify_direction(values: list[float], expected: str) -> None:
    assert metrics.classify_direction(values) == expected


def test_trends_need_two_periods() -> None:
    assert metrics.detect_trends([_statement(1, revenue=100)]) == []


# ---------------------------------------------------------------------------
# Anomalies
# ---------------------------------------------------------------------------


def test_anomaly_detected_far_above_history() -> None:
    history = [
        _statement(month, categories={"Marketing": amount})
        for month, amount in enumerate([900, 1_100, 900, 1_100, 900, 1_100], start=1)
    ]
    history.append(_statement(7, categories={"Marketing": 1_700}))

    anomalies = metrics.detect_anomalies(history)

    assert len(anomalies) == 1
    anomaly = anomalies[0]
    assert anomaly.metric == "Marketing"
    assert anomaly.expected_min == pytest.approx(850)
    assert anomaly.expected_max == pytest.approx(1_150)
    assert anomaly.severity == "high"
    assert anomaly.description == (
        "Marketing is higher than usual. Expected range: $850–$1,150, actual: $1,700."
    )


def test_anomalies_need_three_periods_and_two_observations() -> None:
    two_periods = [
        _statement(1, categories={"Rent": 1_000}),
        _statement(2, categories={"Rent": 5_000}),
    ]
    assert metrics.detect_anomalies(two_periods) == []

    sparse_history = [
        _statement(1, categories={"Rent": 1_000}),
        _statement(2, categories={"Other": 10}),
        _statement(3, categories={"Rent": 5_000}),
    ]
    assert metrics.detect_anomalies(sparse_history) == []


def test_anomalies_sorted_by_severity_keeping_discovery_order() -> None:
    history = [
        _statement(1, categories={"Rent": 1_000, "Ads": 500, "Fees": 100}),
        _statement(2, categories={"Rent": 1_000, "Ads": 500, "Fees": 100}),
        _statement(3, categories={"Rent": 1_200, "Ads": 550, "Fees": 300}),
    ]

    anomalies = metrics.detect_anomalies(history)

    # Rent was largest in the latest period, so it is discovered first
    assert [(a.metric, a.severity) for a in anomalies] == [
        ("Fees", "high"),
        ("Rent", "low"),
        ("Ads", "low"),
    ]


def test_expected_range_lower_bound_is_never_negative() -> None:
    history = [
        _statement(1, categories={"Travel": 100}),
        _statement(2, categories={"Travel": 1_000}),
        _statement(3, categories={"Travel": 5_000}),
    ]

    anomalies = metrics.detect_anomalies(history)

    assert anomalies[0].expected_min == 0.0
    assert "higher than usual" in anomalies[0].description


# ---------------------------------------------------------------------------
# Whole engine
# ---------------------------------------------------------------------------


def test_compute_metrics_is_idempotent() -> None:
    history = [
        _statement(1, revenue=10_000, cogs=3_000, expenses=4_000, net_income=3_000,
                   categories={"Rent": 2_000, "Ads": 1_000}),
        _statement(2, revenue=9_000, cogs=3_500, expenses=4_500, net_income=1_000,
                   categories={"Rent": 2_000, "Ads": 1_500}),
        _statement(3, revenue=8_000, cogs=3_600, expenses=5_000, net_income=-600,
                   categories={"Rent": 2_000, "Ads": 3_000}),
    ]
    cash = CashPosition(current_balance=20_000, previous_balance=0, as_of_date=date(2026, 3, 31))

    first = metrics.compute_metrics(history, cash)
    second = metrics.compute_metrics(history, cash)

    assert first == second
    assert first.current is history[-1]
    assert first.previous is history[-2]


def test_compute_metrics_single_period_has_no_variances() -> None:
    context = metrics.compute_metrics([_statement(1, revenue=1_000)])

    assert context.previous is None
    assert context.variances == ()
    assert context.expense_variances == ()
    assert len(context.ratios) == 3


def test_compute_metrics_rejects_empty_history() -> None:
    with pytest.raises(ValueError):
        metrics.compute_metrics([])


@pytest.mark.parametrize(
    "value, expected",
    [(2.25, 2.3), (-2.25, -2.2), (19.99, 20.0), (0.04, 0.0)],
)
def test_round1_is_half_up(value: float, expected: float) -> None:
    assert metrics.round1(value) == pytest.approx(expected)


def test_format_money() -> None:
    assert metrics.format_money(1234.5) == "$1,235"
    assert metrics.format_money(-5000) == "-$5,000"
    assert metrics.format_ratio_value(3.0, "months") == "3 months"
    assert metrics.format_ratio_value(42.5, "percent") == "42.5%"
