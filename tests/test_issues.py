from datetime import date, datetime, timezone

import pytest

from smb_pulse.issues import MAX_ISSUES, Issue, generate_issues
from smb_pulse.metrics import (
    AnomalyResult,
    RatioResult,
    TrendResult,
    VarianceResult,
    compute_ratios,
    detect_trends,
)
from smb_pulse.periods import month_period
from smb_pulse.statements import CashPosition, PeriodStatement

DETECTED_AT = datetime(2026, 3, 31, 12, 0, tzinfo=timezone.utc)


def _variance(metric: str, pct: float, previous: float = 10_000.0) -> VarianceResult:
    current = previous * (1 + pct / 100)
    return VarianceResult(
        metric=metric,
        current_value=current,
        previous_value=previous,
        absolute_change=current - previous,
        percent_change=pct,
        direction="up" if pct > 0 else "down" if pct < 0 else "flat",
        significance="high" if abs(pct) > 20 else "medium" if abs(pct) > 10 else "low",
    )


def _runway(months: float) -> RatioResult:
    return RatioResult(
        name="Cash Runway",
        value=months,
        trend="declining" if months < 3 else "stable",
        description="Months your cash will last at current spending",
        unit="months",
    )


def _margin_trend(periods: int, magnitude: float = 25.0) -> TrendResult:
    return TrendResult(
        metric="Gross Profit",
        direction="decreasing",
        periods=periods,
        magnitude=magnitude,
        description="Gross Profit has been declining.",
    )


def _anomaly(metric: str, value: float, severity: str = "high") -> AnomalyResult:
    return AnomalyResult(
        metric=metric,
        value=value,
        expected_min=100.0,
        expected_max=200.0,
        severity=severity,
        description=f"{metric} is higher than usual.",
    )


def test_no_findings_no_issues() -> None:
    assert generate_issues([], [], [], [], detected_at=DETECTED_AT) == []


def test_short_cash_runway_is_critical() -> None:
    issues = generate_issues([], [_runway(2.5)], [], [], detected_at=DETECTED_AT)

    assert len(issues) == 1
    issue = issues[0]
    assert issue.id == "iss-cash-runway"
    assert issue.severity == "critical"
    assert issue.root_cause == "cash"
    assert issue.threshold == 3.0
    assert "2.5 months" in issue.description
    assert issue.first_detected_at == DETECTED_AT.isoformat()


def test_three_month_runway_raises_no_issue() -> None:
    assert generate_issues([], [_runway(3.0)], [], [], detected_at=DETECTED_AT) == []


def test_runway_just_under_three_months_is_critical_even_when_displayed_as_three() -> None:
    current = PeriodStatement.build(
        period=month_period(2026, 1),
        total_revenue=15_000,
        total_expenses=20_000,
        net_income=-5_000,
    )
    cash = CashPosition(current_balance=14_980, previous_balance=0, as_of_date=date(2026, 1, 31))

    ratios = compute_ratios(current, None, cash)
    issues = generate_issues([], ratios, [], [], detected_at=DETECTED_AT)

    assert ratios[-1].value == 3.0
    assert ratios[-1].trend == "declining"
    assert [i.id for i in issues] == ["iss-cash-runway"]
    assert issues[0].severity == "critical"


@pytest.mark.parametrize(
    "revenue_pct, expense_pct, expected",
    [
        (5.0, 12.0, "warning"),
        (2.0, 20.0, "critical"),
        (-10.0, 8.0, "critical"),
        (5.0, 10.0, None),
    ],
)
def test_expenses_outgrowing_revenue(
    revenue_pct: float, expense_pct: float, expected
) -> None:
    variances = [
        _variance("Revenue", revenue_pct),
        _variance("Total Expenses", expense_pct),
    ]

    issues = generate_issues(variances, [], [], [], detected_at=DETECTED_AT)

    if expected is None:
        assert issues == []
    else:
        assert [i.severity for i in issues] == [expected]
        assert issues[0].root_cause == "expense_revenue"
        assert issues[0].current_value == expense_pct
        assert issues[0].threshold == pytest.approx(revenue_pct + 5)


def test_expense_issue_text_mentions_revenue_decline() -> None:
    variances = [_variance("Revenue", -10.0), _variance("Total Expenses", 8.0)]

    issue = generate_issues(variances, [], [], [], detected_at=DETECTED_AT)[0]

    assert issue.description == (
        "Your costs grew 8% while revenue declined 10%. "
        "This gap is squeezing your margins."
    )


@pytest.mark.parametrize("periods, expected", [(5, "warning"), (3, "warning"), (2, "info")])
def test_margin_decline_severity_depends_on_duration(periods: int, expected: str) -> None:
    issues = generate_issues([], [], [_margin_trend(periods)], [], detected_at=DETECTED_AT)

    assert len(issues) == 1
    assert issues[0].id == "iss-margin-decline"
    assert issues[0].severity == expected
    assert issues[0].periods_active == periods


def test_five_months_of_falling_gross_profit_is_a_warning() -> None:
    history = [
        PeriodStatement.build(
            period=month_period(2026, month),
            total_revenue=20_000,
            gross_profit=gross,
            total_expenses=5_000,
            net_income=5_000,
        )
        for month, gross in enumerate([10_000, 9_000, 8_000, 7_000, 6_000], start=1)
    ]

    issues = generate_issues([], [], detect_trends(history), [], detected_at=DETECTED_AT)

    assert len(issues) == 1
    issue = issues[0]
    assert issue.id == "iss-margin-decline"
    assert issue.severity == "warning"
    assert issue.periods_active == 5
    assert issue.root_cause == "margin"


def test_increasing_gross_profit_is_not_an_issue() -> None:
    trend = TrendResult(
        metric="Gross Profit",
        direction="increasing",
        periods=4,
        magnitude=30.0,
        description="",
    )
    assert generate_issues([], [], [trend], [], detected_at=DETECTED_AT) == []


def test_only_two_anomalies_become_issues() -> None:
    anomalies = [
        _anomaly("Marketing", 900, "high"),
        _anomaly("Office Supplies", 800, "medium"),
        _anomaly("Travel", 700, "low"),
    ]

    issues = generate_issues([], [], [], anomalies, detected_at=DETECTED_AT)

    assert [i.id for i in issues] == ["iss-anomaly-marketing", "iss-anomaly-office-supplies"]
    assert [i.severity for i in issues] == ["warning", "info"]


def test_duplicate_anomaly_metric_yields_one_issue() -> None:
    anomalies = [_anomaly("Marketing", 900), _anomaly("Marketing", 950)]

    issues = generate_issues([], [], [], anomalies, detected_at=DETECTED_AT)

    assert len(issues) == 1


def test_issues_sorted_capped_and_unique_by_root_cause() -> None:
    variances = [_variance("Revenue", 2.0), _variance("Total Expenses", 30.0)]
    anomalies = [_anomaly("Marketing", 900, "high"), _anomaly("Rent", 5_000, "low")]

    issues = generate_issues(
        variances,
        [_runway(1.2)],
        [_margin_trend(4)],
        anomalies,
        detected_at=DETECTED_AT,
    )

    assert len(issues) <= MAX_ISSUES
    assert len({i.root_cause for i in issues}) == len(issues)
    assert [i.id for i in issues] == [
        "iss-expense-revenue",  # critical, current value 30
        "iss-cash-runway",  # critical, current value 1.2
        "iss-anomaly-marketing",  # warning, 900
        "iss-margin-decline",  # warning, 25
        "iss-anomaly-rent",  # info
    ]


def test_issue_dict_round_trip() -> None:
    issue = generate_issues([], [_runway(1.0)], [], [], detected_at=DETECTED_AT)[0]

    data = issue.to_dict()

    assert data["currentValue"] == 1.0
    assert data["rootCause"] == "cash"
    assert Issue.from_dict(data) == issue
