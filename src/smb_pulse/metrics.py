# SMB Pulse - Business health interpretation for SMBs
# Copyright (c) 2025 Maxence Bernard (maxencebernardhub)
# Licensed under the MIT License. See LICENSE file for details.

"""
Deterministic metrics engine for SMB Pulse.

This module computes every number that later appears in an insight, an
issue or an answer. It is made of pure functions over immutable
``PeriodStatement`` objects: no I/O, no clock, no shared state, so it can
be called concurrently for independent businesses and always returns the
same output for the same input.

1. Variances
   ---------
   ``compute_variances(current, previous)`` compares the five headline
   metrics (Revenue, Gross Profit, Total Expenses, Net Income, Cost of
   Goods Sold) between two periods.

   ``compute_expense_variances(current, previous)`` compares expense
   categories (union of both periods, a missing category counts as 0),
   drops sub-5% noise and sorts by absolute dollar change so material
   moves come first.

   In both cases:
       percent_change = (current - previous) / |previous| * 100
   (0 when previous is 0), rounded to one decimal. The direction is taken
   from the sign of the absolute change, never from the rounded percent.

2. Ratios (health signals)
   -----------------------
   ``compute_ratios(current, previous, cash_position)`` returns Gross
   Margin, Profit Margin and Expense Ratio (always), Revenue Growth (when
   the previous period has revenue) and Cash Runway (when a cash position
   is known and the period has expenses). Each ratio carries a trend label
   (improving / declining / stable).

3. Trends
   ------
   ``detect_trends(periods)`` classifies the step sequence of Revenue,
   Expenses, Profit and Gross Profit over two or more ordered periods and
   reports the non-stable ones.

4. Anomalies
   ---------
   ``detect_anomalies(periods)`` tests the latest period's expense
   categories against the mean +/- 1.5 population standard deviations of
   the same category over all prior periods (three periods minimum).

All amounts and percentages are rounded half-up to one decimal place
(``round1``), matching how they are displayed to users.
"""

import math
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from typing import Any, Literal, Optional

import pandas as pd

from .statements import CashPosition, PeriodStatement

Direction = Literal["up", "down", "flat"]
Significance = Literal["high", "medium", "low"]
RatioTrend = Literal["improving", "declining", "stable"]
TrendDirection = Literal["increasing", "decreasing", "stable", "volatile"]

# Headline metric names, also used as lookup keys by the issue synthesizer
# and the explanation gateway.
REVENUE = "Revenue"
GROSS_PROFIT = "Gross Profit"
TOTAL_EXPENSES = "Total Expenses"
NET_INCOME = "Net Income"
COGS = "Cost of Goods Sold"
HEADLINE_METRICS = (REVENUE, GROSS_PROFIT, TOTAL_EXPENSES, NET_INCOME, COGS)

GROSS_MARGIN = "Gross Margin"
PROFIT_MARGIN = "Profit Margin"
EXPENSE_RATIO = "Expense Ratio"
REVENUE_GROWTH = "Revenue Growth"
CASH_RUNWAY = "Cash Runway"

# Runway reported when the business is not burning cash, and the cap
# applied to any computed runway.
MAX_RUNWAY_MONTHS = 99.0

# Minimum relative step (3%) counted as a move by trend detection, and the
# share of steps (70%) needed to call a direction.
TREND_STEP_THRESHOLD = 0.03
TREND_MAJORITY = 0.7

ANOMALY_STD_MULTIPLIER = 1.5
ANOMALY_MIN_PERIODS = 3
ANOMALY_MIN_HISTORY = 2

SEVERITY_ORDER: dict[str, int] = {"high": 0, "medium": 1, "low": 2}


def round1(value: float) -> float:
    """Round half-up to one decimal place (2.25 -> 2.3, -2.25 -> -2.2)."""
    return math.floor(value * 10 + 0.5) / 10


def round0(value: float) -> int:
    """Round half-up to the nearest integer."""
    return int(math.floor(value + 0.5))


def format_number(value: float) -> str:
    """Format an already rounded number, dropping a trailing '.0'."""
    if float(value).is_integer():
        return str(int(value))
    return str(value)


def format_ratio_value(value: float, unit: str) -> str:
    """Format a ratio value with its unit ('42.5%' or '3 months')."""
    if unit == "months":
        return f"{format_number(value)} months"
    return f"{format_number(value)}%"


def format_money(value: float) -> str:
    """Format an amount as whole dollars with thousands separators."""
    amount = round0(value)
    if amount < 0:
        return f"-${-amount:,}"
    return f"${amount:,}"


@dataclass(frozen=True)
class VarianceResult:
    """Change of one metric or expense category between two periods."""

    metric: str
    current_value: float
    previous_value: float
    absolute_change: float
    percent_change: float
    direction: Direction
    significance: Significance

    def to_dict(self) -> dict[str, Any]:
        return {
            "metric": self.metric,
            "currentValue": self.current_value,
            "previousValue": self.previous_value,
            "absoluteChange": self.absolute_change,
            "percentChange": self.percent_change,
            "direction": self.direction,
            "significance": self.significance,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "VarianceResult":
        return cls(
            metric=str(data["metric"]),
            current_value=float(data["currentValue"]),
            previous_value=float(data["previousValue"]),
            absolute_change=float(data["absoluteChange"]),
            percent_change=float(data["percentChange"]),
            direction=data["direction"],
            significance=data["significance"],
        )


@dataclass(frozen=True)
class RatioResult:
    """
    Health signal derived from one or two statements.

    Attributes:
        name: Display name (e.g. 'Gross Margin').
        value: Rounded value, a percentage or a number of months.
        trend: 'improving', 'declining' or 'stable'.
        description: Plain-language meaning of the ratio.
        unit: 'percent' or 'months'.
        previous_value: Rounded value for the previous period, if known.
    """

    name: str
    value: float
    trend: RatioTrend
    description: str
    unit: str = "percent"
    previous_value: Optional[float] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "value": self.value,
            "previousValue": self.previous_value,
            "trend": self.trend,
            "description": self.description,
            "unit": self.unit,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "RatioResult":
        previous = data.get("previousValue")
        return cls(
            name=str(data["name"]),
            value=float(data["value"]),
            trend=data["trend"],
            description=str(data.get("description") or ""),
            unit=str(data.get("unit") or "percent"),
            previous_value=None if previous is None else float(previous),
        )


@dataclass(frozen=True)
class TrendResult:
    """Direction of one metric across two or more ordered periods."""

    metric: str
    direction: TrendDirection
    periods: int
    magnitude: float
    description: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "metric": self.metric,
            "direction": self.direction,
            "periods": self.periods,
            "magnitude": self.magnitude,
            "description": self.description,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "TrendResult":
        return cls(
            metric=str(data["metric"]),
            direction=data["direction"],
            periods=int(data["periods"]),
            magnitude=float(data["magnitude"]),
            description=str(data.get("description") or ""),
        )


@dataclass(frozen=True)
class AnomalyResult:
    """Expense category outside its own historical range in the latest period."""

    metric: str
    value: float
    expected_min: float
    expected_max: float
    severity: Significance
    description: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "metric": self.metric,
            "value": self.value,
            "expectedRange": {"min": self.expected_min, "max": self.expected_max},
            "severity": self.severity,
            "description": self.description,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "AnomalyResult":
        expected = data.get("expectedRange") or {}
        return cls(
            metric=str(data["metric"]),
            value=float(data["value"]),
            expected_min=float(expected.get("min", 0.0)),
            expected_max=float(expected.get("max", 0.0)),
            severity=data["severity"],
            description=str(data.get("description") or ""),
        )


# ---------------------------------------------------------------------------
# Variances
# ---------------------------------------------------------------------------


def _percent_change(current: float, previous: float) -> float:
    if previous == 0:
        return 0.0
    return (current - previous) * 100 / abs(previous)


def _direction(absolute_change: float) -> Direction:
    if absolute_change > 0:
        return "up"
    if absolute_change < 0:
        return "down"
    return "flat"


def _significance(percent_change: float, high: float, medium: float) -> Significance:
    magnitude = abs(percent_change)
    if magnitude > high:
        return "high"
    if magnitude > medium:
        return "medium"
    return "low"


def _variance(
    metric: str, current: float, previous: float, high: float, medium: float
) -> VarianceResult:
    absolute_change = current - previous
    percent_change = _percent_change(current, previous)
    return VarianceResult(
        metric=metric,
        current_value=current,
        previous_value=previous,
        absolute_change=absolute_change,
        percent_change=round1(percent_change),
        direction=_direction(absolute_change),
        significance=_significance(percent_change, high, medium),
    )


def compute_variances(
    current: PeriodStatement, previous: PeriodStatement
) -> list[VarianceResult]:
    """
    Compare the five headline metrics between two periods.

    A metric is skipped only when both values are exactly zero.
    Significance uses the unrounded percent change: > 20 is high,
    > 10 is medium, anything else is low.
    """
    pairs = [
        (REVENUE, current.total_revenue, previous.total_revenue),
        (GROSS_PROFIT, current.gross_profit, previous.gross_profit),
        (TOTAL_EXPENSES, current.total_expenses, previous.total_expenses),
        (NET_INCOME, current.net_income, previous.net_income),
        (COGS, current.total_cogs, previous.total_cogs),
    ]

    return [
        _variance(metric, cur, prev, high=20, medium=10)
        for metric, cur, prev in pairs
        if cur != 0 or prev != 0
    ]


def compute_expense_variances(
    current: PeriodStatement, previous: PeriodStatement
) -> list[VarianceResult]:
    """
    Compare expense categories between two periods.

    The union of category names is used (a category missing from one
    period counts as 0). Significance thresholds are 25 / 10. Entries whose
    rounded percent change is below 5 in absolute value are dropped, and
    the rest are sorted by descending absolute dollar change.
    """
    current_amounts = {c.name: c.amount for c in current.expense_categories}
    previous_amounts = {c.name: c.amount for c in previous.expense_categories}

    # dict preserves first-seen order, which breaks ties in the final sort
    names = list(dict.fromkeys([*current_amounts, *previous_amounts]))

    variances = [
        _variance(
            name,
            current_amounts.get(name, 0.0),
            previous_amounts.get(name, 0.0),
            high=25,
            medium=10,
        )
        for name in names
    ]
    meaningful = [v for v in variances if abs(v.percent_change) >= 5]
    return sorted(meaningful, key=lambda v: abs(v.absolute_change), reverse=True)


# ---------------------------------------------------------------------------
# Ratios
# ---------------------------------------------------------------------------


def _share_of_revenue(amount: float, statement: PeriodStatement) -> float:
    if statement.total_revenue > 0:
        return amount / statement.total_revenue * 100
    return 0.0


def _previous_share(
    amount: Optional[float], previous: Optional[PeriodStatement]
) -> Optional[float]:
    if previous is None or amount is None or previous.total_revenue <= 0:
        return None
    return amount / previous.total_revenue * 100


def _ratio_trend(current: float, previous: Optional[float]) -> RatioTrend:
    """Higher is better: more than 1 point up is improving."""
    if previous is None:
        return "stable"
    diff = current - previous
    if diff > 1:
        return "improving"
    if diff < -1:
        return "declining"
    return "stable"


def _inverted_ratio_trend(current: float, previous: Optional[float]) -> RatioTrend:
    """Lower is better: more than 1 point down is improving."""
    if previous is None:
        return "stable"
    if current < previous - 1:
        return "improving"
    if current > previous + 1:
        return "declining"
    return "stable"


def _optional_round(value: Optional[float]) -> Optional[float]:
    return None if value is None else round1(value)


def compute_ratios(
    current: PeriodStatement,
    previous: Optional[PeriodStatement] = None,
    cash_position: Optional[CashPosition] = None,
) -> list[RatioResult]:
    """
    Compute the health signals for the current period.

    Returns, in order:
        - Gross Margin    (gross profit / revenue, higher is better),
        - Profit Margin   (net income / revenue, higher is better),
        - Expense Ratio   (total expenses / revenue, lower is better),
        - Revenue Growth  (only when the previous period has nonzero
          revenue; +/- 2% bands),
        - Cash Runway     (only when a cash position is known and the
          period has positive expenses; months, capped at 99).
    """
    ratios: list[RatioResult] = []

    gross_margin = _share_of_revenue(current.gross_profit, current)
    prev_gross_margin = _previous_share(
        previous.gross_profit if previous else None, previous
    )
    ratios.append(
        RatioResult(
            name=GROSS_MARGIN,
            value=round1(gross_margin),
            previous_value=_optional_round(prev_gross_margin),
            trend=_ratio_trend(gross_margin, prev_gross_margin),
            description="How much you keep from each sale after direct costs",
        )
    )

    net_margin = _share_of_revenue(current.net_income, current)
    prev_net_margin = _previous_share(
        previous.net_income if previous else None, previous
    )
    ratios.append(
        RatioResult(
            name=PROFIT_MARGIN,
            value=round1(net_margin),
            previous_value=_optional_round(prev_net_margin),
            trend=_ratio_trend(net_margin, prev_net_margin),
            description="What's left after all expenses, as a share of revenue",
        )
    )

    expense_ratio = _share_of_revenue(current.total_expenses, current)
    prev_expense_ratio = _previous_share(
        previous.total_expenses if previous else None, previous
    )
    ratios.append(
        RatioResult(
            name=EXPENSE_RATIO,
            value=round1(expense_ratio),
            previous_value=_optional_round(prev_expense_ratio),
            trend=_inverted_ratio_trend(expense_ratio, prev_expense_ratio),
            description="Your regular costs as a share of revenue",
        )
    )

    if previous is not None and previous.total_revenue != 0:
        growth = _percent_change(current.total_revenue, previous.total_revenue)
        if growth > 2:
            growth_trend: RatioTrend = "improving"
        elif growth < -2:
            growth_trend = "declining"
        else:
            growth_trend = "stable"
        ratios.append(
            RatioResult(
                name=REVENUE_GROWTH,
                value=round1(growth),
                trend=growth_trend,
                description="How this period compares to the previous one",
            )
        )

    if cash_position is not None and current.total_expenses > 0:
        monthly_burn = current.total_expenses - current.total_revenue
        if monthly_burn > 0:
            runway = min(cash_position.current_balance / monthly_burn, MAX_RUNWAY_MONTHS)
        else:
            runway = MAX_RUNWAY_MONTHS

        if runway < 3:
            runway_trend: RatioTrend = "declining"
        elif runway < 6:
            runway_trend = "stable"
        else:
            runway_trend = "improving"

        ratios.append(
            RatioResult(
                name=CASH_RUNWAY,
                value=round1(runway),
                trend=runway_trend,
                unit="months",
                description="Months your cash will last at current spending",
            )
        )

    return ratios


# ---------------------------------------------------------------------------
# Trends
# ---------------------------------------------------------------------------

# (attribute on PeriodStatement, display label)
TREND_METRICS: tuple[tuple[str, str], ...] = (
    ("total_revenue", "Revenue"),
    ("total_expenses", "Expenses"),
    ("net_income", "Profit"),
    ("gross_profit", "Gross Profit"),
)


def classify_direction(values: Sequence[float]) -> TrendDirection:
    """
    Classify a value sequence from its period-to-period steps.

    A step is "up" when it exceeds 3% of the prior value's magnitude and
    "down" when it is below -3%. At least 70% up steps is increasing, 70%
    down steps is decreasing, and a mix of up and down steps covering 70%
    of all steps is volatile. Anything else is stable.
    """
    if len(values) < 2:
        return "stable"

    ups = 0
    downs = 0
    for prior, value in zip(values, values[1:]):
        change = value - prior
        threshold = abs(prior) * TREND_STEP_THRESHOLD
        if change > threshold:
            ups += 1
        elif change < -threshold:
            downs += 1

    steps = len(values) - 1
    if ups >= steps * TREND_MAJORITY:
        return "increasing"
    if downs >= steps * TREND_MAJORITY:
        return "decreasing"
    if ups > 0 and downs > 0 and ups + downs >= steps * TREND_MAJORITY:
        return "volatile"
    return "stable"


def describe_trend(metric: str, direction: str, periods: int, magnitude: float) -> str:
    if direction == "increasing":
        verb = "been growing"
    elif direction == "decreasing":
        verb = "been declining"
    else:
        verb = "been fluctuating"
    return (
        f"{metric} has {verb} over the past {periods} months "
        f"({format_number(magnitude)}% total change)."
    )


def detect_trends(periods: Sequence[PeriodStatement]) -> list[TrendResult]:
    """
    Detect non-stable trends over two or more ordered periods.

    The magnitude is the absolute percent change from the first to the
    last period (0 when the first value is 0), not a sum of steps.
    """
    if len(periods) < 2:
        return []

    trends: list[TrendResult] = []
    for attribute, label in TREND_METRICS:
        values = [getattr(p, attribute) for p in periods]
        direction = classify_direction(values)
        if direction == "stable":
            continue

        first, last = values[0], values[-1]
        magnitude = round1(abs(_percent_change(last, first)))
        trends.append(
            TrendResult(
                metric=label,
                direction=direction,
                periods=len(periods),
                magnitude=magnitude,
                description=describe_trend(label, direction, len(periods), magnitude),
            )
        )

    return trends


# ---------------------------------------------------------------------------
# Anomalies
# ---------------------------------------------------------------------------


def _anomaly_severity(deviation_pct: float) -> Significance:
    if deviation_pct > 50:
        return "high"
    if deviation_pct > 25:
        return "medium"
    return "low"


def detect_anomalies(periods: Sequence[PeriodStatement]) -> list[AnomalyResult]:
    """
    Flag expense categories of the latest period that fall outside their
    own historical range.

    Requires at least three periods. For each category of the latest
    period, the amounts of that category in all prior periods form the
    history (categories seen fewer than twice are skipped). The expected
    range is [max(0, mean - 1.5 sd), mean + 1.5 sd] with the population
    standard deviation. Severity follows the deviation from the mean:
    > 50% is high, > 25% is medium, anything else is low.

    Results are sorted high -> medium -> low; ties keep discovery order.
    """
    if len(periods) < ANOMALY_MIN_PERIODS:
        return []

    latest = periods[-1]
    history = periods[:-1]
    anomalies: list[AnomalyResult] = []

    for category in latest.expense_categories:
        observed = [p.category_amount(category.name) for p in history]
        values = pd.Series([v for v in observed if v is not None], dtype="float64")
        if len(values) < ANOMALY_MIN_HISTORY:
            continue

        mean = float(values.mean())
        std = float(values.std(ddof=0))
        upper = mean + ANOMALY_STD_MULTIPLIER * std
        lower = max(0.0, mean - ANOMALY_STD_MULTIPLIER * std)

        if lower <= category.amount <= upper:
            continue

        if mean != 0:
            deviation = abs((category.amount - mean) / mean * 100)
        else:
            deviation = math.inf

        expected_min = round0(lower)
        expected_max = round0(upper)
        relation = "higher" if category.amount > mean else "lower"
        anomalies.append(
            AnomalyResult(
                metric=category.name,
                value=category.amount,
                expected_min=float(expected_min),
                expected_max=float(expected_max),
                severity=_anomaly_severity(deviation),
                description=(
                    f"{category.name} is {relation} than usual. Expected range: "
                    f"{format_money(expected_min)}–{format_money(expected_max)}, "
                    f"actual: {format_money(category.amount)}."
                ),
            )
        )

    return sorted(anomalies, key=lambda a: SEVERITY_ORDER[a.severity])


# ---------------------------------------------------------------------------
# Metrics context
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class MetricsContext:
    """
    Everything the explanation layer is allowed to talk about.

    ``variances`` holds the headline variances; ``expense_variances`` the
    filtered expense category variances.
    """

    current: PeriodStatement
    previous: Optional[PeriodStatement]
    variances: tuple[VarianceResult, ...] = ()
    expense_variances: tuple[VarianceResult, ...] = ()
    ratios: tuple[RatioResult, ...] = ()
    trends: tuple[TrendResult, ...] = ()
    anomalies: tuple[AnomalyResult, ...] = ()


def compute_metrics(
    history: Sequence[PeriodStatement],
    cash_position: Optional[CashPosition] = None,
) -> MetricsContext:
    """
    Run every metrics engine operation over ordered period statements.

    The last statement is the current period and the one before it, if
    any, the previous period. Variances need both; trends and anomalies
    use the whole history.
    """
    if not history:
        raise ValueError("compute_metrics requires at least one PeriodStatement.")

    current = history[-1]
    previous = history[-2] if len(history) >= 2 else None

    if previous is not None:
        variances = compute_variances(current, previous)
        expense_variances = compute_expense_variances(current, previous)
    else:
        variances = []
        expense_variances = []

    return MetricsContext(
        current=current,
        previous=previous,
        variances=tuple(variances),
        expense_variances=tuple(expense_variances),
        ratios=tuple(compute_ratios(current, previous, cash_position)),
        trends=tuple(detect_trends(history)),
        anomalies=tuple(detect_anomalies(history)),
    )
