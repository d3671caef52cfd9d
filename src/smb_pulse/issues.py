# SMB Pulse - Business health interpretation for SMBs
# Copyright (c) 2025 Maxence Bernard (maxencebernardhub)
# Licensed under the MIT License. See LICENSE file for details.

"""
Issue synthesis for SMB Pulse.

Issues are the short list of findings shown to the owner as "needs
attention". They are built from metrics engine results by a fixed rule
cascade:

1. Cash runway below 3 months                       -> critical   (root cause 'cash')
2. Expenses growing more than 5 points faster than
   revenue (critical above 15 points)               -> warning    (root cause 'expense_revenue')
3. Gross profit decreasing for 2+ periods
   (warning from 3 periods, info otherwise)         -> info/warn  (root cause 'margin')
4. The two most severe expense anomalies
   (warning when high severity, info otherwise)     -> info/warn  (root cause per category)

Each rule is guarded by its root-cause tag so the same underlying driver
never produces two issues. The final list is sorted by severity
(critical, warning, info) then by descending current value, and capped
at five entries.

Issue ids are stable per root cause (e.g. 'iss-cash-runway'), so callers
can de-duplicate issues across runs.
"""

import re
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Literal, Optional

from .metrics import (
    CASH_RUNWAY,
    REVENUE,
    TOTAL_EXPENSES,
    AnomalyResult,
    RatioResult,
    TrendResult,
    VarianceResult,
    format_number,
    round1,
)

IssueSeverity = Literal["critical", "warning", "info"]

ISSUE_SEVERITY_ORDER: dict[str, int] = {"critical": 0, "warning": 1, "info": 2}
MAX_ISSUES = 5
MAX_ANOMALY_ISSUES = 2
CASH_RUNWAY_THRESHOLD = 3.0


@dataclass(frozen=True)
class Issue:
    """User-facing finding synthesized from metrics engine results."""

    id: str
    severity: IssueSeverity
    title: str
    description: str
    metric: str
    current_value: float
    first_detected_at: str
    periods_active: int
    root_cause: str
    threshold: Optional[float] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "severity": self.severity,
            "title": self.title,
            "description": self.description,
            "metric": self.metric,
            "currentValue": self.current_value,
            "threshold": self.threshold,
            "firstDetectedAt": self.first_detected_at,
            "periodsActive": self.periods_active,
            "rootCause": self.root_cause,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Issue":
        threshold = data.get("threshold")
        return cls(
            id=str(data["id"]),
            severity=data["severity"],
            title=str(data["title"]),
            description=str(data["description"]),
            metric=str(data["metric"]),
            current_value=float(data["currentValue"]),
            threshold=None if threshold is None else float(threshold),
            first_detected_at=str(data["firstDetectedAt"]),
            periods_active=int(data["periodsActive"]),
            root_cause=str(data.get("rootCause") or data["id"]),
        )


def _find(items: Sequence[Any], attribute: str, value: str) -> Optional[Any]:
    for item in items:
        if getattr(item, attribute) == value:
            return item
    return None


def _slug(name: str) -> str:
    return re.sub(r"\s+", "-", name.strip().lower())


def generate_issues(
    variances: Sequence[VarianceResult],
    ratios: Sequence[RatioResult],
    trends: Sequence[TrendResult],
    anomalies: Sequence[AnomalyResult],
    detected_at: Optional[datetime] = None,
) -> list[Issue]:
    """
    Build the prioritized, de-duplicated issue list.

    Args:
        variances: Headline variances (Revenue and Total Expenses are used).
        ratios: Health signals (Cash Runway is used). The runway is short when
            its rounded value is below the threshold or its trend is
            "declining", which is set from the unrounded runway; a runway of
            2.996 months displays as 3.0 but still raises the issue.
        trends: Detected trends (a decreasing Gross Profit trend is used).
        anomalies: Anomalies, already sorted by severity.
        detected_at: Timestamp stamped on new issues; defaults to now (UTC).
            It is the only non-deterministic field of an issue.

    Returns:
        At most five issues, critical first, never two sharing a root cause.
    """
    stamp = (detected_at or datetime.now(timezone.utc)).isoformat()
    issues: list[Issue] = []
    root_causes: set[str] = set()

    # 1) Cash runway
    runway = _find(ratios, "name", CASH_RUNWAY)
    if runway is not None and (
        runway.value < CASH_RUNWAY_THRESHOLD or runway.trend == "declining"
    ):
        issues.append(
            Issue(
                id="iss-cash-runway",
                severity="critical",
                title="Cash runway is getting short",
                description=(
                    f"At current spending, your cash will last about "
                    f"{format_number(runway.value)} months. Consider reducing expenses "
                    f"or increasing revenue."
                ),
                metric="cash_runway",
                current_value=runway.value,
                threshold=CASH_RUNWAY_THRESHOLD,
                first_detected_at=stamp,
                periods_active=1,
                root_cause="cash",
            )
        )
        root_causes.add("cash")

    # 2) Expenses growing faster than revenue
    revenue = _find(variances, "metric", REVENUE)
    expenses = _find(variances, "metric", TOTAL_EXPENSES)
    if (
        revenue is not None
        and expenses is not None
        and "expense_revenue" not in root_causes
    ):
        gap = expenses.percent_change - revenue.percent_change
        if gap > 5:
            if revenue.direction == "up":
                revenue_text = f"only grew {format_number(revenue.percent_change)}%"
            else:
                revenue_text = f"declined {format_number(abs(revenue.percent_change))}%"
            issues.append(
                Issue(
                    id="iss-expense-revenue",
                    severity="critical" if gap > 15 else "warning",
                    title="Expenses growing faster than revenue",
                    description=(
                        f"Your costs grew {format_number(expenses.percent_change)}% while "
                        f"revenue {revenue_text}. This gap is squeezing your margins."
                    ),
                    metric="expense_to_revenue_ratio",
                    current_value=expenses.percent_change,
                    threshold=round1(revenue.percent_change + 5),
                    first_detected_at=stamp,
                    periods_active=1,
                    root_cause="expense_revenue",
                )
            )
            root_causes.add("expense_revenue")

    # 3) Sustained gross profit decline
    margin_trend = next(
        (
            t
            for t in trends
            if t.metric == "Gross Profit" and t.direction == "decreasing"
        ),
        None,
    )
    if (
        margin_trend is not None
        and margin_trend.periods >= 2
        and "margin" not in root_causes
    ):
        issues.append(
            Issue(
                id="iss-margin-decline",
                severity="warning" if margin_trend.periods >= 3 else "info",
                title=f"Profit margin declining for {margin_trend.periods} months",
                description=(
                    f"Your gross profit has been shrinking for "
                    f"{margin_trend.periods} consecutive months, dropping a total "
                    f"of {format_number(margin_trend.magnitude)}%."
                ),
                metric="gross_margin_trend",
                current_value=margin_trend.magnitude,
                first_detected_at=stamp,
                periods_active=margin_trend.periods,
                root_cause="margin",
            )
        )
        root_causes.add("margin")

    # 4) Spending anomalies
    for anomaly in anomalies[:MAX_ANOMALY_ISSUES]:
        root_key = f"anomaly-{anomaly.metric}"
        if root_key in root_causes:
            continue
        issues.append(
            Issue(
                id=f"iss-anomaly-{_slug(anomaly.metric)}",
                severity="warning" if anomaly.severity == "high" else "info",
                title=f"Unusual spending on {anomaly.metric}",
                description=anomaly.description,
                metric=f"anomaly_{anomaly.metric}",
                current_value=anomaly.value,
                first_detected_at=stamp,
                periods_active=1,
                root_cause=root_key,
            )
        )
        root_causes.add(root_key)

    issues.sort(key=lambda i: (ISSUE_SEVERITY_ORDER[i.severity], -i.current_value))
    return issues[:MAX_ISSUES]
