# SMB Pulse - Business health interpretation for SMBs
# Copyright (c) 2025 Maxence Bernard (maxencebernardhub)
# Licensed under the MIT License. See LICENSE file for details.

"""
View utilities for SMB Pulse.

This module turns analysis results (variances, ratios, trends, anomalies,
issues and insights) into pandas DataFrames with a stable column order,
ready to be printed by the CLI (``to_string``) or exported to CSV.

Every helper returns an empty DataFrame with the same columns when given
no results, so callers never have to special-case empty sections.
"""

from collections.abc import Sequence

import pandas as pd

from .explanations import Insight
from .issues import Issue
from .metrics import AnomalyResult, RatioResult, TrendResult, VarianceResult

VARIANCE_COLUMNS = [
    "metric",
    "previous",
    "current",
    "change",
    "change_pct",
    "direction",
    "significance",
]
RATIO_COLUMNS = ["name", "value", "unit", "previous", "trend", "description"]
TREND_COLUMNS = ["metric", "direction", "periods", "magnitude_pct", "description"]
ANOMALY_COLUMNS = ["metric", "value", "expected_min", "expected_max", "severity"]
ISSUE_COLUMNS = ["severity", "title", "metric", "current_value", "threshold", "periods_active"]
INSIGHT_COLUMNS = ["type", "severity", "confidence", "summary", "evidence", "action"]


def _frame(rows: list[dict[str, object]], columns: list[str]) -> pd.DataFrame:
    if not rows:
        return pd.DataFrame(columns=columns)
    return pd.DataFrame(rows)[columns]


def variances_to_dataframe(variances: Sequence[VarianceResult]) -> pd.DataFrame:
    """One row per variance, in the given order."""
    rows: list[dict[str, object]] = [
        {
            "metric": v.metric,
            "previous": v.previous_value,
            "current": v.current_value,
            "change": v.absolute_change,
            "change_pct": v.percent_change,
            "direction": v.direction,
            "significance": v.significance,
        }
        for v in variances
    ]
    return _frame(rows, VARIANCE_COLUMNS)


def ratios_to_dataframe(ratios: Sequence[RatioResult], decimals: int = 1) -> pd.DataFrame:
    """
    Convert health signals into a DataFrame.

    Values are rounded to ``decimals``; a missing previous value is NaN.
    """
    rows: list[dict[str, object]] = []
    for r in ratios:
        previous = float("nan") if r.previous_value is None else round(r.previous_value, decimals)
        rows.append(
            {
                "name": r.name,
                "value": round(r.value, decimals),
                "unit": r.unit,
                "previous": previous,
                "trend": r.trend,
                "description": r.description,
            }
        )
    return _frame(rows, RATIO_COLUMNS)


def trends_to_dataframe(trends: Sequence[TrendResult]) -> pd.DataFrame:
    rows: list[dict[str, object]] = [
        {
            "metric": t.metric,
            "direction": t.direction,
            "periods": t.periods,
            "magnitude_pct": t.magnitude,
            "description": t.description,
        }
        for t in trends
    ]
    return _frame(rows, TREND_COLUMNS)


def anomalies_to_dataframe(anomalies: Sequence[AnomalyResult]) -> pd.DataFrame:
    rows: list[dict[str, object]] = [
        {
            "metric": a.metric,
            "value": a.value,
            "expected_min": a.expected_min,
            "expected_max": a.expected_max,
            "severity": a.severity,
        }
        for a in anomalies
    ]
    return _frame(rows, ANOMALY_COLUMNS)


def issues_to_dataframe(issues: Sequence[Issue]) -> pd.DataFrame:
    rows: list[dict[str, object]] = [
        {
            "severity": i.severity,
            "title": i.title,
            "metric": i.metric,
            "current_value": i.current_value,
            "threshold": float("nan") if i.threshold is None else i.threshold,
            "periods_active": i.periods_active,
        }
        for i in issues
    ]
    return _frame(rows, ISSUE_COLUMNS)


def insights_to_dataframe(insights: Sequence[Insight]) -> pd.DataFrame:
    """Insights in display order; missing action or severity is an empty string."""
    rows: list[dict[str, object]] = [
        {
            "type": i.type,
            "severity": i.severity or "",
            "confidence": i.confidence,
            "summary": i.summary,
            "evidence": i.evidence,
            "action": i.action or "",
        }
        for i in insights
    ]
    return _frame(rows, INSIGHT_COLUMNS)
