import math

import pytest

from smb_pulse.explanations import Insight
from smb_pulse.metrics import RatioResult, TrendResult, VarianceResult
from smb_pulse.views import (
    ANOMALY_COLUMNS,
    INSIGHT_COLUMNS,
    ISSUE_COLUMNS,
    RATIO_COLUMNS,
    TREND_COLUMNS,
    VARIANCE_COLUMNS,
    anomalies_to_dataframe,
    insights_to_dataframe,
    issues_to_dataframe,
    ratios_to_dataframe,
    trends_to_dataframe,
    variances_to_dataframe,
)


@pytest.mark.parametrize(
    "helper, columns",
    [
        (variances_to_dataframe, VARIANCE_COLUMNS),
        (ratios_to_dataframe, RATIO_COLUMNS),
        (trends_to_dataframe, TREND_COLUMNS),
        (anomalies_to_dataframe, ANOMALY_COLUMNS),
        (issues_to_dataframe, ISSUE_COLUMNS),
        (insights_to_dataframe, INSIGHT_COLUMNS),
    ],
)
def test_empty_input_keeps_columns(helper, columns) -> None:
    df = helper([])

    assert df.empty
    assert list(df.columns) == columns


def test_variances_keep_order() -> None:
    variances = [
        VarianceResult("Revenue", 120.0, 100.0, 20.0, 20.0, "up", "medium"),
        VarianceResult("Ads", 50.0, 100.0, -50.0, -50.0, "down", "high"),
    ]

    df = variances_to_dataframe(variances)

    assert list(df["metric"]) == ["Revenue", "Ads"]
    assert list(df.columns) == VARIANCE_COLUMNS
    assert df.loc[1, "change_pct"] == -50.0


def test_ratios_are_rounded_and_missing_previous_is_nan() -> None:
    ratios = [
        RatioResult("Gross Margin", 42.46, "stable", "desc", previous_value=40.04),
        RatioResult("Cash Runway", 3.0, "stable", "desc", unit="months"),
    ]

    df = ratios_to_dataframe(ratios, decimals=0)

    assert list(df["value"]) == [42.0, 3.0]
    assert df.loc[0, "previous"] == 40.0
    assert math.isnan(df.loc[1, "previous"])
    assert list(df["unit"]) == ["percent", "months"]


def test_trends_and_insights_frames() -> None:
    trends = [TrendResult("Revenue", "increasing", 4, 33.1, "Revenue has been growing.")]
    insights = [
        Insight(
            id="ins-variance",
            type="variance",
            summary="Revenue grew 20% this period",
            evidence="Revenue: $100 → $120 (+20%)",
            confidence="medium",
            prompt_version="v1.0",
            generated_at="2026-04-01T00:00:00+00:00",
        )
    ]

    assert trends_to_dataframe(trends).loc[0, "magnitude_pct"] == 33.1

    df = insights_to_dataframe(insights)
    assert df.loc[0, "action"] == ""
    assert df.loc[0, "severity"] == ""
    assert list(df.columns) == INSIGHT_COLUMNS
