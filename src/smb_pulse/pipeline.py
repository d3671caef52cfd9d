# SMB Pulse - Business health interpretation for SMBs
# Copyright (c) 2025 Maxence Bernard (maxencebernardhub)
# Licensed under the MIT License. See LICENSE file for details.

"""
Analysis pipeline for SMB Pulse.

``run_analysis()`` chains the whole core for one business:

    period statements -> metrics engine -> issue synthesizer
                      -> explanation gateway (or template fallback)

and returns an ``AnalysisBundle``: the plain, JSON-serializable result
object handed to whatever stores or displays it. The bundle can be
written to disk and read back (``to_json`` / ``from_json``) so questions
can later be answered from it without recomputing anything.
"""

import json
import logging
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Optional

from .answers import is_data_stale
from .explanations import (
    DEFAULT_PROMPT_VERSION,
    ExplanationGateway,
    Insight,
    fallback_insights,
)
from .issues import Issue, generate_issues
from .metrics import (
    HEADLINE_METRICS,
    AnomalyResult,
    MetricsContext,
    RatioResult,
    TrendResult,
    VarianceResult,
    compute_metrics,
)
from .statements import CashPosition, PeriodStatement

logger = logging.getLogger(__name__)

__all__ = ["AnalysisBundle", "run_analysis", "is_data_stale"]


@dataclass(frozen=True)
class AnalysisBundle:
    """
    Complete result of one analysis run.

    ``variances`` holds the headline variances followed by the expense
    category variances, the order in which they are displayed;
    ``headline_count`` is the number of headline entries.
    """

    current: PeriodStatement
    previous: Optional[PeriodStatement]
    history: tuple[PeriodStatement, ...]
    cash_position: Optional[CashPosition]
    variances: tuple[VarianceResult, ...]
    ratios: tuple[RatioResult, ...]
    trends: tuple[TrendResult, ...]
    anomalies: tuple[AnomalyResult, ...]
    issues: tuple[Issue, ...]
    insights: tuple[Insight, ...]
    generated_at: str
    headline_count: Optional[int] = None

    def _headline_count(self) -> int:
        if self.headline_count is not None:
            return self.headline_count
        # bundles without a stored count: headline metrics appear once each,
        # in HEADLINE_METRICS order
        count = 0
        position = 0
        for v in self.variances:
            if v.metric not in HEADLINE_METRICS[position:]:
                break
            position = HEADLINE_METRICS.index(v.metric, position) + 1
            count += 1
        return count

    def to_context(self) -> MetricsContext:
        """Rebuild the metrics context used to answer questions."""
        headline_count = self._headline_count()
        return MetricsContext(
            current=self.current,
            previous=self.previous,
            variances=self.variances[:headline_count],
            expense_variances=self.variances[headline_count:],
            ratios=self.ratios,
            trends=self.trends,
            anomalies=self.anomalies,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "generatedAt": self.generated_at,
            "current": self.current.to_dict(),
            "previous": None if self.previous is None else self.previous.to_dict(),
            "history": [s.to_dict() for s in self.history],
            "cashPosition": (
                None if self.cash_position is None else self.cash_position.to_dict()
            ),
            "variances": [v.to_dict() for v in self.variances],
            "ratios": [r.to_dict() for r in self.ratios],
            "trends": [t.to_dict() for t in self.trends],
            "anomalies": [a.to_dict() for a in self.anomalies],
            "issues": [i.to_dict() for i in self.issues],
            "insights": [i.to_dict() for i in self.insights],
            "headlineCount": self._headline_count(),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "AnalysisBundle":
        try:
            current = PeriodStatement.from_dict(data["current"])
        except KeyError as exc:
            raise ValueError("Analysis bundle is missing the 'current' statement.") from exc

        previous_raw = data.get("previous")
        cash_raw = data.get("cashPosition")

        return cls(
            current=current,
            previous=None if previous_raw is None else PeriodStatement.from_dict(previous_raw),
            history=tuple(PeriodStatement.from_dict(s) for s in data.get("history") or []),
            cash_position=None if cash_raw is None else CashPosition.from_dict(cash_raw),
            variances=tuple(VarianceResult.from_dict(v) for v in data.get("variances") or []),
            ratios=tuple(RatioResult.from_dict(r) for r in data.get("ratios") or []),
            trends=tuple(TrendResult.from_dict(t) for t in data.get("trends") or []),
            anomalies=tuple(AnomalyResult.from_dict(a) for a in data.get("anomalies") or []),
            issues=tuple(Issue.from_dict(i) for i in data.get("issues") or []),
            insights=tuple(Insight.from_dict(i) for i in data.get("insights") or []),
            generated_at=str(data.get("generatedAt") or ""),
            headline_count=_optional_count(data.get("headlineCount")),
        )

    def to_json(self, indent: Optional[int] = 2) -> str:
        return json.dumps(self.to_dict(), indent=indent, ensure_ascii=False)

    @classmethod
    def from_json(cls, text: str) -> "AnalysisBundle":
        try:
            data = json.loads(text)
        except json.JSONDecodeError as exc:
            raise ValueError("Analysis bundle is not valid JSON.") from exc
        if not isinstance(data, dict):
            raise ValueError("Analysis bundle JSON root must be an object.")
        return cls.from_dict(data)


def _optional_count(value: Any) -> Optional[int]:
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        return None
    return value


def run_analysis(
    history: Sequence[PeriodStatement],
    cash_position: Optional[CashPosition] = None,
    gateway: Optional[ExplanationGateway] = None,
    now: Optional[datetime] = None,
) -> AnalysisBundle:
    """
    Run the full analysis for ordered period statements.

    Args:
        history: One or more statements, oldest first. The last one is the
            current period, the one before it the previous period.
        cash_position: Optional cash snapshot (enables Cash Runway).
        gateway: Explanation gateway. When None, or when it raises, the
            template fallback insights are used.
        now: Timestamp stamped on issues and the bundle (UTC now by default).

    Raises:
        ValueError: if ``history`` is empty.
    """
    stamp = now or datetime.now(timezone.utc)

    context = compute_metrics(history, cash_position)
    issues = generate_issues(
        context.variances,
        context.ratios,
        context.trends,
        context.anomalies,
        detected_at=stamp,
    )
    logger.debug(
        "Computed %d variances, %d ratios, %d trends, %d anomalies, %d issues",
        len(context.variances) + len(context.expense_variances),
        len(context.ratios),
        len(context.trends),
        len(context.anomalies),
        len(issues),
    )

    insights: list[Insight]
    if gateway is None:
        insights = fallback_insights(context.variances, DEFAULT_PROMPT_VERSION, stamp)
    else:
        try:
            insights = gateway.generate_insights(context, issues)
        except Exception as exc:  # noqa: BLE001
            logger.warning("Explanation gateway failed, using template insights: %s", exc)
            insights = fallback_insights(context.variances, gateway.prompt_version, stamp)

    return AnalysisBundle(
        current=context.current,
        previous=context.previous,
        history=tuple(history),
        cash_position=cash_position,
        variances=context.variances + context.expense_variances,
        ratios=context.ratios,
        trends=context.trends,
        anomalies=context.anomalies,
        issues=tuple(issues),
        insights=tuple(insights),
        generated_at=stamp.isoformat(),
        headline_count=len(context.variances),
    )
