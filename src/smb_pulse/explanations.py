# SMB Pulse - Business health interpretation for SMBs
# Copyright (c) 2025 Maxence Bernard (maxencebernardhub)
# Licensed under the MIT License. See LICENSE file for details.

"""
Explanation gateway for SMB Pulse.

The gateway turns deterministic metrics into a short, ordered list of
``Insight`` objects. The contract between computation and generated text
is strict:

- ``summary`` and ``evidence`` are always built here, from the numeric
  results of the metrics engine, never from generated text;
- ``action`` is the only field a text-generation backend may originate
  (one short piece of advice, never a number);
- every backend call is independent: a failed or rejected call only
  leaves that insight without an ``action``, it never aborts the batch.

Insight categories, always emitted in this order:

1. variance       one insight for all significant headline variances
                  (Cost of Goods Sold excluded, its move is implied by
                  Gross Profit),
2. trend          one insight per detected trend (at most two),
3. anomaly        one insight per expense anomaly (at most two),
4. health_signal  one roll-up insight for all declining ratios.

Backend calls for one gateway run may execute concurrently; results are
placed back by position so completion order never changes the output.

An advice text that mentions a number absent from the prompt it was
generated from is discarded, like a failed call.

When the whole gateway is unavailable, ``fallback_insights()`` produces a
template-only list (one insight per non-low variance) tagged with a
distinguishable ``<version>-fallback`` prompt version.
"""

import logging
import re
from collections.abc import Callable, Mapping, Sequence
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from typing import Any, Literal, Optional

from .issues import Issue, IssueSeverity
from .llm import TextGenerationRequest, TextGenerator
from .metrics import (
    COGS,
    NET_INCOME,
    REVENUE,
    TOTAL_EXPENSES,
    AnomalyResult,
    MetricsContext,
    RatioResult,
    TrendResult,
    VarianceResult,
    format_money,
    format_number,
    format_ratio_value,
)

logger = logging.getLogger(__name__)

InsightType = Literal["variance", "trend", "anomaly", "health_signal", "issue"]
Confidence = Literal["high", "medium", "low"]

DEFAULT_PROMPT_VERSION = "v1.0"
FALLBACK_SUFFIX = "-fallback"

MAX_TREND_INSIGHTS = 2
MAX_ANOMALY_INSIGHTS = 2
TOP_CATEGORIES_IN_PROMPT = 5

SYSTEM_DIRECTIVE = """You are the Business Health Interpreter, a financial assistant for small business owners.

CORE RULES:
1. NEVER generate, estimate, or fabricate any numbers, dollar figures, or percentages. Only reference the exact figures provided in the data.
2. Speak like a knowledgeable friend, NOT an accountant.
3. Lead with the implication, not the data point.
4. Use active voice: "Your costs went up" not "An increase was observed."
5. Never use financial jargon without explaining it in plain language.
6. Keep responses concise: 2-3 short paragraphs maximum, or a single short sentence when asked for one next step.
7. When referencing financial terms, translate them:
   - Gross Margin -> "How much you keep from each sale after direct costs"
   - Net Income -> "What's left after all expenses" (say "profit")
   - Burn Rate -> "How fast you're spending cash" (say "spending")
   - Cash Runway -> "How long your cash will last at current spending"
   - OpEx -> "Your regular costs to keep the business running"
   - Accounts Receivable -> "Money customers owe you"

FORMATTING:
- Use plain text only, no markdown headers.
- Separate paragraphs with blank lines.
- Use bullet points sparingly, only for lists of 3+ items."""


@dataclass(frozen=True)
class Insight:
    """Natural-language explanation of one deterministic finding."""

    id: str
    type: InsightType
    summary: str
    evidence: str
    confidence: Confidence
    prompt_version: str
    generated_at: str
    is_stale: bool = False
    action: Optional[str] = None
    severity: Optional[IssueSeverity] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type,
            "summary": self.summary,
            "evidence": self.evidence,
            "confidence": self.confidence,
            "action": self.action,
            "severity": self.severity,
            "promptVersion": self.prompt_version,
            "generatedAt": self.generated_at,
            "isStale": self.is_stale,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Insight":
        return cls(
            id=str(data["id"]),
            type=data["type"],
            summary=str(data["summary"]),
            evidence=str(data["evidence"]),
            confidence=data["confidence"],
            action=data.get("action"),
            severity=data.get("severity"),
            prompt_version=str(data["promptVersion"]),
            generated_at=str(data["generatedAt"]),
            is_stale=bool(data.get("isStale", False)),
        )


# ---------------------------------------------------------------------------
# Numeric fidelity
# ---------------------------------------------------------------------------

_NUMBER_RE = re.compile(r"\d[\d,]*(?:\.\d+)?")


def _numbers_in(text: str) -> set[str]:
    found: set[str] = set()
    for token in _NUMBER_RE.findall(text):
        normalized = token.replace(",", "").rstrip(".")
        if "." in normalized:
            normalized = normalized.rstrip("0").rstrip(".")
        found.add(normalized)
    return found


def ungrounded_numbers(text: str, context: str) -> set[str]:
    """
    Return the numbers mentioned in ``text`` that do not appear in
    ``context``.

    Thousands separators and trailing decimal zeros are ignored. Single
    digit numbers ("2 options", "1 step") are tolerated.
    """
    allowed = _numbers_in(context)
    return {n for n in _numbers_in(text) if len(n) > 1 and n not in allowed}


# ---------------------------------------------------------------------------
# Deterministic text
# ---------------------------------------------------------------------------


def _slug(name: str) -> str:
    return re.sub(r"[^a-z0-9]+", "-", name.strip().lower()).strip("-")


def _signed_pct(variance: VarianceResult) -> str:
    sign = "+" if variance.direction == "up" else ""
    return f"{sign}{format_number(variance.percent_change)}%"


def variance_summary(variances: Sequence[VarianceResult]) -> str:
    """Headline sentence for a group of significant variances."""
    by_metric = {v.metric: v for v in variances}

    net_income = by_metric.get(NET_INCOME)
    if net_income is not None and net_income.direction == "down":
        return (
            f"Your profit dropped {format_number(abs(net_income.percent_change))}% "
            f"compared to last month"
        )
    if net_income is not None and net_income.direction == "up":
        return (
            f"Your profit increased {format_number(net_income.percent_change)}% "
            f"compared to last month"
        )

    revenue = by_metric.get(REVENUE)
    if revenue is not None and revenue.direction != "flat":
        verb = "grew" if revenue.direction == "up" else "declined"
        return f"Revenue {verb} {format_number(abs(revenue.percent_change))}% this period"

    return "Several financial metrics changed significantly this period"


def variance_evidence(variances: Sequence[VarianceResult]) -> str:
    return ". ".join(
        f"{v.metric}: {format_money(v.previous_value)} → "
        f"{format_money(v.current_value)} ({_signed_pct(v)})"
        for v in variances
    )


def ratio_evidence(ratios: Sequence[RatioResult]) -> str:
    parts = []
    for r in ratios:
        text = f"{r.name}: {format_ratio_value(r.value, r.unit)}"
        if r.previous_value is not None:
            text += f" (was {format_ratio_value(r.previous_value, r.unit)})"
        parts.append(text)
    return ". ".join(parts)


def _variance_prompt(variances: Sequence[VarianceResult], context: MetricsContext) -> str:
    lines = "\n".join(
        f"• {v.metric}: {format_money(v.current_value)} ({v.direction} "
        f"{format_number(abs(v.percent_change))}% from {format_money(v.previous_value)})"
        for v in variances
    )
    categories = "\n".join(
        f"• {c.name}: {format_money(c.amount)}"
        for c in context.current.expense_categories[:TOP_CATEGORIES_IN_PROMPT]
    )
    return (
        "Based on these metric changes, suggest ONE actionable next step for the "
        "business owner (1-2 sentences max):\n\n"
        f"{lines}\n\n"
        "Top expense categories this period:\n"
        f"{categories or '• (none reported)'}\n\n"
        "Only suggest actions using the data above. Do NOT invent numbers."
    )


def _trend_prompt(trend: TrendResult, ratios: Sequence[RatioResult]) -> str:
    ratio_lines = "\n".join(
        f"• {r.name}: {format_ratio_value(r.value, r.unit)}" for r in ratios
    )
    return (
        f"A business's {trend.metric} has been {trend.direction} for "
        f"{trend.periods} months ({format_number(trend.magnitude)}% total change).\n\n"
        "Current ratios:\n"
        f"{ratio_lines}\n\n"
        "Suggest ONE specific, actionable next step (1-2 sentences max). "
        "Do NOT generate numbers."
    )


def _anomaly_prompt(anomaly: AnomalyResult) -> str:
    return (
        f"An expense category looks unusual this period: {anomaly.description}\n\n"
        "Suggest ONE specific check the business owner should do to find out "
        "whether this is a one-time event or a new pattern (1 sentence). "
        "Do NOT generate numbers."
    )


def _health_prompt(declining: Sequence[RatioResult]) -> str:
    lines = "\n".join(
        f"• {r.name}: {format_ratio_value(r.value, r.unit)} ({r.description})"
        for r in declining
    )
    return (
        "These health signals are trending in the wrong direction:\n\n"
        f"{lines}\n\n"
        "Suggest ONE practical next step to address the most important one "
        "(1-2 sentences max). Do NOT generate numbers."
    )


def _anomaly_fallback_action(anomaly: AnomalyResult) -> str:
    return (
        f"Review recent {anomaly.metric.lower()} to check if this is a one-time "
        f"event or a new pattern."
    )


# ---------------------------------------------------------------------------
# Gateway
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class _Draft:
    """An insight waiting for its optional generated action."""

    insight: Insight
    prompt: Optional[str]
    fallback_action: Optional[str] = None


class ExplanationGateway:
    """
    Build insights from metrics, asking a text generator for advice only.

    Args:
        generator: Backend implementing ``generate(TextGenerationRequest)``.
        prompt_version: Version tag stamped on every insight.
        max_output_tokens: Output budget of each advice call.
        temperature: Sampling temperature of each advice call (kept low).
        max_workers: Maximum number of concurrent advice calls.
        clock: Returns the generation timestamp (UTC now by default).
    """

    def __init__(
        self,
        generator: TextGenerator,
        prompt_version: str = DEFAULT_PROMPT_VERSION,
        max_output_tokens: int = 200,
        temperature: float = 0.2,
        max_workers: int = 4,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self.generator = generator
        self.prompt_version = prompt_version
        self.max_output_tokens = max_output_tokens
        self.temperature = temperature
        self.max_workers = max(1, max_workers)
        self.clock = clock or (lambda: datetime.now(timezone.utc))

    def _request(self, prompt: str) -> TextGenerationRequest:
        return TextGenerationRequest(
            system_directive=SYSTEM_DIRECTIVE,
            prompt=prompt,
            max_output_tokens=self.max_output_tokens,
            temperature=self.temperature,
        )

    def _advice(self, insight_id: str, prompt: str) -> Optional[str]:
        """Run one advice call; any failure yields None."""
        try:
            text = self.generator.generate(self._request(prompt)).strip()
        except Exception as exc:  # noqa: BLE001
            logger.warning("Advice generation failed for %s: %s", insight_id, exc)
            return None

        if not text:
            return None

        invented = ungrounded_numbers(text, prompt)
        if invented:
            logger.warning(
                "Discarding advice for %s, it mentions numbers not in the data: %s",
                insight_id,
                ", ".join(sorted(invented)),
            )
            return None
        return text

    def _drafts(
        self,
        context: MetricsContext,
        issues: Sequence[Issue],
        generated_at: str,
    ) -> list[_Draft]:
        issue_by_id = {i.id: i for i in issues}

        def severity_of(*issue_ids: str) -> Optional[IssueSeverity]:
            for issue_id in issue_ids:
                if issue_id in issue_by_id:
                    return issue_by_id[issue_id].severity
            return None

        def make(**fields: Any) -> Insight:
            return Insight(
                prompt_version=self.prompt_version,
                generated_at=generated_at,
                is_stale=False,
                **fields,
            )

        drafts: list[_Draft] = []

        # 1) Significant headline variances
        significant = [
            v
            for v in context.variances
            if v.significance != "low" and v.metric != COGS
        ]
        if significant:
            drafts.append(
                _Draft(
                    insight=make(
                        id="ins-variance",
                        type="variance",
                        summary=variance_summary(significant),
                        evidence=variance_evidence(significant),
                        confidence=(
                            "high"
                            if any(v.significance == "high" for v in significant)
                            else "medium"
                        ),
                        severity=(
                            severity_of("iss-expense-revenue")
                            if any(v.metric == TOTAL_EXPENSES for v in significant)
                            else None
                        ),
                    ),
                    prompt=_variance_prompt(significant, context),
                )
            )

        # 2) Trends
        for trend in context.trends[:MAX_TREND_INSIGHTS]:
            is_margin_decline = (
                trend.metric == "Gross Profit" and trend.direction == "decreasing"
            )
            drafts.append(
                _Draft(
                    insight=make(
                        id=f"ins-trend-{_slug(trend.metric)}",
                        type="trend",
                        summary=trend.description,
                        evidence=(
                            f"{trend.metric} has moved "
                            f"{format_number(trend.magnitude)}% over "
                            f"{trend.periods} months."
                        ),
                        confidence="high" if trend.periods >= 3 else "medium",
                        severity=(
                            severity_of("iss-margin-decline")
                            if is_margin_decline
                            else None
                        ),
                    ),
                    prompt=_trend_prompt(trend, context.ratios),
                )
            )

        # 3) Anomalies
        for anomaly in context.anomalies[:MAX_ANOMALY_INSIGHTS]:
            midpoint = (anomaly.expected_min + anomaly.expected_max) / 2
            level = "high" if anomaly.value > midpoint else "low"
            slug = _slug(anomaly.metric)
            drafts.append(
                _Draft(
                    insight=make(
                        id=f"ins-anomaly-{slug}",
                        type="anomaly",
                        summary=f"{anomaly.metric} is unusually {level} this period",
                        evidence=anomaly.description,
                        confidence="high" if anomaly.severity == "high" else "medium",
                        severity=severity_of(f"iss-anomaly-{slug}"),
                    ),
                    prompt=_anomaly_prompt(anomaly),
                    fallback_action=_anomaly_fallback_action(anomaly),
                )
            )

        # 4) Declining health signals
        declining = [r for r in context.ratios if r.trend == "declining"]
        if declining:
            count = len(declining)
            drafts.append(
                _Draft(
                    insight=make(
                        id="ins-health",
                        type="health_signal",
                        summary=(
                            f"{count} health signal{'s' if count > 1 else ''} "
                            f"trending downward"
                        ),
                        evidence=ratio_evidence(declining),
                        confidence="high",
                        severity=severity_of("iss-cash-runway"),
                    ),
                    prompt=_health_prompt(declining),
                )
            )

        return drafts

    def generate_insights(
        self,
        context: MetricsContext,
        issues: Sequence[Issue] = (),
    ) -> list[Insight]:
        """
        Build the ordered insight list for one analysis run.

        Args:
            context: Metrics engine results and the statements they came from.
            issues: Synthesized issues; an insight describing the same root
                cause carries the issue severity.

        Returns:
            Insights in category order: variance, trends, anomalies,
            health signals.
        """
        generated_at = self.clock().isoformat()
        drafts = self._drafts(context, issues, generated_at)
        if not drafts:
            return []

        with ThreadPoolExecutor(max_workers=min(self.max_workers, len(drafts))) as pool:
            futures = [
                pool.submit(self._advice, d.insight.id, d.prompt) if d.prompt else None
                for d in drafts
            ]
            actions = [f.result() if f is not None else None for f in futures]

        insights: list[Insight] = []
        for draft, action in zip(drafts, actions):
            chosen = action if action is not None else draft.fallback_action
            insights.append(replace(draft.insight, action=chosen))

        logger.debug(
            "Generated %d insights (%d with advice)",
            len(insights),
            sum(1 for a in actions if a is not None),
        )
        return insights


def fallback_insights(
    variances: Sequence[VarianceResult],
    prompt_version: str = DEFAULT_PROMPT_VERSION,
    generated_at: Optional[datetime] = None,
) -> list[Insight]:
    """
    Template-only insights used when the whole gateway is unavailable.

    One insight per variance whose significance is not low; confidence is
    'high' for high significance and 'medium' otherwise.
    """
    stamp = (generated_at or datetime.now(timezone.utc)).isoformat()
    version = f"{prompt_version}{FALLBACK_SUFFIX}"

    insights: list[Insight] = []
    for v in variances:
        if v.significance == "low":
            continue
        verb = "increased" if v.direction == "up" else "decreased"
        insights.append(
            Insight(
                id=f"ins-{_slug(v.metric)}",
                type="variance",
                summary=(
                    f"{v.metric} {verb} {format_number(abs(v.percent_change))}% "
                    f"compared to last month"
                ),
                evidence=(
                    f"{v.metric}: {format_money(v.previous_value)} → "
                    f"{format_money(v.current_value)}"
                ),
                confidence="high" if v.significance == "high" else "medium",
                prompt_version=version,
                generated_at=stamp,
                is_stale=False,
            )
        )
    return insights
