# SMB Pulse - Business health interpretation for SMBs
# Copyright (c) 2025 Maxence Bernard (maxencebernardhub)
# Licensed under the MIT License. See LICENSE file for details.

"""
Question answering for SMB Pulse.

A free-form question from the owner is answered from the already computed
metrics only. The metrics are serialized into a plain-text context block
(current and previous period, key changes, expense categories, health
ratios, trends, anomalies) and sent to the text generator together with
the shared system directive and one extra instruction: answer from the
context or reply with ``REFUSAL_ANSWER``.

Failures never reach the caller: when the backend raises, the fixed
``FALLBACK_ANSWER`` is returned instead.

Staleness is a caller concern; ``with_staleness_notice()`` is the helper
the CLI uses to prefix answers computed from old data.
"""

import logging
from datetime import datetime, timedelta
from typing import Optional

from .explanations import SYSTEM_DIRECTIVE
from .llm import TextGenerationRequest, TextGenerator
from .metrics import MetricsContext, format_money, format_number, format_ratio_value

logger = logging.getLogger(__name__)

REFUSAL_ANSWER = (
    "I don't have enough information to answer that right now. "
    "You can check your QuickBooks reports directly for this detail."
)
FALLBACK_ANSWER = (
    "I'm having trouble analyzing your data right now. Please try again in a "
    "moment, or check your QuickBooks reports directly for this detail."
)

TOP_CATEGORIES_IN_CONTEXT = 8
DEFAULT_STALE_AFTER_HOURS = 48.0


def build_question_context(context: MetricsContext) -> str:
    """Serialize the metrics bundle into the context block of a question."""
    current = context.current
    parts: list[str] = [
        f"CURRENT PERIOD ({current.period.label}):",
        f"Revenue: {format_money(current.total_revenue)}",
        f"Gross Profit: {format_money(current.gross_profit)}",
        f"Total Expenses: {format_money(current.total_expenses)}",
        f"Net Income (Profit): {format_money(current.net_income)}",
        "",
    ]

    previous = context.previous
    if previous is not None:
        parts.extend(
            [
                f"PREVIOUS PERIOD ({previous.period.label}):",
                f"Revenue: {format_money(previous.total_revenue)}",
                f"Net Income (Profit): {format_money(previous.net_income)}",
                "",
            ]
        )

    parts.append("KEY CHANGES:")
    for v in (*context.variances, *context.expense_variances):
        parts.append(
            f"{v.metric}: {v.direction} {format_number(abs(v.percent_change))}% "
            f"({format_money(v.previous_value)} → {format_money(v.current_value)})"
        )
    parts.append("")

    parts.append("EXPENSE CATEGORIES (this period):")
    for c in current.expense_categories[:TOP_CATEGORIES_IN_CONTEXT]:
        parts.append(f"• {c.name}: {format_money(c.amount)}")
    parts.append("")

    parts.append("HEALTH RATIOS:")
    for r in context.ratios:
        line = f"• {r.name}: {format_ratio_value(r.value, r.unit)}"
        if r.previous_value is not None:
            line += f" (was {format_ratio_value(r.previous_value, r.unit)})"
        parts.append(f"{line} - {r.description}")

    if context.trends:
        parts.append("")
        parts.append("TRENDS:")
        parts.extend(f"• {t.description}" for t in context.trends)

    if context.anomalies:
        parts.append("")
        parts.append("ANOMALIES:")
        parts.extend(f"• {a.description}" for a in context.anomalies)

    return "\n".join(parts)


def build_question_prompt(question: str, context: MetricsContext) -> str:
    return (
        f'A business owner is asking: "{question.strip()}"\n\n'
        "Here is their current financial data (all numbers are pre-computed and "
        "verified, reference them exactly):\n\n"
        f"{build_question_context(context)}\n\n"
        "Answer their question using ONLY the data above. If you cannot answer "
        f'from the available data, say: "{REFUSAL_ANSWER}"\n\n'
        "Remember: NEVER generate or estimate numbers. Only use the exact figures "
        "provided above."
    )


class QueryAnsweringService:
    """
    Answer owner questions from a metrics bundle.

    Args:
        generator: Text-generation backend.
        max_output_tokens: Output budget of one answer.
        temperature: Sampling temperature of one answer.
    """

    def __init__(
        self,
        generator: TextGenerator,
        max_output_tokens: int = 500,
        temperature: float = 0.3,
    ) -> None:
        self.generator = generator
        self.max_output_tokens = max_output_tokens
        self.temperature = temperature

    def answer(self, question: str, context: MetricsContext) -> str:
        """
        Return an answer bounded to ``context``.

        Returns ``REFUSAL_ANSWER`` for an empty question and
        ``FALLBACK_ANSWER`` when the backend fails or returns nothing.
        """
        if not question or not question.strip():
            return REFUSAL_ANSWER

        request = TextGenerationRequest(
            system_directive=SYSTEM_DIRECTIVE,
            prompt=build_question_prompt(question, context),
            max_output_tokens=self.max_output_tokens,
            temperature=self.temperature,
        )
        try:
            text = self.generator.generate(request).strip()
        except Exception as exc:  # noqa: BLE001
            logger.warning("Question answering failed: %s", exc)
            return FALLBACK_ANSWER

        if not text:
            logger.warning("Question answering returned an empty answer.")
            return FALLBACK_ANSWER
        return text


def is_data_stale(
    last_synced_at: Optional[datetime],
    now: datetime,
    stale_after_hours: float = DEFAULT_STALE_AFTER_HOURS,
) -> bool:
    """True when a sync timestamp exists and is older than the freshness window."""
    if last_synced_at is None:
        return False
    return now - last_synced_at > timedelta(hours=stale_after_hours)


def with_staleness_notice(
    answer: str,
    last_synced_at: Optional[datetime],
    now: datetime,
    stale_after_hours: float = DEFAULT_STALE_AFTER_HOURS,
) -> str:
    """Prefix ``answer`` with the sync date when the data is stale."""
    if last_synced_at is None or not is_data_stale(last_synced_at, now, stale_after_hours):
        return answer
    return f"Based on data as of {last_synced_at:%b} {last_synced_at.day}:\n\n{answer}"
