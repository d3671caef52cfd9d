# SMB Pulse - Business health interpretation for SMBs
# Copyright (c) 2025 Maxence Bernard (maxencebernardhub)
# Licensed under the MIT License. See LICENSE file for details.

"""
Period helpers for SMB Pulse.

This module defines the Period value object attached to every period
statement, and helpers to label periods and build calendar-month periods (used by
the normalizer and the CSV reader).
"""

from calendar import monthrange
from collections.abc import Mapping
from dataclasses import dataclass
from datetime import date
from typing import Any


@dataclass(frozen=True)
class Period:
    """Represents a reporting period with a human-readable label."""

    start: date
    end: date
    label: str

    def to_dict(self) -> dict[str, str]:
        return {
            "start": self.start.isoformat(),
            "end": self.end.isoformat(),
            "label": self.label,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Period":
        start = parse_date(data.get("start"))
        end = parse_date(data.get("end")) if data.get("end") else start
        label = data.get("label") or format_period_label(start, end)
        return cls(start=start, end=end, label=str(label))


def parse_date(raw: Any) -> date:
    if isinstance(raw, date):
        return raw
    try:
        return date.fromisoformat(str(raw)[:10])
    except (TypeError, ValueError) as exc:
        raise ValueError(f"Invalid period date {raw!r}, expected YYYY-MM-DD.") from exc


def format_period_label(start: date, end: date) -> str:
    """
    Build a short display label for a period.

    A period within a single calendar month is labelled like "Jan 2026";
    any longer period is labelled like "Jan – Mar 2026".
    """
    if start.year == end.year and start.month == end.month:
        return start.strftime("%b %Y")
    return f"{start.strftime('%b')} – {end.strftime('%b %Y')}"


def month_period(year: int, month: int) -> Period:
    """Full calendar month."""
    start = date(year, month, 1)
    end = date(year, month, monthrange(year, month)[1])
    return Period(start=start, end=end, label=format_period_label(start, end))
