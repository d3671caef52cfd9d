# SMB Pulse - Business health interpretation for SMBs
# Copyright (c) 2025 Maxence Bernard (maxencebernardhub)
# Licensed under the MIT License. See LICENSE file for details.

"""
Canonical financial statement model for SMB Pulse.

Every analysis in SMB Pulse works on the same provider-agnostic shapes:

- ``PeriodStatement``: a profit & loss snapshot for one accounting period
  (revenue, COGS, gross profit, total expenses, net income and a list of
  expense categories),
- ``CashPosition``: a single cash snapshot (not a series).

Invariants
----------
- If the source did not supply gross profit, it is derived as
  ``total_revenue - total_cogs``.
- Expense categories are always sorted by descending absolute amount.
- Missing or non-numeric amounts default to 0.0 instead of raising, so a
  partially filled statement degrades the analysis gracefully rather than
  failing it.

Both classes round-trip through plain dictionaries (``to_dict`` /
``from_dict``) using camelCase keys, which is the shape stored in the
analysis bundle JSON.
"""

from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from datetime import date
from typing import Any, Optional

from .periods import Period, parse_date


def to_amount(value: Any) -> float:
    """Convert a raw amount to float, defaulting to 0.0 when not numeric."""
    if value is None or isinstance(value, bool):
        return 0.0
    try:
        amount = float(value)
    except (TypeError, ValueError):
        return 0.0
    # NaN never compares equal to itself
    if amount != amount:
        return 0.0
    return amount


@dataclass(frozen=True)
class ExpenseCategory:
    """One expense line of a period statement."""

    name: str
    amount: float

    def to_dict(self) -> dict[str, Any]:
        return {"name": self.name, "amount": self.amount}


def sort_categories(categories: Iterable[ExpenseCategory]) -> tuple[ExpenseCategory, ...]:
    """Sort expense categories by descending absolute amount (stable)."""
    return tuple(sorted(categories, key=lambda c: abs(c.amount), reverse=True))


@dataclass(frozen=True)
class PeriodStatement:
    """
    Profit & loss snapshot for one accounting period.

    Use ``PeriodStatement.build()`` (or ``from_dict()``) rather than the
    raw constructor when gross profit may be missing or categories may be
    unsorted; both enforce the model invariants.
    """

    period: Period
    total_revenue: float = 0.0
    total_cogs: float = 0.0
    gross_profit: float = 0.0
    total_expenses: float = 0.0
    net_income: float = 0.0
    expense_categories: tuple[ExpenseCategory, ...] = field(default_factory=tuple)

    @classmethod
    def build(
        cls,
        period: Period,
        total_revenue: Any = 0.0,
        total_cogs: Any = 0.0,
        gross_profit: Any = None,
        total_expenses: Any = 0.0,
        net_income: Any = 0.0,
        expense_categories: Iterable[ExpenseCategory] = (),
    ) -> "PeriodStatement":
        revenue = to_amount(total_revenue)
        cogs = to_amount(total_cogs)
        if gross_profit is None:
            gross = revenue - cogs
        else:
            gross = to_amount(gross_profit)

        return cls(
            period=period,
            total_revenue=revenue,
            total_cogs=cogs,
            gross_profit=gross,
            total_expenses=to_amount(total_expenses),
            net_income=to_amount(net_income),
            expense_categories=sort_categories(expense_categories),
        )

    def category_amount(self, name: str) -> Optional[float]:
        """Return the amount of the named category, or None if absent."""
        for category in self.expense_categories:
            if category.name == name:
                return category.amount
        return None

    def to_dict(self) -> dict[str, Any]:
        return {
            "period": self.period.to_dict(),
            "totalRevenue": self.total_revenue,
            "totalCogs": self.total_cogs,
            "grossProfit": self.gross_profit,
            "totalExpenses": self.total_expenses,
            "netIncome": self.net_income,
            "expenseCategories": [c.to_dict() for c in self.expense_categories],
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "PeriodStatement":
        """
        Build a statement from a camelCase dictionary.

        Missing amount fields default to 0.0; a missing ``grossProfit`` key
        is derived from revenue and COGS.
        """
        raw_categories = data.get("expenseCategories") or []
        categories = [
            ExpenseCategory(
                name=str(item.get("name") or "Unknown"),
                amount=to_amount(item.get("amount")),
            )
            for item in raw_categories
            if isinstance(item, Mapping)
        ]

        return cls.build(
            period=Period.from_dict(data.get("period") or {}),
            total_revenue=data.get("totalRevenue"),
            total_cogs=data.get("totalCogs"),
            gross_profit=data.get("grossProfit"),
            total_expenses=data.get("totalExpenses"),
            net_income=data.get("netIncome"),
            expense_categories=categories,
        )


@dataclass(frozen=True)
class CashPosition:
    """
    Cash snapshot as of a given date.

    ``previous_balance`` must come from an observed balance (for example
    the prior month-end balance sheet); it is 0.0 when unknown.
    """

    current_balance: float
    previous_balance: float
    as_of_date: date

    def to_dict(self) -> dict[str, Any]:
        return {
            "currentBalance": self.current_balance,
            "previousBalance": self.previous_balance,
            "asOfDate": self.as_of_date.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "CashPosition":
        return cls(
            current_balance=to_amount(data.get("currentBalance")),
            previous_balance=to_amount(data.get("previousBalance")),
            as_of_date=parse_date(data.get("asOfDate")),
        )
