# SMB Pulse - Business health interpretation for SMBs
# Copyright (c) 2025 Maxence Bernard (maxencebernardhub)
# Licensed under the MIT License. See LICENSE file for details.

"""
Statement normalizer for SMB Pulse.

Accounting providers return reports as nested JSON row trees. QuickBooks,
for instance, describes a profit & loss report as:

    {
      "Header":  {"StartPeriod": "2026-01-01", "EndPeriod": "2026-01-31"},
      "Columns": {"Column": [{"ColTitle": ""}, {"ColTitle": "Total"}]},
      "Rows":    {"Row": [
          {"group": "Income",
           "Summary": {"ColData": [{"value": "Total Income"}, {"value": "1000.00"}]}},
          {"group": "Expenses",
           "Rows": {"Row": [{"ColData": [{"value": "Rent"}, {"value": "300"}]}]},
           "Summary": {"ColData": [{"value": "Total Expenses"}, {"value": "300"}]}}
      ]}
    }

Normalization happens in two steps:

1. ``parse_rows()`` turns the raw row list into a small tagged-variant tree:
   ``SectionRow`` (a group with a summary line and child rows) or
   ``DataRow`` (a leaf with its cells). Nothing else in this module looks
   at raw dictionaries.
2. The ``parse_*`` functions reduce that tree to canonical
   ``PeriodStatement`` / ``CashPosition`` objects.

Amounts that are missing or not numeric count as 0.0.
"""

from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Optional, Union

from .periods import Period, format_period_label, month_period, parse_date
from .statements import CashPosition, ExpenseCategory, PeriodStatement, to_amount

REVENUE_GROUP = "Income"
COGS_GROUP = "COGS"
GROSS_PROFIT_GROUP = "GrossProfit"
EXPENSES_GROUP = "Expenses"
OTHER_EXPENSES_GROUP = "OtherExpenses"
NET_INCOME_GROUPS = ("NetIncome", "NetOperatingIncome")

CASH_SECTION_GROUPS = ("Assets", "BankAccounts", "Bank")
BANK_GROUPS = ("BankAccounts", "Bank")
CASH_LABEL_KEYWORDS = ("bank", "cash", "checking", "savings")


@dataclass(frozen=True)
class DataRow:
    """Leaf row: a label cell followed by one value cell per column."""

    cells: tuple[str, ...]

    @property
    def label(self) -> str:
        return self.cells[0] if self.cells else ""

    def amount(self, column: int) -> float:
        if column >= len(self.cells):
            return 0.0
        return to_amount(self.cells[column])


@dataclass(frozen=True)
class SectionRow:
    """Group row: a named section with a summary line and child rows."""

    group: str
    summary: tuple[str, ...] = ()
    children: tuple["ReportRow", ...] = field(default_factory=tuple)

    def total(self, column: int) -> float:
        if column >= len(self.summary):
            return 0.0
        return to_amount(self.summary[column])


ReportRow = Union[SectionRow, DataRow]


def _cells(raw: Any) -> tuple[str, ...]:
    if not isinstance(raw, Sequence) or isinstance(raw, str):
        return ()
    return tuple(
        str(item.get("value") or "") if isinstance(item, Mapping) else ""
        for item in raw
    )


def _row_list(container: Any) -> list[Any]:
    if not isinstance(container, Mapping):
        return []
    rows = container.get("Row") or []
    return rows if isinstance(rows, list) else []


def parse_rows(raw_rows: Sequence[Any]) -> tuple[ReportRow, ...]:
    """Convert raw provider rows into ``SectionRow`` / ``DataRow`` variants."""
    parsed: list[ReportRow] = []
    for raw in raw_rows:
        if not isinstance(raw, Mapping):
            continue

        children = _row_list(raw.get("Rows"))
        summary = raw.get("Summary")
        if raw.get("group") or children or isinstance(summary, Mapping):
            parsed.append(
                SectionRow(
                    group=str(raw.get("group") or ""),
                    summary=_cells(summary.get("ColData") if isinstance(summary, Mapping) else None),
                    children=parse_rows(children),
                )
            )
        else:
            parsed.append(DataRow(cells=_cells(raw.get("ColData"))))
    return tuple(parsed)


def _report_rows(report: Mapping[str, Any]) -> tuple[ReportRow, ...]:
    return parse_rows(_row_list(report.get("Rows")))


def _statement_from_rows(
    rows: Sequence[ReportRow], period: Period, column: int
) -> PeriodStatement:
    """Reduce top-level report rows to a statement, reading one value column."""
    revenue = cogs = gross_profit = total_expenses = net_income = 0.0
    categories: list[ExpenseCategory] = []

    for row in rows:
        if not isinstance(row, SectionRow):
            continue
        value = row.total(column)

        if row.group == REVENUE_GROUP:
            revenue = value
        elif row.group == COGS_GROUP:
            cogs = value
        elif row.group == GROSS_PROFIT_GROUP:
            gross_profit = value
        elif row.group == EXPENSES_GROUP:
            total_expenses += value
            for child in row.children:
                if isinstance(child, DataRow):
                    amount = child.amount(column)
                    if amount != 0:
                        categories.append(
                            ExpenseCategory(name=child.label or "Unknown", amount=amount)
                        )
        elif row.group == OTHER_EXPENSES_GROUP:
            total_expenses += value
        elif row.group in NET_INCOME_GROUPS:
            net_income = value

    # A report without a GrossProfit section still has an implied one
    if gross_profit == 0 and revenue > 0:
        gross_profit = revenue - cogs

    return PeriodStatement.build(
        period=period,
        total_revenue=revenue,
        total_cogs=cogs,
        gross_profit=gross_profit,
        total_expenses=total_expenses,
        net_income=net_income,
        expense_categories=categories,
    )


def _header_period(report: Mapping[str, Any]) -> Period:
    header = report.get("Header") or {}
    if not isinstance(header, Mapping):
        header = {}
    start = parse_date(header.get("StartPeriod"))
    end = parse_date(header.get("EndPeriod") or header.get("StartPeriod"))
    return Period(start=start, end=end, label=format_period_label(start, end))


def parse_profit_and_loss(report: Mapping[str, Any]) -> PeriodStatement:
    """
    Parse a single-period profit & loss report.

    Raises:
        ValueError: if the report header has no valid period dates.
    """
    return _statement_from_rows(_report_rows(report), _header_period(report), column=1)


def _column_period(column: Mapping[str, Any]) -> Optional[Period]:
    """Period of a monthly column, from its metadata or its "Jan 2026" title."""
    metadata = {
        str(item.get("Name")): item.get("Value")
        for item in column.get("MetaData") or []
        if isinstance(item, Mapping)
    }
    if metadata.get("StartDate"):
        start = parse_date(metadata["StartDate"])
        end = parse_date(metadata.get("EndDate") or metadata["StartDate"])
        return Period(start=start, end=end, label=format_period_label(start, end))

    title = str(column.get("ColTitle") or "").strip()
    for fmt in ("%b %Y", "%B %Y"):
        try:
            parsed = datetime.strptime(title, fmt)
        except ValueError:
            continue
        return month_period(parsed.year, parsed.month)
    return None


def parse_monthly_profit_and_loss(report: Mapping[str, Any]) -> list[PeriodStatement]:
    """
    Parse a profit & loss report summarized by month.

    The first column holds row labels and a trailing "Total" column is
    ignored; every other column becomes one statement, oldest first.

    Raises:
        ValueError: if a month column has no recognizable period.
    """
    columns_section = report.get("Columns") or {}
    raw_columns = columns_section.get("Column") if isinstance(columns_section, Mapping) else None
    columns = raw_columns if isinstance(raw_columns, list) else []
    rows = _report_rows(report)

    statements: list[PeriodStatement] = []
    for index, column in enumerate(columns):
        if index == 0 or not isinstance(column, Mapping):
            continue
        title = str(column.get("ColTitle") or "")
        if not title or title == "Total":
            continue

        period = _column_period(column)
        if period is None:
            raise ValueError(f"Cannot determine the period of report column {title!r}.")
        statements.append(_statement_from_rows(rows, period, column=index))

    statements.sort(key=lambda s: s.period.start)
    return statements


def parse_cash_position(
    report: Mapping[str, Any],
    previous_balance: float = 0.0,
    as_of: Optional[date] = None,
) -> CashPosition:
    """
    Parse a balance sheet report into a cash position.

    Cash is the sum of bank/cash-like rows found under an Assets or Bank
    section (a nested bank section contributes its summary). When none is
    found the section summary is used.

    Args:
        report: Balance sheet payload.
        previous_balance: Observed balance of the previous period, if known.
        as_of: Snapshot date; defaults to the report end date.
    """
    balance = 0.0
    for row in _report_rows(report):
        if not isinstance(row, SectionRow) or row.group not in CASH_SECTION_GROUPS:
            continue

        for child in row.children:
            if isinstance(child, SectionRow) and child.group in BANK_GROUPS:
                balance += child.total(1)
            elif isinstance(child, DataRow):
                label = child.label.lower()
                if any(keyword in label for keyword in CASH_LABEL_KEYWORDS):
                    balance += child.amount(1)

        if balance == 0:
            balance = row.total(1)

    if as_of is None:
        as_of = _header_period(report).end

    return CashPosition(
        current_balance=balance,
        previous_balance=to_amount(previous_balance),
        as_of_date=as_of,
    )
