# SMB Pulse - Business health interpretation for SMBs
# Copyright (c) 2025 Maxence Bernard (maxencebernardhub)
# Licensed under the MIT License. See LICENSE file for details.

"""
I/O module for SMB Pulse.

This module reads period statements from a long-format CSV file, the
offline alternative to pulling reports from an accounting provider.

Expected input format
---------------------
Column names are case-insensitive:

    period_start, period_end, label, line, name, amount

- ``period_start`` / ``period_end``: period dates (YYYY-MM-DD)
- ``label``:  optional display label ("Jan 2026"); derived when empty
- ``line``:   one of ``revenue``, ``cogs``, ``gross_profit``,
              ``total_expenses``, ``net_income``, ``expense``
- ``name``:   expense category name (required for ``expense`` lines only)
- ``amount``: signed amount

Example::

    period_start,period_end,label,line,name,amount
    2026-01-01,2026-01-31,Jan 2026,revenue,,10000
    2026-01-01,2026-01-31,Jan 2026,total_expenses,,6000
    2026-01-01,2026-01-31,Jan 2026,expense,Rent,2000

Several rows with the same period and line are summed. A period without a
``gross_profit`` line gets it derived from revenue and COGS.

Output
------
A list of ``PeriodStatement`` ordered by ``period_start`` (oldest first),
ready for ``pipeline.run_analysis``.

If the CSV structure does not match, a clear ValueError is raised.
"""

import os
from typing import Union

import pandas as pd

from .periods import Period, format_period_label
from .statements import ExpenseCategory, PeriodStatement

REQUIRED_COLUMNS = {"period_start", "period_end", "line", "amount"}
SUMMARY_LINES = {"revenue", "cogs", "gross_profit", "total_expenses", "net_income"}
EXPENSE_LINE = "expense"


def read_statements_csv(path: Union[str, "os.PathLike[str]"]) -> list[PeriodStatement]:
    """
    Read period statements from a long-format CSV file.

    Parameters
    ----------
    path:
        Path to the CSV file.

    Returns
    -------
    list[PeriodStatement]
        One statement per distinct (period_start, period_end), oldest first.

    Raises
    ------
    ValueError
        If required columns are missing, dates or amounts cannot be parsed,
        a line type is unknown, or an expense line has no name.
    """
    df = pd.read_csv(path, dtype=str)

    # Normalize column names to lowercase (to make the check case-insensitive)
    df.columns = [str(c).lower().strip() for c in df.columns]
    missing = REQUIRED_COLUMNS - set(df.columns)
    if missing:
        raise ValueError(
            "Invalid statements CSV structure. Missing column(s): "
            f"{', '.join(sorted(missing))}. Expected: "
            "period_start, period_end, label, line, name, amount "
            "(column names are case-insensitive)."
        )

    d = df.copy()
    for col in ("label", "name"):
        if col not in d.columns:
            d[col] = ""
        d[col] = d[col].fillna("").astype(str).str.strip()

    # Parse dates strictly: invalid dates should fail loudly
    for col in ("period_start", "period_end"):
        try:
            parsed = pd.to_datetime(d[col], errors="raise")
        except Exception as exc:  # noqa: BLE001
            raise ValueError(f"Invalid values in '{col}' column.") from exc
        if parsed.isna().any():
            raise ValueError(f"Missing values in '{col}' column.")
        d[col] = parsed.dt.date

    d["amount"] = pd.to_numeric(d["amount"], errors="coerce")
    if d["amount"].isna().any():
        raise ValueError("Invalid numeric values in 'amount' column.")

    d["line"] = d["line"].fillna("").astype(str).str.strip().str.lower()
    unknown = set(d["line"]) - SUMMARY_LINES - {EXPENSE_LINE}
    if unknown:
        raise ValueError(
            f"Unknown statement line(s): {', '.join(sorted(unknown))}. "
            f"Expected one of: {', '.join(sorted(SUMMARY_LINES | {EXPENSE_LINE}))}."
        )

    if ((d["line"] == EXPENSE_LINE) & (d["name"] == "")).any():
        raise ValueError("Every 'expense' line requires a category 'name'.")

    statements: list[PeriodStatement] = []
    for (start, end), group in d.groupby(["period_start", "period_end"], sort=True):
        labels = [label for label in group["label"] if label]
        period = Period(
            start=start,
            end=end,
            label=labels[0] if labels else format_period_label(start, end),
        )

        totals = group[group["line"] != EXPENSE_LINE].groupby("line")["amount"].sum()
        expenses = (
            group[group["line"] == EXPENSE_LINE]
            .groupby("name", sort=False)["amount"]
            .sum()
        )

        statements.append(
            PeriodStatement.build(
                period=period,
                total_revenue=totals.get("revenue", 0.0),
                total_cogs=totals.get("cogs", 0.0),
                gross_profit=totals.get("gross_profit"),
                total_expenses=totals.get("total_expenses", 0.0),
                net_income=totals.get("net_income", 0.0),
                expense_categories=[
                    ExpenseCategory(name=str(name), amount=float(amount))
                    for name, amount in expenses.items()
                ],
            )
        )

    return statements
