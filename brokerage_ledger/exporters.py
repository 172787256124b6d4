"""Tabular exports of report rows (CSV and Excel workbooks)."""
from __future__ import annotations

from io import BytesIO
from typing import Iterable, Mapping

import pandas as pd

OUTSTANDING_COLUMNS = {
    "invoice_number": "Invoice #",
    "party_name": "Seller",
    "buyer_name": "Buyer",
    "invoice_date": "Invoice Date",
    "due_date": "Due Date",
    "currency": "Currency",
    "total": "Amount",
    "balance_brokerage": "Balance Brokerage",
    "days_overdue": "Days Overdue",
    "status": "Status",
}


def rows_to_frame(rows: Iterable[Mapping[str, object]], columns: Mapping[str, str]) -> pd.DataFrame:
    """Select and rename ``columns`` from report rows into a DataFrame.

    Missing keys become empty cells so partially filled rows still export.
    """

    dataframe = pd.DataFrame(list(rows), columns=list(columns))
    return dataframe.rename(columns=dict(columns))


def outstanding_frame(rows: Iterable[Mapping[str, object]]) -> pd.DataFrame:
    dataframe = rows_to_frame(rows, OUTSTANDING_COLUMNS)
    overdue = dataframe["Days Overdue"]
    dataframe["Days Overdue"] = [
        f"{days} days" if isinstance(days, int) and days > 0 else "Not overdue" for days in overdue
    ]
    return dataframe


def to_csv_bytes(dataframe: pd.DataFrame) -> bytes:
    return dataframe.to_csv(index=False).encode("utf-8")


def to_excel_bytes(dataframe: pd.DataFrame, sheet_name: str = "Report") -> bytes:
    buffer = BytesIO()
    dataframe.to_excel(buffer, index=False, sheet_name=sheet_name)
    return buffer.getvalue()
