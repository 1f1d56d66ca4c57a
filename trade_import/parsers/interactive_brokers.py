"""
Interactive Brokers CSV parser (Flex Query / Trade Confirmation / Activity
Statement trades).

IB quirks:
- Date and time are split across TradeDate + TradeTime, in compact forms
  ("20240115", "093015"), or combined as "20240115;093015" or
  "2024-01-15, 09:30:15"
- Side comes from Buy/Sell, or from the sign of Quantity when absent
- Futures rows carry their own Multiplier column, which beats the
  built-in contract table
- Activity Statements interleave SubTotal/Total rows with the executions
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Optional

from .base import BaseCSVParser, ParseContext
from .normalizers import (
    find_column_value,
    parse_date,
    parse_number,
    parse_side,
    try_parse_number,
)

logger = logging.getLogger(__name__)

_DATE_COLS = ["TradeDate", "Trade Date", "Date"]
_TIME_COLS = ["TradeTime", "Trade Time", "Time"]
_DATETIME_COLS = ["DateTime", "Date/Time"]

# DataDiscriminator values that are real executions
_EXECUTION_ROWS = ("order", "execution", "trade", "")


def merge_trade_datetime(date_value: Any, time_value: Any, combined: Any = None) -> Optional[datetime]:
    """Merge IB's split date/time cells into one timestamp."""
    if combined is not None:
        return parse_date(combined)
    if date_value is not None and time_value is not None:
        date_text, time_text = str(date_value).strip(), str(time_value).strip()
        merged = parse_date(f"{date_text} {time_text}")
        if merged is None and time_text.isdigit() and len(time_text) == 6:
            # ISO date with a compact time: "2024-01-15" + "093015"
            merged = parse_date(f"{date_text} {time_text[:2]}:{time_text[2:4]}:{time_text[4:]}")
        return merged
    return parse_date(date_value if date_value is not None else time_value)


class InteractiveBrokersParser(BaseCSVParser):
    broker_type = "interactive-brokers"
    broker_name = "Interactive Brokers"

    indicators = (
        "conid",
        "assetclass",
        "asset category",
        "buy/sell",
        "tradedate",
        "trade date",
        "tradetime",
        "ib order id",
        "ibexecid",
        "ibcommission",
        "t. price",
        "comm/fee",
        "datadiscriminator",
    )
    header_keywords = ("symbol", "quantity", "tradedate", "buy/sell", "price", "date/time")

    def _parse_row(self, index: int, row: dict[str, str], ctx: ParseContext) -> None:
        discriminator = str(find_column_value(row, ["DataDiscriminator"]) or "").strip().lower()
        if discriminator not in _EXECUTION_ROWS:
            ctx.skip(index)
            return

        raw_qty = find_column_value(row, ["Quantity", "Qty", "Shares"])
        signed_qty = parse_number(raw_qty)

        side = parse_side(find_column_value(row, ["Buy/Sell", "Side", "Action"]))
        if side is None and signed_qty:
            side = "buy" if signed_qty > 0 else "sell"

        timestamp = merge_trade_datetime(
            find_column_value(row, _DATE_COLS),
            find_column_value(row, _TIME_COLS),
            find_column_value(row, _DATETIME_COLS),
        )

        multiplier = try_parse_number(find_column_value(row, ["Multiplier", "Mult"]))

        self._add_execution(
            ctx,
            index,
            raw_symbol=find_column_value(row, ["Symbol", "LocalSymbol", "Underlying"]),
            side=side,
            price=parse_number(find_column_value(row, ["TradePrice", "T. Price", "Price", "FillPrice", "Execution Price"])),
            quantity=abs(signed_qty),
            timestamp=timestamp,
            commission=abs(parse_number(find_column_value(row, ["IBCommission", "Commission", "Comm/Fee"]))),
            multiplier=multiplier if multiplier and multiplier > 0 else None,
        )
