"""
Rithmic (R | Trader Pro) CSV parser.

Two exports share this parser:
- Order History: Order Number, Symbol, Buys/Sells (or Side), Qty Filled,
  Avg Fill Price, Fill Time, Status, Commission
- Execution report: ExecutionId, OrderId, ExecType, Symbol, Exchange,
  Side, Quantity, Price, ExecutionTime, Liquidity

Order History rows often have no side column at all; instead the filled
quantity sits in either the "Buys" or the "Sells" column. Commission and
exchange fees are separate columns and are summed. Fills are FIFO-matched.
"""

from __future__ import annotations

import logging
from typing import Optional

from .base import BaseCSVParser, ParseContext, status_is_filled
from .normalizers import (
    find_column_value,
    parse_date,
    parse_number,
    parse_side,
)

logger = logging.getLogger(__name__)

ORDER_HISTORY_INDICATORS = (
    "order number",
    "qty filled",
    "avg fill price",
    "fill time",
    "r | trader",
    "r-trader",
)

EXECUTION_REPORT_INDICATORS = (
    "executionid",
    "orderid",
    "exectype",
    "executiontime",
    "liquidity",
)

_QTY_COLS = ["Qty Filled", "QtyFilled", "Filled Qty", "Fill Qty", "Qty", "Quantity"]
_PRICE_COLS = ["Avg Fill Price", "AvgFillPrice", "Fill Price", "Price"]
_TIME_COLS = ["Fill Time", "ExecutionTime", "Execution Time", "Time", "Timestamp"]


def infer_side(row: dict[str, str]) -> Optional[str]:
    """Side from an explicit Side/Action column, else from Buys/Sells quantities."""
    explicit = parse_side(find_column_value(row, ["Side", "Action", "Buy/Sell"]))
    if explicit is not None:
        return explicit

    buys = parse_number(find_column_value(row, ["Buys", "BuyQty", "Buy"]))
    sells = parse_number(find_column_value(row, ["Sells", "SellQty", "Sell"]))
    if buys > 0 and sells == 0:
        return "buy"
    if sells > 0 and buys == 0:
        return "sell"
    return None


class RithmicParser(BaseCSVParser):
    broker_type = "rithmic"
    broker_name = "Rithmic"

    indicators = ORDER_HISTORY_INDICATORS + EXECUTION_REPORT_INDICATORS
    confidence_tiers = ((3, 0.95), (2, 0.7), (1, 0.4))
    header_keywords = ("symbol", "order number", "fill", "qty", "price", "executionid")

    def detect(self, content: str, headers: list[str]) -> float:
        header_str = " ".join(headers).lower()
        exec_matches = sum(1 for ind in EXECUTION_REPORT_INDICATORS if ind in header_str)
        if exec_matches >= 2 and "symbol" in header_str and "exchange" in header_str:
            return 0.95
        return self.score_indicators(header_str)

    def _parse_row(self, index: int, row: dict[str, str], ctx: ParseContext) -> None:
        if not status_is_filled(find_column_value(row, ["Status", "ExecType", "Exec Type"])):
            ctx.skip(index)
            return

        qty = abs(parse_number(find_column_value(row, _QTY_COLS)))
        if qty == 0:
            # Buys/Sells columns double as the filled quantity
            qty = max(
                parse_number(find_column_value(row, ["Buys", "BuyQty"])),
                parse_number(find_column_value(row, ["Sells", "SellQty"])),
            )

        commission = abs(parse_number(find_column_value(row, ["Commission", "Comm"])))
        fees = abs(parse_number(find_column_value(row, ["Fee", "Fees", "Misc Fees", "Exchange Fee"])))

        self._add_execution(
            ctx,
            index,
            raw_symbol=find_column_value(row, ["Symbol", "Instrument", "Contract"]),
            side=infer_side(row),
            price=parse_number(find_column_value(row, _PRICE_COLS)),
            quantity=qty,
            timestamp=parse_date(find_column_value(row, _TIME_COLS)),
            commission=commission + fees,
        )
