"""
Tradovate CSV parser.

Tradovate offers two unrelated exports:
- Performance report: already-matched round trips
  (symbol, qty, buyPrice, sellPrice, pnl, boughtTimestamp, soldTimestamp).
  Direction is long when the buy happened first.
- Orders export: one row per order with B/S, Contract, Status, avgPrice /
  Avg Fill Price, filledQty / Filled Qty and Fill Time. Only filled orders
  are fills; these are FIFO-matched into round trips.

Timestamps carry no zone and are UTC. Money cells use "$(25.00)" for
negatives.
"""

from __future__ import annotations

import logging

from .base import BaseCSVParser, ParseContext, status_is_filled
from .csv_reader import CSVTable
from .normalizers import (
    find_column_value,
    has_column,
    parse_number,
    parse_side,
    parse_timestamp_assume_utc,
    try_parse_number,
)
from .symbols import normalize_instrument
from .types import ParsedTrade

logger = logging.getLogger(__name__)

_SYMBOL_COLS = ["symbol", "Contract", "Instrument", "Product"]
_STATUS_COLS = ["Status"]
_SIDE_COLS = ["B/S", "Side", "Buy/Sell", "Action"]
_FILLED_QTY_COLS = ["filledQty", "Filled Qty", "Qty", "Quantity"]
_FILL_PRICE_COLS = ["avgPrice", "Avg Fill Price", "Fill Price", "Avg Price", "Price"]
_FILL_TIME_COLS = ["Fill Time", "Timestamp", "Time", "Date"]
_COMMISSION_COLS = ["Commission", "Fees", "Fee"]


class TradovateParser(BaseCSVParser):
    broker_type = "tradovate"
    broker_name = "Tradovate"

    indicators = (
        "_priceformat",
        "_ticksize",
        "boughttimestamp",
        "soldtimestamp",
        "buyfillid",
        "sellfillid",
        "b/s",
        "avgprice",
        "filledqty",
        "contract",
        "account spec",
        "realized pnl",
    )

    def _extract(self, table: CSVTable, ctx: ParseContext) -> None:
        if self.is_performance_report(table.headers):
            logger.debug("[CSV Parser] Tradovate performance report")
            self._iterate(table, ctx, self._parse_performance_row)
        else:
            logger.debug("[CSV Parser] Tradovate orders export")
            self._iterate(table, ctx, self._parse_row)

    @staticmethod
    def is_performance_report(headers: list[str]) -> bool:
        return has_column(headers, ["boughtTimestamp"]) and has_column(headers, ["soldTimestamp"])

    # -- Orders export (fills) --------------------------------------------

    def _parse_row(self, index: int, row: dict[str, str], ctx: ParseContext) -> None:
        status = find_column_value(row, _STATUS_COLS)
        if not status_is_filled(status):
            ctx.skip(index)
            return

        self._add_execution(
            ctx,
            index,
            raw_symbol=find_column_value(row, _SYMBOL_COLS),
            side=parse_side(find_column_value(row, _SIDE_COLS)),
            price=parse_number(find_column_value(row, _FILL_PRICE_COLS)),
            quantity=abs(parse_number(find_column_value(row, _FILLED_QTY_COLS))),
            timestamp=parse_timestamp_assume_utc(find_column_value(row, _FILL_TIME_COLS)),
            commission=parse_number(find_column_value(row, _COMMISSION_COLS)),
        )

    # -- Performance report (round trips) ---------------------------------

    def _parse_performance_row(self, index: int, row: dict[str, str], ctx: ParseContext) -> None:
        raw_symbol = find_column_value(row, _SYMBOL_COLS)
        instrument = normalize_instrument(raw_symbol)
        if not instrument:
            ctx.error(index, "instrument", raw_symbol, "Missing instrument/contract")
            return

        bought_raw = find_column_value(row, ["boughtTimestamp"])
        sold_raw = find_column_value(row, ["soldTimestamp"])
        bought = parse_timestamp_assume_utc(bought_raw)
        sold = parse_timestamp_assume_utc(sold_raw)
        if bought is None or sold is None:
            ctx.error(
                index, "date", bought_raw if bought is None else sold_raw,
                "Invalid date format",
                "Expected ISO format or MM/DD/YYYY HH:MM:SS",
            )
            return

        qty = abs(parse_number(find_column_value(row, ["qty", "Quantity"])))
        buy_price = parse_number(find_column_value(row, ["buyPrice"]))
        sell_price = parse_number(find_column_value(row, ["sellPrice"]))

        if bought <= sold:
            direction, entry, exit_, opened = "long", buy_price, sell_price, bought
        else:
            direction, entry, exit_, opened = "short", sell_price, buy_price, sold

        pnl = try_parse_number(find_column_value(row, ["pnl", "Realized PnL", "P&L"]))
        if pnl is None:
            delta = exit_ - entry if direction == "long" else entry - exit_
            pnl = delta * qty * self._point_value(instrument, index, ctx)

        duration = find_column_value(row, ["duration"])
        ctx.trades.append(
            ParsedTrade(
                date=opened,
                instrument=instrument,
                direction=direction,
                entry_price=entry,
                exit_price=exit_,
                size=qty,
                pnl=pnl,
                notes=self._note(raw_symbol, instrument, [f"Duration: {duration}" if duration else ""]),
                row_index=index,
                raw_row=dict(row),
            )
        )
