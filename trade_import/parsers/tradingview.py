"""
TradingView CSV parser.

Two exports are recognized:
- Paper Trading "Order History": one row per order
  (Symbol, Side, Type, Qty, Limit Price, Stop Price, Fill Price, Status,
  Commission, Leverage, Margin, Placing Time, Closing Time, Order ID).
  Only filled orders count; fills are FIFO-matched. Symbols carry the
  exchange prefix: CME_MINI:MNQH2026.
- Strategy Tester "List of Trades": two rows per trade number, one
  "Entry Long/Short" and one "Exit Long/Short". Rows are paired by
  Trade # into finished round trips.
"""

from __future__ import annotations

import logging
from typing import Any

from .base import BaseCSVParser, ParseContext, status_is_filled
from .csv_reader import CSVTable
from .normalizers import (
    find_column_value,
    has_column,
    parse_date,
    parse_number,
    parse_side,
    try_parse_number,
)
from .symbols import normalize_instrument
from .types import ParsedTrade

logger = logging.getLogger(__name__)

_LIST_OF_TRADES_COLS = ["Trade #", "Trade No", "Trade"]


class TradingViewParser(BaseCSVParser):
    broker_type = "tradingview"
    broker_name = "TradingView"

    indicators = (
        "placing time",
        "closing time",
        "leverage",
        "margin",
        "trade #",
        "date/time",
        "signal",
        "cumulative",
    )

    def detect(self, content: str, headers: list[str]) -> float:
        score = self.score_indicators(" ".join(headers))
        if "tradingview" in content[: self.settings.content_scan_chars].lower():
            score = max(score, 0.9)
        return score

    def _extract(self, table: CSVTable, ctx: ParseContext) -> None:
        if has_column(table.headers, _LIST_OF_TRADES_COLS) and has_column(table.headers, ["Type"]):
            self._extract_list_of_trades(table, ctx)
        else:
            self._iterate(table, ctx, self._parse_row)

    # -- Order History (fills) --------------------------------------------

    def _parse_row(self, index: int, row: dict[str, str], ctx: ParseContext) -> None:
        if not status_is_filled(find_column_value(row, ["Status"])):
            ctx.skip(index)
            return

        self._add_execution(
            ctx,
            index,
            raw_symbol=find_column_value(row, ["Symbol", "Instrument", "Ticker"]),
            side=parse_side(find_column_value(row, ["Side", "Action"])),
            price=parse_number(find_column_value(row, ["Fill Price", "Avg Fill Price", "Price"])),
            quantity=abs(parse_number(find_column_value(row, ["Qty", "Quantity", "Contracts"]))),
            timestamp=parse_date(
                find_column_value(row, ["Closing Time", "Fill Time", "Placing Time", "Time", "Date"])
            ),
            commission=abs(parse_number(find_column_value(row, ["Commission", "Fee"]))),
        )

    # -- Strategy Tester "List of Trades" -----------------------------------

    def _extract_list_of_trades(self, table: CSVTable, ctx: ParseContext) -> None:
        legs: dict[str, dict[str, Any]] = {}
        order: list[str] = []

        def collect(index: int, row: dict[str, str], ctx: ParseContext) -> None:
            trade_no = str(find_column_value(row, _LIST_OF_TRADES_COLS) or "").strip()
            kind = str(find_column_value(row, ["Type"]) or "").strip().lower()
            if not trade_no or not kind.startswith(("entry", "exit")):
                ctx.warn(index, "type", kind or None, "Skipped row: not an entry or exit", skip=True)
                return
            if trade_no not in legs:
                legs[trade_no] = {}
                order.append(trade_no)
            legs[trade_no]["entry" if kind.startswith("entry") else "exit"] = (index, row, kind)

        self._iterate(table, ctx, collect)

        for trade_no in order:
            pair = legs[trade_no]
            if "entry" not in pair or "exit" not in pair:
                index = (pair.get("entry") or pair.get("exit"))[0]
                ctx.warn(
                    index, "trade", trade_no,
                    f"Trade #{trade_no} has no matching {'exit' if 'entry' in pair else 'entry'}; skipped",
                    skip=True,
                )
                continue
            try:
                ctx.trades.append(self._pair_to_trade(trade_no, pair["entry"], pair["exit"]))
            except Exception as exc:
                logger.debug("[CSV Parser] TradingView trade #%s failed", trade_no, exc_info=True)
                ctx.error(pair["entry"][0], "parse", trade_no, str(exc) or "Failed to parse trade")

    def _pair_to_trade(self, trade_no: str, entry: tuple, exit_: tuple) -> ParsedTrade:
        entry_index, entry_row, kind = entry
        _, exit_row, _ = exit_

        raw_symbol = find_column_value(entry_row, ["Symbol", "Ticker"])
        instrument = normalize_instrument(raw_symbol) or "UNKNOWN"
        direction = "short" if "short" in kind else "long"
        opened = parse_date(find_column_value(entry_row, ["Date/Time", "Date and time", "Time", "Date"]))

        signal = find_column_value(entry_row, ["Signal"])
        pnl = try_parse_number(find_column_value(exit_row, ["Profit USD", "Profit", "P&L"]))
        if pnl is None:
            pnl = try_parse_number(find_column_value(entry_row, ["Profit USD", "Profit", "P&L"])) or 0.0

        return ParsedTrade(
            date=opened,
            instrument=instrument,
            direction=direction,
            entry_price=parse_number(find_column_value(entry_row, ["Price USD", "Price"])),
            exit_price=parse_number(find_column_value(exit_row, ["Price USD", "Price"])),
            size=abs(parse_number(find_column_value(entry_row, ["Contracts", "Quantity", "Qty"]))),
            pnl=pnl,
            notes=self._note(
                raw_symbol, instrument, [f"Trade #{trade_no}", f"Signal: {signal}" if signal else ""]
            ),
            row_index=entry_index,
            raw_row=dict(entry_row),
        )
