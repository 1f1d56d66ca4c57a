"""
NinjaTrader 8 grid export parser.

Two grids can be exported from the Account Performance / Control Center:
- Executions: Instrument, Action, Quantity, Price, Time, ID, E/X,
  Position, Order ID, Name, Commission, Rate, Account, Connection.
  Actions include "Sell Short" and "Buy to Cover". Fills are FIFO-matched.
- Trades: Trade number, Instrument, Account, Market pos., Qty, Entry price,
  Exit price, Entry time, Exit time, Profit, Commission. Already matched.

Instruments carry the contract month as a tail: "ES 12-24", "NQ 03-25".
Times are US 12-hour: "1/15/2024 9:31:02 AM".
"""

from __future__ import annotations

import logging

from .base import BaseCSVParser, ParseContext
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


class NinjaTraderParser(BaseCSVParser):
    broker_type = "ninjatrader"
    broker_name = "NinjaTrader"

    indicators = (
        "instrument",
        "action",
        "e/x",
        "execution id",
        "connection",
        "market pos.",
        "trade number",
        "entry name",
        "exit name",
        "cum. net profit",
    )
    confidence_tiers = ((4, 0.95), (3, 0.8), (2, 0.6), (1, 0.3))

    def _extract(self, table: CSVTable, ctx: ParseContext) -> None:
        if has_column(table.headers, ["Market pos.", "Trade number"]):
            self._iterate(table, ctx, self._parse_trade_row)
        else:
            self._iterate(table, ctx, self._parse_row)

    # -- Executions grid --------------------------------------------------

    def _parse_row(self, index: int, row: dict[str, str], ctx: ParseContext) -> None:
        self._add_execution(
            ctx,
            index,
            raw_symbol=find_column_value(row, ["Instrument", "Symbol"]),
            side=parse_side(find_column_value(row, ["Action", "Side"])),
            price=parse_number(find_column_value(row, ["Price", "Avg. price", "Fill Price"])),
            quantity=abs(parse_number(find_column_value(row, ["Quantity", "Qty"]))),
            timestamp=parse_date(find_column_value(row, ["Time", "Date", "Timestamp"])),
            commission=abs(parse_number(find_column_value(row, ["Commission"]))),
        )

    # -- Trades grid ------------------------------------------------------

    def _parse_trade_row(self, index: int, row: dict[str, str], ctx: ParseContext) -> None:
        raw_symbol = find_column_value(row, ["Instrument", "Symbol"])
        instrument = normalize_instrument(raw_symbol)
        if not instrument:
            ctx.error(index, "instrument", raw_symbol, "Missing instrument")
            return

        entry_raw = find_column_value(row, ["Entry time", "Time"])
        opened = parse_date(entry_raw)
        if opened is None:
            ctx.error(index, "date", entry_raw, "Invalid entry time",
                      "Expected M/D/YYYY h:mm:ss AM/PM")
            return

        direction = self._direction(find_column_value(row, ["Market pos.", "Market position"]), index, ctx)
        commission = try_parse_number(find_column_value(row, ["Commission"]))
        trade_no = find_column_value(row, ["Trade number"])

        ctx.trades.append(
            ParsedTrade(
                date=opened,
                instrument=instrument,
                direction=direction,
                entry_price=parse_number(find_column_value(row, ["Entry price"])),
                exit_price=parse_number(find_column_value(row, ["Exit price"])),
                size=abs(parse_number(find_column_value(row, ["Qty", "Quantity"]))),
                pnl=parse_number(find_column_value(row, ["Profit", "Net profit"])),
                commission=abs(commission) if commission else None,
                notes=self._note(raw_symbol, instrument, [f"Trade #{trade_no}" if trade_no else ""]),
                row_index=index,
                raw_row=dict(row),
            )
        )
