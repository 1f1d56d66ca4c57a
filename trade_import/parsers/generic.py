"""
Generic fallback parser for exports no platform parser claims.

Columns are mapped by fuzzy header matching (see ``assign_columns``).
Two layouts are handled:
- Round-trip rows: an exit-price or P&L column exists, so each row is one
  trade (a missing exit price falls back to the entry price)
- Fill rows: neither column; rows are executions (optionally filtered by a
  Status column) and are FIFO-matched

Detection always reports a fixed low confidence, so this parser only wins
when nothing more specific scores higher.
"""

from __future__ import annotations

import logging
from typing import Any, Optional

from .base import BaseCSVParser, ParseContext, status_is_filled
from .csv_reader import CSVTable
from .normalizers import (
    analyze_headers,
    assign_columns,
    find_column_value,
    parse_date,
    parse_number,
    parse_side,
    try_parse_number,
)
from .symbols import normalize_instrument
from .types import ParsedTrade, ValidationError

logger = logging.getLogger(__name__)

GENERIC_CONFIDENCE = 0.2


class GenericParser(BaseCSVParser):
    broker_type = "generic"
    broker_name = "Generic CSV"

    def detect(self, content: str, headers: list[str]) -> float:
        return GENERIC_CONFIDENCE

    def _extract(self, table: CSVTable, ctx: ParseContext) -> None:
        columns = assign_columns(table.headers)
        ctx.column_mappings = analyze_headers(table.headers, table.rows)
        logger.debug("[CSV Parser] Generic column assignment: %s", columns)

        ctx.issues.append(
            ValidationError(
                row=0,
                field="parser",
                value="generic",
                message="Using generic CSV parser. Some fields may not be mapped optimally.",
                severity="warning",
                suggestion="If you're using a specific broker, select it explicitly for better accuracy.",
            )
        )

        if "exit_price" in columns or "pnl" in columns:
            handler = self._round_trip_handler(columns)
        else:
            handler = self._fill_handler(columns)
        self._iterate(table, ctx, handler)

    # ------------------------------------------------------------------

    @staticmethod
    def _cell(row: dict[str, str], columns: dict[str, str], app_field: str) -> Optional[Any]:
        header = columns.get(app_field)
        if header is None:
            return None
        value = row.get(header)
        if value is None or not str(value).strip():
            return None
        return value

    def _round_trip_handler(self, columns: dict[str, str]):
        def handle(index: int, row: dict[str, str], ctx: ParseContext) -> None:
            raw_symbol = self._cell(row, columns, "instrument")
            instrument = normalize_instrument(raw_symbol)
            if not instrument:
                ctx.error(index, "instrument", raw_symbol, "Missing instrument/symbol",
                          "Ensure CSV has a Symbol, Instrument, or Ticker column")
                return

            raw_date = self._cell(row, columns, "date")
            opened = parse_date(raw_date)
            if opened is None:
                ctx.error(index, "date", raw_date, "Invalid or missing date",
                          "Supported formats: YYYY-MM-DD HH:MM:SS, MM/DD/YYYY, ISO 8601")
                return

            direction = self._direction(self._cell(row, columns, "direction"), index, ctx)
            entry = parse_number(self._cell(row, columns, "entry_price"))
            exit_ = parse_number(self._cell(row, columns, "exit_price")) or entry
            size = abs(parse_number(self._cell(row, columns, "size"))) if "size" in columns else 1.0

            pnl = try_parse_number(self._cell(row, columns, "pnl"))
            if pnl is None:
                delta = exit_ - entry if direction == "long" else entry - exit_
                pnl = delta * size * self._point_value(instrument, index, ctx)

            commission = try_parse_number(self._cell(row, columns, "commission"))
            ctx.trades.append(
                ParsedTrade(
                    date=opened,
                    instrument=instrument,
                    direction=direction,
                    entry_price=entry,
                    exit_price=exit_,
                    size=size,
                    pnl=pnl,
                    stop_loss=try_parse_number(self._cell(row, columns, "stop_loss")) or None,
                    take_profit=try_parse_number(self._cell(row, columns, "take_profit")) or None,
                    commission=abs(commission) if commission else None,
                    notes=self._note(raw_symbol, instrument),
                    row_index=index,
                    raw_row=dict(row),
                )
            )

        return handle

    def _fill_handler(self, columns: dict[str, str]):
        def handle(index: int, row: dict[str, str], ctx: ParseContext) -> None:
            if not status_is_filled(find_column_value(row, ["Status", "Order Status"])):
                ctx.skip(index)
                return
            self._add_execution(
                ctx,
                index,
                raw_symbol=self._cell(row, columns, "instrument"),
                side=parse_side(self._cell(row, columns, "direction")),
                price=parse_number(self._cell(row, columns, "entry_price")),
                quantity=abs(parse_number(self._cell(row, columns, "size"))),
                timestamp=parse_date(self._cell(row, columns, "date")),
                commission=abs(parse_number(self._cell(row, columns, "commission"))),
            )

        return handle
