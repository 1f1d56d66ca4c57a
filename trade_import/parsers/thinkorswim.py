"""
thinkorswim (Schwab / TD Ameritrade) Account Statement parser.

The full Account Statement export is a composite file:

    Account Statement for 123 since 1/1/24 through 1/31/24

    Cash Balance
    DATE,TIME,TYPE,REF #,DESCRIPTION,...

    Account Trade History
    ,Exec Time,Spread,Side,Qty,Pos Effect,Symbol,Exp,Strike,Type,Price,Net Price,Order Type
    ,1/15/24 09:31:02,FUTURE,BUY,+2,TO OPEN,/ESH24,MAR 24,,FUTURE,4800.25,4800.25,LMT

    Profits and Losses
    ...

Only the Account Trade History section is parsed. Quantities are signed
(+2 / -2), futures symbols carry a leading "/", and the second leg of a
multi-leg order repeats with an empty Exec Time (it inherits the time of
the row above). Fills are FIFO-matched.
"""

from __future__ import annotations

import logging

from .base import BaseCSVParser, ParseContext
from .csv_reader import CSVTable, extract_section, read_table
from .normalizers import (
    find_column_value,
    parse_date,
    parse_number,
    parse_side,
    try_parse_number,
)

logger = logging.getLogger(__name__)

SECTION_TITLE = "Account Trade History"

# Section titles that can follow the trade history in a statement
NEXT_SECTION_TITLES = (
    "Profits and Losses",
    "Account Summary",
    "Cash Balance",
    "Account Order History",
    "Futures Statements",
    "Forex Statements",
    "Forex Account Summary",
    "Options",
    "Equities",
    "Futures",
)

_EXEC_TIME_COLS = ["Exec Time", "Execution Time", "Time"]


class ThinkorswimParser(BaseCSVParser):
    broker_type = "thinkorswim"
    broker_name = "thinkorswim"

    indicators = ("exec time", "spread", "pos effect", "net price", "order #")
    confidence_tiers = ((3, 0.95), (2, 0.7), (1, 0.4))
    header_keywords = ("exec time", "symbol", "side", "qty", "price")

    def detect(self, content: str, headers: list[str]) -> float:
        header_score = self.score_indicators(" ".join(headers))
        # Statement exports bury the trade header under other sections
        head = content[: self.settings.content_scan_chars]
        content_score = self.score_indicators(head)
        if SECTION_TITLE.lower() in head.lower():
            content_score = max(content_score, 0.7)
        return max(header_score, content_score)

    def _read(self, content: str) -> CSVTable:
        section = extract_section(
            content,
            title_markers=[SECTION_TITLE],
            header_markers=["exec time"],
            end_markers=NEXT_SECTION_TITLES,
        )
        if section is None:
            logger.debug("[CSV Parser] No '%s' section; reading file as-is", SECTION_TITLE)
            return super()._read(content)
        return read_table(section)

    def _extract(self, table: CSVTable, ctx: ParseContext) -> None:
        last_time = None
        for row in table.rows:
            exec_time = find_column_value(row, _EXEC_TIME_COLS)
            if exec_time is None and last_time is not None:
                row["Exec Time"] = last_time
            elif exec_time is not None:
                last_time = exec_time
        self._iterate(table, ctx, self._parse_row)

    def _parse_row(self, index: int, row: dict[str, str], ctx: ParseContext) -> None:
        raw_qty = find_column_value(row, ["Qty", "Quantity"])
        signed_qty = try_parse_number(raw_qty)
        if signed_qty is None:
            ctx.warn(index, "quantity", raw_qty, "Skipped row: no quantity", skip=True)
            return

        side = parse_side(find_column_value(row, ["Side"]))
        if side is None and signed_qty:
            side = "buy" if signed_qty > 0 else "sell"

        price = try_parse_number(find_column_value(row, ["Price"]))
        if not price:
            price = parse_number(find_column_value(row, ["Net Price"]))

        self._add_execution(
            ctx,
            index,
            raw_symbol=find_column_value(row, ["Symbol", "Underlying"]),
            side=side,
            price=price,
            quantity=abs(signed_qty),
            timestamp=parse_date(find_column_value(row, _EXEC_TIME_COLS)),
            commission=abs(parse_number(find_column_value(row, ["Commissions & Fees", "Commission"]))),
        )
