"""Base class shared by every broker parser.

A parser run is a template:

    content -> _read() -> CSVTable
            -> _extract()  row loop, one handler call per data row
                           (pre-matched trades and/or FIFO executions)
            -> FIFO matching of collected executions
            -> validate()  baseline checks on every trade
            -> ParseResult

Subclasses set ``broker_type`` / ``broker_name`` / ``indicators`` and
implement ``_parse_row`` (or override ``_extract`` when a platform has
more than one export layout). Any exception escaping a row handler is
caught and recorded against that row; only tokenizer failures propagate.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Iterable, Optional

from ..config import ImportSettings
from .csv_reader import CSVTable, read_table
from .fifo import Execution, FIFOMatcher, unknown_multiplier_warning
from .normalizers import (
    direction_is_explicit,
    parse_direction,
)
from .symbols import InstrumentMetadataProvider, StaticMultiplierTable, normalize_instrument
from .types import (
    ColumnMapping,
    OpenPosition,
    ParsedTrade,
    ParseResult,
    ParseStats,
    TradeInput,
    ValidationError,
)

logger = logging.getLogger(__name__)

# Order statuses that never produced a fill
_DEAD_STATUS_WORDS = ("reject", "cancel", "expire")
# Statuses that did
_FILLED_STATUS_WORDS = ("fill", "complete", "executed", "done", "trade")


def status_is_filled(status: Any) -> bool:
    """True for terminal filled statuses; an absent status counts as filled."""
    if status is None:
        return True
    text = str(status).strip().lower()
    if not text:
        return True
    if any(word in text for word in _DEAD_STATUS_WORDS):
        return False
    return any(word in text for word in _FILLED_STATUS_WORDS)


def trade_fingerprint(trade: ParsedTrade) -> str:
    when = trade.date.isoformat() if trade.date is not None else ""
    return f"{trade.instrument}|{when}|{trade.entry_price}|{trade.size}"


def find_duplicates(trades: list[ParsedTrade]) -> list[int]:
    """Indices of trades whose fingerprint already appeared earlier."""
    seen: set[str] = set()
    duplicates: list[int] = []
    for idx, trade in enumerate(trades):
        key = trade_fingerprint(trade)
        if key in seen:
            duplicates.append(idx)
        else:
            seen.add(key)
    return duplicates


def trade_row(trade: ParsedTrade, position: int) -> int:
    """1-based row number a trade's validation entries are reported against."""
    return (trade.row_index if trade.row_index is not None else position) + 1


@dataclass
class ParseContext:
    """Mutable state for one parse() call."""

    total_rows: int = 0
    trades: list[ParsedTrade] = field(default_factory=list)
    executions: list[Execution] = field(default_factory=list)
    issues: list[ValidationError] = field(default_factory=list)
    open_positions: list[OpenPosition] = field(default_factory=list)
    column_mappings: Optional[list[ColumnMapping]] = None
    skipped: set[int] = field(default_factory=set)
    defaulted_direction_rows: list[int] = field(default_factory=list)

    def error(self, index: int, field_name: str, value: Any, message: str,
              suggestion: Optional[str] = None) -> None:
        """Record an extraction error on data row ``index``; the row is skipped."""
        self.issues.append(ValidationError(index + 1, field_name, value, message, "error", suggestion))
        self.skipped.add(index)

    def warn(self, index: int, field_name: str, value: Any, message: str,
             suggestion: Optional[str] = None, skip: bool = False) -> None:
        self.issues.append(ValidationError(index + 1, field_name, value, message, "warning", suggestion))
        if skip:
            self.skipped.add(index)

    def skip(self, index: int) -> None:
        self.skipped.add(index)


class BaseCSVParser:
    broker_type: str = ""
    broker_name: str = ""

    # Lower-case header substrings unique to this platform's exports
    indicators: tuple[str, ...] = ()
    # (minimum matches, confidence), highest first
    confidence_tiers: tuple[tuple[int, float], ...] = ((4, 0.95), (2, 0.7), (1, 0.4))
    floor_confidence: float = 0.1

    # Words that identify the header row when exports carry preamble lines
    header_keywords: Optional[tuple[str, ...]] = None

    def __init__(
        self,
        settings: Optional[ImportSettings] = None,
        metadata: Optional[InstrumentMetadataProvider] = None,
    ) -> None:
        self.settings = settings or ImportSettings()
        self.metadata = metadata or StaticMultiplierTable()

    def __repr__(self) -> str:
        return f"<{type(self).__name__} broker={self.broker_type!r}>"

    # ------------------------------------------------------------------
    # Detection
    # ------------------------------------------------------------------

    def score_indicators(self, text: str, indicators: Optional[Iterable[str]] = None) -> float:
        """Tiered confidence from how many indicator substrings ``text`` holds."""
        text = text.lower()
        wanted = self.indicators if indicators is None else tuple(indicators)
        matches = sum(1 for ind in wanted if ind in text)
        for minimum, confidence in self.confidence_tiers:
            if matches >= minimum:
                return confidence
        return self.floor_confidence

    def detect(self, content: str, headers: list[str]) -> float:
        return self.score_indicators(" ".join(headers))

    # ------------------------------------------------------------------
    # Parsing
    # ------------------------------------------------------------------

    def parse(self, content: str) -> ParseResult:
        table = self._read(content)
        ctx = ParseContext(total_rows=len(table.rows))

        if table.empty:
            ctx.issues.append(
                ValidationError(0, "file", None, "No data rows found", "error",
                                "Export the file again and make sure it contains trades")
            )
        else:
            self._extract(table, ctx)

        if ctx.executions:
            matched = self._matcher().match(ctx.executions)
            ctx.trades.extend(matched.trades)
            ctx.issues.extend(matched.warnings)
            ctx.open_positions.extend(matched.open_positions)

        if ctx.defaulted_direction_rows:
            logger.info(
                "[CSV Parser] %s: direction defaulted to %s on %d rows",
                self.broker_name, self.settings.default_direction,
                len(ctx.defaulted_direction_rows),
            )

        ctx.issues.extend(self.validate(ctx.trades))
        return self._build_result(ctx)

    def _read(self, content: str) -> CSVTable:
        return read_table(content, self.header_keywords, self.settings.header_scan_lines)

    def _extract(self, table: CSVTable, ctx: ParseContext) -> None:
        self._iterate(table, ctx, self._parse_row)

    def _iterate(
        self,
        table: CSVTable,
        ctx: ParseContext,
        handler: Callable[[int, dict[str, str], ParseContext], None],
    ) -> None:
        for index, row in enumerate(table.rows):
            try:
                handler(index, row, ctx)
            except Exception as exc:
                logger.debug("[CSV Parser] %s row %d failed", self.broker_name, index + 1, exc_info=True)
                ctx.error(index, "parse", dict(row), str(exc) or "Failed to parse row")

    def _parse_row(self, index: int, row: dict[str, str], ctx: ParseContext) -> None:
        """Turn one data row into a trade or execution on ``ctx``."""
        raise NotImplementedError

    def _matcher(self) -> FIFOMatcher:
        return FIFOMatcher(metadata=self.metadata, platform=self.broker_name)

    # ------------------------------------------------------------------
    # Row helpers
    # ------------------------------------------------------------------

    def _direction(self, value: Any, index: int, ctx: ParseContext) -> str:
        default = self.settings.default_direction
        if direction_is_explicit(value):
            return parse_direction(value, default)
        ctx.defaulted_direction_rows.append(index)
        ctx.warn(
            index, "direction", value,
            f"Could not determine direction; assumed {default}",
            "Check this trade's side in your broker platform",
        )
        return default

    def _point_value(self, instrument: str, index: int, ctx: ParseContext) -> float:
        """Contract multiplier for a pre-matched trade; unknown symbols warn and use 1."""
        value = self.metadata.multiplier(instrument)
        if value is not None:
            return value
        logger.info("[CSV Parser] No contract multiplier for %s; P&L left in price points", instrument)
        ctx.issues.append(unknown_multiplier_warning(index + 1, instrument))
        return 1.0

    def _add_execution(
        self,
        ctx: ParseContext,
        index: int,
        raw_symbol: Any,
        side: Optional[str],
        price: float,
        quantity: float,
        timestamp: Any,
        commission: float = 0.0,
        multiplier: Optional[float] = None,
    ) -> bool:
        """Queue one fill for FIFO matching, recording why when it is unusable."""
        symbol = str(raw_symbol).strip() if raw_symbol is not None else ""
        instrument = normalize_instrument(symbol)
        if not instrument:
            ctx.error(index, "instrument", raw_symbol, "Missing instrument/symbol",
                      "Ensure your CSV has a Symbol or Instrument column")
            return False
        if timestamp is None:
            ctx.error(index, "date", None, "Missing or invalid fill time",
                      "Check the date format in your CSV")
            return False
        if side not in ("buy", "sell"):
            ctx.warn(index, "side", side, "Skipped row: could not determine Buy/Sell side",
                     "Ensure the export includes a side/action column", skip=True)
            return False
        if quantity <= 0 or price <= 0:
            ctx.warn(index, "quantity" if quantity <= 0 else "price",
                     quantity if quantity <= 0 else price,
                     "Skipped row: no filled quantity or price", skip=True)
            return False

        ctx.executions.append(
            Execution(
                timestamp=timestamp,
                instrument=instrument,
                side=side,
                price=price,
                quantity=quantity,
                source_row_index=index,
                raw_symbol=symbol,
                commission=commission,
                multiplier=multiplier,
            )
        )
        return True

    def _note(self, raw_symbol: Any = None, instrument: str = "", extra: Iterable[str] = ()) -> str:
        parts = [f"Imported from {self.broker_name}"]
        raw = str(raw_symbol).strip() if raw_symbol else ""
        if raw and raw.upper() != instrument:
            parts.append(f"Contract: {raw}")
        parts.extend(p for p in extra if p)
        return " | ".join(parts)

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    def validate(self, trades: list[ParsedTrade]) -> list[ValidationError]:
        """Baseline checks every platform shares."""
        issues: list[ValidationError] = []
        for position, trade in enumerate(trades):
            row = trade_row(trade, position)

            if not trade.instrument or trade.instrument.upper() == "UNKNOWN":
                issues.append(ValidationError(
                    row, "instrument", trade.instrument,
                    "Missing or invalid instrument/symbol", "error",
                    "Ensure your CSV has a Symbol or Instrument column",
                ))
            if trade.date is None:
                issues.append(ValidationError(
                    row, "date", trade.date, "Missing or invalid date", "error",
                    "Check date format in your CSV",
                ))
            if not trade.entry_price > 0:
                issues.append(ValidationError(
                    row, "entry_price", trade.entry_price,
                    "Entry price must be greater than 0", "error",
                ))
            if not trade.size > 0:
                issues.append(ValidationError(
                    row, "size", trade.size,
                    "Size/quantity must be greater than 0", "error",
                ))
            if trade.exit_price == trade.entry_price:
                issues.append(ValidationError(
                    row, "exit_price", trade.exit_price,
                    "Exit price equals entry price", "warning",
                    "This will result in 0 P&L",
                ))
        return issues

    # ------------------------------------------------------------------
    # Result / conversion
    # ------------------------------------------------------------------

    def _build_result(self, ctx: ParseContext) -> ParseResult:
        errors = [i for i in ctx.issues if i.severity == "error"]
        warnings = [i for i in ctx.issues if i.severity != "error"]
        error_rows = {e.row for e in errors}
        valid = sum(
            1 for pos, t in enumerate(ctx.trades) if trade_row(t, pos) not in error_rows
        )

        result = ParseResult(
            success=not errors,
            broker=self.broker_type,
            trades=ctx.trades,
            errors=errors,
            warnings=warnings,
            stats=ParseStats(
                total_rows=ctx.total_rows,
                valid_trades=valid,
                skipped_rows=len(ctx.skipped),
                duplicates=len(find_duplicates(ctx.trades)),
            ),
            column_mappings=ctx.column_mappings,
            open_positions=ctx.open_positions,
        )
        logger.info(
            "[CSV Parser] %s: %d rows -> %d trades (%d errors, %d warnings, %d duplicates)",
            self.broker_name, result.stats.total_rows, len(result.trades),
            len(errors), len(warnings), result.stats.duplicates,
        )
        return result

    def convert_to_trade_input(self, trade: ParsedTrade, account_id: Optional[str] = None) -> TradeInput:
        if trade.date is None:
            raise ValueError("cannot convert a trade without a date")
        pnl = trade.pnl or 0.0
        if pnl > 0:
            outcome = "win"
        elif pnl < 0:
            outcome = "loss"
        else:
            outcome = "breakeven"
        stop_loss = trade.stop_loss if trade.stop_loss else trade.entry_price

        return TradeInput(
            date=trade.date.date().isoformat(),
            instrument=trade.instrument,
            direction=trade.direction,
            entry_price=trade.entry_price,
            exit_price=trade.exit_price,
            stop_loss=stop_loss,
            size=trade.size,
            pnl=pnl,
            outcome=outcome,
            notes=trade.notes or f"Imported from {self.broker_name}",
            take_profit=trade.take_profit,
            setup_name=trade.setup_name,
            account_id=account_id,
        )
