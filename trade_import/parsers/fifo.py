"""FIFO reconstruction of round-trip trades from individual fills.

Platforms that export raw order/execution logs (rather than finished round
trips) feed their fills through one FIFOMatcher. Per instrument, fills are
replayed in (timestamp, source row) order against a queue of open lots:

- A fill on the same side as the queue (or into an empty queue) opens or
  adds to the position.
- An opposite fill consumes lots from the front of the queue. Whatever is
  left after the queue empties opens a new lot on the other side (a flip).
- Every time the queue empties, the accumulated cycle becomes exactly one
  ParsedTrade with weighted-average entry/exit prices.
- Quantity still queued at end of input is reported as an open position
  warning and never turned into a trade.

Each instrument's queue is independent; nothing is shared between calls.
"""

from __future__ import annotations

import logging
from collections import OrderedDict, deque
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Optional

from .normalizers import instant_key
from .symbols import InstrumentMetadataProvider, StaticMultiplierTable
from .types import OpenPosition, ParsedTrade, ValidationError

logger = logging.getLogger(__name__)

_EPS = 1e-9


@dataclass
class Execution:
    """A single fill."""

    timestamp: datetime
    instrument: str  # root symbol
    side: str  # "buy" | "sell"
    price: float
    quantity: float
    source_row_index: int
    raw_symbol: str = ""
    commission: float = 0.0
    multiplier: Optional[float] = None  # per-fill override, e.g. IB "Multiplier" column

    def __post_init__(self) -> None:
        if self.side not in ("buy", "sell"):
            raise ValueError(f"side must be 'buy' or 'sell', got {self.side!r}")
        if self.quantity <= 0:
            raise ValueError(f"quantity must be positive, got {self.quantity}")
        if self.price <= 0:
            raise ValueError(f"price must be positive, got {self.price}")

    @property
    def commission_per_unit(self) -> float:
        return abs(self.commission) / self.quantity if self.quantity else 0.0


@dataclass
class OpenLot:
    execution: Execution
    quantity_remaining: float

    @property
    def side(self) -> str:
        return self.execution.side


@dataclass
class CycleAggregate:
    """Running totals for one flat-to-flat position cycle."""

    instrument: str
    direction: str  # "long" | "short"
    entry_time: datetime
    opening_row: int
    exit_time: Optional[datetime] = None
    total_qty: float = 0.0
    entry_notional: float = 0.0
    exit_notional: float = 0.0
    pnl: float = 0.0
    match_count: int = 0
    commission: float = 0.0
    raw_symbols: set[str] = field(default_factory=set)

    def record_match(
        self,
        entry_price: float,
        exit_price: float,
        quantity: float,
        multiplier: float,
        exit_time: datetime,
    ) -> None:
        self.total_qty += quantity
        self.entry_notional += entry_price * quantity
        self.exit_notional += exit_price * quantity
        delta = exit_price - entry_price if self.direction == "long" else entry_price - exit_price
        self.pnl += delta * quantity * multiplier
        self.match_count += 1
        self.exit_time = exit_time

    @property
    def duration_seconds(self) -> Optional[float]:
        if self.exit_time is None:
            return None
        return (instant_key(self.exit_time) - instant_key(self.entry_time)).total_seconds()


def format_duration(seconds: Optional[float]) -> str:
    if seconds is None:
        return "n/a"
    seconds = max(int(round(seconds)), 0)
    hours, rem = divmod(seconds, 3600)
    minutes, secs = divmod(rem, 60)
    if hours:
        return f"{hours}h {minutes}m {secs}s"
    if minutes:
        return f"{minutes}m {secs}s"
    return f"{secs}s"


def default_note(platform: str, cycle: CycleAggregate) -> str:
    parts = [
        f"Imported from {platform}",
        f"FIFO matched {cycle.match_count} fill{'s' if cycle.match_count != 1 else ''}",
        f"Duration: {format_duration(cycle.duration_seconds)}",
    ]
    contracts = sorted(s for s in cycle.raw_symbols if s and s.upper() != cycle.instrument)
    if contracts:
        parts.append(f"Contracts: {', '.join(contracts)}")
    if cycle.commission:
        parts.append(f"Commission: ${cycle.commission:.2f}")
    return " | ".join(parts)


def unknown_multiplier_warning(row: int, instrument: str) -> ValidationError:
    """Warning attached when P&L falls back to raw price points."""
    return ValidationError(
        row=row,
        field="instrument",
        value=instrument,
        message=f"No contract multiplier known for {instrument}; P&L is in raw price points",
        severity="warning",
        suggestion="Check P&L for this instrument or configure its point value",
    )


@dataclass
class MatchResult:
    trades: list[ParsedTrade] = field(default_factory=list)
    warnings: list[ValidationError] = field(default_factory=list)
    open_positions: list[OpenPosition] = field(default_factory=list)


class FIFOMatcher:
    """Turn a stream of fills into completed round-trip trades.

    Usage::

        matcher = FIFOMatcher(platform="Rithmic")
        result = matcher.match(executions)
        # result.trades, result.warnings, result.open_positions
    """

    def __init__(
        self,
        metadata: Optional[InstrumentMetadataProvider] = None,
        platform: str = "CSV",
        note_builder: Optional[Callable[[str, CycleAggregate], str]] = None,
    ) -> None:
        self.metadata = metadata or StaticMultiplierTable()
        self.platform = platform
        self.note_builder = note_builder or default_note

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def match(self, executions: list[Execution]) -> MatchResult:
        result = MatchResult()
        ordered = sorted(
            executions,
            key=lambda e: (instant_key(e.timestamp), e.source_row_index),
        )

        by_instrument: "OrderedDict[str, list[Execution]]" = OrderedDict()
        for execution in ordered:
            by_instrument.setdefault(execution.instrument, []).append(execution)

        for instrument, fills in by_instrument.items():
            self._match_instrument(instrument, fills, result)

        result.trades.sort(
            key=lambda t: (instant_key(t.date), t.row_index if t.row_index is not None else -1)
        )
        logger.info(
            "[FIFO] %s: %d fills across %d instruments -> %d trades, %d open positions",
            self.platform, len(executions), len(by_instrument),
            len(result.trades), len(result.open_positions),
        )
        return result

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _multiplier_for(
        self, instrument: str, fills: list[Execution], result: MatchResult,
    ) -> float:
        for fill in fills:
            if fill.multiplier is not None and fill.multiplier > 0:
                return fill.multiplier

        value = self.metadata.multiplier(instrument)
        if value is not None:
            return value

        logger.info("[FIFO] No contract multiplier for %s; P&L left in price points", instrument)
        result.warnings.append(unknown_multiplier_warning(fills[0].source_row_index + 1, instrument))
        return 1.0

    def _match_instrument(
        self, instrument: str, fills: list[Execution], result: MatchResult,
    ) -> None:
        multiplier = self._multiplier_for(instrument, fills, result)
        queue: deque[OpenLot] = deque()
        cycle: Optional[CycleAggregate] = None

        for fill in fills:
            remaining = fill.quantity
            while remaining > _EPS:
                if not queue or queue[0].side == fill.side:
                    # Opening or adding to the position
                    if cycle is None:
                        cycle = CycleAggregate(
                            instrument=instrument,
                            direction="long" if fill.side == "buy" else "short",
                            entry_time=fill.timestamp,
                            opening_row=fill.source_row_index,
                        )
                    queue.append(OpenLot(fill, remaining))
                    cycle.commission += fill.commission_per_unit * remaining
                    cycle.raw_symbols.add(fill.raw_symbol)
                    remaining = 0.0
                    break

                lot = queue[0]
                matched = min(remaining, lot.quantity_remaining)
                cycle.record_match(
                    entry_price=lot.execution.price,
                    exit_price=fill.price,
                    quantity=matched,
                    multiplier=multiplier,
                    exit_time=fill.timestamp,
                )
                cycle.commission += fill.commission_per_unit * matched
                cycle.raw_symbols.add(fill.raw_symbol)

                lot.quantity_remaining -= matched
                remaining -= matched
                if lot.quantity_remaining <= _EPS:
                    queue.popleft()

                if not queue:
                    result.trades.append(self._finalize(cycle))
                    cycle = None

        if queue:
            self._report_open(instrument, queue, result)

    def _finalize(self, cycle: CycleAggregate) -> ParsedTrade:
        return ParsedTrade(
            date=cycle.entry_time,
            instrument=cycle.instrument,
            direction=cycle.direction,
            entry_price=cycle.entry_notional / cycle.total_qty,
            exit_price=cycle.exit_notional / cycle.total_qty,
            size=cycle.total_qty,
            pnl=round(cycle.pnl, 10),
            commission=round(cycle.commission, 10) if cycle.commission else None,
            notes=self.note_builder(self.platform, cycle),
            row_index=cycle.opening_row,
        )

    def _report_open(
        self, instrument: str, queue: deque[OpenLot], result: MatchResult,
    ) -> None:
        side = queue[0].side
        quantity = sum(lot.quantity_remaining for lot in queue)
        first = queue[0].execution
        position = OpenPosition(
            instrument=instrument,
            side=side,
            quantity=quantity,
            opened_at=first.timestamp,
        )
        result.open_positions.append(position)
        result.warnings.append(
            ValidationError(
                row=first.source_row_index + 1,
                field="position",
                value=position.to_dict(),
                message=(
                    f"Open position not closed within file: {instrument} "
                    f"{'long' if side == 'buy' else 'short'} {quantity:g}; no trade created"
                ),
                severity="warning",
                suggestion="Include the closing fills in the export to import this trade",
            )
        )
        logger.info("[FIFO] %s left open: %s %g", instrument, side, quantity)
