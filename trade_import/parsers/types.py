"""Shared record types for the broker CSV import pipeline.

Everything a parser produces or consumes lives here so parsers, the FIFO
engine and the registry agree on one shape.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any, Optional

import pandas as pd

BROKER_TYPES = (
    "tradovate",
    "thinkorswim",
    "tradingview",
    "interactive-brokers",
    "rithmic",
    "ninjatrader",
    "generic",
    "auto",
)

# Canonical columns for DataFrame output
CANONICAL_COLUMNS = [
    "date",
    "instrument",
    "direction",
    "entry_price",
    "exit_price",
    "size",
    "pnl",
    "commission",
]


def _iso(value: Any) -> Any:
    if isinstance(value, datetime):
        return value.isoformat()
    return value


@dataclass
class ParsedTrade:
    """One completed round trip, before conversion to a trade-input record."""

    date: Optional[datetime]
    instrument: str
    direction: str  # "long" | "short"
    entry_price: float
    exit_price: float
    size: float
    pnl: float

    stop_loss: Optional[float] = None
    take_profit: Optional[float] = None
    commission: Optional[float] = None
    notes: Optional[str] = None
    setup_name: Optional[str] = None

    row_index: Optional[int] = None  # 0-based data row the trade originated from
    raw_row: dict[str, Any] = field(default_factory=dict, repr=False)

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["date"] = _iso(self.date)
        data.pop("raw_row")
        return data


@dataclass
class ValidationError:
    row: int  # 1-based data row; 0 for file-level entries
    field: str
    value: Any
    message: str
    severity: str  # "error" | "warning"
    suggestion: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        value = self.value
        if isinstance(value, dict):
            value = {str(k): _iso(v) for k, v in value.items()}
        else:
            value = _iso(value)
        return {
            "row": self.row,
            "field": self.field,
            "value": value,
            "message": self.message,
            "severity": self.severity,
            "suggestion": self.suggestion,
        }


@dataclass
class ColumnMapping:
    csv_column: str
    app_field: Optional[str]
    confidence: float
    examples: list[str] = field(default_factory=list)
    data_type: str = "string"  # string | number | date | boolean


@dataclass
class OpenPosition:
    """Quantity left in an instrument's FIFO queue at end of file."""

    instrument: str
    side: str  # "buy" | "sell"
    quantity: float
    opened_at: Optional[datetime] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "instrument": self.instrument,
            "side": self.side,
            "quantity": self.quantity,
            "opened_at": _iso(self.opened_at),
        }


@dataclass
class ParseStats:
    total_rows: int = 0
    valid_trades: int = 0
    skipped_rows: int = 0
    duplicates: int = 0


@dataclass
class ParseResult:
    success: bool
    broker: str
    trades: list[ParsedTrade] = field(default_factory=list)
    errors: list[ValidationError] = field(default_factory=list)
    warnings: list[ValidationError] = field(default_factory=list)
    stats: ParseStats = field(default_factory=ParseStats)
    column_mappings: Optional[list[ColumnMapping]] = None
    open_positions: list[OpenPosition] = field(default_factory=list)

    def error_rows(self) -> set[int]:
        return {e.row for e in self.errors if e.severity == "error"}

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": self.success,
            "broker": self.broker,
            "trades": [t.to_dict() for t in self.trades],
            "errors": [e.to_dict() for e in self.errors],
            "warnings": [w.to_dict() for w in self.warnings],
            "stats": asdict(self.stats),
            "column_mappings": (
                [asdict(m) for m in self.column_mappings]
                if self.column_mappings is not None
                else None
            ),
            "open_positions": [p.to_dict() for p in self.open_positions],
        }

    def to_dataframe(self) -> pd.DataFrame:
        """Trades as a DataFrame with the canonical columns."""
        if not self.trades:
            return pd.DataFrame(columns=CANONICAL_COLUMNS)
        rows = [
            {
                "date": t.date,
                "instrument": t.instrument,
                "direction": t.direction,
                "entry_price": t.entry_price,
                "exit_price": t.exit_price,
                "size": t.size,
                "pnl": t.pnl,
                "commission": t.commission if t.commission is not None else 0.0,
            }
            for t in self.trades
        ]
        df = pd.DataFrame(rows)
        df["date"] = pd.to_datetime(df["date"], utc=True)
        return df[CANONICAL_COLUMNS].reset_index(drop=True)


@dataclass
class DetectionResult:
    broker: str
    confidence: float
    reason: str
    scores: dict[str, float] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class TradeInput:
    """Record handed to the trade store for bulk insertion."""

    date: str  # YYYY-MM-DD
    instrument: str
    direction: str
    entry_price: float
    exit_price: float
    stop_loss: float
    size: float
    pnl: float
    outcome: str  # win | loss | breakeven
    notes: str
    take_profit: Optional[float] = None
    setup_name: Optional[str] = None
    account_id: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)
