"""Value normalizers shared by every broker parser.

Broker exports disagree on nearly everything a cell can hold:
- Money uses "$", thousands separators, currency codes ("5.38 USD") and
  parentheses for negatives: ($1,234.56)
- Timestamps come as ISO-8601, US month-first, two-digit years, IB compact
  forms (20240115;093015) or date-only
- Sides are "Buy", " Sell", "B", "S", "Sell Short", "Buy to Cover", ...
- Header spellings drift between export versions of the same platform

None of these helpers raise on bad input. Numbers fall back to 0 and dates
to None, so one malformed cell never aborts a row; callers decide whether
a None is a warning or an error.
"""

from __future__ import annotations

import math
import re
from datetime import date, datetime, timezone
from typing import Any, NamedTuple, Optional

import pandas as pd

from .types import ColumnMapping

# ---------------------------------------------------------------------------
# Numbers
# ---------------------------------------------------------------------------

_CURRENCY_CODE_RE = re.compile(r"^[A-Z]{3}\s+|\s+[A-Z]{3}$", re.IGNORECASE)
_NUMBER_NOISE_RE = re.compile(r"[$€£¥,\s]")


def try_parse_number(value: Any) -> Optional[float]:
    """Parse a numeric cell, returning None when it is not a number at all.

    Handles "$1,234.56", "1234.56", "(1234.56)", "$(25.00)", "-$5",
    "+2" and "5.38 USD".
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return None if math.isnan(value) or math.isinf(value) else float(value)

    text = str(value).strip()
    if not text:
        return None

    text = _CURRENCY_CODE_RE.sub("", text)
    text = _NUMBER_NOISE_RE.sub("", text)

    sign = 1.0
    if text.startswith("-"):
        sign = -1.0
        text = text[1:]

    # Parentheses mean negative (accounting convention)
    negative = text.startswith("(") and text.endswith(")")
    if negative:
        text = text[1:-1].replace("$", "")

    try:
        num = float(text)
    except ValueError:
        return None
    if math.isnan(num) or math.isinf(num):
        return None

    return -abs(num) if negative else num * sign


def parse_number(value: Any) -> float:
    """Parse a numeric cell; unparseable input yields 0.0."""
    num = try_parse_number(value)
    return 0.0 if num is None else num


# ---------------------------------------------------------------------------
# Dates
# ---------------------------------------------------------------------------

# Tried in order after ISO-8601. Month-first wins over day-first.
DATE_FORMATS = [
    "%Y-%m-%d %H:%M:%S",
    "%Y-%m-%dT%H:%M:%S",
    "%Y-%m-%d %H:%M",
    "%m/%d/%Y %H:%M:%S",
    "%m/%d/%Y %H:%M",
    "%m/%d/%Y %I:%M:%S %p",
    "%m/%d/%Y %I:%M %p",
    "%m/%d/%y %H:%M:%S",
    "%m/%d/%y %H:%M",
    "%d/%m/%Y %H:%M:%S",
    "%Y-%m-%d, %H:%M:%S",
    "%Y%m%d;%H%M%S",
    "%Y%m%d %H%M%S",
    "%Y%m%d %H:%M:%S",
    "%Y-%m-%d",
    "%m/%d/%Y",
    "%m/%d/%y",
    "%Y%m%d",
    "%b %d, %Y",
]


def _from_iso(text: str) -> Optional[datetime]:
    candidate = text[:-1] + "+00:00" if text.endswith(("Z", "z")) else text
    try:
        return datetime.fromisoformat(candidate)
    except ValueError:
        return None


def parse_date(value: Any) -> Optional[datetime]:
    """Parse a timestamp cell.

    Returns a naive datetime when the text carries no zone and an aware one
    when it does. Returns None (never epoch zero) when nothing matches.
    """
    if value is None:
        return None
    if isinstance(value, pd.Timestamp):
        return None if pd.isna(value) else value.to_pydatetime()
    if isinstance(value, datetime):
        return value
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day)

    text = str(value).strip()
    if not text:
        return None

    parsed = _from_iso(text)
    if parsed is not None:
        return parsed

    for fmt in DATE_FORMATS:
        try:
            return datetime.strptime(text, fmt)
        except ValueError:
            continue

    # Last resort: let pandas have a go at anything that is not a bare number
    if try_parse_number(text) is not None:
        return None
    try:
        ts = pd.to_datetime(text, errors="coerce")
    except (ValueError, TypeError, OverflowError):
        return None
    if ts is None or pd.isna(ts):
        return None
    return ts.to_pydatetime()


def parse_timestamp_assume_utc(value: Any) -> Optional[datetime]:
    """Like :func:`parse_date`, but zone-less timestamps are read as UTC.

    Used for platforms whose exports are known to be UTC without saying so,
    so the host machine's zone never leaks into fill ordering.
    """
    parsed = parse_date(value)
    if parsed is None:
        return None
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def instant_key(ts: datetime) -> datetime:
    """Comparable form of a timestamp: aware values become naive UTC."""
    if ts.tzinfo is not None:
        return ts.astimezone(timezone.utc).replace(tzinfo=None)
    return ts


# ---------------------------------------------------------------------------
# Direction / side
# ---------------------------------------------------------------------------

_SELL_WORDS = ("sell", "short", "sold", "sld")
_LONG_WORDS = ("buy", "long", "bought", "bot", "cover")


def parse_side(value: Any) -> Optional[str]:
    """Map an execution side cell to "buy" / "sell", or None if unknown."""
    if value is None:
        return None
    text = str(value).strip().lower()
    if not text:
        return None
    if text in ("b", "+"):
        return "buy"
    if text in ("s", "-"):
        return "sell"
    if "buy" in text or "bought" in text or "cover" in text or text in ("bot", "long"):
        return "buy"
    if any(word in text for word in _SELL_WORDS):
        return "sell"
    return None


def _is_short_text(text: str) -> bool:
    return "sell" in text or "short" in text or text == "s"


def _is_long_text(text: str) -> bool:
    return text in ("b", "l") or any(word in text for word in _LONG_WORDS)


def direction_is_explicit(value: Any) -> bool:
    """True when :func:`parse_direction` resolves the cell without a default."""
    if value is None:
        return False
    text = str(value).strip().lower()
    return _is_short_text(text) or _is_long_text(text)


def parse_direction(value: Any, default: str = "long") -> str:
    """Normalize a side/direction cell to "long" or "short".

    "sell"/"short" anywhere in the text, or a bare "s", mean short. Explicit
    buy/long words mean long. Anything else, including an empty cell,
    returns ``default``.
    """
    if value is None:
        return default
    text = str(value).strip().lower()
    if _is_short_text(text):
        return "short"
    if _is_long_text(text):
        return "long"
    return default


# ---------------------------------------------------------------------------
# Column lookup
# ---------------------------------------------------------------------------

_KEY_NOISE_RE = re.compile(r"[_\s]")


def _normalize_key(name: str) -> str:
    return _KEY_NOISE_RE.sub("", str(name).strip().lower())


def _is_empty(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        return not value.strip()
    if isinstance(value, float) and math.isnan(value):
        return True
    return False


def find_column_value(row: dict[str, Any], candidates: list[str]) -> Any:
    """Return the first non-empty value among the candidate header spellings.

    Matching ignores case, whitespace and underscores, so "Fill Time",
    "fill_time" and "FillTime" are the same column.
    """
    normalized = {_normalize_key(k): k for k in row if k is not None}
    for candidate in candidates:
        key = normalized.get(_normalize_key(candidate))
        if key is not None and not _is_empty(row[key]):
            return row[key]
    return None


def has_column(headers: list[str], candidates: list[str]) -> bool:
    keys = {_normalize_key(h) for h in headers}
    return any(_normalize_key(c) in keys for c in candidates)


# ---------------------------------------------------------------------------
# Fuzzy header matching (generic parser)
# ---------------------------------------------------------------------------

FIELD_ALIASES: dict[str, list[str]] = {
    "instrument": ["symbol", "instrument", "ticker", "contract", "asset", "pair"],
    "date": [
        "date", "time", "datetime", "timestamp", "placingtime", "exectime",
        "filltime", "entrytime", "opentime",
    ],
    "direction": ["side", "direction", "action", "type", "buysell", "longshort"],
    "entry_price": [
        "price", "entryprice", "fillprice", "avgprice", "executionprice", "openprice",
    ],
    "exit_price": ["exitprice", "closeprice", "closingprice"],
    "size": ["qty", "quantity", "size", "amount", "shares", "contracts", "lots"],
    "pnl": ["pnl", "profit", "loss", "netpnl", "realizedpnl", "pl", "profitloss"],
    "stop_loss": ["stoploss", "stop", "sl", "stopprice"],
    "take_profit": ["takeprofit", "target", "tp", "limitprice"],
    "commission": ["commission", "fee", "fees"],
}

_FUZZY_NOISE_RE = re.compile(r"[_\s\-/&.#()]")


class ColumnMatch(NamedTuple):
    field: Optional[str]
    confidence: float


def fuzzy_match_column(header: str) -> ColumnMatch:
    """Score a header against the alias table.

    A header matches an alias when either contains the other; confidence is
    the ratio of the shorter to the longer string. The best-scoring alias
    across all fields wins; ties go to the field listed first.
    """
    normalized = _FUZZY_NOISE_RE.sub("", str(header).lower())
    if len(normalized) < 2:
        return ColumnMatch(None, 0.0)

    best = ColumnMatch(None, 0.0)
    for field_name, aliases in FIELD_ALIASES.items():
        for alias in aliases:
            if alias in normalized or normalized in alias:
                ratio = min(len(normalized), len(alias)) / max(len(normalized), len(alias))
                if ratio > best.confidence:
                    best = ColumnMatch(field_name, round(ratio, 3))
    return best


def infer_data_type(header: str) -> str:
    lower = str(header).lower()
    if "date" in lower or "time" in lower:
        return "date"
    if any(word in lower for word in ("price", "qty", "pnl", "amount", "size", "p&l")):
        return "number"
    return "string"


def analyze_headers(
    headers: list[str],
    rows: Optional[list[dict[str, Any]]] = None,
    max_examples: int = 3,
) -> list[ColumnMapping]:
    """Build a column mapping report for a header row."""
    mappings: list[ColumnMapping] = []
    for header in headers:
        match = fuzzy_match_column(header)
        examples: list[str] = []
        for row in rows or []:
            value = row.get(header)
            if not _is_empty(value):
                examples.append(str(value))
            if len(examples) >= max_examples:
                break
        mappings.append(
            ColumnMapping(
                csv_column=header,
                app_field=match.field,
                confidence=match.confidence,
                examples=examples,
                data_type=infer_data_type(header),
            )
        )
    return mappings


def assign_columns(headers: list[str], min_confidence: float = 0.3) -> dict[str, str]:
    """Greedy one-to-one assignment of headers to app fields.

    Highest-confidence pairs are assigned first, each header and each field
    at most once.
    """
    scored: list[tuple[float, int, str, str]] = []
    for position, header in enumerate(headers):
        normalized = _FUZZY_NOISE_RE.sub("", str(header).lower())
        if len(normalized) < 2:
            continue
        for field_name, aliases in FIELD_ALIASES.items():
            best = 0.0
            for alias in aliases:
                if alias in normalized or normalized in alias:
                    best = max(best, min(len(normalized), len(alias)) / max(len(normalized), len(alias)))
            if best >= min_confidence:
                scored.append((best, position, field_name, header))

    scored.sort(key=lambda s: (-s[0], s[1]))
    assigned: dict[str, str] = {}
    used_headers: set[str] = set()
    for _, _, field_name, header in scored:
        if field_name in assigned or header in used_headers:
            continue
        assigned[field_name] = header
        used_headers.add(header)
    return assigned
