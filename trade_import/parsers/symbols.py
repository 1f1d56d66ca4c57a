"""
Instrument symbol normalization and contract metadata.

Turns broker-specific contract symbols into root symbols so fills net
against each other across contract rolls:

    CME_MINI:MNQH2026  -> MNQ
    ESM4               -> ES
    MNQZ24             -> MNQ
    /ESH24             -> ES      (thinkorswim)
    NQ1!               -> NQ      (TradingView continuous)
    ES 12-24           -> ES      (NinjaTrader)
    COINBASE:BTCUSD    -> BTCUSD
    BLACKBULL:NAS100   -> NAS100

Also holds the dollar-per-point multiplier table used for P&L. The FIFO
engine talks to an InstrumentMetadataProvider rather than the table
directly, so callers can plug in their own instrument database.
"""

from __future__ import annotations

import re
from typing import Optional, Protocol

# Futures month codes
FUTURES_MONTH_CODES = frozenset("FGHJKMNQUVXZ")

# Known futures roots, longest first so "MNQ" wins over "NQ"
FUTURES_ROOTS = [
    # Micro contracts
    "MNQ", "MES", "MYM", "M2K", "MGC", "MSI", "MCL", "MBT", "MET",
    # Full-size
    "RTY", "BTC", "ETH",
    "NQ", "ES", "YM", "GC", "SI", "CL", "NG", "ZB", "ZN", "ZF", "ZT",
    "ZS", "ZC", "ZW", "HG", "PL", "PA", "HE", "LE",
    "6E", "6J", "6B", "6A", "6C", "6S",
]

EXCHANGE_PREFIXES = [
    "CME_MINI:", "CME_MICRO:", "CME:", "CBOT:", "NYMEX:", "COMEX:", "CBOE:",
    "COINBASE:", "BINANCE:", "BLACKBULL:", "OANDA:", "FXCM:", "IBKR:",
    "KRAKEN:", "BYBIT:", "GLOBEX:", "ICE:", "EUREX:", "SGX:", "HKEX:",
    "OSE:", "NSE:", "BSE:",
]

# "ES 12-24", "NQ 03-2025"
_NINJA_TAIL_RE = re.compile(r"\s*\d{1,2}-\d{2,4}$")
# TradingView continuous contracts: "NQ1!", "ES!"
_CONTINUOUS_RE = re.compile(r"[0-9]?!$")
# Any root + month code + 1-2 digit year: "RBZ4", "KEH25"
_GENERIC_CONTRACT_RE = re.compile(r"^([A-Z0-9]{1,5}?)([FGHJKMNQUVXZ])(\d{1,2})$")


def _strip_exchange(symbol: str) -> str:
    upper = symbol.upper()
    for prefix in EXCHANGE_PREFIXES:
        if upper.startswith(prefix):
            return symbol[len(prefix):]
    colon = symbol.find(":")
    if 0 < colon < len(symbol) - 1:
        return symbol[colon + 1:]
    return symbol


def _strip_contract(symbol: str) -> str:
    for root in FUTURES_ROOTS:
        if not symbol.startswith(root):
            continue
        rest = symbol[len(root):]
        if 2 <= len(rest) <= 5 and rest[0] in FUTURES_MONTH_CODES and rest[1:].isdigit():
            return root

    m = _GENERIC_CONTRACT_RE.match(symbol)
    if m and m.group(1):
        return m.group(1)
    return symbol


def _strip_once(symbol: str) -> str:
    symbol = _strip_exchange(symbol).strip()
    if symbol.startswith("/"):
        symbol = symbol[1:]
    symbol = _CONTINUOUS_RE.sub("", symbol).rstrip()
    symbol = _NINJA_TAIL_RE.sub("", symbol)
    symbol = re.sub(r"\s+", "", symbol).upper()
    return _strip_contract(symbol)


def normalize_instrument(raw: Optional[str]) -> str:
    """Reduce a raw contract symbol to its uppercase root symbol.

    Idempotent: normalizing an already-normalized root returns it unchanged.
    """
    if raw is None:
        return ""
    symbol = str(raw).strip()
    if not symbol:
        return ""

    # Repeat until stable so the result is always a fixed point
    stripped = _strip_once(symbol)
    while stripped != symbol:
        symbol, stripped = stripped, _strip_once(stripped)
    return symbol


DISPLAY_NAMES: dict[str, str] = {
    "MNQ": "Micro Nasdaq-100",
    "MES": "Micro S&P 500",
    "MYM": "Micro Dow",
    "M2K": "Micro Russell 2000",
    "NQ": "Nasdaq-100 E-mini",
    "ES": "S&P 500 E-mini",
    "YM": "Dow E-mini",
    "RTY": "Russell 2000 E-mini",
    "GC": "Gold",
    "SI": "Silver",
    "CL": "Crude Oil",
    "NG": "Natural Gas",
    "BTC": "Bitcoin",
    "ETH": "Ethereum",
    "BTCUSD": "Bitcoin/USD",
    "ETHUSD": "Ethereum/USD",
    "NAS100": "Nasdaq 100 CFD",
    "SPX500": "S&P 500 CFD",
    "US30": "Dow Jones CFD",
}


def get_symbol_display_name(symbol: str) -> Optional[str]:
    return DISPLAY_NAMES.get(str(symbol).upper())


# ---------------------------------------------------------------------------
# Contract multipliers
# ---------------------------------------------------------------------------

# Dollars per full point, per contract
CONTRACT_MULTIPLIERS: dict[str, float] = {
    # Equity index
    "ES": 50.0, "MES": 5.0,
    "NQ": 20.0, "MNQ": 2.0,
    "YM": 5.0, "MYM": 0.5,
    "RTY": 50.0, "M2K": 5.0,
    # Metals
    "GC": 100.0, "MGC": 10.0,
    "SI": 5000.0, "MSI": 1000.0,
    "HG": 25000.0, "PL": 50.0, "PA": 100.0,
    # Energy
    "CL": 1000.0, "MCL": 100.0,
    "NG": 10000.0,
    # Rates
    "ZB": 1000.0, "ZN": 1000.0, "ZF": 1000.0, "ZT": 2000.0,
    # Ags / livestock
    "ZS": 50.0, "ZC": 50.0, "ZW": 50.0,
    "HE": 400.0, "LE": 400.0,
    # Crypto
    "BTC": 5.0, "MBT": 0.1,
    "ETH": 50.0, "MET": 0.1,
    # FX
    "6E": 125000.0, "6J": 12500000.0, "6B": 62500.0,
    "6A": 100000.0, "6C": 100000.0, "6S": 125000.0,
}

DEFAULT_MULTIPLIER = 1.0


class InstrumentMetadataProvider(Protocol):
    def multiplier(self, instrument: str) -> Optional[float]:
        """Dollar value of one point for ``instrument``, or None if unknown."""
        ...


class StaticMultiplierTable:
    """Multiplier lookup backed by a plain dict (the built-in table by default)."""

    def __init__(self, table: Optional[dict[str, float]] = None) -> None:
        self._table = {k.upper(): float(v) for k, v in (table or CONTRACT_MULTIPLIERS).items()}

    def multiplier(self, instrument: str) -> Optional[float]:
        return self._table.get(normalize_instrument(instrument))


def get_contract_multiplier(
    instrument: str,
    provider: Optional[InstrumentMetadataProvider] = None,
) -> float:
    """Multiplier for ``instrument``; unknown symbols get 1 (raw points)."""
    provider = provider or StaticMultiplierTable()
    value = provider.multiplier(instrument)
    return DEFAULT_MULTIPLIER if value is None else value
