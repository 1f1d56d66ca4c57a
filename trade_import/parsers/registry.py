"""
Parser registry and the caller-facing import entry points.

The registry is an explicit object built once (``build_default_registry``)
and handed to whoever needs it; there is no module-level parser list.

    registry = build_default_registry(ImportSettings.from_env())
    result = parse_csv(content, registry)              # auto-detect
    records = convert_trades_to_input(result, registry, account_id="acc-1")
"""

from __future__ import annotations

import logging
from typing import Iterator, Optional

from ..config import ImportSettings
from .base import BaseCSVParser, trade_row
from .csv_reader import guess_header_line
from .generic import GenericParser
from .interactive_brokers import InteractiveBrokersParser
from .ninjatrader import NinjaTraderParser
from .rithmic import RithmicParser
from .symbols import InstrumentMetadataProvider
from .thinkorswim import ThinkorswimParser
from .tradingview import TradingViewParser
from .tradovate import TradovateParser
from .types import DetectionResult, ParseResult, TradeInput

logger = logging.getLogger(__name__)

AUTO = "auto"
FALLBACK_BROKER = "generic"

DEFAULT_PARSERS: tuple[type[BaseCSVParser], ...] = (
    TradovateParser,
    ThinkorswimParser,
    TradingViewParser,
    InteractiveBrokersParser,
    RithmicParser,
    NinjaTraderParser,
    GenericParser,
)


class UnknownBrokerError(KeyError):
    """No parser is registered under the requested broker id."""


class ParserRegistry:
    """Holds one parser per broker id and runs detection across all of them."""

    def __init__(
        self,
        settings: Optional[ImportSettings] = None,
        metadata: Optional[InstrumentMetadataProvider] = None,
    ) -> None:
        self.settings = settings or ImportSettings()
        self.metadata = metadata
        self._parsers: dict[str, BaseCSVParser] = {}

    def __iter__(self) -> Iterator[BaseCSVParser]:
        return iter(self._parsers.values())

    def __len__(self) -> int:
        return len(self._parsers)

    def __contains__(self, broker: object) -> bool:
        return broker in self._parsers

    def register(self, parser: BaseCSVParser) -> BaseCSVParser:
        if not parser.broker_type:
            raise ValueError(f"{type(parser).__name__} has no broker_type")
        if parser.broker_type in self._parsers:
            logger.info("[Registry] Replacing parser for %s", parser.broker_type)
        self._parsers[parser.broker_type] = parser
        return parser

    def get(self, broker: str, strict: bool = False) -> BaseCSVParser:
        """Parser for ``broker``; unknown ids fall back to the generic parser."""
        parser = self._parsers.get(broker)
        if parser is not None:
            return parser
        if strict or FALLBACK_BROKER not in self._parsers:
            raise UnknownBrokerError(broker)
        logger.info("[Registry] No parser for %r, using %s", broker, FALLBACK_BROKER)
        return self._parsers[FALLBACK_BROKER]

    # ------------------------------------------------------------------
    # Pipeline
    # ------------------------------------------------------------------

    def detect(self, content: str) -> DetectionResult:
        if not self._parsers:
            raise UnknownBrokerError(AUTO)

        headers = guess_header_line(content, self.settings.header_scan_lines)
        logger.debug("[Broker Detection] Detected headers: %s", headers)

        scored = [(parser, parser.detect(content, headers)) for parser in self]
        # Stable sort: ties keep registration order
        scored.sort(key=lambda item: item[1], reverse=True)
        logger.info(
            "[Broker Detection] Confidence scores: %s",
            ", ".join(f"{p.broker_name}: {c * 100:.0f}%" for p, c in scored),
        )

        best, confidence = scored[0]
        return DetectionResult(
            broker=best.broker_type,
            confidence=confidence,
            reason=f"Detected as {best.broker_name} with {confidence * 100:.0f}% confidence",
            scores={p.broker_type: c for p, c in scored},
        )

    def parse(self, content: str, broker: str = AUTO) -> ParseResult:
        if broker == AUTO:
            broker = self.detect(content).broker
        return self.get(broker).parse(content)

    def convert(self, result: ParseResult, account_id: Optional[str] = None) -> list[TradeInput]:
        """Trade-input records for every trade whose row carries no error."""
        parser = self.get(result.broker)
        error_rows = result.error_rows()
        records = [
            parser.convert_to_trade_input(trade, account_id)
            for position, trade in enumerate(result.trades)
            if trade_row(trade, position) not in error_rows
        ]
        excluded = len(result.trades) - len(records)
        if excluded:
            logger.info("[Registry] Excluded %d trades with validation errors", excluded)
        return records

    def supported_brokers(self) -> list[dict[str, str]]:
        return [
            {"id": parser.broker_type, "display_name": parser.broker_name}
            for parser in self
            if parser.broker_type not in (FALLBACK_BROKER, AUTO)
        ]


def build_default_registry(
    settings: Optional[ImportSettings] = None,
    metadata: Optional[InstrumentMetadataProvider] = None,
) -> ParserRegistry:
    registry = ParserRegistry(settings, metadata)
    for parser_cls in DEFAULT_PARSERS:
        registry.register(parser_cls(registry.settings, metadata))
    return registry


# ---------------------------------------------------------------------------
# Caller-facing entry points
# ---------------------------------------------------------------------------

def detect_broker_format(content: str, registry: ParserRegistry) -> DetectionResult:
    return registry.detect(content)


def parse_csv(content: str, registry: ParserRegistry, broker: str = AUTO) -> ParseResult:
    return registry.parse(content, broker)


def convert_trades_to_input(
    result: ParseResult,
    registry: ParserRegistry,
    account_id: Optional[str] = None,
) -> list[TradeInput]:
    return registry.convert(result, account_id)


def get_supported_brokers(registry: ParserRegistry) -> list[dict[str, str]]:
    return registry.supported_brokers()
