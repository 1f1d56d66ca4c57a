from .types import (
    BROKER_TYPES,
    ColumnMapping,
    DetectionResult,
    OpenPosition,
    ParsedTrade,
    ParseResult,
    ParseStats,
    TradeInput,
    ValidationError,
)
from .csv_reader import CSVImportError, CSVTable, read_table
from .normalizers import (
    analyze_headers,
    find_column_value,
    fuzzy_match_column,
    parse_date,
    parse_direction,
    parse_number,
    parse_timestamp_assume_utc,
)
from .symbols import (
    InstrumentMetadataProvider,
    StaticMultiplierTable,
    get_contract_multiplier,
    get_symbol_display_name,
    normalize_instrument,
)
from .fifo import Execution, FIFOMatcher, MatchResult
from .base import BaseCSVParser
from .tradovate import TradovateParser
from .thinkorswim import ThinkorswimParser
from .tradingview import TradingViewParser
from .interactive_brokers import InteractiveBrokersParser
from .rithmic import RithmicParser
from .ninjatrader import NinjaTraderParser
from .generic import GenericParser
from .registry import (
    ParserRegistry,
    UnknownBrokerError,
    build_default_registry,
    convert_trades_to_input,
    detect_broker_format,
    get_supported_brokers,
    parse_csv,
)
