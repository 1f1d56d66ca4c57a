"""Tests for the platform parsers, one class per export format."""

import json
from datetime import datetime, timezone

import pytest

from trade_import.config import ImportSettings
from trade_import.parsers.generic import GenericParser
from trade_import.parsers.interactive_brokers import InteractiveBrokersParser, merge_trade_datetime
from trade_import.parsers.ninjatrader import NinjaTraderParser
from trade_import.parsers.rithmic import RithmicParser, infer_side
from trade_import.parsers.thinkorswim import ThinkorswimParser
from trade_import.parsers.tradingview import TradingViewParser
from trade_import.parsers.tradovate import TradovateParser


# ---------------------------------------------------------------------------
# Sample exports
# ---------------------------------------------------------------------------

TRADOVATE_PERFORMANCE = """symbol,_priceFormat,_priceFormatType,_tickSize,buyFillId,sellFillId,qty,buyPrice,sellPrice,pnl,boughtTimestamp,soldTimestamp,duration
MESH4,-2,0,0.25,1001,1002,2,4800.00,4805.00,$50.00,01/15/2024 14:30:00,01/15/2024 14:35:00,5min 0sec
MESH4,-2,0,0.25,1003,1004,1,4810.00,4800.00,$(50.00),01/15/2024 15:10:00,01/15/2024 15:00:00,10min 0sec
"""

TRADOVATE_ORDERS = """orderId,Account,B/S,Contract,Product,avgPrice,filledQty,Fill Time,Status,Timestamp
1,DEMO1,Buy,ESH4,ES,4800.00,2,01/15/2024 14:30:00,Filled,01/15/2024 14:29:59
2,DEMO1,Sell,ESH4,ES,4810.00,2,01/15/2024 14:45:00,Filled,01/15/2024 14:44:59
3,DEMO1,Sell,ESH4,ES,4820.00,0,,Canceled,01/15/2024 14:50:00
4,DEMO1,Buy,ESH4,ES,,0,,Rejected,01/15/2024 14:51:00
"""

THINKORSWIM_STATEMENT = """Account Statement for 123456 since 1/15/24 through 1/16/24

Cash Balance
DATE,TIME,TYPE,REF #,DESCRIPTION,Misc Fees,Commissions & Fees,AMOUNT,BALANCE
1/15/24,09:00:00,BAL,,Cash balance,,,,"10,000.00"

Account Trade History
,Exec Time,Spread,Side,Qty,Pos Effect,Symbol,Exp,Strike,Type,Price,Net Price,Order Type
,1/15/24 09:31:02,FUTURE,BUY,+2,TO OPEN,/ESH24,MAR 24,,FUTURE,4800.25,4800.25,LMT
,1/15/24 09:45:10,FUTURE,SELL,-1,TO CLOSE,/ESH24,MAR 24,,FUTURE,4805.25,4805.25,LMT
,,,SELL,-1,TO CLOSE,/ESH24,MAR 24,,FUTURE,4806.25,,

Profits and Losses
Symbol,Description,P/L Open,P/L %,P/L Day
/ES,E-mini S&P 500,$0.00,0.00%,$550.00
"""

TRADINGVIEW_ORDERS = """Symbol,Side,Type,Qty,Limit Price,Stop Price,Fill Price,Status,Commission,Leverage,Margin,Placing Time,Closing Time,Order ID
CME_MINI:MNQH2024,Buy,Market,2,,,17000.00,Filled,1.24,,,2024-01-15 14:30:00,2024-01-15 14:30:01,1001
CME_MINI:MNQH2024,Sell,Limit,2,17050.00,,17050.00,Filled,1.24,,,2024-01-15 14:40:00,2024-01-15 14:45:00,1002
CME_MINI:MNQH2024,Sell,Stop,2,,16950.00,,Cancelled,,,,2024-01-15 14:40:00,2024-01-15 14:45:00,1003
"""

TRADINGVIEW_LIST_OF_TRADES = """Trade #,Type,Signal,Date/Time,Price USD,Contracts,Profit USD,Symbol
1,Exit Long,Close,2024-01-15 15:00,4810.00,1,500.00,ES1!
1,Entry Long,Buy,2024-01-15 14:30,4800.00,1,500.00,ES1!
2,Entry Short,Sell,2024-01-16 10:00,4820.00,2,-100.00,ES1!
2,Exit Short,Cover,2024-01-16 10:30,4821.00,2,-100.00,ES1!
3,Entry Long,Buy,2024-01-17 10:00,4830.00,1,,ES1!
"""

IB_FLEX = """Symbol,AssetClass,Buy/Sell,Quantity,TradePrice,TradeDate,TradeTime,IBCommission,Multiplier,Conid
ESH4,FUT,BUY,2,4800.00,20240115,093015,-4.50,50,123
ESH4,FUT,SELL,-2,4810.00,20240115,101500,-4.50,50,123
AAPL,STK,,100,185.00,20240116,093000,-1.00,1,265598
AAPL,STK,,-100,186.50,20240116,150000,-1.00,1,265598
"""

IB_ACTIVITY = """DataDiscriminator,Symbol,Buy/Sell,Quantity,TradePrice,Date/Time,IBCommission
Order,ESH4,BUY,1,4800,"2024-01-15, 09:30:15",-2.25
SubTotal,ESH4,,1,,,
Order,ESH4,SELL,-1,4801,"2024-01-15, 09:40:00",-2.25
"""

RITHMIC_ORDER_HISTORY = """Order Number,Account,Symbol,Exchange,Buys,Sells,Qty Filled,Avg Fill Price,Fill Time,Status,Commission,Fees
A1,ACC,MNQH4,CME,1,,1,17000.00,2024-01-15 09:30:00,Filled,0.50,0.25
A2,ACC,MNQH4,CME,,1,1,17010.00,2024-01-15 09:35:00,Filled,0.50,0.25
A3,ACC,MNQH4,CME,,1,0,,2024-01-15 09:36:00,Cancelled,,
"""

RITHMIC_EXECUTIONS = """ExecutionId,OrderId,ExecType,Symbol,Exchange,Side,Quantity,Price,ExecutionTime,Liquidity
E1,O1,Fill,ESH4,CME,B,1,4800.00,2024-01-15 09:30:00,Added
E2,O2,Fill,ESH4,CME,S,1,4795.00,2024-01-15 09:31:00,Removed
"""

NINJATRADER_EXECUTIONS = """Instrument,Action,Quantity,Price,Time,ID,E/X,Position,Order ID,Name,Commission,Rate,Account,Connection
ES 03-24,Sell Short,1,4800.00,1/15/2024 9:31:02 AM,1,Entry,1 S,o1,Sell,2.09,1,Sim101,Sim
ES 03-24,Buy to Cover,1,4790.00,1/15/2024 9:45:10 AM,2,Exit,-,o2,Exit,2.09,1,Sim101,Sim
"""

NINJATRADER_TRADES = """Trade number,Instrument,Account,Strategy,Market pos.,Qty,Entry price,Exit price,Entry time,Exit time,Entry name,Exit name,Profit,Cum. net profit,Commission
1,NQ 03-24,Sim101,,Long,1,17000.00,17020.00,1/15/2024 9:31:02 AM,1/15/2024 9:40:00 AM,Entry,Exit,$400.00,$400.00,$4.18
2,NQ 03-24,Sim101,,Short,2,17030.00,17040.00,1/15/2024 10:00:00 AM,1/15/2024 10:05:00 AM,Entry,Stop,($400.00),$0.00,$8.36
"""

GENERIC_ROUND_TRIPS = """Ticker,Date,Direction,Entry Price,Exit Price,Quantity,P&L
AAPL,2024-01-15,Long,185.00,186.50,100,150.00
TSLA,2024-01-16,Short,250.00,245.00,10,50.00
MSFT,2024-01-17,Sideways,400.00,401.00,5,5.00
"""


def _fields(issues):
    return [i.field for i in issues]


class TestTradovate:
    def test_performance_report(self):
        result = TradovateParser().parse(TRADOVATE_PERFORMANCE)

        assert result.success
        assert result.broker == "tradovate"
        assert len(result.trades) == 2

        long_trade, short_trade = result.trades
        assert long_trade.instrument == "MES"
        assert long_trade.direction == "long"
        assert long_trade.entry_price == 4800.0
        assert long_trade.exit_price == 4805.0
        assert long_trade.size == 2
        assert long_trade.pnl == pytest.approx(50.0)
        assert long_trade.date == datetime(2024, 1, 15, 14, 30, tzinfo=timezone.utc)
        assert "Duration: 5min 0sec" in long_trade.notes

    def test_sold_first_is_short(self):
        short_trade = TradovateParser().parse(TRADOVATE_PERFORMANCE).trades[1]
        assert short_trade.direction == "short"
        assert short_trade.entry_price == 4800.0
        assert short_trade.exit_price == 4810.0
        assert short_trade.pnl == pytest.approx(-50.0)
        assert short_trade.date == datetime(2024, 1, 15, 15, 0, tzinfo=timezone.utc)

    def test_performance_report_without_pnl_column(self):
        content = (
            "symbol,qty,buyPrice,sellPrice,boughtTimestamp,soldTimestamp\n"
            "ESH4,1,4800.00,4802.00,01/15/2024 14:30:00,01/15/2024 14:35:00\n"
            "ZZZH4,1,10.00,12.00,01/15/2024 15:00:00,01/15/2024 15:05:00\n"
        )
        result = TradovateParser().parse(content)

        es, zzz = result.trades
        assert es.pnl == pytest.approx(100.0)
        assert zzz.pnl == pytest.approx(2.0)
        assert len(result.warnings) == 1
        assert result.warnings[0].field == "instrument"
        assert result.warnings[0].row == 2
        assert result.warnings[0].value == "ZZZ"

    def test_orders_export_is_fifo_matched(self):
        result = TradovateParser().parse(TRADOVATE_ORDERS)

        assert result.success
        assert len(result.trades) == 1
        trade = result.trades[0]
        assert trade.instrument == "ES"
        assert trade.direction == "long"
        assert trade.size == 2
        assert trade.pnl == pytest.approx(1000.0)
        assert trade.date.tzinfo == timezone.utc

    def test_cancelled_and_rejected_orders_skipped(self):
        result = TradovateParser().parse(TRADOVATE_ORDERS)
        assert result.stats.total_rows == 4
        assert result.stats.skipped_rows == 2
        assert result.stats.valid_trades == 1

    def test_layout_detection(self):
        assert TradovateParser.is_performance_report(["boughtTimestamp", "soldTimestamp"])
        assert not TradovateParser.is_performance_report(["B/S", "Contract"])

    def test_detect(self):
        headers = TRADOVATE_PERFORMANCE.splitlines()[0].split(",")
        assert TradovateParser().detect(TRADOVATE_PERFORMANCE, headers) == 0.95

    def test_result_is_json_serializable(self):
        result = TradovateParser().parse(TRADOVATE_PERFORMANCE)
        data = json.loads(json.dumps(result.to_dict()))
        assert data["trades"][0]["date"] == "2024-01-15T14:30:00+00:00"
        assert "raw_row" not in data["trades"][0]

    def test_to_dataframe(self):
        df = TradovateParser().parse(TRADOVATE_PERFORMANCE).to_dataframe()
        assert list(df.columns) == [
            "date", "instrument", "direction", "entry_price",
            "exit_price", "size", "pnl", "commission",
        ]
        assert len(df) == 2
        assert str(df["date"].dt.tz) == "UTC"
        assert df["pnl"].sum() == pytest.approx(0.0)


class TestThinkorswim:
    def test_statement_trade_history(self):
        result = ThinkorswimParser().parse(THINKORSWIM_STATEMENT)

        assert result.success
        assert result.stats.total_rows == 3
        assert len(result.trades) == 1
        trade = result.trades[0]
        assert trade.instrument == "ES"
        assert trade.direction == "long"
        assert trade.size == 2
        assert trade.entry_price == pytest.approx(4800.25)
        assert trade.exit_price == pytest.approx(4805.75)
        assert trade.pnl == pytest.approx(550.0)
        assert "Contracts: /ESH24" in trade.notes

    def test_continuation_row_inherits_exec_time(self):
        result = ThinkorswimParser().parse(THINKORSWIM_STATEMENT)
        assert result.errors == []
        assert result.open_positions == []

    def test_plain_trade_history_without_statement(self):
        content = (
            "Exec Time,Side,Qty,Symbol,Price\n"
            "1/15/24 09:31:02,SELL,-1,/NQH24,17000\n"
            "1/15/24 09:40:00,BUY,+1,/NQH24,16990\n"
        )
        trade = ThinkorswimParser().parse(content).trades[0]
        assert trade.instrument == "NQ"
        assert trade.direction == "short"
        assert trade.pnl == pytest.approx(200.0)

    def test_side_from_signed_qty(self):
        content = (
            "Exec Time,Qty,Symbol,Price\n"
            "1/15/24 09:31:02,+1,/ESH24,4800\n"
            "1/15/24 09:40:00,-1,/ESH24,4801\n"
        )
        trade = ThinkorswimParser().parse(content).trades[0]
        assert trade.direction == "long"
        assert trade.pnl == pytest.approx(50.0)

    def test_detect_finds_buried_section(self):
        assert ThinkorswimParser().detect(THINKORSWIM_STATEMENT, ["DATE", "TIME", "TYPE"]) == 0.95


class TestTradingView:
    def test_order_history(self):
        result = TradingViewParser().parse(TRADINGVIEW_ORDERS)

        assert result.success
        assert len(result.trades) == 1
        trade = result.trades[0]
        assert trade.instrument == "MNQ"
        assert trade.size == 2
        assert trade.entry_price == 17000.0
        assert trade.exit_price == 17050.0
        assert trade.pnl == pytest.approx(200.0)
        assert trade.commission == pytest.approx(2.48)
        assert result.stats.skipped_rows == 1

    def test_order_history_uses_closing_time(self):
        trade = TradingViewParser().parse(TRADINGVIEW_ORDERS).trades[0]
        assert trade.date == datetime(2024, 1, 15, 14, 30, 1)

    def test_list_of_trades_pairs_entries_and_exits(self):
        result = TradingViewParser().parse(TRADINGVIEW_LIST_OF_TRADES)

        assert len(result.trades) == 2
        first, second = result.trades
        assert first.instrument == "ES"
        assert first.direction == "long"
        assert first.entry_price == 4800.0
        assert first.exit_price == 4810.0
        assert first.pnl == pytest.approx(500.0)
        assert first.row_index == 1
        assert "Trade #1" in first.notes

        assert second.direction == "short"
        assert second.size == 2
        assert second.pnl == pytest.approx(-100.0)

    def test_unpaired_trade_is_warned_and_skipped(self):
        result = TradingViewParser().parse(TRADINGVIEW_LIST_OF_TRADES)
        unpaired = [w for w in result.warnings if w.field == "trade"]
        assert len(unpaired) == 1
        assert unpaired[0].value == "3"
        assert unpaired[0].row == 5

    def test_list_of_trades_without_symbol_is_rejected(self):
        content = (
            "Trade #,Type,Signal,Date/Time,Price USD,Contracts,Profit USD\n"
            "1,Entry Long,Buy,2024-01-15 14:30,4800.00,1,500.00\n"
            "1,Exit Long,Close,2024-01-15 15:00,4810.00,1,500.00\n"
        )
        result = TradingViewParser().parse(content)
        assert result.trades[0].instrument == "UNKNOWN"
        assert not result.success
        assert _fields(result.errors) == ["instrument"]

    def test_tradingview_in_content_boosts_score(self):
        content = "Exported from TradingView\nfoo,bar\n1,2\n"
        assert TradingViewParser().detect(content, ["foo", "bar"]) == 0.9


class TestInteractiveBrokers:
    def test_flex_query(self):
        result = InteractiveBrokersParser().parse(IB_FLEX)

        assert result.success
        assert [t.instrument for t in result.trades] == ["ES", "AAPL"]

        es, aapl = result.trades
        assert es.date == datetime(2024, 1, 15, 9, 30, 15)
        assert es.pnl == pytest.approx(1000.0)
        assert es.commission == pytest.approx(9.0)

        assert aapl.direction == "long"
        assert aapl.size == 100
        assert aapl.pnl == pytest.approx(150.0)

    def test_multiplier_column_suppresses_unknown_warning(self):
        result = InteractiveBrokersParser().parse(IB_FLEX)
        assert "instrument" not in _fields(result.warnings)

    def test_subtotal_rows_skipped(self):
        result = InteractiveBrokersParser().parse(IB_ACTIVITY)
        assert result.success
        assert result.stats.total_rows == 3
        assert result.stats.skipped_rows == 1
        assert len(result.trades) == 1
        assert result.trades[0].pnl == pytest.approx(50.0)

    def test_missing_date_is_an_error(self):
        content = (
            "Symbol,Buy/Sell,Quantity,TradePrice,TradeDate\n"
            "ESH4,BUY,1,4800,\n"
        )
        result = InteractiveBrokersParser().parse(content)
        assert not result.success
        assert _fields(result.errors) == ["date"]
        assert result.errors[0].row == 1

    @pytest.mark.parametrize("date_value,time_value,combined,expected", [
        ("20240115", "093015", None, datetime(2024, 1, 15, 9, 30, 15)),
        ("2024-01-15", "093015", None, datetime(2024, 1, 15, 9, 30, 15)),
        (None, None, "20240115;093015", datetime(2024, 1, 15, 9, 30, 15)),
        ("20240115", None, None, datetime(2024, 1, 15)),
    ])
    def test_merge_trade_datetime(self, date_value, time_value, combined, expected):
        assert merge_trade_datetime(date_value, time_value, combined) == expected


class TestRithmic:
    def test_order_history_buys_sells_columns(self):
        result = RithmicParser().parse(RITHMIC_ORDER_HISTORY)

        assert result.success
        assert len(result.trades) == 1
        trade = result.trades[0]
        assert trade.instrument == "MNQ"
        assert trade.direction == "long"
        assert trade.pnl == pytest.approx(20.0)
        assert trade.commission == pytest.approx(1.5)
        assert result.stats.skipped_rows == 1

    def test_execution_report(self):
        result = RithmicParser().parse(RITHMIC_EXECUTIONS)
        trade = result.trades[0]
        assert trade.instrument == "ES"
        assert trade.pnl == pytest.approx(-250.0)

    def test_detect_execution_report(self):
        headers = RITHMIC_EXECUTIONS.splitlines()[0].split(",")
        assert RithmicParser().detect(RITHMIC_EXECUTIONS, headers) == 0.95

    def test_infer_side(self):
        assert infer_side({"Buys": "1", "Sells": ""}) == "buy"
        assert infer_side({"Buys": "", "Sells": "2"}) == "sell"
        assert infer_side({"Side": "S", "Buys": "1"}) == "sell"
        assert infer_side({"Buys": "1", "Sells": "1"}) is None

    def test_ambiguous_side_is_skipped_with_warning(self):
        content = (
            "Order Number,Symbol,Buys,Sells,Qty Filled,Avg Fill Price,Fill Time,Status\n"
            "A1,MNQH4,1,1,1,17000,2024-01-15 09:30:00,Filled\n"
        )
        result = RithmicParser().parse(content)
        assert result.trades == []
        assert "side" in _fields(result.warnings)
        assert result.stats.skipped_rows == 1


class TestNinjaTrader:
    def test_executions_grid(self):
        result = NinjaTraderParser().parse(NINJATRADER_EXECUTIONS)

        assert result.success
        trade = result.trades[0]
        assert trade.instrument == "ES"
        assert trade.direction == "short"
        assert trade.pnl == pytest.approx(500.0)
        assert trade.commission == pytest.approx(4.18)
        assert trade.date == datetime(2024, 1, 15, 9, 31, 2)
        assert "Contracts: ES 03-24" in trade.notes

    def test_trades_grid(self):
        result = NinjaTraderParser().parse(NINJATRADER_TRADES)

        assert result.success
        assert result.warnings == []
        long_trade, short_trade = result.trades
        assert long_trade.instrument == "NQ"
        assert long_trade.direction == "long"
        assert long_trade.pnl == pytest.approx(400.0)
        assert long_trade.commission == pytest.approx(4.18)
        assert short_trade.direction == "short"
        assert short_trade.size == 2
        assert short_trade.pnl == pytest.approx(-400.0)

    def test_detect(self):
        headers = NINJATRADER_EXECUTIONS.splitlines()[0].split(",")
        assert NinjaTraderParser().detect(NINJATRADER_EXECUTIONS, headers) == 0.95


class TestGeneric:
    def test_round_trip_rows(self):
        result = GenericParser().parse(GENERIC_ROUND_TRIPS)

        assert result.success
        assert [t.instrument for t in result.trades] == ["AAPL", "TSLA", "MSFT"]
        aapl, tsla, _ = result.trades
        assert aapl.direction == "long"
        assert aapl.pnl == pytest.approx(150.0)
        assert tsla.direction == "short"
        assert tsla.size == 10

    def test_reports_column_mappings(self):
        result = GenericParser().parse(GENERIC_ROUND_TRIPS)
        mapped = {m.csv_column: m.app_field for m in result.column_mappings}
        assert mapped["Ticker"] == "instrument"
        assert mapped["Exit Price"] == "exit_price"
        assert mapped["P&L"] == "pnl"

    def test_generic_and_direction_warnings(self):
        result = GenericParser().parse(GENERIC_ROUND_TRIPS)
        parser_warnings = [w for w in result.warnings if w.field == "parser"]
        direction_warnings = [w for w in result.warnings if w.field == "direction"]
        assert parser_warnings[0].row == 0
        assert len(direction_warnings) == 1
        assert direction_warnings[0].row == 3
        assert result.trades[2].direction == "long"

    def test_default_direction_setting(self):
        parser = GenericParser(ImportSettings(default_direction="short"))
        assert parser.parse(GENERIC_ROUND_TRIPS).trades[2].direction == "short"

    def test_missing_pnl_is_computed(self):
        content = (
            "Symbol,Date,Side,Entry Price,Exit Price,Qty\n"
            "ESH4,2024-01-15,Buy,4800,4802,1\n"
        )
        trade = GenericParser().parse(content).trades[0]
        assert trade.instrument == "ES"
        assert trade.pnl == pytest.approx(100.0)

    def test_pnl_column_without_exit_price_is_round_trip(self):
        content = (
            "Date,Symbol,Direction,Entry Price,Qty,PnL\n"
            "2024-01-15,AAPL,Long,100,10,50\n"
            "2024-01-16,TSLA,Long,200,5,-20\n"
        )
        result = GenericParser().parse(content)

        assert result.success
        assert [t.instrument for t in result.trades] == ["AAPL", "TSLA"]
        aapl, tsla = result.trades
        assert aapl.direction == "long"
        assert aapl.exit_price == aapl.entry_price == 100.0
        assert aapl.size == 10
        assert aapl.pnl == pytest.approx(50.0)
        assert tsla.pnl == pytest.approx(-20.0)
        assert set(_fields(result.warnings)) == {"parser", "exit_price"}

    def test_unknown_multiplier_warns_when_pnl_computed(self):
        content = (
            "Symbol,Date,Side,Entry Price,Exit Price,Qty\n"
            "ZZZ,2024-01-15,Long,10,12,2\n"
        )
        result = GenericParser().parse(content)

        assert result.trades[0].pnl == pytest.approx(4.0)
        instrument_warnings = [w for w in result.warnings if w.field == "instrument"]
        assert len(instrument_warnings) == 1
        assert instrument_warnings[0].row == 1
        assert instrument_warnings[0].value == "ZZZ"
        assert "raw price points" in instrument_warnings[0].message

    def test_fill_rows_are_fifo_matched(self):
        result = GenericParser().parse(TRADINGVIEW_ORDERS)
        assert len(result.trades) == 1
        assert result.trades[0].instrument == "MNQ"
        assert result.trades[0].pnl == pytest.approx(200.0)
        assert result.stats.skipped_rows == 1

    def test_duplicates_counted(self):
        content = GENERIC_ROUND_TRIPS + "AAPL,2024-01-15,Long,185.00,186.50,100,150.00\n"
        result = GenericParser().parse(content)
        assert result.stats.duplicates == 1

    def test_missing_date_is_an_error(self):
        content = "Ticker,Date,Entry Price,Exit Price\nAAPL,,185,186\n"
        result = GenericParser().parse(content)
        assert not result.success
        assert _fields(result.errors) == ["date"]

    def test_empty_file(self):
        result = GenericParser().parse("Ticker,Date\n")
        assert not result.success
        assert result.errors[0].field == "file"
        assert result.errors[0].row == 0
