"""Tests for FIFO trade reconstruction from individual fills."""

import random
from datetime import datetime, timedelta, timezone

import pytest

from trade_import.parsers.fifo import (
    CycleAggregate,
    Execution,
    FIFOMatcher,
    default_note,
    format_duration,
)
from trade_import.parsers.symbols import StaticMultiplierTable

T0 = datetime(2024, 1, 15, 9, 30)


def fill(row, side, qty, price, minutes=None, instrument="ES", **kwargs):
    """Execution at T0 + ``minutes`` (defaults to the row number)."""
    offset = row if minutes is None else minutes
    return Execution(
        timestamp=T0 + timedelta(minutes=offset),
        instrument=instrument,
        side=side,
        price=price,
        quantity=qty,
        source_row_index=row,
        **kwargs,
    )


class TestSimpleRoundTrips:
    def test_single_round_trip(self):
        result = FIFOMatcher().match([fill(0, "buy", 2, 100), fill(1, "sell", 2, 110)])

        assert len(result.trades) == 1
        trade = result.trades[0]
        assert trade.direction == "long"
        assert trade.entry_price == 100
        assert trade.exit_price == 110
        assert trade.size == 2
        assert trade.pnl == pytest.approx(1000.0)
        assert trade.commission is None
        assert trade.date == T0
        assert trade.row_index == 0
        assert result.open_positions == []
        assert result.warnings == []

    def test_scale_out_is_one_trade(self):
        result = FIFOMatcher().match([
            fill(0, "buy", 3, 100),
            fill(1, "sell", 1, 105),
            fill(2, "sell", 2, 110),
        ])

        assert len(result.trades) == 1
        trade = result.trades[0]
        assert trade.size == 3
        assert trade.entry_price == pytest.approx(100.0)
        assert trade.exit_price == pytest.approx(108.3333333, rel=1e-6)
        # (5 * 1 + 10 * 2) points * $50
        assert trade.pnl == pytest.approx(1250.0)

    def test_short_round_trip(self):
        result = FIFOMatcher().match([fill(0, "sell", 1, 110), fill(1, "buy", 1, 100)])
        trade = result.trades[0]
        assert trade.direction == "short"
        assert trade.entry_price == 110
        assert trade.exit_price == 100
        assert trade.pnl == pytest.approx(500.0)

    def test_scale_in(self):
        result = FIFOMatcher().match([
            fill(0, "buy", 1, 100),
            fill(1, "buy", 1, 102),
            fill(2, "sell", 2, 104),
        ])
        trade = result.trades[0]
        assert trade.size == 2
        assert trade.entry_price == pytest.approx(101.0)
        assert trade.pnl == pytest.approx((4 + 2) * 50.0)


class TestOverfillAndOpenPositions:
    def test_overfill_leaves_open_position(self):
        result = FIFOMatcher().match([fill(0, "buy", 2, 100), fill(1, "sell", 3, 105)])

        assert len(result.trades) == 1
        assert result.trades[0].size == 2
        assert result.trades[0].pnl == pytest.approx(500.0)

        assert len(result.open_positions) == 1
        position = result.open_positions[0]
        assert position.instrument == "ES"
        assert position.side == "sell"
        assert position.quantity == 1

        position_warnings = [w for w in result.warnings if w.field == "position"]
        assert len(position_warnings) == 1
        assert position_warnings[0].severity == "warning"
        assert position_warnings[0].row == 2

    def test_flip_then_close(self):
        result = FIFOMatcher().match([
            fill(0, "buy", 2, 100),
            fill(1, "sell", 3, 105),
            fill(2, "buy", 1, 103),
        ])

        assert [t.direction for t in result.trades] == ["long", "short"]
        short = result.trades[1]
        assert short.size == 1
        assert short.entry_price == 105
        assert short.exit_price == 103
        assert short.pnl == pytest.approx(100.0)
        assert short.date == T0 + timedelta(minutes=1)
        assert short.row_index == 1
        assert result.open_positions == []

    def test_unmatched_entry_creates_no_trade(self):
        result = FIFOMatcher().match([fill(0, "buy", 1, 100)])
        assert result.trades == []
        assert result.open_positions[0].side == "buy"
        assert result.open_positions[0].opened_at == T0

    def test_quantity_is_conserved(self):
        fills = [
            fill(0, "buy", 3, 100),
            fill(1, "sell", 1, 101),
            fill(2, "sell", 4, 99),
            fill(3, "buy", 2, 98),
            fill(4, "buy", 5, 97),
            fill(5, "sell", 2, 101, instrument="NQ"),
        ]
        result = FIFOMatcher().match(fills)

        matched = sum(t.size for t in result.trades)
        dangling = sum(p.quantity for p in result.open_positions)
        assert 2 * matched + dangling == pytest.approx(sum(f.quantity for f in fills))

    def test_every_trade_is_closed(self):
        result = FIFOMatcher().match([
            fill(0, "buy", 1, 100),
            fill(1, "sell", 1, 101),
            fill(2, "sell", 2, 102),
        ])
        assert all(t.size > 0 for t in result.trades)
        assert len(result.trades) == 1


class TestOrdering:
    def test_input_order_does_not_matter(self):
        fills = [
            fill(0, "buy", 2, 100),
            fill(1, "sell", 1, 101),
            fill(2, "buy", 1, 99, instrument="NQ"),
            fill(3, "sell", 1, 102),
            fill(4, "sell", 1, 100, instrument="NQ"),
            fill(5, "sell", 2, 103),
            fill(6, "buy", 2, 101),
        ]
        expected = [t.to_dict() for t in FIFOMatcher().match(fills).trades]

        shuffled = list(fills)
        random.Random(7).shuffle(shuffled)
        assert [t.to_dict() for t in FIFOMatcher().match(shuffled).trades] == expected

    def test_same_timestamp_uses_source_row(self):
        fills = [
            fill(1, "sell", 1, 110, minutes=0),
            fill(0, "buy", 1, 100, minutes=0),
        ]
        trade = FIFOMatcher().match(fills).trades[0]
        assert trade.direction == "long"
        assert trade.row_index == 0

    def test_instruments_are_independent(self):
        result = FIFOMatcher().match([
            fill(0, "buy", 1, 100, instrument="ES"),
            fill(1, "sell", 1, 200, instrument="NQ"),
            fill(2, "sell", 1, 101, instrument="ES"),
            fill(3, "buy", 1, 190, instrument="NQ"),
        ])
        by_instrument = {t.instrument: t for t in result.trades}
        assert by_instrument["ES"].pnl == pytest.approx(50.0)
        assert by_instrument["NQ"].direction == "short"
        assert by_instrument["NQ"].pnl == pytest.approx(10 * 20.0)

    def test_trades_sorted_by_date(self):
        result = FIFOMatcher().match([
            fill(0, "buy", 1, 100, minutes=10, instrument="ES"),
            fill(1, "sell", 1, 101, minutes=20, instrument="ES"),
            fill(2, "buy", 1, 100, minutes=0, instrument="NQ"),
            fill(3, "sell", 1, 101, minutes=30, instrument="NQ"),
        ])
        assert [t.instrument for t in result.trades] == ["NQ", "ES"]

    def test_aware_and_naive_timestamps_compare(self):
        early = Execution(
            timestamp=datetime(2024, 1, 15, 9, 0, tzinfo=timezone.utc),
            instrument="ES", side="buy", price=100, quantity=1, source_row_index=1,
        )
        late = fill(0, "sell", 1, 101)
        trade = FIFOMatcher().match([late, early]).trades[0]
        assert trade.direction == "long"


class TestMultipliersAndCommission:
    def test_unknown_instrument_warns_and_uses_points(self):
        result = FIFOMatcher().match([
            fill(0, "buy", 2, 10, instrument="ZZZ"),
            fill(1, "sell", 2, 12, instrument="ZZZ"),
        ])
        assert result.trades[0].pnl == pytest.approx(4.0)
        warnings = [w for w in result.warnings if w.field == "instrument"]
        assert len(warnings) == 1
        assert "ZZZ" in warnings[0].message

    def test_fill_multiplier_overrides_table(self):
        result = FIFOMatcher().match([
            fill(0, "buy", 1, 10, instrument="ZZZ", multiplier=100.0),
            fill(1, "sell", 1, 11, instrument="ZZZ", multiplier=100.0),
        ])
        assert result.trades[0].pnl == pytest.approx(100.0)
        assert result.warnings == []

    def test_custom_provider(self):
        matcher = FIFOMatcher(metadata=StaticMultiplierTable({"ES": 10}))
        result = matcher.match([fill(0, "buy", 1, 100), fill(1, "sell", 1, 101)])
        assert result.trades[0].pnl == pytest.approx(10.0)

    def test_commission_is_prorated(self):
        result = FIFOMatcher().match([
            fill(0, "buy", 2, 100, commission=4.0),
            fill(1, "sell", 1, 101, commission=1.0),
            fill(2, "sell", 1, 102, commission=-1.0),
        ])
        assert result.trades[0].commission == pytest.approx(6.0)

    def test_flip_splits_commission(self):
        result = FIFOMatcher().match([
            fill(0, "buy", 1, 100, commission=1.0),
            fill(1, "sell", 2, 101, commission=2.0),
        ])
        # half of the flipping fill's commission stays with the open short
        assert result.trades[0].commission == pytest.approx(2.0)


class TestNotes:
    def test_default_note(self):
        matcher = FIFOMatcher(platform="Rithmic")
        result = matcher.match([
            fill(0, "buy", 1, 100, raw_symbol="ESH4", commission=1.0),
            fill(1, "sell", 1, 101, raw_symbol="ESH4", commission=1.0),
        ])
        notes = result.trades[0].notes
        assert notes.startswith("Imported from Rithmic")
        assert "FIFO matched 1 fill " in notes + " "
        assert "Duration: 1m 0s" in notes
        assert "Contracts: ESH4" in notes
        assert "Commission: $2.00" in notes

    def test_custom_note_builder(self):
        matcher = FIFOMatcher(note_builder=lambda platform, cycle: f"{cycle.match_count} matches")
        result = matcher.match([fill(0, "buy", 1, 100), fill(1, "sell", 1, 101)])
        assert result.trades[0].notes == "1 matches"

    def test_note_without_exit(self):
        cycle = CycleAggregate(instrument="ES", direction="long", entry_time=T0, opening_row=0)
        assert "Duration: n/a" in default_note("CSV", cycle)

    @pytest.mark.parametrize("seconds,expected", [
        (None, "n/a"),
        (5, "5s"),
        (65, "1m 5s"),
        (3725, "1h 2m 5s"),
    ])
    def test_format_duration(self, seconds, expected):
        assert format_duration(seconds) == expected


class TestExecutionValidation:
    def test_bad_side(self):
        with pytest.raises(ValueError):
            fill(0, "hold", 1, 100)

    def test_non_positive_quantity(self):
        with pytest.raises(ValueError):
            fill(0, "buy", 0, 100)

    def test_non_positive_price(self):
        with pytest.raises(ValueError):
            fill(0, "buy", 1, -5)

    def test_commission_per_unit(self):
        assert fill(0, "buy", 4, 100, commission=-2.0).commission_per_unit == 0.5
