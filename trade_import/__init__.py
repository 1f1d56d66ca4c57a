"""Broker CSV trade import: format detection, parsing, FIFO trade
reconstruction and conversion to trade-input records."""

__version__ = "0.1.0"
