"""Destination for converted trade-input records.

The import pipeline only needs one operation from storage: bulk-insert a
batch of records. ``SupabaseTradeStore`` writes them to the trades table;
``InMemoryTradeStore`` keeps them in a list for local runs and tests.

Supabase connection info comes from ImportSettings:
    SUPABASE_URL          – project URL (e.g. https://xxx.supabase.co)
    SUPABASE_SERVICE_KEY  – service_role key (bypasses RLS)

Without both, ``get_supabase_client`` returns None and the service falls
back to the in-memory store.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Optional, Protocol, Sequence

from ..config import ImportSettings
from ..parsers.types import TradeInput

logger = logging.getLogger(__name__)


class TradeStoreError(Exception):
    """Records could not be written to the store."""


class TradeStore(Protocol):
    def add_multiple_trades(
        self, records: Sequence[TradeInput], user_id: Optional[str] = None,
    ) -> int:
        """Insert ``records`` and return how many were written."""
        ...


def _row(record: TradeInput, user_id: Optional[str], imported_at: str) -> dict[str, Any]:
    row = record.to_dict()
    if user_id:
        row["user_id"] = user_id
    row["created_at"] = imported_at
    return row


class InMemoryTradeStore:
    def __init__(self) -> None:
        self.rows: list[dict[str, Any]] = []

    def add_multiple_trades(
        self, records: Sequence[TradeInput], user_id: Optional[str] = None,
    ) -> int:
        imported_at = datetime.now(timezone.utc).isoformat()
        self.rows.extend(_row(r, user_id, imported_at) for r in records)
        return len(records)


class SupabaseTradeStore:
    def __init__(self, client: Any, table: str = "trades") -> None:
        self.client = client
        self.table = table

    def add_multiple_trades(
        self, records: Sequence[TradeInput], user_id: Optional[str] = None,
    ) -> int:
        if not records:
            return 0

        imported_at = datetime.now(timezone.utc).isoformat()
        rows = [_row(r, user_id, imported_at) for r in records]
        try:
            response = self.client.table(self.table).insert(rows).execute()
        except Exception as exc:
            logger.exception("[TradeStore] Insert of %d trades into %s failed", len(rows), self.table)
            raise TradeStoreError(f"Failed to insert trades: {exc}") from exc

        data = getattr(response, "data", None)
        inserted = len(data) if isinstance(data, list) else len(rows)
        logger.info("[TradeStore] Inserted %d trades into %s", inserted, self.table)
        return inserted


def get_supabase_client(settings: ImportSettings):
    """Create a Supabase client, or None when credentials are missing."""
    if not settings.storage_configured:
        logger.info(
            "[TradeStore] Supabase not configured (SUPABASE_URL / SUPABASE_SERVICE_KEY missing). "
            "Imported trades will only be kept in memory."
        )
        return None

    try:
        from supabase import create_client
        client = create_client(settings.supabase_url, settings.supabase_key)
        logger.info("[TradeStore] Supabase client initialized for %s", settings.supabase_url)
    except Exception:
        logger.exception("[TradeStore] Failed to initialize Supabase client")
        client = None
    return client


def build_trade_store(settings: ImportSettings) -> TradeStore:
    client = get_supabase_client(settings)
    if client is None:
        return InMemoryTradeStore()
    return SupabaseTradeStore(client, settings.trades_table)
