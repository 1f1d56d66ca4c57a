from .trade_store import (
    InMemoryTradeStore,
    SupabaseTradeStore,
    TradeStore,
    TradeStoreError,
    build_trade_store,
    get_supabase_client,
)
