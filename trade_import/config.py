"""Runtime configuration for the trade import service.

Reads settings from environment:
    TRADE_IMPORT_DEFAULT_DIRECTION   – direction used when a row's side is ambiguous
    TRADE_IMPORT_HEADER_SCAN_LINES   – lines scanned for a header row
    TRADE_IMPORT_CONTENT_SCAN_CHARS  – raw characters scanned by content-aware detectors
    TRADE_IMPORT_MAX_UPLOAD_BYTES    – request size cap for the HTTP service
    TRADE_IMPORT_LOG_LEVEL           – logging level name
    TRADE_IMPORT_CORS_ORIGINS        – comma-separated allowed origins
    TRADE_IMPORT_TRADES_TABLE        – Supabase table receiving imported trades
    SUPABASE_URL / SUPABASE_SERVICE_KEY

Anything unset falls back to the defaults below so local dev works
without any environment at all.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Mapping, Optional

DIRECTIONS = ("long", "short")


def _int_env(env: Mapping[str, str], name: str, default: int) -> int:
    raw = env.get(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw.strip())
    except ValueError as exc:
        raise ValueError(f"{name} must be an integer, got {raw!r}") from exc


@dataclass(frozen=True)
class ImportSettings:
    default_direction: str = "long"
    header_scan_lines: int = 10
    content_scan_chars: int = 3000
    max_upload_bytes: int = 10 * 1024 * 1024
    log_level: str = "INFO"
    cors_origins: tuple[str, ...] = ("http://localhost:3000",)
    supabase_url: Optional[str] = None
    supabase_key: Optional[str] = field(default=None, repr=False)
    trades_table: str = "trades"

    def __post_init__(self) -> None:
        if self.default_direction not in DIRECTIONS:
            raise ValueError(
                f"default_direction must be one of {DIRECTIONS}, got {self.default_direction!r}"
            )
        if self.header_scan_lines < 1:
            raise ValueError("header_scan_lines must be at least 1")
        if self.content_scan_chars < 0:
            raise ValueError("content_scan_chars cannot be negative")
        if self.max_upload_bytes < 1:
            raise ValueError("max_upload_bytes must be positive")

    @property
    def storage_configured(self) -> bool:
        return bool(self.supabase_url and self.supabase_key)

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None) -> "ImportSettings":
        """Build settings from ``os.environ`` (or an explicit mapping)."""
        env = os.environ if env is None else env

        origins_raw = env.get("TRADE_IMPORT_CORS_ORIGINS")
        origins = (
            tuple(o.strip() for o in origins_raw.split(",") if o.strip())
            if origins_raw
            else cls.cors_origins
        )

        return cls(
            default_direction=(env.get("TRADE_IMPORT_DEFAULT_DIRECTION") or "long").strip().lower(),
            header_scan_lines=_int_env(env, "TRADE_IMPORT_HEADER_SCAN_LINES", 10),
            content_scan_chars=_int_env(env, "TRADE_IMPORT_CONTENT_SCAN_CHARS", 3000),
            max_upload_bytes=_int_env(env, "TRADE_IMPORT_MAX_UPLOAD_BYTES", 10 * 1024 * 1024),
            log_level=(env.get("TRADE_IMPORT_LOG_LEVEL") or "INFO").strip().upper(),
            cors_origins=origins,
            supabase_url=env.get("SUPABASE_URL") or None,
            supabase_key=env.get("SUPABASE_SERVICE_KEY") or None,
            trades_table=(env.get("TRADE_IMPORT_TRADES_TABLE") or "trades").strip(),
        )
