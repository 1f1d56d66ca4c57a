"""FastAPI service for broker CSV trade import.

Endpoints:
    GET  /health    service + storage status
    GET  /brokers   supported broker ids and display names
    POST /detect    { content }                                  -> detection
    POST /parse     { content, broker, account_id }              -> parse result + records
    POST /import    { content, broker, account_id, user_id }     -> records written to the store

Run with:  uvicorn trade_import.api:app
"""

from __future__ import annotations

import logging
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, field_validator

from . import __version__
from .config import ImportSettings
from .parsers.csv_reader import CSVImportError
from .parsers.registry import (
    ParserRegistry,
    UnknownBrokerError,
    build_default_registry,
    convert_trades_to_input,
    detect_broker_format,
    get_supported_brokers,
    parse_csv,
)
from .parsers.types import BROKER_TYPES
from .storage.trade_store import TradeStore, TradeStoreError, build_trade_store

_settings = ImportSettings.from_env()

logging.basicConfig(
    level=getattr(logging, _settings.log_level, logging.INFO),
    format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
)
logger = logging.getLogger(__name__)


# ─── Request models ──────────────────────────────────────────────────────────


class DetectRequest(BaseModel):
    content: str


class ParseRequest(BaseModel):
    content: str
    broker: str = "auto"
    account_id: Optional[str] = None

    @field_validator("broker")
    @classmethod
    def _known_broker(cls, value: str) -> str:
        value = value.strip().lower()
        if value not in BROKER_TYPES:
            raise ValueError(f"broker must be one of {', '.join(BROKER_TYPES)}")
        return value


class ImportRequest(ParseRequest):
    user_id: Optional[str] = None


# ─── App factory ─────────────────────────────────────────────────────────────


def create_app(
    settings: Optional[ImportSettings] = None,
    registry: Optional[ParserRegistry] = None,
    store: Optional[TradeStore] = None,
) -> FastAPI:
    settings = settings or _settings
    registry = registry or build_default_registry(settings)
    store = store if store is not None else build_trade_store(settings)

    logger.info(
        "[STARTUP] Trade import: %d parsers, storage=%s, max upload=%d bytes",
        len(registry), type(store).__name__, settings.max_upload_bytes,
    )

    app = FastAPI(
        title="Trade Import",
        description="Broker CSV detection, parsing and FIFO trade reconstruction",
        version=__version__,
    )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=list(settings.cors_origins),
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["Content-Type", "Authorization"],
    )

    def _too_large(content: str) -> Optional[JSONResponse]:
        size = len(content.encode("utf-8"))
        if size > settings.max_upload_bytes:
            return JSONResponse(
                {"error": f"File too large: {size} bytes (limit {settings.max_upload_bytes})"},
                status_code=413,
            )
        return None

    def _parse(req: ParseRequest):
        too_large = _too_large(req.content)
        if too_large is not None:
            return too_large, None
        try:
            result = parse_csv(req.content, registry, req.broker)
        except CSVImportError as e:
            logger.warning("[API] CSV could not be read: %s", e)
            return JSONResponse({"error": str(e)}, status_code=422), None
        except UnknownBrokerError as e:
            return JSONResponse({"error": f"Unsupported broker: {e}"}, status_code=400), None
        return None, result

    @app.get("/health")
    def health():
        return {
            "status": "ok",
            "version": __version__,
            "storage_configured": settings.storage_configured,
        }

    @app.get("/brokers")
    def brokers():
        return {"brokers": get_supported_brokers(registry)}

    @app.post("/detect")
    def detect(req: DetectRequest):
        too_large = _too_large(req.content)
        if too_large is not None:
            return too_large
        return detect_broker_format(req.content, registry).to_dict()

    @app.post("/parse")
    def parse(req: ParseRequest):
        failure, result = _parse(req)
        if failure is not None:
            return failure
        records = convert_trades_to_input(result, registry, req.account_id)
        return {
            "result": result.to_dict(),
            "trades": [r.to_dict() for r in records],
        }

    @app.post("/import")
    def import_trades(req: ImportRequest):
        failure, result = _parse(req)
        if failure is not None:
            return failure
        records = convert_trades_to_input(result, registry, req.account_id)

        try:
            imported = store.add_multiple_trades(records, user_id=req.user_id)
        except TradeStoreError as e:
            return JSONResponse(
                {"error": str(e), "result": result.to_dict()}, status_code=502,
            )

        logger.info(
            "[API] Imported %d/%d trades from %s", imported, len(result.trades), result.broker,
        )
        return {"imported": imported, "result": result.to_dict()}

    return app


app = create_app()
