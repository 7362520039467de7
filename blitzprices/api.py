"""
HTTP RPC surface for price search, submission and metadata.

One endpoint, ``POST /blitzprices``, dispatches on the ``action`` field of
the JSON body:

    {"action": "search", "query": "...", "region": "TX", "category"?, "limit"?}
    {"action": "submit", "name": ..., "category": ..., "unit": ..., "cost": ..., "region": ...}
    {"action": "metadata", "type": "categories" | "units" | "regions"}
    {"action": "search_many", "terms": [...], "region": "TX", "category"?}

Bad requests come back as 400 ``{"error": message}``; store failures as
502 ``{"error": message}``.
"""

from __future__ import annotations

import asyncio
import logging
from functools import lru_cache
from typing import Any

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from blitzprices.db import StoreConfigError, get_client
from blitzprices.search import PriceSearchService, SearchError, SearchUnavailable
from blitzprices.submit import SubmissionGuard

logger = logging.getLogger(__name__)

ACTIONS = ("search", "submit", "metadata", "search_many")

_SUBMIT_FIELDS = (
    "name", "category", "unit", "cost", "region",
    "zip_code", "trade", "source", "upc", "sku",
)


@lru_cache(maxsize=1)
def _shared_client() -> Any:
    return get_client()


def get_db() -> Any:
    """Dependency for the store client (one per process)."""
    try:
        return _shared_client()
    except StoreConfigError as exc:
        raise HTTPException(status_code=503, detail=str(exc)) from exc


def _error(status: int, message: str) -> JSONResponse:
    return JSONResponse({"error": message}, status_code=status)


async def _dispatch(action: str, params: dict[str, Any], db: Any) -> Any:
    if action == "search":
        service = PriceSearchService(db)
        return await asyncio.to_thread(
            service.search,
            params.get("query"),
            params.get("region"),
            params.get("category"),
            params.get("limit", 10),
            user_id=params.get("user_id"),
        )
    if action == "submit":
        guard = SubmissionGuard(db)
        kwargs = {k: params.get(k) for k in _SUBMIT_FIELDS}
        return await asyncio.to_thread(guard.submit, **kwargs)
    if action == "metadata":
        service = PriceSearchService(db)
        return await asyncio.to_thread(service.metadata, params.get("type"))
    if action == "search_many":
        service = PriceSearchService(db)
        return await service.search_many(
            params.get("terms"),
            params.get("region"),
            params.get("category"),
            params.get("limit", 5),
            user_id=params.get("user_id"),
        )
    raise SearchError(f"Unknown action: {action}. Valid actions: {', '.join(ACTIONS)}")


def create_app() -> FastAPI:
    app = FastAPI(
        title="BlitzPrices",
        description="Community price search and submission",
        version="0.1.0",
    )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["POST", "OPTIONS"],
        allow_headers=["authorization", "x-client-info", "apikey", "content-type"],
    )

    @app.get("/health")
    async def health():
        return {"status": "healthy"}

    @app.post("/blitzprices")
    async def blitzprices(request: Request, db: Any = Depends(get_db)):
        try:
            body = await request.json()
        except ValueError:
            return _error(400, "Request body must be valid JSON")
        if not isinstance(body, dict):
            return _error(400, "Request body must be a JSON object")

        action = body.pop("action", None)
        try:
            result = await _dispatch(action, body, db)
        except SearchUnavailable as exc:
            return _error(502, str(exc))
        except ValueError as exc:
            # SearchError, SubmissionError
            return _error(400, str(exc))
        except Exception as exc:
            logger.error("BlitzPrices %s failed: %s", action, exc)
            return _error(502, f"{action} failed: {exc}")
        return result

    return app


app = create_app()
