"""FastAPI search service with lifespan, endpoints, and uvicorn runner."""

from __future__ import annotations

import asyncio
import time
from collections import defaultdict
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

import uvicorn
from fastapi import FastAPI, HTTPException, Query

from chapterlens.search.exceptions import InvalidQueryError, SearchUnavailableError
from chapterlens.search.ranking import group_by_book
from chapterlens.search.runtime import open_runtime
from chapterlens.search.tiers import SEARCH_TIERS, resolve_tier

if TYPE_CHECKING:
    from chapterlens.config import Config
    from chapterlens.storage.models import TieredSearchResponse


_start_time: float = 0.0


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Open stores and collaborators for the lifetime of the server."""
    global _start_time  # noqa: PLW0603
    _start_time = time.monotonic()

    app.state.account_locks = defaultdict(asyncio.Lock)

    async with open_runtime(app.state.config) as runtime:
        app.state.service = runtime.service
        app.state.store = runtime.store
        app.state.embedder = runtime.embedder
        yield


app = FastAPI(lifespan=lifespan)


def _response_payload(response: TieredSearchResponse) -> dict:
    payload: dict = response.model_dump(mode="json")
    payload["books"] = [g.model_dump(mode="json") for g in group_by_book(response.results)]
    return payload


async def _run_search(query: str, plan: str, queries_used: int, account_id: str | None = None):
    try:
        return await app.state.service.perform_search(
            query, plan, queries_used, account_id=account_id
        )
    except InvalidQueryError as e:
        raise HTTPException(status_code=400, detail=str(e)) from e
    except SearchUnavailableError as e:
        raise HTTPException(status_code=503, detail=str(e)) from e


@app.get("/api/health")
async def health() -> dict:
    """Liveness + corpus stats."""
    store = app.state.store
    return {
        "status": "ok",
        "uptime_s": int(time.monotonic() - _start_time),
        "books": store.count_books(),
        "chapters": store.count_chapters(),
        "embeddings": app.state.embedder.available,
    }


@app.get("/api/tiers")
async def tiers() -> dict:
    return {plan: tier.model_dump(mode="json") for plan, tier in SEARCH_TIERS.items()}


@app.get("/api/search")
async def search(
    q: str,
    plan: str = "free",
    queries_used: int = Query(default=0, ge=0),
) -> dict:
    """Stateless search: the caller supplies the plan and its own counter."""
    response = await _run_search(q, plan, queries_used)
    return _response_payload(response)


@app.get("/api/accounts/{account_id}")
async def get_account(account_id: str) -> dict:
    """Account plan and quota state for the current period."""
    account = app.state.store.ensure_account(account_id)
    tier = resolve_tier(account.plan)
    return {
        **account.model_dump(),
        "tier": tier.name,
        "queries_remaining": tier.remaining(account.queries_used),
    }


@app.put("/api/accounts/{account_id}/plan")
async def set_plan(account_id: str, plan: str) -> dict:
    if plan.strip().lower() not in SEARCH_TIERS:
        raise HTTPException(status_code=400, detail=f"Unknown plan: {plan}")
    account = app.state.store.set_plan(account_id, plan.strip().lower())
    return account.model_dump()


@app.post("/api/accounts/{account_id}/search")
async def account_search(account_id: str, q: str) -> dict:
    """Search on behalf of a stored account and persist its quota counter.

    Searches for one account run one at a time, so the quota gate always sees
    the counter left by the previous search.
    """
    store = app.state.store
    async with app.state.account_locks[account_id]:
        account = store.ensure_account(account_id)
        response = await _run_search(q, account.plan, account.queries_used, account_id)
        if response.upgrade_required:
            return _response_payload(response)

        used = store.increment_queries_used(account_id)
        response = response.model_copy(
            update={"queries_used": used, "queries_remaining": response.tier.remaining(used)}
        )
        store.save_search(
            account_id,
            q,
            plan=account.plan,
            results_count=response.total_chapters_found,
            books_count=response.total_books_found,
        )
    return _response_payload(response)


@app.get("/api/accounts/{account_id}/history")
async def search_history(account_id: str, limit: int = Query(default=20, ge=1, le=100)) -> dict:
    """Most recent searches first."""
    entries = app.state.store.get_search_history(account_id, limit)
    return {"account_id": account_id, "searches": [e.model_dump() for e in entries]}


@app.delete("/api/accounts/{account_id}/history")
async def clear_history(account_id: str) -> dict:
    return {"deleted": app.state.store.clear_search_history(account_id)}


@app.delete("/api/accounts/{account_id}/history/{search_id}")
async def delete_history_entry(account_id: str, search_id: int) -> dict:
    if not app.state.store.delete_search(account_id, search_id):
        raise HTTPException(status_code=404, detail=f"No search {search_id} for {account_id}")
    return {"deleted": 1}


@app.get("/api/accounts/{account_id}/stats")
async def search_stats(account_id: str) -> dict:
    return app.state.store.get_search_stats(account_id).model_dump()


def run_server(config: Config) -> None:
    """Run the search service under uvicorn."""
    app.state.config = config
    uvicorn.run(
        app,
        host=config.host,
        port=config.port,
        log_level="info",
        lifespan="on",
    )


if __name__ == "__main__":
    from chapterlens.config import Config as _Config

    run_server(_Config())
