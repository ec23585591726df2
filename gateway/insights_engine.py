"""
insights_engine.py -- FastAPI application for conversation insights.

Runs on ENGINE_PORT (default 3002). Per-request state only: the pipeline,
store and rate limiter are created once at startup and injected.
/insights never surfaces extraction failure -- it answers {"insights": null}
so the rest of the chat UI keeps working.
"""

import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator, Optional

import anthropic
from fastapi import BackgroundTasks, Depends, FastAPI, Header, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from insights import config
from insights.extractor import ModelInvoker
from insights.models import ActionStatus, ConversationTurn, MemoryRecord
from insights.pipeline import InsightPipeline
from insights.rate_limit import InMemoryCounterStore, RateLimiter, client_key
from insights.store import ProfileStore, StoreError

config.configure_logging()
logger = logging.getLogger("insights_engine")

VERSION: str = "0.1.0"


class InsightsRequest(BaseModel):
    """Request body for the /insights endpoint."""
    messages: list[dict[str, Any]] = Field(default_factory=list)
    existing_memory: Optional[dict[str, Any]] = None
    user_id: Optional[str] = None


class InsightsResponse(BaseModel):
    insights: Optional[dict[str, Any]] = None


class BackfillRequest(BaseModel):
    session_id: Optional[str] = None
    user_id: Optional[str] = None


class SignalsRequest(BaseModel):
    user_id: str
    messages: list[str] = Field(default_factory=list)


class ActionItemUpdate(BaseModel):
    status: ActionStatus


class SessionSummaryRequest(BaseModel):
    summary: str
    topics: list[str] = Field(default_factory=list)
    emotional_arc: list[float] = Field(default_factory=list)


class EngineResponse(BaseModel):
    """Standard engine API response envelope."""
    success: bool
    data: Optional[dict[str, Any]] = None
    error: Optional[str] = None


class HealthResponse(BaseModel):
    """Health check response."""
    success: bool
    version: str = VERSION


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Build the Claude client, profile store and rate limiter for the app's lifetime."""
    claude_client: Optional[anthropic.AsyncAnthropic] = None
    if config.ANTHROPIC_API_KEY:
        claude_client = anthropic.AsyncAnthropic(
            api_key=config.ANTHROPIC_API_KEY, timeout=config.REQUEST_TIMEOUT_SECONDS,
        )
    else:
        logger.warning("ANTHROPIC_API_KEY not set -- Claude calls will fail")

    store: Optional[ProfileStore] = None
    if config.SUPABASE_URL and config.SUPABASE_SERVICE_ROLE_KEY:
        store = ProfileStore()
    else:
        logger.warning("SUPABASE_URL / SUPABASE_SERVICE_ROLE_KEY not set -- insights will not be persisted")

    app.state.pipeline = InsightPipeline(
        invoker=ModelInvoker(claude_client, model=config.INSIGHTS_MODEL),
        store=store,
        signal_invoker=ModelInvoker(claude_client, model=config.SIGNALS_MODEL),
    )
    app.state.rate_limiter = RateLimiter(InMemoryCounterStore(), limit=config.RATE_LIMIT_PER_MINUTE)
    logger.info("Insights Engine started (model=%s, persistence=%s)", config.INSIGHTS_MODEL, store is not None)
    yield
    if store is not None:
        await store.aclose()
    if claude_client is not None:
        await claude_client.close()
    logger.info("Insights Engine shut down")


app = FastAPI(
    title="Parallax Insights Engine",
    description="Insight extraction and profile memory for mediated conversations",
    version=VERSION,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


class RateLimited(Exception):
    pass


@app.exception_handler(RateLimited)
async def rate_limited_handler(request: Request, exc: RateLimited) -> JSONResponse:
    return JSONResponse(status_code=429, content={"error": "Rate limit exceeded"})


def get_pipeline(request: Request) -> InsightPipeline:
    return request.app.state.pipeline


def get_rate_limiter(request: Request) -> RateLimiter:
    return request.app.state.rate_limiter


def enforce_rate_limit(
    limiter: RateLimiter = Depends(get_rate_limiter),
    x_forwarded_for: Optional[str] = Header(default=None),
) -> None:
    if not limiter.allow(client_key(x_forwarded_for)):
        raise RateLimited()


def require_service_key(authorization: Optional[str] = Header(default=None)) -> None:
    """Bearer token must equal the service-role key."""
    service_key = config.SUPABASE_SERVICE_ROLE_KEY
    if not service_key or authorization != f"Bearer {service_key}":
        raise HTTPException(status_code=401, detail="Unauthorized")


@app.get("/health", response_model=HealthResponse)
async def health() -> HealthResponse:
    """Health check endpoint."""
    return HealthResponse(success=True)


@app.post("/insights", response_model=InsightsResponse, dependencies=[Depends(enforce_rate_limit)])
async def extract_insights(
    body: InsightsRequest,
    pipeline: InsightPipeline = Depends(get_pipeline),
) -> InsightsResponse:
    """Extract sidebar insights from a conversation, merged into any existing memory."""
    if len(body.messages) < 2:
        return InsightsResponse(insights=None)
    try:
        turns = [ConversationTurn.model_validate(m) for m in body.messages]
        existing = MemoryRecord.model_validate(body.existing_memory) if body.existing_memory else None
        insights = await pipeline.extract(turns, existing, body.user_id)
    except Exception as exc:
        logger.error("Insight extraction failed: %s", exc, exc_info=True)
        return InsightsResponse(insights=None)
    return InsightsResponse(insights=insights.to_json() if insights else None)


@app.post("/solo/backfill", dependencies=[Depends(require_service_key)])
async def backfill(
    body: BackfillRequest,
    pipeline: InsightPipeline = Depends(get_pipeline),
) -> dict[str, Any]:
    """Run extraction over a stored session to populate or enrich a user's memory."""
    if not body.session_id or not body.user_id:
        raise HTTPException(status_code=400, detail="session_id and user_id required")
    try:
        insights = await pipeline.backfill(body.session_id, body.user_id)
    except LookupError:
        raise HTTPException(status_code=404, detail="No messages found for session")
    except StoreError as exc:
        logger.error("Backfill read failed for session %s: %s", body.session_id, exc)
        raise HTTPException(status_code=500, detail="Failed to load session or profile")
    if insights is None:
        raise HTTPException(status_code=502, detail="Extraction produced no insights")
    return {"success": True, "insights": insights.to_json()}


@app.post("/signals", status_code=202, response_model=EngineResponse, dependencies=[Depends(enforce_rate_limit)])
async def extract_signals(
    body: SignalsRequest,
    background_tasks: BackgroundTasks,
    pipeline: InsightPipeline = Depends(get_pipeline),
) -> EngineResponse:
    """Queue behavioral signal extraction; the caller does not wait for it."""
    if not body.messages:
        return EngineResponse(success=True, data={"queued": False})
    background_tasks.add_task(pipeline.extract_signals, body.user_id, body.messages)
    return EngineResponse(success=True, data={"queued": True})


@app.get("/profiles/{user_id}/signals", response_model=EngineResponse)
async def list_signals(
    user_id: str,
    pipeline: InsightPipeline = Depends(get_pipeline),
) -> EngineResponse:
    """All stored behavioral signals for a user, ordered by type."""
    if pipeline.store is None:
        return EngineResponse(success=False, error="Profile storage is not configured")
    try:
        signals = await pipeline.store.list_signals(user_id)
    except StoreError:
        return EngineResponse(success=False, error="Failed to load signals")
    return EngineResponse(
        success=True,
        data={
            "signals": [
                {"signalType": s.signal_type, "confidence": s.confidence, "source": s.source,
                 "signalValue": s.value.model_dump(mode="json", by_alias=True, exclude={"signal_type"})}
                for s in signals
            ],
        },
    )


@app.patch("/profiles/{user_id}/action-items/{item_id}", response_model=EngineResponse)
async def update_action_item(
    user_id: str,
    item_id: str,
    body: ActionItemUpdate,
    pipeline: InsightPipeline = Depends(get_pipeline),
) -> EngineResponse:
    """Move one action item to a new status."""
    try:
        memory = await pipeline.update_action_item(user_id, item_id, body.status)
    except KeyError:
        raise HTTPException(status_code=404, detail="Action item not found")
    except StoreError as exc:
        logger.error("Action item update failed for %s: %s", user_id, exc)
        return EngineResponse(success=False, error="Failed to update action item")
    return EngineResponse(success=True, data={"memory": memory.to_json()})


@app.post("/profiles/{user_id}/sessions", response_model=EngineResponse)
async def record_session(
    user_id: str,
    body: SessionSummaryRequest,
    pipeline: InsightPipeline = Depends(get_pipeline),
) -> EngineResponse:
    """File a finished session's summary into the user's memory."""
    try:
        memory = await pipeline.record_session(user_id, body.summary, body.topics, body.emotional_arc)
    except StoreError as exc:
        logger.error("Session summary failed for %s: %s", user_id, exc)
        return EngineResponse(success=False, error="Failed to file session summary")
    return EngineResponse(success=True, data={"memory": memory.to_json()})


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("gateway.insights_engine:app", host="0.0.0.0", port=config.ENGINE_PORT, reload=True)
