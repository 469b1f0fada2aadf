"""Main FastAPI application."""
from fastapi import FastAPI
from contextlib import asynccontextmanager

from outbound_caller.core.logging import setup_logging
from outbound_caller.db.database import init_db
from outbound_caller.api import calls, dispatch, health, knowledge
from outbound_caller.api.webhooks import voice


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan events."""
    # Startup
    setup_logging()
    await init_db()
    yield


app = FastAPI(
    title="AI Outbound Caller",
    description="AI sales agent that places scheduled outbound calls",
    version="0.1.0",
    lifespan=lifespan,
)

app.include_router(health.router, tags=["health"])
app.include_router(voice.router, prefix="/webhooks", tags=["webhooks"])
app.include_router(dispatch.router, tags=["dispatch"])
app.include_router(calls.router, tags=["calls"])
app.include_router(knowledge.router, tags=["knowledge"])


@app.get("/")
async def root():
    return {"message": "AI Outbound Caller API", "version": "0.1.0"}
