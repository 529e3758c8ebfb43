"""
Main application: FastAPI server exposing order fulfillment and session management.

MODE=serve (default) runs the HTTP API; MODE=setup runs the interactive
session setup once and exits.
"""

import asyncio
import os
import sys
from datetime import datetime, timezone

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel
from sse_starlette.sse import EventSourceResponse

from fulfillment.config import FulfillmentConfig
from fulfillment.engine import FulfillmentEngine
from fulfillment.events import event_broker, EventType
from fulfillment.models import OrderRequest, OrderResult, SessionSetupResult, SessionStatus
from fulfillment.session import SessionSetup


# Configuration from environment
MODE = os.getenv("MODE", "serve")
HOST = os.getenv("HOST", "0.0.0.0")
PORT = int(os.getenv("PORT", "8000"))

config = FulfillmentConfig.from_env()
engine = FulfillmentEngine(config=config)
session_setup = SessionSetup(config=config)


class HealthResponse(BaseModel):
    """Response model for health check."""
    status: str
    session_present: bool
    timestamp: str


class StatusResponse(BaseModel):
    """Response model for status endpoint."""
    active_orders: int
    last_result: dict
    uptime_seconds: float
    subscriber_count: int
    retailer_domain: str


app = FastAPI(
    title="GlowUp Fulfillment",
    description="Places retailer orders on the user's behalf through a headless browser",
    version="1.0.0",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.get("/health", response_model=HealthResponse)
async def health_check():
    """Health check endpoint."""
    return HealthResponse(
        status="healthy",
        session_present=session_setup.store.exists(),
        timestamp=datetime.now(timezone.utc).isoformat()
    )


@app.get("/status", response_model=StatusResponse)
async def get_status():
    """Get current engine status."""
    status = event_broker.get_status()
    return StatusResponse(retailer_domain=config.retailer_domain, **status)


@app.post("/api/orders", response_model=OrderResult)
async def create_order(order: OrderRequest):
    """Run the full automated order for the request. Failures come back as success=false."""
    await event_broker.emit(
        EventType.STEP, "order_request_received",
        user_id=order.user_id, item_count=len(order.items),
        ship_to=order.shipping_address.city
    )
    return await engine.process_order(order)


@app.post("/api/orders/setup-session", response_model=SessionSetupResult)
async def setup_session():
    """One-time setup: opens a visible browser for an operator to log into the retailer."""
    return await session_setup.setup_session()


@app.get("/api/orders/session-status", response_model=SessionStatus)
async def session_status():
    """Check whether the stored retailer session is still signed in."""
    valid = await session_setup.is_session_valid()
    return SessionStatus(
        valid=valid,
        message="Session active" if valid else "Session expired or not set up"
    )


@app.get("/events")
async def events_stream():
    """SSE stream of structured JSON events."""
    async def event_generator():
        async for event in event_broker.subscribe():
            yield {
                "event": event.type.value,
                "data": event.to_json()
            }

    return EventSourceResponse(event_generator())


@app.get("/history")
async def get_event_history(limit: int = 50):
    """Get recent event history."""
    return [e.to_dict() for e in await event_broker.get_history(limit)]


async def run_setup_mode() -> int:
    """Setup mode: sign in once from a visible browser and persist the session."""
    result = await session_setup.setup_session()
    print(result.message, flush=True)
    return 0 if result.success else 1


if __name__ == "__main__":
    if MODE == "setup":
        sys.exit(asyncio.run(run_setup_mode()))

    uvicorn.run(app, host=HOST, port=PORT, log_level="info", access_log=True)
