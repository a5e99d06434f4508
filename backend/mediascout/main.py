import asyncio
import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from contextlib import asynccontextmanager

from .core.config import settings
from .api.routes import router as api_router
from .api.session import session
from .api.websocket import router as ws_router, event_pump
from .scanner.discovery import discovery

logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler."""
    # Startup
    print(f"🚀 Starting {settings.APP_NAME} v{settings.APP_VERSION}")

    # Relay discovery events to the session and WebSocket clients
    pump_task = asyncio.create_task(event_pump(session))

    # Start periodic discovery
    await discovery.start_background_discovery(session.events)
    print(f"✅ Background discovery started (interval: {settings.DISCOVERY_INTERVAL}s)")

    yield

    # Shutdown
    print("🛑 Shutting down...")
    await discovery.stop_background_discovery()
    pump_task.cancel()
    try:
        await pump_task
    except asyncio.CancelledError:
        pass


# Create FastAPI app
app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    description="UPnP media server discovery and browsing",
    lifespan=lifespan
)

# Configure CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(api_router, prefix="/api", tags=["API"])
app.include_router(ws_router, tags=["WebSocket"])


@app.get("/")
async def root():
    """Root endpoint."""
    return {
        "name": settings.APP_NAME,
        "version": settings.APP_VERSION,
        "status": "running"
    }


@app.get("/health")
async def health():
    """Health check endpoint."""
    return {
        "status": "healthy",
        "discovery_running": discovery.running
    }


def run():
    """Console entry point."""
    import uvicorn

    uvicorn.run("mediascout.main:app", host="0.0.0.0", port=8000)
