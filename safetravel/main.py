from fastapi import FastAPI, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from contextlib import asynccontextmanager
import logging
from typing import Dict, Any
import json
from datetime import datetime, timezone

from safetravel.database import AsyncSessionLocal, create_db_and_tables
from safetravel.api import alerts, location, tourists, zones
from safetravel.config import settings
from safetravel.core.notifier import AuthorityNotifier
from safetravel.core.persistence import AlertRecorder, FixRecorder, restore_pipeline_state
from safetravel.core.pipeline import SafetyPipeline
from safetravel.core.types import Alert

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s"
)
logger = logging.getLogger(__name__)

# WebSocket connection manager
class ConnectionManager:
    def __init__(self):
        self.active_connections: Dict[str, WebSocket] = {}

    async def connect(self, websocket: WebSocket, client_id: str):
        await websocket.accept()
        self.active_connections[client_id] = websocket
        logger.info(f"WebSocket connected: {client_id}")

    def disconnect(self, client_id: str):
        if client_id in self.active_connections:
            del self.active_connections[client_id]
            logger.info(f"WebSocket disconnected: {client_id}")

    async def broadcast(self, data: dict[str, Any]):
        disconnected = []
        for client_id, websocket in list(self.active_connections.items()):
            try:
                await websocket.send_text(json.dumps(data, default=str))
            except (WebSocketDisconnect, RuntimeError) as e:
                logger.warning(f"Error broadcasting to {client_id}: {e}")
                disconnected.append(client_id)

        # Clean up disconnected clients
        for client_id in disconnected:
            self.disconnect(client_id)

    async def broadcast_alert(self, event_name: str, alert: Alert):
        await self.broadcast({"type": event_name, "alert": alert.to_dict()})

manager = ConnectionManager()

# Lifespan manager for startup/shutdown events
@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup
    await create_db_and_tables()

    pipeline = SafetyPipeline.from_settings(settings)
    await restore_pipeline_state(pipeline, AsyncSessionLocal)

    pipeline.fix_recorder = FixRecorder(AsyncSessionLocal)
    pipeline.dispatcher.subscribe(AlertRecorder(AsyncSessionLocal))
    pipeline.dispatcher.subscribe(manager.broadcast_alert)
    notifier = AuthorityNotifier(
        settings.AUTHORITY_WEBHOOK_URL,
        api_key=settings.AUTHORITY_API_KEY,
        timeout_seconds=settings.AUTHORITY_TIMEOUT_SECONDS
    )
    if notifier.enabled:
        pipeline.dispatcher.subscribe(notifier)
    else:
        logger.info("No authority webhook configured; alerts stay local")

    app.state.pipeline = pipeline
    logger.info("Application starting up")
    yield
    # Shutdown
    logger.info("Application shutting down")

app = FastAPI(
    title="SafeTravel Monitoring API",
    description="Geofence monitoring, safety scoring and alerting for tourists",
    version="1.0.0",
    lifespan=lifespan
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Configure appropriately for production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(tourists.router, prefix="/api/tourists", tags=["Tourists"])
app.include_router(location.router, prefix="/api/location", tags=["Location"])
app.include_router(zones.router, prefix="/api/zones", tags=["Zones"])
app.include_router(alerts.router, prefix="/api/alerts", tags=["Alerts"])

@app.websocket("/ws/{client_id}")
async def websocket_endpoint(websocket: WebSocket, client_id: str):
    await manager.connect(websocket, client_id)
    try:
        while True:
            # Keep connection alive; any message gets a heartbeat back
            await websocket.receive_text()
            await websocket.send_text(json.dumps({
                "type": "heartbeat",
                "timestamp": datetime.now(timezone.utc).isoformat()
            }))
    except WebSocketDisconnect:
        manager.disconnect(client_id)

@app.get("/")
async def root():
    return {
        "message": "SafeTravel Monitoring API",
        "status": "active",
        "version": "1.0.0",
        "timestamp": datetime.now(timezone.utc).isoformat()
    }

# Health check endpoint
@app.get("/health")
async def health_check() -> dict[str, Any]:
    pipeline = getattr(app.state, "pipeline", None)
    return {
        "status": "healthy",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "active_connections": len(manager.active_connections),
        "zone_index_ready": bool(pipeline and pipeline.registry.is_ready),
        "open_alerts": len(pipeline.dispatcher) if pipeline else 0,
        "tracked_tourists": len(pipeline.store) if pipeline else 0
    }

# Make manager available to other modules
app.state.websocket_manager = manager
