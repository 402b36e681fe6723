"""
Connect Booth: FastAPI application entry point.

Starts receiver discovery on startup, serves the control API and a
WebSocket event stream.
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, WebSocket, WebSocketDisconnect

from api.routes import router
from api.websocket import EventStream
from config import API_HOST, API_PORT
from handshake.manager import ConnectManager

# --- Logging ---
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


def create_app(manager: ConnectManager | None = None) -> FastAPI:
    event_stream = EventStream()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Start/stop background services."""
        logger.info("Starting Connect Booth services...")
        service = manager or ConnectManager()
        app.state.manager = service

        try:
            service.on_event(event_stream.publish)
            await service.start()
            logger.info(
                f"Connect Booth ready. API: {API_HOST}:{API_PORT}, "
                f"identity: {service.identity.device_id}"
            )

            yield

        except Exception as e:
            logger.error(f"Startup failed: {e}", exc_info=True)
            raise
        finally:
            logger.info("Shutting down Connect Booth services...")
            await service.stop()

    app = FastAPI(
        title="Connect Booth",
        version="1.0.0",
        lifespan=lifespan,
    )
    app.state.events = event_stream
    app.include_router(router)

    @app.websocket("/ws")
    async def websocket_endpoint(websocket: WebSocket, events: str | None = None):
        """Event stream. ``?events=a,b`` limits which kinds are relayed."""
        service = websocket.app.state.manager
        snapshot = {
            "credential": service.credential_summary(),
            "peers": [p.model_dump() for p in service.discovered_peers()],
        }
        wanted = [e.strip() for e in events.split(",")] if events else None
        await event_stream.subscribe(websocket, wanted, snapshot=snapshot)
        try:
            while True:
                # Keep the connection alive; we don't expect client messages
                await websocket.receive_text()
        except WebSocketDisconnect:
            await event_stream.unsubscribe(websocket)
        except Exception as e:
            logger.warning(f"Event subscriber failed: {e}")
            await event_stream.unsubscribe(websocket)
            await websocket.close(code=1011)

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        app,
        host=API_HOST,
        port=API_PORT,
        log_level="info",
    )
