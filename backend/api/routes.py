"""REST API routes for Connect Booth."""

import logging

from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import BaseModel

from config import DEVICE_NAME
from errors import (
    AlreadyPublishing,
    ConnectBoothError,
    NetworkError,
    NoCredential,
    RejectedCredential,
    UnreachableReceiver,
)
from handshake.manager import ConnectManager

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api")


def get_manager(request: Request) -> ConnectManager:
    """The service handle attached to the app at startup."""
    return request.app.state.manager


def _http_error(e: ConnectBoothError) -> HTTPException:
    if isinstance(e, (NoCredential, AlreadyPublishing)):
        status_code = 409
    elif isinstance(e, UnreachableReceiver):
        status_code = 404
    elif isinstance(e, NetworkError):
        status_code = 504
    else:
        status_code = 502
    detail = {"error": type(e).__name__, "message": str(e)}
    if isinstance(e, RejectedCredential):
        detail["status"] = e.status_text
    return HTTPException(status_code=status_code, detail=detail)


# --- Device Discovery ---

@router.get("/peers")
async def list_peers(manager: ConnectManager = Depends(get_manager)):
    """Return list of discovered receivers."""
    return {"peers": [p.model_dump() for p in manager.discovered_peers()]}


# --- Capture ---

class StartCaptureBody(BaseModel):
    name: str = DEVICE_NAME


@router.post("/capture/start")
async def start_capture(body: StartCaptureBody, manager: ConnectManager = Depends(get_manager)):
    try:
        session = await manager.start_capture(body.name)
    except ConnectBoothError as e:
        raise _http_error(e)
    except OSError as e:
        raise HTTPException(status_code=503, detail=f"Could not start responder: {e}")
    return session.model_dump()


@router.post("/capture/stop")
async def stop_capture(manager: ConnectManager = Depends(get_manager)):
    await manager.stop_capture()
    return {"status": "stopped"}


@router.get("/credential")
async def get_credential(manager: ConnectManager = Depends(get_manager)):
    return manager.credential_summary()


# --- Wake ---

class WakeBody(BaseModel):
    target: str
    port: int | None = None


@router.post("/wake")
async def wake(body: WakeBody, manager: ConnectManager = Depends(get_manager)):
    """Wake a receiver by discovered name, or by host when a port is given."""
    try:
        result = await manager.wake(body.target, body.port)
    except ConnectBoothError as e:
        logger.warning(f"Wake of {body.target} failed: {type(e).__name__}: {e}")
        raise _http_error(e)
    return result.model_dump()


# --- Identity ---

@router.post("/identity/reset")
async def reset_identity(manager: ConnectManager = Depends(get_manager)):
    return {"identity": manager.reset_identity()}
