"""Relay of manager events to WebSocket subscribers."""

import asyncio
import logging
import time
from typing import Iterable, Literal

from fastapi import WebSocket
from pydantic import BaseModel

logger = logging.getLogger(__name__)

RELAYED_EVENTS = frozenset({"credential_captured", "peer_discovered", "peer_lost"})


class EventMessage(BaseModel):
    """One frame on the event stream."""

    event: Literal["snapshot", "credential_captured", "peer_discovered", "peer_lost"]
    data: dict
    sent_at: float


class EventStream:
    """Fans out ConnectManager events, each client receiving only the kinds it asked for."""

    def __init__(self) -> None:
        self._subscribers: list[tuple[WebSocket, frozenset[str]]] = []
        self._lock = asyncio.Lock()

    def __len__(self) -> int:
        return len(self._subscribers)

    async def subscribe(
        self,
        websocket: WebSocket,
        events: Iterable[str] | None = None,
        snapshot: dict | None = None,
    ) -> frozenset[str]:
        """
        Accept ``websocket`` and register it for ``events`` (all kinds if None).

        Unknown kinds are ignored. When given, ``snapshot`` is sent first so a
        new client starts from the current credential and peer state.
        """
        wanted = RELAYED_EVENTS if events is None else RELAYED_EVENTS & frozenset(events)
        await websocket.accept()
        async with self._lock:
            self._subscribers.append((websocket, wanted))
            if snapshot is not None:
                try:
                    await websocket.send_text(_frame("snapshot", snapshot))
                except Exception:
                    self._subscribers.pop()
                    raise
        logger.info(f"Event subscriber connected ({', '.join(sorted(wanted)) or 'no events'}). "
                    f"Total: {len(self._subscribers)}")
        return wanted

    async def unsubscribe(self, websocket: WebSocket) -> None:
        async with self._lock:
            self._subscribers = [s for s in self._subscribers if s[0] is not websocket]
        logger.info(f"Event subscriber disconnected. Total: {len(self._subscribers)}")

    async def publish(self, event_type: str, data: dict) -> None:
        """Event handler compatible with ConnectManager.on_event()."""
        if event_type not in RELAYED_EVENTS:
            logger.debug(f"Not relaying event {event_type}")
            return

        message = _frame(event_type, data)
        async with self._lock:
            dead: set[int] = set()
            for ws, wanted in self._subscribers:
                if event_type not in wanted:
                    continue
                try:
                    await ws.send_text(message)
                except Exception as e:
                    logger.info(f"Dropping event subscriber: {e}")
                    dead.add(id(ws))
            if dead:
                self._subscribers = [s for s in self._subscribers if id(s[0]) not in dead]


def _frame(event_type: str, data: dict) -> str:
    return EventMessage(event=event_type, data=data, sent_at=time.time()).model_dump_json()
