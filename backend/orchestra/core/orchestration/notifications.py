"""
Live observer notifications.

Every task transition and epic start pushes a snapshot to the WebSocket
clients watching the owning epic (channel ``epic_<epic_id>``). Delivery is
best-effort: ``notify_safely`` is the only way orchestration code emits,
and it never lets a notification failure reach the caller.
"""

import asyncio
import json
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from collections.abc import Callable
from typing import Any, Optional, Protocol, Union
from uuid import uuid4

from fastapi import WebSocket, WebSocketDisconnect
from starlette.websockets import WebSocketState

from orchestra.core.models import Epic, Task
from orchestra.core.schemas import EpicResponse, TaskResponse

logger = logging.getLogger(__name__)


class Notifier(Protocol):
    """Anything that can push a payload to a named channel."""

    async def notify(self, channel: str, payload: dict[str, Any]) -> None: ...


def epic_channel(epic_id: Any) -> str:
    return f"epic_{epic_id}"


def task_update_payload(task: Task) -> dict[str, Any]:
    return {
        "type": "task_updated",
        "task": TaskResponse.model_validate(task).model_dump(mode="json"),
    }


def epic_update_payload(epic: Epic) -> dict[str, Any]:
    return {
        "type": "epic_updated",
        "epic": EpicResponse.model_validate(epic).model_dump(mode="json"),
    }


Payload = Union[dict[str, Any], Callable[[], dict[str, Any]]]


async def notify_safely(
    notifier: Optional[Notifier],
    channel: str,
    payload: Payload,
) -> bool:
    """
    Fire-and-forget notification.

    ``payload`` may be a builder, which is then only called when there is a
    notifier. Returns True when the notifier accepted the payload. Any
    exception, including one raised while building the payload, is logged
    and swallowed.
    """
    if notifier is None:
        return False
    try:
        message = payload() if callable(payload) else payload
        await notifier.notify(channel, message)
        return True
    except Exception as e:
        logger.error(f"Failed to broadcast update to {channel}: {e}")
        return False


# ==========================================================================
# WebSocket Broadcaster
# ==========================================================================

@dataclass
class Subscriber:
    """A connected WebSocket client watching one channel."""
    id: str
    channel: str
    websocket: WebSocket
    connected_at: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())
    is_active: bool = True


class EpicBroadcaster:
    """In-process registry of WebSocket subscribers per epic channel."""

    def __init__(self):
        self.subscribers: dict[str, dict[str, Subscriber]] = {}
        self._lock = asyncio.Lock()

    async def subscribe(self, channel: str, websocket: WebSocket) -> str:
        """Accept the socket and register it on a channel."""
        await websocket.accept()
        subscriber = Subscriber(id=str(uuid4()), channel=channel, websocket=websocket)

        async with self._lock:
            self.subscribers.setdefault(channel, {})[subscriber.id] = subscriber

        logger.info(f"Subscriber {subscriber.id} joined {channel}")
        return subscriber.id

    async def unsubscribe(self, channel: str, subscriber_id: str) -> None:
        async with self._lock:
            channel_subscribers = self.subscribers.get(channel, {})
            channel_subscribers.pop(subscriber_id, None)
            if not channel_subscribers:
                self.subscribers.pop(channel, None)

        logger.info(f"Subscriber {subscriber_id} left {channel}")

    async def notify(self, channel: str, payload: dict[str, Any]) -> None:
        """Send a JSON message to every live subscriber of a channel."""
        message = json.dumps({
            **payload,
            "channel": channel,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        })

        dead: list[str] = []
        for subscriber_id, subscriber in list(self.subscribers.get(channel, {}).items()):
            if not subscriber.is_active:
                dead.append(subscriber_id)
                continue
            try:
                if subscriber.websocket.client_state == WebSocketState.CONNECTED:
                    await subscriber.websocket.send_text(message)
            except Exception as e:
                logger.warning(f"Dropping subscriber {subscriber_id} on {channel}: {e}")
                subscriber.is_active = False
                dead.append(subscriber_id)

        for subscriber_id in dead:
            await self.unsubscribe(channel, subscriber_id)

    def subscriber_count(self, channel: str) -> int:
        return len(self.subscribers.get(channel, {}))


_broadcaster: Optional[EpicBroadcaster] = None


def get_broadcaster() -> EpicBroadcaster:
    """Get or create the process-wide broadcaster."""
    global _broadcaster
    if _broadcaster is None:
        _broadcaster = EpicBroadcaster()
    return _broadcaster


async def epic_websocket_endpoint(websocket: WebSocket, channel: str, broadcaster: EpicBroadcaster) -> None:
    """Hold a subscriber connection open until the client goes away."""
    subscriber_id = await broadcaster.subscribe(channel, websocket)
    try:
        while True:
            # Clients only listen; anything they send is treated as a ping.
            await websocket.receive_text()
    except WebSocketDisconnect:
        pass
    finally:
        await broadcaster.unsubscribe(channel, subscriber_id)
