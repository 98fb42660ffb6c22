import asyncio
from typing import Any, Dict, Iterable, Set

import anyio
import structlog
from fastapi import WebSocket


log = structlog.get_logger()


class ChatHub:
    """In-process fan-out of messaging events to connected WebSockets."""

    def __init__(self) -> None:
        # user_id -> set of WebSocket connections
        self._user_connections: Dict[int, Set[WebSocket]] = {}
        self._lock = asyncio.Lock()

    async def connect(self, user_id: int, ws: WebSocket) -> None:
        async with self._lock:
            self._user_connections.setdefault(user_id, set()).add(ws)

    async def disconnect(self, user_id: int, ws: WebSocket) -> None:
        async with self._lock:
            conns = self._user_connections.get(user_id)
            if conns is not None:
                conns.discard(ws)
                if not conns:
                    self._user_connections.pop(user_id, None)

    def is_online(self, user_id: int) -> bool:
        return bool(self._user_connections.get(user_id))

    async def broadcast_to_users(self, user_ids: Iterable[int], event: str, payload: Any) -> None:
        user_ids = set(user_ids)
        if not user_ids:
            return
        data = {"event": event, "data": payload}
        async with self._lock:
            targets = [(uid, ws) for uid in user_ids for ws in self._user_connections.get(uid, set())]
        dead = []
        for uid, ws in targets:
            try:
                await ws.send_json(data)
            except Exception:
                dead.append((uid, ws))
        for uid, ws in dead:
            await self.disconnect(uid, ws)

    def publish(self, user_ids: Iterable[int], event: str, payload: Any) -> None:
        """Broadcast from a sync route handler (runs in the anyio worker thread)."""
        user_ids = set(user_ids)
        if not user_ids:
            return
        try:
            anyio.from_thread.run(self.broadcast_to_users, user_ids, event, payload)
        except RuntimeError as e:
            # Not inside an anyio worker thread (scripts, direct service calls)
            log.debug("chat_publish_skipped", chat_event=event, error=str(e))


# Global singleton hub
hub = ChatHub()
