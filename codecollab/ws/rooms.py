from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Set

from fastapi import WebSocket

from codecollab.models import User

logger = logging.getLogger(__name__)


@dataclass(eq=False)
class Participant:
    websocket: WebSocket
    user: User


class RoomHub:
    """
    Per-project rooms over FastAPI WebSockets.

    ``publish`` fans an envelope out to everyone in the room except the
    publisher; ``broadcast`` includes it. A socket that fails on send is
    dropped from its room.
    """

    def __init__(self) -> None:
        self._rooms: Dict[str, Set[Participant]] = {}
        self._lock = asyncio.Lock()

    async def join(self, project_id: str, websocket: WebSocket, user: User) -> Participant:
        participant = Participant(websocket=websocket, user=user)
        async with self._lock:
            self._rooms.setdefault(project_id, set()).add(participant)
        logger.info("[rooms] %s joined %s", user.id, project_id)
        return participant

    async def leave(self, project_id: str, participant: Participant) -> None:
        async with self._lock:
            members = self._rooms.get(project_id)
            if members is None:
                return
            members.discard(participant)
            if not members:
                del self._rooms[project_id]
        logger.info("[rooms] %s left %s", participant.user.id, project_id)

    async def members(self, project_id: str) -> List[Participant]:
        async with self._lock:
            return list(self._rooms.get(project_id, ()))

    async def publish(self, project_id: str, event: str, data: Any,
                      exclude: Optional[Participant] = None) -> int:
        payload = {"event": event, "data": data}
        delivered = 0
        for participant in await self.members(project_id):
            if participant is exclude:
                continue
            try:
                await participant.websocket.send_json(payload)
                delivered += 1
            except Exception as e:
                logger.warning("[rooms] dropping %s from %s: %s", participant.user.id, project_id, e)
                await self.leave(project_id, participant)
        return delivered

    async def broadcast(self, project_id: str, event: str, data: Any) -> int:
        return await self.publish(project_id, event, data, exclude=None)
