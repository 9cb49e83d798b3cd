from typing import Dict, Iterable, Set, Optional, Tuple
from fastapi import WebSocket
import asyncio
from datetime import datetime
import structlog

from .schema.events import BaseEvent, ConnectionEvent, ErrorEvent

logger = structlog.get_logger(__name__)

# A participant id is only unique within its session
ConnectionKey = Tuple[str, str]


class ConnectionManager:
    """Manages participant WebSocket connections and message routing"""

    def __init__(self, stale_after_seconds: int = 300):
        self.active_connections: Dict[ConnectionKey, WebSocket] = {}
        self.connection_metadata: Dict[ConnectionKey, Dict] = {}
        self.session_participants: Dict[str, Set[str]] = {}
        self.stale_after_seconds = stale_after_seconds
        self._lock = asyncio.Lock()

    async def connect(self, websocket: WebSocket, session_id: str, participant_id: str):
        """Accept a new WebSocket connection, replacing the participant's previous one"""
        await websocket.accept()
        key = (session_id, participant_id)

        async with self._lock:
            previous = self.active_connections.get(key)
            self.active_connections[key] = websocket
            self.connection_metadata[key] = {
                "connected_at": datetime.utcnow(),
                "last_activity": datetime.utcnow()
            }
            self.session_participants.setdefault(session_id, set()).add(participant_id)

        if previous is not None and previous is not websocket:
            try:
                await previous.close()
            except Exception as e:
                logger.debug("Error closing replaced WebSocket", participant_id=participant_id, error=str(e))

        # Send connection confirmation
        await self.send_event(
            session_id,
            participant_id,
            ConnectionEvent(
                status="connected",
                session_id=session_id,
                participant_id=participant_id
            )
        )

        logger.info("WebSocket connected", session_id=session_id, participant_id=participant_id)

    async def disconnect(self, session_id: str, participant_id: str, websocket: Optional[WebSocket] = None) -> bool:
        """Disconnect a participant's WebSocket.

        With ``websocket`` given, nothing happens unless that socket is still
        the registered one, so a replaced socket cannot drop its successor.
        """
        key = (session_id, participant_id)

        async with self._lock:
            ws = self.active_connections.get(key)
            if ws is None or (websocket is not None and ws is not websocket):
                return False

            del self.active_connections[key]
            self.connection_metadata.pop(key, None)
            members = self.session_participants.get(session_id)
            if members is not None:
                members.discard(participant_id)
                if not members:
                    self.session_participants.pop(session_id, None)

        try:
            await ws.close()
        except Exception as e:
            logger.error("Error closing WebSocket", participant_id=participant_id, error=str(e))

        logger.info("WebSocket disconnected", session_id=session_id, participant_id=participant_id)
        return True

    async def send_event(self, session_id: str, participant_id: str, event: BaseEvent) -> bool:
        """Send an event to one participant; at most once, never retried"""
        key = (session_id, participant_id)
        websocket = self.active_connections.get(key)
        if websocket is None:
            logger.debug("Participant not connected", participant_id=participant_id, event_type=event.type.value)
            return False

        try:
            await websocket.send_json(event.model_dump(mode="json"))

            # Update last activity
            if key in self.connection_metadata:
                self.connection_metadata[key]["last_activity"] = datetime.utcnow()

            return True

        except Exception as e:
            logger.error("Failed to send event", participant_id=participant_id, error=str(e))
            await self.disconnect(session_id, participant_id, websocket)
            return False

    async def send_to_participants(self, session_id: str, participant_ids: Iterable[str], event: BaseEvent) -> int:
        """Send an event to several participants of a session and return how many received it"""
        tasks = [self.send_event(session_id, participant_id, event) for participant_id in set(participant_ids)]
        results = await asyncio.gather(*tasks, return_exceptions=True)
        return sum(1 for result in results if result is True)

    async def broadcast_to_session(self, session_id: str, event: BaseEvent) -> int:
        """Broadcast an event to every connected participant of a session"""
        return await self.send_to_participants(session_id, self.get_session_participants(session_id), event)

    async def send_error(
        self,
        session_id: str,
        participant_id: str,
        error_message: str,
        error_code: Optional[str] = None
    ):
        """Send an error event to a participant"""
        error_event = ErrorEvent(
            payload={"message": error_message},
            error_code=error_code,
            session_id=session_id
        )
        await self.send_event(session_id, participant_id, error_event)

    def get_session_participants(self, session_id: str) -> Set[str]:
        """Get connected participant IDs of a session"""
        return set(self.session_participants.get(session_id, set()))

    async def disconnect_all(self):
        for session_id, participant_id in list(self.active_connections):
            await self.disconnect(session_id, participant_id)

    async def health_check(self):
        """Periodic health check to clean up stale connections"""
        while True:
            try:
                current_time = datetime.utcnow()
                stale = [
                    (key, self.active_connections.get(key))
                    for key, metadata in list(self.connection_metadata.items())
                    if (current_time - metadata["last_activity"]).total_seconds() > self.stale_after_seconds
                ]

                for (session_id, participant_id), websocket in stale:
                    logger.warning("Disconnecting stale connection", session_id=session_id, participant_id=participant_id)
                    await self.disconnect(session_id, participant_id, websocket)

            except Exception as e:
                logger.error("Health check error", error=str(e))

            await asyncio.sleep(60)
