from typing import Dict, Any, Iterable, List, Optional, Callable
import structlog

from scriptkill.application.websocket.connection_manager import ConnectionManager
from scriptkill.application.websocket.schema.events import (
    BaseEvent, ComponentEvent, ComponentPayload, ComponentType, ErrorEvent,
    GameEvent, ProgressData
)
from scriptkill.domain.models.session_state import WORKFLOW_ORDER, SessionContext, WorkflowStep

logger = structlog.get_logger(__name__)


class StreamingHandler:
    """Pushes workflow progress and game events to connected participants"""

    def __init__(self, connection_manager: Optional[ConnectionManager] = None):
        self.connection_manager = connection_manager or ConnectionManager()
        self.event_handlers: Dict[str, List[Callable]] = {}

    async def publish(self, participant_ids: Iterable[str], event: BaseEvent) -> int:
        """Deliver an event to the given participants, fire and forget"""

        recipients = list(participant_ids)
        if isinstance(event, GameEvent) and not event.participant_ids:
            event.participant_ids = recipients

        delivered = 0
        if event.session_id:
            delivered = await self.connection_manager.send_to_participants(event.session_id, recipients, event)
        else:
            logger.warning("Event without session not delivered", event_type=event.type.value)

        await self.emit_custom_event(event.session_id, event.type.value, event)
        return delivered

    async def broadcast(self, session_id: str, event: BaseEvent) -> int:
        """Deliver an event to everyone connected to the session"""

        event.session_id = event.session_id or session_id
        return await self.publish(self.connection_manager.get_session_participants(session_id), event)

    async def handle_update(self, session_id: str, update: Dict[str, Any]):
        """Handle workflow node updates and stream progress to clients"""

        for node_id, node_data in update.items():
            await self._process_node_update(session_id, node_id, node_data or {})

    async def _process_node_update(self, session_id: str, node_id: str, node_data: Dict[str, Any]):
        """Process an update emitted by one workflow node"""

        logger.debug("Processing node update", session_id=session_id, node_id=node_id)

        try:
            step = WorkflowStep(node_id)
        except ValueError:
            return

        changes = node_data.get("context") or {}
        if isinstance(changes, SessionContext):
            changes = {"succeeded": changes.succeeded, "last_error": changes.last_error}

        succeeded = changes.get("succeeded", False)
        await self.send_progress(
            session_id,
            f"{step.value} finished" if succeeded else f"{step.value} failed",
            step=step.value,
            succeeded=succeeded,
            step_index=WORKFLOW_ORDER.index(step) + 1,
            total_steps=len(WORKFLOW_ORDER)
        )

        if not succeeded and changes.get("last_error"):
            await self.broadcast(
                session_id,
                ErrorEvent(payload={"message": changes["last_error"], "step": step.value})
            )

    async def send_progress(
        self,
        session_id: str,
        status: str,
        step: Optional[str] = None,
        succeeded: Optional[bool] = None,
        step_index: Optional[int] = None,
        total_steps: Optional[int] = None
    ):
        """Send progress update to session participants"""

        progress_data = ProgressData(
            status=status,
            step=step,
            succeeded=succeeded,
            step_index=step_index,
            total_steps=total_steps
        )

        await self.broadcast(
            session_id,
            ComponentEvent(
                session_id=session_id,
                payload=ComponentPayload(component=ComponentType.PROGRESS, data=progress_data)
            )
        )

    async def send_workflow_complete(self, session_id: str, succeeded: bool):
        """Send workflow completion signal"""

        await self.send_progress(session_id, "_workflow_finish", succeeded=succeeded)

    def register_event_handler(self, event_type: str, handler: Callable):
        """Register a custom event handler"""

        if event_type not in self.event_handlers:
            self.event_handlers[event_type] = []
        self.event_handlers[event_type].append(handler)

    async def emit_custom_event(self, session_id: Optional[str], event_type: str, data: Any):
        """Emit a custom event to registered handlers"""

        if event_type in self.event_handlers:
            for handler in self.event_handlers[event_type]:
                try:
                    await handler(session_id, data)
                except Exception as e:
                    logger.error("Error in event handler",
                                 event_type=event_type,
                                 error=str(e))
