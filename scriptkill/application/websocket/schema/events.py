from typing import Dict, Any, Optional, List, Literal, Union
from pydantic import BaseModel, Field
from datetime import datetime
from enum import Enum


class EventType(str, Enum):
    """WebSocket event types"""
    PHASE_CHANGE = "phase_change"
    DISCUSSION = "discussion"
    PRIVATE_CHAT_INVITATION = "private_chat_invitation"
    PRIVATE_CHAT = "private_chat"
    ANSWER = "answer"
    SCORE = "score"
    SYSTEM = "system"
    COMPONENT = "component"
    ERROR = "error"
    CONNECTION = "connection"
    CLIENT_ACTION = "client_action"


class ComponentType(str, Enum):
    """UI component types"""
    PROGRESS = "progress"


class BaseEvent(BaseModel):
    """Base event model for all WebSocket messages"""
    type: EventType
    timestamp: datetime = Field(default_factory=datetime.utcnow)
    session_id: Optional[str] = None


class GameEvent(BaseEvent):
    """Envelope for everything the session pushes to participants"""
    content: str = ""
    participant_ids: List[str] = Field(default_factory=list)
    sender_id: Optional[str] = None
    receiver_id: Optional[str] = None
    data: Dict[str, Any] = Field(default_factory=dict)


class PhaseChangeEvent(GameEvent):
    type: Literal[EventType.PHASE_CHANGE] = EventType.PHASE_CHANGE


class DiscussionEvent(GameEvent):
    type: Literal[EventType.DISCUSSION] = EventType.DISCUSSION


class PrivateChatInvitationEvent(GameEvent):
    type: Literal[EventType.PRIVATE_CHAT_INVITATION] = EventType.PRIVATE_CHAT_INVITATION


class PrivateChatEvent(GameEvent):
    type: Literal[EventType.PRIVATE_CHAT] = EventType.PRIVATE_CHAT


class AnswerEvent(GameEvent):
    type: Literal[EventType.ANSWER] = EventType.ANSWER


class ScoreEvent(GameEvent):
    type: Literal[EventType.SCORE] = EventType.SCORE


class SystemEvent(GameEvent):
    type: Literal[EventType.SYSTEM] = EventType.SYSTEM


class ProgressData(BaseModel):
    """Progress component data"""
    status: str
    step: Optional[str] = None
    succeeded: Optional[bool] = None
    step_index: Optional[int] = None
    total_steps: Optional[int] = None


class ComponentPayload(BaseModel):
    """Component event payload"""
    component: ComponentType
    data: Union[ProgressData, Dict[str, Any]]


class ComponentEvent(BaseEvent):
    """Component event for UI updates"""
    type: Literal[EventType.COMPONENT] = EventType.COMPONENT
    payload: ComponentPayload


class ErrorEvent(BaseEvent):
    """Error event"""
    type: Literal[EventType.ERROR] = EventType.ERROR
    payload: Dict[str, Any]
    error_code: Optional[str] = None


class ConnectionEvent(BaseEvent):
    """Connection status event"""
    type: Literal[EventType.CONNECTION] = EventType.CONNECTION
    status: Literal["connected", "disconnected", "reconnecting"]
    participant_id: Optional[str] = None


class ClientAction(str, Enum):
    DISCUSSION_MESSAGE = "discussion_message"
    PRIVATE_CHAT_INVITATION = "private_chat_invitation"
    PRIVATE_CHAT_MESSAGE = "private_chat_message"
    SUBMIT_ANSWER = "submit_answer"


class ClientActionEvent(BaseEvent):
    """Action sent by a participant over the socket"""
    type: Literal[EventType.CLIENT_ACTION] = EventType.CLIENT_ACTION
    action: ClientAction
    content: str = ""
    receiver_id: Optional[str] = None
