from typing import Dict, Any, List, Optional
from pydantic import BaseModel, Field
from datetime import datetime
from enum import Enum


class DiscussionPhase(str, Enum):
    """Phases of the timed discussion"""
    INITIALIZED = "INITIALIZED"
    STATEMENT = "STATEMENT"
    FREE_DISCUSSION = "FREE_DISCUSSION"
    PRIVATE_CHAT = "PRIVATE_CHAT"
    ANSWER = "ANSWER"
    ENDED = "ENDED"


# Phase entered when the current one's timer expires (ANSWER is decided by round)
NEXT_PHASE = {
    DiscussionPhase.STATEMENT: DiscussionPhase.FREE_DISCUSSION,
    DiscussionPhase.FREE_DISCUSSION: DiscussionPhase.PRIVATE_CHAT,
    DiscussionPhase.PRIVATE_CHAT: DiscussionPhase.ANSWER,
}


class TranscriptEntry(BaseModel):
    """A public discussion message"""
    participant_id: str
    content: str
    round: int
    phase: DiscussionPhase
    valid: bool = True
    sent_at: datetime = Field(default_factory=datetime.utcnow)


class DiscussionState(BaseModel):
    """Per-session discussion state"""
    session_id: str
    round: int = 1
    phase: DiscussionPhase = DiscussionPhase.INITIALIZED
    phase_started_at: Optional[datetime] = None
    participants: List[str] = Field(default_factory=list)
    director_id: Optional[str] = None
    judge_id: Optional[str] = None
    answers: Dict[str, str] = Field(default_factory=dict)
    private_chat_quota: Dict[str, int] = Field(default_factory=dict)
    private_chat_log: Dict[str, List[str]] = Field(default_factory=dict)
    transcript: List[TranscriptEntry] = Field(default_factory=list)
    started_at: Optional[datetime] = None
    ended_at: Optional[datetime] = None
    score_response: Optional[str] = None
    judge_summary: Optional[str] = None

    def reset_private_chats(self, quota: int):
        """Give every participant a fresh invitation quota"""
        self.private_chat_quota = {pid: quota for pid in self.participants}
        self.private_chat_log = {pid: [] for pid in self.participants}

    def enter_phase(self, phase: DiscussionPhase):
        self.phase = phase
        self.phase_started_at = datetime.utcnow()

    @property
    def is_active(self) -> bool:
        return self.phase not in (DiscussionPhase.INITIALIZED, DiscussionPhase.ENDED)

    def snapshot(self) -> Dict[str, Any]:
        """Serializable copy of the state"""
        return self.model_dump(mode="json")
