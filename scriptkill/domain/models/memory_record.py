from typing import Optional
from pydantic import BaseModel
from datetime import datetime
from enum import Enum


class CollectionKind(str, Enum):
    CONVERSATION = "conversation"
    GLOBAL = "global"


class GlobalMemoryKind(str, Enum):
    CLUE = "clue"
    TIMELINE = "timeline"


# Stored in place of a null role id: the record applies to every role
ALL_ROLES = "*"


class MemoryScope(BaseModel):
    """Where a memory operation reads or writes.

    Conversation scopes live in one collection per session and are keyed by
    participant. Global scopes share one collection across every script and
    are disambiguated by script, kind and role.
    """
    collection: CollectionKind
    session_id: Optional[str] = None
    participant_id: Optional[str] = None
    participant_label: Optional[str] = None
    script_id: Optional[str] = None
    role_id: Optional[str] = None
    kind: Optional[GlobalMemoryKind] = None
    timeline_point: Optional[str] = None

    @classmethod
    def conversation(
        cls,
        session_id: str,
        participant_id: Optional[str] = None,
        participant_label: Optional[str] = None
    ) -> "MemoryScope":
        return cls(
            collection=CollectionKind.CONVERSATION,
            session_id=session_id,
            participant_id=participant_id,
            participant_label=participant_label,
        )

    @classmethod
    def global_memory(
        cls,
        script_id: Optional[str] = None,
        role_id: Optional[str] = None,
        kind: Optional[GlobalMemoryKind] = None,
        timeline_point: Optional[str] = None
    ) -> "MemoryScope":
        return cls(
            collection=CollectionKind.GLOBAL,
            script_id=script_id,
            role_id=role_id,
            kind=kind,
            timeline_point=timeline_point,
        )

    @property
    def is_conversation(self) -> bool:
        return self.collection == CollectionKind.CONVERSATION


class MemoryRecord(BaseModel):
    """A stored memory as returned by search"""
    id: str
    content: str
    score: float = 0.0
    session_id: Optional[str] = None
    participant_id: Optional[str] = None
    participant_label: Optional[str] = None
    inserted_at: Optional[datetime] = None
    script_id: Optional[str] = None
    role_id: Optional[str] = None
    kind: Optional[GlobalMemoryKind] = None
    timeline_point: Optional[str] = None
