from typing import Any, List, Optional
from pydantic import BaseModel, ConfigDict, Field, field_validator
from datetime import datetime
from enum import Enum
import json
import re

from scriptkill.domain.models.session_state import ParticipantKind


class ClueType(str, Enum):
    PHYSICAL = "PHYSICAL"
    TESTIMONY = "TESTIMONY"
    DOCUMENT = "DOCUMENT"
    DIGITAL = "DIGITAL"
    OTHER = "OTHER"


class ClueVisibility(str, Enum):
    PUBLIC = "PUBLIC"
    PRIVATE = "PRIVATE"


class Script(BaseModel):
    """A generated scenario"""
    id: str
    name: str
    description: str = ""
    timeline: str = ""
    author: str = "AI"
    player_count: int = 0
    duration_minutes: int = 0
    created_at: datetime = Field(default_factory=datetime.utcnow)


class Character(BaseModel):
    """A playable role declared by a script"""
    id: str
    script_id: str
    name: str
    description: str = ""
    background: str = ""
    secret: str = ""
    timeline: str = ""
    order: int = 0


class Clue(BaseModel):
    """A piece of evidence that can be found in a scene"""
    id: str
    script_id: str
    name: str
    description: str = ""
    type: ClueType = ClueType.PHYSICAL
    visibility: ClueVisibility = ClueVisibility.PUBLIC
    scene: str = ""
    importance: int = 1


class Player(BaseModel):
    """A participant taking part in sessions"""
    id: str
    nickname: str
    kind: ParticipantKind
    created_at: datetime = Field(default_factory=datetime.utcnow)


# Shapes of the scenario writer output

class _WriterModel(BaseModel):
    model_config = ConfigDict(coerce_numbers_to_str=True, extra="ignore", populate_by_name=True)


class CharacterDraft(_WriterModel):
    name: str
    age: str = ""
    identity: str = ""
    personality: str = ""
    background: str = ""
    secrets: str = ""
    timeline: str = ""

    def description(self) -> str:
        parts = []
        if self.age:
            parts.append(f"Age: {self.age}")
        if self.identity:
            parts.append(f"Identity: {self.identity}")
        if self.personality:
            parts.append(f"Personality: {self.personality}")
        return "\n".join(parts)


class ClueDraft(_WriterModel):
    name: str
    content: str = ""
    type: ClueType = ClueType.PHYSICAL
    visibility: ClueVisibility = ClueVisibility.PUBLIC
    scene: str = ""
    importance: int = 1

    @field_validator("type", mode="before")
    @classmethod
    def _parse_type(cls, value: Any) -> ClueType:
        try:
            return ClueType(str(value).strip().upper())
        except ValueError:
            return ClueType.PHYSICAL

    @field_validator("visibility", mode="before")
    @classmethod
    def _parse_visibility(cls, value: Any) -> ClueVisibility:
        try:
            return ClueVisibility(str(value).strip().upper())
        except ValueError:
            return ClueVisibility.PUBLIC

    @field_validator("importance", mode="before")
    @classmethod
    def _parse_importance(cls, value: Any) -> int:
        try:
            return int(value)
        except (TypeError, ValueError):
            return 1


class SceneDraft(_WriterModel):
    name: str
    time: str = ""
    location: str = ""
    atmosphere: str = ""
    description: str = ""
    clues: List[str] = Field(default_factory=list)

    @field_validator("clues", mode="before")
    @classmethod
    def _parse_clues(cls, value: Any) -> List[str]:
        if value is None:
            return []
        if isinstance(value, str):
            return [part.strip() for part in value.split(",") if part.strip()]
        return [str(item) for item in value]

    def full_description(self) -> str:
        parts = [self.description] if self.description else []
        if self.time:
            parts.append(f"Time: {self.time}")
        if self.location:
            parts.append(f"Location: {self.location}")
        if self.atmosphere:
            parts.append(f"Atmosphere: {self.atmosphere}")
        return "\n".join(parts)


class ScriptDocument(_WriterModel):
    """Structured scenario as returned by the scenario writer"""
    script_name: str = Field(alias="scriptName")
    script_intro: str = Field(default="", alias="scriptIntro")
    script_timeline: str = Field(default="", alias="scriptTimeline")
    characters: List[CharacterDraft] = Field(default_factory=list)
    clues: List[ClueDraft] = Field(default_factory=list)
    scenes: List[SceneDraft] = Field(default_factory=list)

    @classmethod
    def from_writer_output(cls, raw: str) -> "ScriptDocument":
        """Parse writer output, tolerating a surrounding markdown code fence.

        Raises ValueError when the text is not a usable scenario.
        """
        payload = json.loads(strip_code_fence(raw))
        if not isinstance(payload, dict):
            raise ValueError("Scenario must be a JSON object")
        return cls.model_validate(payload)


_FENCE = re.compile(r"^```[a-zA-Z]*\s*\n?(.*?)\n?```\s*$", re.DOTALL)


def strip_code_fence(text: Optional[str]) -> str:
    if not text:
        return ""
    text = text.strip()
    match = _FENCE.match(text)
    if match:
        return match.group(1).strip()
    return text
