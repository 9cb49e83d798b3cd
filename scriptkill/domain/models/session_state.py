from typing import Dict, Any, List, Optional, Union
from pydantic import BaseModel, Field
from datetime import datetime
from enum import Enum
import structlog

logger = structlog.get_logger(__name__)


class ParticipantKind(str, Enum):
    """Who controls a participant"""
    HUMAN = "HUMAN"
    AI = "AI"


class WorkflowStep(str, Enum):
    """Named steps of the session setup workflow"""
    INITIALIZED = "initialized"
    SCRIPT_GENERATION = "script_generation"
    ROLE_ALLOCATION = "role_allocation"
    SCENE_LOADING = "scene_loading"
    CHARACTER_LOADING = "character_loading"
    FIRST_INVESTIGATION = "first_investigation"


# Topological order of the workflow graph; steps sharing a level run concurrently
WORKFLOW_LEVELS = [
    (WorkflowStep.SCRIPT_GENERATION,),
    (WorkflowStep.ROLE_ALLOCATION,),
    (WorkflowStep.SCENE_LOADING, WorkflowStep.CHARACTER_LOADING),
    (WorkflowStep.FIRST_INVESTIGATION,),
]

WORKFLOW_ORDER = [step for level in WORKFLOW_LEVELS for step in level]

FIRST_INVESTIGATION_PHASE = "FIRST_INVESTIGATION"


class RoleAssignment(BaseModel):
    """Binding of a participant to a script role"""
    participant_id: str
    participant_kind: ParticipantKind
    role_id: str
    role_name: str


class Scene(BaseModel):
    """A location of the script where clues can be found"""
    id: str
    script_id: str
    name: str
    description: str = ""
    clue_ids: List[str] = Field(default_factory=list)


class StepRecord(BaseModel):
    """Outcome of one workflow step execution"""
    step: WorkflowStep
    succeeded: bool
    error: Optional[str] = None
    attempt: int = 1
    finished_at: datetime = Field(default_factory=datetime.utcnow)


class SessionContext(BaseModel):
    """State threaded through the session setup workflow"""
    session_id: Optional[str] = None
    script_id: Optional[str] = None
    premise: str = ""
    generated_script: Optional[str] = None
    script_name: Optional[str] = None
    role_assignments: List[RoleAssignment] = Field(default_factory=list)
    scenes: List[Scene] = Field(default_factory=list)
    loaded_character_ids: List[str] = Field(default_factory=list)
    current_step: WorkflowStep = Field(default=WorkflowStep.INITIALIZED)
    current_phase: Optional[str] = None
    human_count: int = 0
    ai_count: int = 0
    total_roles: int = 0
    human_participant_ids: List[str] = Field(default_factory=list)
    director_id: Optional[str] = None
    judge_id: Optional[str] = None
    last_error: Optional[str] = None
    succeeded: bool = False
    started_at: datetime = Field(default_factory=datetime.utcnow)
    metadata: Dict[str, Any] = Field(default_factory=dict)

    def assignments_of_kind(self, kind: ParticipantKind) -> List[RoleAssignment]:
        return [a for a in self.role_assignments if a.participant_kind == kind]

    def participant_ids(self) -> List[str]:
        return [a.participant_id for a in self.role_assignments]

    def assignment_for(self, participant_id: str) -> Optional[RoleAssignment]:
        for assignment in self.role_assignments:
            if assignment.participant_id == participant_id:
                return assignment
        return None

    def get_state_summary(self) -> Dict[str, Any]:
        """Get a summary of the current state"""
        return {
            "session_id": self.session_id,
            "script_id": self.script_id,
            "script_name": self.script_name,
            "current_step": self.current_step.value,
            "current_phase": self.current_phase,
            "succeeded": self.succeeded,
            "last_error": self.last_error,
            "total_roles": self.total_roles,
            "human_count": self.human_count,
            "ai_count": self.ai_count,
            "assigned_roles": len(self.role_assignments),
            "scenes": len(self.scenes),
        }


IMMUTABLE_FIELDS = ("session_id", "script_id")


def merge_session_context(
    current: SessionContext,
    update: Union[SessionContext, Dict[str, Any]]
) -> SessionContext:
    """Apply a step's touched fields on top of the current context.

    Used as the graph reducer: concurrent branches are applied one after the
    other, so a field written by both ends up with the last writer's value.
    """

    if isinstance(update, SessionContext):
        fields = {name: getattr(update, name) for name in SessionContext.model_fields}
    else:
        fields = dict(update)

    for name in IMMUTABLE_FIELDS:
        existing = getattr(current, name)
        if name in fields and existing is not None and fields[name] != existing:
            logger.warning(
                "Ignoring change to immutable context field",
                field=name,
                current=existing,
                attempted=fields[name]
            )
            fields.pop(name)

    unknown = set(fields) - set(SessionContext.model_fields)
    if unknown:
        raise ValueError(f"Unknown session context fields: {sorted(unknown)}")

    return current.model_copy(update=fields)
