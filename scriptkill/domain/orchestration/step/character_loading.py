from typing import Any, Dict, List, Tuple

import structlog

from scriptkill.application.websocket.schema.events import SystemEvent
from scriptkill.domain.context.memory.vector_memory_store import VectorMemoryStore
from scriptkill.domain.models.script_records import Character
from scriptkill.domain.models.session_state import (
    ParticipantKind, RoleAssignment, SessionContext, WorkflowStep
)
from scriptkill.domain.orchestration.step.base_step import BaseStep, StepFailure
from scriptkill.domain.orchestration.subagent.agent_registry import AgentRegistry
from scriptkill.domain.repository.record_repository import RecordRepository
from scriptkill.domain.streaming.streaming_handler import StreamingHandler

logger = structlog.get_logger(__name__)

GAME_START = "game_start"


def character_sheet(character: Character) -> List[Tuple[str, str]]:
    """Non-empty sheet fields as (label, text) pairs"""

    fields = [
        ("Name", character.name),
        ("Description", character.description),
        ("Background", character.background),
        ("Secret", character.secret),
        ("Timeline", character.timeline),
    ]
    return [(label, text) for label, text in fields if text and text.strip()]


class CharacterLoadingStep(BaseStep):
    """Gives every participant their character: AI players through memory and their agent"""

    step = WorkflowStep.CHARACTER_LOADING

    def __init__(
        self,
        agents: AgentRegistry,
        repository: RecordRepository,
        memory: VectorMemoryStore,
        streaming: StreamingHandler
    ):
        self.agents = agents
        self.repository = repository
        self.memory = memory
        self.streaming = streaming

    async def process(self, context: SessionContext, state: Dict[str, Any]) -> Dict[str, Any]:
        if not context.script_id:
            raise StepFailure("No script to load characters from")
        if not context.role_assignments:
            raise StepFailure("No roles have been assigned")

        loaded: List[str] = []
        for assignment in context.role_assignments:
            character = await self.repository.get_character(context.script_id, assignment.role_id)
            if character is None:
                logger.warning("Assigned role has no character", role_id=assignment.role_id)
                continue

            if assignment.participant_kind == ParticipantKind.AI:
                await self._load_ai_character(context, assignment, character)
            else:
                await self._send_human_character(context, assignment, character)
            loaded.append(character.id)

        logger.info("Characters loaded", session_id=context.session_id, characters=len(loaded))
        return {"loaded_character_ids": loaded}

    async def _load_ai_character(self, context: SessionContext, assignment: RoleAssignment, character: Character):
        sheet = character_sheet(character)

        await self.memory.batch_insert_conversation_memory(
            context.session_id,
            assignment.participant_id,
            "character_sheet",
            [f"{label}: {text}" for label, text in sheet],
        )

        if character.timeline.strip():
            await self.memory.insert_global_timeline_memory(
                context.script_id, character.timeline, GAME_START, role_id=character.id
            )

        agent = await self.agents.get_player(assignment.participant_id)
        if agent is None:
            logger.warning("AI participant has no agent", participant_id=assignment.participant_id)
            return
        await agent.read_script("\n".join(f"{label}: {text}" for label, text in sheet))

    async def _send_human_character(self, context: SessionContext, assignment: RoleAssignment, character: Character):
        await self.streaming.publish(
            [assignment.participant_id],
            SystemEvent(
                session_id=context.session_id,
                content=f"You are playing {character.name}.",
                data={"character": character.model_dump(mode="json")},
            )
        )
