from typing import Any, Dict, List

import structlog

from scriptkill.application.websocket.schema.events import SystemEvent
from scriptkill.domain.context.memory.vector_memory_store import VectorMemoryStore
from scriptkill.domain.models.script_records import Clue
from scriptkill.domain.models.session_state import (
    FIRST_INVESTIGATION_PHASE, ParticipantKind, SessionContext, StepRecord, WorkflowStep
)
from scriptkill.domain.orchestration.step.base_step import BaseStep, StepFailure
from scriptkill.domain.orchestration.subagent.agent_registry import AgentRegistry
from scriptkill.domain.repository.record_repository import RecordRepository
from scriptkill.domain.streaming.streaming_handler import StreamingHandler

logger = structlog.get_logger(__name__)

BRANCH_STEPS = (WorkflowStep.SCENE_LOADING, WorkflowStep.CHARACTER_LOADING)


def clue_text(clue: Clue) -> str:
    return f"{clue.name}: {clue.description}" if clue.description else clue.name


class FirstInvestigationStep(BaseStep):
    """Publishes the scene clues and opens the first evidence phase"""

    step = WorkflowStep.FIRST_INVESTIGATION

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
        trace: List[StepRecord] = state.get("step_trace", [])
        failed = [r for r in trace if r.step in BRANCH_STEPS and not r.succeeded]
        if failed:
            record = failed[-1]
            raise StepFailure(f"Skipped because {record.step.value} failed: {record.error}")

        if not context.script_id:
            raise StepFailure("No script for the investigation")
        if not context.role_assignments:
            raise StepFailure("No roles have been assigned")
        if not context.scenes:
            raise StepFailure("No scenes have been loaded")

        clues_by_id = {clue.id: clue for clue in await self.repository.list_clues(context.script_id)}

        found: List[Clue] = []
        for scene in context.scenes:
            for clue_id in scene.clue_ids:
                clue = clues_by_id.get(clue_id)
                if clue is None or clue in found:
                    continue
                # Keyed by clue id so replays of the script overwrite instead of duplicating
                await self.memory.insert_global_clue_memory(
                    context.script_id, clue_text(clue), clue_id=clue.id
                )
                found.append(clue)

        scene_names = ", ".join(scene.name for scene in context.scenes)
        info = f"Scenes to search: {scene_names}. {len(found)} clues can be found."
        texts = [clue_text(clue) for clue in found]

        for assignment in context.role_assignments:
            if assignment.participant_kind == ParticipantKind.AI:
                agent = await self.agents.get_player(assignment.participant_id)
                if agent is not None:
                    await agent.start_investigation(info)
                await self.memory.batch_insert_conversation_memory(
                    context.session_id, assignment.participant_id, "clue", texts
                )
            else:
                await self.streaming.publish(
                    [assignment.participant_id],
                    SystemEvent(
                        session_id=context.session_id,
                        content=f"The investigation has started. {info}",
                        data={"clues": [clue.model_dump(mode="json") for clue in found]},
                    )
                )

        logger.info("First investigation opened", session_id=context.session_id, clues=len(found))
        return {"current_phase": FIRST_INVESTIGATION_PHASE}
