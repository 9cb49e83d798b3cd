from typing import Any, Dict
import itertools
import time
import uuid

import structlog
from pydantic import ValidationError

from scriptkill.domain.models.script_records import (
    Character, Clue, Script, ScriptDocument, strip_code_fence
)
from scriptkill.domain.models.session_state import SessionContext, WorkflowStep
from scriptkill.domain.orchestration.step.base_step import BaseStep, StepFailure
from scriptkill.domain.orchestration.subagent.agent_registry import AgentRegistry
from scriptkill.domain.repository.record_repository import RecordRepository

logger = structlog.get_logger(__name__)

_script_sequence = itertools.count(1)


def next_script_id() -> str:
    """Process-unique script id; never handed out twice"""
    return f"script_{time.time_ns()}_{next(_script_sequence)}"


def new_session_id() -> str:
    return f"session_{uuid.uuid4().hex}"


class ScriptGenerationStep(BaseStep):
    """Asks the scenario writer for a script and stores its records"""

    step = WorkflowStep.SCRIPT_GENERATION

    def __init__(self, agents: AgentRegistry, repository: RecordRepository):
        self.agents = agents
        self.repository = repository

    async def run(self, state: Dict[str, Any]) -> Dict[str, Any]:
        context = state["context"]
        if context.session_id is None:
            context = context.model_copy(update={"session_id": new_session_id()})
            state = {**state, "context": context}

        update = await super().run(state)
        # The session id is recorded whether or not generation worked
        update["context"].setdefault("session_id", context.session_id)
        return update

    def attempt_number(self, state: Dict[str, Any]) -> int:
        return state.get("generation_attempts", 0) + 1

    def extra_updates(self, state: Dict[str, Any]) -> Dict[str, Any]:
        return {"generation_attempts": self.attempt_number(state)}

    async def process(self, context: SessionContext, state: Dict[str, Any]) -> Dict[str, Any]:
        session_id = context.session_id
        keep = {"session_id": session_id}

        if not context.premise.strip():
            raise StepFailure("Premise is empty", keep)

        # A retry shows the writer why its last answer was rejected
        previous_error = context.last_error if state.get("generation_attempts", 0) else None

        writer = await self.agents.get_script_writer()
        raw = await writer.generate_script(context.premise, previous_error)
        if writer.last_failure is not None:
            raise StepFailure("Scenario writer is unavailable", keep)

        try:
            document = ScriptDocument.from_writer_output(raw)
        except ValidationError as e:
            logger.warning("Scenario is missing fields", session_id=session_id, errors=e.error_count())
            raise StepFailure("Scenario is missing required fields", keep)
        except ValueError as e:
            logger.warning("Scenario is not valid JSON", session_id=session_id, error=str(e))
            raise StepFailure("Scenario is not valid JSON", keep)

        if not document.characters:
            raise StepFailure("Scenario declares no characters", keep)

        script_id = next_script_id()
        await self._persist(script_id, document)

        logger.info(
            "Scenario generated",
            session_id=session_id,
            script_id=script_id,
            characters=len(document.characters),
            clues=len(document.clues),
            scenes=len(document.scenes)
        )

        return {
            "session_id": session_id,
            "script_id": script_id,
            "generated_script": strip_code_fence(raw),
            "script_name": document.script_name,
            "total_roles": len(document.characters),
        }

    async def _persist(self, script_id: str, document: ScriptDocument):
        await self.repository.save_script(Script(
            id=script_id,
            name=document.script_name,
            description=document.script_intro,
            timeline=document.script_timeline,
            player_count=len(document.characters),
        ))

        await self.repository.save_characters([
            Character(
                id=f"{script_id}_character_{index}",
                script_id=script_id,
                name=draft.name,
                description=draft.description(),
                background=draft.background,
                secret=draft.secrets,
                timeline=draft.timeline,
                order=index,
            )
            for index, draft in enumerate(document.characters)
        ])

        await self.repository.save_clues([
            Clue(
                id=f"{script_id}_clue_{index}",
                script_id=script_id,
                name=draft.name,
                description=draft.content,
                type=draft.type,
                visibility=draft.visibility,
                scene=draft.scene,
                importance=draft.importance,
            )
            for index, draft in enumerate(document.clues)
        ])
