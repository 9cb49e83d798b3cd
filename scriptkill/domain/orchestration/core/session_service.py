from typing import Dict, Any, List, Optional

import structlog

from scriptkill.domain.context.memory.vector_memory_store import VectorMemoryStore
from scriptkill.domain.context.state.state_manager import StateManager
from scriptkill.domain.discussion.discussion_manager import DiscussionManager
from scriptkill.domain.discussion.phase_machine import DiscussionPhaseMachine
from scriptkill.domain.errors import SessionNotFoundError
from scriptkill.domain.models.session_state import ParticipantKind, SessionContext
from scriptkill.domain.orchestration.core.session_workflow import SessionWorkflow
from scriptkill.domain.orchestration.subagent.agent_registry import (
    AgentRegistry, director_id_for, judge_id_for
)

logger = structlog.get_logger(__name__)


class SessionService:
    """Entry point for everything the operator surface can do with a session"""

    def __init__(
        self,
        workflow: SessionWorkflow,
        discussions: DiscussionManager,
        state_manager: StateManager,
        memory: VectorMemoryStore,
        agents: AgentRegistry
    ):
        self.workflow = workflow
        self.discussions = discussions
        self.state_manager = state_manager
        self.memory = memory
        self.agents = agents

    async def create_session(
        self,
        premise: str,
        human_count: Optional[int] = None,
        human_participant_ids: Optional[List[str]] = None
    ) -> SessionContext:
        return await self.workflow.run(premise, human_count, human_participant_ids)

    async def get_context(self, session_id: str) -> SessionContext:
        context = await self.state_manager.get_current_state(session_id)
        if context is None:
            raise SessionNotFoundError(session_id)
        return context

    async def get_session(self, session_id: str) -> Dict[str, Any]:
        """Snapshot of the session context and, once started, its discussion"""

        context = await self.get_context(session_id)
        summary = context.get_state_summary()
        summary["role_assignments"] = [a.model_dump(mode="json") for a in context.role_assignments]
        summary["history"] = await self.state_manager.get_history(session_id)

        machine = self.discussions.machines.get(session_id)
        if machine is not None:
            summary["discussion"] = machine.get_state()
        return summary

    async def start_discussion(self, session_id: str, participants: Optional[List[str]] = None) -> Dict[str, Any]:
        context = await self.get_context(session_id)
        machine = await self.discussions.get_or_create(session_id, context)
        return await machine.start_discussion(
            participants or context.participant_ids(),
            context.director_id or director_id_for(session_id),
            context.judge_id or judge_id_for(session_id)
        )

    async def send_private_chat_invitation(self, session_id: str, sender_id: str, receiver_id: str) -> bool:
        return await (await self._machine(session_id)).send_private_chat_invitation(sender_id, receiver_id)

    async def send_private_chat_message(self, session_id: str, sender_id: str, receiver_id: str, message: str) -> bool:
        return await (await self._machine(session_id)).send_private_chat_message(sender_id, receiver_id, message)

    async def send_discussion_message(self, session_id: str, participant_id: str, message: str) -> bool:
        return await (await self._machine(session_id)).send_discussion_message(participant_id, message)

    async def submit_answer(self, session_id: str, participant_id: str, answer: str) -> bool:
        return await (await self._machine(session_id)).submit_answer(participant_id, answer)

    async def advance_discussion(self, session_id: str) -> Dict[str, Any]:
        return await (await self._machine(session_id)).advance_phase()

    async def end_discussion(self, session_id: str) -> Dict[str, Any]:
        return await (await self._machine(session_id)).end_discussion()

    async def cancel_session(self, session_id: str) -> bool:
        """Stop the discussion and forget the session; global memory is kept"""

        context = await self.get_context(session_id)

        await self.discussions.close(session_id)
        await self.memory.drop_session_memory(session_id)

        keys = [
            f"director:{context.director_id or director_id_for(session_id)}",
            f"judge:{context.judge_id or judge_id_for(session_id)}",
        ]
        keys.extend(
            f"player:{a.participant_id}" for a in context.assignments_of_kind(ParticipantKind.AI)
        )
        await self.agents.release(*keys)

        await self.state_manager.clear_state(session_id)
        logger.info("Session cancelled", session_id=session_id)
        return True

    async def shutdown(self):
        await self.discussions.shutdown()

    async def _machine(self, session_id: str) -> DiscussionPhaseMachine:
        await self.get_context(session_id)
        return self.discussions.get(session_id)
