from typing import Dict, Optional
import asyncio

import structlog

from scriptkill.domain.context.context_manager import ContextManager
from scriptkill.domain.context.memory.vector_memory_store import VectorMemoryStore
from scriptkill.domain.context.state.state_manager import StateManager
from scriptkill.domain.discussion.phase_machine import DiscussionPhaseMachine
from scriptkill.domain.errors import DiscussionNotStartedError
from scriptkill.domain.models.session_state import SessionContext
from scriptkill.domain.orchestration.subagent.agent_registry import AgentRegistry
from scriptkill.domain.streaming.streaming_handler import StreamingHandler
from scriptkill.infrastructure.config.settings import Settings

logger = structlog.get_logger(__name__)


class DiscussionManager:
    """Owns one phase machine per session"""

    def __init__(
        self,
        agents: AgentRegistry,
        streaming: StreamingHandler,
        memory: VectorMemoryStore,
        context_manager: ContextManager,
        settings: Settings,
        state_manager: Optional[StateManager] = None
    ):
        self.agents = agents
        self.streaming = streaming
        self.memory = memory
        self.context_manager = context_manager
        self.settings = settings
        self.state_manager = state_manager
        self.machines: Dict[str, DiscussionPhaseMachine] = {}
        self._lock = asyncio.Lock()

    async def get_or_create(
        self,
        session_id: str,
        session_context: Optional[SessionContext] = None
    ) -> DiscussionPhaseMachine:
        async with self._lock:
            machine = self.machines.get(session_id)
            if machine is None:
                machine = DiscussionPhaseMachine(
                    session_id,
                    self.agents,
                    self.streaming,
                    self.memory,
                    self.context_manager,
                    self.settings,
                    session_context=session_context,
                    state_manager=self.state_manager
                )
                self.machines[session_id] = machine
                logger.info("Created discussion machine", session_id=session_id)
            return machine

    def get(self, session_id: str) -> DiscussionPhaseMachine:
        """Return the session's machine or raise if its discussion never started"""

        machine = self.machines.get(session_id)
        if machine is None:
            raise DiscussionNotStartedError(session_id)
        return machine

    async def close(self, session_id: str) -> bool:
        """Stop and forget a session's machine"""

        async with self._lock:
            machine = self.machines.pop(session_id, None)

        if machine is None:
            return False

        await machine.close()
        logger.info("Closed discussion machine", session_id=session_id)
        return True

    async def shutdown(self):
        for session_id in list(self.machines):
            await self.close(session_id)
