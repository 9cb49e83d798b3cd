from typing import Callable, Optional

import structlog
from langchain_core.language_models import BaseChatModel

from scriptkill.domain.context.memory.cache_memory_store import CacheMemoryStore
from scriptkill.domain.orchestration.subagent.director_agent import DirectorAgent
from scriptkill.domain.orchestration.subagent.judge_agent import JudgeAgent
from scriptkill.domain.orchestration.subagent.player_agent import PlayerAgent
from scriptkill.domain.orchestration.subagent.script_writer_agent import ScriptWriterAgent
from scriptkill.infrastructure.observability.langfuse_tracing import AgentTracer

logger = structlog.get_logger(__name__)

ChatModelFactory = Callable[[str], BaseChatModel]


def director_id_for(session_id: str) -> str:
    return f"director_{session_id}"


def judge_id_for(session_id: str) -> str:
    return f"judge_{session_id}"


class AgentRegistry:
    """Creates agents and caches them by ``role:identity``"""

    def __init__(
        self,
        chat_model_factory: ChatModelFactory,
        cache: Optional[CacheMemoryStore] = None,
        memory_window: int = 20,
        tracer: Optional[AgentTracer] = None
    ):
        self.chat_model_factory = chat_model_factory
        self.cache = cache or CacheMemoryStore()
        self.memory_window = memory_window
        self.tracer = tracer or AgentTracer()

    async def get_script_writer(self) -> ScriptWriterAgent:
        async def create():
            return ScriptWriterAgent(self.chat_model_factory(ScriptWriterAgent.role), **self._agent_kwargs())
        return await self.cache.get_or_create("script_writer:default", create)

    async def get_director(self, director_id: str) -> DirectorAgent:
        async def create():
            logger.info("Creating director agent", director_id=director_id)
            return DirectorAgent(director_id, self.chat_model_factory(DirectorAgent.role), **self._agent_kwargs())
        return await self.cache.get_or_create(f"director:{director_id}", create)

    async def get_judge(self, judge_id: str) -> JudgeAgent:
        async def create():
            logger.info("Creating judge agent", judge_id=judge_id)
            return JudgeAgent(judge_id, self.chat_model_factory(JudgeAgent.role), **self._agent_kwargs())
        return await self.cache.get_or_create(f"judge:{judge_id}", create)

    async def create_player(self, participant_id: str, role_name: str) -> PlayerAgent:
        """Build and cache a fresh player agent, replacing any previous one"""

        agent = PlayerAgent(
            participant_id, role_name, self.chat_model_factory(PlayerAgent.role), **self._agent_kwargs()
        )
        await self.cache.set(f"player:{participant_id}", agent)
        logger.info("Created player agent", participant_id=participant_id, role_name=role_name)
        return agent

    async def get_player(self, participant_id: str) -> Optional[PlayerAgent]:
        return await self.cache.get(f"player:{participant_id}")

    async def release(self, *keys: str) -> int:
        """Forget agents by ``role:identity`` key"""

        released = 0
        for key in keys:
            if await self.cache.delete(key):
                released += 1
        return released

    def _agent_kwargs(self):
        return {"memory_window": self.memory_window, "tracer": self.tracer}
