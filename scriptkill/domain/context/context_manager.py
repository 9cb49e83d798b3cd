from typing import List, Optional
import asyncio
import structlog

from scriptkill.domain.context.context_ranker import ContextRanker
from scriptkill.domain.context.memory.vector_memory_store import VectorMemoryStore
from scriptkill.domain.models.memory_record import MemoryRecord

logger = structlog.get_logger(__name__)


class ContextManager:
    """Assembles what a participant knows into a prompt block"""

    def __init__(self, memory: VectorMemoryStore, ranker: Optional[ContextRanker] = None):
        self.memory = memory
        self.context_ranker = ranker or ContextRanker()

    async def gather_memories(
        self,
        session_id: str,
        participant_id: str,
        query: str,
        script_id: Optional[str] = None,
        role_id: Optional[str] = None,
        top_k: int = 5
    ) -> List[MemoryRecord]:
        """Retrieve conversation, clue and timeline memories relevant to the query"""

        searches = [self.memory.search_conversation_memory(session_id, participant_id, query, top_k)]
        if script_id:
            searches.append(self.memory.search_global_clue_memory(script_id, query, role_id, top_k))
            searches.append(self.memory.search_global_timeline_memory(script_id, query, role_id, top_k))

        results = await asyncio.gather(*searches)
        memories = [record for batch in results for record in batch]

        return self.context_ranker.rank_memories(query, memories, limit=top_k * len(searches))

    async def build_participant_context(
        self,
        session_id: str,
        participant_id: str,
        query: str,
        script_id: Optional[str] = None,
        role_id: Optional[str] = None,
        top_k: int = 5
    ) -> str:
        """Render the participant's relevant memories as text"""

        logger.info("Building participant context", session_id=session_id, participant_id=participant_id)

        memories = await self.gather_memories(session_id, participant_id, query, script_id, role_id, top_k)
        if not memories:
            return "No relevant memories."

        lines = []
        for memory in memories:
            if memory.kind is not None:
                label = memory.kind.value
                if memory.timeline_point:
                    label = f"{label} @ {memory.timeline_point}"
            else:
                label = memory.participant_label or "memory"
            lines.append(f"- [{label}] {memory.content}")

        return "\n".join(lines)
