from typing import List
import re

from scriptkill.domain.models.memory_record import MemoryRecord


class ContextRanker:
    """Ranks retrieved memories by relevance to a query"""

    def __init__(self, vector_weight: float = 0.7):
        self.vector_weight = vector_weight

    def calculate_relevance(self, query: str, content: str) -> float:
        """Calculate keyword relevance score between query and content"""

        query_lower = query.lower()
        content_lower = content.lower()

        query_words = set(re.findall(r'\w+', query_lower))
        content_words = set(re.findall(r'\w+', content_lower))

        if not query_words:
            return 0.0

        overlap = len(query_words.intersection(content_words))
        score = overlap / len(query_words)

        # Boost score if query appears as substring
        if query_lower and query_lower in content_lower:
            score += 0.3

        return min(score, 1.0)

    def rank_memories(self, query: str, memories: List[MemoryRecord], limit: int = 10) -> List[MemoryRecord]:
        """Blend vector similarity with keyword overlap, best first, de-duplicated by content"""

        seen = set()
        scored = []
        for memory in memories:
            if memory.content in seen:
                continue
            seen.add(memory.content)

            keyword = self.calculate_relevance(query, memory.content)
            blended = self.vector_weight * memory.score + (1 - self.vector_weight) * keyword
            scored.append((blended, memory))

        scored.sort(key=lambda item: item[0], reverse=True)
        return [memory for _, memory in scored[:limit]]
