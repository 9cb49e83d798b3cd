from typing import Dict, List, Any, Optional, Sequence
import asyncio
import uuid
from datetime import datetime

import numpy as np
import structlog

from scriptkill.domain.context.memory.collection_manager import CollectionManager
from scriptkill.domain.context.memory.embedding_provider import EmbeddingProvider
from scriptkill.domain.models.memory_record import (
    ALL_ROLES, GlobalMemoryKind, MemoryRecord, MemoryScope
)
from scriptkill.infrastructure.observability.logging import agent_logger

logger = structlog.get_logger(__name__)


def distance_to_score(distance: float) -> float:
    """Similarity for an L2 distance reported by the store"""
    return max(0.0, 1.0 - float(distance))


def build_where(scope: MemoryScope) -> Optional[Dict[str, Any]]:
    """Equality predicates restricting a search to the scope"""

    clauses: List[Dict[str, Any]] = []

    if scope.is_conversation:
        if scope.participant_id:
            clauses.append({"participant_id": scope.participant_id})
    else:
        if scope.script_id:
            clauses.append({"script_id": scope.script_id})
        if scope.kind:
            clauses.append({"kind": scope.kind.value})
        if scope.role_id:
            clauses.append({"role_id": {"$in": [scope.role_id, ALL_ROLES]}})

    if not clauses:
        return None
    if len(clauses) == 1:
        return clauses[0]
    return {"$and": clauses}


class VectorMemoryStore:
    """Semantic memory over per-session conversation collections and the global script collection"""

    def __init__(self, collections: CollectionManager, embedder: EmbeddingProvider):
        self.collections = collections
        self.embedder = embedder

    # Generic scope operations

    async def insert(self, scope: MemoryScope, content: str, record_id: Optional[str] = None) -> Optional[str]:
        """Embed and store one record; returns its id or None when nothing was stored"""

        vector = await self.embedder.embed(content)
        if vector is None:
            logger.info("Skipping memory insert without embedding", collection=scope.collection.value)
            return None

        try:
            collection = await self._collection_for(scope, create=True)
            record_id = record_id or uuid.uuid4().hex
            await asyncio.to_thread(
                collection.upsert,
                ids=[record_id],
                embeddings=[vector],
                documents=[content],
                metadatas=[self._metadata_for(scope)],
            )
        except Exception as e:
            logger.error("Memory insert failed", error=str(e), collection=scope.collection.value)
            return None

        agent_logger.log_memory_update(collection.name, "insert", 1)
        return record_id

    async def batch_insert(
        self,
        scope: MemoryScope,
        contents: Sequence[Optional[str]],
        record_ids: Optional[Sequence[str]] = None
    ) -> List[str]:
        """Store every content that embeds; the rest are skipped"""

        ids: List[str] = []
        vectors: List[List[float]] = []
        documents: List[str] = []

        for index, content in enumerate(contents):
            vector = await self.embedder.embed(content)
            if vector is None:
                logger.info("Skipping record without embedding", index=index)
                continue
            ids.append(record_ids[index] if record_ids else uuid.uuid4().hex)
            vectors.append(vector)
            documents.append(content)

        if not ids:
            return []

        try:
            collection = await self._collection_for(scope, create=True)
            metadata = self._metadata_for(scope)
            await asyncio.to_thread(
                collection.upsert,
                ids=ids,
                embeddings=vectors,
                documents=documents,
                metadatas=[dict(metadata) for _ in ids],
            )
        except Exception as e:
            logger.error("Memory batch insert failed", error=str(e), count=len(ids))
            return []

        agent_logger.log_memory_update(
            collection.name, "batch_insert", len(ids),
            {"skipped": len(contents) - len(ids)}
        )
        return ids

    async def search(self, scope: MemoryScope, query_text: str, top_k: int = 5) -> List[MemoryRecord]:
        """Nearest records to the query inside the scope, best first"""

        if top_k <= 0:
            return []

        vector = await self.embedder.embed(query_text)
        if vector is None:
            return []

        try:
            collection = await self._collection_for(scope, create=False)
            if collection is None:
                return []

            results = await asyncio.to_thread(
                collection.query,
                query_embeddings=[vector],
                n_results=top_k,
                where=build_where(scope),
                include=["metadatas", "documents", "distances"],
            )
        except Exception as e:
            logger.error("Memory search failed", error=str(e), collection=scope.collection.value)
            return []

        return self._to_records(results)

    async def update(self, scope: MemoryScope, record_id: str, content: str) -> bool:
        """Re-embed and replace a record's content; an unknown id still counts as success"""

        vector = await self.embedder.embed(content)
        if vector is None:
            return False

        try:
            collection = await self._collection_for(scope, create=False)
            if collection is None:
                return True

            await asyncio.to_thread(
                collection.update,
                ids=[record_id],
                embeddings=[vector],
                documents=[content],
            )
        except Exception as e:
            logger.error("Memory update failed", error=str(e), record_id=record_id)
            return False

        agent_logger.log_memory_update(collection.name, "update", 1, {"record_id": record_id})
        return True

    async def delete(self, scope: MemoryScope, record_id: str) -> bool:
        return await self.batch_delete(scope, [record_id]) == 1

    async def batch_delete(self, scope: MemoryScope, record_ids: Sequence[str]) -> int:
        """Delete records by id and return how many existed"""

        if not record_ids:
            return 0

        try:
            collection = await self._collection_for(scope, create=False)
            if collection is None:
                return 0

            existing = await asyncio.to_thread(collection.get, ids=list(record_ids), include=[])
            found = list(existing.get("ids") or [])
            if found:
                await asyncio.to_thread(collection.delete, ids=found)
        except Exception as e:
            logger.error("Memory delete failed", error=str(e), count=len(record_ids))
            return 0

        agent_logger.log_memory_update(collection.name, "delete", len(found))
        return len(found)

    async def clue_relation_strength(self, clue_id_a: str, clue_id_b: str) -> int:
        """Relatedness of two stored clues on a 0..100 scale"""

        try:
            results = await asyncio.to_thread(
                self.collections.global_collection.get,
                ids=[clue_id_a, clue_id_b],
                include=["embeddings"],
            )
        except Exception as e:
            logger.error("Clue lookup failed", error=str(e))
            return 0

        ids = list(results.get("ids") or [])
        embeddings = results.get("embeddings")
        if embeddings is None:
            embeddings = []
        by_id = {ids[i]: embeddings[i] for i in range(min(len(ids), len(embeddings)))}

        first = by_id.get(clue_id_a)
        second = by_id.get(clue_id_b)
        if first is None or second is None or len(first) == 0 or len(second) == 0:
            return 0

        a = np.asarray(first, dtype=float)
        b = np.asarray(second, dtype=float)
        norm = np.linalg.norm(a) * np.linalg.norm(b)
        if norm == 0:
            return 0

        similarity = float(np.dot(a, b) / norm)
        strength = round((similarity + 1) / 2 * 100)
        return int(min(100, max(0, strength)))

    async def filter_by_discovered_clues(
        self,
        session_id: str,
        participant_id: str,
        discovered_clue_ids: Sequence[str],
        query_text: str,
        top_k: int = 5
    ) -> List[MemoryRecord]:
        """Participant's conversation memory ranked against the query.

        ``discovered_clue_ids`` does not narrow the results yet.
        """

        records = await self.search(
            MemoryScope.conversation(session_id, participant_id), query_text, top_k
        )
        records.sort(key=lambda r: r.score, reverse=True)
        return records[:top_k]

    # Conversation memory

    async def insert_conversation_memory(
        self, session_id: str, participant_id: str, participant_label: str, content: str
    ) -> Optional[str]:
        return await self.insert(
            MemoryScope.conversation(session_id, participant_id, participant_label), content
        )

    async def batch_insert_conversation_memory(
        self, session_id: str, participant_id: str, participant_label: str, contents: Sequence[str]
    ) -> List[str]:
        return await self.batch_insert(
            MemoryScope.conversation(session_id, participant_id, participant_label), contents
        )

    async def search_conversation_memory(
        self, session_id: str, participant_id: Optional[str], query_text: str, top_k: int = 5
    ) -> List[MemoryRecord]:
        return await self.search(MemoryScope.conversation(session_id, participant_id), query_text, top_k)

    async def update_conversation_memory(self, session_id: str, record_id: str, content: str) -> bool:
        return await self.update(MemoryScope.conversation(session_id), record_id, content)

    async def delete_conversation_memory(self, session_id: str, record_id: str) -> bool:
        return await self.delete(MemoryScope.conversation(session_id), record_id)

    async def batch_delete_conversation_memory(self, session_id: str, record_ids: Sequence[str]) -> int:
        return await self.batch_delete(MemoryScope.conversation(session_id), record_ids)

    async def drop_session_memory(self, session_id: str) -> bool:
        """Remove a session's conversation collection"""

        try:
            dropped = await self.collections.drop_conversation_collection(session_id)
        except Exception as e:
            logger.error("Dropping session memory failed", error=str(e), session_id=session_id)
            return False

        if dropped:
            agent_logger.log_memory_update(
                self.collections.conversation_collection_name(session_id), "drop", 0
            )
        return dropped

    # Global memory

    async def insert_global_clue_memory(
        self,
        script_id: str,
        content: str,
        role_id: Optional[str] = None,
        clue_id: Optional[str] = None
    ) -> Optional[str]:
        """Store a clue; keyed by ``clue_id`` when given so replays overwrite it"""

        return await self.insert(
            MemoryScope.global_memory(script_id, role_id, GlobalMemoryKind.CLUE),
            content,
            record_id=clue_id,
        )

    async def insert_global_timeline_memory(
        self,
        script_id: str,
        content: str,
        timeline_point: str,
        role_id: Optional[str] = None
    ) -> Optional[str]:
        return await self.insert(
            MemoryScope.global_memory(script_id, role_id, GlobalMemoryKind.TIMELINE, timeline_point),
            content,
        )

    async def batch_insert_global_memory(
        self,
        script_id: str,
        kind: GlobalMemoryKind,
        contents: Sequence[str],
        role_id: Optional[str] = None,
        record_ids: Optional[Sequence[str]] = None
    ) -> List[str]:
        return await self.batch_insert(
            MemoryScope.global_memory(script_id, role_id, kind), contents, record_ids
        )

    async def search_global_clue_memory(
        self, script_id: str, query_text: str, role_id: Optional[str] = None, top_k: int = 5
    ) -> List[MemoryRecord]:
        return await self.search(
            MemoryScope.global_memory(script_id, role_id, GlobalMemoryKind.CLUE), query_text, top_k
        )

    async def search_global_timeline_memory(
        self, script_id: str, query_text: str, role_id: Optional[str] = None, top_k: int = 5
    ) -> List[MemoryRecord]:
        return await self.search(
            MemoryScope.global_memory(script_id, role_id, GlobalMemoryKind.TIMELINE), query_text, top_k
        )

    async def update_global_memory(self, record_id: str, content: str) -> bool:
        return await self.update(MemoryScope.global_memory(), record_id, content)

    async def delete_global_memory(self, record_id: str) -> bool:
        return await self.delete(MemoryScope.global_memory(), record_id)

    async def batch_delete_global_memory(self, record_ids: Sequence[str]) -> int:
        return await self.batch_delete(MemoryScope.global_memory(), record_ids)

    # Helpers

    async def _collection_for(self, scope: MemoryScope, create: bool):
        if scope.is_conversation:
            if not scope.session_id:
                raise ValueError("Conversation scope needs a session id")
            return await self.collections.get_conversation_collection(scope.session_id, create=create)
        return self.collections.global_collection

    def _metadata_for(self, scope: MemoryScope) -> Dict[str, Any]:
        # The store cannot hold null payload values, so unset fields are left out
        if scope.is_conversation:
            metadata = {
                "session_id": scope.session_id,
                "participant_id": scope.participant_id or "",
                "participant_label": scope.participant_label or "",
                "inserted_at": datetime.utcnow().isoformat(),
            }
        else:
            metadata = {
                "script_id": scope.script_id or "",
                "role_id": scope.role_id or ALL_ROLES,
                "kind": (scope.kind or GlobalMemoryKind.CLUE).value,
            }
            if scope.timeline_point:
                metadata["timeline_point"] = scope.timeline_point
        return metadata

    def _to_records(self, results: Dict[str, Any]) -> List[MemoryRecord]:
        ids = (results.get("ids") or [[]])[0]
        documents = (results.get("documents") or [[]])[0]
        metadatas = (results.get("metadatas") or [[]])[0]
        distances = (results.get("distances") or [[]])[0]

        records = []
        for index, record_id in enumerate(ids):
            metadata = metadatas[index] if index < len(metadatas) and metadatas[index] else {}
            distance = distances[index] if index < len(distances) else 1.0
            role_id = metadata.get("role_id")
            inserted_at = metadata.get("inserted_at")
            kind = metadata.get("kind")

            records.append(MemoryRecord(
                id=record_id,
                content=documents[index] if index < len(documents) else "",
                score=distance_to_score(distance),
                session_id=metadata.get("session_id"),
                participant_id=metadata.get("participant_id") or None,
                participant_label=metadata.get("participant_label") or None,
                inserted_at=datetime.fromisoformat(inserted_at) if inserted_at else None,
                script_id=metadata.get("script_id") or None,
                role_id=None if role_id in (None, ALL_ROLES) else role_id,
                kind=GlobalMemoryKind(kind) if kind else None,
                timeline_point=metadata.get("timeline_point"),
            ))

        records.sort(key=lambda r: r.score, reverse=True)
        return records
