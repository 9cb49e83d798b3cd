from typing import Any, Dict, Optional
import asyncio
import os
import re

import structlog

# Keep the client quiet before chromadb is imported
os.environ.setdefault("ANONYMIZED_TELEMETRY", "false")

import chromadb
from chromadb.config import Settings as ChromaSettings

logger = structlog.get_logger(__name__)

# Memory collections compare vectors by (squared) Euclidean distance
COLLECTION_METADATA = {"hnsw:space": "l2"}

_INVALID_NAME_CHARS = re.compile(r"[^a-zA-Z0-9_-]")
_MAX_NAME_LENGTH = 63


class CollectionManager:
    """Owns the chroma client and the lifecycle of memory collections.

    The global collection is provisioned when the manager is built; one
    conversation collection per session is created on first write.
    """

    def __init__(
        self,
        client: Optional[Any] = None,
        persist_directory: Optional[str] = None,
        conversation_prefix: str = "conversation_",
        global_collection_name: str = "global_memory"
    ):
        if client is None:
            chroma_settings = ChromaSettings(anonymized_telemetry=False)
            if persist_directory:
                client = chromadb.PersistentClient(path=persist_directory, settings=chroma_settings)
            else:
                client = chromadb.EphemeralClient(settings=chroma_settings)

        self.client = client
        self.conversation_prefix = conversation_prefix
        self.global_collection_name = global_collection_name
        self._conversations: Dict[str, Any] = {}
        self._lock = asyncio.Lock()

        self.global_collection = self.client.get_or_create_collection(
            name=global_collection_name,
            metadata=COLLECTION_METADATA,
            embedding_function=None,
        )
        logger.info("Global memory collection ready", collection=global_collection_name)

    def conversation_collection_name(self, session_id: str) -> str:
        """Deterministic collection name for a session"""

        name = _INVALID_NAME_CHARS.sub("_", f"{self.conversation_prefix}{session_id}")
        name = name[:_MAX_NAME_LENGTH].strip("_-")
        # Store names need at least three characters
        return name.ljust(3, "0")

    async def get_conversation_collection(self, session_id: str, create: bool = False) -> Optional[Any]:
        """Return the session's collection, creating it only when ``create`` is set"""

        name = self.conversation_collection_name(session_id)

        async with self._lock:
            cached = self._conversations.get(name)
            if cached is not None:
                return cached

            if create:
                collection = await asyncio.to_thread(
                    self.client.get_or_create_collection,
                    name=name,
                    metadata=COLLECTION_METADATA,
                    embedding_function=None,
                )
                logger.info("Created conversation collection", collection=name)
            else:
                if name not in await self._existing_names():
                    return None
                collection = await asyncio.to_thread(
                    self.client.get_collection,
                    name=name,
                    embedding_function=None,
                )

            self._conversations[name] = collection
            return collection

    async def drop_conversation_collection(self, session_id: str) -> bool:
        name = self.conversation_collection_name(session_id)

        async with self._lock:
            self._conversations.pop(name, None)
            if name not in await self._existing_names():
                return False
            await asyncio.to_thread(self.client.delete_collection, name=name)
            logger.info("Dropped conversation collection", collection=name)
            return True

    async def _existing_names(self) -> set:
        collections = await asyncio.to_thread(self.client.list_collections)
        # Depending on the client version entries are names or collection objects
        return {c if isinstance(c, str) else c.name for c in collections}
