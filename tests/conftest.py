import json
import re
import uuid
import zlib
from collections import defaultdict
from typing import Any, Dict, List

import chromadb
import numpy as np
import pytest
from chromadb.config import Settings as ChromaSettings
from langchain_core.embeddings import Embeddings
from langchain_core.language_models import BaseChatModel
from langchain_core.messages import AIMessage
from langchain_core.outputs import ChatGeneration, ChatResult
from pydantic import Field

from scriptkill.application.websocket.connection_manager import ConnectionManager
from scriptkill.domain.context.context_manager import ContextManager
from scriptkill.domain.context.memory.cache_memory_store import CacheMemoryStore
from scriptkill.domain.context.memory.collection_manager import CollectionManager
from scriptkill.domain.context.memory.embedding_provider import EmbeddingProvider
from scriptkill.domain.context.memory.vector_memory_store import VectorMemoryStore
from scriptkill.domain.context.state.state_manager import StateManager
from scriptkill.domain.orchestration.subagent.agent_registry import AgentRegistry
from scriptkill.domain.repository.record_repository import RecordRepository
from scriptkill.domain.streaming.streaming_handler import StreamingHandler
from scriptkill.infrastructure.config.settings import PhaseDurations, Settings

EMBEDDING_SIZE = 64


class ScriptedChatModel(BaseChatModel):
    """Replies with the scripted answers in order and repeats the last one.

    An exception in the script is raised instead of answered.
    """

    responses: List[Any] = Field(default_factory=lambda: ["ok"])
    prompts: List[str] = Field(default_factory=list)

    @property
    def _llm_type(self) -> str:
        return "scripted"

    def _reply(self, messages) -> ChatResult:
        self.prompts.append(messages[-1].content)
        reply = self.responses[min(len(self.prompts), len(self.responses)) - 1]
        if isinstance(reply, Exception):
            raise reply
        return ChatResult(generations=[ChatGeneration(message=AIMessage(content=reply))])

    def _generate(self, messages, stop=None, run_manager=None, **kwargs) -> ChatResult:
        return self._reply(messages)

    async def _agenerate(self, messages, stop=None, run_manager=None, **kwargs) -> ChatResult:
        return self._reply(messages)


class ChatModelBook:
    """Chat model factory handing out scripted models per agent role"""

    def __init__(self, **responses: List[Any]):
        self.responses: Dict[str, List[Any]] = {"judge": ["VALID"], **responses}
        self.models: Dict[str, List[ScriptedChatModel]] = defaultdict(list)

    def __call__(self, role: str) -> ScriptedChatModel:
        model = ScriptedChatModel(responses=list(self.responses.get(role, ["ok"])))
        self.models[role].append(model)
        return model


class KeywordEmbeddings(Embeddings):
    """Normalised bag of hashed words; texts sharing words land close together"""

    def __init__(self, size: int = EMBEDDING_SIZE):
        self.size = size

    def embed_query(self, text: str) -> List[float]:
        vector = np.zeros(self.size)
        for word in re.findall(r"\w+", text.lower()):
            vector[zlib.crc32(word.encode()) % self.size] += 1.0

        norm = np.linalg.norm(vector)
        if norm == 0:
            vector[0] = 1.0
            return vector.tolist()
        return (vector / norm).tolist()

    def embed_documents(self, texts: List[str]) -> List[List[float]]:
        return [self.embed_query(text) for text in texts]


class FixedEmbeddings(Embeddings):
    """Looks vectors up by exact text"""

    def __init__(self, vectors: Dict[str, List[float]]):
        self.vectors = vectors

    def embed_query(self, text: str) -> List[float]:
        return self.vectors[text]

    def embed_documents(self, texts: List[str]) -> List[List[float]]:
        return [self.embed_query(text) for text in texts]


class RecordingStreamingHandler(StreamingHandler):
    """Streaming handler that keeps every published event"""

    def __init__(self):
        super().__init__(ConnectionManager())
        self.published = []

    async def publish(self, participant_ids, event):
        recipients = list(participant_ids)
        self.published.append((recipients, event))
        return await super().publish(recipients, event)

    def events_of(self, event_type):
        return [event for _, event in self.published if event.type == event_type]

    def recipients_of(self, event_type):
        return [recipients for recipients, event in self.published if event.type == event_type]


SCRIPT_PAYLOAD = {
    "scriptName": "Death at Thornfield Manor",
    "scriptIntro": "The host is found dead in the library after the storm.",
    "scriptTimeline": "20:00 dinner; 21:30 power cut; 22:00 body found",
    "characters": [
        {
            "name": "Butler",
            "age": 58,
            "identity": "Head of staff",
            "personality": "Reserved",
            "background": "Served the family for thirty years",
            "secrets": "Was paid to leave the cellar unlocked",
            "timeline": "21:30 went down to the cellar with a lantern",
        },
        {
            "name": "Heiress",
            "age": 24,
            "identity": "The host's niece",
            "background": "Stands to inherit the manor",
            "secrets": "Argued with the host before dinner",
            "timeline": "21:00 walked in the garden",
        },
        {
            "name": "Doctor",
            "identity": "Family physician",
            "secrets": "Prescribed the sleeping draught",
            "timeline": "21:45 checked the host's pulse in the library",
        },
        {
            "name": "Gardener",
            "identity": "Groundskeeper",
            "timeline": "21:15 locked the greenhouse",
        },
    ],
    "clues": [
        {"name": "Broken lantern", "content": "A lantern with a cracked glass", "type": "physical",
         "visibility": "PUBLIC", "scene": "Cellar", "importance": "4"},
        {"name": "Torn letter", "content": "A letter promising the manor to the niece", "type": "DOCUMENT",
         "scene": "Library", "importance": 5},
        {"name": "Muddy boots", "content": "Boots caked in garden mud", "type": "unknown",
         "scene": "Greenhouse"},
    ],
    "scenes": [
        {"name": "Library", "time": "22:00", "location": "East wing", "description": "Books and a cold fire",
         "clues": ["Torn letter"]},
        {"name": "Cellar", "time": "21:30", "location": "Below the kitchen", "clues": "Broken lantern"},
    ],
}


def script_json(**overrides) -> str:
    return json.dumps({**SCRIPT_PAYLOAD, **overrides})


@pytest.fixture
def chroma_client():
    return chromadb.EphemeralClient(settings=ChromaSettings(anonymized_telemetry=False))


def build_memory(client, embeddings: Embeddings, size: int = EMBEDDING_SIZE) -> VectorMemoryStore:
    # The ephemeral client is shared by the whole process, so every store gets its own names
    tag = uuid.uuid4().hex[:10]
    collections = CollectionManager(
        client=client,
        conversation_prefix=f"conv_{tag}_",
        global_collection_name=f"global_{tag}",
    )
    return VectorMemoryStore(collections, EmbeddingProvider(embeddings, size))


@pytest.fixture
def memory(chroma_client) -> VectorMemoryStore:
    return build_memory(chroma_client, KeywordEmbeddings())


@pytest.fixture
def settings() -> Settings:
    # Long phases: tests move the machine with advance_phase
    return Settings(
        phase_durations=PhaseDurations(
            statement=600, free_discussion=600, private_chat=600, answer=600, private_chat_pair=600
        ),
        private_chat_quota=2,
        max_discussion_rounds=2,
    )


@pytest.fixture
def chat_models() -> ChatModelBook:
    return ChatModelBook(script_writer=[script_json()])


@pytest.fixture
def agents(chat_models) -> AgentRegistry:
    return AgentRegistry(chat_models, cache=CacheMemoryStore(default_ttl=3600))


@pytest.fixture
def repository() -> RecordRepository:
    return RecordRepository()


@pytest.fixture
def streaming() -> RecordingStreamingHandler:
    return RecordingStreamingHandler()


@pytest.fixture
def state_manager() -> StateManager:
    return StateManager()


@pytest.fixture
def context_manager(memory) -> ContextManager:
    return ContextManager(memory)
