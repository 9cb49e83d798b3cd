"""
Environment-level configuration for the session engine.

Everything that depends on the deployment (API keys, model names, store
location, timer durations) is read here; domain code receives a ``Settings``
instance through its constructor.
"""

import os
from typing import Optional

from pydantic import BaseModel, Field


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    return int(value)


def _env_float(name: str, default: float) -> float:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    return float(value)


class PhaseDurations(BaseModel):
    """Countdown length of each discussion phase, in seconds"""
    statement: float = Field(default=300, gt=0)
    free_discussion: float = Field(default=1800, gt=0)
    private_chat: float = Field(default=1200, gt=0)
    answer: float = Field(default=600, gt=0)
    private_chat_pair: float = Field(default=180, gt=0)


class Settings(BaseModel):
    """Runtime settings"""

    # Logging
    log_level: str = "INFO"
    log_format: str = "json"
    service_name: str = "scriptkill-server"

    # Language models
    openai_api_key: Optional[str] = None
    chat_model: str = "gpt-4o-mini"
    embedding_model: str = "text-embedding-3-small"
    embedding_dimension: int = Field(default=1024, gt=0)

    # Vector store
    chroma_persist_directory: Optional[str] = None
    conversation_collection_prefix: str = "conversation_"
    global_memory_collection: str = "global_memory"

    # Workflow
    script_generation_max_attempts: int = Field(default=3, ge=1)

    # Discussion
    phase_durations: PhaseDurations = Field(default_factory=PhaseDurations)
    private_chat_quota: int = Field(default=2, ge=0)
    max_discussion_rounds: int = Field(default=2, ge=1)
    cancel_private_chats_on_end: bool = False

    # Agents
    agent_cache_ttl_seconds: int = Field(default=7200, gt=0)
    agent_cache_sweep_seconds: float = Field(default=300, gt=0)
    agent_memory_window: int = Field(default=20, gt=0)

    # Tracing
    langfuse_public_key: Optional[str] = None
    langfuse_secret_key: Optional[str] = None
    langfuse_host: Optional[str] = None

    @property
    def tracing_enabled(self) -> bool:
        return bool(self.langfuse_public_key and self.langfuse_secret_key)

    @classmethod
    def from_env(cls) -> "Settings":
        """Build settings from environment variables"""
        return cls(
            log_level=os.getenv("LOG_LEVEL", "INFO"),
            log_format=os.getenv("LOG_FORMAT", "json"),
            service_name=os.getenv("SERVICE_NAME", "scriptkill-server"),
            openai_api_key=os.getenv("OPENAI_API_KEY"),
            chat_model=os.getenv("CHAT_MODEL", "gpt-4o-mini"),
            embedding_model=os.getenv("EMBEDDING_MODEL", "text-embedding-3-small"),
            embedding_dimension=_env_int("EMBEDDING_DIMENSION", 1024),
            chroma_persist_directory=os.getenv("CHROMA_PERSIST_DIRECTORY"),
            conversation_collection_prefix=os.getenv("CONVERSATION_COLLECTION_PREFIX", "conversation_"),
            global_memory_collection=os.getenv("GLOBAL_MEMORY_COLLECTION", "global_memory"),
            script_generation_max_attempts=_env_int("SCRIPT_GENERATION_MAX_ATTEMPTS", 3),
            phase_durations=PhaseDurations(
                statement=_env_float("STATEMENT_PHASE_SECONDS", 300),
                free_discussion=_env_float("FREE_DISCUSSION_PHASE_SECONDS", 1800),
                private_chat=_env_float("PRIVATE_CHAT_PHASE_SECONDS", 1200),
                answer=_env_float("ANSWER_PHASE_SECONDS", 600),
                private_chat_pair=_env_float("PRIVATE_CHAT_PAIR_SECONDS", 180),
            ),
            private_chat_quota=_env_int("PRIVATE_CHAT_QUOTA", 2),
            max_discussion_rounds=_env_int("MAX_DISCUSSION_ROUNDS", 2),
            cancel_private_chats_on_end=_env_bool("CANCEL_PRIVATE_CHATS_ON_END", False),
            agent_cache_ttl_seconds=_env_int("AGENT_CACHE_TTL_SECONDS", 7200),
            agent_cache_sweep_seconds=_env_float("AGENT_CACHE_SWEEP_SECONDS", 300),
            agent_memory_window=_env_int("AGENT_MEMORY_WINDOW", 20),
            langfuse_public_key=os.getenv("LANGFUSE_PUBLIC_KEY"),
            langfuse_secret_key=os.getenv("LANGFUSE_SECRET_KEY"),
            langfuse_host=os.getenv("LANGFUSE_HOST"),
        )
