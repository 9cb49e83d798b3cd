"""
Factories for the hosted language model and embedding model.

Domain code only depends on the ``langchain_core`` interfaces; these helpers
build the OpenAI-backed implementations used by the server.
"""

from typing import Callable

from langchain_core.embeddings import Embeddings
from langchain_core.language_models import BaseChatModel
from langchain_openai import ChatOpenAI, OpenAIEmbeddings

from scriptkill.infrastructure.config.settings import Settings

# Sampling temperature per agent role
ROLE_TEMPERATURES = {
    "script_writer": 0.9,
    "director": 0.7,
    "player": 0.8,
    "judge": 0.0,
}


def build_chat_model_factory(settings: Settings) -> Callable[[str], BaseChatModel]:
    """Return a factory producing one chat model client per agent"""

    def factory(role: str) -> BaseChatModel:
        return ChatOpenAI(
            model=settings.chat_model,
            api_key=settings.openai_api_key,
            temperature=ROLE_TEMPERATURES.get(role, 0.7),
        )

    return factory


def build_embeddings(settings: Settings) -> Embeddings:
    return OpenAIEmbeddings(
        model=settings.embedding_model,
        api_key=settings.openai_api_key,
        dimensions=settings.embedding_dimension,
    )
