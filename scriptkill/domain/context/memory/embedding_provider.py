from typing import List, Optional

import structlog
from langchain_core.embeddings import Embeddings

logger = structlog.get_logger(__name__)


class EmbeddingProvider:
    """Turns text into fixed-dimension vectors.

    Returns None instead of raising when the text is empty, the model call
    fails, or the model answers with a vector of the wrong dimension.
    """

    def __init__(self, embeddings: Embeddings, dimension: int):
        self.embeddings = embeddings
        self.dimension = dimension

    async def embed(self, text: Optional[str]) -> Optional[List[float]]:
        if text is None or not text.strip():
            return None

        try:
            vector = await self.embeddings.aembed_query(text)
        except Exception as e:
            logger.warning("Embedding failed", error=str(e), text_length=len(text))
            return None

        if not vector or len(vector) != self.dimension:
            logger.warning(
                "Embedding has unexpected dimension",
                expected=self.dimension,
                actual=len(vector) if vector else 0
            )
            return None

        return [float(v) for v in vector]
