# Langfuse integration for agent invocations
from typing import Any, Awaitable, Callable, Dict, Optional
import os

import structlog

from scriptkill.infrastructure.config.settings import Settings

logger = structlog.get_logger(__name__)


class AgentTracer:
    """Wraps agent calls in Langfuse observations when credentials are configured"""

    def __init__(self, settings: Optional[Settings] = None):
        self.settings = settings or Settings()
        self.enabled = self.settings.tracing_enabled
        self._observe = None

        if self.enabled:
            # The decorator reads its credentials from the environment
            os.environ.setdefault("LANGFUSE_PUBLIC_KEY", self.settings.langfuse_public_key)
            os.environ.setdefault("LANGFUSE_SECRET_KEY", self.settings.langfuse_secret_key)
            if self.settings.langfuse_host:
                os.environ.setdefault("LANGFUSE_HOST", self.settings.langfuse_host)

            from langfuse.decorators import observe
            self._observe = observe
            logger.info("Langfuse tracing enabled", host=self.settings.langfuse_host)

    async def trace_agent_call(
        self,
        name: str,
        call: Callable[[], Awaitable[str]],
        metadata: Optional[Dict[str, Any]] = None
    ) -> str:
        """Run ``call`` as a named observation"""

        if not self.enabled:
            return await call()

        @self._observe(name=name)
        async def _observed(trace_metadata: Dict[str, Any]) -> str:
            return await call()

        return await _observed(metadata or {})
