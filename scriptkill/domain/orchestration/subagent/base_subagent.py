from typing import Dict, Any, List, Optional
from datetime import datetime
import time

import structlog
from langchain_core.language_models import BaseChatModel
from langchain_core.messages import AIMessage, BaseMessage, HumanMessage, SystemMessage

from scriptkill.infrastructure.observability.langfuse_tracing import AgentTracer
from scriptkill.infrastructure.observability.logging import agent_logger, metrics

logger = structlog.get_logger(__name__)

DEFAULT_FALLBACK = "I need a moment to think about that."


def parse_verdict(text: Optional[str], default: bool = True) -> bool:
    """Read a VALID / INVALID answer, case-insensitively"""

    if not text:
        return default
    upper = text.upper()
    if "INVALID" in upper:
        return False
    if "VALID" in upper:
        return True
    return default


class BaseSubAgent:
    """Base class for role-typed participant agents.

    Each agent owns one chat model client and a sliding window of its own
    conversation. Calls never raise: failures are logged and answered with
    the agent's fallback text.
    """

    role = "agent"
    fallback_message = DEFAULT_FALLBACK

    def __init__(
        self,
        name: str,
        description: str,
        chat_model: BaseChatModel,
        system_prompt: str,
        memory_window: int = 20,
        tracer: Optional[AgentTracer] = None
    ):
        self.name = name
        self.description = description
        self.chat_model = chat_model
        self.system_prompt = system_prompt
        self.memory_window = memory_window
        self.tracer = tracer or AgentTracer()
        self.history: List[BaseMessage] = []
        self.last_failure: Optional[str] = None
        self.created_at = datetime.utcnow()
        self.last_active = datetime.utcnow()

    async def ask(self, prompt: str, operation: str) -> str:
        """Send one prompt with the recent conversation and return the reply text"""

        self.update_activity()
        messages = [SystemMessage(content=self.system_prompt), *self.history, HumanMessage(content=prompt)]
        started = time.perf_counter()

        try:
            reply = await self.tracer.trace_agent_call(
                f"{self.role}.{operation}",
                lambda: self._invoke(messages),
                {"agent": self.name},
            )
        except Exception as e:
            self.last_failure = str(e)
            logger.error("Agent call failed", agent=self.name, role=self.role, operation=operation, error=str(e))
            metrics.increment_counter("agent.failures", tags={"role": self.role, "operation": operation})
            return self.fallback_message

        self.last_failure = None
        self._remember(HumanMessage(content=prompt), AIMessage(content=reply))

        duration_ms = (time.perf_counter() - started) * 1000
        metrics.record_latency(f"agent.{self.role}.{operation}", duration_ms)
        agent_logger.log_agent_event(
            operation, self.name, self.role,
            {"prompt_length": len(prompt), "reply_length": len(reply), "duration_ms": round(duration_ms, 1)}
        )
        return reply

    async def ask_verdict(self, prompt: str, operation: str, default: bool = True) -> bool:
        reply = await self.ask(prompt, operation)
        if self.last_failure is not None:
            return default
        return parse_verdict(reply, default)

    async def _invoke(self, messages: List[BaseMessage]) -> str:
        response = await self.chat_model.ainvoke(messages)
        content = response.content
        if not isinstance(content, str):
            content = "".join(
                part.get("text", "") if isinstance(part, dict) else str(part) for part in content
            )
        return content.strip()

    def _remember(self, *messages: BaseMessage):
        self.history.extend(messages)
        if len(self.history) > self.memory_window:
            self.history = self.history[-self.memory_window:]

    def update_activity(self):
        """Update last activity timestamp"""
        self.last_active = datetime.utcnow()

    def get_info(self) -> Dict[str, Any]:
        """Get agent information"""
        return {
            "name": self.name,
            "role": self.role,
            "description": self.description,
            "history_length": len(self.history),
            "created_at": self.created_at.isoformat(),
            "last_active": self.last_active.isoformat()
        }
