from scriptkill.domain.orchestration.subagent.base_subagent import BaseSubAgent
from scriptkill.domain.orchestration.subagent import prompts


class JudgeAgent(BaseSubAgent):
    """Referee: checks messages against the rules and summarises the discussion"""

    role = "judge"
    fallback_message = "The referee has no comment."

    def __init__(self, judge_id: str, chat_model, **kwargs):
        super().__init__(
            name=judge_id,
            description="Checks messages and summarises the discussion",
            chat_model=chat_model,
            system_prompt=prompts.JUDGE_SYSTEM,
            **kwargs
        )

    async def monitor_discussion(self, content: str) -> bool:
        """True when the message is acceptable; an unreachable judge lets it through"""
        return await self.ask_verdict(prompts.JUDGE_MONITOR.format(content=content), "monitor_discussion")

    async def summarize_discussion(self, content: str) -> str:
        return await self.ask(prompts.JUDGE_SUMMARIZE.format(content=content), "summarize_discussion")
