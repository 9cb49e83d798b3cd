from typing import Optional

from scriptkill.domain.orchestration.subagent.base_subagent import BaseSubAgent
from scriptkill.domain.orchestration.subagent import prompts


class ScriptWriterAgent(BaseSubAgent):
    """Generates scenarios from a premise"""

    role = "script_writer"
    fallback_message = "The scenario could not be written right now."

    def __init__(self, chat_model, **kwargs):
        super().__init__(
            name="script_writer",
            description="Writes structured scenarios",
            chat_model=chat_model,
            system_prompt=prompts.SCRIPT_WRITER_SYSTEM,
            **kwargs
        )

    async def generate_script(self, premise: str, previous_error: Optional[str] = None) -> str:
        if previous_error:
            prompt = prompts.SCRIPT_WRITER_RETRY.format(error=previous_error, premise=premise)
        else:
            prompt = prompts.SCRIPT_WRITER_REQUEST.format(premise=premise)
        # Each scenario is written from scratch
        self.history = []
        return await self.ask(prompt, "generate_script")
