from typing import Dict, List

from scriptkill.domain.orchestration.subagent.base_subagent import BaseSubAgent
from scriptkill.domain.orchestration.subagent import prompts


class DirectorAgent(BaseSubAgent):
    """Game master: opens, moderates and scores the discussion"""

    role = "director"
    fallback_message = "The game master will continue shortly."

    def __init__(self, director_id: str, chat_model, **kwargs):
        super().__init__(
            name=director_id,
            description="Moderates the discussion",
            chat_model=chat_model,
            system_prompt=prompts.DIRECTOR_SYSTEM,
            **kwargs
        )

    async def start_discussion(self, participants: List[str], round_number: int) -> str:
        prompt = prompts.DIRECTOR_START_DISCUSSION.format(
            round=round_number, participants=", ".join(participants)
        )
        return await self.ask(prompt, "start_discussion")

    async def moderate_discussion(
        self, phase: str, round_number: int, participants: List[str], answer_count: int
    ) -> str:
        prompt = prompts.DIRECTOR_MODERATE.format(
            phase=phase,
            round=round_number,
            participants=", ".join(participants),
            answer_count=answer_count,
        )
        return await self.ask(prompt, "moderate_discussion")

    async def score_answers(self, answers: Dict[str, str]) -> str:
        rendered = "\n".join(f"- {pid}: {answer}" for pid, answer in answers.items()) or "(no answers)"
        return await self.ask(prompts.DIRECTOR_SCORE_ANSWERS.format(answers=rendered), "score_answers")
