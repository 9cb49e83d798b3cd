from scriptkill.domain.orchestration.subagent.base_subagent import BaseSubAgent
from scriptkill.domain.orchestration.subagent import prompts


class PlayerAgent(BaseSubAgent):
    """Plays one character on behalf of an AI participant"""

    role = "player"
    fallback_message = "I have nothing to add right now."

    def __init__(self, participant_id: str, role_name: str, chat_model, **kwargs):
        super().__init__(
            name=participant_id,
            description=f"Plays {role_name}",
            chat_model=chat_model,
            system_prompt=prompts.PLAYER_SYSTEM.format(role_name=role_name),
            **kwargs
        )
        self.participant_id = participant_id
        self.role_name = role_name

    async def read_script(self, character_sheet: str) -> str:
        return await self.ask(prompts.PLAYER_READ_SCRIPT.format(character_sheet=character_sheet), "read_script")

    async def start_investigation(self, investigation_info: str) -> str:
        return await self.ask(
            prompts.PLAYER_START_INVESTIGATION.format(investigation_info=investigation_info),
            "start_investigation"
        )

    async def make_statement(self, memories: str) -> str:
        return await self.ask(prompts.PLAYER_STATEMENT.format(memories=memories), "make_statement")

    async def discuss(self, topic: str) -> str:
        return await self.ask(prompts.PLAYER_DISCUSS.format(topic=topic), "discuss")

    async def speak(self, message: str) -> str:
        return await self.ask(message, "speak")

    async def private_chat(self, target_id: str, message: str) -> str:
        return await self.ask(
            prompts.PLAYER_PRIVATE_CHAT.format(target_id=target_id, message=message), "private_chat"
        )
