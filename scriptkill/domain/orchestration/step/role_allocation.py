from typing import Any, Dict, List

import structlog

from scriptkill.domain.models.script_records import Player
from scriptkill.domain.models.session_state import (
    ParticipantKind, RoleAssignment, SessionContext, WorkflowStep
)
from scriptkill.domain.orchestration.step.base_step import BaseStep, StepFailure
from scriptkill.domain.orchestration.subagent.agent_registry import (
    AgentRegistry, director_id_for, judge_id_for
)
from scriptkill.domain.repository.record_repository import RecordRepository

logger = structlog.get_logger(__name__)


def plan_role_counts(total_roles: int, requested_humans: int):
    """Return (human_count, humans_bound, ai_count) for a role allocation"""

    human_count = requested_humans if requested_humans and requested_humans > 0 else 1
    humans_bound = min(human_count, total_roles)
    ai_count = max(0, total_roles - human_count)
    return human_count, humans_bound, ai_count


class RoleAllocationStep(BaseStep):
    """Binds humans, then AI players, to the script's roles in declaration order"""

    step = WorkflowStep.ROLE_ALLOCATION

    def __init__(self, agents: AgentRegistry, repository: RecordRepository):
        self.agents = agents
        self.repository = repository

    async def process(self, context: SessionContext, state: Dict[str, Any]) -> Dict[str, Any]:
        if not context.script_id:
            raise StepFailure("No script to allocate roles for")

        characters = await self.repository.list_characters(context.script_id)
        total_roles = len(characters)
        if total_roles == 0:
            raise StepFailure("Script has no roles to allocate")

        human_count, humans_bound, ai_count = plan_role_counts(total_roles, context.human_count)

        assignments: List[RoleAssignment] = []
        human_ids: List[str] = []

        for index, character in enumerate(characters[:humans_bound]):
            if index < len(context.human_participant_ids):
                participant_id = context.human_participant_ids[index]
            else:
                participant_id = f"{context.session_id}_human_{index + 1}"

            if await self.repository.get_player(participant_id) is None:
                await self.repository.save_player(Player(
                    id=participant_id, nickname=f"Player {index + 1}", kind=ParticipantKind.HUMAN
                ))

            human_ids.append(participant_id)
            assignments.append(RoleAssignment(
                participant_id=participant_id,
                participant_kind=ParticipantKind.HUMAN,
                role_id=character.id,
                role_name=character.name,
            ))

        unassigned: List[str] = []
        for index, character in enumerate(characters[humans_bound:], start=1):
            participant_id = f"{context.session_id}_ai_{index}"
            try:
                await self.agents.create_player(participant_id, character.name)
                await self.repository.save_player(Player(
                    id=participant_id, nickname=f"AI_{index}", kind=ParticipantKind.AI
                ))
            except Exception as e:
                logger.warning(
                    "Could not create AI player, leaving role unassigned",
                    session_id=context.session_id,
                    role_id=character.id,
                    error=str(e)
                )
                unassigned.append(character.id)
                continue

            assignments.append(RoleAssignment(
                participant_id=participant_id,
                participant_kind=ParticipantKind.AI,
                role_id=character.id,
                role_name=character.name,
            ))

        director_id = director_id_for(context.session_id)
        judge_id = judge_id_for(context.session_id)
        await self.agents.get_director(director_id)
        await self.agents.get_judge(judge_id)

        logger.info(
            "Roles allocated",
            session_id=context.session_id,
            total_roles=total_roles,
            humans=humans_bound,
            ai=ai_count,
            unassigned=len(unassigned)
        )

        changes = {
            "role_assignments": assignments,
            "human_participant_ids": human_ids,
            "human_count": human_count,
            "ai_count": ai_count,
            "total_roles": total_roles,
            "director_id": director_id,
            "judge_id": judge_id,
        }
        if unassigned:
            changes["metadata"] = {**context.metadata, "unassigned_roles": unassigned}
        return changes
