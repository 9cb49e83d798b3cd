from typing import Any, Dict, List

import structlog

from scriptkill.domain.models.script_records import ScriptDocument
from scriptkill.domain.models.session_state import Scene, SessionContext, WorkflowStep
from scriptkill.domain.orchestration.step.base_step import BaseStep, StepFailure
from scriptkill.domain.repository.record_repository import RecordRepository

logger = structlog.get_logger(__name__)


class SceneLoadingStep(BaseStep):
    """Creates the script's scenes and links each to its clues"""

    step = WorkflowStep.SCENE_LOADING

    def __init__(self, repository: RecordRepository):
        self.repository = repository

    async def process(self, context: SessionContext, state: Dict[str, Any]) -> Dict[str, Any]:
        if not context.script_id or not context.generated_script:
            raise StepFailure("No script to load scenes from")

        try:
            document = ScriptDocument.from_writer_output(context.generated_script)
        except ValueError:
            raise StepFailure("Stored scenario could not be read")

        if not document.scenes:
            raise StepFailure("Script declares no scenes")

        clues = await self.repository.list_clues(context.script_id)

        scenes: List[Scene] = []
        for index, draft in enumerate(document.scenes):
            listed = set(draft.clues)
            clue_ids = [
                clue.id for clue in clues
                if clue.scene == draft.name or clue.name in listed
            ]
            scenes.append(Scene(
                id=f"{context.script_id}_scene_{index}",
                script_id=context.script_id,
                name=draft.name,
                description=draft.full_description(),
                clue_ids=clue_ids,
            ))

        await self.repository.save_scenes(scenes)
        logger.info("Scenes loaded", session_id=context.session_id, scenes=len(scenes))

        return {"scenes": scenes}
