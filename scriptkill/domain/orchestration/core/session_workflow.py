from typing import TypedDict, Annotated, List, Dict, Any, Optional, Literal, Union
import operator

from langgraph.graph import StateGraph, END
import structlog

from scriptkill.domain.context.memory.vector_memory_store import VectorMemoryStore
from scriptkill.domain.context.state.state_manager import StateManager
from scriptkill.domain.models.session_state import (
    SessionContext, StepRecord, WorkflowStep, merge_session_context
)
from scriptkill.domain.orchestration.step.character_loading import CharacterLoadingStep
from scriptkill.domain.orchestration.step.first_investigation import FirstInvestigationStep
from scriptkill.domain.orchestration.step.role_allocation import RoleAllocationStep
from scriptkill.domain.orchestration.step.scene_loading import SceneLoadingStep
from scriptkill.domain.orchestration.step.script_generation import ScriptGenerationStep
from scriptkill.domain.orchestration.subagent.agent_registry import AgentRegistry
from scriptkill.domain.repository.record_repository import RecordRepository
from scriptkill.domain.streaming.streaming_handler import StreamingHandler
from scriptkill.infrastructure.observability.logging import bind_session

logger = structlog.get_logger(__name__)


class WorkflowState(TypedDict):
    """State for the session setup graph"""
    context: Annotated[SessionContext, merge_session_context]
    step_trace: Annotated[List[StepRecord], operator.add]
    generation_attempts: int


class SessionWorkflow:
    """Builds a playable session from a premise using LangGraph"""

    def __init__(
        self,
        agents: AgentRegistry,
        repository: RecordRepository,
        memory: VectorMemoryStore,
        streaming_handler: StreamingHandler,
        state_manager: StateManager,
        max_generation_attempts: int = 3
    ):
        self.streaming_handler = streaming_handler
        self.state_manager = state_manager
        self.max_generation_attempts = max_generation_attempts

        self.script_generation = ScriptGenerationStep(agents, repository)
        self.role_allocation = RoleAllocationStep(agents, repository)
        self.scene_loading = SceneLoadingStep(repository)
        self.character_loading = CharacterLoadingStep(agents, repository, memory, streaming_handler)
        self.first_investigation = FirstInvestigationStep(agents, repository, memory, streaming_handler)

        self.workflow = self._create_workflow()

    def _create_workflow(self):
        """Create the session setup graph"""

        workflow = StateGraph(WorkflowState)

        workflow.add_node(WorkflowStep.SCRIPT_GENERATION.value, self.script_generation.run)
        workflow.add_node(WorkflowStep.ROLE_ALLOCATION.value, self.role_allocation.run)
        workflow.add_node(WorkflowStep.SCENE_LOADING.value, self.scene_loading.run)
        workflow.add_node(WorkflowStep.CHARACTER_LOADING.value, self.character_loading.run)
        workflow.add_node(WorkflowStep.FIRST_INVESTIGATION.value, self.first_investigation.run)

        workflow.set_entry_point(WorkflowStep.SCRIPT_GENERATION.value)

        # Generation retries itself until it succeeds or runs out of attempts
        workflow.add_conditional_edges(
            WorkflowStep.SCRIPT_GENERATION.value,
            self.route_after_generation,
            {
                "retry": WorkflowStep.SCRIPT_GENERATION.value,
                "continue": WorkflowStep.ROLE_ALLOCATION.value,
                "fail": END
            }
        )

        # Scenes and characters load in parallel once roles are known
        workflow.add_conditional_edges(
            WorkflowStep.ROLE_ALLOCATION.value,
            self.route_after_allocation,
            [WorkflowStep.SCENE_LOADING.value, WorkflowStep.CHARACTER_LOADING.value, END]
        )

        workflow.add_edge(
            [WorkflowStep.SCENE_LOADING.value, WorkflowStep.CHARACTER_LOADING.value],
            WorkflowStep.FIRST_INVESTIGATION.value
        )
        workflow.add_edge(WorkflowStep.FIRST_INVESTIGATION.value, END)

        return workflow.compile()

    def route_after_generation(self, state: WorkflowState) -> Literal["retry", "continue", "fail"]:
        """Decide what follows a script generation attempt"""

        context = state["context"]
        if context.succeeded and context.current_step == WorkflowStep.SCRIPT_GENERATION:
            return "continue"

        if state.get("generation_attempts", 0) < self.max_generation_attempts:
            logger.warning(
                "Retrying script generation",
                session_id=context.session_id,
                attempt=state.get("generation_attempts", 0),
                error=context.last_error
            )
            return "retry"

        logger.error("Script generation failed", session_id=context.session_id, error=context.last_error)
        return "fail"

    def route_after_allocation(self, state: WorkflowState) -> Union[List[str], str]:
        """Fan out to both loaders, or stop if allocation failed"""

        context = state["context"]
        if context.succeeded and context.current_step == WorkflowStep.ROLE_ALLOCATION:
            return [WorkflowStep.SCENE_LOADING.value, WorkflowStep.CHARACTER_LOADING.value]
        return END

    async def run(
        self,
        premise: str,
        human_count: Optional[int] = None,
        human_participant_ids: Optional[List[str]] = None
    ) -> SessionContext:
        """Run the whole workflow and return the final context"""

        initial_context = SessionContext(
            premise=premise,
            human_count=human_count or 0,
            human_participant_ids=list(human_participant_ids or []),
        )

        initial_state: WorkflowState = {
            "context": initial_context,
            "step_trace": [],
            "generation_attempts": 0,
        }

        context = initial_context
        session_id: Optional[str] = None

        async for mode, chunk in self.workflow.astream(initial_state, stream_mode=["updates", "values"]):
            if mode == "updates":
                session_id = session_id or self._session_id_from_update(chunk)
                if session_id:
                    bind_session(session_id)
                    await self.streaming_handler.handle_update(session_id, chunk)
            else:
                context = chunk["context"]
                if context.session_id:
                    session_id = context.session_id
                    await self.state_manager.save_snapshot(context.session_id, context)

        if session_id:
            await self.streaming_handler.send_workflow_complete(session_id, context.succeeded)

        logger.info(
            "Session workflow finished",
            session_id=context.session_id,
            script_id=context.script_id,
            current_step=context.current_step.value,
            succeeded=context.succeeded,
            last_error=context.last_error
        )
        return context

    @staticmethod
    def _session_id_from_update(update: Dict[str, Any]) -> Optional[str]:
        for node_data in update.values():
            changes = (node_data or {}).get("context") or {}
            if isinstance(changes, dict) and changes.get("session_id"):
                return changes["session_id"]
        return None
