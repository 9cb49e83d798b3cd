from typing import Any, Dict, Optional
import structlog

from scriptkill.domain.models.session_state import SessionContext, StepRecord, WorkflowStep
from scriptkill.infrastructure.observability.logging import agent_logger, bind_session

logger = structlog.get_logger(__name__)


class StepFailure(Exception):
    """Raised inside a step to stop it with a user-facing reason.

    ``changes`` are context fields the step still wants recorded.
    """

    def __init__(self, reason: str, changes: Optional[Dict[str, Any]] = None):
        super().__init__(reason)
        self.reason = reason
        self.changes = changes or {}


class BaseStep:
    """A workflow node.

    Subclasses implement ``process`` and return the context fields they
    touched. The node never raises: failures become ``last_error`` and a
    failed entry in the step trace.
    """

    step: WorkflowStep

    async def run(self, state: Dict[str, Any]) -> Dict[str, Any]:
        context: SessionContext = state["context"]
        bind_session(context.session_id)
        logger.info("Running workflow step", step=self.step.value, session_id=context.session_id)

        try:
            changes = await self.process(context, state)
            changes.update(current_step=self.step, succeeded=True, last_error=None)
            error = None
        except StepFailure as e:
            error = e.reason
            changes = dict(e.changes)
        except Exception:
            logger.exception("Workflow step crashed", step=self.step.value, session_id=context.session_id)
            error = f"{self.step.value} failed unexpectedly"
            changes = {}

        if error is not None:
            changes.update(succeeded=False, last_error=error)

        session_id = changes.get("session_id", context.session_id)
        agent_logger.log_workflow_transition(session_id, self.step.value, error is None, error)

        update = {
            "context": changes,
            "step_trace": [StepRecord(
                step=self.step,
                succeeded=error is None,
                error=error,
                attempt=self.attempt_number(state)
            )],
        }
        update.update(self.extra_updates(state))
        return update

    async def process(self, context: SessionContext, state: Dict[str, Any]) -> Dict[str, Any]:
        raise NotImplementedError

    def attempt_number(self, state: Dict[str, Any]) -> int:
        return 1

    def extra_updates(self, state: Dict[str, Any]) -> Dict[str, Any]:
        """Graph state keys besides the context written by this step"""
        return {}
