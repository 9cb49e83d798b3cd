from typing import Dict, Any, List, Optional
import asyncio
from datetime import datetime

from scriptkill.domain.models.session_state import SessionContext


class StateManager:
    """Keeps the latest session context and its step history"""

    def __init__(self):
        self.states: Dict[str, SessionContext] = {}
        self.history: Dict[str, List[Dict[str, Any]]] = {}
        self._lock = asyncio.Lock()

    async def get_current_state(self, session_id: str) -> Optional[SessionContext]:
        """Get current context for a session"""

        async with self._lock:
            return self.states.get(session_id)

    async def save_snapshot(self, session_id: str, context: SessionContext):
        """Persist the context as seen at a step boundary"""

        async with self._lock:
            snapshot = context.model_copy(deep=True)
            self.states[session_id] = snapshot
            self.history.setdefault(session_id, []).append({
                "step": snapshot.current_step.value,
                "succeeded": snapshot.succeeded,
                "last_error": snapshot.last_error,
                "recorded_at": datetime.utcnow().isoformat()
            })

    async def update_state(self, session_id: str, updates: Dict[str, Any]) -> Optional[SessionContext]:
        """Apply field updates to a stored context outside the workflow"""

        async with self._lock:
            current = self.states.get(session_id)
            if current is None:
                return None
            self.states[session_id] = current.model_copy(update=updates)
            return self.states[session_id]

    async def get_history(self, session_id: str) -> List[Dict[str, Any]]:
        async with self._lock:
            return list(self.history.get(session_id, []))

    async def clear_state(self, session_id: str) -> bool:
        """Clear state for a session"""

        async with self._lock:
            self.history.pop(session_id, None)
            return self.states.pop(session_id, None) is not None

    async def get_all_active_sessions(self) -> Dict[str, Dict[str, Any]]:
        """Get summaries of all stored sessions"""

        async with self._lock:
            return {sid: state.get_state_summary() for sid, state in self.states.items()}
