class ScriptKillError(Exception):
    """Base class for errors raised across the operator boundary"""


class SessionNotFoundError(ScriptKillError):
    def __init__(self, session_id: str):
        super().__init__(f"Session not found: {session_id}")
        self.session_id = session_id


class DiscussionNotStartedError(ScriptKillError):
    def __init__(self, session_id: str):
        super().__init__(f"Discussion has not started for session: {session_id}")
        self.session_id = session_id
