from typing import Dict, Any, List, Optional, Set
import asyncio
from datetime import datetime

import structlog

from scriptkill.application.websocket.schema.events import (
    AnswerEvent, DiscussionEvent, PhaseChangeEvent, PrivateChatEvent,
    PrivateChatInvitationEvent, ScoreEvent, SystemEvent
)
from scriptkill.domain.context.context_manager import ContextManager
from scriptkill.domain.context.memory.vector_memory_store import VectorMemoryStore
from scriptkill.domain.context.state.state_manager import StateManager
from scriptkill.domain.discussion.phase_timer import TimerGroup
from scriptkill.domain.errors import DiscussionNotStartedError
from scriptkill.domain.models.discussion_state import (
    NEXT_PHASE, DiscussionPhase, DiscussionState, TranscriptEntry
)
from scriptkill.domain.models.session_state import ParticipantKind, SessionContext
from scriptkill.domain.orchestration.subagent.agent_registry import AgentRegistry
from scriptkill.domain.streaming.streaming_handler import StreamingHandler
from scriptkill.infrastructure.config.settings import Settings
from scriptkill.infrastructure.observability.logging import agent_logger

logger = structlog.get_logger(__name__)

STATEMENT_QUERY = "where I was, what I did and what I noticed"
ROUND_BRIEFING = "Round {round} of the discussion is starting. Prepare your statement."


class DiscussionPhaseMachine:
    """Drives one session through the timed discussion phases.

    Phase changes happen under a lock and each phase timer carries the
    generation it was armed for, so a timer from a superseded phase does
    nothing when it fires.
    """

    def __init__(
        self,
        session_id: str,
        agents: AgentRegistry,
        streaming: StreamingHandler,
        memory: VectorMemoryStore,
        context_manager: ContextManager,
        settings: Settings,
        session_context: Optional[SessionContext] = None,
        state_manager: Optional[StateManager] = None
    ):
        self.session_id = session_id
        self.agents = agents
        self.streaming = streaming
        self.memory = memory
        self.context_manager = context_manager
        self.settings = settings
        self.session_context = session_context
        self.state_manager = state_manager

        self.state = DiscussionState(session_id=session_id)
        self.generation = 0
        self._lock = asyncio.Lock()
        self._phase_timers = TimerGroup(f"phase:{session_id}")
        self._pair_timers = TimerGroup(f"private_chat:{session_id}")
        self._background: Set[asyncio.Task] = set()

    # Operations

    async def start_discussion(
        self,
        participants: List[str],
        director_id: str,
        judge_id: str
    ) -> Dict[str, Any]:
        """Open round 1 with the STATEMENT phase"""

        async with self._lock:
            if self.state.phase != DiscussionPhase.INITIALIZED:
                logger.warning("Discussion already started", session_id=self.session_id, phase=self.state.phase.value)
                return self.state.snapshot()

            self.state.participants = list(dict.fromkeys(participants))
            self.state.director_id = director_id
            self.state.judge_id = judge_id
            self.state.round = 1
            self.state.started_at = datetime.utcnow()
            self.state.reset_private_chats(self.settings.private_chat_quota)

            await self._announce_round()
            await self._enter_phase(DiscussionPhase.STATEMENT)

            return self.state.snapshot()

    async def send_private_chat_invitation(self, sender_id: str, receiver_id: str) -> bool:
        """Invite another participant to a private chat, within the sender's quota"""

        self._require_started()
        state = self.state

        if state.phase == DiscussionPhase.ENDED:
            logger.info("Invitation after discussion ended", session_id=self.session_id, sender_id=sender_id)
            return False
        if sender_id not in state.participants:
            logger.info("Invitation from unknown participant", session_id=self.session_id, sender_id=sender_id)
            return False
        if receiver_id not in state.participants or receiver_id == sender_id:
            logger.info(
                "Invitation to invalid receiver",
                session_id=self.session_id,
                sender_id=sender_id,
                receiver_id=receiver_id
            )
            return False
        if state.private_chat_quota.get(sender_id, 0) <= 0:
            logger.info("Private chat quota exhausted", session_id=self.session_id, sender_id=sender_id)
            return False

        # Check and decrement with no await in between
        state.private_chat_quota[sender_id] -= 1
        state.private_chat_log.setdefault(sender_id, []).append(receiver_id)

        self._pair_timers.arm(
            (sender_id, receiver_id),
            self.settings.phase_durations.private_chat_pair,
            lambda: self._on_private_chat_expired(sender_id, receiver_id)
        )

        await self.streaming.publish(
            [receiver_id],
            PrivateChatInvitationEvent(
                session_id=self.session_id,
                content=f"{sender_id} invites you to a private chat.",
                sender_id=sender_id,
                receiver_id=receiver_id,
                data={"remaining_quota": state.private_chat_quota[sender_id]}
            )
        )

        logger.info(
            "Private chat invitation sent",
            session_id=self.session_id,
            sender_id=sender_id,
            receiver_id=receiver_id,
            remaining_quota=state.private_chat_quota[sender_id]
        )
        return True

    async def submit_answer(self, participant_id: str, answer: str) -> bool:
        """Store a participant's answer; a later submission replaces an earlier one"""

        self._require_started()

        if self.state.phase == DiscussionPhase.ENDED:
            logger.info("Answer after discussion ended", session_id=self.session_id, participant_id=participant_id)
            return False
        if participant_id not in self.state.participants:
            logger.info("Answer from unknown participant", session_id=self.session_id, participant_id=participant_id)
            return False

        self.state.answers[participant_id] = answer

        if self.state.director_id:
            await self.streaming.publish(
                [self.state.director_id],
                AnswerEvent(
                    session_id=self.session_id,
                    content=answer,
                    sender_id=participant_id,
                    receiver_id=self.state.director_id
                )
            )
        return True

    async def send_discussion_message(self, participant_id: str, message: str) -> bool:
        """Broadcast a public message, remember it and let the judge check it"""

        self._require_started()
        state = self.state

        if state.phase == DiscussionPhase.ENDED or participant_id not in state.participants:
            logger.info("Discussion message rejected", session_id=self.session_id, participant_id=participant_id)
            return False
        if not message or not message.strip():
            return False

        entry = TranscriptEntry(
            participant_id=participant_id,
            content=message,
            round=state.round,
            phase=state.phase
        )
        state.transcript.append(entry)

        await self.streaming.publish(
            state.participants,
            DiscussionEvent(session_id=self.session_id, content=message, sender_id=participant_id)
        )

        await self._remember_message(participant_id, message)

        if state.judge_id:
            judge = await self.agents.get_judge(state.judge_id)
            entry.valid = await judge.monitor_discussion(f"{participant_id}: {message}")
            if not entry.valid:
                logger.warning("Judge flagged discussion message", session_id=self.session_id, participant_id=participant_id)
                await self.streaming.publish(
                    [participant_id],
                    SystemEvent(session_id=self.session_id, content="The referee flagged your last message.")
                )
        return True

    async def send_private_chat_message(self, sender_id: str, receiver_id: str, message: str) -> bool:
        """Relay a private message; AI receivers answer through their agent"""

        self._require_started()
        participants = self.state.participants

        if self.state.phase == DiscussionPhase.ENDED:
            return False
        if sender_id not in participants or receiver_id not in participants or sender_id == receiver_id:
            logger.info(
                "Private message between invalid participants",
                session_id=self.session_id,
                sender_id=sender_id,
                receiver_id=receiver_id
            )
            return False

        await self.streaming.publish(
            [receiver_id],
            PrivateChatEvent(
                session_id=self.session_id, content=message, sender_id=sender_id, receiver_id=receiver_id
            )
        )

        agent = await self.agents.get_player(receiver_id) if self._is_ai(receiver_id) else None
        if agent is not None:
            await self.memory.insert_conversation_memory(
                self.session_id, receiver_id, f"private:{sender_id}", message
            )
            reply = await agent.private_chat(sender_id, message)
            await self.streaming.publish(
                [sender_id],
                PrivateChatEvent(
                    session_id=self.session_id, content=reply, sender_id=receiver_id, receiver_id=sender_id
                )
            )
        return True

    async def end_discussion(self) -> Dict[str, Any]:
        """Finish the discussion now; calling it again returns the final snapshot"""

        self._require_started()

        async with self._lock:
            if self.state.phase != DiscussionPhase.ENDED:
                await self._finish()
            return self.state.snapshot()

    async def advance_phase(self) -> Dict[str, Any]:
        """Expire the current phase now, as if its timer had fired"""

        self._require_started()
        if self.state.is_active:
            await self._on_phase_timeout(self.state.phase, self.generation)
        return self.state.snapshot()

    def get_state(self) -> Dict[str, Any]:
        return self.state.snapshot()

    async def close(self):
        """Stop every timer and background task"""

        self._phase_timers.cancel_all()
        self._pair_timers.cancel_all()
        self._cancel_background()

    # Transitions, always called with the lock held

    async def _enter_phase(self, phase: DiscussionPhase):
        previous = self.state.phase
        self.state.enter_phase(phase)
        self.generation += 1
        generation = self.generation

        agent_logger.log_phase_transition(
            self.session_id, previous.value, phase.value, self.state.round, generation
        )
        await self._record_phase(phase)

        director = await self.agents.get_director(self.state.director_id)
        announcement = await director.moderate_discussion(
            phase.value, self.state.round, self.state.participants, len(self.state.answers)
        )

        duration = self._duration_for(phase)
        await self.streaming.publish(
            self.state.participants,
            PhaseChangeEvent(
                session_id=self.session_id,
                content=announcement,
                data={
                    "phase": phase.value,
                    "round": self.state.round,
                    "duration_seconds": duration,
                    "generation": generation
                }
            )
        )

        if phase == DiscussionPhase.STATEMENT:
            self._spawn(self._collect_ai_statements(generation))

        # Armed last: the transition is complete at this point
        self._phase_timers.arm(
            (self.session_id, phase.value),
            duration,
            lambda: self._on_phase_timeout(phase, generation)
        )

    async def _on_phase_timeout(self, phase: DiscussionPhase, generation: int):
        async with self._lock:
            if generation != self.generation or self.state.phase != phase:
                logger.info(
                    "Ignoring stale phase timer",
                    session_id=self.session_id,
                    phase=phase.value,
                    generation=generation,
                    current_generation=self.generation
                )
                return

            next_phase = NEXT_PHASE.get(phase)
            if next_phase is not None:
                await self._enter_phase(next_phase)
            elif self.state.round < self.settings.max_discussion_rounds:
                await self._start_next_round()
            else:
                await self._finish()

    async def _start_next_round(self):
        self.state.round += 1
        # Answers carry over between rounds
        self.state.reset_private_chats(self.settings.private_chat_quota)
        await self._announce_round()
        await self._enter_phase(DiscussionPhase.STATEMENT)

    async def _announce_round(self):
        director = await self.agents.get_director(self.state.director_id)
        intro = await director.start_discussion(self.state.participants, self.state.round)
        await self.streaming.publish(
            self.state.participants,
            SystemEvent(session_id=self.session_id, content=intro, data={"round": self.state.round})
        )

    async def _finish(self):
        previous = self.state.phase
        self.generation += 1
        self._phase_timers.cancel_all()
        self._cancel_background()
        if self.settings.cancel_private_chats_on_end:
            self._pair_timers.cancel_all()

        self.state.enter_phase(DiscussionPhase.ENDED)
        self.state.ended_at = datetime.utcnow()
        agent_logger.log_phase_transition(
            self.session_id, previous.value, DiscussionPhase.ENDED.value, self.state.round, self.generation
        )
        await self._record_phase(DiscussionPhase.ENDED)

        director = await self.agents.get_director(self.state.director_id)
        self.state.score_response = await director.score_answers(self.state.answers)

        if self.state.judge_id:
            judge = await self.agents.get_judge(self.state.judge_id)
            self.state.judge_summary = await judge.summarize_discussion(self._render_transcript())

        await self.streaming.publish(
            self.state.participants,
            ScoreEvent(
                session_id=self.session_id,
                content=self.state.score_response,
                data={"summary": self.state.judge_summary, "answers": dict(self.state.answers)}
            )
        )
        logger.info("Discussion ended", session_id=self.session_id, rounds=self.state.round)

    # Helpers

    async def _on_private_chat_expired(self, sender_id: str, receiver_id: str):
        await self.streaming.publish(
            [sender_id, receiver_id],
            SystemEvent(
                session_id=self.session_id,
                content="The private chat has ended.",
                sender_id=sender_id,
                receiver_id=receiver_id
            )
        )

    async def _collect_ai_statements(self, generation: int):
        """Let every AI participant make its opening statement"""

        context = self.session_context
        if context is None:
            return

        for assignment in context.assignments_of_kind(ParticipantKind.AI):
            if assignment.participant_id not in self.state.participants:
                continue
            agent = await self.agents.get_player(assignment.participant_id)
            if agent is None:
                continue

            await agent.discuss(ROUND_BRIEFING.format(round=self.state.round))
            memories = await self.context_manager.build_participant_context(
                self.session_id,
                assignment.participant_id,
                STATEMENT_QUERY,
                script_id=context.script_id,
                role_id=assignment.role_id
            )
            statement = await agent.make_statement(memories)

            # The phase may have moved on while the agent was thinking
            if self.generation != generation:
                return
            await self.send_discussion_message(assignment.participant_id, statement)

    async def _remember_message(self, speaker_id: str, message: str):
        for participant_id in self.state.participants:
            if not self._is_ai(participant_id):
                continue
            label = "said" if participant_id == speaker_id else f"heard:{speaker_id}"
            await self.memory.insert_conversation_memory(self.session_id, participant_id, label, message)

    async def _record_phase(self, phase: DiscussionPhase):
        if self.state_manager is not None:
            await self.state_manager.update_state(self.session_id, {"current_phase": phase.value})

    def _is_ai(self, participant_id: str) -> bool:
        if self.session_context is None:
            return False
        assignment = self.session_context.assignment_for(participant_id)
        return assignment is not None and assignment.participant_kind == ParticipantKind.AI

    def _spawn(self, coro):
        task = asyncio.create_task(coro)
        self._background.add(task)
        task.add_done_callback(self._background_done)

    def _background_done(self, task: asyncio.Task):
        self._background.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.error("Background discussion task failed", session_id=self.session_id, exc_info=error)

    def _cancel_background(self):
        current = asyncio.current_task()
        for task in list(self._background):
            if task is not current and not task.done():
                task.cancel()

    def _duration_for(self, phase: DiscussionPhase) -> float:
        durations = self.settings.phase_durations
        return {
            DiscussionPhase.STATEMENT: durations.statement,
            DiscussionPhase.FREE_DISCUSSION: durations.free_discussion,
            DiscussionPhase.PRIVATE_CHAT: durations.private_chat,
            DiscussionPhase.ANSWER: durations.answer,
        }[phase]

    def _render_transcript(self) -> str:
        if not self.state.transcript:
            return "(no messages)"
        return "\n".join(
            f"[round {entry.round} {entry.phase.value}] {entry.participant_id}: {entry.content}"
            for entry in self.state.transcript
        )

    def _require_started(self):
        if self.state.phase == DiscussionPhase.INITIALIZED:
            raise DiscussionNotStartedError(self.session_id)
