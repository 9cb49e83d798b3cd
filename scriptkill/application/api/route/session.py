from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Request
from pydantic import BaseModel, Field

from scriptkill.domain.orchestration.core.session_service import SessionService

router = APIRouter(prefix="/api/v1/sessions", tags=["sessions"])


class CreateSessionRequest(BaseModel):
    premise: str = Field(min_length=1)
    human_count: Optional[int] = None
    human_participant_ids: List[str] = Field(default_factory=list)


class SessionResponse(BaseModel):
    session_id: Optional[str]
    script_id: Optional[str]
    script_name: Optional[str] = None
    current_step: str
    current_phase: Optional[str] = None
    succeeded: bool
    last_error: Optional[str] = None
    role_assignments: List[Dict[str, Any]] = Field(default_factory=list)
    websocket_url: Optional[str] = None


class StartDiscussionRequest(BaseModel):
    participants: Optional[List[str]] = None


class InvitationRequest(BaseModel):
    sender_id: str
    receiver_id: str


class PrivateMessageRequest(BaseModel):
    sender_id: str
    receiver_id: str
    message: str


class DiscussionMessageRequest(BaseModel):
    participant_id: str
    message: str


class AnswerRequest(BaseModel):
    participant_id: str
    answer: str


class AcceptedResponse(BaseModel):
    accepted: bool


def get_service(request: Request) -> SessionService:
    return request.app.state.session_service


@router.post("", response_model=SessionResponse)
async def create_session(body: CreateSessionRequest, request: Request):
    """Run the setup workflow; failures are reported in the body, not as errors"""
    context = await get_service(request).create_session(
        body.premise, body.human_count, body.human_participant_ids
    )
    return SessionResponse(
        session_id=context.session_id,
        script_id=context.script_id,
        script_name=context.script_name,
        current_step=context.current_step.value,
        current_phase=context.current_phase,
        succeeded=context.succeeded,
        last_error=context.last_error,
        role_assignments=[a.model_dump(mode="json") for a in context.role_assignments],
        websocket_url=f"/ws/session/{context.session_id}/{{participant_id}}" if context.session_id else None,
    )


@router.get("/{session_id}")
async def get_session(session_id: str, request: Request) -> Dict[str, Any]:
    return await get_service(request).get_session(session_id)


@router.delete("/{session_id}", response_model=AcceptedResponse)
async def cancel_session(session_id: str, request: Request):
    return AcceptedResponse(accepted=await get_service(request).cancel_session(session_id))


@router.post("/{session_id}/discussion/start")
async def start_discussion(session_id: str, body: StartDiscussionRequest, request: Request) -> Dict[str, Any]:
    return await get_service(request).start_discussion(session_id, body.participants)


@router.post("/{session_id}/discussion/private-chat", response_model=AcceptedResponse)
async def send_invitation(session_id: str, body: InvitationRequest, request: Request):
    accepted = await get_service(request).send_private_chat_invitation(
        session_id, body.sender_id, body.receiver_id
    )
    return AcceptedResponse(accepted=accepted)


@router.post("/{session_id}/discussion/private-messages", response_model=AcceptedResponse)
async def send_private_message(session_id: str, body: PrivateMessageRequest, request: Request):
    accepted = await get_service(request).send_private_chat_message(
        session_id, body.sender_id, body.receiver_id, body.message
    )
    return AcceptedResponse(accepted=accepted)


@router.post("/{session_id}/discussion/messages", response_model=AcceptedResponse)
async def send_message(session_id: str, body: DiscussionMessageRequest, request: Request):
    accepted = await get_service(request).send_discussion_message(
        session_id, body.participant_id, body.message
    )
    return AcceptedResponse(accepted=accepted)


@router.post("/{session_id}/discussion/answers", response_model=AcceptedResponse)
async def submit_answer(session_id: str, body: AnswerRequest, request: Request):
    accepted = await get_service(request).submit_answer(session_id, body.participant_id, body.answer)
    return AcceptedResponse(accepted=accepted)


@router.post("/{session_id}/discussion/advance")
async def advance_discussion(session_id: str, request: Request) -> Dict[str, Any]:
    return await get_service(request).advance_discussion(session_id)


@router.post("/{session_id}/discussion/end")
async def end_discussion(session_id: str, request: Request) -> Dict[str, Any]:
    return await get_service(request).end_discussion(session_id)
