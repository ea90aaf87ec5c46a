"""Voice session management API endpoints."""

import logging

from fastapi import APIRouter, Depends, Query

from ...errors import ValidationError
from ...models.agent import AgentConfig
from ...models.schemas import (
    AgentStartRequest,
    AgentStartResponse,
    ConnectionEvent,
    CredentialResponse,
    MessageCreate,
    MessageResponse,
    SessionCreate,
    SessionResponse,
    TranscriptEventResponse,
    TranscriptResponse,
)
from ...services.orchestrator import SessionOrchestrator
from ...services.providers import ConnectionState
from ..dependencies import get_orchestrator

router = APIRouter()
logger = logging.getLogger(__name__)


@router.post("", response_model=SessionResponse, status_code=201)
async def create_session(
    request: SessionCreate,
    orchestrator: SessionOrchestrator = Depends(get_orchestrator),
):
    """
    Create a new voice session for a channel participant.

    Returns the participant credential; the client joins the audio channel
    with it and reports the connection via ``/connection``.
    """
    session = await orchestrator.start_session(request.channel, request.uid)
    return SessionResponse.from_session(session)


@router.get("/{session_id}", response_model=SessionResponse)
async def get_session(
    session_id: str,
    orchestrator: SessionOrchestrator = Depends(get_orchestrator),
):
    return SessionResponse.from_session(orchestrator.get_session(session_id))


@router.post("/{session_id}/connection", response_model=SessionResponse)
async def report_connection(
    session_id: str,
    event: ConnectionEvent,
    orchestrator: SessionOrchestrator = Depends(get_orchestrator),
):
    """Forward an audio transport connection state change."""
    try:
        state = ConnectionState(event.state.upper())
    except ValueError:
        raise ValidationError(f"Unknown connection state: {event.state}")
    session = await orchestrator.handle_connection_event(session_id, state)
    return SessionResponse.from_session(session)


@router.post("/{session_id}/token", response_model=CredentialResponse)
async def renew_token(
    session_id: str,
    orchestrator: SessionOrchestrator = Depends(get_orchestrator),
):
    credential = await orchestrator.renew_token(session_id)
    return CredentialResponse.from_credential(credential)


@router.post("/{session_id}/agent", response_model=AgentStartResponse, status_code=201)
async def start_agent(
    session_id: str,
    request: AgentStartRequest | None = None,
    orchestrator: SessionOrchestrator = Depends(get_orchestrator),
):
    """Start the remote conversational agent in the session's channel."""
    overrides = request.model_dump() if request else {}
    config = AgentConfig.from_settings(orchestrator.settings, **overrides)
    logger.info(f"Starting agent for session {session_id} with model {config.llm_model}")
    agent_id = await orchestrator.start_agent(session_id, config)
    session = orchestrator.get_session(session_id)
    return AgentStartResponse(session_id=session_id, agent_id=agent_id, state=session.state)


@router.delete("/{session_id}/agent", response_model=SessionResponse)
async def stop_agent(
    session_id: str,
    orchestrator: SessionOrchestrator = Depends(get_orchestrator),
):
    session = await orchestrator.stop_agent(session_id)
    return SessionResponse.from_session(session)


@router.delete("/{session_id}", response_model=SessionResponse)
async def stop_session(
    session_id: str,
    orchestrator: SessionOrchestrator = Depends(get_orchestrator),
):
    session = await orchestrator.stop_session(session_id)
    return SessionResponse.from_session(session)


@router.post("/{session_id}/messages", response_model=MessageResponse, status_code=201)
async def submit_text(
    session_id: str,
    message: MessageCreate,
    orchestrator: SessionOrchestrator = Depends(get_orchestrator),
):
    """Send a text message to the agent and get the reasoned reply."""
    user_event, agent_event = await orchestrator.submit_text(session_id, message.text)
    return MessageResponse(
        user=TranscriptEventResponse.from_event(user_event),
        agent=TranscriptEventResponse.from_event(agent_event),
    )


@router.get("/{session_id}/transcript", response_model=TranscriptResponse)
async def get_transcript(
    session_id: str,
    since_seq: int = Query(default=0, ge=0),
    orchestrator: SessionOrchestrator = Depends(get_orchestrator),
):
    """Return transcript events with ``seq > since_seq`` in order."""
    events = orchestrator.list_transcript(session_id, since_seq)
    return TranscriptResponse(
        session_id=session_id,
        events=[TranscriptEventResponse.from_event(e) for e in events],
        last_seq=events[-1].seq if events else since_seq,
    )
