"""Request and response models for the HTTP layer."""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field, model_validator

from .credential import ChannelRole, Credential
from .session import Session, SessionState
from .transcript import DeliveryStatus, EventSource, Speaker, TranscriptEvent


class TokenRequest(BaseModel):
    """Request model for issuing a channel credential."""

    channel: str
    uid: int
    role: ChannelRole = ChannelRole.PUBLISHER
    ttl_seconds: int | None = None


class CredentialResponse(BaseModel):
    token: str
    channel: str
    uid: int
    role: ChannelRole
    expires_at: datetime

    @classmethod
    def from_credential(cls, credential: Credential) -> "CredentialResponse":
        return cls(
            token=credential.token,
            channel=credential.channel,
            uid=credential.uid,
            role=credential.role,
            expires_at=credential.expires_at,
        )


class SessionCreate(BaseModel):
    """Request model for creating a new voice session."""

    channel: str = Field(..., description="Channel the participant will join")
    uid: int = Field(..., description="Numeric identity of the human participant")


class SessionResponse(BaseModel):
    """Response model for a voice session."""

    session_id: str
    channel: str
    local_uid: int
    state: SessionState
    token: str | None
    token_expiry: datetime | None
    agent_id: str | None
    last_error: dict[str, Any] | None = None
    warnings: list[dict[str, Any]] = Field(default_factory=list)
    transcript_size: int = 0
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_session(cls, session: Session) -> "SessionResponse":
        return cls(
            session_id=session.session_id,
            channel=session.channel,
            local_uid=session.local_uid,
            state=session.state,
            token=session.token,
            token_expiry=session.token_expiry,
            agent_id=session.agent_id,
            last_error=session.last_error.to_dict() if session.last_error else None,
            warnings=[w.to_dict() for w in session.warnings],
            transcript_size=len(session.transcript),
            created_at=session.created_at,
            updated_at=session.updated_at,
        )


class ConnectionEvent(BaseModel):
    """Connection state reported by the audio transport."""

    state: str
    reason: str | None = None


class AgentStartRequest(BaseModel):
    """Optional overrides for the default agent configuration."""

    llm_provider: str | None = None
    llm_model: str | None = None
    tts_vendor: str | None = None
    tts_model: str | None = None
    tts_voice_id: str | None = None
    system_prompt: str | None = None
    tts_enabled: bool | None = None


class AgentStartResponse(BaseModel):
    session_id: str
    agent_id: str
    state: SessionState


class MessageCreate(BaseModel):
    text: str


class TranscriptEventResponse(BaseModel):
    speaker: Speaker
    text: str
    seq: int
    origin_seq: int | None = None
    timestamp: datetime
    source: EventSource
    delivery_status: DeliveryStatus | None = None
    delivery_error: str | None = None

    @classmethod
    def from_event(cls, event: TranscriptEvent) -> "TranscriptEventResponse":
        return cls(
            speaker=event.speaker,
            text=event.text,
            seq=event.seq,
            origin_seq=event.origin_seq,
            timestamp=event.timestamp,
            source=event.source,
            delivery_status=event.delivery_status,
            delivery_error=event.delivery_error,
        )


class MessageResponse(BaseModel):
    user: TranscriptEventResponse
    agent: TranscriptEventResponse


class TranscriptResponse(BaseModel):
    session_id: str
    events: list[TranscriptEventResponse]
    last_seq: int


class TranscriptWebhook(BaseModel):
    """Transcript event pushed by the agent provider."""

    session_id: str | None = None
    channel: str | None = None
    speaker: Speaker
    text: str
    seq: int = Field(..., ge=0)
    timestamp: float | None = Field(
        default=None, description="Origin time as unix seconds"
    )

    @model_validator(mode="after")
    def _requires_target(self) -> "TranscriptWebhook":
        if not self.session_id and not self.channel:
            raise ValueError("either session_id or channel is required")
        return self
