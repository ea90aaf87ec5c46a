"""Transcript aggregation from webhook pushes and history polling."""

import hashlib
import hmac
import logging
import time
from datetime import datetime, timedelta, timezone
from typing import Callable

import pydantic

from ..config import Settings
from ..errors import AuthenticationError, ConfigurationError, ValidationError
from ..models.schemas import TranscriptWebhook
from ..models.session import ACTIVE_STATES, Session
from ..models.transcript import EventSource, TranscriptEvent
from .providers import AgentProvider
from .retry import RetryController

logger = logging.getLogger(__name__)

SIGNATURE_HEADER = "X-Signature"


class WebhookVerifier:
    """
    Signs and verifies webhook payloads using HMAC-SHA256.

    Signature format:
        t=<timestamp>,v1=<signature>

    The signature is computed as:
        HMAC-SHA256(secret, "<timestamp>.<payload>")
    """

    SIGNATURE_VERSION = "v1"

    def __init__(
        self,
        secret: str,
        tolerance_seconds: int = 300,
        clock: Callable[[], float] = time.time,
    ):
        self._secret = secret.encode("utf-8")
        self.tolerance_seconds = tolerance_seconds
        self._clock = clock

    def sign(self, payload: bytes, timestamp: int | None = None) -> str:
        """Build the signature header value for ``payload``."""
        if timestamp is None:
            timestamp = int(self._clock())
        return f"t={timestamp},{self.SIGNATURE_VERSION}={self._compute(payload, timestamp)}"

    def verify(self, payload: bytes, signature_header: str | None) -> None:
        """Raise ``AuthenticationError`` unless the header signs ``payload``."""
        if not self._secret:
            raise ConfigurationError("Webhook secret not configured")
        if not signature_header:
            raise AuthenticationError("Missing webhook signature")

        parts = {}
        for item in signature_header.split(","):
            key, sep, value = item.strip().partition("=")
            if sep:
                parts[key] = value
        try:
            timestamp = int(parts["t"])
            signature = parts[self.SIGNATURE_VERSION]
        except (KeyError, ValueError):
            raise AuthenticationError("Invalid signature format")

        if abs(self._clock() - timestamp) > self.tolerance_seconds:
            raise AuthenticationError("Signature timestamp out of tolerance")
        if not hmac.compare_digest(signature, self._compute(payload, timestamp)):
            raise AuthenticationError("Signature mismatch")

    def _compute(self, payload: bytes, timestamp: int) -> str:
        return hmac.new(
            self._secret,
            f"{timestamp}.".encode("utf-8") + payload,
            hashlib.sha256,
        ).hexdigest()


class TranscriptAggregator:
    """Feeds webhook deliveries and poll results into each session's transcript.

    Both paths deduplicate on the provider's ``(speaker, seq)``; the first
    arrival is kept and is stored under the next session seq.
    Polling only runs for sessions that have gone longer than the staleness
    window without a webhook delivery.
    """

    def __init__(
        self,
        settings: Settings,
        provider: AgentProvider,
        retry: RetryController,
        verifier: WebhookVerifier | None = None,
    ):
        self.staleness = timedelta(seconds=settings.poll_staleness_seconds)
        self._provider = provider
        self._retry = retry
        self.verifier = verifier or WebhookVerifier(
            settings.webhook_secret, settings.webhook_tolerance_seconds
        )

    def parse_webhook(self, body: bytes, signature_header: str | None) -> TranscriptWebhook:
        """Verify and decode a webhook delivery without touching any session."""
        try:
            self.verifier.verify(body, signature_header)
        except AuthenticationError as e:
            logger.warning(f"Rejected transcript webhook: {e.message}")
            raise
        try:
            return TranscriptWebhook.model_validate_json(body)
        except pydantic.ValidationError as e:
            raise ValidationError(
                "Malformed transcript webhook payload",
                body=e.errors(include_url=False, include_context=False, include_input=False),
            )

    def ingest_webhook(self, session: Session, payload: TranscriptWebhook) -> bool:
        """Store a verified webhook event. Returns False for duplicates.

        The payload ``seq`` is the provider's turn number; the stored event gets
        a fresh session seq.
        """
        if payload.timestamp is not None:
            origin = datetime.fromtimestamp(payload.timestamp, tz=timezone.utc)
        else:
            origin = datetime.now(timezone.utc)
        event = TranscriptEvent(
            speaker=payload.speaker,
            text=payload.text,
            source=EventSource.WEBHOOK,
            origin_seq=payload.seq,
            timestamp=origin,
        )
        session.transcript.last_webhook_at = datetime.now(timezone.utc)
        return session.transcript.add(event)

    def needs_poll(self, session: Session, now: datetime | None = None) -> bool:
        if session.state not in ACTIVE_STATES:
            return False
        now = now or datetime.now(timezone.utc)
        last_seen = session.transcript.last_webhook_at or session.activated_at
        return last_seen is None or now - last_seen > self.staleness

    async def poll(self, session: Session) -> int:
        """Pull history newer than the last polled seq. Returns events stored."""
        log = session.transcript
        events = await self._retry.call(
            f"history:{session.session_id}",
            self._provider.fetch_history,
            session.channel,
            log.last_polled_seq,
        )
        stored = 0
        for event in events:
            if log.add(event):
                stored += 1
            log.last_polled_seq = max(log.last_polled_seq, event.origin_seq)
        log.last_poll_at = datetime.now(timezone.utc)
        if stored:
            logger.info(f"Session {session.session_id}: polled {stored} new transcript events")
        return stored

    def list_transcript(self, session: Session, since_seq: int = 0) -> list[TranscriptEvent]:
        if since_seq < 0:
            raise ValidationError("since_seq must be non-negative")
        return session.transcript.since(since_seq)
