"""Provider webhook receiver."""

from fastapi import APIRouter, Depends, Header, Request

from ...services.orchestrator import SessionOrchestrator
from ..dependencies import get_orchestrator

router = APIRouter()


@router.post("/transcript")
async def transcript_webhook(
    request: Request,
    x_signature: str | None = Header(default=None),
    orchestrator: SessionOrchestrator = Depends(get_orchestrator),
):
    """
    Receive a transcript event pushed by the agent provider.

    The raw body must be signed with the shared webhook secret; unsigned or
    malformed deliveries are rejected without touching session state.
    """
    body = await request.body()
    stored = await orchestrator.ingest_webhook(body, x_signature)
    return {"status": "ok", "stored": stored}
