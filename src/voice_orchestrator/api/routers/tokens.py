"""Channel credential endpoints."""

from fastapi import APIRouter, Depends

from ...models.schemas import CredentialResponse, TokenRequest
from ...services.orchestrator import SessionOrchestrator
from ..dependencies import get_orchestrator

router = APIRouter()


@router.post("", response_model=CredentialResponse, status_code=201)
async def issue_token(
    request: TokenRequest,
    orchestrator: SessionOrchestrator = Depends(get_orchestrator),
):
    """Issue a short-lived credential scoped to one channel, uid and role."""
    credential = orchestrator.issue_token(
        request.channel, request.uid, request.role, request.ttl_seconds
    )
    return CredentialResponse.from_credential(credential)
