"""Shared FastAPI dependencies."""

from fastapi import Request

from ..services.orchestrator import SessionOrchestrator


def get_orchestrator(request: Request) -> SessionOrchestrator:
    return request.app.state.orchestrator
