"""FastAPI application factory."""

import asyncio
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .. import __version__
from ..config import get_settings
from ..errors import OrchestratorError
from ..services.orchestrator import SessionOrchestrator, build_orchestrator
from .routers import sessions, tokens, webhooks

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)

STATUS_BY_KIND = {
    "validation": 422,
    "configuration": 500,
    "authentication": 401,
    "retryable_provider": 503,
    "provider": 502,
    "invalid_state": 409,
    "not_found": 404,
}


def create_app(
    orchestrator: SessionOrchestrator | None = None,
    run_poller: bool = True,
) -> FastAPI:
    """Create and configure the FastAPI application."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Application lifespan handler."""
        app.state.orchestrator = orchestrator or build_orchestrator(get_settings())
        stop = asyncio.Event()
        poller = None
        if run_poller:
            poller = asyncio.create_task(app.state.orchestrator.run_poller(stop))
        logging.info("Voice orchestrator API starting up...")
        yield
        logging.info("Voice orchestrator API shutting down...")
        stop.set()
        if poller is not None:
            await poller
        await app.state.orchestrator.shutdown()

    app = FastAPI(
        title="Voice Orchestrator API",
        description="Real-time voice agent session orchestration",
        version=__version__,
        lifespan=lifespan,
    )

    # Configure CORS for frontend access
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],  # Configure appropriately for production
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(OrchestratorError)
    async def orchestrator_error_handler(request: Request, exc: OrchestratorError):
        return JSONResponse(
            status_code=STATUS_BY_KIND.get(exc.kind, 500),
            content={"error": exc.to_dict()},
        )

    # Include routers
    app.include_router(tokens.router, prefix="/api/v1/tokens", tags=["tokens"])
    app.include_router(sessions.router, prefix="/api/v1/sessions", tags=["sessions"])
    app.include_router(webhooks.router, prefix="/api/v1/webhooks", tags=["webhooks"])

    @app.get("/health")
    async def health_check():
        """Health check endpoint."""
        return {"status": "healthy", "version": __version__}

    return app
