"""Voice Orchestrator API Server - Main Entry Point."""

import uvicorn

from voice_orchestrator.api import create_app
from voice_orchestrator.config import get_settings


def main():
    """Run the Voice Orchestrator API server."""
    settings = get_settings()

    app = create_app()

    uvicorn.run(
        app,
        host=settings.api_host,
        port=settings.api_port,
        log_level="info",
    )


if __name__ == "__main__":
    main()
