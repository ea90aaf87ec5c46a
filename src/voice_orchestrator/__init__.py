"""Real-time voice agent session orchestrator."""

__version__ = "0.1.0"
