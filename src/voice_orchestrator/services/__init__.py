"""Orchestration services and provider clients."""

from .agent_lifecycle import AgentLifecycleManager
from .agent_provider import AgentProviderClient
from .orchestrator import SessionOrchestrator, build_orchestrator
from .providers import AgentProvider, AudioTransport, ConnectionState, ReasoningProvider
from .reasoning import ReasoningClient
from .retry import RetryController, RetryPolicy
from .text_bridge import TextBridge
from .token_service import TokenService
from .transcript import TranscriptAggregator, WebhookVerifier

__all__ = [
    "AgentLifecycleManager",
    "AgentProvider",
    "AgentProviderClient",
    "AudioTransport",
    "ConnectionState",
    "ReasoningClient",
    "ReasoningProvider",
    "RetryController",
    "RetryPolicy",
    "SessionOrchestrator",
    "TextBridge",
    "TokenService",
    "TranscriptAggregator",
    "WebhookVerifier",
    "build_orchestrator",
]
