"""Agent configuration model."""

import pydantic
from pydantic import BaseModel, ConfigDict, Field

from ..config import Settings
from ..errors import ValidationError


class AgentConfig(BaseModel):
    """Immutable configuration attached to an agent-start request.

    ``system_prompt`` is forwarded to the reasoning provider only; it is never
    written into the session transcript.
    """

    model_config = ConfigDict(frozen=True)

    llm_provider: str = Field(..., min_length=1)
    llm_model: str = Field(..., min_length=1)
    tts_vendor: str = Field(..., min_length=1)
    tts_model: str = Field(..., min_length=1)
    tts_voice_id: str = Field(..., min_length=1)
    system_prompt: str | None = Field(default=None, max_length=8000)
    tts_enabled: bool = True

    @classmethod
    def from_settings(cls, settings: Settings, **overrides) -> "AgentConfig":
        """Build a config from settings defaults, applying non-None overrides."""
        values = {
            "llm_provider": settings.llm_provider,
            "llm_model": settings.llm_model,
            "tts_vendor": settings.tts_vendor,
            "tts_model": settings.tts_model,
            "tts_voice_id": settings.tts_voice_id,
            "system_prompt": settings.default_system_prompt,
            "tts_enabled": settings.tts_enabled,
        }
        values.update({k: v for k, v in overrides.items() if v is not None})
        try:
            return cls(**values)
        except pydantic.ValidationError as e:
            raise ValidationError(
                "Invalid agent configuration",
                body=e.errors(include_url=False, include_context=False, include_input=False),
            )
