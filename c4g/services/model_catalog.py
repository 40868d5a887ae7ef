"""
Models an instance can be configured with.

``model_preference`` is the short key stored in InstanceConfig; the agent
config document needs the fully qualified route (provider/model).
"""

from dataclasses import dataclass
from typing import List, Optional


@dataclass(frozen=True)
class ModelOption:
    preference: str  # stored in InstanceConfig.model_preference
    route: str  # written to openclaw.json agent.model
    name: str
    provider: str
    requires_user_key: bool = False


AVAILABLE_MODELS: List[ModelOption] = [
    ModelOption("minimax", "minimax/minimax-latest", "MiniMax Latest", "minimax"),
    ModelOption("openai", "openai/gpt-4o", "GPT-4o", "openai", requires_user_key=True),
    ModelOption("claude", "anthropic/claude-opus-4-6", "Claude Opus", "anthropic", requires_user_key=True),
]

DEFAULT_PREFERENCE = "minimax"

_ALIASES = {"anthropic": "claude"}


def get_model(preference: Optional[str]) -> ModelOption:
    """Resolve a stored preference. Unknown values fall back to the default model."""
    key = _ALIASES.get(preference or "", preference or "")
    for option in AVAILABLE_MODELS:
        if option.preference == key:
            return option
    return get_model(DEFAULT_PREFERENCE)


def is_known(preference: str) -> bool:
    key = _ALIASES.get(preference, preference)
    return any(option.preference == key for option in AVAILABLE_MODELS)
