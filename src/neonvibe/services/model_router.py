"""Provider configuration for the generation stream.

Resolves the user's stored :class:`AISettings` against per-provider defaults
and environment fallbacks into an immutable :class:`ProviderSelection`. The
router does not touch the network; the stream adapter builds its client from
the selection.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Dict, Mapping, Optional

from ..domain.models import AISettings


@dataclass(frozen=True)
class ProviderSelection:
    """Everything a stream adapter needs to open a connection."""

    name: str
    model: str
    api_key: str
    base_url: Optional[str] = None

    @property
    def has_credentials(self) -> bool:
        return bool(self.api_key)


PROVIDER_CONFIG: Dict[str, Dict[str, Optional[str]]] = {
    "gemini": {
        "api_key_env": "GEMINI_API_KEY",
        "model_env": "GEMINI_MODEL",
        "default_model": "gemini-2.5-flash",
        "base_url_env": None,
        "default_base_url": None,
    },
    "openrouter": {
        "api_key_env": "OPENROUTER_API_KEY",
        "model_env": "OPENROUTER_MODEL",
        "default_model": "anthropic/claude-3.5-sonnet",
        "base_url_env": "OPENROUTER_BASE_URL",
        "default_base_url": "https://openrouter.ai/api/v1",
    },
}


def default_model(provider: str, env: Optional[Mapping[str, str]] = None) -> str:
    env = os.environ if env is None else env
    cfg = PROVIDER_CONFIG[provider]
    return env.get(cfg.get("model_env") or "", "") or cfg.get("default_model") or ""


def resolve_selection(settings: AISettings, env: Optional[Mapping[str, str]] = None) -> ProviderSelection:
    """Merge stored settings with provider defaults.

    An explicit key or model in ``settings`` always wins over the environment.

    Raises
    ------
    KeyError
        If ``settings.provider`` has no configuration entry.
    """

    env = os.environ if env is None else env
    cfg = PROVIDER_CONFIG[settings.provider]
    api_key = settings.api_key.strip() or env.get(cfg.get("api_key_env") or "", "").strip()
    model = settings.model.strip() or default_model(settings.provider, env)
    base_url = None
    if cfg.get("default_base_url"):
        base_url = env.get(cfg.get("base_url_env") or "", "") or cfg.get("default_base_url")
    return ProviderSelection(name=settings.provider, model=model, api_key=api_key, base_url=base_url)
