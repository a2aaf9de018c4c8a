"""
Adapter selection from config.

A model listed in turnloop.json with provider "anthropic" gets the Anthropic
adapter; every other provider is spoken to through the OpenAI-compatible
adapter. Unlisted model names are assumed to be local Ollama models.
"""
from __future__ import annotations

import logging

from turnloop.config import ModelConfig, TurnLoopConfig, get_config
from turnloop.models.base import BaseModelAdapter

logger = logging.getLogger(__name__)

OLLAMA_DEFAULT_URL = "http://localhost:11434/v1"

# Providers whose endpoint is well known, so turnloop.json may omit base_url
KNOWN_ENDPOINTS: dict[str, str] = {
    "openai":      "https://api.openai.com/v1",
    "groq":        "https://api.groq.com/openai/v1",
    "openrouter":  "https://openrouter.ai/api/v1",
    "together":    "https://api.together.xyz/v1",
    "mistral":     "https://api.mistral.ai/v1",
    "deepseek":    "https://api.deepseek.com/v1",
}


def ollama_url(cfg: TurnLoopConfig) -> str:
    """The first configured Ollama endpoint, or the local default."""
    return next(
        (m.base_url for m in cfg.models if m.provider == "ollama" and m.base_url),
        OLLAMA_DEFAULT_URL,
    )


def endpoint_for(model: ModelConfig, cfg: TurnLoopConfig) -> str:
    return model.base_url or KNOWN_ENDPOINTS.get(model.provider) or ollama_url(cfg)


def get_adapter(model_name: str | None = None, config: TurnLoopConfig | None = None) -> BaseModelAdapter:
    cfg = config or get_config()
    name = model_name or cfg.default_model
    model = cfg.get_model(name)

    from turnloop.models.openai_compat import OpenAICompatAdapter

    if model is None:
        logger.info(f"Model '{name}' not configured, assuming Ollama at {ollama_url(cfg)}")
        return OpenAICompatAdapter(model_name=name, base_url=ollama_url(cfg), api_key="ollama")

    api_key = cfg.get_model_api_key(model) or ""

    if model.provider == "anthropic":
        from turnloop.models.anthropic import AnthropicAdapter
        if not api_key:
            raise ValueError(f"API key not set for model '{name}'. Set {model.api_key_env} in .env")
        return AnthropicAdapter(model_name=name, api_key=api_key, base_url=model.base_url)

    # Ollama ignores the key; hosted providers reject an empty one.
    key = api_key or ("ollama" if model.provider == "ollama" else "no-key")
    return OpenAICompatAdapter(model_name=name, base_url=endpoint_for(model, cfg), api_key=key)
