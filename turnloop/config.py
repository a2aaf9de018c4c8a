"""
Configuration system: reads turnloop.json + .env
"""
from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Literal, Optional

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings


# ── JSON schema models ───────────────────────────────────────────────────────

class ModelConfig(BaseModel):
    name: str
    display_name: str
    provider: str  # "anthropic" | "ollama" | "openai" | ...
    api_key_env: Optional[str] = None
    base_url: Optional[str] = None


class ToolProviderConfig(BaseModel):
    name: str
    base_url: str
    timeout_seconds: float = 30.0
    headers: dict[str, str] = Field(default_factory=dict)


class ToolsConfig(BaseModel):
    providers: list[ToolProviderConfig] = Field(default_factory=list)
    parallel: bool = True


class AgentConfig(BaseModel):
    max_rounds: Optional[int] = 20
    max_tokens: int = 4096
    temperature: Optional[float] = None
    top_p: Optional[float] = None
    stop_sequences: list[str] = Field(default_factory=list)
    tool_policy: Literal["auto", "none", "required"] = "auto"
    system_prompt: str = (
        "You are a helpful assistant. Use the available tools when they help "
        "answer the user's request, and say so when a tool fails."
    )


class TurnLoopConfig(BaseModel):
    version: str = "1.0"
    default_model: str = "claude-sonnet-4-5"
    models: list[ModelConfig] = Field(default_factory=list)
    tools: ToolsConfig = Field(default_factory=ToolsConfig)
    agent: AgentConfig = Field(default_factory=AgentConfig)

    def get_model(self, name: str) -> Optional[ModelConfig]:
        for m in self.models:
            if m.name == name:
                return m
        return None

    def get_model_api_key(self, model: ModelConfig) -> Optional[str]:
        if model.api_key_env:
            return os.environ.get(model.api_key_env)
        return None


# ── App settings (from .env) ─────────────────────────────────────────────────

class AppSettings(BaseSettings):
    host: str = "127.0.0.1"
    port: int = 8000
    config_path: str = "./turnloop.json"
    log_level: str = "info"
    # Comma-separated browser origins allowed to call the API
    cors_origins: str = "http://localhost:5173,http://localhost:3000"

    def allowed_origins(self) -> list[str]:
        return [o.strip() for o in self.cors_origins.split(",") if o.strip()]

    model_config = {"env_prefix": "TURNLOOP_", "env_file": ".env", "extra": "ignore"}


# ── Singleton loaders ─────────────────────────────────────────────────────────

_config: Optional[TurnLoopConfig] = None
_settings: Optional[AppSettings] = None


def get_settings() -> AppSettings:
    global _settings
    if _settings is None:
        _settings = AppSettings()
    return _settings


def load_config(path: Optional[str] = None) -> TurnLoopConfig:
    global _config
    settings = get_settings()
    config_file = Path(path or settings.config_path)

    if config_file.exists():
        with open(config_file, "r", encoding="utf-8") as f:
            data = json.load(f)
        _config = TurnLoopConfig(**data)
    else:
        _config = TurnLoopConfig()

    return _config


def get_config() -> TurnLoopConfig:
    global _config
    if _config is None:
        _config = load_config()
    return _config
