"""
Base tool interface. Each tool exposes a JSON schema for the model
and an async `invoke` method.
"""
from __future__ import annotations

import json
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Optional

from pydantic import BaseModel, Field

from turnloop.messages import JsonBlock, TextBlock


class ToolSpec(BaseModel):
    name: str
    display_name: Optional[str] = None
    description: Optional[str] = None
    input_schema: dict = Field(default_factory=lambda: {"type": "object", "properties": {}})

    def to_anthropic_schema(self) -> dict:
        return {
            "name": self.name,
            "description": self.description or "",
            "input_schema": self.input_schema,
        }

    def to_openai_schema(self) -> dict:
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description or "",
                "parameters": self.input_schema,
            },
        }


@dataclass
class ToolContext:
    """What a tool knows about the call it is serving. `state` is shared across calls."""

    tool_use_id: str
    round: int = 1
    state: dict[str, Any] = field(default_factory=dict)


class ToolError(Exception):
    """Raised by a tool to fail with explicit result content."""

    def __init__(self, content: Any):
        self.content = to_result_content(content)
        super().__init__(_summary(self.content))


def to_result_content(value: Any) -> list:
    """
    Normalize a tool's return value to a list of result content:
      str                    → [TextBlock]
      TextBlock / JsonBlock  → [block]
      list of blocks         → as-is (an empty list stays empty)
      anything else          → [JsonBlock]
    """
    if isinstance(value, str):
        return [TextBlock(text=value)]
    if isinstance(value, (TextBlock, JsonBlock)):
        return [value]
    if isinstance(value, list) and all(isinstance(v, (TextBlock, JsonBlock)) for v in value):
        return list(value)
    return [JsonBlock(value=value)]


def _summary(content: list) -> str:
    parts = []
    for block in content:
        if isinstance(block, TextBlock):
            parts.append(block.text)
        else:
            parts.append(json.dumps(block.value, default=str))
    return " ".join(parts)


class BaseTool(ABC):
    name: str
    description: str
    parameters: dict  # JSON Schema object
    display_name: Optional[str] = None

    def spec(self) -> ToolSpec:
        return ToolSpec(
            name=self.name,
            display_name=self.display_name,
            description=self.description,
            input_schema=self.parameters,
        )

    @abstractmethod
    async def invoke(self, input: dict, context: ToolContext) -> Any:
        """
        Execute the tool. Return a string, a JSON-able value or a list of
        result blocks. Raising any exception produces an error result.
        """
