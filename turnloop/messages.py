"""
Content model shared by adapters, the translator, tools and the agent loop.

Every block is a pydantic model tagged by a `type` literal. Messages built
from raw data silently drop content items of an unknown `type`, so new
variants introduced by a backend never break an older client.
"""
from __future__ import annotations

import logging
from enum import Enum
from typing import Annotated, Any, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, field_validator

logger = logging.getLogger(__name__)


class _Block(BaseModel):
    model_config = ConfigDict(frozen=True, ser_json_bytes="base64", val_json_bytes="base64")


class Role(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"


class StopReason(str, Enum):
    """Why the backend stopped producing content."""

    END_TURN = "end_turn"
    TOOL_USE = "tool_use"
    MAX_TOKENS = "max_tokens"
    STOP_SEQUENCE = "stop_sequence"
    CONTENT_FILTERED = "content_filtered"
    GUARDRAIL_INTERVENED = "guardrail_intervened"
    CONTEXT_WINDOW_EXCEEDED = "context_window_exceeded"


# ── Content blocks ───────────────────────────────────────────────────────────

class TextBlock(_Block):
    type: Literal["text"] = "text"
    text: str


class JsonBlock(_Block):
    type: Literal["json"] = "json"
    value: Any = None


ResultContent = Annotated[Union[TextBlock, JsonBlock], Field(discriminator="type")]


class ToolUseBlock(_Block):
    type: Literal["tool_use"] = "tool_use"
    id: str
    name: str
    input: Any = None


class ToolResultBlock(_Block):
    """Outcome of one tool call. `status` tells success from failure."""

    type: Literal["tool_result"] = "tool_result"
    id: str
    status: Literal["success", "error"] = "success"
    content: list[ResultContent] = Field(default_factory=list)

    @property
    def is_error(self) -> bool:
        return self.status == "error"

    @classmethod
    def success(cls, id: str, content: list) -> "ToolResultBlock":
        return cls(id=id, status="success", content=content)

    @classmethod
    def error(cls, id: str, content: list) -> "ToolResultBlock":
        return cls(id=id, status="error", content=content)


class ReasoningBlock(_Block):
    type: Literal["reasoning"] = "reasoning"
    text: str = ""
    signature: str = ""
    redacted: bytes = b""


class CachePointBlock(_Block):
    type: Literal["cache_point"] = "cache_point"
    kind: Literal["default"] = "default"


class ImageBlock(_Block):
    type: Literal["image"] = "image"
    format: Literal["png", "jpeg", "gif", "webp"]
    data: Optional[bytes] = None
    url: Optional[str] = None


class VideoBlock(_Block):
    type: Literal["video"] = "video"
    format: Literal["mkv", "mov", "mp4", "webm", "flv", "mpeg", "wmv", "3gp"]
    data: bytes


class DocumentBlock(_Block):
    type: Literal["document"] = "document"
    name: str
    format: Literal["pdf", "csv", "doc", "docx", "xls", "xlsx", "html", "txt", "md", "json", "xml"]
    data: Optional[bytes] = None
    text: Optional[str] = None
    url: Optional[str] = None
    citations: bool = False
    context: Optional[str] = None


class GuardBlock(_Block):
    """Content evaluated by a guardrail: either text or an image."""

    type: Literal["guard"] = "guard"
    qualifiers: list[Literal["grounding_source", "query", "guard_content"]] = Field(default_factory=list)
    text: Optional[str] = None
    image_format: Optional[Literal["png", "jpeg"]] = None
    image: Optional[bytes] = None


ContentBlock = Annotated[
    Union[
        TextBlock,
        ToolUseBlock,
        ToolResultBlock,
        ReasoningBlock,
        CachePointBlock,
        ImageBlock,
        VideoBlock,
        DocumentBlock,
        GuardBlock,
    ],
    Field(discriminator="type"),
]

CONTENT_BLOCK_TYPES = frozenset(
    {"text", "tool_use", "tool_result", "reasoning", "cache_point", "image", "video", "document", "guard"}
)

_content_adapter: TypeAdapter = TypeAdapter(ContentBlock)


def parse_content_blocks(items: list) -> list:
    """Validate raw content items, dropping any of an unknown type."""
    blocks = []
    for item in items:
        if isinstance(item, dict):
            block_type = item.get("type")
            if block_type not in CONTENT_BLOCK_TYPES:
                logger.debug(f"Dropping content block of unknown type {block_type!r}")
                continue
            blocks.append(_content_adapter.validate_python(item))
        else:
            blocks.append(item)
    return blocks


# ── Messages ─────────────────────────────────────────────────────────────────

class Message(_Block):
    role: Role
    content: list[ContentBlock] = Field(default_factory=list)

    @field_validator("content", mode="before")
    @classmethod
    def _drop_unknown_blocks(cls, value: Any) -> Any:
        if isinstance(value, list):
            return parse_content_blocks(value)
        return value

    @classmethod
    def user(cls, text: str) -> "Message":
        return cls(role=Role.USER, content=[TextBlock(text=text)])

    @classmethod
    def assistant(cls, text: str) -> "Message":
        return cls(role=Role.ASSISTANT, content=[TextBlock(text=text)])

    def tool_uses(self) -> list[ToolUseBlock]:
        return [b for b in self.content if isinstance(b, ToolUseBlock)]

    def text(self) -> str:
        return "".join(b.text for b in self.content if isinstance(b, TextBlock))


# ── System prompt ────────────────────────────────────────────────────────────

SystemPromptBlock = Annotated[
    Union[TextBlock, CachePointBlock, GuardBlock],
    Field(discriminator="type"),
]

SystemPrompt = Union[str, list[SystemPromptBlock]]


def system_prompt_text(prompt: Optional[SystemPrompt]) -> str:
    """Flatten a system prompt to plain text; structured prompts keep only text blocks."""
    if prompt is None:
        return ""
    if isinstance(prompt, str):
        return prompt
    return "\n".join(b.text for b in prompt if isinstance(b, TextBlock))
