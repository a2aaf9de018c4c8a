from typing import Any, Protocol

from turnloop.tools.base import ToolContext, ToolSpec


class ToolProvider(Protocol):
    """A collaborator that advertises remote tools and executes them."""

    name: str

    def tool_specs(self) -> list[ToolSpec]: ...

    async def call_tool(self, name: str, input: dict, context: ToolContext) -> Any: ...
