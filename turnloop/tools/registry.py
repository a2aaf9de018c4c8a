"""
Tool registry and dispatcher.

Resolves a tool name to a local tool or to the provider that advertises it,
and turns every outcome, including unknown names and tool exceptions, into a
ToolResultBlock. Nothing raised by a tool escapes `invoke`.
"""
from __future__ import annotations

import asyncio
import logging
from typing import Any, Iterable, Optional

from turnloop.messages import TextBlock, ToolResultBlock, ToolUseBlock
from turnloop.tools.base import BaseTool, ToolContext, ToolError, ToolSpec, to_result_content
from turnloop.tools.provider import ToolProvider

logger = logging.getLogger(__name__)


class ToolRegistry:
    def __init__(
        self,
        tools: Iterable[BaseTool] = (),
        providers: Iterable[ToolProvider] = (),
    ) -> None:
        self._tools: dict[str, BaseTool] = {}
        self._providers: list[ToolProvider] = []
        for tool in tools:
            self.register(tool)
        for provider in providers:
            self.attach(provider)

    def register(self, tool: BaseTool) -> None:
        if tool.name in self._tools:
            raise ValueError(f"Tool '{tool.name}' is already registered")
        self._tools[tool.name] = tool

    def attach(self, provider: ToolProvider) -> None:
        self._providers.append(provider)

    def tool_specs(self) -> list[ToolSpec]:
        """Local specs first, then each provider's in attach order. First name wins."""
        specs: list[ToolSpec] = [t.spec() for t in self._tools.values()]
        seen = set(self._tools)
        for provider in self._providers:
            for spec in provider.tool_specs():
                if spec.name in seen:
                    logger.warning(f"Tool '{spec.name}' from provider '{provider.name}' shadowed, skipping")
                    continue
                seen.add(spec.name)
                specs.append(spec)
        return specs

    def _resolve_provider(self, name: str) -> Optional[ToolProvider]:
        for provider in self._providers:
            try:
                specs = provider.tool_specs()
            except Exception:
                logger.exception(f"Provider '{provider.name}' failed to list its tools, skipping")
                continue
            if any(spec.name == name for spec in specs):
                return provider
        return None

    async def invoke(self, name: str, input: Any, context: ToolContext) -> ToolResultBlock:
        tool_id = context.tool_use_id
        tool = self._tools.get(name)
        provider = None if tool is not None else self._resolve_provider(name)

        if tool is None and provider is None:
            logger.warning(f"Model requested unknown tool '{name}'")
            return ToolResultBlock.error(tool_id, [TextBlock(text=f"Error: unknown tool '{name}'")])

        if not isinstance(input, dict):
            return ToolResultBlock.error(
                tool_id, [TextBlock(text=f"Error: input for tool '{name}' must be a JSON object")]
            )

        logger.info(f"Invoking tool '{name}' ({tool_id})")
        try:
            if tool is not None:
                output = await tool.invoke(input, context)
            else:
                output = await provider.call_tool(name, input, context)
        except ToolError as e:
            logger.info(f"Tool '{name}' failed: {e}")
            return ToolResultBlock.error(tool_id, e.content)
        except Exception as e:
            logger.exception(f"Tool '{name}' raised")
            return ToolResultBlock.error(tool_id, [TextBlock(text=f"Tool error: {type(e).__name__}: {e}")])

        return ToolResultBlock.success(tool_id, to_result_content(output))

    async def invoke_all(
        self,
        tool_uses: list[ToolUseBlock],
        round: int = 1,
        state: Optional[dict] = None,
        parallel: bool = True,
    ) -> list[ToolResultBlock]:
        """Run every tool use; results come back in the order of `tool_uses`."""
        state = state if state is not None else {}
        calls = [
            self.invoke(use.name, use.input, ToolContext(tool_use_id=use.id, round=round, state=state))
            for use in tool_uses
        ]
        if parallel:
            return list(await asyncio.gather(*calls))
        return [await call for call in calls]
