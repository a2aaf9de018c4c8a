"""HTTP tool provider: discovers remote tools and executes tool calls."""

import logging
import time
from typing import Any, Optional

import httpx

from turnloop.messages import JsonBlock, TextBlock
from turnloop.tools.base import ToolContext, ToolError, ToolSpec, to_result_content

logger = logging.getLogger(__name__)


class HttpToolProvider:
    """
    HTTP client for a remote tool catalog.

    Endpoints:
    - GET  /tools       → list of tool definitions (or {"data": [...]})
    - POST /tools/call  → {"content": [...], "is_error": bool}

    Specs are fetched by `refresh()` and cached; `tool_specs()` never blocks.
    """

    def __init__(
        self,
        name: str,
        base_url: str,
        timeout: float = 30.0,
        headers: Optional[dict[str, str]] = None,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        """
        Initialize the provider.

        Args:
            name: Provider name used in logs
            base_url: Base URL of the tool service (e.g., http://tools:8080/api)
            timeout: HTTP timeout in seconds
            headers: Extra headers sent with every request
            client: Preconfigured client, mainly for tests
        """
        self.name = name
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._headers = headers or {}
        self._client = client
        self._specs: list[ToolSpec] = []

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create the HTTP client."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                base_url=self._base_url,
                timeout=self._timeout,
                headers=self._headers,
                follow_redirects=True,
            )
        return self._client

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client and not self._client.is_closed:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> "HttpToolProvider":
        await self.refresh()
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    def tool_specs(self) -> list[ToolSpec]:
        return list(self._specs)

    async def refresh(self) -> list[ToolSpec]:
        """Fetch the tool catalog and cache it. HTTP errors propagate."""
        client = await self._get_client()
        try:
            response = await client.get("/tools")
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            logger.error(f"[{self.name}] HTTP error fetching tools: {e.response.status_code} - {e.response.text}")
            raise
        except httpx.RequestError as e:
            logger.error(f"[{self.name}] Request error fetching tools: {e}")
            raise

        data = response.json()
        tools = data.get("data", []) if isinstance(data, dict) else data
        self._specs = [
            ToolSpec(
                name=t["name"],
                display_name=t.get("display_name"),
                description=t.get("description"),
                input_schema=t.get("input_schema") or t.get("inputSchema") or {"type": "object", "properties": {}},
            )
            for t in tools
        ]
        logger.info(f"[{self.name}] Fetched {len(self._specs)} tools")
        return self.tool_specs()

    async def call_tool(self, name: str, input: dict, context: ToolContext) -> list:
        """Execute a remote tool. Failures raise ToolError with a readable message."""
        client = await self._get_client()
        start_time = time.time()

        try:
            response = await client.post(
                "/tools/call",
                json={"name": name, "arguments": input, "tool_use_id": context.tool_use_id},
            )
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            logger.error(f"[{self.name}] HTTP error executing tool '{name}': {e.response.status_code} - {e.response.text}")
            raise ToolError(f"Tool execution failed: {e.response.status_code} {e.response.text}") from e
        except httpx.RequestError as e:
            logger.error(f"[{self.name}] Request error executing tool '{name}': {e}")
            raise ToolError(f"Request failed: {e}") from e

        duration_ms = (time.time() - start_time) * 1000
        result = response.json()
        content = _parse_content(result.get("content", []))

        if result.get("is_error"):
            logger.info(f"[{self.name}] Tool '{name}' reported an error after {duration_ms:.2f}ms")
            raise ToolError(content or "Tool reported an error")

        logger.info(f"[{self.name}] Executed tool '{name}' successfully in {duration_ms:.2f}ms")
        return content


def _parse_content(items: Any) -> list:
    if isinstance(items, str):
        return [TextBlock(text=items)]
    if not isinstance(items, list):
        return to_result_content(items)

    content: list = []
    for item in items:
        if isinstance(item, dict) and item.get("type") == "text":
            content.append(TextBlock(text=str(item.get("text", ""))))
        elif isinstance(item, dict) and item.get("type") == "json":
            content.append(JsonBlock(value=item.get("value")))
        else:
            content.append(JsonBlock(value=item))
    return content
