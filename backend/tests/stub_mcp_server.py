"""Stub MCP server for transport and connection tests.

Behaviour is controlled by environment variables:

- STUB_NAME: prefix of echo results (default "stub")
- STUB_TOOLS: comma-separated tool names to advertise (default: all)
- STUB_LIST_FAIL: when set, tools/list fails
"""

from __future__ import annotations

import asyncio
import os
from typing import Any

from mcp import types
from mcp.server import Server
from mcp.server.stdio import stdio_server

TOOLS = {
    "echo": types.Tool(
        name="echo",
        description="Echo back the input message",
        inputSchema={
            "type": "object",
            "properties": {"message": {"type": "string"}},
            "required": ["message"],
        },
    ),
    "add": types.Tool(
        name="add",
        description="Add two numbers",
        inputSchema={
            "type": "object",
            "properties": {"a": {"type": "number"}, "b": {"type": "number"}},
            "required": ["a", "b"],
        },
    ),
    "slow": types.Tool(
        name="slow",
        description="Answer after a delay",
        inputSchema={
            "type": "object",
            "properties": {"seconds": {"type": "number"}},
            "required": ["seconds"],
        },
    ),
    "fail": types.Tool(
        name="fail",
        description="Always fails",
        inputSchema={"type": "object", "properties": {}},
    ),
}


def create_stub_server() -> Server:
    name = os.environ.get("STUB_NAME", "stub")
    advertised = [t for t in os.environ.get("STUB_TOOLS", ",".join(TOOLS)).split(",") if t]
    server = Server(name)

    @server.list_tools()  # type: ignore[no-untyped-call,untyped-decorator]
    async def list_tools() -> list[types.Tool]:
        if os.environ.get("STUB_LIST_FAIL"):
            raise RuntimeError("tool listing disabled")
        return [TOOLS[t] for t in advertised]

    @server.call_tool()  # type: ignore[untyped-decorator]
    async def call_tool(tool: str, arguments: dict[str, Any] | None) -> list[types.TextContent]:
        arguments = arguments or {}

        if tool == "echo":
            return [types.TextContent(type="text", text=f"{name}: {arguments.get('message', '')}")]

        if tool == "add":
            return [types.TextContent(type="text", text=f"Result: {arguments['a'] + arguments['b']}")]

        if tool == "slow":
            await asyncio.sleep(float(arguments["seconds"]))
            return [types.TextContent(type="text", text="done")]

        if tool == "fail":
            raise RuntimeError("stub failure")

        return [types.TextContent(type="text", text=f"Unknown tool: {tool}")]

    return server


async def main() -> None:
    server = create_stub_server()
    async with stdio_server() as (read, write):
        await server.run(read, write, server.create_initialization_options())


if __name__ == "__main__":
    asyncio.run(main())
