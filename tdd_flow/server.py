"""MCP server exposing the TDD tools, resources and prompts over stdio."""

from __future__ import annotations

import asyncio
import logging
import sys
from typing import Any, Dict, List, Optional, Union

import mcp.types as types
from mcp.server.lowlevel import NotificationOptions, Server
from mcp.server.lowlevel.helper_types import ReadResourceContents
from mcp.server.models import InitializationOptions
from mcp.server.stdio import stdio_server

from .command_tools import CommandToolsHandler
from .config import ServerConfig
from .legacy_tools import LegacyToolsHandler
from .prompts import get_prompt, list_prompts
from .resources import ResourceProvider
from .services import Services, result_text
from .tdd_logging import setup_logging

SERVER_NAME = "tdd-mcp-server"
SERVER_VERSION = "1.0.0"

logger = logging.getLogger("tdd_flow.server")

ToolsHandler = Union[LegacyToolsHandler, CommandToolsHandler]


class TDDFlowApp:
    """Protocol-facing adapter between MCP requests and the tool handlers."""

    def __init__(self, config: ServerConfig, services: Optional[Services] = None):
        self.config = config
        services = services or Services.from_config(config)
        self.tools: ToolsHandler = (
            CommandToolsHandler(config, services) if config.use_new_tools else LegacyToolsHandler(config, services)
        )
        self.resources = ResourceProvider(config.project_path)

    async def list_tools(self) -> List[types.Tool]:
        return [
            types.Tool(name=tool["name"], description=tool["description"], inputSchema=tool["inputSchema"])
            for tool in self.tools.list_tools(self.config.locale)
        ]

    async def call_tool(self, name: str, arguments: Optional[Dict[str, Any]]) -> List[types.TextContent]:
        logger.info(f"Calling tool {name}")
        result = await asyncio.to_thread(self.tools.call_tool, name, arguments or {}, self.config.locale)
        if result.get("isError"):
            # The SDK reports a raised error as a CallToolResult with isError set.
            raise RuntimeError(result_text(result))
        return [types.TextContent(type="text", text=item["text"]) for item in result["content"]]

    async def list_resources(self) -> List[types.Resource]:
        infos = await asyncio.to_thread(self.resources.list_resources)
        return [
            types.Resource(uri=info.uri, name=info.name, description=info.description, mimeType=info.mime_type)
            for info in infos
        ]

    async def read_resource(self, uri: Any) -> List[ReadResourceContents]:
        content = await asyncio.to_thread(self.resources.read_resource, str(uri))
        return [ReadResourceContents(content=content.text, mime_type=content.mime_type)]

    async def list_prompts(self) -> List[types.Prompt]:
        return [
            types.Prompt(
                name=prompt.name,
                description=prompt.description,
                arguments=[
                    types.PromptArgument(name=arg.name, description=arg.description, required=arg.required)
                    for arg in prompt.arguments
                ],
            )
            for prompt in list_prompts()
        ]

    async def get_prompt(self, name: str, arguments: Optional[Dict[str, str]]) -> types.GetPromptResult:
        rendered = get_prompt(name, arguments)
        return types.GetPromptResult(
            description=rendered.description,
            messages=[
                types.PromptMessage(role="user", content=types.TextContent(type="text", text=rendered.text))
            ],
        )


def create_server(config: ServerConfig, app: Optional[TDDFlowApp] = None) -> Server:
    app = app or TDDFlowApp(config)
    server: Server = Server(SERVER_NAME, version=SERVER_VERSION)

    server.list_tools()(app.list_tools)
    server.call_tool(validate_input=False)(app.call_tool)
    server.list_resources()(app.list_resources)
    server.read_resource()(app.read_resource)
    server.list_prompts()(app.list_prompts)
    server.get_prompt()(app.get_prompt)

    surface = "3-tool" if config.use_new_tools else "15-tool"
    logger.info(f"{SERVER_NAME} {SERVER_VERSION} configured with the {surface} surface, locale {config.locale}")
    return server


async def serve(config: ServerConfig) -> None:
    server = create_server(config)
    async with stdio_server() as (read_stream, write_stream):
        await server.run(
            read_stream,
            write_stream,
            InitializationOptions(
                server_name=SERVER_NAME,
                server_version=SERVER_VERSION,
                capabilities=server.get_capabilities(
                    notification_options=NotificationOptions(),
                    experimental_capabilities={},
                ),
            ),
        )


def main() -> None:
    """Console entry point: configure from the environment and serve on stdio."""
    try:
        config = ServerConfig.from_env()
    except ValueError as exc:
        setup_logging()
        logger.error(f"Invalid configuration: {exc}")
        sys.exit(1)

    setup_logging(config.log_level, config.log_file)
    logger.info(f"Starting {SERVER_NAME} for project {config.project_path}")
    try:
        asyncio.run(serve(config))
    except KeyboardInterrupt:
        logger.info("Shutting down")
        sys.exit(0)
    except Exception as exc:
        logger.critical(f"Server crashed: {exc}", exc_info=True)
        sys.exit(1)
