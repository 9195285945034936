#!/usr/bin/env python3
"""
Media Generation MCP Server
===========================

Image, 3D mesh and sound generation over MCP stdio.

Providers:
1. Gemini - image generation and editing (default)
2. Replicate - images, background removal, Shap-E meshes, AudioGen sound
3. Hugging Face - image generation, background removal Space

Entry points:
- media-gen-mcp: every tool
- image-gen-mcp: image tools
- mesh-gen-mcp: generate_3d_mesh (requires REPLICATE_API_TOKEN)
- sound-gen-mcp: generate_sound_sfx (requires REPLICATE_API_TOKEN)
"""

import asyncio
import json
import logging
import sys
from typing import Any, Dict, List, Optional

from mcp.server.models import InitializationOptions
from mcp.server import NotificationOptions, Server
import mcp.server.stdio
import mcp.types as types

from . import __version__
from .config import ServerConfig
from .dispatcher import ToolDispatcher
from .errors import MediaGenError, MissingCredential


logger = logging.getLogger("media-gen-mcp")

SERVER_NAMES = {
    "all": "media-gen-mcp",
    "image": "image-generation-server",
    "mesh": "mesh-generation-server",
    "sound": "sound-generation-server",
}


def configure_logging(level: str = "INFO") -> None:
    """Log to stderr; stdout carries the MCP stream."""
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        stream=sys.stderr,
    )


def _text(payload: Dict[str, Any]) -> List[types.TextContent]:
    return [types.TextContent(type="text", text=json.dumps(payload, indent=2))]


async def call_tool_response(
    dispatcher: ToolDispatcher, name: str, arguments: Optional[Dict[str, Any]]
) -> List[types.TextContent]:
    """Run a tool and wrap its envelope, or its error, as JSON text."""
    try:
        result = await dispatcher.invoke(name, arguments or {})
    except MediaGenError as e:
        logger.error(f"Tool {name} failed: {e}")
        return _text({"success": False, "error": str(e), "error_type": type(e).__name__})
    except Exception as e:
        logger.exception(f"Unexpected error in tool {name}")
        return _text({"success": False, "error": str(e), "error_type": type(e).__name__})
    return _text(result)


def create_server(dispatcher: ToolDispatcher, name: str = "media-gen-mcp") -> Server:
    """Build an MCP server bound to `dispatcher`."""
    server = Server(name)

    @server.list_tools()
    async def handle_list_tools() -> list[types.Tool]:
        """List the tools of this server's toolset."""
        return [
            types.Tool(
                name=tool["name"],
                description=tool["description"],
                inputSchema=tool["inputSchema"],
            )
            for tool in dispatcher.tool_definitions()
        ]

    @server.call_tool()
    async def handle_call_tool(
        name: str, arguments: dict | None
    ) -> list[types.TextContent | types.ImageContent | types.EmbeddedResource]:
        """Handle tool execution requests."""
        return await call_tool_response(dispatcher, name, arguments)

    return server


async def serve(config: ServerConfig) -> None:
    """Run the MCP server over stdio."""
    dispatcher = ToolDispatcher.from_config(config)
    server_name = SERVER_NAMES[config.toolset]
    server = create_server(dispatcher, server_name)

    async with mcp.server.stdio.stdio_server() as (read_stream, write_stream):
        logger.info(f"{server_name} starting...")
        logger.info(f"Output directory: {config.output_dir}")

        for name, provider in dispatcher.selector.providers.items():
            logger.info(f"  {name}: {provider.status.value}")
        if config.toolset in ("all", "image"):
            logger.info(f"Using image provider: {dispatcher.selector.active_provider().name.upper()}")

        await server.run(
            read_stream,
            write_stream,
            InitializationOptions(
                server_name=server_name,
                server_version=__version__,
                capabilities=server.get_capabilities(
                    notification_options=NotificationOptions(),
                    experimental_capabilities={},
                ),
            ),
        )


def main(toolset: str = "all") -> None:
    """Validate credentials, then serve. Exits with status 1 when unusable."""
    config = ServerConfig.from_env(toolset=toolset)
    configure_logging(config.log_level)
    try:
        config.validate_startup()
    except MissingCredential as e:
        logger.error(f"Error: {e}")
        sys.exit(1)
    asyncio.run(serve(config))


def main_image() -> None:
    main("image")


def main_mesh() -> None:
    main("mesh")


def main_sound() -> None:
    main("sound")


if __name__ == "__main__":
    main()
