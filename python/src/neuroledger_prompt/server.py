#!/usr/bin/env python3
"""
NeuroLedger Prompt MCP Server

Lets an MCP host run the NeuroLedger analysis flow end to end:

1. prompt_create   - submit a natural-language question about datasets
2. prompt_status   - follow the backend while it generates analysis code
3. prompt_execute  - run the generated code once it is ready
4. prompt_render   - render the resulting dashboard in a sandbox

Plus prompt history (prompt_list, prompt_select), settings (settings_update),
prompt_reset and client_status.

One controller serves the whole server process: there is a single "current"
prompt, exactly like the prompt page of the web client.
"""

import asyncio
import logging
import signal
import sys
import time
from dataclasses import dataclass
from typing import Any

from mcp.server import Server
from mcp.server.stdio import stdio_server
from mcp.types import (
    Tool,
    TextContent,
)

from .api_client import PromptApiClient
from .common_types import CURRENCIES, LANGUAGES, MONTHS, VISUALIZATION_TYPES
from .config import PromptClientConfig, ServerConfig, get_config
from .controller import PromptExecutionController
from .handlers import (
    handle_client_status,
    handle_prompt_create,
    handle_prompt_execute,
    handle_prompt_list,
    handle_prompt_render,
    handle_prompt_reset,
    handle_prompt_select,
    handle_prompt_status,
    handle_settings_update,
)
from .prompt_store import PromptCollectionStore
from .sandbox import CodeExecutionSandbox
from .utils import configure_logging, get_metrics_collector

logger = logging.getLogger(__name__)


@dataclass
class ServerInstances:
    """Everything the tool handlers work with."""
    client_config: PromptClientConfig
    server_config: ServerConfig
    api: PromptApiClient
    controller: PromptExecutionController
    store: PromptCollectionStore
    sandbox: CodeExecutionSandbox


# Global instances
_instances: ServerInstances | None = None

# Shutdown flag for graceful termination
_shutdown_event: asyncio.Event | None = None


def _log_render_error(error: BaseException) -> None:
    logger.warning(f"[SANDBOX] Dashboard render failed: {type(error).__name__}: {error}")


def get_instances() -> ServerInstances:
    """Get or create singleton instances."""
    global _instances

    if _instances is None:
        client_config, server_config = get_config()
        api = PromptApiClient(client_config)
        controller = PromptExecutionController(api, client_config)
        _instances = ServerInstances(
            client_config=client_config,
            server_config=server_config,
            api=api,
            controller=controller,
            store=PromptCollectionStore(api, controller, page_size=client_config.history_page_size),
            sandbox=CodeExecutionSandbox(
                timeout_seconds=client_config.sandbox_timeout_seconds,
                on_render_error=_log_render_error,
            ),
        )

    return _instances


async def cleanup_resources() -> None:
    """Cleanup resources on shutdown."""
    global _instances

    if _instances is None:
        return
    instances, _instances = _instances, None

    instances.sandbox.close()
    instances.store.detach()
    await instances.controller.close()
    try:
        await instances.api.close()
    except Exception as e:
        logger.error(f"Error closing API client: {e}")


SETTINGS_SCHEMA = {
    "type": "object",
    "properties": {
        "visualizationType": {"type": "string", "enum": list(VISUALIZATION_TYPES)},
        "includeInsights": {"type": "boolean"},
        "language": {"type": "string", "enum": list(LANGUAGES)},
        "displayCurrency": {"type": "string", "enum": list(CURRENCIES)},
        "fiscalYearStart": {"type": "string", "enum": list(MONTHS)},
    },
    "additionalProperties": False,
}

WAIT_PROPERTY = {
    "type": "boolean",
    "description": (
        "Block until the backend finishes the current phase (or polling times out). "
        "Default: false - return immediately and check prompt_status later."
    ),
}


def create_server() -> Server:
    """Create and configure the MCP server."""
    server = Server("neuroledger-prompt")
    metrics = get_metrics_collector()

    @server.list_tools()
    async def list_tools() -> list[Tool]:
        """List available tools."""
        return [
            Tool(
                name="prompt_create",
                description=(
                    "Submit a natural-language analysis request against one or more datasets. "
                    "The backend generates analysis code; progress is tracked automatically. "
                    "Uses the current settings (see settings_update)."
                ),
                inputSchema={
                    "type": "object",
                    "properties": {
                        "prompt": {
                            "type": "string",
                            "description": "What to analyze, e.g. 'show revenue by month for 2024'",
                        },
                        "dataset_ids": {
                            "type": "array",
                            "items": {"type": "string"},
                            "description": "Datasets to analyze (at least one)",
                        },
                        "wait": WAIT_PROPERTY,
                    },
                    "required": ["prompt", "dataset_ids"],
                },
            ),
            Tool(
                name="prompt_execute",
                description=(
                    "Execute the generated code of the current prompt. "
                    "Only valid when prompt_status reports 'ready_for_execution'."
                ),
                inputSchema={
                    "type": "object",
                    "properties": {
                        "execution_options": {
                            "type": "object",
                            "description": "Options forwarded to the backend execution",
                        },
                        "wait": WAIT_PROPERTY,
                    },
                },
            ),
            Tool(
                name="prompt_status",
                description=(
                    "Current prompt state, progress, error and next steps. "
                    "When completed, includes a summary of the results."
                ),
                inputSchema={
                    "type": "object",
                    "properties": {
                        "wait": WAIT_PROPERTY,
                    },
                },
            ),
            Tool(
                name="prompt_select",
                description=(
                    "Make a prompt from the history the current prompt. Finished prompts "
                    "load their results; prompts still processing resume tracking."
                ),
                inputSchema={
                    "type": "object",
                    "properties": {
                        "prompt_id": {
                            "type": "string",
                            "description": "Prompt id from prompt_list",
                        },
                    },
                    "required": ["prompt_id"],
                },
            ),
            Tool(
                name="prompt_list",
                description="List previous prompts with their status.",
                inputSchema={
                    "type": "object",
                    "properties": {
                        "limit": {
                            "type": "integer",
                            "description": "Prompts per page. Default: 10",
                        },
                        "page": {
                            "type": "integer",
                            "description": "Page number, starting at 1. Default: 1",
                        },
                        "refresh": {
                            "type": "boolean",
                            "description": "Reload from the backend. Default: true",
                        },
                    },
                },
            ),
            Tool(
                name="prompt_reset",
                description="Stop tracking the current prompt and clear it.",
                inputSchema={
                    "type": "object",
                    "properties": {},
                },
            ),
            Tool(
                name="prompt_render",
                description=(
                    "Render the dashboard of a completed prompt by running its generated code "
                    "in a sandbox. Returns HTML. Falls back to static cards if the code fails."
                ),
                inputSchema={
                    "type": "object",
                    "properties": {
                        "retry": {
                            "type": "boolean",
                            "description": "Re-run the last render without contacting the backend",
                        },
                    },
                },
            ),
            Tool(
                name="settings_update",
                description="Change the analysis settings used for new prompts.",
                inputSchema={
                    "type": "object",
                    "properties": {
                        "settings": SETTINGS_SCHEMA,
                    },
                    "required": ["settings"],
                },
            ),
            Tool(
                name="client_status",
                description="Check configuration, the current session and tool timings.",
                inputSchema={
                    "type": "object",
                    "properties": {},
                },
            ),
        ]

    @server.call_tool()
    async def call_tool(name: str, arguments: dict[str, Any]) -> list[TextContent]:
        """Handle tool calls."""
        start_time = time.perf_counter()
        arguments = arguments or {}

        try:
            if name == "prompt_create":
                result = await handle_prompt_create(arguments, get_instances)
            elif name == "prompt_execute":
                result = await handle_prompt_execute(arguments, get_instances)
            elif name == "prompt_status":
                result = await handle_prompt_status(arguments, get_instances)
            elif name == "prompt_select":
                result = await handle_prompt_select(arguments, get_instances)
            elif name == "prompt_list":
                result = await handle_prompt_list(arguments, get_instances)
            elif name == "prompt_reset":
                result = await handle_prompt_reset(arguments, get_instances)
            elif name == "prompt_render":
                result = await handle_prompt_render(arguments, get_instances)
            elif name == "settings_update":
                result = await handle_settings_update(arguments, get_instances)
            elif name == "client_status":
                result = await handle_client_status(arguments, get_instances, metrics)
            else:
                result = [TextContent(type="text", text=f"Unknown tool: {name}")]

            metrics.record_since(f"tool:{name}", start_time)
            return result

        except Exception as e:
            logger.exception(f"Tool {name} failed")
            metrics.record_since(f"tool:{name}", start_time, success=False, error=str(e))
            return [TextContent(type="text", text=f"Error: {str(e)}")]

    return server


async def run_server():
    """Run the MCP server with graceful shutdown."""
    global _shutdown_event
    _shutdown_event = asyncio.Event()

    server = create_server()

    loop = asyncio.get_running_loop()

    def handle_shutdown(sig):
        logger.info(f"Received {sig.name}, shutting down gracefully...")
        _shutdown_event.set()

    # Register signal handlers (Unix only)
    if sys.platform != "win32":
        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.add_signal_handler(sig, lambda s=sig: handle_shutdown(s))

    try:
        async with stdio_server() as (read_stream, write_stream):
            server_task = asyncio.create_task(
                server.run(
                    read_stream,
                    write_stream,
                    server.create_initialization_options(),
                )
            )

            # Wait for either server completion or shutdown signal
            done, pending = await asyncio.wait(
                [server_task, asyncio.create_task(_shutdown_event.wait())],
                return_when=asyncio.FIRST_COMPLETED,
            )

            for task in pending:
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass

    finally:
        await cleanup_resources()


def main():
    """Main entry point."""
    client_config, _ = get_config()
    configure_logging(client_config.log_level)

    for error in client_config.validate():
        logger.warning(f"Configuration: {error}")

    try:
        asyncio.run(run_server())
    except KeyboardInterrupt:
        pass
    except Exception as e:
        logger.error(f"Server error: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
