"""Client status handler (client_status)."""

import json
from typing import Any, Callable

from mcp.types import TextContent


async def handle_client_status(
    arguments: dict[str, Any],
    get_instances: Callable,
    metrics_collector: Any,
) -> list[TextContent]:
    """Handle client_status tool call: configuration, session and timings."""
    instances = get_instances()
    client_config = instances.client_config
    server_config = instances.server_config
    controller = instances.controller
    sandbox = instances.sandbox

    status = {
        "server": {
            "name": server_config.name,
            "version": server_config.version,
        },
        "configuration": {
            "api_base_url": client_config.api_base_url,
            "auth_token_set": bool(client_config.auth_token),
            "request_timeout_seconds": client_config.request_timeout_seconds,
            "poll_interval_seconds": client_config.poll_interval_seconds,
            "poll_max_attempts": client_config.poll_max_attempts,
            "polling_timeout_seconds": client_config.polling_timeout_seconds,
            "sandbox_timeout_seconds": client_config.sandbox_timeout_seconds,
        },
        "session": {
            "state": controller.state.value,
            "prompt_id": controller.prompt_id,
            "generation": controller.generation,
            "polling_active": controller.polling_active,
            "history_entries": len(instances.store.prompts),
            "selected_prompt_id": instances.store.selected_prompt_id,
        },
        "sandbox": {
            "render_attempts": sandbox.attempt,
            "last_outcome": sandbox.last_outcome.to_dict() if sandbox.last_outcome else None,
        },
        "settings": instances.store.settings.to_dict(),
        "metrics": metrics_collector.get_stats(),
    }

    errors = client_config.validate()
    if errors:
        status["errors"] = errors

    return [TextContent(type="text", text=json.dumps(status, indent=2))]
