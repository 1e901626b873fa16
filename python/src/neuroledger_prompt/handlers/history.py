"""
History and settings handlers.

- prompt_list: the user's prior prompts with their summary status
- prompt_select: make a prior prompt the current one
- settings_update: change the settings used for new prompts
"""

import json
from typing import Any, Callable

from mcp.types import TextContent

from .prompts import status_payload

MAX_PAGE_SIZE = 100
MAX_PROMPT_ID_LENGTH = 128


async def handle_prompt_list(arguments: dict[str, Any], get_instances: Callable) -> list[TextContent]:
    """Handle prompt_list tool call."""
    instances = get_instances()
    store = instances.store

    limit = arguments.get("limit") or instances.client_config.history_page_size
    page = arguments.get("page") or 1
    refresh = arguments.get("refresh", True)

    if not isinstance(limit, int) or not 1 <= limit <= MAX_PAGE_SIZE:
        return [TextContent(type="text", text=f"Error: limit must be an integer between 1 and {MAX_PAGE_SIZE}")]
    if not isinstance(page, int) or page < 1:
        return [TextContent(type="text", text="Error: page must be a positive integer")]

    if refresh or not store.prompts:
        await store.load_prompts(limit=limit, page=page)

    output = {
        "prompts": store.summaries(),
        "selectedPromptId": store.selected_prompt_id,
        "page": page,
    }
    if store.error:
        output["error"] = store.error

    return [TextContent(type="text", text=json.dumps(output, indent=2))]


async def handle_prompt_select(arguments: dict[str, Any], get_instances: Callable) -> list[TextContent]:
    """Handle prompt_select tool call."""
    instances = get_instances()

    prompt_id = arguments.get("prompt_id", "")
    if not prompt_id or not isinstance(prompt_id, str):
        return [TextContent(type="text", text="Error: prompt_id is required")]
    if len(prompt_id) > MAX_PROMPT_ID_LENGTH:
        return [TextContent(type="text", text="Error: prompt_id too long")]

    if prompt_id != instances.store.selected_prompt_id:
        instances.sandbox.teardown()
    await instances.store.select_prompt(prompt_id)

    output = status_payload(instances.controller)
    return [TextContent(type="text", text=json.dumps(output, indent=2, default=str))]


async def handle_settings_update(arguments: dict[str, Any], get_instances: Callable) -> list[TextContent]:
    """Handle settings_update tool call."""
    instances = get_instances()

    changes = arguments.get("settings") or {}
    if not isinstance(changes, dict):
        return [TextContent(type="text", text="Error: settings must be an object")]

    try:
        settings = instances.store.update_settings(**changes)
    except (TypeError, ValueError) as e:
        return [TextContent(type="text", text=f"Error: {e}")]

    output = {"settings": settings.to_dict()}
    return [TextContent(type="text", text=json.dumps(output, indent=2))]
