"""
Dashboard rendering handler.

prompt_render runs the completed prompt's generated code in the sandbox and
returns the resulting HTML. Falls back to static cards when the code fails or
is missing; `retry` re-runs the last render without contacting the backend.
"""

import json
from typing import Any, Callable

from mcp.types import TextContent

from ..common_types import PromptState


async def handle_prompt_render(arguments: dict[str, Any], get_instances: Callable) -> list[TextContent]:
    """Handle prompt_render tool call."""
    instances = get_instances()
    controller = instances.controller
    sandbox = instances.sandbox

    if arguments.get("retry"):
        if sandbox.attempt == 0:
            return [TextContent(type="text", text="Error: nothing has been rendered yet")]
        outcome = await sandbox.retry()
    else:
        if controller.state is not PromptState.COMPLETED or controller.results is None:
            return [TextContent(
                type="text",
                text=f"Error: no results to render (state: {controller.state.value})",
            )]
        results = controller.results
        outcome = await sandbox.render(results.code, results.data, fallback=results.fallback_payload())

    html = sandbox.html
    max_chars = instances.server_config.max_render_chars
    truncated = len(html) > max_chars

    output = {
        "promptId": controller.prompt_id,
        **outcome.to_dict(),
        "html": html[:max_chars],
        "truncated": truncated,
    }
    if not outcome.ok:
        output["hint"] = "Use prompt_render with retry=true to run the dashboard code again"

    return [TextContent(type="text", text=json.dumps(output, indent=2))]
