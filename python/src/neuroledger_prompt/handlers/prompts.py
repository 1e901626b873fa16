"""
Prompt lifecycle handlers.

Provides handlers for the current prompt:
- prompt_create: submit a new analysis prompt
- prompt_execute: run the generated code of a ready prompt
- prompt_status: current state, progress and results summary
- prompt_reset: stop polling and return to idle
"""

import asyncio
import json
import logging
from typing import Any, Callable

from mcp.types import TextContent

from ..controller import PromptValidationError

logger = logging.getLogger(__name__)


MAX_PROMPT_LENGTH = 10_000
MAX_DATASETS = 50


def _text(payload: Any) -> list[TextContent]:
    if isinstance(payload, str):
        return [TextContent(type="text", text=payload)]
    return [TextContent(type="text", text=json.dumps(payload, indent=2, default=str))]


def status_payload(controller: Any) -> dict[str, Any]:
    """Controller snapshot plus a short summary of the results, if any."""
    payload = controller.snapshot()
    results = controller.results
    if results is not None:
        payload["results"] = {
            "hasCode": bool(results.code),
            "visualizations": [
                viz.get("title", "") if isinstance(viz, dict) else str(viz)
                for viz in results.visualizations
            ],
            "insights": results.insights,
            "data": results.data_summary(),
        }
    return payload


async def _wait_for_session(controller: Any, timeout_seconds: float) -> bool:
    """Wait for polling to finish. Returns False if `timeout_seconds` ran out first."""
    try:
        await asyncio.wait_for(controller.wait(), timeout_seconds)
    except asyncio.TimeoutError:
        return False
    return True


async def handle_prompt_create(arguments: dict[str, Any], get_instances: Callable) -> list[TextContent]:
    """Handle prompt_create tool call."""
    instances = get_instances()

    prompt = arguments.get("prompt", "")
    dataset_ids = arguments.get("dataset_ids", [])
    wait = bool(arguments.get("wait", False))

    if not isinstance(prompt, str):
        return _text("Error: prompt must be a string")
    if len(prompt) > MAX_PROMPT_LENGTH:
        return _text(f"Error: prompt too long ({len(prompt)} > {MAX_PROMPT_LENGTH} chars)")
    if not isinstance(dataset_ids, list) or not all(isinstance(d, str) for d in dataset_ids):
        return _text("Error: dataset_ids must be a list of strings")
    if len(dataset_ids) > MAX_DATASETS:
        return _text(f"Error: too many datasets ({len(dataset_ids)} > {MAX_DATASETS})")

    try:
        prompt_id = await instances.store.create_new_prompt(prompt, dataset_ids)
    except PromptValidationError as e:
        return _text(f"Error: {e}")
    except Exception as e:
        logger.error(f"[PROMPT] prompt_create failed: {e}")
        return _text({"error": instances.controller.error or str(e), **status_payload(instances.controller)})

    if wait and prompt_id is not None:
        finished = await _wait_for_session(
            instances.controller, instances.client_config.polling_timeout_seconds + 5
        )
        if not finished:
            logger.warning(f"[PROMPT] Stopped waiting for {prompt_id}; polling continues")

    return _text(status_payload(instances.controller))


async def handle_prompt_execute(arguments: dict[str, Any], get_instances: Callable) -> list[TextContent]:
    """Handle prompt_execute tool call."""
    instances = get_instances()
    controller = instances.controller

    options = arguments.get("execution_options") or {}
    wait = bool(arguments.get("wait", False))

    if not isinstance(options, dict):
        return _text("Error: execution_options must be an object")
    if not controller.can_execute:
        return _text(
            f"Error: prompt is not ready for execution (state: {controller.state.value}). "
            "Wait until prompt_status reports 'ready_for_execution'."
        )

    started = await controller.execute_prompt(options)
    if started and wait:
        await _wait_for_session(controller, instances.client_config.polling_timeout_seconds + 5)

    return _text(status_payload(controller))


async def handle_prompt_status(arguments: dict[str, Any], get_instances: Callable) -> list[TextContent]:
    """Handle prompt_status tool call."""
    instances = get_instances()
    if arguments.get("wait"):
        await _wait_for_session(instances.controller, instances.client_config.polling_timeout_seconds + 5)
    return _text(status_payload(instances.controller))


async def handle_prompt_reset(arguments: dict[str, Any], get_instances: Callable) -> list[TextContent]:
    """Handle prompt_reset tool call."""
    instances = get_instances()
    instances.controller.reset()
    instances.sandbox.teardown()
    instances.store.selected_prompt_id = None
    return _text(status_payload(instances.controller))
