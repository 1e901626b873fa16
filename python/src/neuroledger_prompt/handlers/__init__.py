"""
Request Handlers for the NeuroLedger prompt MCP server.

- prompts: lifecycle of the current prompt (create, execute, status, reset)
- history: prompt history, selection and settings
- render: sandboxed dashboard rendering
- status: client configuration and session status
"""

from .history import (
    handle_prompt_list,
    handle_prompt_select,
    handle_settings_update,
)
from .prompts import (
    handle_prompt_create,
    handle_prompt_execute,
    handle_prompt_reset,
    handle_prompt_status,
)
from .render import handle_prompt_render
from .status import handle_client_status

__all__ = [
    # Prompt handlers
    "handle_prompt_create",
    "handle_prompt_execute",
    "handle_prompt_status",
    "handle_prompt_reset",
    # History handlers
    "handle_prompt_list",
    "handle_prompt_select",
    "handle_settings_update",
    # Rendering
    "handle_prompt_render",
    # Status
    "handle_client_status",
]
