"""
NeuroLedger Prompt Client

Client side of NeuroLedger's natural-language analysis flow:

- A prompt is submitted against one or more datasets
- The backend generates analysis code; the client polls until it is ready
- The code is executed on the backend; the client polls until it completes
- The final payload is rendered locally by running the generated dashboard
  code in a sandbox, with a static fallback when that fails

Exposed to hosts as an MCP server (see server.py).
"""

__version__ = "0.3.0"

from .api_client import PromptApiClient, PromptApiError
from .common_types import PromptRecord, PromptSettings, PromptState
from .controller import PromptExecutionController, PromptValidationError
from .polling import PollingEngine, PollingTimeoutError
from .prompt_store import PromptCollectionStore
from .sandbox import CodeExecutionSandbox, RenderOutcome, RenderStatus
from .server import create_server, main

__all__ = [
    "main",
    "create_server",
    "PromptApiClient",
    "PromptApiError",
    "PromptExecutionController",
    "PromptValidationError",
    "PromptCollectionStore",
    "PollingEngine",
    "PollingTimeoutError",
    "CodeExecutionSandbox",
    "RenderOutcome",
    "RenderStatus",
    "PromptRecord",
    "PromptSettings",
    "PromptState",
]
