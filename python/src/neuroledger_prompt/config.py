"""
Configuration for the NeuroLedger prompt client

Environment Variables:
- NEUROLEDGER_API_BASE_URL: Backend REST API (default: http://localhost:3001/api/v1)
- NEUROLEDGER_AUTH_TOKEN: Bearer token issued by the identity provider (optional)
- NEUROLEDGER_POLL_INTERVAL: Seconds between status polls (default: 2.0)
- NEUROLEDGER_POLL_MAX_ATTEMPTS: Status polls per phase before giving up (default: 30)
- NEUROLEDGER_SANDBOX_TIMEOUT: Seconds generated code may run (default: 10)

Polling is bounded by attempt count, not by wall clock. The effective wait
for one phase is poll_interval_seconds * poll_max_attempts (60s by default),
exposed as `polling_timeout_seconds`.
"""

import os
from dataclasses import dataclass, field

from dotenv import load_dotenv

load_dotenv()


DEFAULT_API_BASE_URL = "http://localhost:3001/api/v1"


@dataclass
class PromptClientConfig:
    """Configuration for talking to the prompt backend and running results."""

    # API Configuration
    api_base_url: str = field(
        default_factory=lambda: os.getenv("NEUROLEDGER_API_BASE_URL", DEFAULT_API_BASE_URL)
    )
    auth_token: str = field(default_factory=lambda: os.getenv("NEUROLEDGER_AUTH_TOKEN", ""))
    request_timeout_seconds: float = field(
        default_factory=lambda: float(os.getenv("NEUROLEDGER_REQUEST_TIMEOUT", "30"))
    )

    # Status polling (fixed interval, no backoff)
    poll_interval_seconds: float = field(
        default_factory=lambda: float(os.getenv("NEUROLEDGER_POLL_INTERVAL", "2.0"))
    )
    poll_max_attempts: int = field(
        default_factory=lambda: int(os.getenv("NEUROLEDGER_POLL_MAX_ATTEMPTS", "30"))
    )

    # Sandbox
    sandbox_timeout_seconds: float = field(
        default_factory=lambda: float(os.getenv("NEUROLEDGER_SANDBOX_TIMEOUT", "10"))
    )

    # Prompt history
    history_page_size: int = field(
        default_factory=lambda: int(os.getenv("NEUROLEDGER_HISTORY_PAGE_SIZE", "10"))
    )

    log_level: str = field(default_factory=lambda: os.getenv("NEUROLEDGER_LOG_LEVEL", "INFO"))

    @property
    def polling_timeout_seconds(self) -> float:
        """Longest a single polling phase can take before it times out."""
        return self.poll_interval_seconds * self.poll_max_attempts

    def validate(self) -> list[str]:
        """Validate configuration and return list of errors."""
        errors = []

        if not self.api_base_url.startswith(("http://", "https://")):
            errors.append("NEUROLEDGER_API_BASE_URL must be an http(s) URL")

        if self.poll_interval_seconds <= 0:
            errors.append("poll_interval_seconds must be positive")

        if self.poll_max_attempts < 1:
            errors.append("poll_max_attempts must be at least 1")

        if self.sandbox_timeout_seconds <= 0:
            errors.append("sandbox_timeout_seconds must be positive")

        if self.request_timeout_seconds <= 0:
            errors.append("request_timeout_seconds must be positive")

        return errors


@dataclass
class ServerConfig:
    """Configuration for the MCP server."""

    name: str = "neuroledger-prompt"
    version: str = "0.3.0"
    description: str = (
        "MCP server that submits analysis prompts to the NeuroLedger backend, "
        "tracks them to completion and renders the generated dashboards"
    )

    # Rendered HTML returned by prompt_render is truncated past this size
    max_render_chars: int = 200_000


def get_config() -> tuple[PromptClientConfig, ServerConfig]:
    """Get configuration instances."""
    return PromptClientConfig(), ServerConfig()
