"""
Pytest configuration and fixtures for the NeuroLedger prompt client tests.
"""

from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest

from neuroledger_prompt.common_types import BackendStatus, ExecutionResult, PromptRecord
from neuroledger_prompt.config import PromptClientConfig
from neuroledger_prompt.controller import PromptExecutionController
from neuroledger_prompt.progress_callbacks import FunctionProgressCallback, ProgressEvent


def build_record(status: str, prompt_id: str = "p_1", **overrides: Any) -> PromptRecord:
    """Build a PromptRecord the way the backend would report it."""
    record = PromptRecord(
        prompt_text=overrides.pop("prompt_text", "show revenue by month"),
        dataset_ids=tuple(overrides.pop("dataset_ids", ("ds_1",))),
        id=prompt_id,
        status=BackendStatus(status),
    )
    for key, value in overrides.items():
        setattr(record, key, value)
    return record


@pytest.fixture
def make_record():
    """Factory for backend prompt records."""
    return build_record


@pytest.fixture
def client_config() -> PromptClientConfig:
    """Configuration with fast polling for tests."""
    return PromptClientConfig(
        api_base_url="http://testserver/api/v1",
        auth_token="test-token",
        request_timeout_seconds=5,
        poll_interval_seconds=0.01,
        poll_max_attempts=5,
        sandbox_timeout_seconds=1.0,
        history_page_size=10,
    )


@pytest.fixture
def fake_api() -> MagicMock:
    """Stand-in for PromptApiClient with every call mocked."""
    api = MagicMock()
    api.create_prompt = AsyncMock(return_value="p_1")
    api.get_prompt = AsyncMock(return_value=build_record("processing"))
    api.execute_prompt = AsyncMock(return_value={})
    api.get_prompt_results = AsyncMock()
    api.list_prompts = AsyncMock(return_value=[])
    api.close = AsyncMock()
    return api


@pytest.fixture
def events() -> list[ProgressEvent]:
    """Progress events recorded by the `controller` fixture."""
    return []


@pytest.fixture
def controller(fake_api: MagicMock, client_config: PromptClientConfig, events: list) -> PromptExecutionController:
    """Controller wired to the fake API, recording its progress events."""
    return PromptExecutionController(
        fake_api,
        client_config,
        progress_callback=FunctionProgressCallback(events.append),
    )


@pytest.fixture
def sample_results() -> ExecutionResult:
    """A completed prompt's payload."""
    return ExecutionResult(
        code=(
            "container.append('h2', 'Revenue by month')\n"
            "table = container.append('table', class_='revenue')\n"
            "for month, value in zip(data['months'], data['revenue']):\n"
            "    row = table.append('tr')\n"
            "    row.append('td', month)\n"
            "    row.append('td', value)\n"
        ),
        data={"months": ["Jan", "Feb", "Mar"], "revenue": [1200, 1350, 1810]},
        visualizations=[
            {"title": "Revenue by month", "type": "bar", "description": "Monthly revenue for Q1"},
        ],
        insights=["Revenue grew every month", {"text": "March was the strongest month"}],
    )
