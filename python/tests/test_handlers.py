"""
Tests for the MCP tool handlers.

Handlers get their collaborators through `get_instances`, so the tests wire
a real controller, store and sandbox around the fake API.
"""

import json
from types import SimpleNamespace

import pytest

from neuroledger_prompt.api_client import PromptApiError
from neuroledger_prompt.common_types import ExecutionResult
from neuroledger_prompt.config import ServerConfig
from neuroledger_prompt.handlers import (
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
from neuroledger_prompt.prompt_store import PromptCollectionStore
from neuroledger_prompt.sandbox import CodeExecutionSandbox
from neuroledger_prompt.server import create_server
from neuroledger_prompt.utils import MetricsCollector


@pytest.fixture
def instances(client_config, fake_api, controller):
    return SimpleNamespace(
        client_config=client_config,
        server_config=ServerConfig(),
        api=fake_api,
        controller=controller,
        store=PromptCollectionStore(fake_api, controller, page_size=client_config.history_page_size),
        sandbox=CodeExecutionSandbox(timeout_seconds=client_config.sandbox_timeout_seconds),
    )


@pytest.fixture
def get_instances(instances):
    return lambda: instances


def _json(result) -> dict:
    assert len(result) == 1
    return json.loads(result[0].text)


class TestPromptCreate:
    """prompt_create"""

    @pytest.mark.asyncio
    @pytest.mark.parametrize("arguments, message", [
        ({"prompt": "show revenue", "dataset_ids": []}, "at least one dataset"),
        ({"prompt": "   ", "dataset_ids": ["ds_1"]}, "enter a prompt"),
        ({"prompt": 42, "dataset_ids": ["ds_1"]}, "must be a string"),
        ({"prompt": "show revenue", "dataset_ids": "ds_1"}, "list of strings"),
        ({"prompt": "x" * 10_001, "dataset_ids": ["ds_1"]}, "too long"),
    ])
    async def test_invalid_arguments(self, get_instances, fake_api, arguments, message):
        """Test that bad input is reported without calling the backend."""
        result = await handle_prompt_create(arguments, get_instances)

        assert result[0].text.startswith("Error:")
        assert message in result[0].text
        fake_api.create_prompt.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_create_and_wait(self, get_instances, fake_api, make_record):
        """Test that wait=true returns once the code is generated."""
        fake_api.get_prompt.side_effect = [make_record("processing"), make_record("generated")]

        output = _json(await handle_prompt_create(
            {"prompt": "show revenue by month", "dataset_ids": ["ds_1"], "wait": True},
            get_instances,
        ))

        assert output["promptId"] == "p_1"
        assert output["state"] == "ready_for_execution"
        assert output["canExecute"] is True
        assert "results" not in output

    @pytest.mark.asyncio
    async def test_backend_failure(self, get_instances, instances, fake_api):
        """Test that a failed create comes back as an error payload."""
        fake_api.create_prompt.side_effect = PromptApiError("Dataset ds_1 does not exist", status_code=404)

        output = _json(await handle_prompt_create(
            {"prompt": "show revenue by month", "dataset_ids": ["ds_1"]},
            get_instances,
        ))

        assert output["error"] == "Dataset ds_1 does not exist"
        assert output["state"] == "failed"
        assert instances.store.prompts == []


class TestPromptExecute:
    """prompt_execute and prompt_status"""

    @pytest.mark.asyncio
    async def test_not_ready(self, get_instances, fake_api):
        """Test that executing before the code is generated is refused."""
        result = await handle_prompt_execute({}, get_instances)

        assert "not ready for execution (state: idle)" in result[0].text
        fake_api.execute_prompt.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_execute_and_wait(self, get_instances, fake_api, make_record, sample_results):
        """Test running a ready prompt to completion."""
        fake_api.get_prompt.side_effect = [make_record("generated"), make_record("completed")]
        fake_api.get_prompt_results.return_value = sample_results
        await handle_prompt_create(
            {"prompt": "show revenue by month", "dataset_ids": ["ds_1"], "wait": True},
            get_instances,
        )

        output = _json(await handle_prompt_execute(
            {"execution_options": {"timeout": 30}, "wait": True},
            get_instances,
        ))

        fake_api.execute_prompt.assert_awaited_once_with("p_1", {"timeout": 30})
        assert output["state"] == "completed"
        assert output["results"]["visualizations"] == ["Revenue by month"]
        assert output["results"]["data"] == {"type": "object", "keys": ["months", "revenue"]}

        status = _json(await handle_prompt_status({}, get_instances))
        assert status["progress"] == 100

    @pytest.mark.asyncio
    async def test_bad_options(self, get_instances):
        """Test that execution options must be an object."""
        result = await handle_prompt_execute({"execution_options": [1]}, get_instances)

        assert result[0].text == "Error: execution_options must be an object"


class TestRender:
    """prompt_render"""

    @pytest.mark.asyncio
    async def test_nothing_to_render(self, get_instances):
        """Test rendering before any prompt completed."""
        result = await handle_prompt_render({}, get_instances)

        assert result[0].text == "Error: no results to render (state: idle)"

    @pytest.mark.asyncio
    async def test_retry_before_render(self, get_instances):
        """Test that retry needs an earlier render."""
        result = await handle_prompt_render({"retry": True}, get_instances)

        assert result[0].text == "Error: nothing has been rendered yet"

    @pytest.mark.asyncio
    async def test_render_selected_prompt(self, get_instances, instances, fake_api, make_record, sample_results):
        """Test rendering a completed prompt from the history."""
        fake_api.get_prompt.return_value = make_record("completed", prompt_id="p_7")
        fake_api.get_prompt_results.return_value = sample_results
        await handle_prompt_select({"prompt_id": "p_7"}, get_instances)

        output = _json(await handle_prompt_render({}, get_instances))

        assert output["promptId"] == "p_7"
        assert output["status"] == "success"
        assert output["truncated"] is False
        assert "<h2>Revenue by month</h2>" in output["html"]
        assert "hint" not in output

    @pytest.mark.asyncio
    async def test_failed_render_has_hint(self, get_instances, instances, fake_api, make_record, sample_results):
        """Test that a failing dashboard falls back and suggests a retry."""
        sample_results.code = "1 / 0"
        fake_api.get_prompt.return_value = make_record("completed")
        fake_api.get_prompt_results.return_value = sample_results
        await handle_prompt_select({"prompt_id": "p_1"}, get_instances)

        output = _json(await handle_prompt_render({}, get_instances))

        assert output["status"] == "error"
        assert output["usedFallback"] is True
        assert "viz-card" in output["html"]
        assert "retry=true" in output["hint"]

        retried = _json(await handle_prompt_render({"retry": True}, get_instances))
        assert retried["attempt"] == output["attempt"] + 1

    @pytest.mark.asyncio
    async def test_truncated(self, get_instances, instances, fake_api, make_record, sample_results):
        """Test that oversized HTML is cut to the configured size."""
        instances.server_config.max_render_chars = 50
        fake_api.get_prompt.return_value = make_record("completed")
        fake_api.get_prompt_results.return_value = sample_results
        await handle_prompt_select({"prompt_id": "p_1"}, get_instances)

        output = _json(await handle_prompt_render({}, get_instances))

        assert output["truncated"] is True
        assert len(output["html"]) == 50

    @pytest.mark.asyncio
    async def test_render_row_list_data(self, get_instances, fake_api, make_record):
        """Test a completed prompt whose data is a list of rows."""
        fake_api.get_prompt.return_value = make_record("completed", prompt_id="p_9")
        fake_api.get_prompt_results.return_value = ExecutionResult.from_api({
            "code": (
                "table = container.append('table')\n"
                "for row in data:\n"
                "    tr = table.append('tr')\n"
                "    tr.append('td', row['month'])\n"
                "    tr.append('td', row['revenue'])\n"
            ),
            "data": [
                {"month": "Jan", "revenue": 1200, "region": "EU"},
                {"month": "Feb", "revenue": 1350, "region": "EU"},
            ],
        })

        status = _json(await handle_prompt_select({"prompt_id": "p_9"}, get_instances))
        output = _json(await handle_prompt_render({}, get_instances))

        assert status["state"] == "completed"
        assert status["results"]["data"] == {"type": "array", "length": 2}
        assert output["status"] == "success"
        assert "<td>Feb</td><td>1350</td>" in output["html"]

    @pytest.mark.asyncio
    async def test_data_key_named_visualizations(self, get_instances, fake_api, make_record):
        """Test that the code's data and the fallback cards stay separate."""
        fake_api.get_prompt.return_value = make_record("completed")
        fake_api.get_prompt_results.return_value = ExecutionResult.from_api({
            "code": "container.append('p', data['visualizations'][0])\n1 / 0",
            "data": {"visualizations": ["Series from data"]},
            "visualizations": [{"title": "Revenue by month", "type": "bar"}],
        })
        await handle_prompt_select({"prompt_id": "p_1"}, get_instances)

        output = _json(await handle_prompt_render({}, get_instances))

        assert output["status"] == "error"
        assert output["usedFallback"] is True
        assert "Revenue by month" in output["html"]
        assert "Series from data" not in output["html"]


class TestHistoryAndSettings:
    """prompt_list, prompt_select, prompt_reset and settings_update"""

    @pytest.mark.asyncio
    async def test_list(self, get_instances, fake_api, make_record):
        """Test listing history from the backend."""
        fake_api.list_prompts.return_value = [make_record("completed", prompt_id="p_2")]

        output = _json(await handle_prompt_list({"limit": 5}, get_instances))

        fake_api.list_prompts.assert_awaited_once_with(limit=5, page=1)
        assert [p["id"] for p in output["prompts"]] == ["p_2"]
        assert output["selectedPromptId"] is None

    @pytest.mark.asyncio
    async def test_list_bad_limit(self, get_instances):
        result = await handle_prompt_list({"limit": 1000}, get_instances)

        assert result[0].text.startswith("Error: limit")

    @pytest.mark.asyncio
    async def test_select_requires_id(self, get_instances):
        result = await handle_prompt_select({}, get_instances)

        assert result[0].text == "Error: prompt_id is required"

    @pytest.mark.asyncio
    async def test_select_failed_prompt(self, get_instances, fake_api, make_record):
        """Test that selecting a failed prompt reports its error."""
        fake_api.get_prompt.return_value = make_record("failed", error_message="No data for 2019")

        output = _json(await handle_prompt_select({"prompt_id": "p_1"}, get_instances))

        assert output["state"] == "failed"
        assert output["error"] == "No data for 2019"

    @pytest.mark.asyncio
    async def test_reset(self, get_instances, instances, fake_api, make_record, sample_results):
        """Test that reset clears the prompt and the rendered dashboard."""
        fake_api.get_prompt.return_value = make_record("completed")
        fake_api.get_prompt_results.return_value = sample_results
        await handle_prompt_select({"prompt_id": "p_1"}, get_instances)
        await handle_prompt_render({}, get_instances)

        output = _json(await handle_prompt_reset({}, get_instances))

        assert output["state"] == "idle"
        assert output["promptId"] is None
        assert instances.store.selected_prompt_id is None
        assert instances.sandbox.container.is_empty

    @pytest.mark.asyncio
    async def test_settings_update(self, get_instances, instances):
        output = _json(await handle_settings_update(
            {"settings": {"visualizationType": "line", "displayCurrency": "EUR"}},
            get_instances,
        ))

        assert output["settings"]["visualizationType"] == "line"
        assert instances.store.settings.display_currency == "EUR"

    @pytest.mark.asyncio
    async def test_settings_update_invalid(self, get_instances, instances):
        result = await handle_settings_update({"settings": {"language": "xx"}}, get_instances)

        assert result[0].text.startswith("Error:")
        assert instances.store.settings.language == "en"


class TestClientStatus:
    """client_status"""

    @pytest.mark.asyncio
    async def test_status(self, get_instances):
        metrics = MetricsCollector()
        metrics.record_since("tool:prompt_status", 0.0)

        output = _json(await handle_client_status({}, get_instances, metrics))

        assert output["configuration"]["auth_token_set"] is True
        assert output["configuration"]["polling_timeout_seconds"] == pytest.approx(0.05)
        assert output["session"]["state"] == "idle"
        assert output["sandbox"]["last_outcome"] is None
        assert output["metrics"]["tool:prompt_status"]["call_count"] == 1
        assert "errors" not in output


class TestMetrics:
    """Tool call timings."""

    def test_aggregate(self):
        metrics = MetricsCollector(max_entries_per_name=2)
        for _ in range(3):
            metrics.record_since("tool:prompt_list", 0.0)
        metrics.record_since("tool:prompt_list", 0.0, success=False, error="boom")

        stats = metrics.get_stats("tool:prompt_list")

        assert stats["call_count"] == 2
        assert stats["success_rate"] == 0.5
        assert metrics.get_stats("tool:unknown") == {"name": "tool:unknown", "call_count": 0}

        metrics.clear()
        assert metrics.get_stats() == {}


def test_create_server():
    """Test that the server builds with its tools registered."""
    server = create_server()

    assert server.name == "neuroledger-prompt"
