"""
Tests for the REST client.

Uses httpx.MockTransport so no network is involved.
"""

import json

import httpx
import pytest
import pytest_asyncio

from neuroledger_prompt.api_client import GENERIC_ERROR_MESSAGE, PromptApiClient, PromptApiError
from neuroledger_prompt.common_types import BackendStatus, PromptSettings


class Backend:
    """Records requests and answers from a route table."""

    def __init__(self):
        self.requests: list[httpx.Request] = []
        self.routes: dict[tuple[str, str], tuple[int, object]] = {}

    def route(self, method: str, path: str, status_code: int = 200, body=None) -> None:
        self.routes[(method, path)] = (status_code, body)

    def handle(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        key = (request.method, request.url.path)
        if key not in self.routes:
            return httpx.Response(404, json={"success": False, "error": {"message": "Not found"}})
        status_code, body = self.routes[key]
        if body is None:
            return httpx.Response(status_code)
        return httpx.Response(status_code, json=body)


@pytest.fixture
def backend() -> Backend:
    return Backend()


@pytest_asyncio.fixture
async def api(backend, client_config):
    client = PromptApiClient(client_config, transport=httpx.MockTransport(backend.handle))
    yield client
    await client.close()


class TestCreatePrompt:
    """POST /prompts"""

    @pytest.mark.asyncio
    async def test_create_prompt(self, api, backend):
        """Test the request body, auth header and returned id."""
        backend.route("POST", "/api/v1/prompts", 201, {"success": True, "data": {"promptId": "p_42"}})

        prompt_id = await api.create_prompt(
            "show revenue by month", ["ds_1"], PromptSettings(display_currency="EUR"),
        )

        assert prompt_id == "p_42"
        request = backend.requests[0]
        assert request.headers["Authorization"] == "Bearer test-token"
        body = json.loads(request.content)
        assert body["prompt"] == "show revenue by month"
        assert body["datasetIds"] == ["ds_1"]
        assert body["settings"]["displayCurrency"] == "EUR"
        assert body["settings"]["visualizationType"] == "auto"

    @pytest.mark.asyncio
    async def test_missing_prompt_id(self, api, backend):
        """Test that a response without an id is an error."""
        backend.route("POST", "/api/v1/prompts", 201, {"success": True, "data": {}})

        with pytest.raises(PromptApiError, match="did not return a prompt id"):
            await api.create_prompt("show revenue by month", ["ds_1"])


class TestErrors:
    """Error responses and transport failures."""

    @pytest.mark.asyncio
    async def test_server_message_preferred(self, api, backend):
        """Test that the server's error message is surfaced."""
        backend.route("POST", "/api/v1/prompts", 400, {
            "success": False,
            "error": {"message": "Dataset ds_9 does not exist", "code": "DATASET_NOT_FOUND"},
        })

        with pytest.raises(PromptApiError) as exc_info:
            await api.create_prompt("show revenue by month", ["ds_9"])

        assert exc_info.value.message == "Dataset ds_9 does not exist"
        assert exc_info.value.status_code == 400
        assert exc_info.value.code == "DATASET_NOT_FOUND"

    @pytest.mark.asyncio
    async def test_generic_message_without_body(self, api, backend):
        """Test the fallback message when the server sends no error body."""
        backend.route("GET", "/api/v1/prompts/p_1", 502)

        with pytest.raises(PromptApiError) as exc_info:
            await api.get_prompt("p_1")

        assert exc_info.value.message == f"{GENERIC_ERROR_MESSAGE} (HTTP 502)"
        assert exc_info.value.status_code == 502

    @pytest.mark.asyncio
    async def test_transport_error(self, client_config):
        """Test that connection failures become PromptApiError."""
        def refuse(request):
            raise httpx.ConnectError("connection refused", request=request)

        client = PromptApiClient(client_config, transport=httpx.MockTransport(refuse))
        try:
            with pytest.raises(PromptApiError, match="Could not reach"):
                await client.get_prompt("p_1")
        finally:
            await client.close()


class TestStatusAndResults:
    """GET /prompts/{id}, /execute and /results"""

    @pytest.mark.asyncio
    async def test_get_prompt(self, api, backend):
        """Test parsing a prompt status payload."""
        backend.route("GET", "/api/v1/prompts/p_1", 200, {"success": True, "data": {
            "_id": "p_1",
            "prompt": "show revenue by month",
            "status": "failed",
            "error": {"message": "Code generation failed"},
            "datasetIds": ["ds_1"],
            "created": "2024-05-01T10:00:00Z",
        }})

        record = await api.get_prompt("p_1")

        assert record.id == "p_1"
        assert record.status is BackendStatus.FAILED
        assert record.error_message == "Code generation failed"
        assert record.dataset_ids == ("ds_1",)

    @pytest.mark.asyncio
    async def test_unknown_status_rejected(self, api, backend):
        """Test that a status outside the vocabulary is an API error."""
        backend.route("GET", "/api/v1/prompts/p_1", 200, {"success": True, "data": {"status": "queued"}})

        with pytest.raises(PromptApiError, match="queued"):
            await api.get_prompt("p_1")

    @pytest.mark.asyncio
    async def test_execute_prompt(self, api, backend):
        """Test that execution options are wrapped in executionOptions."""
        backend.route("POST", "/api/v1/prompts/p_1/execute", 202, {"success": True, "data": {}})

        await api.execute_prompt("p_1", {"timeout": 30})

        assert json.loads(backend.requests[0].content) == {"executionOptions": {"timeout": 30}}

    @pytest.mark.asyncio
    async def test_get_results(self, api, backend):
        """Test parsing the final payload."""
        backend.route("GET", "/api/v1/prompts/p_1/results", 200, {"success": True, "data": {
            "code": "container.append('p', 'ok')",
            "data": {"revenue": [1, 2]},
            "visualizations": [{"title": "Revenue"}],
            "insights": ["Up 10%"],
        }})

        results = await api.get_prompt_results("p_1")

        assert results.code == "container.append('p', 'ok')"
        assert results.data == {"revenue": [1, 2]}
        assert results.fallback_payload() == {
            "visualizations": [{"title": "Revenue"}],
            "insights": ["Up 10%"],
        }

    @pytest.mark.asyncio
    async def test_get_results_with_row_list(self, api, backend):
        """Test that list-shaped data comes through unchanged."""
        rows = [
            {"month": "Jan", "revenue": 1200, "region": "EU"},
            {"month": "Feb", "revenue": 1350, "region": "EU"},
        ]
        backend.route("GET", "/api/v1/prompts/p_1/results", 200, {"success": True, "data": {
            "code": "container.append('p', len(data))",
            "data": rows,
        }})

        results = await api.get_prompt_results("p_1")

        assert results.data == rows


class TestListPrompts:
    """GET /prompts"""

    @pytest.mark.asyncio
    async def test_list_prompts(self, api, backend):
        """Test paging parameters and skipping malformed entries."""
        backend.route("GET", "/api/v1/prompts", 200, {"success": True, "data": {"prompts": [
            {"id": "p_2", "prompt": "headcount by team", "status": "completed"},
            {"id": "p_x", "prompt": "broken", "status": "unheard-of"},
            {"id": "p_1", "prompt": "revenue", "status": "processing"},
        ]}})

        records = await api.list_prompts(limit=5, page=2)

        assert [r.id for r in records] == ["p_2", "p_1"]
        params = backend.requests[0].url.params
        assert params["limit"] == "5"
        assert params["page"] == "2"

    @pytest.mark.asyncio
    async def test_set_auth_token(self, api, backend):
        """Test swapping and clearing the bearer token."""
        backend.route("GET", "/api/v1/prompts", 200, {"success": True, "data": {"prompts": []}})

        api.set_auth_token("refreshed")
        await api.list_prompts()
        api.set_auth_token(None)
        await api.list_prompts()

        assert backend.requests[0].headers["Authorization"] == "Bearer refreshed"
        assert "Authorization" not in backend.requests[1].headers
