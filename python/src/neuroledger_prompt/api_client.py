"""
REST client for the NeuroLedger prompt backend.

Endpoints used:
- POST /prompts                 create a prompt
- GET  /prompts/{id}            prompt status
- POST /prompts/{id}/execute    start executing generated code
- GET  /prompts/{id}/results    final code, data, visualizations, insights
- GET  /prompts?limit&page      prompt history

Responses arrive wrapped as {"success": ..., "data": {...}}; the client
unwraps the envelope. Calls are never retried here: a failed create or
execute must surface to the caller, and status polling has its own bounded
re-poll loop.
"""

import logging
from typing import Any

import httpx

from .common_types import ExecutionResult, PromptRecord, PromptSettings
from .config import PromptClientConfig

logger = logging.getLogger(__name__)


GENERIC_ERROR_MESSAGE = "The analysis service could not complete the request"


class PromptApiError(Exception):
    """Raised when a backend call fails (transport error or non-2xx response)."""

    def __init__(self, message: str, status_code: int | None = None, code: str | None = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.code = code


def _error_from_response(response: httpx.Response) -> PromptApiError:
    """Build a PromptApiError, preferring the message the server sent."""
    message = None
    code = None
    try:
        body = response.json()
    except ValueError:
        body = None

    if isinstance(body, dict):
        error = body.get("error")
        if isinstance(error, dict):
            message = error.get("message")
            code = error.get("code")
        elif isinstance(error, str):
            message = error
        message = message or body.get("message")

    if not message:
        message = f"{GENERIC_ERROR_MESSAGE} (HTTP {response.status_code})"
    return PromptApiError(message, status_code=response.status_code, code=code)


class PromptApiClient:
    """Async client for the prompt endpoints."""

    def __init__(
        self,
        config: PromptClientConfig | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.config = config or PromptClientConfig()

        headers = {"Content-Type": "application/json"}
        if self.config.auth_token:
            headers["Authorization"] = f"Bearer {self.config.auth_token}"

        self._http_client = httpx.AsyncClient(
            base_url=self.config.api_base_url.rstrip("/"),
            headers=headers,
            timeout=httpx.Timeout(self.config.request_timeout_seconds),
            transport=transport,
        )

    async def close(self) -> None:
        """Close the HTTP client and cleanup resources."""
        await self._http_client.aclose()

    def set_auth_token(self, token: str | None) -> None:
        """Swap the bearer token (the identity provider refreshes it out of band)."""
        if token:
            self._http_client.headers["Authorization"] = f"Bearer {token}"
        else:
            self._http_client.headers.pop("Authorization", None)

    async def _request(self, method: str, path: str, **kwargs: Any) -> dict[str, Any]:
        try:
            response = await self._http_client.request(method, path, **kwargs)
        except httpx.HTTPError as e:
            logger.warning(f"[API] {method} {path} failed: {type(e).__name__}: {e}")
            raise PromptApiError(f"Could not reach the analysis service: {e}") from e

        if response.is_error:
            error = _error_from_response(response)
            logger.warning(f"[API] {method} {path} -> {response.status_code}: {error.message}")
            raise error

        if not response.content:
            return {}
        try:
            body = response.json()
        except ValueError as e:
            raise PromptApiError(
                "The analysis service returned an unreadable response",
                status_code=response.status_code,
            ) from e

        if isinstance(body, dict) and isinstance(body.get("data"), dict):
            return body["data"]
        return body if isinstance(body, dict) else {}

    async def create_prompt(
        self,
        prompt: str,
        dataset_ids: list[str] | tuple[str, ...],
        settings: PromptSettings | None = None,
    ) -> str:
        """Create a prompt and return the id the backend assigned."""
        payload = {
            "prompt": prompt,
            "datasetIds": list(dataset_ids),
            "settings": (settings or PromptSettings()).to_dict(),
        }
        data = await self._request("POST", "/prompts", json=payload)
        prompt_id = data.get("promptId") or data.get("id")
        if not prompt_id:
            raise PromptApiError("The analysis service did not return a prompt id")
        return str(prompt_id)

    async def get_prompt(self, prompt_id: str) -> PromptRecord:
        data = await self._request("GET", f"/prompts/{prompt_id}")
        data.setdefault("id", prompt_id)
        try:
            return PromptRecord.from_api(data)
        except ValueError as e:
            raise PromptApiError(str(e)) from e

    async def execute_prompt(
        self,
        prompt_id: str,
        execution_options: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        return await self._request(
            "POST",
            f"/prompts/{prompt_id}/execute",
            json={"executionOptions": execution_options or {}},
        )

    async def get_prompt_results(self, prompt_id: str) -> ExecutionResult:
        data = await self._request("GET", f"/prompts/{prompt_id}/results")
        return ExecutionResult.from_api(data)

    async def list_prompts(self, limit: int = 10, page: int = 1) -> list[PromptRecord]:
        data = await self._request("GET", "/prompts", params={"limit": limit, "page": page})
        records = []
        for entry in data.get("prompts", []):
            try:
                records.append(PromptRecord.from_api(entry))
            except ValueError as e:
                logger.warning(f"[API] Skipping malformed prompt entry: {e}")
        return records
