"""
Prompt collection store.

Keeps the user's prompt history, the selected prompt and the current
settings, and mirrors the controller's state onto the matching history entry.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Protocol

from .common_types import BackendStatus, PromptRecord, PromptSettings, PromptState, summary_status_for_state
from .controller import PromptExecutionController, validate_prompt_input
from .progress_callbacks import FunctionProgressCallback, ProgressEvent, ProgressEventType

logger = logging.getLogger(__name__)


class PromptHistoryApi(Protocol):
    async def list_prompts(self, limit: int = 10, page: int = 1) -> list[PromptRecord]: ...


class PromptCollectionStore:
    """History of prompts plus selection and settings."""

    def __init__(
        self,
        api: PromptHistoryApi,
        controller: PromptExecutionController,
        settings: PromptSettings | None = None,
        page_size: int = 10,
    ):
        self.api = api
        self.controller = controller
        self.settings = settings or PromptSettings()
        self.page_size = page_size

        self.prompts: list[PromptRecord] = []
        self.loading = False
        self.error: str | None = None
        self.selected_prompt_id: str | None = None

        self._listener = FunctionProgressCallback(self._on_controller_event)
        controller.add_listener(self._listener)

    def get(self, prompt_id: str) -> PromptRecord | None:
        for record in self.prompts:
            if record.id == prompt_id:
                return record
        return None

    def summaries(self) -> list[dict[str, Any]]:
        return [record.to_summary() for record in self.prompts]

    async def load_prompts(self, limit: int | None = None, page: int = 1) -> list[PromptRecord]:
        """
        Reload the history from the backend.

        Failures are kept in `error` and leave the previous list in place.
        """
        self.loading = True
        self.error = None
        try:
            self.prompts = await self.api.list_prompts(limit=limit or self.page_size, page=page)
        except Exception as e:
            logger.error(f"[PROMPT] Loading prompt history failed: {e}")
            self.error = getattr(e, "message", None) or str(e) or "Failed to load prompts"
        finally:
            self.loading = False
        return self.prompts

    async def select_prompt(self, prompt_id: str) -> PromptState:
        """Make `prompt_id` the current prompt. Re-selecting it does nothing."""
        if prompt_id == self.selected_prompt_id:
            return self.controller.state
        self.selected_prompt_id = prompt_id
        return await self.controller.select_prompt(prompt_id)

    async def create_new_prompt(self, prompt_text: str, dataset_ids: Any) -> str | None:
        """
        Submit a prompt with the current settings and add it to the history.

        Raises:
            PromptValidationError: Empty text or no datasets
            Exception: Whatever the create call raised
        """
        text, ids = validate_prompt_input(prompt_text, dataset_ids)
        settings = self.settings

        prompt_id = await self.controller.create_prompt(text, ids, settings)
        if prompt_id is None:
            return None

        # The controller is already past CREATING; start the entry where it is
        status = summary_status_for_state(self.controller.state) or BackendStatus.CREATED
        self.prompts.insert(0, PromptRecord(
            prompt_text=text,
            dataset_ids=ids,
            settings=settings,
            id=prompt_id,
            status=status,
            created=datetime.now(timezone.utc).isoformat(),
        ))
        self.selected_prompt_id = prompt_id
        return prompt_id

    def update_settings(self, **changes: Any) -> PromptSettings:
        """Merge `changes` into the settings used for future prompts."""
        self.settings = self.settings.updated(**changes)
        return self.settings

    def detach(self) -> None:
        self.controller.remove_listener(self._listener)

    def _on_controller_event(self, event: ProgressEvent) -> None:
        if event.type is not ProgressEventType.STATE_CHANGED or event.prompt_id is None:
            return
        status = summary_status_for_state(event.state)
        record = self.get(event.prompt_id)
        if status is None or record is None:
            return
        record.status = status
        if status is BackendStatus.FAILED:
            record.error_message = self.controller.error
