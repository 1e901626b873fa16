"""
Prompt execution controller.

State machine for one analysis request:

    IDLE -> CREATING -> PROCESSING -> READY_FOR_EXECUTION -> EXECUTING -> COMPLETED
                 \\            \\                                  \\
                  +------------+---------------> FAILED <----------+

PROCESSING and EXECUTING are the polling phases; the controller owns a single
PollingEngine and never has more than one session running. Every backend
status is translated through resolve_prompt_state(), with the phase that is
currently polling as context.

Each lifecycle (create, select, reset) gets a new generation number. Any
callback or API response that belongs to an older generation is dropped, so a
prompt the user navigated away from can never change the state of the one
they are looking at now.
"""

import functools
import logging
from typing import Any, Protocol

from .common_types import (
    BackendStatus,
    ExecutionResult,
    PromptRecord,
    PromptSettings,
    PromptState,
    resolve_prompt_state,
)
from .config import PromptClientConfig
from .polling import PollingEngine, PollingTimeoutError
from .progress_callbacks import (
    CompositeProgressCallback,
    LoggingProgressCallback,
    ProgressCallback,
    ProgressEvent,
    ProgressEventType,
)

logger = logging.getLogger(__name__)


# Progress hints shown to the user; not used for any decision
PROGRESS_CREATING = 5
PROGRESS_PROCESSING = 15
PROGRESS_READY = 40
PROGRESS_EXECUTING = 60
PROGRESS_COMPLETED_SEEN = 80
PROGRESS_FETCHING_RESULTS = 85
PROGRESS_DONE = 100

FAILURE_NEXT_STEPS = (
    "Try simplifying your prompt",
    "Check if your datasets contain the requested information",
    "Select different datasets that may be more relevant",
    "Try again in a few moments, or start a new analysis",
)


class PromptValidationError(ValueError):
    """Raised before any network call when a prompt cannot be submitted."""


class PromptApi(Protocol):
    """The backend calls the controller depends on (see api_client.PromptApiClient)."""

    async def create_prompt(self, prompt: str, dataset_ids: Any, settings: PromptSettings | None = None) -> str: ...

    async def get_prompt(self, prompt_id: str) -> PromptRecord: ...

    async def execute_prompt(self, prompt_id: str, execution_options: dict[str, Any] | None = None) -> Any: ...

    async def get_prompt_results(self, prompt_id: str) -> ExecutionResult: ...


def _error_message(error: BaseException, default: str) -> str:
    message = getattr(error, "message", None) or str(error)
    return message or default


def validate_prompt_input(prompt_text: str, dataset_ids: Any) -> tuple[str, tuple[str, ...]]:
    """Check a submission and return the normalized text and dataset ids."""
    text = (prompt_text or "").strip()
    if not text:
        raise PromptValidationError("Please enter a prompt describing the analysis you want")

    if isinstance(dataset_ids, str):
        raise PromptValidationError("dataset_ids must be a list of dataset ids, not a single string")

    ids = tuple(str(d) for d in (dataset_ids or ()) if str(d).strip())
    if not ids:
        raise PromptValidationError("Please select at least one dataset")

    # Ordered set: keep first occurrence
    return text, tuple(dict.fromkeys(ids))


class PromptExecutionController:
    """Drives one prompt from submission to results."""

    def __init__(
        self,
        api: PromptApi,
        config: PromptClientConfig | None = None,
        progress_callback: ProgressCallback | None = None,
    ):
        self.api = api
        self.config = config or PromptClientConfig()
        self.callbacks = CompositeProgressCallback([progress_callback or LoggingProgressCallback()])

        self.state = PromptState.IDLE
        self.prompt: PromptRecord | None = None
        self.error: str | None = None
        self.results: ExecutionResult | None = None
        self.progress: float = 0
        self.state_history: list[PromptState] = []

        self._engine: PollingEngine[PromptRecord] = PollingEngine()
        self._generation = 0

    # ------------------------------------------------------------------
    # Read-only views
    # ------------------------------------------------------------------

    @property
    def prompt_id(self) -> str | None:
        return self.prompt.id if self.prompt else None

    @property
    def generation(self) -> int:
        return self._generation

    @property
    def polling_active(self) -> bool:
        return self._engine.active

    @property
    def poll_attempts(self) -> int:
        return self._engine.attempt_count

    @property
    def can_execute(self) -> bool:
        return self.state is PromptState.READY_FOR_EXECUTION and self.prompt_id is not None

    @property
    def next_steps(self) -> tuple[str, ...]:
        return FAILURE_NEXT_STEPS if self.state is PromptState.FAILED else ()

    def add_listener(self, callback: ProgressCallback) -> None:
        self.callbacks.add(callback)

    def remove_listener(self, callback: ProgressCallback) -> None:
        self.callbacks.remove(callback)

    def snapshot(self) -> dict[str, Any]:
        """Plain-dict view of the controller, for hosts and status tools."""
        return {
            "state": self.state.value,
            "promptId": self.prompt_id,
            "prompt": self.prompt.prompt_text if self.prompt else None,
            "datasetIds": list(self.prompt.dataset_ids) if self.prompt else [],
            "settings": self.prompt.settings.to_dict() if self.prompt else None,
            "progress": self.progress,
            "error": self.error,
            "nextSteps": list(self.next_steps),
            "hasResults": self.results is not None,
            "canExecute": self.can_execute,
            "polling": {
                "active": self.polling_active,
                "attempts": self.poll_attempts,
                "maxAttempts": self.config.poll_max_attempts,
            },
        }

    # ------------------------------------------------------------------
    # Internal state handling
    # ------------------------------------------------------------------

    def _emit(self, event_type: ProgressEventType, message: str = "") -> None:
        self.callbacks.on_progress(ProgressEvent(
            type=event_type,
            state=self.state,
            prompt_id=self.prompt_id,
            message=message,
            percentage=self.progress,
        ))

    def _is_current(self, generation: int) -> bool:
        return generation == self._generation

    def _set_progress(self, value: float) -> None:
        if value > self.progress:
            self.progress = value
            self._emit(ProgressEventType.PROGRESS)

    def _transition(self, state: PromptState, progress: float | None = None) -> None:
        if state.is_terminal:
            self._engine.stop_polling()
        self.state = state
        self.state_history.append(state)
        if progress is not None and progress > self.progress:
            self.progress = progress
        self._emit(ProgressEventType.STATE_CHANGED)

    def _fail(self, message: str) -> None:
        self._engine.stop_polling()
        self.error = message
        if self.prompt is not None:
            self.prompt.status = BackendStatus.FAILED
            self.prompt.error_message = message
        self.progress = 0
        self._transition(PromptState.FAILED)
        self._emit(ProgressEventType.ERROR, message)

    def _begin_lifecycle(self) -> int:
        """Stop whatever was running and start a fresh generation."""
        self._engine.stop_polling()
        self._generation += 1
        self.state = PromptState.IDLE
        self.prompt = None
        self.error = None
        self.results = None
        self.progress = 0
        self.state_history = []
        return self._generation

    # ------------------------------------------------------------------
    # Polling
    # ------------------------------------------------------------------

    def _start_status_polling(self, generation: int) -> None:
        prompt_id = self.prompt_id
        phase = self.state

        async def probe() -> PromptRecord:
            return await self.api.get_prompt(prompt_id)

        def is_done(record: PromptRecord) -> bool:
            return not resolve_prompt_state(record.status, phase).is_polling

        self._engine.start_polling(
            probe,
            self.config.poll_interval_seconds,
            self.config.poll_max_attempts,
            is_done,
            on_result=functools.partial(self._on_status, generation),
            on_error=functools.partial(self._on_poll_error, generation),
        )

    async def _on_status(self, generation: int, record: PromptRecord) -> None:
        if not self._is_current(generation) or self.state.is_terminal or self.prompt is None:
            return

        self.prompt.status = record.status
        next_state = resolve_prompt_state(record.status, self.state)

        if next_state is PromptState.READY_FOR_EXECUTION:
            self._transition(PromptState.READY_FOR_EXECUTION, PROGRESS_READY)
        elif next_state is PromptState.COMPLETED:
            self._set_progress(PROGRESS_COMPLETED_SEEN)
            await self._fetch_results(generation)
        elif next_state is PromptState.FAILED:
            self._fail(record.error_message or "Prompt processing failed")
        else:
            self._transition(next_state)

    async def _on_poll_error(self, generation: int, error: BaseException) -> None:
        if not self._is_current(generation) or self.state.is_terminal:
            return

        if isinstance(error, PollingTimeoutError):
            phase = "execute" if self.state is PromptState.EXECUTING else "process"
            message = (
                f"The analysis took too long to {phase} "
                f"(no result after {error.attempts} status checks). Please try again."
            )
        else:
            message = _error_message(error, "Error while checking prompt status")
        self._fail(message)

    async def _fetch_results(self, generation: int) -> ExecutionResult | None:
        prompt_id = self.prompt_id
        self._set_progress(PROGRESS_FETCHING_RESULTS)

        try:
            results = await self.api.get_prompt_results(prompt_id)
        except Exception as e:
            logger.error(f"[PROMPT] Fetching results for {prompt_id} failed: {e}")
            if self._is_current(generation):
                self._fail(_error_message(e, "Failed to get results"))
            return None

        if not self._is_current(generation):
            return None

        self.results = results
        self.prompt.status = BackendStatus.COMPLETED
        self._transition(PromptState.COMPLETED, PROGRESS_DONE)
        self._emit(ProgressEventType.RESULTS_READY)
        return results

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    async def create_prompt(
        self,
        prompt_text: str,
        dataset_ids: Any,
        settings: PromptSettings | None = None,
    ) -> str | None:
        """
        Submit a new prompt and start polling its status.

        Args:
            prompt_text: The natural-language request
            dataset_ids: Datasets to analyze (order kept, duplicates dropped)
            settings: Settings snapshot for this prompt

        Returns:
            The backend's prompt id, or None when a newer lifecycle superseded
            this one while the create call was in flight

        Raises:
            PromptValidationError: Empty text or no datasets (nothing is sent)
            Exception: The create call failed; state is FAILED with its message
        """
        text, ids = validate_prompt_input(prompt_text, dataset_ids)

        generation = self._begin_lifecycle()
        self.prompt = PromptRecord(
            prompt_text=text,
            dataset_ids=ids,
            settings=settings or PromptSettings(),
        )
        self._transition(PromptState.CREATING, PROGRESS_CREATING)

        try:
            prompt_id = await self.api.create_prompt(text, list(ids), self.prompt.settings)
        except Exception as e:
            logger.error(f"[PROMPT] Creating prompt failed: {e}")
            if self._is_current(generation):
                self._fail(_error_message(e, "Failed to create prompt"))
            raise

        if not self._is_current(generation):
            logger.info(f"[PROMPT] Prompt {prompt_id} created after its lifecycle was superseded")
            return None

        self.prompt.id = prompt_id
        self.prompt.status = BackendStatus.PROCESSING
        logger.info(f"[PROMPT] Created {prompt_id} for {len(ids)} dataset(s)")
        self._transition(PromptState.PROCESSING, PROGRESS_PROCESSING)
        self._start_status_polling(generation)
        return prompt_id

    async def execute_prompt(self, execution_options: dict[str, Any] | None = None) -> bool:
        """
        Ask the backend to run the generated code, then poll until it finishes.

        Only allowed from READY_FOR_EXECUTION; any other state is a no-op.

        Returns:
            True if execution was started
        """
        if not self.can_execute:
            logger.warning(f"[PROMPT] execute_prompt ignored in state {self.state.value}")
            return False

        generation = self._generation
        prompt_id = self.prompt_id
        self._transition(PromptState.EXECUTING, PROGRESS_EXECUTING)
        self.prompt.status = BackendStatus.PROCESSING

        try:
            await self.api.execute_prompt(prompt_id, execution_options or {})
        except Exception as e:
            logger.error(f"[PROMPT] Executing {prompt_id} failed: {e}")
            if self._is_current(generation):
                self._fail(_error_message(e, "Failed to execute prompt"))
            return False

        if not self._is_current(generation):
            return False

        self._start_status_polling(generation)
        return True

    async def get_results(self) -> ExecutionResult | None:
        """
        Fetch the final payload for the current prompt without re-running it.

        Returns:
            The results, or None if there is no prompt or the fetch failed
            (state is then FAILED)
        """
        if self.prompt_id is None:
            return None
        self._engine.stop_polling()
        return await self._fetch_results(self._generation)

    async def select_prompt(self, prompt_id: str) -> PromptState:
        """
        Switch to an existing prompt from history.

        Any running session is stopped first. A prompt the backend already
        finished goes straight to COMPLETED (results fetched) or FAILED; one
        that is still being generated resumes polling.
        """
        generation = self._begin_lifecycle()
        self.prompt = PromptRecord(prompt_text="", id=prompt_id)

        try:
            record = await self.api.get_prompt(prompt_id)
        except Exception as e:
            logger.error(f"[PROMPT] Loading {prompt_id} failed: {e}")
            if self._is_current(generation):
                self._fail(_error_message(e, "Failed to load prompt details"))
            return self.state

        if not self._is_current(generation):
            return self.state

        record.id = record.id or prompt_id
        self.prompt = record
        initial = resolve_prompt_state(record.status)

        if initial is PromptState.COMPLETED:
            await self._fetch_results(generation)
        elif initial is PromptState.FAILED:
            self._fail(record.error_message or "Prompt processing failed")
        elif initial is PromptState.READY_FOR_EXECUTION:
            self._transition(PromptState.READY_FOR_EXECUTION, PROGRESS_READY)
        else:
            self._transition(PromptState.PROCESSING, PROGRESS_PROCESSING)
            self._start_status_polling(generation)

        return self.state

    def reset(self) -> None:
        """Stop polling and return to IDLE. Synchronous; nothing in flight survives it."""
        self._begin_lifecycle()
        self._emit(ProgressEventType.STATE_CHANGED)

    async def wait(self) -> None:
        """Wait until the current polling session (and any result fetch it started) ends."""
        await self._engine.wait()

    async def close(self) -> None:
        """Tear down: stop polling and drop anything still in flight."""
        self._engine.stop_polling()
        self._generation += 1
