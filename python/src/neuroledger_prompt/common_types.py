"""
Common types for the prompt execution flow.

Contains:
- Enums: PromptState, BackendStatus
- Dataclasses: PromptSettings, PromptRecord, ExecutionResult
- The canonical backend status <-> PromptState translation
"""

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any


class PromptState(Enum):
    """Client-side lifecycle of one analysis request."""
    IDLE = "idle"
    CREATING = "creating"
    PROCESSING = "processing"
    READY_FOR_EXECUTION = "ready_for_execution"
    EXECUTING = "executing"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (PromptState.COMPLETED, PromptState.FAILED)

    @property
    def is_polling(self) -> bool:
        return self in (PromptState.PROCESSING, PromptState.EXECUTING)


class BackendStatus(Enum):
    """Status vocabulary the backend uses on the wire."""
    CREATED = "created"
    PROCESSING = "processing"
    GENERATED = "generated"
    COMPLETED = "completed"
    FAILED = "failed"

    @classmethod
    def parse(cls, value: Any) -> "BackendStatus":
        try:
            return cls(str(value).lower())
        except ValueError:
            raise ValueError(f"Unknown prompt status from backend: {value!r}") from None


_STATUS_TO_STATE = {
    BackendStatus.GENERATED: PromptState.READY_FOR_EXECUTION,
    BackendStatus.COMPLETED: PromptState.COMPLETED,
    BackendStatus.FAILED: PromptState.FAILED,
}

_STATE_TO_SUMMARY_STATUS = {
    PromptState.CREATING: BackendStatus.CREATED,
    PromptState.PROCESSING: BackendStatus.PROCESSING,
    PromptState.READY_FOR_EXECUTION: BackendStatus.GENERATED,
    PromptState.EXECUTING: BackendStatus.PROCESSING,
    PromptState.COMPLETED: BackendStatus.COMPLETED,
    PromptState.FAILED: BackendStatus.FAILED,
}


def resolve_prompt_state(
    status: BackendStatus,
    phase: PromptState = PromptState.PROCESSING,
) -> PromptState:
    """
    Translate a backend status into the client's PromptState.

    The backend reports both "generating code" and "running code" as
    `processing`, so `created`/`processing` resolve to whichever polling phase
    the caller is tracking locally (PROCESSING or EXECUTING). While executing,
    `generated` only means the backend has not picked the run up yet.

    A polling session is finished exactly when the resolved state is no
    longer a polling state.

    Args:
        status: Status reported by the backend
        phase: The polling phase currently active on the client

    Returns:
        The PromptState the controller should be in
    """
    if phase is PromptState.EXECUTING:
        if status in (BackendStatus.COMPLETED, BackendStatus.FAILED):
            return _STATUS_TO_STATE[status]
        return PromptState.EXECUTING
    if status in _STATUS_TO_STATE:
        return _STATUS_TO_STATE[status]
    return PromptState.PROCESSING


def summary_status_for_state(state: PromptState) -> BackendStatus | None:
    """Status shown in the prompt list for a controller state (None for IDLE)."""
    return _STATE_TO_SUMMARY_STATUS.get(state)


VISUALIZATION_TYPES = ("auto", "bar", "line", "pie", "table")
LANGUAGES = ("en", "es", "fr", "de", "it")
CURRENCIES = ("USD", "EUR", "GBP", "JPY", "CAD", "AUD")
MONTHS = (
    "January", "February", "March", "April", "May", "June", "July",
    "August", "September", "October", "November", "December",
)

_SETTINGS_WIRE_NAMES = {
    "visualization_type": "visualizationType",
    "include_insights": "includeInsights",
    "language": "language",
    "display_currency": "displayCurrency",
    "fiscal_year_start": "fiscalYearStart",
}


@dataclass(frozen=True)
class PromptSettings:
    """Analysis settings snapshot. Frozen so a created prompt keeps its copy."""
    visualization_type: str = "auto"
    include_insights: bool = True
    language: str = "en"
    display_currency: str = "USD"
    fiscal_year_start: str = "January"

    def __post_init__(self):
        if self.visualization_type not in VISUALIZATION_TYPES:
            raise ValueError(f"visualization_type must be one of {VISUALIZATION_TYPES}")
        if self.language not in LANGUAGES:
            raise ValueError(f"language must be one of {LANGUAGES}")
        if self.display_currency not in CURRENCIES:
            raise ValueError(f"display_currency must be one of {CURRENCIES}")
        if self.fiscal_year_start not in MONTHS:
            raise ValueError("fiscal_year_start must be a full month name")

    def updated(self, **changes: Any) -> "PromptSettings":
        """Return a copy with `changes` applied (accepts snake or camel case keys)."""
        camel_to_snake = {v: k for k, v in _SETTINGS_WIRE_NAMES.items()}
        normalized = {camel_to_snake.get(key, key): value for key, value in changes.items()}
        unknown = set(normalized) - set(_SETTINGS_WIRE_NAMES)
        if unknown:
            raise ValueError(f"Unknown settings: {', '.join(sorted(unknown))}")
        return replace(self, **normalized)

    def to_dict(self) -> dict[str, Any]:
        return {wire: getattr(self, name) for name, wire in _SETTINGS_WIRE_NAMES.items()}

    @classmethod
    def from_dict(cls, payload: dict[str, Any] | None) -> "PromptSettings":
        if not payload:
            return cls()
        known = set(_SETTINGS_WIRE_NAMES) | set(_SETTINGS_WIRE_NAMES.values())
        return cls().updated(**{k: v for k, v in payload.items() if k in known})


@dataclass
class PromptRecord:
    """A prompt as known to the client."""
    prompt_text: str
    dataset_ids: tuple[str, ...] = ()
    settings: PromptSettings = field(default_factory=PromptSettings)
    id: str | None = None
    status: BackendStatus = BackendStatus.CREATED
    created: str = ""
    error_message: str | None = None

    @property
    def has_results(self) -> bool:
        return self.status is BackendStatus.COMPLETED

    @property
    def has_error(self) -> bool:
        return self.status is BackendStatus.FAILED

    @classmethod
    def from_api(cls, payload: dict[str, Any]) -> "PromptRecord":
        """Build a record from a `GET /prompts/{id}` or list entry payload."""
        error = payload.get("error")
        if isinstance(error, dict):
            error_message = error.get("message")
        else:
            error_message = error or None

        return cls(
            id=payload.get("id") or payload.get("_id") or payload.get("promptId"),
            prompt_text=payload.get("prompt", ""),
            dataset_ids=tuple(payload.get("datasetIds") or ()),
            settings=PromptSettings.from_dict(payload.get("settings")),
            status=BackendStatus.parse(payload.get("status", "created")),
            created=payload.get("created") or payload.get("createdAt") or "",
            error_message=error_message,
        )

    def to_summary(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "prompt": self.prompt_text,
            "status": self.status.value,
            "created": self.created,
            "datasetIds": list(self.dataset_ids),
            "hasResults": self.has_results,
            "hasError": self.has_error,
        }


@dataclass
class ExecutionResult:
    """Final payload of a completed prompt."""
    code: str | None = None
    # Whatever structure the generated code expects (object, list of rows, ...)
    data: Any = field(default_factory=dict)
    visualizations: list[dict[str, Any]] = field(default_factory=list)
    insights: list[Any] = field(default_factory=list)

    @classmethod
    def from_api(cls, payload: dict[str, Any]) -> "ExecutionResult":
        data = payload.get("data")
        return cls(
            code=payload.get("code") or None,
            data={} if data is None else data,
            visualizations=list(payload.get("visualizations") or []),
            insights=list(payload.get("insights") or []),
        )

    def fallback_payload(self) -> dict[str, Any]:
        """What the static fallback renders when the code is missing or fails."""
        return {
            "visualizations": self.visualizations,
            "insights": self.insights,
        }

    def data_summary(self) -> dict[str, Any]:
        """Shape of `data` for status output."""
        if isinstance(self.data, dict):
            return {"type": "object", "keys": sorted(str(k) for k in self.data)}
        if isinstance(self.data, list):
            return {"type": "array", "length": len(self.data)}
        return {"type": type(self.data).__name__}
