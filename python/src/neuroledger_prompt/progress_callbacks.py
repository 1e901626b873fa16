"""
Progress callbacks for prompt execution.

The controller reports every state transition, progress change and failure
through a ProgressCallback. Hosts plug in their own callback to refresh what
the user sees; the default one logs.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional

from .common_types import PromptState

logger = logging.getLogger(__name__)


class ProgressEventType(Enum):
    """Types of progress events during a prompt lifecycle."""
    STATE_CHANGED = "state_changed"
    PROGRESS = "progress"
    RESULTS_READY = "results_ready"
    ERROR = "error"


@dataclass
class ProgressEvent:
    """A progress update event."""
    type: ProgressEventType
    state: PromptState
    prompt_id: str | None = None
    message: str = ""
    percentage: float = 0.0


class ProgressCallback:
    """Base class for progress callbacks."""

    def on_progress(self, event: ProgressEvent) -> None:
        """Handle a progress event."""
        raise NotImplementedError


class LoggingProgressCallback(ProgressCallback):
    """Logs progress events."""

    def on_progress(self, event: ProgressEvent) -> None:
        if event.type == ProgressEventType.STATE_CHANGED:
            logger.info(f"[PROGRESS] {event.prompt_id or '-'} -> {event.state.value} ({event.percentage:.0f}%)")
        elif event.type == ProgressEventType.PROGRESS:
            logger.debug(f"[PROGRESS] {event.prompt_id or '-'} at {event.percentage:.0f}%")
        elif event.type == ProgressEventType.RESULTS_READY:
            logger.info(f"[PROGRESS] Results ready for {event.prompt_id}")
        elif event.type == ProgressEventType.ERROR:
            logger.error(f"[PROGRESS] {event.prompt_id or '-'} failed: {event.message}")


class FunctionProgressCallback(ProgressCallback):
    """Adapts a plain function to the callback interface."""

    def __init__(self, func: Callable[[ProgressEvent], None]):
        self.func = func

    def on_progress(self, event: ProgressEvent) -> None:
        self.func(event)


class CompositeProgressCallback(ProgressCallback):
    """Fans events out to several callbacks, in registration order."""

    def __init__(self, callbacks: Optional[list[ProgressCallback]] = None):
        self.callbacks: list[ProgressCallback] = list(callbacks or [])

    def add(self, callback: ProgressCallback) -> None:
        self.callbacks.append(callback)

    def remove(self, callback: ProgressCallback) -> None:
        if callback in self.callbacks:
            self.callbacks.remove(callback)

    def on_progress(self, event: ProgressEvent) -> None:
        for callback in list(self.callbacks):
            callback.on_progress(event)
