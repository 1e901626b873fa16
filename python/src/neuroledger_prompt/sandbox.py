"""
Execution sandbox for generated dashboard code.

Generated code runs with exactly three bindings plus a small builtins
allow-list:

- container: a ContainerHandle onto the render container
- data:      a deep copy of the result data, in whatever shape the backend sent
- console:   a SandboxConsole (log/info/warn/error)

The code runs on a daemon worker thread while the event loop enforces a
wall-clock timeout. A thread cannot be killed from outside, so a runaway
render keeps its thread until it returns; its container handle is detached
as soon as the attempt is abandoned and every later write is refused.
"""

import asyncio
import copy
import logging
import threading
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Optional

from .rendering import ContainerHandle, RenderContainer, render_static_fallback
from .sandbox_security import UnsafeCodeError, safe_builtins, strip_markdown_fences, validate_code

logger = logging.getLogger(__name__)
generated_logger = logging.getLogger("neuroledger_prompt.sandbox.generated")

DEFAULT_TIMEOUT_SECONDS = 10.0
MAX_CONSOLE_ENTRIES = 200

NO_CONTENT_MESSAGE = "No code or data available to render"


class SandboxTimeoutError(TimeoutError):
    """Generated code did not finish within the render timeout."""

    def __init__(self, timeout_seconds: float):
        self.timeout_seconds = timeout_seconds
        super().__init__(f"Dashboard code did not finish within {timeout_seconds:g}s")


class SandboxRenderError(Exception):
    """Nothing could be rendered (no code and no visualizations)."""


class RenderStatus(Enum):
    SUCCESS = "success"
    FALLBACK = "fallback"
    ERROR = "error"
    TIMEOUT = "timeout"
    SUPERSEDED = "superseded"


@dataclass
class RenderOutcome:
    """What one render attempt produced."""
    status: RenderStatus
    attempt: int = 0
    error: Optional[BaseException] = None
    used_fallback: bool = False
    duration_ms: float = 0.0
    console: list[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.status in (RenderStatus.SUCCESS, RenderStatus.FALLBACK)

    @property
    def error_message(self) -> str | None:
        if self.error is None:
            return None
        return str(self.error) or type(self.error).__name__

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": self.status.value,
            "attempt": self.attempt,
            "error": self.error_message,
            "usedFallback": self.used_fallback,
            "durationMs": round(self.duration_ms, 1),
            "console": list(self.console),
        }


class SandboxConsole:
    """Logging surface handed to generated code."""

    __slots__ = ("_entries", "_lock")

    def __init__(self):
        self._entries: list[str] = []
        self._lock = threading.Lock()

    def _write(self, level: int, label: str, args: tuple) -> None:
        message = " ".join(str(a) for a in args)
        generated_logger.log(level, f"[SANDBOX] {message}")
        with self._lock:
            if len(self._entries) < MAX_CONSOLE_ENTRIES:
                self._entries.append(f"{label}: {message}")

    def log(self, *args: Any) -> None:
        self._write(logging.INFO, "log", args)

    info = log

    def debug(self, *args: Any) -> None:
        self._write(logging.DEBUG, "debug", args)

    def warn(self, *args: Any) -> None:
        self._write(logging.WARNING, "warn", args)

    warning = warn

    def error(self, *args: Any) -> None:
        self._write(logging.ERROR, "error", args)

    @property
    def entries(self) -> list[str]:
        with self._lock:
            return list(self._entries)


def _resolve(loop: asyncio.AbstractEventLoop, future: asyncio.Future, error: BaseException | None) -> None:
    def settle() -> None:
        if future.done():
            return
        if error is None:
            future.set_result(None)
        else:
            future.set_exception(error)

    try:
        loop.call_soon_threadsafe(settle)
    except RuntimeError:
        # Loop already closed; nobody is waiting for this attempt
        logger.debug("[SANDBOX] Render finished after its event loop closed")


class CodeExecutionSandbox:
    """
    Runs generated code against a RenderContainer.

    render() never raises; every outcome is reported as a RenderOutcome and,
    for failures, through `on_render_error`.
    """

    def __init__(
        self,
        container: RenderContainer | None = None,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        on_render_error: Callable[[BaseException], Any] | None = None,
        on_render_success: Callable[[RenderOutcome], Any] | None = None,
    ):
        self.container = container or RenderContainer()
        self.timeout_seconds = timeout_seconds
        self.on_render_error = on_render_error
        self.on_render_success = on_render_success
        self.last_outcome: RenderOutcome | None = None
        self._last_code: str | None = None
        self._last_data: Any = None
        self._last_fallback: dict[str, Any] | None = None
        self._attempt = 0

    @property
    def html(self) -> str:
        return self.container.to_html()

    @property
    def attempt(self) -> int:
        return self._attempt

    def teardown(self) -> None:
        """Detach the current attempt's handle and empty the container."""
        self.container.release()
        self.container.clear()

    def close(self) -> None:
        self._attempt += 1
        self.teardown()

    async def retry(self) -> RenderOutcome:
        """Render the last code/data again without contacting the backend."""
        return await self.render(self._last_code, self._last_data, fallback=self._last_fallback)

    async def render(
        self,
        code: str | None,
        data: Any,
        fallback: dict[str, Any] | None = None,
    ) -> RenderOutcome:
        """
        Run `code` with `data` bound as-is (deep-copied).

        Args:
            code: Generated dashboard code
            data: Payload the code reads; any JSON-like structure
            fallback: `visualizations` and `insights` shown as static cards
                when there is no code or the code fails
        """
        self.teardown()
        self._attempt += 1
        attempt = self._attempt
        self._last_code = code
        self._last_data = data
        self._last_fallback = fallback
        fallback = fallback or {}
        started = time.monotonic()

        if not code or not code.strip():
            if fallback.get("visualizations"):
                render_static_fallback(self.container, fallback)
                logger.info("[SANDBOX] No code supplied, rendered static fallback")
                outcome = RenderOutcome(RenderStatus.FALLBACK, attempt, used_fallback=True)
                return self._finish(outcome, started)
            error = SandboxRenderError(NO_CONTENT_MESSAGE)
            self._notify_error(error)
            return self._finish(RenderOutcome(RenderStatus.ERROR, attempt, error=error), started)

        console = SandboxConsole()
        lease = self.container.lease()
        try:
            compiled = self._prepare(code)
            bindings = {
                "__builtins__": safe_builtins(console.log),
                "container": ContainerHandle(self.container, lease),
                "data": copy.deepcopy({} if data is None else data),
                "console": console,
            }
            await asyncio.wait_for(self._run_in_thread(compiled, bindings), self.timeout_seconds)
        except asyncio.TimeoutError:
            lease.revoke()
            if attempt != self._attempt:
                return RenderOutcome(RenderStatus.SUPERSEDED, attempt, console=console.entries)
            error = SandboxTimeoutError(self.timeout_seconds)
            logger.warning(f"[SANDBOX] Attempt {attempt}: {error}")
            return self._finish(self._fail(RenderStatus.TIMEOUT, attempt, error, fallback, console), started)
        except Exception as e:
            lease.revoke()
            if attempt != self._attempt:
                return RenderOutcome(RenderStatus.SUPERSEDED, attempt, console=console.entries)
            logger.warning(f"[SANDBOX] Attempt {attempt} failed: {type(e).__name__}: {e}")
            return self._finish(self._fail(RenderStatus.ERROR, attempt, e, fallback, console), started)

        lease.revoke()
        if attempt != self._attempt:
            return RenderOutcome(RenderStatus.SUPERSEDED, attempt, console=console.entries)
        outcome = RenderOutcome(RenderStatus.SUCCESS, attempt, console=console.entries)
        self._finish(outcome, started)
        if self.on_render_success is not None:
            try:
                self.on_render_success(outcome)
            except Exception as e:
                logger.error(f"[SANDBOX] Render success callback failed: {e}")
        return outcome

    def _prepare(self, code: str):
        source = strip_markdown_fences(code)
        is_safe, errors, syntax_error = validate_code(source)
        if syntax_error is not None:
            raise syntax_error
        if not is_safe:
            raise UnsafeCodeError(errors)
        return compile(source, "<dashboard>", "exec")

    async def _run_in_thread(self, compiled, bindings: dict[str, Any]) -> None:
        loop = asyncio.get_running_loop()
        future = loop.create_future()

        def worker() -> None:
            try:
                exec(compiled, bindings)
            except Exception as e:
                _resolve(loop, future, e)
            else:
                _resolve(loop, future, None)

        thread = threading.Thread(target=worker, name=f"sandbox-render-{self._attempt}", daemon=True)
        thread.start()
        await future

    def _fail(
        self,
        status: RenderStatus,
        attempt: int,
        error: BaseException,
        fallback: dict[str, Any],
        console: SandboxConsole,
    ) -> RenderOutcome:
        self.container.clear()
        self._notify_error(error)
        used_fallback = False
        if fallback.get("visualizations"):
            render_static_fallback(self.container, fallback)
            used_fallback = True
        return RenderOutcome(
            status, attempt, error=error, used_fallback=used_fallback, console=console.entries,
        )

    def _notify_error(self, error: BaseException) -> None:
        if self.on_render_error is None:
            return
        try:
            self.on_render_error(error)
        except Exception as e:
            logger.error(f"[SANDBOX] Render error callback failed: {e}")

    def _finish(self, outcome: RenderOutcome, started: float) -> RenderOutcome:
        outcome.duration_ms = (time.monotonic() - started) * 1000
        self.last_outcome = outcome
        return outcome
