"""
Polling engine for long-running backend jobs.

One PollingEngine owns at most one session (one asyncio task). Each call to
start_polling() replaces the probe and completion predicate, resets the
attempt counter and bumps the session generation; anything a superseded
session produces afterwards is discarded.

Timeouts are attempt based: a session gives up after `max_attempts` probes,
i.e. after roughly interval_seconds * max_attempts.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Generic, Optional, TypeVar

logger = logging.getLogger(__name__)

R = TypeVar("R")


class PollingTimeoutError(Exception):
    """Raised (as the session error) when the attempt budget runs out."""

    def __init__(self, attempts: int, interval_seconds: float):
        self.attempts = attempts
        self.interval_seconds = interval_seconds
        super().__init__(
            f"Polling timeout - maximum attempts reached ({attempts} checks "
            f"over ~{attempts * interval_seconds:.0f}s)"
        )


@dataclass
class PollingSession:
    """Bookkeeping for the current polling session."""
    generation: int = 0
    attempt_count: int = 0
    interval_seconds: float = 2.0
    max_attempts: int = 30
    active: bool = False


class PollingEngine(Generic[R]):
    """
    Repeatedly awaits a probe until a predicate accepts its result.

    After every completed probe:
    - is_done(result) true   -> session ends, `result` set, `error` None
    - otherwise, budget left -> next probe after `interval_seconds`
    - budget exhausted       -> session ends, `error` is PollingTimeoutError
    - probe raised           -> session ends at once, `error` is the exception

    `on_result` is awaited with every accepted result, `on_error` with the
    session's error. Neither runs for a superseded session.
    """

    def __init__(self):
        self.session = PollingSession()
        self.result: Optional[R] = None
        self.error: Optional[BaseException] = None
        self._task: asyncio.Task | None = None

    @property
    def active(self) -> bool:
        return self.session.active

    @property
    def attempt_count(self) -> int:
        return self.session.attempt_count

    @property
    def generation(self) -> int:
        return self.session.generation

    def start_polling(
        self,
        probe: Callable[[], Awaitable[R]],
        interval_seconds: float,
        max_attempts: int,
        is_done: Callable[[R], bool],
        *,
        on_result: Callable[[R], Awaitable[Any]] | None = None,
        on_error: Callable[[BaseException], Awaitable[Any]] | None = None,
    ) -> asyncio.Task:
        """
        Start a new session, cancelling any session already running.

        Must be called from inside a running event loop. The first probe runs
        immediately.

        Returns:
            The task driving the session (also awaitable through wait())
        """
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")

        self._cancel_task()
        generation = self.session.generation + 1
        self.session = PollingSession(
            generation=generation,
            interval_seconds=interval_seconds,
            max_attempts=max_attempts,
            active=True,
        )
        self.result = None
        self.error = None

        logger.debug(f"[POLL] Session {generation} started (every {interval_seconds}s, max {max_attempts})")
        self._task = asyncio.get_running_loop().create_task(
            self._run(generation, probe, is_done, on_result, on_error)
        )
        return self._task

    def stop_polling(self) -> None:
        """Stop the current session. Safe to call repeatedly or when idle."""
        if self.session.active:
            logger.debug(f"[POLL] Session {self.session.generation} stopped after {self.session.attempt_count} attempts")
        self.session.active = False
        self._cancel_task()

    async def wait(self) -> None:
        """Wait for the current session (and its callbacks) to finish."""
        task = self._task
        if task is None or task is asyncio.current_task():
            return
        try:
            await asyncio.shield(task)
        except asyncio.CancelledError:
            if not task.cancelled():
                raise

    def _cancel_task(self) -> None:
        task = self._task
        self._task = None
        if task is None:
            return
        # Bump the generation so an in-flight probe cannot land in a later session
        self.session.generation += 1
        if not task.done() and task is not asyncio.current_task():
            task.cancel()

    def _is_current(self, generation: int) -> bool:
        return self.session.generation == generation and self.session.active

    async def _finish(
        self,
        generation: int,
        error: BaseException | None,
        on_error: Callable[[BaseException], Awaitable[Any]] | None,
    ) -> None:
        self.session.active = False
        self.error = error
        if error is not None and on_error is not None:
            await on_error(error)

    async def _run(
        self,
        generation: int,
        probe: Callable[[], Awaitable[R]],
        is_done: Callable[[R], bool],
        on_result: Callable[[R], Awaitable[Any]] | None,
        on_error: Callable[[BaseException], Awaitable[Any]] | None,
    ) -> None:
        session = self.session

        while True:
            try:
                result = await probe()
            except Exception as e:
                if not self._is_current(generation):
                    return
                logger.warning(f"[POLL] Probe failed on attempt {session.attempt_count + 1}: {e}")
                await self._finish(generation, e, on_error)
                return

            if not self._is_current(generation):
                return

            session.attempt_count += 1
            self.result = result

            if is_done(result):
                logger.debug(f"[POLL] Session {generation} done after {session.attempt_count} attempts")
                await self._finish(generation, None, None)
                if on_result is not None:
                    await on_result(result)
                return

            if on_result is not None:
                await on_result(result)
                if not self._is_current(generation):
                    return

            if session.attempt_count >= session.max_attempts:
                error = PollingTimeoutError(session.attempt_count, session.interval_seconds)
                logger.warning(f"[POLL] Session {generation}: {error}")
                await self._finish(generation, error, on_error)
                return

            await asyncio.sleep(session.interval_seconds)

            if not self._is_current(generation):
                return
