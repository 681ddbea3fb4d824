"""WriteScheduler: coalesces dirty signals into debounced flushes.

Idle -> Scheduled on the first notify_dirty(); the timer is not re-armed by
further signals, so a burst of mutations costs one save and the first
mutation of a burst waits at most update_delay_ms. The scheduler drops back
to Idle before the save runs, so mutations made while saving schedule a
fresh flush instead of being lost.

notify_dirty() from a thread other than the event loop's is marshaled onto
the loop. Loop-thread calls stay synchronous.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import threading
from typing import Any, Callable

from docmirror.errors import SaveError

logger = logging.getLogger("docmirror.scheduler")

FlushFn = Callable[[], Any]
ErrorHandler = Callable[[SaveError], None]


class WriteScheduler:
    """Debounced, non-overlapping flushes of one document."""

    def __init__(
        self,
        flush_fn: FlushFn,
        update_delay_ms: int = 100,
        *,
        name: str = "",
        loop: asyncio.AbstractEventLoop | None = None,
        on_error: ErrorHandler | None = None,
        on_state_change: Callable[[bool], None] | None = None,
    ) -> None:
        self._flush_fn = flush_fn
        self._update_delay_ms = update_delay_ms
        self._name = name
        self._loop = loop
        self._loop_thread = threading.get_ident() if loop is not None else None
        self._on_error = on_error
        self._on_state_change = on_state_change
        self._timer: asyncio.TimerHandle | None = None
        self._dirty = False
        self._lock = asyncio.Lock()
        self._tasks: set[asyncio.Task] = set()
        self._pending = False

    # --- State ---

    @property
    def update_delay_ms(self) -> int:
        return self._update_delay_ms

    @property
    def scheduled(self) -> bool:
        """A timer is armed and will flush when it expires."""
        return self._timer is not None

    @property
    def dirty(self) -> bool:
        """The document changed since the last save started, or that save failed."""
        return self._dirty

    @property
    def pending(self) -> bool:
        """Anything left to write: a dirty document, an armed timer or a running save."""
        return self._dirty or self._timer is not None or self._lock.locked()

    # --- Signals ---

    def notify_dirty(self) -> None:
        """Mark the document dirty and arm the timer if it is not armed yet."""
        loop = self._bind_loop()
        if loop is not None and threading.get_ident() != self._loop_thread:
            loop.call_soon_threadsafe(self.notify_dirty)
            return

        self._dirty = True
        if self._timer is None:
            if loop is None:
                logger.debug("%s: no running event loop, write waits for a forced flush", self._name)
            else:
                self._timer = loop.call_later(self._update_delay_ms / 1000, self._on_timer)
                logger.debug("%s: flush scheduled in %d ms", self._name, self._update_delay_ms)
        self._update_pending()

    async def flush(self) -> bool:
        """Forced flush: cancel the armed timer and save now.

        Waits for a save already in progress. Returns False only if the
        save failed; a clean document is not saved again.
        """
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
            logger.debug("%s: pending flush forced", self._name)
        return await self._run_flush()

    async def wait_idle(self) -> None:
        """Wait for every save started by the timer to finish."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    # --- Internals ---

    def _bind_loop(self) -> asyncio.AbstractEventLoop | None:
        if self._loop is None:
            try:
                self._loop = asyncio.get_running_loop()
            except RuntimeError:
                return None
            self._loop_thread = threading.get_ident()
        if self._loop.is_closed():
            return None
        return self._loop

    def _on_timer(self) -> None:
        self._timer = None
        task = self._loop.create_task(self._run_flush())
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _run_flush(self) -> bool:
        try:
            async with self._lock:
                if not self._dirty:
                    return True
                self._dirty = False
                return await self._save()
        finally:
            self._update_pending()

    async def _save(self) -> bool:
        saved = False
        try:
            outcome = self._flush_fn()
            if inspect.isawaitable(outcome):
                outcome = await outcome
            if outcome is False:
                raise SaveError(self._name, f"storage rejected document {self._name!r}")
            saved = True
        except Exception as exc:
            error = exc if isinstance(exc, SaveError) else SaveError(self._name)
            if error is not exc:
                error.__cause__ = exc
            logger.exception("%s: save failed, will retry on next change", self._name)
            self._report(error)
        finally:
            if not saved:
                self._dirty = True
        if saved:
            logger.debug("%s: saved", self._name)
        return saved

    def _report(self, error: SaveError) -> None:
        if self._on_error is None:
            return
        try:
            self._on_error(error)
        except Exception:
            logger.exception("%s: error handler raised", self._name)

    def _update_pending(self) -> None:
        pending = self.pending
        if pending == self._pending:
            return
        self._pending = pending
        if self._on_state_change is not None:
            self._on_state_change(pending)

    def __repr__(self) -> str:
        state = "scheduled" if self.scheduled else "idle"
        return f"WriteScheduler({self._name!r}, {state}, dirty={self._dirty})"
