"""DocumentStore: one named document mirrored in memory.

A store owns the document, the observed handle tree over it and the write
scheduler that saves it. Callers only ever touch the handle; every mutation
through it marks the store dirty and the scheduler saves a snapshot of the
whole document once the debounce window has passed.
"""

from __future__ import annotations

import asyncio
import copy
import inspect
import logging
from typing import Any, Callable

from docmirror.adapter import Document, StorageAdapter
from docmirror.errors import LoadError
from docmirror.observer import IdentityCache, observe
from docmirror.scheduler import ErrorHandler, WriteScheduler

logger = logging.getLogger("docmirror.store")


class DocumentStore:
    """A document, its observed handle and its debounced persistence."""

    def __init__(
        self,
        name: str,
        document: Document | None,
        adapter: StorageAdapter,
        update_delay_ms: int = 100,
        *,
        loop: asyncio.AbstractEventLoop | None = None,
        on_error: ErrorHandler | None = None,
        on_state_change: Callable[[DocumentStore, bool], None] | None = None,
    ) -> None:
        self._name = name
        self._adapter = adapter
        self._document: Document = copy.deepcopy(document) if document else {}
        self._on_state_change = on_state_change
        self._scheduler = WriteScheduler(
            self._save,
            update_delay_ms,
            name=name,
            loop=loop,
            on_error=on_error,
            on_state_change=self._state_changed,
        )
        self._cache = IdentityCache()
        self._handle = observe(self._document, self._scheduler.notify_dirty, self._cache)

    @classmethod
    async def open(
        cls,
        name: str,
        adapter: StorageAdapter,
        update_delay_ms: int = 100,
        *,
        on_error: ErrorHandler | None = None,
        on_state_change: Callable[[DocumentStore, bool], None] | None = None,
    ) -> DocumentStore:
        """Load name through adapter and mirror it.

        A missing document, a failing load and malformed content all start
        from an empty document.
        """
        document = await _load(name, adapter)
        return cls(
            name,
            document,
            adapter,
            update_delay_ms,
            loop=asyncio.get_running_loop(),
            on_error=on_error,
            on_state_change=on_state_change,
        )

    @property
    def name(self) -> str:
        return self._name

    @property
    def adapter(self) -> StorageAdapter:
        return self._adapter

    @property
    def handle(self):
        """The root observed handle. Mutate this, not document."""
        return self._handle

    @property
    def document(self) -> Document:
        """The underlying plain document. Changes made here are not observed."""
        return self._document

    @property
    def scheduler(self) -> WriteScheduler:
        return self._scheduler

    @property
    def pending(self) -> bool:
        return self._scheduler.pending

    async def flush(self) -> bool:
        """Save now if anything is pending. Returns False if the save failed."""
        return await self._scheduler.flush()

    def _save(self) -> Any:
        return self._adapter.save(self._name, copy.deepcopy(self._document))

    def _state_changed(self, pending: bool) -> None:
        if self._on_state_change is not None:
            self._on_state_change(self, pending)

    def __repr__(self) -> str:
        return f"DocumentStore({self._name!r}, {self._scheduler!r})"


async def _load(name: str, adapter: StorageAdapter) -> Document:
    try:
        result = adapter.load(name)
        if inspect.isawaitable(result):
            result = await result
    except Exception as exc:
        logger.warning("%s; starting empty", LoadError(name, f"failed to load document {name!r}: {exc}"), exc_info=True)
        return {}
    if result is None:
        logger.debug("%s: nothing stored, starting empty", name)
        return {}
    if not isinstance(result, dict):
        logger.warning(
            "%s; starting empty",
            LoadError(name, f"document {name!r} loaded as {type(result).__name__}, expected dict"),
        )
        return {}
    return result
