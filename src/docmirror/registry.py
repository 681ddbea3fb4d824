"""StoreRegistry: creates document stores and flushes them at shutdown.

The registry holds stores weakly, so dropping every reference to a handle
lets its store be reclaimed. A store with a write still pending is pinned
with a strong reference until that write completes; a reclaimed store
therefore never has unsaved changes.

A process-wide default registry is created on first use by get_registry().
Tests and applications that own their lifecycle can inject their own with
set_registry(), or create a StoreRegistry and use it as an async context
manager.
"""

from __future__ import annotations

import asyncio
import atexit
import logging
import weakref

from docmirror.adapter import Document, StorageAdapter
from docmirror.config import get_settings
from docmirror.scheduler import ErrorHandler
from docmirror.store import DocumentStore

logger = logging.getLogger("docmirror.registry")


class StoreRegistry:
    """Factory and shutdown-flush bookkeeping for DocumentStores.

    With flush_at_exit (default: DOCMIRROR_FLUSH_AT_EXIT) the registry
    installs its exit hook on construction; otherwise call
    install_shutdown_hook() or close() yourself.
    """

    def __init__(
        self,
        update_delay_ms: int | None = None,
        *,
        shutdown_grace: float | None = None,
        on_error: ErrorHandler | None = None,
        flush_at_exit: bool | None = None,
    ) -> None:
        settings = get_settings()
        self._update_delay_ms = settings.update_delay_ms if update_delay_ms is None else update_delay_ms
        self._shutdown_grace = settings.shutdown_grace if shutdown_grace is None else shutdown_grace
        self._on_error = on_error
        self._stores: weakref.WeakSet[DocumentStore] = weakref.WeakSet()
        self._pinned: set[DocumentStore] = set()
        self._hook_installed = False
        if settings.flush_at_exit if flush_at_exit is None else flush_at_exit:
            self.install_shutdown_hook()

    @property
    def update_delay_ms(self) -> int:
        return self._update_delay_ms

    @property
    def shutdown_grace(self) -> float:
        return self._shutdown_grace

    @property
    def stores(self) -> list[DocumentStore]:
        """Live stores, including any pinned by a pending write."""
        return list(set(self._stores) | self._pinned)

    # --- Creating stores ---

    async def open(self, name: str, adapter: StorageAdapter, update_delay_ms: int | None = None):
        """Load name through adapter and return its observed handle.

        Not memoized: every call mirrors the document afresh.
        """
        store = await DocumentStore.open(
            name,
            adapter,
            self._update_delay_ms if update_delay_ms is None else update_delay_ms,
            on_error=self._on_error,
            on_state_change=self._pin,
        )
        self._stores.add(store)
        logger.debug("Opened %r (%d live stores)", name, len(self._stores))
        return store.handle

    def wrap(self, name: str, document: Document, adapter: StorageAdapter, update_delay_ms: int | None = None):
        """Mirror an in-memory document without loading it first.

        The document is copied; later saves go through adapter under name.
        """
        store = DocumentStore(
            name,
            document,
            adapter,
            self._update_delay_ms if update_delay_ms is None else update_delay_ms,
            on_error=self._on_error,
            on_state_change=self._pin,
        )
        self._stores.add(store)
        return store.handle

    def store_of(self, handle) -> DocumentStore | None:
        """The store whose root handle is handle, if it is still live."""
        for store in self.stores:
            if store.handle is handle:
                return store
        return None

    def _pin(self, store: DocumentStore, pending: bool) -> None:
        if pending:
            self._pinned.add(store)
        else:
            self._pinned.discard(store)

    # --- Flushing ---

    async def flush_all(self) -> bool:
        """Force every store with a pending write to save now.

        Stores flush concurrently. Returns False if any save failed.
        """
        stores = [store for store in self.stores if store.pending]
        if not stores:
            return True
        logger.info("Flushing %d pending document(s)", len(stores))
        results = await asyncio.gather(*(store.flush() for store in stores))
        failed = [store.name for store, ok in zip(stores, results) if not ok]
        if failed:
            logger.error("Flush failed for %s", ", ".join(repr(name) for name in failed))
        return not failed

    async def close(self, grace: float | None = None) -> bool:
        """flush_all() bounded by grace seconds (shutdown_grace by default)."""
        grace = self._shutdown_grace if grace is None else grace
        try:
            return await asyncio.wait_for(self.flush_all(), timeout=grace)
        except asyncio.TimeoutError:
            remaining = [store.name for store in self.stores if store.pending]
            logger.warning(
                "Shutdown flush abandoned after %.1fs; unsaved: %s",
                grace, ", ".join(repr(name) for name in remaining),
            )
            return False

    async def __aenter__(self) -> StoreRegistry:
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    def install_shutdown_hook(self) -> None:
        """Flush pending writes when the interpreter exits."""
        if self._hook_installed:
            return
        atexit.register(self._flush_at_exit)
        self._hook_installed = True

    def uninstall_shutdown_hook(self) -> None:
        if self._hook_installed:
            atexit.unregister(self._flush_at_exit)
            self._hook_installed = False

    def _flush_at_exit(self) -> None:
        if not any(store.pending for store in self.stores):
            return
        try:
            asyncio.run(self.close())
        except Exception:
            logger.exception("Shutdown flush failed")

    def __repr__(self) -> str:
        return f"StoreRegistry({len(self._stores)} stores, {len(self._pinned)} pending)"


# ─── Default registry ────────────────────────────────────────────────────────
_default: StoreRegistry | None = None


def get_registry() -> StoreRegistry:
    """The process-wide registry, created on first use."""
    global _default
    if _default is None:
        _default = StoreRegistry()
    return _default


def set_registry(registry: StoreRegistry | None) -> None:
    """Replace the process-wide registry. None resets it to lazy creation."""
    global _default
    if _default is not None and _default is not registry:
        _default.uninstall_shutdown_hook()
    _default = registry


async def open_document(name: str, adapter: StorageAdapter, update_delay_ms: int | None = None):
    """Open name through the process-wide registry and return its handle."""
    return await get_registry().open(name, adapter, update_delay_ms)
