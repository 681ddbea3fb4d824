"""docmirror: in-memory document mirrors with debounced write-back."""

from importlib.metadata import version as _version

__version__ = _version("docmirror")

from docmirror.errors import (
    DocMirrorError,
    LoadError,
    SaveError,
    SerializationError,
    StaleHandleError,
)
from docmirror.config import Settings, get_settings
from docmirror.observer import IdentityCache, ObservedDict, ObservedList, observe, unwrap
from docmirror.scheduler import WriteScheduler
from docmirror.adapter import LocalStorage, StorageAdapter, local_storage_adapter
from docmirror.store import DocumentStore
from docmirror.registry import StoreRegistry, get_registry, open_document, set_registry

__all__ = [
    "DocMirrorError",
    "LoadError",
    "SaveError",
    "SerializationError",
    "StaleHandleError",
    "Settings",
    "get_settings",
    "IdentityCache",
    "ObservedDict",
    "ObservedList",
    "observe",
    "unwrap",
    "WriteScheduler",
    "LocalStorage",
    "StorageAdapter",
    "local_storage_adapter",
    "DocumentStore",
    "StoreRegistry",
    "get_registry",
    "open_document",
    "set_registry",
]
