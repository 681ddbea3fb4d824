"""Exceptions raised or reported by docmirror.

Only StaleHandleError ever reaches a mutating caller. Load failures are
recovered by the store, save failures are logged and handed to the
registry's error callback.
"""

from __future__ import annotations


class DocMirrorError(Exception):
    """Base class for all docmirror errors."""


class LoadError(DocMirrorError):
    """A document could not be loaded, or loaded as something other than a dict."""

    def __init__(self, name: str, message: str = "") -> None:
        self.name = name
        super().__init__(message or f"failed to load document {name!r}")


class SaveError(DocMirrorError):
    """A document could not be saved."""

    def __init__(self, name: str, message: str = "") -> None:
        self.name = name
        super().__init__(message or f"failed to save document {name!r}")


class SerializationError(LoadError, SaveError):
    """A document could not be encoded to or decoded from its text form."""

    def __init__(self, name: str, message: str = "") -> None:
        self.name = name
        DocMirrorError.__init__(self, message or f"cannot serialize document {name!r}")


class StaleHandleError(DocMirrorError):
    """Mutation through a handle whose object was replaced in the document."""
