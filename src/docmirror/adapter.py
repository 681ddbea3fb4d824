"""Storage adapters: the load/save contract and a local reference backend.

An adapter is a pair of callables. load(name) returns the stored document,
or None when nothing is stored under name. save(name, document) receives
the whole document every time; returning False or raising means the save
failed. Either may be a coroutine function.
"""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Iterator
from urllib.parse import quote, unquote

from docmirror.config import get_settings
from docmirror.errors import SerializationError

logger = logging.getLogger("docmirror.adapter")

Document = dict[str, Any]
LoadFn = Callable[[str], Any]
SaveFn = Callable[[str, Document], Any]


@dataclass(frozen=True)
class StorageAdapter:
    """Immutable load/save pair, shareable across any number of documents."""

    load: LoadFn
    save: SaveFn


class LocalStorage:
    """Local persistent key-value store of text values, one file per key.

    Writes go to a temp file that then replaces the target, so a crash
    mid-write leaves the previous value in place.
    """

    SUFFIX = ".json"

    def __init__(self, directory: str | Path) -> None:
        self._directory = Path(directory)

    @property
    def directory(self) -> Path:
        return self._directory

    def _path_for(self, key: str) -> Path:
        return self._directory / (quote(key, safe="") + self.SUFFIX)

    def get_item(self, key: str) -> str | None:
        path = self._path_for(key)
        if not path.exists():
            return None
        return path.read_text(encoding="utf-8")

    def set_item(self, key: str, value: str) -> None:
        path = self._path_for(key)
        self._directory.mkdir(parents=True, exist_ok=True)
        tmp_path = path.with_suffix(path.suffix + ".tmp")
        with tmp_path.open("w", encoding="utf-8") as f:
            f.write(value)
            f.flush()
            os.fsync(f.fileno())
        tmp_path.replace(path)

    def remove_item(self, key: str) -> None:
        self._path_for(key).unlink(missing_ok=True)

    def keys(self) -> Iterator[str]:
        if not self._directory.is_dir():
            return
        for path in sorted(self._directory.glob("*" + self.SUFFIX)):
            yield unquote(path.name[: -len(self.SUFFIX)])

    def __contains__(self, key: str) -> bool:
        return self._path_for(key).exists()

    def __repr__(self) -> str:
        return f"LocalStorage({str(self._directory)!r})"


def local_storage_adapter(storage: LocalStorage | str | Path | None = None) -> StorageAdapter:
    """Adapter storing each document as JSON text in a LocalStorage.

    Without an argument the directory comes from DOCMIRROR_STORAGE_DIR.
    Stored text that does not decode to a JSON object loads as an empty
    document.
    """
    if storage is None:
        storage = LocalStorage(get_settings().storage_dir)
    elif not isinstance(storage, LocalStorage):
        storage = LocalStorage(storage)

    def load(name: str) -> Document | None:
        raw = storage.get_item(name)
        if raw is None:
            return None
        try:
            document = json.loads(raw)
        except ValueError as exc:
            logger.warning("%s", SerializationError(name, f"stored document {name!r} is not valid JSON: {exc}"))
            return {}
        if not isinstance(document, dict):
            logger.warning("%s", SerializationError(name, f"stored document {name!r} is not a JSON object"))
            return {}
        return document

    def save(name: str, document: Document) -> None:
        try:
            raw = json.dumps(document, ensure_ascii=False)
        except (TypeError, ValueError) as exc:
            raise SerializationError(name, f"document {name!r} is not JSON serializable: {exc}") from exc
        storage.set_item(name, raw)

    return StorageAdapter(load=load, save=save)
