"""Deep observation of nested dicts and lists.

observe(root, on_mutate) returns a handle that reads and writes like the
plain container. Reading a nested dict or list returns another handle over
that exact object; any set or delete at any depth calls on_mutate() first
and then applies the change to the underlying container.

Handles are cached by object identity, so reading the same nested object
twice returns the same handle. When a nested object is replaced or removed
and can no longer be reached from the document root, its handle (and those
of its unreachable descendants) is evicted from the cache and marked
detached. Objects moved elsewhere in the document keep their handle. A
detached handle still reads, but refuses to mutate.
"""

from __future__ import annotations

from collections.abc import MutableMapping, MutableSequence
from typing import Any, Callable, Iterable, Iterator

from docmirror.errors import StaleHandleError

OnMutate = Callable[[], None]

_MISSING = object()


class IdentityCache:
    """Maps a container object to its single observed handle.

    Keyed by id(); each entry holds the object itself so the id cannot be
    recycled while the entry exists. Roots registered by observe() decide
    what is still part of a document: released containers are evicted only
    once they can no longer be reached from any root.
    """

    __slots__ = ("_entries", "_roots")

    def __init__(self) -> None:
        self._entries: dict[int, tuple[object, _Observed]] = {}
        self._roots: list[dict | list] = []

    def add_root(self, root: dict | list) -> None:
        if not any(r is root for r in self._roots):
            self._roots.append(root)

    def get_or_create(self, value: dict | list, factory: Callable[[], _Observed]) -> _Observed:
        entry = self._entries.get(id(value))
        if entry is not None:
            return entry[1]
        handle = factory()
        self._entries[id(value)] = (value, handle)
        return handle

    def get(self, value: object) -> _Observed | None:
        entry = self._entries.get(id(value))
        return entry[1] if entry is not None else None

    def release(self, values: Iterable[Any]) -> None:
        """Detach every container under values that no root still reaches."""
        pending = [v for v in values if isinstance(v, (dict, list))]
        if not pending:
            return
        reachable = _reachable(self._roots)
        seen: set[int] = set()
        while pending:
            item = pending.pop()
            if id(item) in seen or id(item) in reachable:
                continue
            seen.add(id(item))
            entry = self._entries.pop(id(item), None)
            if entry is not None:
                entry[1]._detached = True
            pending.extend(_children(item))

    def __contains__(self, value: object) -> bool:
        return id(value) in self._entries

    def __len__(self) -> int:
        return len(self._entries)


def _children(value: dict | list) -> Iterator[dict | list]:
    items = value.values() if isinstance(value, dict) else value
    return (v for v in items if isinstance(v, (dict, list)))


def _reachable(roots: Iterable[dict | list]) -> set[int]:
    found: set[int] = set()
    stack = list(roots)
    while stack:
        item = stack.pop()
        if id(item) in found:
            continue
        found.add(id(item))
        stack.extend(_children(item))
    return found


def unwrap(value: Any) -> Any:
    """Return the plain object behind value.

    Handles become their underlying container. Plain containers holding
    handles are rebuilt; anything without handles is returned as-is.
    """
    if isinstance(value, _Observed):
        return value._target
    if isinstance(value, dict):
        items = {k: unwrap(v) for k, v in value.items()}
        if all(items[k] is v for k, v in value.items()):
            return value
        return items
    if isinstance(value, list):
        items = [unwrap(v) for v in value]
        if all(a is b for a, b in zip(items, value)):
            return value
        return items
    return value


def observe(root: dict | list, on_mutate: OnMutate, cache: IdentityCache | None = None) -> _Observed:
    """Wrap root so every nested set or delete calls on_mutate()."""
    if not isinstance(root, (dict, list)):
        raise TypeError(f"can only observe dict or list, not {type(root).__name__}")
    if cache is None:
        cache = IdentityCache()
    cache.add_root(root)
    return cache.get_or_create(root, lambda: _make_handle(root, cache, on_mutate))


def _make_handle(value: dict | list, cache: IdentityCache, on_mutate: OnMutate, detached: bool = False) -> _Observed:
    cls = ObservedDict if isinstance(value, dict) else ObservedList
    return cls(value, cache, on_mutate, detached)


class _Observed:
    """Shared plumbing for ObservedDict and ObservedList."""

    __slots__ = ("_target", "_cache", "_on_mutate", "_detached")

    def __init__(self, target, cache: IdentityCache, on_mutate: OnMutate, detached: bool = False) -> None:
        self._target = target
        self._cache = cache
        self._on_mutate = on_mutate
        self._detached = detached

    @property
    def detached(self) -> bool:
        """True once this handle's object was replaced or removed from the document."""
        return self._detached

    def _observe(self, value: Any) -> Any:
        if not isinstance(value, (dict, list)):
            return value
        if self._detached:
            # Views under a detached handle are never cached; objects still
            # in the document keep their live handle
            cached = self._cache.get(value)
            if cached is not None:
                return cached
            return _make_handle(value, self._cache, self._on_mutate, detached=True)
        return self._cache.get_or_create(
            value, lambda: _make_handle(value, self._cache, self._on_mutate)
        )

    def _before_mutation(self) -> None:
        if self._detached:
            raise StaleHandleError(
                f"{type(self).__name__} was detached from its document and cannot be mutated"
            )
        self._on_mutate()

    def _release(self, old_values: Iterable[Any]) -> None:
        self._cache.release(old_values)

    def __eq__(self, other: object) -> bool:
        return self._target == unwrap(other)

    def __ne__(self, other: object) -> bool:
        return not self == other

    __hash__ = None  # type: ignore[assignment]

    def __repr__(self) -> str:
        state = ", detached" if self._detached else ""
        return f"{type(self).__name__}({self._target!r}{state})"


class ObservedDict(_Observed, MutableMapping):
    """Observed view over a dict. Nested dicts and lists read as handles."""

    __slots__ = ()

    # --- Read operations ---

    def __getitem__(self, key: str) -> Any:
        return self._observe(self._target[key])

    def __iter__(self) -> Iterator[str]:
        return iter(self._target)

    def __len__(self) -> int:
        return len(self._target)

    def __contains__(self, key: object) -> bool:
        return key in self._target

    # --- Write operations (notify, then apply) ---

    def __setitem__(self, key: str, value: Any) -> None:
        self._before_mutation()
        value = unwrap(value)
        old = self._target.get(key, _MISSING)
        self._target[key] = value
        if old is not _MISSING and old is not value:
            self._release([old])

    def __delitem__(self, key: str) -> None:
        self._before_mutation()
        old = self._target.pop(key)
        self._release([old])

    def pop(self, key: str, default: Any = _MISSING) -> Any:
        """Remove key and return its plain value."""
        if key not in self._target:
            if default is _MISSING:
                raise KeyError(key)
            return default
        self._before_mutation()
        old = self._target.pop(key)
        self._release([old])
        return old

    def popitem(self) -> tuple[str, Any]:
        if not self._target:
            raise KeyError("popitem(): dictionary is empty")
        self._before_mutation()
        key, old = self._target.popitem()
        self._release([old])
        return key, old

    def setdefault(self, key: str, default: Any = None) -> Any:
        if key not in self._target:
            self[key] = default
        return self[key]

    def clear(self) -> None:
        self._before_mutation()
        old = list(self._target.values())
        self._target.clear()
        self._release(old)


class ObservedList(_Observed, MutableSequence):
    """Observed view over a list. Nested dicts and lists read as handles."""

    __slots__ = ()

    # --- Read operations ---

    def __getitem__(self, index: int | slice) -> Any:
        if isinstance(index, slice):
            return [self._observe(v) for v in self._target[index]]
        return self._observe(self._target[index])

    def __iter__(self) -> Iterator[Any]:
        for value in self._target:
            yield self._observe(value)

    def __len__(self) -> int:
        return len(self._target)

    def __contains__(self, value: object) -> bool:
        return unwrap(value) in self._target

    # --- Write operations (notify, then apply) ---

    def __setitem__(self, index: int | slice, value: Any) -> None:
        self._before_mutation()
        if isinstance(index, slice):
            new = [unwrap(v) for v in value]
            old = self._target[index]
            self._target[index] = new
            self._release(old)
        else:
            value = unwrap(value)
            old = self._target[index]
            self._target[index] = value
            if old is not value:
                self._release([old])

    def __delitem__(self, index: int | slice) -> None:
        self._before_mutation()
        old = self._target[index]
        del self._target[index]
        self._release(old if isinstance(index, slice) else [old])

    def insert(self, index: int, value: Any) -> None:
        self._before_mutation()
        self._target.insert(index, unwrap(value))

    def pop(self, index: int = -1) -> Any:
        """Remove the item at index and return its plain value."""
        if not self._target:
            raise IndexError("pop from empty list")
        self._before_mutation()
        old = self._target.pop(index)
        self._release([old])
        return old

    def clear(self) -> None:
        self._before_mutation()
        old = list(self._target)
        self._target.clear()
        self._release(old)

    def reverse(self) -> None:
        self._before_mutation()
        self._target.reverse()

    def sort(self, *, key: Callable[[Any], Any] | None = None, reverse: bool = False) -> None:
        self._before_mutation()
        self._target.sort(key=key, reverse=reverse)
