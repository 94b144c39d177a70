# scoring/state_store.py
# Leaderboard Scoring — Key-value port for per-student mutable state.
# Every scoring service keeps its caches behind a StateStore so that
# multi-replica deployments can share them (see database/state_store.py).
# Imports from: nothing internal.

import copy
import threading
from typing import Any, Callable, Optional

Updater = Callable[[Optional[dict[str, Any]]], dict[str, Any]]


class StateStore:
    """
    Namespaced key-value store of JSON-serialisable dicts.

    Values returned by get() are owned by the caller. Read-modify-write
    cycles must go through update(), which applies `fn` atomically with
    respect to every other update() on the same key.
    """

    def get(self, namespace: str, key: str) -> Optional[dict[str, Any]]:
        raise NotImplementedError

    def put(self, namespace: str, key: str, value: dict[str, Any]) -> None:
        raise NotImplementedError

    def update(self, namespace: str, key: str, fn: Updater) -> dict[str, Any]:
        """
        Stores fn(current) and returns it. `current` is None when the key
        is absent. `fn` may run more than once for one call, so anything
        it records outside its return value must be overwritten, not
        accumulated.
        """
        raise NotImplementedError

    def delete(self, namespace: str, key: str) -> None:
        raise NotImplementedError

    def keys(self, namespace: str) -> list[str]:
        raise NotImplementedError


class InMemoryStateStore(StateStore):
    """Process-local store. Contents vanish on restart."""

    def __init__(self) -> None:
        self._data: dict[str, dict[str, dict[str, Any]]] = {}
        self._lock = threading.RLock()

    def get(self, namespace: str, key: str) -> Optional[dict[str, Any]]:
        with self._lock:
            value = self._data.get(namespace, {}).get(key)
            # Copy so that a caller mutating without put() cannot corrupt the store
            return copy.deepcopy(value) if value is not None else None

    def put(self, namespace: str, key: str, value: dict[str, Any]) -> None:
        with self._lock:
            self._data.setdefault(namespace, {})[key] = copy.deepcopy(value)

    def update(self, namespace: str, key: str, fn: Updater) -> dict[str, Any]:
        with self._lock:
            value = fn(self.get(namespace, key))
            self.put(namespace, key, value)
            return copy.deepcopy(value)

    def delete(self, namespace: str, key: str) -> None:
        with self._lock:
            self._data.get(namespace, {}).pop(key, None)

    def keys(self, namespace: str) -> list[str]:
        with self._lock:
            return list(self._data.get(namespace, {}).keys())
