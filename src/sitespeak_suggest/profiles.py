"""User profile storage used to seed per-user index partitions."""

from __future__ import annotations

import copy
import threading
from typing import Any, Dict, Optional, Protocol


class UserProfileStore(Protocol):
    """Opaque key-value store keyed by user id."""

    def get(self, user_id: str) -> Optional[Dict[str, Any]]:
        ...

    def set(self, user_id: str, profile: Dict[str, Any]) -> None:
        ...


class InMemoryProfileStore:
    """Thread-safe dict-backed store; returns copies so callers cannot mutate it."""

    def __init__(self, initial: Optional[Dict[str, Dict[str, Any]]] = None):
        self._lock = threading.Lock()
        self._profiles: Dict[str, Dict[str, Any]] = copy.deepcopy(initial or {})

    def get(self, user_id: str) -> Optional[Dict[str, Any]]:
        with self._lock:
            profile = self._profiles.get(user_id)
            return copy.deepcopy(profile) if profile is not None else None

    def set(self, user_id: str, profile: Dict[str, Any]) -> None:
        with self._lock:
            self._profiles[user_id] = copy.deepcopy(profile)

    def __contains__(self, user_id: str) -> bool:
        with self._lock:
            return user_id in self._profiles
