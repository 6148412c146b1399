"""Viewer preferences owned outside the engine."""

from abc import ABC, abstractmethod
from typing import Any, Dict, Optional

TUTORIAL_SEEN_KEY = "tutorial_seen"


class PreferenceStore(ABC):
    """Persistence collaborator supplied by the host application."""

    @abstractmethod
    def get(self, key: str, default: Any = None) -> Any:
        """Read a preference."""

    @abstractmethod
    def set(self, key: str, value: Any) -> None:
        """Write a preference."""


class InMemoryPreferenceStore(PreferenceStore):
    """Dictionary-backed store for tests and single-process hosts."""

    def __init__(self, initial: Optional[Dict[str, Any]] = None):
        self._values = dict(initial or {})

    def get(self, key, default=None):
        return self._values.get(key, default)

    def set(self, key, value):
        self._values[key] = value
