"""Key-value store port used for per-user settings (coefficient profiles)."""
from typing import Dict, Optional, Protocol


class SettingsStore(Protocol):
    """Anything with string-keyed get/set of text values."""

    def get(self, key: str) -> Optional[str]:
        ...

    def set(self, key: str, value: str) -> None:
        ...


class InMemorySettingsStore:
    """
    Dict-backed store. Used by tests and as the fallback when no database
    is configured.
    """

    def __init__(self, values: Optional[Dict[str, str]] = None) -> None:
        self._values: Dict[str, str] = dict(values or {})

    def get(self, key: str) -> Optional[str]:
        return self._values.get(key)

    def set(self, key: str, value: str) -> None:
        self._values[key] = value

    def snapshot(self) -> Dict[str, str]:
        return dict(self._values)
