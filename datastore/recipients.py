from __future__ import annotations

from functools import lru_cache
from threading import Lock
from typing import FrozenSet, Iterable, Set

from settings import get_settings


class RecipientDirectory:
    """Addresses that opted into alert notifications."""

    def __init__(self, addresses: Iterable[str] = ()) -> None:
        self._addresses: Set[str] = set()
        self._lock = Lock()
        for address in addresses:
            self.subscribe(address)

    def subscribe(self, address: str) -> str:
        candidate = address.strip().lower()
        if "@" not in candidate:
            raise ValueError(f"Invalid notification address {address!r}.")
        with self._lock:
            self._addresses.add(candidate)
        return candidate

    def unsubscribe(self, address: str) -> bool:
        with self._lock:
            candidate = address.strip().lower()
            if candidate not in self._addresses:
                return False
            self._addresses.remove(candidate)
            return True

    def list_recipients(self) -> FrozenSet[str]:
        with self._lock:
            return frozenset(self._addresses)


@lru_cache
def build_default_directory() -> RecipientDirectory:
    return RecipientDirectory(get_settings().alert_recipients)
