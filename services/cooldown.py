"""Per-device, per-alert-kind notification throttling."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from threading import Lock
from typing import Dict, Iterable, List, Optional

from models.records import AlertCandidate

logger = logging.getLogger(__name__)

UNKNOWN_DEVICE = "unknown"


def cooldown_key(device_id: Optional[str], alert_key: str) -> str:
    return f"{device_id or UNKNOWN_DEVICE}:{alert_key}"


class CooldownGate:
    """Admits a candidate at most once per cooldown window.

    State lives only in memory and is lost on restart. Keys are never
    expired automatically; device cardinality bounds the map in practice and
    ``prune`` is available for long-running processes.
    """

    def __init__(self) -> None:
        self._last_fired: Dict[str, datetime] = {}
        self._lock = Lock()

    def admit(
        self,
        candidates: Iterable[AlertCandidate],
        now: datetime,
        cooldown: timedelta,
    ) -> List[AlertCandidate]:
        admitted: List[AlertCandidate] = []
        with self._lock:
            for candidate in candidates:
                key = cooldown_key(candidate.device_id, candidate.key)
                last = self._last_fired.get(key)
                if last is not None and now - last < cooldown:
                    logger.debug(
                        "Suppressing alert inside cooldown window",
                        extra={"device_id": candidate.device_id, "alert_key": candidate.key},
                    )
                    continue
                self._last_fired[key] = now
                admitted.append(candidate)
        return admitted

    def last_fired(self, device_id: Optional[str], alert_key: str) -> Optional[datetime]:
        with self._lock:
            return self._last_fired.get(cooldown_key(device_id, alert_key))

    def prune(self, older_than: datetime) -> int:
        """Drop entries last fired before ``older_than``; returns how many."""
        with self._lock:
            stale = [key for key, fired in self._last_fired.items() if fired < older_than]
            for key in stale:
                del self._last_fired[key]
        return len(stale)

    def __len__(self) -> int:
        with self._lock:
            return len(self._last_fired)
