"""Single-entry configuration cache with a validity window."""

from __future__ import annotations

import threading
from dataclasses import replace
from datetime import datetime, timedelta, timezone
from typing import Callable

from vyos_dashboard.core.models import CacheEntry, CanonicalConfig, ConnectionParams, LeaseTable

DEFAULT_MAX_AGE = timedelta(minutes=5)

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _as_timedelta(max_age: timedelta | float | int | None) -> timedelta:
    if max_age is None:
        return DEFAULT_MAX_AGE
    if isinstance(max_age, timedelta):
        return max_age
    return timedelta(seconds=max_age)


class ConfigCache:
    """Hold the last fetched configuration for one session.

    Every method runs under one lock, so readers never observe a partially
    replaced entry. :meth:`store` always builds a new entry; only
    :meth:`store_leases` and :meth:`mark_failed` derive from the current one
    and they never touch the configuration itself.
    """

    def __init__(self, clock: Clock = utc_now) -> None:
        self._clock = clock
        self._entry: CacheEntry | None = None
        self._last_stamp: datetime | None = None
        self._lock = threading.Lock()

    def _stamp(self) -> datetime:
        now = self._clock()
        # Wall clocks can step backwards; fetched_at must not.
        if self._last_stamp is not None and now < self._last_stamp:
            now = self._last_stamp
        self._last_stamp = now
        return now

    def store(
        self,
        config: CanonicalConfig,
        params: ConnectionParams,
        leases: LeaseTable | None = None,
    ) -> CacheEntry:
        with self._lock:
            entry = CacheEntry(
                config=config,
                fetched_at=self._stamp(),
                connection_params=params.redacted(),
                leases=leases,
                successful=True,
            )
            self._entry = entry
            return entry

    def store_leases(self, leases: LeaseTable | None) -> CacheEntry | None:
        """Replace the lease table of the current entry. No-op when empty."""

        with self._lock:
            if self._entry is None:
                return None
            self._entry = replace(self._entry, leases=leases)
            return self._entry

    def get(self) -> CacheEntry | None:
        with self._lock:
            return self._entry

    def is_valid(self, max_age: timedelta | float | int | None = None) -> bool:
        window = _as_timedelta(max_age)
        with self._lock:
            entry = self._entry
            if entry is None or not entry.successful:
                return False
            return self._clock() - entry.fetched_at < window

    def age(self) -> timedelta | None:
        with self._lock:
            if self._entry is None:
                return None
            return max(self._clock() - self._entry.fetched_at, timedelta(0))

    def mark_failed(self) -> None:
        """Keep the stale entry readable but stop treating it as valid."""

        with self._lock:
            if self._entry is not None:
                self._entry = replace(self._entry, successful=False)

    def invalidate(self) -> None:
        with self._lock:
            self._entry = None
