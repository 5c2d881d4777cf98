"""Per-aggregate locks serializing concurrent mutations.

Webhooks, polling, admin actions and the escrow sweep may all touch the same
Payment or Order at once. Every mutating entry point holds the locks of the
aggregates it writes for the full unit of work. Locks are always taken in
sorted key order ("order" before "payment") so two entry points can never
wait on each other. Waiting longer than the configured timeout raises
ConcurrencyConflictError and the caller decides whether to retry.
"""

import threading
from collections.abc import Iterator
from contextlib import ExitStack, contextmanager

import structlog

from marketplace.config import get_settings
from marketplace.errors import ConcurrencyConflictError

logger = structlog.get_logger(__name__)

LockKey = tuple[str, str]


class AggregateLockRegistry:
    """Reference-counted registry of one lock per (kind, identifier)."""

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._entries: dict[LockKey, list] = {}  # key -> [lock, users]

    def _checkout(self, key: LockKey) -> threading.Lock:
        with self._guard:
            entry = self._entries.get(key)
            if entry is None:
                entry = [threading.Lock(), 0]
                self._entries[key] = entry
            entry[1] += 1
            return entry[0]

    def _checkin(self, key: LockKey) -> None:
        with self._guard:
            entry = self._entries.get(key)
            if entry is None:
                return
            entry[1] -= 1
            if entry[1] <= 0:
                del self._entries[key]

    @contextmanager
    def hold(self, kind: str, identifier: str, timeout: float | None = None) -> Iterator[None]:
        """Hold the lock for one aggregate, or raise ConcurrencyConflictError."""
        key = (kind, str(identifier))
        wait = get_settings().lock_timeout_seconds if timeout is None else timeout
        lock = self._checkout(key)
        try:
            if not lock.acquire(timeout=wait):
                logger.warning("Lock wait timed out", kind=kind, identifier=str(identifier), timeout=wait)
                raise ConcurrencyConflictError(kind, str(identifier))
            try:
                yield
            finally:
                lock.release()
        finally:
            self._checkin(key)

    @contextmanager
    def hold_all(self, *keys: LockKey, timeout: float | None = None) -> Iterator[None]:
        """Hold several aggregate locks, acquired in canonical order."""
        ordered = sorted({(kind, str(identifier)) for kind, identifier in keys if identifier})
        with ExitStack() as stack:
            for kind, identifier in ordered:
                stack.enter_context(self.hold(kind, identifier, timeout=timeout))
            yield

    def held_keys(self) -> list[LockKey]:
        with self._guard:
            return list(self._entries)


aggregate_locks = AggregateLockRegistry()
