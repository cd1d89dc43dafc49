"""
Repeat gate for password-reset codes.

A single password-reset email is treated as noise that anyone knowing the
address can trigger. A code is only released once the same code has been
seen threshold times in a row for the same recipient, i.e. the owner keeps
retrying the forgot-password flow through this inbox.

This is a heuristic noise filter, not a security boundary.

State lives in the repeat_gate table (see CodeStore) so that separate
invocations, possibly racing, see the same counters. Any storage failure
suppresses the code.
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional, Protocol

from authinbox.models.code_mail import GateRecord
from authinbox.models.extraction import Classification, GateDecision

logger = logging.getLogger(__name__)


class GateStore(Protocol):
    def get_gate_record(self, key: str) -> Optional[GateRecord]: ...

    def upsert_gate_record(self, key: str, code: str, count: int) -> None: ...

    def delete_gate_record(self, key: str) -> None: ...


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class RepeatGate:
    """
    Counts consecutive identical codes per key.

    Args:
        store: Persistent get/upsert/delete access to gate records.
        threshold: Consecutive sightings needed for release.
        ttl_minutes: Records older than this are treated as absent.
        clock: Returns the current aware UTC datetime.
    """

    def __init__(
        self,
        store: GateStore,
        threshold: int = 3,
        ttl_minutes: int = 30,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.store = store
        self.threshold = threshold
        self.ttl = timedelta(minutes=ttl_minutes)
        self.clock = clock

    def _is_expired(self, record: GateRecord) -> bool:
        if record.last_updated is None:
            return False
        last_updated = record.last_updated
        if last_updated.tzinfo is None:
            last_updated = last_updated.replace(tzinfo=timezone.utc)
        return self.clock() - last_updated > self.ttl

    def evaluate(
        self, classification: Optional[Classification], key: str, code: str
    ) -> GateDecision:
        """
        Decide whether a code may be released.

        Only PASSWORD_RESET codes are gated; everything else is released
        without touching storage.
        """
        if classification != Classification.PASSWORD_RESET:
            return GateDecision.RELEASE

        key = key.strip().lower()
        try:
            return self._evaluate_sensitive(key, code)
        except Exception as e:
            logger.error(f"Repeat gate storage error for {key!r}, suppressing code: {e}")
            return GateDecision.SUPPRESS

    def _evaluate_sensitive(self, key: str, code: str) -> GateDecision:
        record = self.store.get_gate_record(key)

        if record is not None and self._is_expired(record):
            logger.info(f"Repeat gate record for {key!r} expired; starting over")
            record = None

        if record is None or record.last_code != code:
            self.store.upsert_gate_record(key, code, 1)
            logger.info(f"Repeat gate: first sighting of code for {key!r} (1/{self.threshold})")
            return self._decide(key, 1)

        count = record.consecutive_count + 1
        if count < self.threshold:
            self.store.upsert_gate_record(key, code, count)
        logger.info(f"Repeat gate: code repeated for {key!r} ({count}/{self.threshold})")
        return self._decide(key, count)

    def _decide(self, key: str, count: int) -> GateDecision:
        if count < self.threshold:
            return GateDecision.SUPPRESS
        self.store.delete_gate_record(key)
        logger.info(f"Repeat gate: releasing code for {key!r}")
        return GateDecision.RELEASE
