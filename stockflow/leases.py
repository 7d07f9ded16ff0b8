"""
Short exclusive edit leases on outstanding items.

Per item:  Unlocked -> Locked(expiry) -> Unlocked

The lease is the lock_expires_at timestamp on the item itself.  There is
no heartbeat: a session that disappears loses its lease when the expiry
passes, and an expired lease reads exactly like no lease.
"""
import logging
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

from config import LEASE_DURATION_SECONDS
from models.result import LOCK_EXPIRED, LOCKED, NOT_FOUND, INVALID, PARSE_CORRUPTION, LeaseResult
from stockflow.normalizer import parse_date
from stockflow.stock import iso, utc_now
from stockflow.store import ITEMS, CorruptCollection, RecordStore

logger = logging.getLogger(__name__)

# Fields an edit patch may never change
_PROTECTED_FIELDS = {"uid", "source_line_key", "lock_expires_at"}


def lock_expiry(item: dict) -> Optional[datetime]:
    parsed = parse_date(item.get("lock_expires_at"))
    if parsed and parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def is_locked(item: dict, now: datetime) -> bool:
    """True while the item carries an unexpired lease.  Unparsable expiry counts as expired."""
    expiry = lock_expiry(item)
    return expiry is not None and expiry > now


def purge_expired(items: list[dict], now: datetime) -> int:
    purged = 0
    for item in items:
        if "lock_expires_at" in item and not is_locked(item, now):
            del item["lock_expires_at"]
            purged += 1
    return purged


def find_item(items: list[dict], uid: str) -> Optional[dict]:
    for item in items:
        if str(item.get("uid")) == str(uid):
            return item
    return None


class LeaseManager:
    """Acquire, use and release edit leases against the items collection."""

    def __init__(
        self,
        store: RecordStore,
        lease_seconds: int = LEASE_DURATION_SECONDS,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self.store = store
        self.lease = timedelta(seconds=lease_seconds)
        self._clock = clock or utc_now

    def acquire(self, uid: str) -> LeaseResult:
        """
        Lock one item for lease_seconds.  Expired leases on every item are
        cleared first and that cleanup is persisted even if this acquire
        fails.
        """
        try:
            return self._acquire(uid)
        except CorruptCollection as exc:
            return self._unreadable(uid, exc)

    def apply_edit(self, uid: str, patch: dict) -> LeaseResult:
        """
        Merge patch onto a locked item and release the lease in the same
        write.  Rejected with lock-expired when the lease is gone.
        """
        if not isinstance(patch, dict):
            return LeaseResult.failure(INVALID, "Edit patch must be an object", uid=uid)
        try:
            return self._apply_edit(uid, patch)
        except CorruptCollection as exc:
            return self._unreadable(uid, exc)

    def release(self, uid: str) -> LeaseResult:
        """Drop the lease if there is one.  Releasing an unlocked item succeeds."""
        try:
            return self._release(uid)
        except CorruptCollection as exc:
            return self._unreadable(uid, exc)

    def locked_now(self, item: dict) -> bool:
        """True if item is under a live lease right now."""
        return is_locked(item, self._clock())

    # ------------------------------------------------------------------

    def _acquire(self, uid: str) -> LeaseResult:
        now = self._clock()
        with self.store.editing(ITEMS) as items:
            purged = purge_expired(items, now)
            if purged:
                logger.debug("Cleared %d expired lease(s)", purged)

            item = find_item(items, uid)
            if item is None:
                return LeaseResult.failure(NOT_FOUND, f"No item with uid {uid}", uid=uid)
            if is_locked(item, now):
                logger.warning("Item %s is locked until %s", uid, item["lock_expires_at"])
                return LeaseResult.failure(
                    LOCKED, "Item is being edited in another session", uid=uid,
                    expires_at=item["lock_expires_at"],
                )

            expires_at = iso(now + self.lease)
            item["lock_expires_at"] = expires_at
        logger.info("Lease on %s acquired until %s", uid, expires_at)
        return LeaseResult(ok=True, uid=uid, expires_at=expires_at)

    def _apply_edit(self, uid: str, patch: dict) -> LeaseResult:
        now = self._clock()
        with self.store.editing(ITEMS) as items:
            item = find_item(items, uid)
            if item is None:
                return LeaseResult.failure(NOT_FOUND, f"No item with uid {uid}", uid=uid)
            if not is_locked(item, now):
                logger.warning("Edit on %s rejected: lease expired or absent", uid)
                return LeaseResult.failure(
                    LOCK_EXPIRED, "Edit lease expired, reopen the item to edit", uid=uid,
                )

            item.pop("lock_expires_at", None)
            for key, value in patch.items():
                if key not in _PROTECTED_FIELDS:
                    item[key] = value
            item["last_moved_at"] = iso(now)
            updated = dict(item)
        logger.info("Edit applied to %s", uid)
        return LeaseResult(ok=True, uid=uid, item=updated)

    def _release(self, uid: str) -> LeaseResult:
        with self.store.editing(ITEMS) as items:
            item = find_item(items, uid)
            if item is None:
                return LeaseResult.failure(NOT_FOUND, f"No item with uid {uid}", uid=uid)
            had_lease = item.pop("lock_expires_at", None) is not None
        if had_lease:
            logger.info("Lease on %s released", uid)
        return LeaseResult(ok=True, uid=uid)

    @staticmethod
    def _unreadable(uid: str, exc: CorruptCollection) -> LeaseResult:
        logger.error("Lease operation on %s refused: %s", uid, exc)
        return LeaseResult.failure(PARSE_CORRUPTION, str(exc), uid=uid)
