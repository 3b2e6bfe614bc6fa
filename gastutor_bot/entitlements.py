"""Access tiers, free-message quota and expiry for one client session.

A session is in exactly one tier. ``PAID`` and ``ACTIVATED`` carry a start
timestamp persisted in durable storage; expiry is checked lazily every time
state is read, and an expired tier falls back to ``FREE`` and deletes its
stored timestamp. The durable copy is the source of truth across restarts.
"""

from __future__ import annotations

import logging
import math
import re
from datetime import UTC, datetime, timedelta
from enum import Enum
from typing import Callable, Optional

from .models import EntitlementPolicy, EntitlementStatus, Tier
from .storage import (
    ACTIVATION_CODE_KEY,
    ACTIVATION_DATE_KEY,
    PURCHASE_DATE_KEY,
    KeyValueStorage,
    StorageError,
)

logger = logging.getLogger(__name__)

PAID_WINDOW = timedelta(days=30)
ACTIVATION_WINDOW = timedelta(days=365)
EXPIRING_SOON_DAYS = 5
DEFAULT_CODE_PREFIX = "LARK"
MIN_CODE_VALUE = 1
MAX_CODE_VALUE = 80

WINDOWS = {Tier.PAID: PAID_WINDOW, Tier.ACTIVATED: ACTIVATION_WINDOW}
TIER_KEYS = {
    Tier.PAID: (PURCHASE_DATE_KEY,),
    Tier.ACTIVATED: (ACTIVATION_DATE_KEY, ACTIVATION_CODE_KEY),
}


class InvalidCode(ValueError):
    def __init__(self, code: str, reason: str) -> None:
        super().__init__(f"Invalid activation code {code!r}: {reason}")
        self.code = code
        self.reason = reason


class RedeemResult(str, Enum):
    SUCCESS = "success"
    INVALID_CODE = "invalid_code"
    UNAVAILABLE = "unavailable"

    @property
    def ok(self) -> bool:
        return self is RedeemResult.SUCCESS


def _utcnow() -> datetime:
    return datetime.now(UTC)


def parse_activation_code(code: str, prefix: str = DEFAULT_CODE_PREFIX) -> str:
    """Validate ``code`` and return its normalized form.

    The grammar is the prefix followed by exactly four ASCII digits, and the
    numeric part must lie in 1..80. Raises ``InvalidCode`` with ``reason`` set
    to ``"malformed"`` or ``"out_of_range"``.
    """
    normalized = (code or "").strip().upper()
    match = re.fullmatch(rf"{re.escape(prefix.upper())}([0-9]{{4}})", normalized)
    if match is None:
        raise InvalidCode(code, "malformed")
    value = int(match.group(1))
    if not MIN_CODE_VALUE <= value <= MAX_CODE_VALUE:
        raise InvalidCode(code, "out_of_range")
    return normalized


def remaining_days(started_at: datetime, window: timedelta, now: datetime) -> int:
    """Whole days left in the window, or 0 when the window end is not a valid datetime."""
    try:
        remaining = (started_at + window - now).total_seconds()
    except OverflowError:
        return 0
    return max(0, math.ceil(remaining / 86400))


def _parse_timestamp(raw: Optional[str]) -> Optional[datetime]:
    if not raw:
        return None
    try:
        value = datetime.fromisoformat(raw.strip())
    except ValueError:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    return value


class EntitlementStore:
    def __init__(
        self,
        storage: KeyValueStorage,
        policy: Optional[EntitlementPolicy] = None,
        clock: Optional[Callable[[], datetime]] = None,
        code_prefix: str = DEFAULT_CODE_PREFIX,
    ) -> None:
        self._storage = storage
        self._policy = policy or EntitlementPolicy()
        self._clock = clock or _utcnow
        self._code_prefix = code_prefix
        self._tier = Tier.FREE
        self._started_at: Optional[datetime] = None
        self._activation_code: Optional[str] = None
        self._messages_used = 0
        self._restore()

    def _restore(self) -> None:
        try:
            self._restore_from_storage()
        except StorageError:
            logger.warning("Entitlement storage unavailable, starting as free", exc_info=True)
            self._tier = Tier.FREE
            self._started_at = None
            self._activation_code = None

    def _restore_from_storage(self) -> None:
        now = self._clock()

        raw_activation = self._storage.get(ACTIVATION_DATE_KEY)
        if raw_activation is not None and Tier.ACTIVATED in self._policy.tiers_enabled:
            activated_at = _parse_timestamp(raw_activation)
            if activated_at is not None and remaining_days(activated_at, ACTIVATION_WINDOW, now) > 0:
                self._tier = Tier.ACTIVATED
                self._started_at = activated_at
                self._activation_code = self._storage.get(ACTIVATION_CODE_KEY)
                if self._storage.get(PURCHASE_DATE_KEY) is not None:
                    self._delete(PURCHASE_DATE_KEY)
                return
            logger.info("Clearing stale activation record from %s", raw_activation)
            self._clear(Tier.ACTIVATED)

        raw_purchase = self._storage.get(PURCHASE_DATE_KEY)
        if raw_purchase is not None and Tier.PAID in self._policy.tiers_enabled:
            purchased_at = _parse_timestamp(raw_purchase)
            if purchased_at is not None and remaining_days(purchased_at, PAID_WINDOW, now) > 0:
                self._tier = Tier.PAID
                self._started_at = purchased_at
                return
            logger.info("Clearing stale purchase record from %s", raw_purchase)
            self._clear(Tier.PAID)

    def _write(self, key: str, value: str) -> None:
        try:
            self._storage.set(key, value)
        except StorageError:
            logger.warning("Could not persist %s", key, exc_info=True)

    def _delete(self, key: str) -> None:
        try:
            self._storage.delete(key)
        except StorageError:
            logger.warning("Could not delete %s", key, exc_info=True)

    def _clear(self, tier: Tier) -> None:
        for key in TIER_KEYS[tier]:
            self._delete(key)

    def _refresh(self) -> None:
        if self._tier is Tier.FREE or self._started_at is None:
            return
        if remaining_days(self._started_at, WINDOWS[self._tier], self._clock()) > 0:
            return
        logger.info("%s access expired, reverting to free", self._tier.value)
        self._clear(self._tier)
        self._tier = Tier.FREE
        self._started_at = None
        self._activation_code = None

    @property
    def policy(self) -> EntitlementPolicy:
        return self._policy

    @property
    def tier(self) -> Tier:
        self._refresh()
        return self._tier

    @property
    def messages_used(self) -> int:
        return self._messages_used

    @property
    def activation_code(self) -> Optional[str]:
        self._refresh()
        return self._activation_code

    @property
    def days_remaining(self) -> int:
        self._refresh()
        if self._tier is Tier.FREE or self._started_at is None:
            return 0
        return remaining_days(self._started_at, WINDOWS[self._tier], self._clock())

    @property
    def has_access(self) -> bool:
        if self.tier is not Tier.FREE:
            return True
        return self._messages_used < self._policy.free_quota

    @property
    def is_expiring_soon(self) -> bool:
        if self.tier is Tier.FREE:
            return False
        return 0 < self.days_remaining <= EXPIRING_SOON_DAYS

    def get_status(self) -> EntitlementStatus:
        tier = self.tier
        return EntitlementStatus(
            tier=tier,
            has_access=self.has_access,
            messages_used=self._messages_used,
            message_limit=self._policy.free_quota,
            days_remaining=self.days_remaining,
            is_expiring_soon=self.is_expiring_soon,
        )

    def increment_message_count(self) -> None:
        if self.tier is not Tier.FREE:
            return
        self._messages_used += 1

    def reset_message_count(self) -> None:
        self._messages_used = 0

    def confirm_purchase(self) -> bool:
        """Enter the paid tier after an external purchase confirmation."""
        if Tier.PAID not in self._policy.tiers_enabled:
            logger.info("Ignoring purchase confirmation, paid tier is disabled")
            return False
        now = self._clock()
        self._write(PURCHASE_DATE_KEY, now.isoformat())
        self._clear(Tier.ACTIVATED)
        self._tier = Tier.PAID
        self._started_at = now
        self._activation_code = None
        logger.info("Purchase confirmed, paid access until %s", (now + PAID_WINDOW).isoformat())
        return True

    def redeem_code(self, code: str) -> RedeemResult:
        """Enter the activated tier with a student activation code.

        Redeeming again while activated restarts the 365 day window.
        """
        if Tier.ACTIVATED not in self._policy.tiers_enabled:
            return RedeemResult.UNAVAILABLE
        try:
            normalized = parse_activation_code(code, self._code_prefix)
        except InvalidCode as exc:
            logger.info("Rejected activation code (%s)", exc.reason)
            return RedeemResult.INVALID_CODE

        now = self._clock()
        self._write(ACTIVATION_DATE_KEY, now.isoformat())
        self._write(ACTIVATION_CODE_KEY, normalized)
        self._clear(Tier.PAID)
        self._tier = Tier.ACTIVATED
        self._started_at = now
        self._activation_code = normalized
        logger.info("Activation code redeemed, access until %s", (now + ACTIVATION_WINDOW).isoformat())
        return RedeemResult.SUCCESS
