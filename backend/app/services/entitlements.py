"""Monthly quota gate.

Each profile carries a counter of credits used in the current period
(``YYYYMM``, UTC). Reads roll a stale period over before any quota math.
Consuming a credit is a compare-and-swap: the increment only lands if the
counter and period still hold the values just read. A lost race re-reads
and retries ``quota_consume_retries`` times (one by default), then reports
``ConsumeConflict``. The counter therefore never passes the tier quota and
every successful consume adds exactly one credit.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime

import structlog

from app.config import Settings
from app.errors import ConsumeConflict, ProfileNotFound, QuotaExhausted
from app.models.contracts import EntitlementSummary, EntitlementView, ProfileRecord, Tier
from app.stores.base import ProfileStore

logger = structlog.get_logger()

# Free-tier quota when DEV_NO_QUOTA is set
DEV_FREE_QUOTA = 999

_PREVIEW_TIERS: frozenset[Tier] = frozenset({"casual", "pro"})


def period_key(now: datetime) -> str:
    return now.astimezone(UTC).strftime("%Y%m")


def _utcnow() -> datetime:
    return datetime.now(UTC)


@dataclass(frozen=True)
class TierQuotas:
    free: int = 2
    casual: int = 5
    pro: int = 25

    @classmethod
    def from_settings(cls, cfg: Settings) -> TierQuotas:
        return cls(
            free=DEV_FREE_QUOTA if cfg.dev_no_quota else cfg.quota_free,
            casual=cfg.quota_casual,
            pro=cfg.quota_pro,
        )

    def for_tier(self, tier: Tier) -> int:
        return getattr(self, tier)


@dataclass(frozen=True)
class ConsumeResult:
    used: int
    remaining: int
    quota: int


class QuotaGate:
    def __init__(
        self,
        store: ProfileStore,
        quotas: TierQuotas,
        *,
        retries: int = 1,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._store = store
        self._quotas = quotas
        self._retries = max(0, retries)
        self._clock = clock

    def current_period(self) -> str:
        return period_key(self._clock())

    async def _load(self, user_id: str) -> ProfileRecord:
        """Read the profile, rolling a stale period over first.

        The rollover is itself conditional on the stale key, so when two
        requests see the same stale row only one reset lands; the other
        re-reads and sees the new period (including any credits consumed
        in it since).
        """
        profile = await self._store.get_profile(user_id)
        if profile is None:
            raise ProfileNotFound("No profile for user")

        current = self.current_period()
        if profile.period_key == current:
            return profile

        rolled = await self._store.rollover_period(
            user_id, stale_key=profile.period_key, current_key=current
        )
        if rolled is not None:
            logger.info(
                "quota_period_rollover",
                user_id=user_id,
                previous=profile.period_key,
                current=current,
            )
            return rolled

        fresh = await self._store.get_profile(user_id)
        if fresh is None:
            raise ProfileNotFound("No profile for user")
        return fresh

    async def check(self, user_id: str) -> EntitlementView:
        profile = await self._load(user_id)
        quota = self._quotas.for_tier(profile.tier)
        used = profile.credits_used_this_period
        view = EntitlementView(
            tier=profile.tier,
            quota=quota,
            used=used,
            remaining=max(0, quota - used),
            period_key=profile.period_key,
            preview_allowed=profile.tier in _PREVIEW_TIERS,
        )
        logger.info("entitlements_checked", user_id=user_id, used=used, quota=quota)
        return view

    async def summary(self, user_id: str | None) -> EntitlementSummary:
        """Paywall view of a user's entitlements.

        Unknown or blank users get the free-tier defaults instead of an error,
        so the app can render before a profile exists.
        """
        cleaned = (user_id or "").strip()
        profile = None
        if cleaned:
            try:
                profile = await self._load(cleaned)
            except ProfileNotFound:
                logger.info("entitlements_default", user_id=cleaned)
        if profile is None:
            quota = self._quotas.free
            return EntitlementSummary(
                tier="free", quota=quota, remaining=quota, preview_allowed=False
            )

        quota = self._quotas.for_tier(profile.tier)
        return EntitlementSummary(
            tier=profile.tier,
            quota=quota,
            remaining=max(0, quota - profile.credits_used_this_period),
            preview_allowed=profile.tier in _PREVIEW_TIERS,
        )

    async def check_and_consume(self, user_id: str) -> ConsumeResult:
        profile = await self._load(user_id)
        for attempt in range(self._retries + 1):
            quota = self._quotas.for_tier(profile.tier)
            used = profile.credits_used_this_period
            if quota - used <= 0:
                logger.info("quota_exhausted", user_id=user_id, quota=quota, used=used)
                raise QuotaExhausted(quota=quota, used=used)

            updated = await self._store.increment_credits(
                user_id, expected_used=used, period_key=profile.period_key
            )
            if updated is not None:
                new_used = updated.credits_used_this_period
                logger.info("quota_consumed", user_id=user_id, used=new_used, quota=quota)
                return ConsumeResult(used=new_used, remaining=max(0, quota - new_used), quota=quota)

            if attempt < self._retries:
                logger.info("consume_conflict_retry", user_id=user_id, attempt=attempt + 1)
                profile = await self._load(user_id)

        logger.warning("consume_conflict", user_id=user_id, attempts=self._retries + 1)
        raise ConsumeConflict("Concurrent update to quota counter; retry the request")
