"""Tests for the monthly quota gate and the entitlement endpoints.

QuotaGate runs against the in-memory store. Race tests use a store that
yields to the event loop between operations (or injects a competing write)
so the compare-and-swap path is actually exercised.
"""

import asyncio
from datetime import UTC, datetime

import pytest

from app.errors import ConsumeConflict, ProfileNotFound, QuotaExhausted
from app.models.contracts import ProfileRecord
from app.services.entitlements import QuotaGate, TierQuotas, period_key
from app.stores.memory import InMemoryStore

USER = "user-owner-1"
JAN = datetime(2025, 1, 15, 12, 0, tzinfo=UTC)
FEB = datetime(2025, 2, 1, 0, 0, tzinfo=UTC)


def _gate(store, *, now: datetime = JAN, retries: int = 1) -> QuotaGate:
    return QuotaGate(store, TierQuotas(), retries=retries, clock=lambda: now)


def _seed(store: InMemoryStore, *, tier="free", used=0, period="202501", user_id=USER):
    store.profiles[user_id] = ProfileRecord(
        user_id=user_id, tier=tier, credits_used_this_period=used, period_key=period
    )


class YieldingStore(InMemoryStore):
    """Suspends before every profile operation so concurrent calls interleave."""

    async def get_profile(self, user_id):
        await asyncio.sleep(0)
        return await super().get_profile(user_id)

    async def rollover_period(self, user_id, *, stale_key, current_key):
        await asyncio.sleep(0)
        return await super().rollover_period(
            user_id, stale_key=stale_key, current_key=current_key
        )

    async def increment_credits(self, user_id, *, expected_used, period_key):
        await asyncio.sleep(0)
        return await super().increment_credits(
            user_id, expected_used=expected_used, period_key=period_key
        )


class RacingStore(InMemoryStore):
    """Lets a competitor consume a credit right before the first ``losses`` CAS attempts."""

    def __init__(self, losses: int) -> None:
        super().__init__()
        self.losses = losses
        self.cas_attempts = 0

    async def increment_credits(self, user_id, *, expected_used, period_key):
        self.cas_attempts += 1
        if self.losses > 0:
            self.losses -= 1
            record = self.profiles[user_id]
            self.profiles[user_id] = record.model_copy(
                update={"credits_used_this_period": record.credits_used_this_period + 1}
            )
        return await super().increment_credits(
            user_id, expected_used=expected_used, period_key=period_key
        )


class TestPeriodKey:
    def test_format(self):
        assert period_key(JAN) == "202501"

    def test_converts_to_utc(self):
        """Period boundaries follow UTC, not the caller's offset."""
        from datetime import timedelta, timezone

        late_jan_local = datetime(2025, 1, 31, 20, 0, tzinfo=timezone(timedelta(hours=-5)))
        assert period_key(late_jan_local) == "202502"


class TestTierQuotas:
    def test_defaults(self):
        quotas = TierQuotas()
        assert quotas.for_tier("free") == 2
        assert quotas.for_tier("casual") == 5
        assert quotas.for_tier("pro") == 25

    def test_dev_no_quota_raises_free_only(self, test_settings):
        cfg = test_settings.model_copy(update={"dev_no_quota": True})
        quotas = TierQuotas.from_settings(cfg)
        assert quotas.for_tier("free") == 999
        assert quotas.for_tier("pro") == 25


class TestConsume:
    """QuotaGate.check_and_consume"""

    @pytest.mark.asyncio
    async def test_happy_path(self):
        """casual, 0 used -> used 1, remaining 4."""
        store = InMemoryStore()
        _seed(store, tier="casual", used=0)

        result = await _gate(store).check_and_consume(USER)

        assert (result.used, result.remaining, result.quota) == (1, 4, 5)
        assert store.profiles[USER].credits_used_this_period == 1

    @pytest.mark.asyncio
    async def test_exhausted_leaves_counter(self):
        """quota 2, used 2 -> QuotaExhausted and used stays 2."""
        store = InMemoryStore()
        _seed(store, tier="free", used=2)

        with pytest.raises(QuotaExhausted) as exc_info:
            await _gate(store).check_and_consume(USER)

        assert exc_info.value.quota == 2
        assert exc_info.value.used == 2
        assert exc_info.value.extra["remaining"] == 0
        assert store.profiles[USER].credits_used_this_period == 2

    @pytest.mark.asyncio
    async def test_missing_profile(self):
        with pytest.raises(ProfileNotFound):
            await _gate(InMemoryStore()).check_and_consume(USER)

    @pytest.mark.asyncio
    async def test_stale_period_rolls_over_before_consuming(self):
        """An exhausted December profile is reset in January and can consume again."""
        store = InMemoryStore()
        _seed(store, tier="free", used=2, period="202412")

        result = await _gate(store).check_and_consume(USER)

        assert result.used == 1
        assert store.profiles[USER].period_key == "202501"
        assert store.profiles[USER].credits_used_this_period == 1

    @pytest.mark.asyncio
    async def test_lost_race_retries_once_and_succeeds(self):
        """First CAS loses to a competitor; the retry uses the fresh counter."""
        store = RacingStore(losses=1)
        _seed(store, tier="casual", used=0)

        result = await _gate(store).check_and_consume(USER)

        assert store.cas_attempts == 2
        assert result.used == 2  # competitor's credit + ours
        assert store.profiles[USER].credits_used_this_period == 2

    @pytest.mark.asyncio
    async def test_two_lost_races_is_conflict(self):
        """Losing the retry too raises ConsumeConflict without a stray increment."""
        store = RacingStore(losses=2)
        _seed(store, tier="casual", used=0)

        with pytest.raises(ConsumeConflict):
            await _gate(store).check_and_consume(USER)

        assert store.cas_attempts == 2
        # Only the competitor's two credits landed
        assert store.profiles[USER].credits_used_this_period == 2

    @pytest.mark.asyncio
    async def test_retry_rechecks_quota(self):
        """If the competitor used the last credit, the retry reports exhaustion."""
        store = RacingStore(losses=1)
        _seed(store, tier="free", used=1)

        with pytest.raises(QuotaExhausted):
            await _gate(store).check_and_consume(USER)

        assert store.cas_attempts == 1
        assert store.profiles[USER].credits_used_this_period == 2

    @pytest.mark.asyncio
    async def test_zero_retries_fails_on_first_loss(self):
        store = RacingStore(losses=1)
        _seed(store, tier="casual", used=0)

        with pytest.raises(ConsumeConflict):
            await _gate(store, retries=0).check_and_consume(USER)
        assert store.cas_attempts == 1


class TestConcurrency:
    """Many concurrent consumers against one profile."""

    @pytest.mark.asyncio
    async def test_never_exceeds_quota_and_counts_every_success(self):
        """Final counter == number of successes, and never above the quota."""
        store = YieldingStore()
        _seed(store, tier="casual", used=0)
        gate = _gate(store)

        results = await asyncio.gather(
            *(gate.check_and_consume(USER) for _ in range(12)), return_exceptions=True
        )

        successes = [r for r in results if not isinstance(r, Exception)]
        failures = [r for r in results if isinstance(r, Exception)]
        assert all(isinstance(f, (QuotaExhausted, ConsumeConflict)) for f in failures)
        final = store.profiles[USER].credits_used_this_period
        assert final == len(successes)
        assert final <= 5
        assert sorted(r.used for r in successes) == list(range(1, final + 1))

    @pytest.mark.asyncio
    async def test_sequential_consumers_drain_exactly_to_quota(self):
        store = YieldingStore()
        _seed(store, tier="casual", used=0)
        gate = _gate(store)

        outcomes = []
        for _ in range(7):
            try:
                outcomes.append((await gate.check_and_consume(USER)).remaining)
            except QuotaExhausted:
                outcomes.append("exhausted")

        assert outcomes == [4, 3, 2, 1, 0, "exhausted", "exhausted"]

    @pytest.mark.asyncio
    async def test_concurrent_rollover_resets_once(self):
        """Two requests seeing the same stale key produce a single reset."""
        store = YieldingStore()
        _seed(store, tier="pro", used=7, period="202501")
        gate = _gate(store, now=FEB)

        views = await asyncio.gather(gate.check(USER), gate.check(USER))

        assert all(v.period_key == "202502" for v in views)
        assert all(v.used == 0 for v in views)
        assert store.profiles[USER].credits_used_this_period == 0

    @pytest.mark.asyncio
    async def test_rollover_does_not_erase_new_period_credits(self):
        """A late rollover attempt on an already-rolled row changes nothing."""
        store = InMemoryStore()
        _seed(store, tier="pro", used=3, period="202502")

        rolled = await store.rollover_period(USER, stale_key="202501", current_key="202502")

        assert rolled is None
        assert store.profiles[USER].credits_used_this_period == 3


class TestCheck:
    """QuotaGate.check"""

    @pytest.mark.asyncio
    async def test_view_fields(self):
        store = InMemoryStore()
        _seed(store, tier="casual", used=2)
        view = await _gate(store).check(USER)
        assert view.tier == "casual"
        assert (view.quota, view.used, view.remaining) == (5, 2, 3)
        assert view.period_key == "202501"
        assert view.preview_allowed is True

    @pytest.mark.asyncio
    async def test_free_tier_has_no_preview(self):
        store = InMemoryStore()
        _seed(store, tier="free")
        assert (await _gate(store).check(USER)).preview_allowed is False

    @pytest.mark.asyncio
    async def test_check_does_not_consume(self):
        store = InMemoryStore()
        _seed(store, tier="free", used=1)
        await _gate(store).check(USER)
        await _gate(store).check(USER)
        assert store.profiles[USER].credits_used_this_period == 1


class TestSummary:
    """QuotaGate.summary"""

    @pytest.mark.asyncio
    async def test_known_user(self):
        store = InMemoryStore()
        _seed(store, tier="casual", used=2)
        summary = await _gate(store).summary(USER)
        assert summary.tier == "casual"
        assert (summary.quota, summary.remaining) == (5, 3)
        assert summary.preview_allowed is True

    @pytest.mark.asyncio
    @pytest.mark.parametrize("user_id", ["nobody", "", "   ", None])
    async def test_unknown_or_blank_user_gets_free_defaults(self, user_id):
        summary = await _gate(InMemoryStore()).summary(user_id)
        assert summary.tier == "free"
        assert (summary.quota, summary.remaining) == (2, 2)
        assert summary.preview_allowed is False

    @pytest.mark.asyncio
    async def test_stale_period_rolls_over(self):
        store = InMemoryStore()
        _seed(store, tier="free", used=2, period="202501")
        summary = await _gate(store, now=FEB).summary(USER)
        assert summary.remaining == 2
        assert store.profiles[USER].period_key == "202502"

    @pytest.mark.asyncio
    async def test_remaining_never_negative(self):
        """A counter left above a lowered quota reports zero remaining."""
        store = InMemoryStore()
        _seed(store, tier="free", used=7)
        assert (await _gate(store).summary(USER)).remaining == 0


class TestEntitlementEndpoints:
    """POST /entitlements/check and /entitlements/consume"""

    @pytest.mark.asyncio
    async def test_consume_happy_path(self, client, seed_profile):
        seed_profile(USER, tier="casual", used=0)
        resp = await client.post("/entitlements/consume", json={"user_id": USER})
        assert resp.status_code == 200
        assert resp.json() == {"ok": True, "used": 1, "remaining": 4}

    @pytest.mark.asyncio
    async def test_consume_exhausted_is_402(self, client, seed_profile, store):
        seed_profile(USER, tier="free", used=2)
        resp = await client.post("/entitlements/consume", json={"user_id": USER})
        assert resp.status_code == 402
        body = resp.json()
        assert body["ok"] is False
        assert body["error"] == "quota_exhausted"
        assert body["quota"] == 2
        assert body["used"] == 2
        assert body["remaining"] == 0
        assert body["retryable"] is False
        assert store.profiles[USER].credits_used_this_period == 2

    @pytest.mark.asyncio
    async def test_consume_conflict_is_409(self, client, app, seed_profile):
        seed_profile(USER, tier="casual")

        async def _always_lose(user_id, *, expected_used, period_key):
            return None

        app.state.store.increment_credits = _always_lose
        resp = await client.post("/entitlements/consume", json={"user_id": USER})
        assert resp.status_code == 409
        assert resp.json()["error"] == "consume_conflict"
        assert resp.json()["retryable"] is True

    @pytest.mark.asyncio
    async def test_consume_missing_user_id(self, client):
        resp = await client.post("/entitlements/consume", json={})
        assert resp.status_code == 400
        assert resp.json()["error"] == "user_id_required"

    @pytest.mark.asyncio
    async def test_consume_unknown_profile(self, client):
        resp = await client.post("/entitlements/consume", json={"user_id": "nobody"})
        assert resp.status_code == 404
        assert resp.json()["error"] == "profile_not_found"

    @pytest.mark.asyncio
    async def test_check_returns_view(self, client, seed_profile, current_period):
        seed_profile(USER, tier="pro", used=3)
        resp = await client.post("/entitlements/check", json={"user_id": USER})
        assert resp.status_code == 200
        assert resp.json() == {
            "ok": True,
            "tier": "pro",
            "quota": 25,
            "used": 3,
            "remaining": 22,
            "period_key": current_period,
            "previewAllowed": True,
        }

    @pytest.mark.asyncio
    async def test_check_rolls_over_stale_period(self, client, seed_profile, current_period):
        seed_profile(USER, tier="free", used=2, period="199901")
        resp = await client.post("/entitlements/check", json={"user_id": USER})
        body = resp.json()
        assert body["used"] == 0
        assert body["remaining"] == 2
        assert body["period_key"] == current_period


class TestPaywallEndpoint:
    """GET /api/me/entitlements/{user_id} and /api/me/entitlements?user_id="""

    @pytest.mark.asyncio
    async def test_known_user(self, client, seed_profile):
        seed_profile(USER, tier="casual", used=2)
        resp = await client.get(f"/api/me/entitlements/{USER}")
        assert resp.status_code == 200
        assert resp.json() == {
            "ok": True,
            "tier": "casual",
            "quota": 5,
            "remaining": 3,
            "previewAllowed": True,
        }

    @pytest.mark.asyncio
    async def test_unknown_user_gets_free_defaults(self, client, store):
        resp = await client.get("/api/me/entitlements/nobody")
        assert resp.status_code == 200
        assert resp.json() == {
            "ok": True,
            "tier": "free",
            "quota": 2,
            "remaining": 2,
            "previewAllowed": False,
        }
        assert "nobody" not in store.profiles

    @pytest.mark.asyncio
    async def test_query_form(self, client, seed_profile):
        seed_profile(USER, tier="pro", used=5)
        resp = await client.get("/api/me/entitlements", params={"user_id": USER})
        assert resp.json()["remaining"] == 20

    @pytest.mark.asyncio
    async def test_query_form_without_user_is_default(self, client):
        resp = await client.get("/api/me/entitlements")
        assert resp.status_code == 200
        assert resp.json()["tier"] == "free"

    @pytest.mark.asyncio
    async def test_read_does_not_consume(self, client, seed_profile, store):
        seed_profile(USER, tier="casual", used=1)
        await client.get(f"/api/me/entitlements/{USER}")
        assert store.profiles[USER].credits_used_this_period == 1
