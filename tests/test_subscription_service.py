from datetime import datetime, timedelta, timezone

import pytest

from app.models.provider import SubscriptionStatus
from app.utils.errors import NotFound, ValidationError
from app.utils.subscription_service import SubscriptionService
from conftest import make_provider

PROOF = "https://cdn.example.com/payments/receipt.jpg"


@pytest.fixture
def subscriptions(store, clock):
    return SubscriptionService(store, now=clock)


async def test_trial_runs_one_calendar_month(subscriptions, clock):
    fields = subscriptions.trial_fields()

    assert fields["status"] == SubscriptionStatus.ACTIVE
    assert fields["subscription_start_date"] == clock()
    assert fields["subscription_end_date"] == datetime(2025, 2, 15, 12, 0, tzinfo=timezone.utc)


async def test_month_arithmetic_clamps_to_month_end(store):
    service = SubscriptionService(store, now=lambda: datetime(2025, 1, 31, tzinfo=timezone.utc))
    assert service.trial_fields()["subscription_end_date"] == datetime(2025, 2, 28, tzinfo=timezone.utc)


async def test_sweep_expires_only_lapsed_active_providers(subscriptions, store, clock):
    lapsed = await make_provider(store, clock, contact_no="+923000000001")
    current = await make_provider(store, clock, contact_no="+923000000002")
    clock.advance(days=20)
    await subscriptions.renew(current["id"], proof_reference=PROOF)
    clock.advance(days=15)

    assert await subscriptions.sweep_expired() == 1
    assert (await store.find_unique("providers", lapsed["id"]))["status"] == SubscriptionStatus.EXPIRED
    assert (await store.find_unique("providers", current["id"]))["status"] == SubscriptionStatus.ACTIVE
    # Already-expired providers are not counted twice
    assert await subscriptions.sweep_expired() == 0


async def test_sweep_ignores_deactivated_providers(subscriptions, store, clock):
    await make_provider(store, clock, is_active=False)
    clock.advance(days=40)
    assert await subscriptions.sweep_expired() == 0


async def test_renew_restarts_period_from_now_and_logs_payment(subscriptions, store, clock, provider):
    clock.advance(days=45)
    await subscriptions.sweep_expired()

    renewed = await subscriptions.renew(provider["id"], months=3, proof_reference=PROOF, amount=1500)

    assert renewed["status"] == SubscriptionStatus.ACTIVE
    assert renewed["subscription_start_date"] == clock()
    assert renewed["subscription_end_date"] == datetime(2025, 6, 1, 12, 0, tzinfo=timezone.utc)

    payments = await store.find_many("payments", {"provider_id": provider["id"]})
    assert len(payments) == 1
    assert payments[0]["screenshot_path"] == PROOF
    assert payments[0]["months"] == 3
    assert payments[0]["amount"] == 1500


async def test_renew_requires_proof_and_positive_months(subscriptions, provider):
    with pytest.raises(ValidationError):
        await subscriptions.renew(provider["id"], proof_reference=None)
    with pytest.raises(ValidationError):
        await subscriptions.renew(provider["id"], months=0, proof_reference=PROOF)


async def test_renew_unknown_or_deleted_provider(subscriptions, store, clock):
    with pytest.raises(NotFound):
        await subscriptions.renew(999, proof_reference=PROOF)

    gone = await make_provider(store, clock, is_active=False)
    with pytest.raises(NotFound):
        await subscriptions.renew(gone["id"], proof_reference=PROOF)


async def test_status_reports_days_until_expiry(subscriptions, clock, provider):
    clock.advance(days=10, hours=1)
    status = await subscriptions.get_status(provider["id"])

    assert status["is_subscription_active"] is True
    assert status["is_expired"] is False
    # 20 days 23 hours left rounds up
    assert status["days_until_expiry"] == 21

    clock.advance(days=30)
    status = await subscriptions.get_status(provider["id"])
    assert status["is_expired"] is True
    assert status["days_until_expiry"] == 0


async def test_list_pending_sweeps_first_and_orders_by_expiry(subscriptions, store, clock):
    older = await make_provider(store, clock, contact_no="+923000000001")
    clock.advance(days=2)
    newer = await make_provider(store, clock, contact_no="+923000000002")
    await make_provider(store, clock, contact_no="+923000000003", is_active=False)
    clock.advance(days=35)

    pending = await subscriptions.list_pending()

    assert [p["id"] for p in pending] == [older["id"], newer["id"]]
    assert all(p["status"] == SubscriptionStatus.EXPIRED for p in pending)
    # older expired on Feb 15 12:00, now is Feb 21 12:00
    assert pending[0]["days_expired"] == 6
    assert pending[0]["message"] == "Subscription expired 6 days ago"
    assert pending[1]["days_expired"] == 4


async def test_list_pending_excludes_current_subscriptions(subscriptions, provider):
    assert await subscriptions.list_pending() == []


async def test_renew_one_month_from_expired_state(subscriptions, store, clock):
    lapsed = await make_provider(
        store,
        clock,
        status=SubscriptionStatus.EXPIRED.value,
        subscription_end_date=datetime(2024, 12, 1, tzinfo=timezone.utc),
    )

    renewed = await subscriptions.renew(lapsed["id"], months=1, proof_reference=PROOF)

    assert renewed["status"] == SubscriptionStatus.ACTIVE
    assert renewed["subscription_end_date"] == datetime(2025, 2, 15, 12, 0, tzinfo=timezone.utc)


async def test_provider_expired_yesterday_is_pending_with_status_forced(subscriptions, store, clock):
    provider = await make_provider(store, clock, subscription_end_date=clock() - timedelta(days=1))
    assert provider["status"] == SubscriptionStatus.ACTIVE

    pending = await subscriptions.list_pending()

    assert [p["id"] for p in pending] == [provider["id"]]
    assert pending[0]["status"] == SubscriptionStatus.EXPIRED
    assert pending[0]["days_expired"] == 1


async def test_provider_without_end_date_is_not_expired(subscriptions, store, clock):
    never = await make_provider(store, clock, subscription_end_date=None, subscription_start_date=None)

    status = await subscriptions.get_status(never["id"])
    assert status["is_expired"] is False
    assert status["days_until_expiry"] == 0
    assert await subscriptions.list_pending() == []


async def test_status_separates_subscription_from_account_flag(subscriptions, clock, provider):
    clock.advance(days=40)
    await subscriptions.sweep_expired()

    status = await subscriptions.get_status(provider["id"])
    assert status["status"] == SubscriptionStatus.EXPIRED
    assert status["is_subscription_active"] is False
    assert "is_active" not in status
