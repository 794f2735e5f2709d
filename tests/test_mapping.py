"""Tests for Stripe subscription -> SubscriptionRecord mapping."""

from datetime import datetime, timezone

import pytest
import stripe

from billing_relay.errors import MappingError
from billing_relay.services.mapping import map_subscription, resolve_user_id, to_iso

from conftest import make_subscription

PROCESSED_AT = datetime(2024, 1, 2, 3, 4, 5, tzinfo=timezone.utc)


class TestToIso:

    def test_known_value(self):
        assert to_iso(1700000000) == "2023-11-14T22:13:20.000Z"

    @pytest.mark.parametrize("ts", [1, 86400, 1234567890, 1700000000, 4102444800])
    def test_matches_epoch_seconds(self, ts):
        expected = datetime.fromtimestamp(ts, tz=timezone.utc)
        result = to_iso(ts)
        assert result.endswith(".000Z")
        parsed = datetime.strptime(result, "%Y-%m-%dT%H:%M:%S.%fZ")
        assert parsed.replace(tzinfo=timezone.utc) == expected

    @pytest.mark.parametrize("ts", [None, 0])
    def test_absent_or_zero_is_none(self, ts):
        assert to_iso(ts) is None

    @pytest.mark.parametrize("ts", ["1700000000", True, {"ts": 1}])
    def test_non_numeric_raises(self, ts):
        with pytest.raises(MappingError):
            to_iso(ts)

    @pytest.mark.parametrize("ts", [10**20, -10**20, float("inf"), float("nan")])
    def test_out_of_range_raises(self, ts):
        with pytest.raises(MappingError, match="out of range"):
            to_iso(ts)


class TestResolveUserId:

    def test_event_metadata_wins(self):
        sub = make_subscription(metadata={"user_id": "from_sub"})
        assert resolve_user_id(sub, {"user_id": "from_event"}) == "from_event"

    def test_falls_back_to_subscription(self):
        sub = make_subscription(metadata={"user_id": "from_sub"})
        assert resolve_user_id(sub, {}) == "from_sub"
        assert resolve_user_id(sub, None) == "from_sub"

    def test_empty_event_value_falls_back(self):
        sub = make_subscription(metadata={"user_id": "from_sub"})
        assert resolve_user_id(sub, {"user_id": ""}) == "from_sub"

    def test_unresolvable(self):
        assert resolve_user_id(make_subscription(metadata={}), None) is None
        assert resolve_user_id(make_subscription(metadata=None), None) is None


class TestMapSubscription:

    def test_maps_all_fields(self):
        sub = make_subscription(
            status="trialing",
            trial_start=1698790400,
            trial_end=1700000000,
            cancel_at=1702592000,
        )

        record = map_subscription(sub, processed_at=PROCESSED_AT)

        assert record.user_id == "u1"
        assert record.stripe_customer_id == "cus_test_001"
        assert record.stripe_subscription_id == "sub_test_001"
        assert record.stripe_price_id == "price_test_monthly"
        assert record.status == "trialing"
        assert record.current_period_start == "2023-11-14T22:13:20.000Z"
        assert record.current_period_end == "2023-12-14T22:13:20.000Z"
        assert record.trial_start == "2023-10-31T22:13:20.000Z"
        assert record.trial_end == "2023-11-14T22:13:20.000Z"
        assert record.cancel_at == "2023-12-14T22:13:20.000Z"
        assert record.canceled_at is None
        assert record.updated_at == "2024-01-02T03:04:05.000Z"

    def test_missing_user_id_raises(self):
        with pytest.raises(MappingError, match="user_id"):
            map_subscription(make_subscription(metadata={}))

    def test_empty_line_items_raises(self):
        sub = make_subscription(items={"object": "list", "data": []})
        with pytest.raises(MappingError, match="line items"):
            map_subscription(sub)

    def test_items_data_not_a_list_raises(self):
        sub = make_subscription(items={"data": {"price": {"id": "price_test_monthly"}}})
        with pytest.raises(MappingError, match="line items"):
            map_subscription(sub)

    def test_out_of_range_timestamp_raises(self):
        with pytest.raises(MappingError):
            map_subscription(make_subscription(trial_end=10**20))

    def test_missing_items_raises(self):
        sub = make_subscription()
        del sub["items"]
        with pytest.raises(MappingError):
            map_subscription(sub)

    def test_period_read_from_first_item(self):
        """Newer API versions only report the period on the subscription item."""
        sub = make_subscription(
            current_period_start=None,
            current_period_end=None,
            items={"data": [{
                "price": {"id": "price_test_monthly"},
                "current_period_start": 1700000000,
                "current_period_end": 1702592000,
            }]},
        )

        record = map_subscription(sub, processed_at=PROCESSED_AT)

        assert record.current_period_start == "2023-11-14T22:13:20.000Z"
        assert record.current_period_end == "2023-12-14T22:13:20.000Z"

    def test_expanded_customer(self):
        sub = make_subscription(customer={"id": "cus_expanded", "object": "customer"})
        assert map_subscription(sub).stripe_customer_id == "cus_expanded"

    def test_accepts_stripe_object(self):
        sub = stripe.Subscription.construct_from(
            make_subscription(status="past_due"), "sk_test_fake"
        )

        record = map_subscription(sub, processed_at=PROCESSED_AT)

        assert record.user_id == "u1"
        assert record.stripe_price_id == "price_test_monthly"
        assert record.status == "past_due"
        assert record.trial_end is None
