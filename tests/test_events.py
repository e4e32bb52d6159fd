import unittest

from study_billing.services.events import (
    CheckoutCompleted,
    IgnoredEvent,
    SubscriptionChanged,
    SubscriptionDeleted,
    SubscriptionSnapshot,
    parse_event,
)
from tests.fakes import checkout_obj, event_body, subscription_obj


class TestSubscriptionSnapshot(unittest.TestCase):
    def test_from_stripe_maps_fields(self):
        snap = SubscriptionSnapshot.from_stripe(
            subscription_obj("sub_1", "cus_1", status="active", user_id="u1", trial_end=None, current_period_end=1_700_000_000)
        )
        self.assertEqual(snap.subscription_id, "sub_1")
        self.assertEqual(snap.customer_id, "cus_1")
        self.assertEqual(snap.status, "active")
        self.assertEqual(snap.price_id, "price_monthly")
        self.assertEqual(snap.current_period_end, "2023-11-14T22:13:20+00:00")
        self.assertIsNone(snap.trial_end)
        self.assertFalse(snap.cancel_at_period_end)
        self.assertEqual(snap.user_id, "u1")

    def test_expanded_customer_and_item_period(self):
        sub = subscription_obj("sub_1", "cus_1")
        sub["customer"] = {"id": "cus_9", "object": "customer"}
        sub["current_period_end"] = None
        sub["items"]["data"][0]["current_period_end"] = 1_700_000_000
        sub["metadata"] = {"user_id": "u2"}
        snap = SubscriptionSnapshot.from_stripe(sub)
        self.assertEqual(snap.customer_id, "cus_9")
        self.assertEqual(snap.current_period_end, "2023-11-14T22:13:20+00:00")
        self.assertEqual(snap.user_id, "u2")

    def test_canceled_forces_status_and_flag(self):
        snap = SubscriptionSnapshot.from_stripe(subscription_obj("sub_1", "cus_1", status="past_due"))
        canceled = snap.canceled()
        self.assertEqual(canceled.status, "canceled")
        self.assertTrue(canceled.cancel_at_period_end)
        self.assertEqual(canceled.price_id, snap.price_id)


class TestParseEvent(unittest.TestCase):
    def test_checkout_prefers_client_reference_id(self):
        obj = checkout_obj(user_id="u1", customer_id="cus_1", subscription_id="sub_1")
        obj["metadata"] = {"supabase_user_id": "other"}
        event = parse_event(event_body("checkout.session.completed", obj, created=10))
        self.assertIsInstance(event, CheckoutCompleted)
        self.assertEqual(event.user_id, "u1")
        self.assertEqual(event.customer_id, "cus_1")
        self.assertEqual(event.subscription_id, "sub_1")
        self.assertEqual(event.created, 10)

    def test_checkout_falls_back_to_metadata(self):
        obj = checkout_obj(user_id=None, customer_id=None, subscription_id=None)
        obj["metadata"] = {"supabase_user_id": "u3"}
        event = parse_event(event_body("checkout.session.completed", obj))
        self.assertEqual(event.user_id, "u3")
        self.assertIsNone(event.subscription_id)
        self.assertIsNone(event.customer_id)

    def test_subscription_variants(self):
        sub = subscription_obj("sub_1", "cus_1")
        self.assertIsInstance(parse_event(event_body("customer.subscription.created", sub)), SubscriptionChanged)
        self.assertIsInstance(parse_event(event_body("customer.subscription.updated", sub)), SubscriptionChanged)
        self.assertIsInstance(parse_event(event_body("customer.subscription.deleted", sub)), SubscriptionDeleted)

    def test_other_types_are_ignored(self):
        event = parse_event(event_body("invoice.paid", {"id": "in_1"}, event_id="evt_9"))
        self.assertIsInstance(event, IgnoredEvent)
        self.assertEqual(event.event_type, "invoice.paid")
        self.assertEqual(event.event_id, "evt_9")
