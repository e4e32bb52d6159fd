import unittest

from study_billing.services.fingerprints import FingerprintLedger, is_same_trial
from study_billing.services.stripe_gateway import StripeGateway
from tests.fakes import FakeStripe, FakeTable, client_error, subscription_obj


class TestFingerprintLedger(unittest.TestCase):
    def setUp(self):
        self.stripe = FakeStripe()
        self.table = FakeTable("fingerprint")
        self.ledger = FingerprintLedger(self.table, StripeGateway(self.stripe))
        self.stripe.add_customer("cus_1")
        self.stripe.add_card("pm_1", "cus_1", "fp_card_a")
        self.stripe.add_subscription(subscription_obj("sub_1", "cus_1", default_pm="pm_1"))

    def test_first_use_is_recorded(self):
        result = self.ledger.check_and_record("cus_1", "sub_1", "u1")
        self.assertFalse(result.reused)
        self.assertEqual(result.fingerprint, "fp_card_a")
        entry = self.table.items["fp_card_a"]
        self.assertEqual(entry["first_user_id"], "u1")
        self.assertEqual(entry["stripe_customer_id"], "cus_1")
        self.assertEqual(entry["first_subscription_id"], "sub_1")
        self.assertIn("created_at", entry)

    def test_same_card_other_subscription_is_reuse(self):
        self.ledger.check_and_record("cus_1", "sub_1", "u1")
        self.stripe.add_customer("cus_2")
        self.stripe.add_card("pm_2", "cus_2", "fp_card_a")
        self.stripe.add_subscription(subscription_obj("sub_2", "cus_2", default_pm="pm_2"))

        result = self.ledger.check_and_record("cus_2", "sub_2", "u2")
        self.assertTrue(result.reused)
        self.assertEqual(self.table.items["fp_card_a"]["first_user_id"], "u1")
        self.assertEqual(self.table.writes, 1)

    def test_replay_for_same_subscription_is_not_reuse(self):
        self.ledger.check_and_record("cus_1", "sub_1", "u1")
        result = self.ledger.check_and_record("cus_1", "sub_1", "u1")
        self.assertFalse(result.reused)
        self.assertEqual(self.table.writes, 1)

    def test_customer_default_then_latest_card(self):
        self.stripe.add_subscription(subscription_obj("sub_3", "cus_3"))
        self.stripe.add_card("pm_3", "cus_3", "fp_default")
        self.stripe.add_customer("cus_3", default_pm="pm_3")
        self.assertEqual(self.ledger.resolve_fingerprint("cus_3", "sub_3"), "fp_default")

        self.stripe.add_subscription(subscription_obj("sub_4", "cus_4"))
        self.stripe.add_customer("cus_4")
        self.stripe.add_card("pm_4", "cus_4", "fp_listed")
        self.assertEqual(self.ledger.resolve_fingerprint("cus_4", "sub_4"), "fp_listed")

    def test_deleted_customer_skips_invoice_settings(self):
        self.stripe.add_subscription(subscription_obj("sub_5", "cus_gone"))
        result = self.ledger.check_and_record("cus_gone", "sub_5", "u5")
        self.assertFalse(result.reused)
        self.assertIsNone(result.fingerprint)
        self.assertEqual(self.table.writes, 0)

    def test_lookup_error_fails_open(self):
        self.table.fail["get_item"] = client_error("ProvisionedThroughputExceededException", "GetItem")
        result = self.ledger.check_and_record("cus_1", "sub_1", "u1")
        self.assertFalse(result.reused)
        self.assertEqual(result.fingerprint, "fp_card_a")
        self.assertEqual(self.table.writes, 0)

    def test_insert_error_is_not_reuse(self):
        self.table.fail["put_item"] = client_error("InternalServerError")
        result = self.ledger.check_and_record("cus_1", "sub_1", "u1")
        self.assertFalse(result.reused)

    def test_losing_first_use_race_keeps_first_writer(self):
        self.table.items["fp_card_a"] = {"fingerprint": "fp_card_a", "first_user_id": "u0", "first_subscription_id": "sub_0"}
        self.assertFalse(self.ledger.record_first_use("fp_card_a", user_id="u1", customer_id="cus_1", subscription_id="sub_1"))
        self.assertEqual(self.table.items["fp_card_a"]["first_user_id"], "u0")


class TestIsSameTrial(unittest.TestCase):
    def test_prefers_subscription_id(self):
        self.assertTrue(is_same_trial({"first_subscription_id": "sub_1", "first_user_id": "u9"}, "sub_1", "u1"))
        self.assertFalse(is_same_trial({"first_subscription_id": "sub_1", "first_user_id": "u1"}, "sub_2", "u1"))

    def test_entries_without_subscription_fall_back_to_user(self):
        self.assertTrue(is_same_trial({"first_user_id": "u1"}, "sub_2", "u1"))
        self.assertFalse(is_same_trial({"first_user_id": "u1"}, "sub_2", "u2"))
