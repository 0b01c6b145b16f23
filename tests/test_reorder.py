import unittest
import uuid

from app.models.address import CustomerAddress
from app.models.bank_account import BankAccount
from app.models.order import Order
from app.models.user import User
from app.services.reorder import (
    MISSING_ADDRESS_MESSAGE,
    MISSING_BANK_MESSAGE,
    validate_reorder_eligibility,
)


class ReorderEligibilityTestCase(unittest.TestCase):
    def setUp(self):
        self.customer = User(id=uuid.uuid4(), email="pat@example.com", name="Pat")
        self.address = CustomerAddress(
            customer_id=self.customer.id,
            line1="123 Main St",
            city="Austin",
            state="TX",
            postal_code="78701",
        )
        self.bank = BankAccount(customer_id=self.customer.id, account_mask="1234")
        self.order = Order(
            customer_id=self.customer.id,
            requested_amount=200,
            profit=4,
            compliance_fee=3.92,
            delivery_fee=8.16,
            total_service_fee=16.08,
            total_payment=216.08,
            customer_address="123 Main St, Austin, TX 78701",
            address_id=self.address.id,
        )

    def test_eligible(self):
        result = validate_reorder_eligibility(
            self.customer, [self.address], self.order, [self.bank]
        )
        self.assertTrue(result.ok)
        self.assertIsNone(result.reason)

    def test_missing_bank(self):
        result = validate_reorder_eligibility(self.customer, [self.address], self.order, [])
        self.assertFalse(result.ok)
        self.assertEqual(result.reason, "missing_bank")
        self.assertEqual(result.message, MISSING_BANK_MESSAGE)

    def test_legacy_bank_link_counts(self):
        self.customer.plaid_item_id = "item-123"
        result = validate_reorder_eligibility(self.customer, [self.address], self.order, [])
        self.assertTrue(result.ok)

    def test_missing_profile_means_missing_bank(self):
        result = validate_reorder_eligibility(None, [self.address], self.order, [])
        self.assertEqual(result.reason, "missing_bank")

    def test_missing_address(self):
        result = validate_reorder_eligibility(self.customer, [], self.order, [self.bank])
        self.assertFalse(result.ok)
        self.assertEqual(result.reason, "missing_address")
        self.assertEqual(result.message, MISSING_ADDRESS_MESSAGE)

    def test_snapshot_keeps_deleted_address_eligible(self):
        self.order.address_snapshot = {"line1": "123 Main St", "city": "Austin"}
        result = validate_reorder_eligibility(self.customer, [], self.order, [self.bank])
        self.assertTrue(result.ok)

    def test_bank_is_checked_before_address(self):
        self.order.status = "Cancelled"
        result = validate_reorder_eligibility(self.customer, [], self.order, [])
        self.assertEqual(result.reason, "missing_bank")

    def test_blocked_hook(self):
        result = validate_reorder_eligibility(
            self.customer,
            [self.address],
            self.order,
            [self.bank],
            is_blocked=lambda order: True,
        )
        self.assertFalse(result.ok)
        self.assertEqual(result.reason, "blocked_order")

    def test_disabled_previous_runner_is_only_logged(self):
        runner = User(
            id=uuid.uuid4(),
            email="runner@example.com",
            name="Sam",
            role="runner",
            account_status="disabled",
        )
        with self.assertLogs("app.services.reorder", level="WARNING"):
            result = validate_reorder_eligibility(
                self.customer, [self.address], self.order, [self.bank], previous_runner=runner
            )
        self.assertTrue(result.ok)


if __name__ == "__main__":
    unittest.main()
