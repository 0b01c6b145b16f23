import unittest
import uuid
from datetime import datetime, timezone

from tests.api_case import API, ApiTestCase
from tests.factories import make_bank_account, make_user


class UsersApiTestCase(ApiTestCase):
    def test_me_requires_auth(self):
        self.assertEqual(self.client.get(f"{API}/users/me").status_code, 401)

    def test_me(self):
        legacy = make_user(self.session, "customer", plaid_item_id="item-1")
        body = self.as_user(legacy).get(f"{API}/users/me").json()
        self.assertEqual(body["role"], "customer")
        self.assertTrue(body["has_legacy_bank_link"])

    def test_rename_self(self):
        response = self.as_user(self.customer).patch(f"{API}/users/me", json={"name": "  Pat  "})
        self.assertEqual(response.json()["name"], "Pat")

    def test_cannot_change_own_role(self):
        response = self.as_user(self.customer).patch(f"{API}/users/me", json={"role": "admin"})
        self.assertEqual(response.status_code, 422)

    def test_admin_promotes_customer_to_runner(self):
        response = self.as_user(self.admin).patch(
            f"{API}/users/{self.customer.id}/role", json={"role": "runner"}
        )
        self.assertEqual(response.json()["role"], "runner")

        runners = self.as_user(self.admin).get(f"{API}/users", params={"role": "runner"}).json()
        self.assertEqual({u["id"] for u in runners}, {str(self.runner.id), str(self.customer.id)})

    def test_non_admin_cannot_manage_users(self):
        response = self.as_user(self.runner).patch(
            f"{API}/users/{self.customer.id}/role", json={"role": "admin"}
        )
        self.assertEqual(response.status_code, 403)

    def test_disabled_account_is_rejected(self):
        self.as_user(self.admin).patch(
            f"{API}/users/{self.runner.id}/status", json={"account_status": "disabled"}
        )

        response = self.as_user(self.runner).get(f"{API}/orders/available")

        self.assertEqual(response.status_code, 403)

    def test_unknown_user_is_404(self):
        response = self.as_user(self.admin).get(f"{API}/users/{uuid.uuid4()}")
        self.assertEqual(response.status_code, 404)


class BankAccountsApiTestCase(ApiTestCase):
    def test_lists_only_connected_accounts(self):
        kept = make_bank_account(self.session, self.customer, is_primary=True)
        make_bank_account(self.session, self.customer, disconnected_at=datetime.now(timezone.utc))

        body = self.as_user(self.customer).get(f"{API}/bank-accounts").json()

        self.assertEqual([a["id"] for a in body], [str(kept.id)])


if __name__ == "__main__":
    unittest.main()
