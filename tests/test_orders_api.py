import unittest

from app.services.order_status import COMPLETED, PENDING_HANDOFF, RUNNER_AT_ATM
from tests.api_case import API, ApiTestCase
from tests.factories import make_address, make_bank_account, make_order, make_user


class OrderCreateApiTestCase(ApiTestCase):
    def test_quote_is_public(self):
        response = self.client.get(f"{API}/orders/quote", params={"amount": 200})
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["total_payment"], 216.08)

    def test_anonymous_create_is_401(self):
        response = self.client.post(
            f"{API}/orders", json={"requested_amount": 200, "customer_address": "1 Main St"}
        )
        self.assertEqual(response.status_code, 401)

    def test_runner_cannot_create(self):
        response = self.as_user(self.runner).post(
            f"{API}/orders", json={"requested_amount": 200, "customer_address": "1 Main St"}
        )
        self.assertEqual(response.status_code, 403)

    def test_amount_off_the_step_is_400(self):
        response = self.as_user(self.customer).post(
            f"{API}/orders", json={"requested_amount": 110, "customer_address": "1 Main St"}
        )
        self.assertEqual(response.status_code, 400)

    def test_address_is_required(self):
        response = self.as_user(self.customer).post(f"{API}/orders", json={"requested_amount": 200})
        self.assertEqual(response.status_code, 422)

    def test_create_with_saved_address_freezes_snapshot(self):
        address = make_address(self.session, self.customer)

        response = self.as_user(self.customer).post(
            f"{API}/orders", json={"requested_amount": 200, "address_id": str(address.id)}
        )

        self.assertEqual(response.status_code, 201)
        body = response.json()
        self.assertEqual(body["status"], "Pending")
        self.assertEqual(body["total_payment"], 216.08)
        self.assertEqual(body["address_snapshot"]["line1"], "123 Main St")
        self.assertEqual(body["customer_address"], "123 Main St, Austin, TX 78701")
        self.assertEqual(body["customer"]["id"], str(self.customer.id))
        self.assertNotIn("otp_code", body)

    def test_someone_elses_address_is_404(self):
        other = make_user(self.session, "customer")
        address = make_address(self.session, other)

        response = self.as_user(self.customer).post(
            f"{API}/orders", json={"requested_amount": 200, "address_id": str(address.id)}
        )

        self.assertEqual(response.status_code, 404)

    def test_retried_create_returns_same_order(self):
        payload = {
            "requested_amount": 200,
            "customer_address": "1 Main St",
            "client_request_id": "tap-1",
        }
        client = self.as_user(self.customer)
        first = client.post(f"{API}/orders", json=payload).json()
        second = client.post(f"{API}/orders", json=payload).json()

        self.assertEqual(first["id"], second["id"])
        self.assertEqual(len(client.get(f"{API}/orders/me").json()), 1)

    def test_daily_limit(self):
        client = self.as_user(self.customer)
        ok = client.post(f"{API}/orders", json={"requested_amount": 1000, "customer_address": "1 Main St"})
        self.assertEqual(ok.status_code, 201)

        over = client.post(f"{API}/orders", json={"requested_amount": 100, "customer_address": "1 Main St"})

        self.assertEqual(over.status_code, 400)
        self.assertEqual(over.json()["detail"], "Daily limit exceeded")


class OrderFlowApiTestCase(ApiTestCase):
    def test_full_handoff_flow(self):
        created = self.as_user(self.customer).post(
            f"{API}/orders", json={"requested_amount": 200, "customer_address": "1 Main St"}
        )
        order_id = created.json()["id"]
        url = f"{API}/orders/{order_id}"

        available = self.as_user(self.runner).get(f"{API}/orders/available").json()
        self.assertEqual([o["id"] for o in available], [order_id])

        accepted = self.as_user(self.runner).post(f"{url}/accept")
        self.assertEqual(accepted.status_code, 200)
        self.assertEqual(accepted.json()["status"], "Runner Accepted")
        self.assertEqual(accepted.json()["runner"]["name"], "Sam")

        rival = make_user(self.session, "runner")
        self.assertEqual(self.as_user(rival).post(f"{url}/accept").status_code, 409)

        runner = self.as_user(self.runner)
        self.assertEqual(runner.post(f"{url}/arrive-atm").json()["status"], RUNNER_AT_ATM)
        self.assertEqual(runner.post(f"{url}/withdraw").json()["status"], "Cash Withdrawn")

        issued = runner.post(f"{url}/otp")
        self.assertEqual(issued.json()["status"], PENDING_HANDOFF)
        self.assertNotIn("otp_code", issued.json())
        self.assertFalse(issued.json()["runner_arrived"])

        arrived = runner.post(f"{url}/arrived")
        self.assertTrue(arrived.json()["runner_arrived"])
        self.assertTrue(runner.get(url).json()["runner_arrived"])

        code = self.as_user(self.customer).get(f"{url}/otp").json()["code"]
        self.assertEqual(self.as_user(self.runner).get(f"{url}/otp").status_code, 403)

        wrong = self.as_user(self.runner).post(f"{url}/verify-otp", json={"code": "000000"})
        self.assertEqual(wrong.json(), {"verified": False})
        right = self.as_user(self.runner).post(f"{url}/verify-otp", json={"code": code})
        self.assertEqual(right.json(), {"verified": True})

        customer = self.as_user(self.customer)
        self.assertEqual(customer.get(url).json()["status"], COMPLETED)
        rated = customer.post(f"{url}/rating", json={"rating": 5, "comment": "fast"})
        self.assertEqual(rated.json()["rating"], 5)
        self.assertEqual(customer.post(f"{url}/rating", json={"rating": 1}).status_code, 409)

        history = customer.get(f"{url}/history").json()
        event_types = [e["event_type"] for e in history if e["event_type"]]
        self.assertEqual(
            event_types,
            [
                "order_created",
                "runner_assigned",
                "runner_en_route",
                "runner_arrived",
                "otp_verified",
                "handoff_completed",
            ],
        )
        transitions = [e["to_status"] for e in history if e["to_status"]]
        self.assertEqual(transitions[0], "Pending")
        self.assertEqual(transitions[-1], COMPLETED)

    def test_only_assigned_runner_can_advance(self):
        order = make_order(self.session, self.customer, status="Runner Accepted", runner_id=self.runner.id)
        rival = make_user(self.session, "runner")

        response = self.as_user(rival).post(f"{API}/orders/{order.id}/arrive-atm")

        self.assertEqual(response.status_code, 403)

    def test_skipping_a_step_is_409(self):
        order = make_order(self.session, self.customer, status="Runner Accepted", runner_id=self.runner.id)

        response = self.as_user(self.runner).post(f"{API}/orders/{order.id}/withdraw")

        self.assertEqual(response.status_code, 409)

    def test_invalid_code_format_is_422(self):
        order = make_order(self.session, self.customer, status=PENDING_HANDOFF, runner_id=self.runner.id)
        response = self.as_user(self.runner).post(
            f"{API}/orders/{order.id}/verify-otp", json={"code": "12ab"}
        )
        self.assertEqual(response.status_code, 422)

    def test_non_ascii_digit_code_is_422(self):
        order = make_order(self.session, self.customer, status=PENDING_HANDOFF, runner_id=self.runner.id)
        response = self.as_user(self.runner).post(
            f"{API}/orders/{order.id}/verify-otp",
            json={"code": "\uff11\uff12\uff13\uff14\uff15\uff16"},
        )
        self.assertEqual(response.status_code, 422)

    def test_other_customers_order_is_404(self):
        other = make_user(self.session, "customer")
        order = make_order(self.session, other)
        self.assertEqual(self.as_user(self.customer).get(f"{API}/orders/{order.id}").status_code, 404)

    def test_admin_lists_everything(self):
        make_order(self.session, self.customer)
        make_order(self.session, self.customer, status=COMPLETED)

        self.assertEqual(len(self.as_user(self.admin).get(f"{API}/orders").json()), 2)
        self.assertEqual(self.as_user(self.customer).get(f"{API}/orders").status_code, 403)


class CancelApiTestCase(ApiTestCase):
    def cancel(self, user, order, reason="changed my mind"):
        return self.as_user(user).post(f"{API}/orders/{order.id}/cancel", json={"reason": reason})

    def test_customer_cancels_pending_order_once(self):
        order = make_order(self.session, self.customer)

        first = self.cancel(self.customer, order)
        second = self.cancel(self.customer, order, reason="again")

        self.assertEqual(first.status_code, 200)
        self.assertEqual(first.json()["status"], "Cancelled")
        self.assertEqual(second.status_code, 200)
        self.assertEqual(second.json()["cancellation_reason"], "changed my mind")

    def test_customer_cannot_cancel_after_atm(self):
        order = make_order(self.session, self.customer, status=RUNNER_AT_ATM, runner_id=self.runner.id)
        self.assertEqual(self.cancel(self.customer, order).status_code, 409)

    def test_runner_cannot_cancel(self):
        order = make_order(self.session, self.customer, status="Runner Accepted", runner_id=self.runner.id)
        self.assertEqual(self.cancel(self.runner, order).status_code, 403)

    def test_admin_cancels_late_stage_order(self):
        order = make_order(self.session, self.customer, status=PENDING_HANDOFF, runner_id=self.runner.id)
        response = self.cancel(self.admin, order, reason="customer unreachable")
        self.assertEqual(response.json()["status"], "Cancelled")

    def test_completed_order_cannot_be_cancelled(self):
        order = make_order(self.session, self.customer, status=COMPLETED)
        self.assertEqual(self.cancel(self.admin, order).status_code, 409)

    def test_blank_reason_is_422(self):
        order = make_order(self.session, self.customer)
        self.assertEqual(self.cancel(self.customer, order, reason="   ").status_code, 422)


class ReorderApiTestCase(ApiTestCase):
    def test_missing_bank_blocks_reorder(self):
        order = make_order(self.session, self.customer, status=COMPLETED)
        client = self.as_user(self.customer)

        eligibility = client.get(f"{API}/orders/{order.id}/reorder-eligibility").json()
        self.assertEqual(eligibility["reason"], "missing_bank")

        response = client.post(f"{API}/orders/{order.id}/reorder")
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()["detail"]["reason"], "missing_bank")

    def test_reorder_reuses_saved_address(self):
        make_bank_account(self.session, self.customer)
        address = make_address(self.session, self.customer)
        order = make_order(
            self.session, self.customer, amount=300, status=COMPLETED, address_id=address.id
        )

        response = self.as_user(self.customer).post(f"{API}/orders/{order.id}/reorder")

        self.assertEqual(response.status_code, 201)
        body = response.json()
        self.assertNotEqual(body["id"], str(order.id))
        self.assertEqual(body["requested_amount"], 300)
        self.assertEqual(body["address_id"], str(address.id))
        self.assertEqual(body["status"], "Pending")

    def test_reorder_falls_back_to_snapshot_of_deleted_address(self):
        make_bank_account(self.session, self.customer)
        snapshot = {"line1": "9 Old Rd", "city": "Austin", "state": "TX", "postal_code": "78702"}
        order = make_order(
            self.session,
            self.customer,
            status=COMPLETED,
            address_snapshot=snapshot,
            customer_address="9 Old Rd, Austin, TX 78702",
        )

        response = self.as_user(self.customer).post(f"{API}/orders/{order.id}/reorder")

        self.assertEqual(response.status_code, 201)
        self.assertIsNone(response.json()["address_id"])
        self.assertEqual(response.json()["address_snapshot"]["line1"], "9 Old Rd")


if __name__ == "__main__":
    unittest.main()
