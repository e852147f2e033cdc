import unittest
from datetime import date
from unittest import mock

import requests

from app_case import AppTestCase, gateway_response

from models.order_model import Order
from models.subscription_model import Subscription
from services import order_store, subscription_store
from services.provisioning import ProvisioningService
from services.records import OrderStatus


def _form(plan_id, **overrides):
    form = {
        "plan_id": plan_id,
        "name": "Alice",
        "email": "alice@example.test",
        "phone": "+91 98765 43210",
        "payment_method": "card",
        "accept_terms": True,
    }
    form.update(overrides)
    return form


class CheckoutRouteTests(AppTestCase):
    def setUp(self):
        super().setUp()
        self.customer_id = self.make_customer()
        self.plan = self.make_plan()
        self.make_ports(1)
        self.headers = self.login(self.customer_id)

    def test_availability_endpoint(self):
        resp = self.client.get(f"/checkout/availability?plan_id={self.plan.id}")
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.get_json(), {"available": True, "count": 1})

    def test_checkout_requires_login_and_csrf(self):
        anonymous = self.app.test_client()
        with anonymous.session_transaction() as sess:
            sess["_csrf_token"] = "x"
        resp = anonymous.post("/checkout", json=_form(self.plan.id), headers={"X-CSRF-Token": "x"})
        self.assertEqual(resp.status_code, 401)

        resp = self.client.post("/checkout", json=_form(self.plan.id))
        self.assertEqual(resp.status_code, 403)
        self.assertEqual(resp.get_json()["error"], "csrf_failed")

    def test_validation_error_lists_fields_and_creates_nothing(self):
        resp = self.client.post(
            "/checkout",
            json=_form(self.plan.id, email="not-an-email", phone="12", accept_terms=False),
            headers=self.headers,
        )
        self.assertEqual(resp.status_code, 422)
        self.assertEqual(set(resp.get_json()["fields"]), {"email", "phone", "accept_terms"})
        self.assertEqual(Order.query.count(), 0)

    def test_unknown_or_inactive_plan(self):
        inactive = self.make_plan(slug="legacy", active=False)
        for plan_id in (inactive.id, 999):
            resp = self.client.post("/checkout", json=_form(plan_id), headers=self.headers)
            self.assertEqual(resp.status_code, 404)
        self.assertEqual(Order.query.count(), 0)

    def test_no_capacity(self):
        other = self.make_customer(email="bob@example.test")
        order = self.make_order(other, self.plan)
        ProvisioningService().process_successful_payment(order.id, "pay_bob")

        resp = self.client.post("/checkout", json=_form(self.plan.id), headers=self.headers)
        self.assertEqual(resp.status_code, 409)
        self.assertEqual(resp.get_json()["error"], "no_capacity")

    @mock.patch("services.gateway.requests.post")
    def test_gateway_failure_marks_order_failed(self, post):
        post.side_effect = requests.ConnectionError("down")

        resp = self.client.post("/checkout", json=_form(self.plan.id), headers=self.headers)

        self.assertEqual(resp.status_code, 502)
        body = resp.get_json()
        self.assertTrue(body["retry"])
        self.assertEqual(order_store.get_order(body["order_id"]).status, OrderStatus.FAILED)

    @mock.patch("services.gateway.requests.post")
    def test_checkout_creates_pending_order_and_remote_order(self, post):
        post.return_value = gateway_response("order_R1")

        resp = self.client.post(
            "/checkout",
            json=_form(self.plan.id, billing_address="12 Main St", billing_tax_id="GST99"),
            headers=self.headers,
        )

        self.assertEqual(resp.status_code, 201)
        body = resp.get_json()
        self.assertEqual(body["gateway_order_id"], "order_R1")
        self.assertEqual(body["key_id"], "key_test")
        self.assertEqual(body["callback_url"], "/payment/verify")

        order = order_store.get_order(body["order_id"])
        self.assertEqual(order.status, OrderStatus.PENDING)
        self.assertEqual(order.gateway_order_id, "order_R1")
        self.assertEqual(order.customer_id, self.customer_id)
        self.assertEqual(order.billing_address, "12 Main St")
        self.assertEqual(order.payment_method, "card")

        sent = post.call_args.kwargs["json"]
        self.assertEqual(sent["amount"], 49900)
        self.assertEqual(sent["receipt"], f"order_{order.id}")
        self.assertEqual(
            sent["notes"],
            {"order_id": order.id, "customer_id": str(self.customer_id), "plan_id": str(self.plan.id)},
        )

    @mock.patch("services.gateway.requests.post")
    def test_zero_price_plan_is_rejected_and_order_failed(self, post):
        free = self.make_plan(slug="free", price="0.00")

        resp = self.client.post("/checkout", json=_form(free.id), headers=self.headers)

        self.assertEqual(resp.status_code, 422)
        body = resp.get_json()
        self.assertEqual(body["fields"], ["amount"])
        order = order_store.get_order(body["order_id"])
        self.assertEqual(order.status, OrderStatus.FAILED)
        self.assertIsNone(order.gateway_order_id)
        post.assert_not_called()

    def test_checkout_is_rate_limited(self):
        self.app.config["RATE_LIMIT_CHECKOUT"] = 1
        bad = _form(self.plan.id, accept_terms=False)
        self.assertEqual(self.client.post("/checkout", json=bad, headers=self.headers).status_code, 422)
        resp = self.client.post("/checkout", json=bad, headers=self.headers)
        self.assertEqual(resp.status_code, 429)
        self.assertIn("Retry-After", resp.headers)

    def test_request_id_is_echoed(self):
        resp = self.client.get("/checkout/availability", headers={"X-Request-ID": "req-123"})
        self.assertEqual(resp.headers["X-Request-ID"], "req-123")
        resp = self.client.get("/checkout/availability")
        self.assertEqual(len(resp.headers["X-Request-ID"]), 32)


class PaymentVerifyRouteTests(AppTestCase):
    def setUp(self):
        super().setUp()
        self.customer_id = self.make_customer()
        self.plan = self.make_plan()
        self.make_ports(1)
        self.order = self.make_order(self.customer_id, self.plan, gateway_order_id="order_R1")
        self.login(self.customer_id)

    def _verify(self, signature=None, order_id="order_R1", payment_id="pay_1"):
        if signature is None:
            signature = self.payment_signature(order_id, payment_id)
        return self.client.get(
            "/payment/verify",
            query_string={
                "gateway_order_id": order_id,
                "gateway_payment_id": payment_id,
                "gateway_signature": signature,
            },
        )

    def test_valid_signature_provisions_and_redirects_to_success(self):
        resp = self._verify()

        self.assertEqual(resp.status_code, 302)
        self.assertIn("/payment/success?payment_id=pay_1", resp.headers["Location"])
        self.assertEqual(order_store.get_order(self.order.id).status, OrderStatus.SUCCESS)
        sub = subscription_store.get_subscription_by_order(self.order.id)
        self.assertIsNotNone(sub.port_id)

        # recarregar a página não duplica nada
        resp = self._verify()
        self.assertIn("/payment/success", resp.headers["Location"])
        self.assertEqual(Subscription.query.count(), 1)

    def test_bad_signature_changes_nothing(self):
        resp = self._verify(signature="f" * 64)

        self.assertIn("/payment/failed", resp.headers["Location"])
        self.assertEqual(order_store.get_order(self.order.id).status, OrderStatus.PENDING)
        self.assertEqual(Subscription.query.count(), 0)

    def test_missing_parameters(self):
        resp = self.client.get("/payment/verify", query_string={"gateway_order_id": "order_R1"})
        self.assertIn("/payment/failed", resp.headers["Location"])

    def test_unknown_order(self):
        resp = self._verify(order_id="order_unknown")
        self.assertIn("/payment/failed", resp.headers["Location"])
        self.assertIn("order_not_found", resp.headers["Location"])

    def test_order_of_another_customer(self):
        self.login(self.make_customer(email="eve@example.test"))
        resp = self._verify()
        self.assertIn("/payment/failed", resp.headers["Location"])
        self.assertEqual(order_store.get_order(self.order.id).status, OrderStatus.PENDING)

    def test_failed_order_redirects_to_failure(self):
        ProvisioningService().process_failed_payment(self.order.id)
        resp = self._verify()
        self.assertIn("/payment/failed", resp.headers["Location"])

    def test_result_views(self):
        self.assertEqual(self.client.get("/payment/success?payment_id=pay_9").get_json()["payment_id"], "pay_9")
        self.assertEqual(self.client.get("/payment/failed?reason=x").get_json()["reason"], "x")
        self.assertEqual(self.client.get("/payment/cancelled").get_json()["status"], "cancelled")
        self.assertEqual(order_store.get_order(self.order.id).status, OrderStatus.PENDING)


class SubscriptionRouteTests(AppTestCase):
    def setUp(self):
        super().setUp()
        self.customer_id = self.make_customer()
        self.plan = self.make_plan()
        self.make_ports(1)
        order = self.make_order(self.customer_id, self.plan, gateway_order_id="order_first")
        self.subscription = ProvisioningService().process_successful_payment(
            order.id, "pay_first", today=date.today()
        ).subscription
        self.headers = self.login(self.customer_id)

    def test_list_subscriptions(self):
        resp = self.client.get("/subscriptions")
        items = resp.get_json()["subscriptions"]
        self.assertEqual(len(items), 1)
        self.assertEqual(items[0]["status"], "ACTIVE")
        self.assertEqual(items[0]["instance_url"], "https://node0.example.test")

    @mock.patch("services.gateway.requests.post")
    def test_renewal_flow(self, post):
        post.return_value = gateway_response("order_renew")

        resp = self.client.post(f"/subscriptions/{self.subscription.id}/renew", headers=self.headers)

        self.assertEqual(resp.status_code, 201)
        order = order_store.get_order(resp.get_json()["order_id"])
        self.assertEqual(order.renewal_subscription_id, self.subscription.id)
        self.assertEqual(post.call_args.kwargs["json"]["notes"]["subscription_id"], str(self.subscription.id))

        resp = self.client.get(
            "/payment/verify",
            query_string={
                "gateway_order_id": "order_renew",
                "gateway_payment_id": "pay_renew",
                "gateway_signature": self.payment_signature("order_renew", "pay_renew"),
            },
        )
        self.assertIn("/payment/success", resp.headers["Location"])
        renewed = subscription_store.get_subscription(self.subscription.id)
        self.assertGreater(renewed.end_date, self.subscription.end_date)
        self.assertEqual(renewed.port_id, self.subscription.port_id)
        self.assertEqual(Subscription.query.count(), 1)

    def test_renewal_quote_and_listings(self):
        resp = self.client.get(f"/subscriptions/{self.subscription.id}/renewal-quote")
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.get_json()["current_end_date"], self.subscription.end_date.isoformat())

        plans = self.client.get("/plans").get_json()["plans"]
        self.assertEqual([p["id"] for p in plans], [self.plan.id])
        orders = self.client.get("/orders").get_json()["orders"]
        self.assertEqual(len(orders), 1)
        self.assertEqual(orders[0]["status"], "SUCCESS")

        self.login(self.make_customer(email="eve@example.test"))
        resp = self.client.get(f"/subscriptions/{self.subscription.id}/renewal-quote")
        self.assertEqual(resp.status_code, 404)

    def test_renew_unknown_subscription(self):
        resp = self.client.post("/subscriptions/999/renew", headers=self.headers)
        self.assertEqual(resp.status_code, 404)

    @mock.patch("services.gateway.requests.post")
    def test_renew_gateway_failure(self, post):
        post.side_effect = requests.Timeout("slow")
        resp = self.client.post(f"/subscriptions/{self.subscription.id}/renew", headers=self.headers)
        self.assertEqual(resp.status_code, 502)
        self.assertEqual(order_store.get_order(resp.get_json()["order_id"]).status, OrderStatus.FAILED)
        self.assertEqual(
            subscription_store.get_subscription(self.subscription.id).end_date, self.subscription.end_date
        )

    def test_cancel_subscription(self):
        resp = self.client.post(f"/subscriptions/{self.subscription.id}/cancel", headers=self.headers)
        self.assertEqual(resp.status_code, 200)
        resp = self.client.post(f"/subscriptions/{self.subscription.id}/cancel", headers=self.headers)
        self.assertEqual(resp.status_code, 409)
        self.assertEqual(self.client.get("/checkout/availability").get_json()["count"], 1)

    def test_cancel_other_customers_subscription(self):
        headers = self.login(self.make_customer(email="eve@example.test"))
        resp = self.client.post(f"/subscriptions/{self.subscription.id}/cancel", headers=headers)
        self.assertEqual(resp.status_code, 404)


if __name__ == "__main__":
    unittest.main()
