import unittest

from app_case import AppTestCase

from models.extensions import db
from services import order_store
from services.records import OrderStatus, TransitionOutcome


class OrderStoreTests(AppTestCase):
    def setUp(self):
        super().setUp()
        self.customer_id = self.make_customer()
        self.plan = self.make_plan()

    def test_create_order_is_pending_with_plan_snapshot(self):
        order = order_store.create_order(
            self.customer_id,
            self.plan,
            payment_method="upi",
            billing={"name": "Alice", "address": "Rua 1", "tax_id": "GST123"},
        )
        self.assertEqual(order.status, OrderStatus.PENDING)
        self.assertEqual(len(order.id), 32)
        self.assertEqual(order.amount, self.plan.price)
        self.assertEqual(order.currency, "INR")
        self.assertEqual(order.billing_tax_id, "GST123")
        self.assertFalse(order.is_renewal)

    def test_paid_transition_happens_once(self):
        order = self.make_order(self.customer_id, self.plan)

        self.assertEqual(order_store.confirm_order_paid(order.id, "pay_1"), TransitionOutcome.WON)
        db.session.commit()
        self.assertEqual(
            order_store.confirm_order_paid(order.id, "pay_1"), TransitionOutcome.ALREADY_PROCESSED
        )
        db.session.commit()

        stored = order_store.get_order(order.id)
        self.assertEqual(stored.status, OrderStatus.SUCCESS)
        self.assertEqual(stored.gateway_payment_id, "pay_1")

    def test_terminal_status_never_changes(self):
        order = self.make_order(self.customer_id, self.plan)
        order_store.confirm_order_paid(order.id, "pay_1")
        db.session.commit()

        self.assertEqual(order_store.confirm_order_failed(order.id), TransitionOutcome.ALREADY_PROCESSED)
        db.session.commit()
        self.assertEqual(order_store.get_order(order.id).status, OrderStatus.SUCCESS)

        other = self.make_order(self.customer_id, self.plan, gateway_order_id="order_G2")
        order_store.confirm_order_failed(other.id)
        db.session.commit()
        self.assertEqual(order_store.confirm_order_paid(other.id, "pay_2"), TransitionOutcome.ALREADY_PROCESSED)
        db.session.commit()
        self.assertEqual(order_store.get_order(other.id).status, OrderStatus.FAILED)

    def test_payment_id_attached_once_on_terminal_order(self):
        order = self.make_order(self.customer_id, self.plan)
        order_store.confirm_order_failed(order.id)
        db.session.commit()
        self.assertIsNone(order_store.get_order(order.id).gateway_payment_id)

        order_store.confirm_order_paid(order.id, "pay_late")
        db.session.commit()
        order_store.confirm_order_paid(order.id, "pay_other")
        db.session.commit()

        stored = order_store.get_order(order.id)
        self.assertEqual(stored.status, OrderStatus.FAILED)
        self.assertEqual(stored.gateway_payment_id, "pay_late")

    def test_unknown_order(self):
        self.assertEqual(order_store.confirm_order_paid("f" * 32, "pay_x"), TransitionOutcome.NOT_FOUND)
        self.assertEqual(order_store.confirm_order_failed("f" * 32), TransitionOutcome.NOT_FOUND)
        db.session.rollback()
        self.assertIsNone(order_store.get_order("f" * 32))

    def test_gateway_order_id_attached_once(self):
        order = self.make_order(self.customer_id, self.plan, gateway_order_id=None)
        self.assertTrue(order_store.attach_gateway_order_id(order.id, "order_A"))
        self.assertFalse(order_store.attach_gateway_order_id(order.id, "order_B"))
        self.assertEqual(order_store.get_order_by_gateway_order_id("order_A").id, order.id)
        self.assertIsNone(order_store.get_order_by_gateway_order_id("order_B"))

    def test_list_orders_by_customer(self):
        self.make_order(self.customer_id, self.plan, gateway_order_id="order_1")
        self.make_order(self.customer_id, self.plan, gateway_order_id="order_2")
        other = self.make_customer(email="bob@example.test")
        self.make_order(other, self.plan, gateway_order_id="order_3")

        self.assertEqual(len(order_store.list_orders_by_customer(self.customer_id)), 2)
        self.assertEqual(len(order_store.list_orders_by_customer(other)), 1)
        self.assertEqual(order_store.list_orders_by_customer(None), [])


if __name__ == "__main__":
    unittest.main()
