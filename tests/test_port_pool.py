import unittest
from datetime import date, datetime

from app_case import AppTestCase, run_in_threads

from models.extensions import db
from models.port_model import Port, PortAllocationLog
from services import subscription_store
from services.port_pool import NONE_AVAILABLE, PortPool, get_port
from services.records import AllocationAction, PortStatus


class PortPoolTests(AppTestCase):
    def setUp(self):
        super().setUp()
        self.customer_id = self.make_customer()
        self.plan = self.make_plan()
        self.pool = PortPool()

    def _subscription(self, gateway_order_id):
        order = self.make_order(self.customer_id, self.plan, gateway_order_id=gateway_order_id)
        sub = subscription_store.create_subscription(order, self.plan, date(2024, 1, 15))
        db.session.commit()
        return sub

    def test_claim_allocates_oldest_port(self):
        first, second = self.make_ports(2)
        sub = self._subscription("order_1")

        result = self.pool.claim_one(sub.id)

        self.assertTrue(result.claimed)
        self.assertEqual(result.port.id, first)
        self.assertEqual(result.port.status, PortStatus.ALLOCATED)
        self.assertEqual(result.port.allocated_subscription_id, sub.id)
        self.assertEqual(subscription_store.get_subscription(sub.id).port_id, first)
        self.assertEqual(get_port(second).status, PortStatus.AVAILABLE)

        logs = PortAllocationLog.query.all()
        self.assertEqual(len(logs), 1)
        self.assertEqual(logs[0].action, AllocationAction.ASSIGNED.value)
        self.assertEqual(logs[0].customer_id, self.customer_id)
        self.assertIsNone(logs[0].performed_by)

    def test_claim_is_idempotent_per_subscription(self):
        self.make_ports(2)
        sub = self._subscription("order_1")

        first = self.pool.claim_one(sub.id)
        again = self.pool.claim_one(sub.id)

        self.assertEqual(first.port.id, again.port.id)
        self.assertEqual(self.pool.count_available(), 1)
        self.assertEqual(PortAllocationLog.query.count(), 1)

    def test_no_port_available(self):
        sub = self._subscription("order_1")
        result = self.pool.claim_one(sub.id)
        self.assertFalse(result.claimed)
        self.assertEqual(result.message, NONE_AVAILABLE)
        self.assertIsNone(subscription_store.get_subscription(sub.id).port_id)

    def test_release_returns_port_to_pool(self):
        (port_id,) = self.make_ports(1)
        sub = self._subscription("order_1")
        self.pool.claim_one(sub.id)
        self.assertEqual(self.pool.count_available(), 0)

        self.assertTrue(self.pool.release(port_id, performed_by="admin:1"))
        self.assertFalse(self.pool.release(port_id))

        port = get_port(port_id)
        self.assertEqual(port.status, PortStatus.AVAILABLE)
        self.assertIsNone(port.allocated_subscription_id)
        self.assertIsNone(subscription_store.get_subscription(sub.id).port_id)
        released = PortAllocationLog.query.filter_by(action=AllocationAction.RELEASED.value).one()
        self.assertEqual(released.performed_by, "admin:1")
        self.assertEqual(released.subscription_id, sub.id)

        other = self._subscription("order_2")
        self.assertEqual(self.pool.claim_one(other.id).port.id, port_id)

    def test_plan_affinity(self):
        other_plan = self.make_plan(slug="pro", price="999.00")
        (general_port,) = self.make_ports(1, prefix="general")
        (affinity_port,) = self.make_ports(1, plan_id=other_plan.id, prefix="pro")
        # afinidade vem antes do pool geral, mesmo sendo mais nova
        db.session.query(Port).filter_by(id=affinity_port).update({"created_at": datetime(2025, 1, 1)})
        db.session.commit()

        self.assertEqual(self.pool.count_available(), 2)
        self.assertEqual(self.pool.count_available(self.plan.id), 1)
        self.assertEqual(self.pool.count_available(other_plan.id), 2)

        result = self.pool.claim_one(9001, plan_id=other_plan.id)
        self.assertEqual(result.port.id, affinity_port)

        result = self.pool.claim_one(9002, plan_id=self.plan.id)
        self.assertEqual(result.port.id, general_port)
        self.assertFalse(self.pool.claim_one(9003, plan_id=self.plan.id).claimed)

    def test_concurrent_claims_never_share_a_port(self):
        (port_id,) = self.make_ports(1)

        results, errors = run_in_threads(
            self.app, lambda i: PortPool().claim_one(1000 + i), 10
        )

        self.assertEqual(errors, [])
        winners = [r for r in results if r is not None and r.claimed]
        self.assertEqual(len(winners), 1)
        self.assertEqual(winners[0].port.id, port_id)
        self.assertTrue(all(r.message == NONE_AVAILABLE for r in results if not r.claimed))

        db.session.expire_all()
        port = db.session.get(Port, port_id)
        self.assertEqual(port.allocated_subscription_id, winners[0].port.allocated_subscription_id)
        self.assertEqual(PortAllocationLog.query.count(), 1)

    def test_concurrent_claims_with_spare_ports(self):
        self.make_ports(3)

        results, errors = run_in_threads(
            self.app, lambda i: PortPool().claim_one(2000 + i), 6
        )

        self.assertEqual(errors, [])
        claimed = [r.port.id for r in results if r.claimed]
        self.assertEqual(len(claimed), 3)
        self.assertEqual(len(set(claimed)), 3)


if __name__ == "__main__":
    unittest.main()
