"""
Tests for rollup propagation over random trees.

Every parent must equal the sum of its children after any sequence of
leaf writes (direct charges or bill payments, including failed and retried
allocations), and a drifted tree must be repairable by a rebuild.
"""
import random
import pytest
from collections import defaultdict
from unittest.mock import patch

from sqlalchemy.exc import SQLAlchemyError

from budget_ledger.models import AllocationStatus, BillPayment, BillStatus, BudgetNode
from budget_ledger.domain.services import BillLedgerService, RollupPropagator, run_in_transaction
from budget_ledger.infrastructure.repositories import BudgetNodeRepository


def _random_tree(session, project_id, rng, size=25):
    repo = BudgetNodeRepository(session)
    nodes = [repo.create(project_id, f"Structure {i}", budget_amount_cents=rng.randint(0, 10**7))
             for i in range(rng.randint(1, 3))]
    for i in range(size):
        parent = rng.choice(nodes)
        nodes.append(repo.create(project_id, f"Node {i}", parent_id=parent.id,
                                 budget_amount_cents=rng.randint(0, 10**6)))
    session.commit()
    return nodes


def _leaves(nodes):
    return [n for n in nodes if not n.is_parent]


class TestRollupPropagator:

    @pytest.mark.parametrize("seed", range(5))
    def test_parents_equal_sum_of_children(self, test_db, seed):
        session, project = test_db
        rng = random.Random(seed)
        nodes = _random_tree(session, project.id, rng)
        service = BillLedgerService(session)

        for _ in range(30):
            leaf = rng.choice(_leaves(nodes))
            kind = rng.choice(["wages", "external_bills"])
            service.post_direct_charge(leaf.id, kind, rng.randint(1, 50_000))

        propagator = RollupPropagator(session)
        assert propagator.verify_project(project.id) == []

        roots = [n for n in nodes if n.parent_id is None]
        leaves = _leaves(nodes)
        assert sum(r.wages_cents for r in roots) == sum(l.wages_cents for l in leaves)
        assert sum(r.actual_cents for r in roots) == sum(l.actual_cents for l in leaves)

    def test_rebuild_repairs_drift(self, test_db):
        session, project = test_db
        rng = random.Random(42)
        nodes = _random_tree(session, project.id, rng)
        service = BillLedgerService(session)
        for leaf in _leaves(nodes)[:5]:
            service.post_direct_charge(leaf.id, "wages", 1_000)

        parent = next(n for n in nodes if n.is_parent)
        drifted = parent.wages_cents + 12_345
        session.query(BudgetNode).filter(BudgetNode.id == parent.id).update(
            {"wages_cents": drifted}, synchronize_session="fetch"
        )
        session.commit()

        propagator = RollupPropagator(session)
        violations = propagator.verify_project(project.id)
        assert any(v.node_id == parent.id and v.field == "wages_cents" for v in violations)

        corrected = run_in_transaction(
            session, lambda: propagator.rebuild_project(project.id),
            entity_type="Project", entity_id=project.id,
        )
        assert corrected >= 1
        assert propagator.verify_project(project.id) == []
        assert session.get(BudgetNode, parent.id).wages_cents == drifted - 12_345

    def test_rebuild_of_consistent_tree_changes_nothing(self, test_db, budget_tree):
        session, project = test_db
        assert RollupPropagator(session).rebuild_project(project.id) == 0

    def test_parent_losing_last_child_becomes_empty_leaf(self, test_db):
        session, project = test_db
        repo = BudgetNodeRepository(session)
        root = repo.create(project.id, "Sitework")
        child = repo.create(project.id, "Grading", parent_id=root.id)
        session.commit()

        repo.hard_delete(child.id)
        session.commit()
        assert root.is_parent is False

    def test_soft_deleted_children_still_count(self, test_db, budget_tree):
        session, project = test_db
        BillLedgerService(session).post_direct_charge(budget_tree["rebar"].id, "wages", 700)
        BudgetNodeRepository(session).soft_delete(budget_tree["rebar"].id)
        session.commit()

        RollupPropagator(session).rebuild_project(project.id)
        assert budget_tree["structure"].wages_cents == 700


STATUS_RANK = {
    BillStatus.PENDING.value: 0,
    BillStatus.PARTIAL.value: 1,
    BillStatus.PAID.value: 2,
}


class TestPaymentSequences:

    def _random_bills(self, service, project_id, rng, leaves, count=4):
        committed = defaultdict(int)
        bills = []
        for i in range(count):
            items = []
            for leaf in rng.sample(leaves, rng.randint(1, min(3, len(leaves)))):
                cost = rng.randint(1, 50_000)
                items.append({"description": f"Item {i}-{leaf.id}", "quantity": 1,
                              "unit_cost_cents": cost, "cost_control_item_id": leaf.id})
                committed[leaf.id] += cost
            bills.append(service.create_bill(project_id, {}, items))
        return bills, committed

    def _assert_ledger_holds(self, session, project_id, leaves, committed):
        assert RollupPropagator(session).verify_project(project_id) == []
        for leaf in leaves:
            node = session.get(BudgetNode, leaf.id)
            assert node.paid_bills_cents + node.pending_bills_cents <= committed[leaf.id]

    @pytest.mark.parametrize("seed", range(5))
    def test_random_installments_with_failed_allocations(self, test_db, seed):
        session, project = test_db
        rng = random.Random(seed)
        leaves = _leaves(_random_tree(session, project.id, rng, size=12))
        service = BillLedgerService(session)
        bills, committed = self._random_bills(service, project.id, rng, leaves)
        ranks = {bill.id: STATUS_RANK[bill.status] for bill in bills}

        for _ in range(30):
            open_bills = [b for b in bills if service.get_bill(b.id).remaining_cents > 0]
            if not open_bills:
                break
            bill = service.get_bill(rng.choice(open_bills).id)
            amount = rng.choice([bill.remaining_cents, rng.randint(1, bill.remaining_cents)])

            if rng.random() < 0.3:
                with patch.object(RollupPropagator, "propagate",
                                  side_effect=SQLAlchemyError("database is locked")):
                    result = service.record_payment(bill.id, amount, "Wire")
                assert result.allocation_status == AllocationStatus.FAILED.value
            else:
                service.record_payment(bill.id, amount, "Check")

            if rng.random() < 0.4:
                service.retry_failed_allocations(project.id)

            rank = STATUS_RANK[service.get_bill(bill.id).status]
            assert rank >= ranks[bill.id]
            ranks[bill.id] = rank
            self._assert_ledger_holds(session, project.id, leaves, committed)

        summary = service.retry_failed_allocations(project.id)
        assert summary["failed"] == 0
        self._assert_ledger_holds(session, project.id, leaves, committed)
        assert session.query(BillPayment).filter(
            BillPayment.allocation_status != AllocationStatus.APPLIED.value
        ).count() == 0

        # Settled leaves end exactly paid, whatever order the allocations landed in
        open_leaves = {
            item.cost_control_item_id
            for b in bills for item in service.get_bill(b.id).items
            if service.get_bill(b.id).status != BillStatus.PAID.value
        }
        for leaf in leaves:
            if leaf.id in committed and leaf.id not in open_leaves:
                node = session.get(BudgetNode, leaf.id)
                assert node.paid_bills_cents == committed[leaf.id]
                assert node.pending_bills_cents == 0
