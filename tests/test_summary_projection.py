"""
Tests for the summary projection, the orphan reconciler and the project
summary cache.
"""
import io
import pytest
from datetime import datetime, timedelta

import pandas as pd

from budget_ledger.models import EstimateElement, EstimateStructure, ProjectSummary
from budget_ledger.domain.entities.summary_node import SummaryNode
from budget_ledger.domain.exceptions import ProjectNotFoundError
from budget_ledger.domain.services import (
    BillLedgerService,
    EstimateSyncService,
    ExpansionState,
    OrphanReconciler,
    ProjectSummaryService,
    RollupPropagator,
    SummaryProjector,
    UNASSIGNED_NODE_ID,
    flatten,
)
from budget_ledger.domain.services.summary_projector import dedupe_elements, dedupe_structures
from budget_ledger.infrastructure.repositories import (
    BudgetNodeRepository,
    EstimateRepository,
    ProjectRepository,
)

from conftest import bill_items


# =============================================================================
# Fixtures
# =============================================================================

@pytest.fixture
def estimate(test_db):
    """
    Foundations (2 elements), Framing (1 element) and three orphans: two
    without a structure and one pointing at a structure that does not exist.
    """
    session, project = test_db
    repo = EstimateRepository(session)
    foundations = repo.create_structure(project.id, "Foundations", amount_cents=300_000, order_index=1)
    framing = repo.create_structure(project.id, "Framing", amount_cents=200_000, order_index=2)
    footings = repo.create_element(project.id, "Footings", 200_000, structure_id=foundations.id)
    slab = repo.create_element(project.id, "Slab", 100_000, structure_id=foundations.id)
    studs = repo.create_element(project.id, "Studs", 200_000, structure_id=framing.id)
    orphans = [
        repo.create_element(project.id, "Landscaping", 15_000),
        repo.create_element(project.id, "Signage", 5_000),
        repo.create_element(project.id, "Fencing", 10_000, structure_id=9_999),
    ]
    session.commit()
    return {
        "foundations": foundations, "framing": framing,
        "footings": footings, "slab": slab, "studs": studs,
        "orphans": orphans,
    }


def _tree_by_name(tree):
    return {node.name: node for node in tree}


# =============================================================================
# Flattening and expansion
# =============================================================================

class TestFlatten:

    def _tree(self):
        leaf = SummaryNode(id="element-1", name="Footings", level=1)
        return [
            SummaryNode(id="structure-1", name="Foundations", level=0, children=[leaf]),
            SummaryNode(id="structure-2", name="Framing", level=0),
        ]

    def test_collapsed_by_default(self):
        assert [n.id for n in flatten(self._tree(), [])] == ["structure-1", "structure-2"]

    def test_expanded_node_shows_children(self):
        rows = flatten(self._tree(), ["structure-1"])
        assert [n.id for n in rows] == ["structure-1", "element-1", "structure-2"]

    def test_toggle_and_expand_all(self):
        tree = self._tree()
        state = ExpansionState()
        assert state.toggle("structure-1") is True
        assert state.toggle("structure-1") is False

        state.expand_all(tree)
        assert state.expanded == {"structure-1"}
        state.collapse_all()
        assert not state.is_expanded("structure-1")


# =============================================================================
# Deduplication
# =============================================================================

class TestDeduplication:

    def test_structure_with_most_elements_wins(self):
        sparse = EstimateStructure(id=1, name="Foundations", order_index=0)
        rich = EstimateStructure(id=2, name="Foundations", order_index=0)
        kept = dedupe_structures([sparse, rich], {1: 2, 2: 5})
        assert [s.id for s in kept] == [2]
        # Input order does not matter
        assert [s.id for s in dedupe_structures([rich, sparse], {1: 2, 2: 5})] == [2]

    def test_tie_goes_to_lowest_id(self):
        a = EstimateStructure(id=7, name="Framing", order_index=0)
        b = EstimateStructure(id=3, name="Framing", order_index=0)
        assert [s.id for s in dedupe_structures([a, b], {7: 1, 3: 1})] == [3]

    def test_last_seen_element_wins_in_first_position(self):
        elements = [
            EstimateElement(id=1, name="Slab", amount_cents=100),
            EstimateElement(id=2, name="Footings", amount_cents=200),
            EstimateElement(id=3, name="Slab", amount_cents=300),
        ]
        kept = dedupe_elements(elements)
        assert [(e.name, e.id) for e in kept] == [("Slab", 3), ("Footings", 2)]

    def test_projection_drops_duplicate_structure(self, test_db):
        session, project = test_db
        sparse = EstimateStructure(project_id=project.id, name="Foundations", amount_cents=1)
        rich = EstimateStructure(project_id=project.id, name="Foundations", amount_cents=2)
        session.add_all([sparse, rich])
        session.flush()
        repo = EstimateRepository(session)
        for i in range(2):
            repo.create_element(project.id, f"Sparse {i}", 10, structure_id=sparse.id)
        for i in range(5):
            repo.create_element(project.id, f"Rich {i}", 10, structure_id=rich.id)
        session.commit()

        tree = SummaryProjector(session).build_tree(project.id)
        assert len(tree) == 1
        assert tree[0].source_id == rich.id
        assert len(tree[0].children) == 5


# =============================================================================
# Projection
# =============================================================================

class TestSummaryProjector:

    def test_orphans_under_synthetic_node(self, test_db, estimate):
        session, project = test_db
        tree = SummaryProjector(session).build_tree(project.id)

        assert [n.name for n in tree] == ["Foundations", "Framing", "Unassigned Elements"]
        bucket = tree[-1]
        assert bucket.id == UNASSIGNED_NODE_ID
        assert bucket.is_synthetic is True
        assert sorted(c.name for c in bucket.children) == ["Fencing", "Landscaping", "Signage"]
        assert bucket.original_cents == 30_000

    def test_projection_rows_follow_expansion(self, test_db, estimate):
        session, project = test_db
        projector = SummaryProjector(session)

        collapsed = projector.project(project.id)
        assert [r["name"] for r in collapsed["nodes"]] == ["Foundations", "Framing", "Unassigned Elements"]

        expanded = projector.project(project.id, [f"structure-{estimate['foundations'].id}"])
        assert [r["name"] for r in expanded["nodes"]] == [
            "Foundations", "Footings", "Slab", "Framing", "Unassigned Elements",
        ]
        assert expanded["nodes"][1]["level"] == 1

    def test_projection_carries_cached_totals(self, test_db, estimate):
        session, project = test_db
        result = SummaryProjector(session).project(project.id)
        totals = result["totals"]
        assert totals["structure_count"] == 2
        assert totals["element_count"] == 6
        assert totals["estimate_total_cents"] == 530_000
        assert result["is_stale"] is False

    def test_actuals_come_from_budget_nodes(self, test_db, estimate):
        session, project = test_db
        EstimateSyncService(session).sync_project(project.id)
        node = BudgetNodeRepository(session).get_by_element(estimate["slab"].id)
        BillLedgerService(session).post_direct_charge(node.id, "wages", 40_000)

        tree = _tree_by_name(SummaryProjector(session).build_tree(project.id))
        foundations = tree["Foundations"]
        assert foundations.wages_cents == 40_000
        assert foundations.actual_cents == 40_000
        assert foundations.difference_cents == 260_000
        slab = next(c for c in foundations.children if c.name == "Slab")
        assert slab.actual_cents == 40_000

    def test_csv_export(self, test_db, estimate):
        session, project = test_db
        content = SummaryProjector(session).export_csv(project.id, expand_all=True)
        df = pd.read_csv(io.StringIO(content))

        assert list(df.columns) == [
            "Name", "Original", "Actual", "Difference",
            "PaidBills", "ExternalBills", "PendingBills",
        ]
        assert len(df) == 3 + 6
        foundations = df[df["Name"] == "Foundations"].iloc[0]
        assert foundations["Original"] == 3000.0
        assert foundations["Difference"] == 3000.0
        assert "3000.00" in content

    def test_unknown_project(self, test_db):
        session, _ = test_db
        with pytest.raises(ProjectNotFoundError):
            SummaryProjector(session).build_tree(404)


# =============================================================================
# Orphan reconciler
# =============================================================================

class TestOrphanReconciler:

    def test_fix_moves_orphans_to_real_structure(self, test_db, estimate):
        session, project = test_db
        result = OrphanReconciler(session).fix_orphaned_elements(project.id)

        assert result.success is True
        assert result.fixed_count == 3
        assert result.remaining == 0

        structure = session.get(EstimateStructure, result.structure_id)
        assert structure.name == "Unassigned Elements"
        assert structure.amount_cents == 30_000

        tree = SummaryProjector(session).build_tree(project.id)
        assert all(not n.is_synthetic for n in tree)
        bucket = _tree_by_name(tree)["Unassigned Elements"]
        assert len(bucket.children) == 3
        assert bucket.actual_cents == sum(c.actual_cents for c in bucket.children)

        nodes = BudgetNodeRepository(session)
        structure_node = nodes.get_by_structure(result.structure_id)
        assert structure_node is not None
        assert structure_node.budget_amount_cents == 30_000
        for orphan in estimate["orphans"]:
            assert nodes.get_by_element(orphan.id).parent_id == structure_node.id
        assert RollupPropagator(session).verify_project(project.id) == []

    def test_fix_moves_booked_amounts_with_the_elements(self, test_db, estimate):
        session, project = test_db
        EstimateSyncService(session).sync_project(project.id)
        nodes = BudgetNodeRepository(session)
        slab_node = nodes.get_by_element(estimate["slab"].id)
        BillLedgerService(session).post_direct_charge(slab_node.id, "wages", 40_000)

        # Slab loses its structure after its node was booked
        estimate["slab"].structure_id = None
        session.commit()
        before = _tree_by_name(SummaryProjector(session).build_tree(project.id))
        assert before["Foundations"].actual_cents == 40_000

        result = OrphanReconciler(session).fix_orphaned_elements(project.id)
        assert result.fixed_count == 4

        tree = _tree_by_name(SummaryProjector(session).build_tree(project.id))
        assert tree["Foundations"].actual_cents == 0
        bucket = tree["Unassigned Elements"]
        assert bucket.is_synthetic is False
        assert bucket.actual_cents == 40_000
        assert bucket.actual_cents == sum(c.actual_cents for c in bucket.children)
        assert nodes.get_by_element(estimate["slab"].id).parent_id == \
            nodes.get_by_structure(result.structure_id).id
        assert RollupPropagator(session).verify_project(project.id) == []

    def test_fix_is_idempotent(self, test_db, estimate):
        session, project = test_db
        reconciler = OrphanReconciler(session)
        reconciler.fix_orphaned_elements(project.id)
        again = reconciler.fix_orphaned_elements(project.id)

        assert again.success is True
        assert again.fixed_count == 0
        assert again.message == "No orphaned elements found"
        structure = EstimateRepository(session).find_structure_by_name(project.id, "Unassigned Elements")
        assert structure.amount_cents == 30_000

    def test_fix_preserves_estimate_total(self, test_db, estimate):
        session, project = test_db
        before = ProjectSummaryService(session).refresh(project.id).estimate_total_cents
        OrphanReconciler(session).fix_orphaned_elements(project.id)
        after = ProjectSummaryService(session).get(project.id)
        assert after["estimate_total_cents"] == before == 530_000
        assert after["structure_count"] == 3

    def test_reuses_existing_catch_all_structure(self, test_db, estimate):
        session, project = test_db
        existing = EstimateRepository(session).create_structure(project.id, "Unassigned Elements", 1_000)
        session.commit()

        result = OrphanReconciler(session).fix_orphaned_elements(project.id)
        assert result.structure_id == existing.id
        assert session.get(EstimateStructure, existing.id).amount_cents == 31_000

    def test_nothing_to_fix(self, test_db):
        session, project = test_db
        result = OrphanReconciler(session).fix_orphaned_elements(project.id)
        assert result.to_dict()["message"] == "No orphaned elements found"


# =============================================================================
# Project summary cache
# =============================================================================

class TestProjectSummaryService:

    def test_bill_totals_by_status(self, test_db, budget_tree):
        session, project = test_db
        ledger = BillLedgerService(session)
        paid = ledger.create_bill(project.id, {}, bill_items(budget_tree))
        ledger.record_payment(paid.id, 100_000, "Wire")
        ledger.create_bill(project.id, {}, bill_items(budget_tree, 10_000, 5_000))
        draft = ledger.create_bill(project.id, {"status": "Draft"}, bill_items(budget_tree, 1, 1))

        summary = ProjectSummaryService(session).refresh(project.id)
        assert summary.paid_bills_total_cents == 100_000
        assert summary.unpaid_bills_total_cents == 15_000
        assert draft.amount_cents == 2

    def test_writes_invalidate_and_refresh_clears(self, test_db, budget_tree):
        session, project = test_db
        service = ProjectSummaryService(session)
        service.refresh(project.id)
        assert service.get(project.id)["is_stale"] is False

        BillLedgerService(session).post_direct_charge(budget_tree["concrete"].id, "wages", 900)
        assert service.get(project.id)["is_stale"] is True
        assert service.get(project.id)["wages_total_cents"] == 0

        assert service.refresh_stale() == [project.id]
        data = service.get(project.id)
        assert data["is_stale"] is False
        assert data["wages_total_cents"] == 900

    def test_old_rows_are_stale(self, test_db):
        session, project = test_db
        service = ProjectSummaryService(session)
        summary = service.refresh(project.id)
        assert service.is_stale(summary, summary.last_updated_at + timedelta(minutes=5)) is False
        assert service.is_stale(summary, datetime.utcnow() + timedelta(hours=1)) is True

    def test_populate_all(self, test_db):
        session, _ = test_db
        ProjectRepository(session).create("Second Project")
        session.commit()

        message = ProjectSummaryService(session).populate_all()
        assert message == "Populated summaries for 2 projects"
        assert session.query(ProjectSummary).count() == 2
