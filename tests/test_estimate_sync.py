"""
Tests for mirroring estimate structures and elements into the budget tree.
"""
import pytest

from budget_ledger.models import BudgetNode
from budget_ledger.domain.exceptions import ProjectNotFoundError, ValidationError
from budget_ledger.domain.services import BillLedgerService, EstimateSyncService, RollupPropagator
from budget_ledger.infrastructure.repositories import BudgetNodeRepository, EstimateRepository


@pytest.fixture
def estimate(test_db):
    session, project = test_db
    repo = EstimateRepository(session)
    foundations = repo.create_structure(project.id, "Foundations", 300_000, order_index=1)
    framing = repo.create_structure(project.id, "Framing", 200_000, order_index=2)
    footings = repo.create_element(project.id, "Footings", 200_000, structure_id=foundations.id)
    slab = repo.create_element(project.id, "Slab", 100_000, structure_id=foundations.id)
    studs = repo.create_element(project.id, "Studs", 200_000, structure_id=framing.id)
    loose = repo.create_element(project.id, "Landscaping", 15_000)
    session.commit()
    return {"foundations": foundations, "framing": framing, "footings": footings,
            "slab": slab, "studs": studs, "loose": loose}


class TestEstimateSync:

    def test_creates_structure_and_element_nodes(self, test_db, estimate):
        session, project = test_db
        result = EstimateSyncService(session).sync_project(project.id)

        assert result.created_structures == 2
        assert result.created_elements == 3
        assert result.skipped_orphans == 1
        assert result.reparented == []

        nodes = BudgetNodeRepository(session)
        foundations = nodes.get_by_structure(estimate["foundations"].id)
        assert foundations.level == 0
        assert foundations.is_parent is True
        assert foundations.budget_amount_cents == 300_000

        slab = nodes.get_by_element(estimate["slab"].id)
        assert slab.parent_id == foundations.id
        assert slab.level == 1
        assert slab.budget_amount_cents == 100_000
        assert nodes.get_by_element(estimate["loose"].id) is None

    def test_second_run_changes_nothing(self, test_db, estimate):
        session, project = test_db
        service = EstimateSyncService(session)
        service.sync_project(project.id)
        count = session.query(BudgetNode).count()

        again = service.sync_project(project.id)
        assert again.to_dict() == {
            "project_id": project.id,
            "created_structures": 0,
            "created_elements": 0,
            "reparented": [],
            "skipped_orphans": 1,
        }
        assert session.query(BudgetNode).count() == count

    def test_moved_element_is_reparented_with_its_money(self, test_db, estimate):
        session, project = test_db
        service = EstimateSyncService(session)
        service.sync_project(project.id)
        nodes = BudgetNodeRepository(session)
        slab = nodes.get_by_element(estimate["slab"].id)
        BillLedgerService(session).post_direct_charge(slab.id, "wages", 500)

        estimate["slab"].structure_id = estimate["framing"].id
        session.commit()
        result = service.sync_project(project.id)

        assert result.reparented == [slab.id]
        framing = nodes.get_by_structure(estimate["framing"].id)
        foundations = nodes.get_by_structure(estimate["foundations"].id)
        assert slab.parent_id == framing.id
        assert framing.wages_cents == 500
        assert foundations.wages_cents == 0
        assert RollupPropagator(session).verify_project(project.id) == []

    def test_reparent_onto_leaf_with_money_rejected(self, test_db, estimate):
        session, project = test_db
        repo = EstimateRepository(session)
        roofing = repo.create_structure(project.id, "Roofing", 50_000, order_index=3)
        session.commit()

        service = EstimateSyncService(session)
        service.sync_project(project.id)
        roofing_node = BudgetNodeRepository(session).get_by_structure(roofing.id)
        BillLedgerService(session).post_direct_charge(roofing_node.id, "external_bills", 1_000)

        estimate["studs"].structure_id = roofing.id
        session.commit()
        with pytest.raises(ValidationError):
            service.sync_project(project.id)

    def test_unknown_project(self, test_db):
        session, _ = test_db
        with pytest.raises(ProjectNotFoundError):
            EstimateSyncService(session).sync_project(404)
