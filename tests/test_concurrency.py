"""
Tests for optimistic locking, transaction retries and node invariants
enforced by the ORM listeners.
"""
import pytest
from unittest.mock import Mock

from sqlalchemy import create_engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker
from sqlalchemy.orm.exc import StaleDataError

from budget_ledger.models import Base, BudgetNode
from budget_ledger.domain.exceptions import (
    ConcurrencyError,
    ImmutableFieldError,
    LedgerStoreError,
    ValidationError,
)
from budget_ledger.domain.services import run_in_transaction
from budget_ledger.infrastructure.repositories import BudgetNodeRepository, ProjectRepository


@pytest.fixture
def two_sessions(tmp_path):
    """Two independent sessions on one SQLite file, plus a committed leaf node."""
    engine = create_engine(f"sqlite:///{tmp_path / 'ledger.db'}")
    Base.metadata.create_all(engine)
    Session = sessionmaker(autocommit=False, autoflush=False, bind=engine)

    setup = Session()
    project = ProjectRepository(setup).create("Tower")
    node = BudgetNodeRepository(setup).create(project.id, "Elevators", budget_amount_cents=500_000)
    setup.commit()
    node_id = node.id
    setup.close()

    first, second = Session(), Session()
    yield first, second, node_id
    first.close()
    second.close()
    engine.dispose()


class TestOptimisticLocking:

    def test_lost_update_detected(self, two_sessions):
        first, second, node_id = two_sessions
        mine = first.get(BudgetNode, node_id)
        theirs = second.get(BudgetNode, node_id)

        mine.wages_cents = 100
        first.commit()

        theirs.wages_cents = 200
        with pytest.raises(StaleDataError):
            second.commit()
        second.rollback()

    def test_retry_rereads_and_applies_on_top(self, two_sessions):
        first, second, node_id = two_sessions
        second.get(BudgetNode, node_id)  # stale copy in the identity map

        other = first.get(BudgetNode, node_id)
        other.wages_cents = 100
        first.commit()

        def add_wages():
            node = second.get(BudgetNode, node_id)
            node.wages_cents = node.wages_cents + 50
            node.recompute_actual()
            return node

        node = run_in_transaction(second, add_wages, entity_type="BudgetNode", entity_id=node_id)
        assert node.wages_cents == 150
        assert node.actual_cents == 150


class TestRunInTransaction:

    def test_commits_result(self):
        session = Mock()
        assert run_in_transaction(session, lambda: 7, entity_type="Bill", entity_id=1) == 7
        session.commit.assert_called_once()

    def test_retries_after_conflict(self):
        session = Mock()
        operation = Mock(side_effect=[StaleDataError("conflict"), "done"])
        result = run_in_transaction(session, operation, entity_type="Bill", entity_id=1,
                                    max_attempts=3)
        assert result == "done"
        assert operation.call_count == 2
        assert session.rollback.call_count == 1

    def test_gives_up_after_max_attempts(self):
        session = Mock()
        operation = Mock(side_effect=StaleDataError("conflict"))
        with pytest.raises(ConcurrencyError) as exc_info:
            run_in_transaction(session, operation, entity_type="Bill", entity_id=9,
                               max_attempts=3)
        assert operation.call_count == 3
        assert session.rollback.call_count == 3
        assert exc_info.value.code == "CONCURRENCY_CONFLICT"
        assert "Bill 9" in exc_info.value.message

    def test_domain_errors_propagate_unwrapped(self):
        session = Mock()
        operation = Mock(side_effect=ValidationError("amount", "must be positive"))
        with pytest.raises(ValidationError):
            run_in_transaction(session, operation, entity_type="Bill", entity_id=1)
        session.rollback.assert_called_once()
        assert operation.call_count == 1

    def test_store_errors_wrapped_with_context(self):
        session = Mock()
        cause = SQLAlchemyError("database is locked")
        operation = Mock(side_effect=cause)
        with pytest.raises(LedgerStoreError) as exc_info:
            run_in_transaction(session, operation, entity_type="Payment", entity_id=4,
                               operation_name="allocate payment")
        assert exc_info.value.__cause__ is cause
        assert "allocate payment" in exc_info.value.message
        assert "payment=4" in exc_info.value.message


class TestNodeListeners:

    def test_budget_amount_set_once(self, test_db):
        session, project = test_db
        node = BudgetNodeRepository(session).create(project.id, "Roofing")
        session.commit()

        node.budget_amount_cents = 250_000
        session.commit()
        assert node.budget_amount_cents == 250_000

    def test_budget_amount_immutable_afterwards(self, test_db, budget_tree):
        session, _ = test_db
        concrete = budget_tree["concrete"]
        concrete.budget_amount_cents = 1
        with pytest.raises(ImmutableFieldError):
            session.commit()
        session.rollback()
        assert session.get(BudgetNode, concrete.id).budget_amount_cents == 600_000

    def test_negative_accumulator_rejected(self, test_db, budget_tree):
        session, _ = test_db
        budget_tree["rebar"].pending_bills_cents = -1
        with pytest.raises(ValidationError):
            session.commit()
        session.rollback()
