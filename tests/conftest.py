"""
Shared fixtures: a fresh in-memory ledger database per test.
"""
import pytest

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

# Importing the domain registers the BudgetNode listeners
import budget_ledger.domain  # noqa: F401
from budget_ledger.models import Base
from budget_ledger.infrastructure.repositories import BudgetNodeRepository, ProjectRepository


@pytest.fixture(scope="function")
def engine():
    """In-memory SQLite shared across threads (the API test client uses a worker thread)."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture(scope="function")
def test_db(session_factory):
    """Session plus a committed project numbered PRJ-001."""
    session = session_factory()
    project = ProjectRepository(session).create("Test Project", project_number="PRJ-001")
    session.commit()

    yield session, project

    session.close()


@pytest.fixture
def budget_tree(test_db):
    """
    Structure node with two leaves:

        Foundations (1,000,000)
        |- Concrete (600,000)
        `- Rebar    (400,000)
    """
    session, project = test_db
    repo = BudgetNodeRepository(session)
    structure = repo.create(project.id, "Foundations", budget_amount_cents=1_000_000)
    concrete = repo.create(project.id, "Concrete", parent_id=structure.id,
                           budget_amount_cents=600_000)
    rebar = repo.create(project.id, "Rebar", parent_id=structure.id,
                        budget_amount_cents=400_000)
    session.commit()
    return {"structure": structure, "concrete": concrete, "rebar": rebar}


def bill_items(tree, concrete_cents=60_000, rebar_cents=40_000):
    """Items for a 1000.00 bill split 600/400 across the two leaves."""
    return [
        {"description": "Ready-mix", "quantity": 1, "unit_cost_cents": concrete_cents,
         "cost_control_item_id": tree["concrete"].id},
        {"description": "Rebar #5", "quantity": 1, "unit_cost_cents": rebar_cents,
         "cost_control_item_id": tree["rebar"].id},
    ]
