"""
Database models and SQLAlchemy setup for the Budget Ledger.
All monetary values stored as integer cents to avoid float drift.
"""
import enum
from datetime import datetime
from sqlalchemy import (
    create_engine, Column, Integer, String, Float, Boolean,
    DateTime, Date, Text, ForeignKey, UniqueConstraint, CheckConstraint
)
from sqlalchemy.orm import declarative_base, sessionmaker, relationship, backref

from budget_ledger.config import get_config


def _build_engine(url: str, echo: bool = False):
    connect_args = {"check_same_thread": False} if url.startswith("sqlite") else {}
    return create_engine(url, echo=echo, connect_args=connect_args)


DATABASE_URL = get_config().database_url
engine = _build_engine(DATABASE_URL, get_config().database_echo)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
Base = declarative_base()


class BillStatus(enum.Enum):
    """Lifecycle status of a bill. Draft and Cancelled are explicit overrides."""
    DRAFT = "Draft"
    PENDING = "Pending"
    PARTIAL = "Partial"
    PAID = "Paid"
    OVERDUE = "Overdue"
    CANCELLED = "Cancelled"


class AllocationStatus(enum.Enum):
    """Outbox state of a payment's allocation pass."""
    PENDING = "pending"
    APPLIED = "applied"
    FAILED = "failed"


class PurchaseOrderStatus(enum.Enum):
    DRAFT = "Draft"
    APPROVED = "Approved"
    BILLED = "Billed"
    CANCELLED = "Cancelled"


class NodeLevel(enum.IntEnum):
    STRUCTURE = 0
    ELEMENT = 1
    ITEM = 2


# =============================================================================
# Project
# =============================================================================

class Project(Base):
    """Top-level project. Every tree, bill and summary belongs to one."""
    __tablename__ = "projects"

    id = Column(Integer, primary_key=True, index=True)
    uuid = Column(String(36), unique=True, index=True, nullable=False)
    name = Column(String(200), nullable=False)
    project_number = Column(String(50), unique=True, index=True, nullable=True)
    description = Column(Text, nullable=True)
    is_active = Column(Boolean, default=True, index=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    bills = relationship("Bill", back_populates="project", cascade="all, delete-orphan")


# =============================================================================
# Estimate side (Structure -> Element)
# =============================================================================

class EstimateStructure(Base):
    """
    Estimate-side structure row (level 0 mirror).
    Uniqueness of (project_id, name) is enforced by the repository, not the
    table, so legacy duplicates can still be loaded and deduplicated on read.
    """
    __tablename__ = "estimate_structures"

    id = Column(Integer, primary_key=True, index=True)
    project_id = Column(Integer, ForeignKey('projects.id'), nullable=False, index=True)
    name = Column(String(200), nullable=False, index=True)
    amount_cents = Column(Integer, nullable=False, default=0)
    order_index = Column(Integer, default=0)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)


class EstimateElement(Base):
    """Estimate-side element row. Null or dangling structure_id means orphaned."""
    __tablename__ = "estimate_elements"

    id = Column(Integer, primary_key=True, index=True)
    project_id = Column(Integer, ForeignKey('projects.id'), nullable=False, index=True)
    structure_id = Column(Integer, ForeignKey('estimate_structures.id'), nullable=True, index=True)
    name = Column(String(200), nullable=False)
    amount_cents = Column(Integer, nullable=False, default=0)
    order_index = Column(Integer, default=0)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)


# =============================================================================
# Budget tree
# =============================================================================

class BudgetNode(Base):
    """
    One row of the cost hierarchy (structure / element / line item).

    INVARIANT: for every non-leaf node each accumulator equals the sum of
    that accumulator over its direct children.
    version_id drives optimistic locking; a stale write raises StaleDataError.
    """
    __tablename__ = "budget_nodes"

    id = Column(Integer, primary_key=True, index=True)
    uuid = Column(String(36), unique=True, index=True, nullable=False)
    project_id = Column(Integer, ForeignKey('projects.id'), nullable=False, index=True)
    parent_id = Column(Integer, ForeignKey('budget_nodes.id'), nullable=True, index=True)
    name = Column(String(200), nullable=False)
    level = Column(Integer, nullable=False, default=0)
    is_parent = Column(Boolean, nullable=False, default=False)
    structure_id = Column(Integer, ForeignKey('estimate_structures.id'), nullable=True, index=True)
    element_id = Column(Integer, ForeignKey('estimate_elements.id'), nullable=True, index=True)
    budget_amount_cents = Column(Integer, nullable=True)  # Immutable once set
    paid_bills_cents = Column(Integer, nullable=False, default=0)
    pending_bills_cents = Column(Integer, nullable=False, default=0)
    external_bills_cents = Column(Integer, nullable=False, default=0)
    wages_cents = Column(Integer, nullable=False, default=0)
    actual_cents = Column(Integer, nullable=False, default=0)
    order_index = Column(Integer, default=0)
    is_deleted = Column(Boolean, nullable=False, default=False, index=True)
    version_id = Column(Integer, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    children = relationship(
        "BudgetNode",
        backref=backref("parent", remote_side=[id]),
        order_by="BudgetNode.order_index",
    )

    __mapper_args__ = {"version_id_col": version_id}

    __table_args__ = (
        CheckConstraint('paid_bills_cents >= 0', name='ck_node_paid_non_negative'),
        CheckConstraint('pending_bills_cents >= 0', name='ck_node_pending_non_negative'),
        CheckConstraint('external_bills_cents >= 0', name='ck_node_external_non_negative'),
        CheckConstraint('wages_cents >= 0', name='ck_node_wages_non_negative'),
    )

    @property
    def difference_cents(self) -> int:
        """budget - actual."""
        return (self.budget_amount_cents or 0) - (self.actual_cents or 0)

    @property
    def committed_cents(self) -> int:
        return (
            (self.paid_bills_cents or 0) + (self.pending_bills_cents or 0)
            + (self.external_bills_cents or 0) + (self.wages_cents or 0)
        )

    @property
    def available_budget_cents(self) -> int:
        """budget - (paid + pending + external + wages)."""
        return (self.budget_amount_cents or 0) - self.committed_cents

    def recompute_actual(self) -> int:
        self.actual_cents = (
            (self.paid_bills_cents or 0) + (self.external_bills_cents or 0) + (self.wages_cents or 0)
        )
        return self.actual_cents


# =============================================================================
# Purchase orders
# =============================================================================

class PurchaseOrder(Base):
    __tablename__ = "purchase_orders"

    id = Column(Integer, primary_key=True, index=True)
    project_id = Column(Integer, ForeignKey('projects.id'), nullable=False, index=True)
    po_number = Column(String(50), nullable=False, index=True)
    name = Column(String(200), nullable=True)
    supplier_id = Column(Integer, nullable=True, index=True)
    status = Column(String(20), nullable=False, default=PurchaseOrderStatus.DRAFT.value)
    total_cents = Column(Integer, nullable=False, default=0)
    linked_bill_number = Column(String(50), nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    items = relationship("PurchaseOrderItem", back_populates="purchase_order",
                         cascade="all, delete-orphan", order_by="PurchaseOrderItem.id")

    __table_args__ = (
        UniqueConstraint('project_id', 'po_number', name='uq_project_po_number'),
    )


class PurchaseOrderItem(Base):
    __tablename__ = "purchase_order_items"

    id = Column(Integer, primary_key=True, index=True)
    purchase_order_id = Column(Integer, ForeignKey('purchase_orders.id'), nullable=False, index=True)
    description = Column(String(500), nullable=True)
    quantity = Column(Float, nullable=False, default=1.0)
    unit_cost_cents = Column(Integer, nullable=False, default=0)
    amount_cents = Column(Integer, nullable=False, default=0)
    cost_control_item_id = Column(Integer, ForeignKey('budget_nodes.id'), nullable=True, index=True)

    purchase_order = relationship("PurchaseOrder", back_populates="items")


# =============================================================================
# Bills
# =============================================================================

class Bill(Base):
    """
    Supplier bill.
    INVARIANT: status is derived from amount and paid amount
    (Draft/Cancelled are explicit overrides).
    """
    __tablename__ = "bills"

    id = Column(Integer, primary_key=True, index=True)
    uuid = Column(String(36), unique=True, index=True, nullable=False)
    project_id = Column(Integer, ForeignKey('projects.id'), nullable=False, index=True)
    bill_number = Column(String(50), nullable=False, index=True)
    name = Column(String(200), nullable=True)
    supplier_id = Column(Integer, nullable=True, index=True)
    purchase_order_id = Column(Integer, ForeignKey('purchase_orders.id'), nullable=True, index=True)
    amount_cents = Column(Integer, nullable=False, default=0)
    paid_amount_cents = Column(Integer, nullable=False, default=0)
    status = Column(String(20), nullable=False, default=BillStatus.PENDING.value, index=True)
    bill_date = Column(Date, nullable=True)
    due_date = Column(Date, nullable=True, index=True)
    notes = Column(Text, nullable=True)
    version_id = Column(Integer, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    project = relationship("Project", back_populates="bills")
    items = relationship("BillItem", back_populates="bill",
                         cascade="all, delete-orphan", order_by="BillItem.id")
    payments = relationship("BillPayment", back_populates="bill",
                            cascade="all, delete-orphan", order_by="BillPayment.id")

    __mapper_args__ = {"version_id_col": version_id}

    __table_args__ = (
        UniqueConstraint('project_id', 'bill_number', name='uq_project_bill_number'),
        CheckConstraint('amount_cents >= 0', name='ck_bill_amount_non_negative'),
    )

    @property
    def remaining_cents(self) -> int:
        return max(0, (self.amount_cents or 0) - (self.paid_amount_cents or 0))


class BillItem(Base):
    """Bill line; amount = quantity x unit cost. Optionally linked to a budget node."""
    __tablename__ = "bill_items"

    id = Column(Integer, primary_key=True, index=True)
    bill_id = Column(Integer, ForeignKey('bills.id'), nullable=False, index=True)
    description = Column(String(500), nullable=True)
    quantity = Column(Float, nullable=False, default=1.0)
    unit_cost_cents = Column(Integer, nullable=False, default=0)
    amount_cents = Column(Integer, nullable=False, default=0)
    cost_control_item_id = Column(Integer, ForeignKey('budget_nodes.id'), nullable=True, index=True)

    bill = relationship("Bill", back_populates="items")


class BillPayment(Base):
    """
    Payment against a bill.
    allocation_status is the durable outbox entry for the allocation pass:
    a payment is allocated exactly once, when it moves to 'applied'.
    """
    __tablename__ = "bill_payments"

    id = Column(Integer, primary_key=True, index=True)
    uuid = Column(String(36), unique=True, index=True, nullable=False)
    bill_id = Column(Integer, ForeignKey('bills.id'), nullable=False, index=True)
    amount_cents = Column(Integer, nullable=False)
    payment_date = Column(Date, nullable=False)
    method = Column(String(50), nullable=False)
    reference = Column(String(100), nullable=True)
    note = Column(Text, nullable=True)
    status = Column(String(20), nullable=False, default="Completed")
    allocation_status = Column(String(20), nullable=False,
                               default=AllocationStatus.PENDING.value, index=True)
    # Cumulative amount paid on the bill once this payment landed
    bill_paid_after_cents = Column(Integer, nullable=True)
    allocation_attempts = Column(Integer, nullable=False, default=0)
    allocated_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)

    bill = relationship("Bill", back_populates="payments")

    __table_args__ = (
        CheckConstraint('amount_cents > 0', name='ck_payment_positive'),
    )


class PaymentAllocation(Base):
    """
    One line of an applied allocation pass: the share of a payment booked to
    a budget node. budget_node_id is NULL for the share of items that carry
    no node link. Written in the same transaction as the node updates.
    """
    __tablename__ = "payment_allocations"

    id = Column(Integer, primary_key=True, index=True)
    payment_id = Column(Integer, ForeignKey('bill_payments.id'), nullable=False, index=True)
    bill_id = Column(Integer, ForeignKey('bills.id'), nullable=False, index=True)
    budget_node_id = Column(Integer, ForeignKey('budget_nodes.id'), nullable=True, index=True)
    item_total_cents = Column(Integer, nullable=False, default=0)
    attributed_cents = Column(Integer, nullable=False, default=0)
    applied_to_node = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, default=datetime.utcnow)

    __table_args__ = (
        UniqueConstraint('payment_id', 'budget_node_id', name='uq_payment_node_allocation'),
    )


# =============================================================================
# Summary cache and logs
# =============================================================================

class ProjectSummary(Base):
    """Cached project totals. Rebuilt by refresh, flagged by invalidate."""
    __tablename__ = "project_summaries"

    id = Column(Integer, primary_key=True, index=True)
    project_id = Column(Integer, ForeignKey('projects.id'), nullable=False, unique=True, index=True)
    structure_count = Column(Integer, nullable=False, default=0)
    element_count = Column(Integer, nullable=False, default=0)
    estimate_total_cents = Column(Integer, nullable=False, default=0)
    paid_bills_total_cents = Column(Integer, nullable=False, default=0)
    unpaid_bills_total_cents = Column(Integer, nullable=False, default=0)
    bills_difference_cents = Column(Integer, nullable=False, default=0)
    purchase_orders_total_cents = Column(Integer, nullable=False, default=0)
    wages_total_cents = Column(Integer, nullable=False, default=0)
    is_stale = Column(Boolean, nullable=False, default=False)
    last_updated_at = Column(DateTime, default=datetime.utcnow)

    def to_dict(self) -> dict:
        return {
            "project_id": self.project_id,
            "structure_count": self.structure_count,
            "element_count": self.element_count,
            "estimate_total_cents": self.estimate_total_cents,
            "paid_bills_total_cents": self.paid_bills_total_cents,
            "unpaid_bills_total_cents": self.unpaid_bills_total_cents,
            "bills_difference_cents": self.bills_difference_cents,
            "purchase_orders_total_cents": self.purchase_orders_total_cents,
            "wages_total_cents": self.wages_total_cents,
            "last_updated_at": self.last_updated_at.isoformat() if self.last_updated_at else None,
        }


class ActivityLog(Base):
    """Best-effort write-through audit trail of ledger actions."""
    __tablename__ = "activity_log"

    id = Column(Integer, primary_key=True, index=True)
    project_id = Column(Integer, ForeignKey('projects.id'), nullable=True, index=True)
    entity_type = Column(String(50), nullable=False)
    entity_id = Column(Integer, nullable=True)
    action = Column(String(50), nullable=False, index=True)
    details = Column(Text, nullable=True)  # JSON
    created_at = Column(DateTime, default=datetime.utcnow, index=True)


class LedgerErrorLog(Base):
    """Error records for manual reconciliation of partially applied ledger work."""
    __tablename__ = "ledger_error_log"

    id = Column(Integer, primary_key=True, index=True)
    project_id = Column(Integer, ForeignKey('projects.id'), nullable=True, index=True)
    operation = Column(String(50), nullable=False, index=True)
    bill_id = Column(Integer, nullable=True)
    payment_id = Column(Integer, nullable=True, index=True)
    node_ids = Column(Text, nullable=True)  # JSON list
    message = Column(Text, nullable=False)
    resolved = Column(Boolean, nullable=False, default=False, index=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    resolved_at = Column(DateTime, nullable=True)


def init_db():
    """Initialize the database and create all tables."""
    Base.metadata.create_all(bind=engine)


def get_db():
    """Database session dependency for FastAPI."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
