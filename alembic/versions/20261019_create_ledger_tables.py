"""Create budget ledger tables

Adds:
- projects, estimate_structures, estimate_elements
- budget_nodes: cost hierarchy with accumulators and version_id
- purchase_orders, purchase_order_items
- bills, bill_items, bill_payments, payment_allocations
- project_summaries, activity_log, ledger_error_log

Revision ID: 20261019_ledger
Revises:
Create Date: 2026-10-19

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '20261019_ledger'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def table_exists(table_name):
    """Check if a table exists in the database."""
    from sqlalchemy import inspect
    bind = op.get_bind()
    inspector = inspect(bind)
    return table_name in inspector.get_table_names()


def _timestamps(updated=True):
    columns = [sa.Column('created_at', sa.DateTime(), nullable=True)]
    if updated:
        columns.append(sa.Column('updated_at', sa.DateTime(), nullable=True))
    return columns


def upgrade() -> None:
    """Create every ledger table."""

    # =========================================================================
    # 1. PROJECTS AND ESTIMATE
    # =========================================================================
    if not table_exists('projects'):
        op.create_table(
            'projects',
            sa.Column('id', sa.Integer(), nullable=False),
            sa.Column('uuid', sa.String(36), nullable=False),
            sa.Column('name', sa.String(200), nullable=False),
            sa.Column('project_number', sa.String(50), nullable=True),
            sa.Column('description', sa.Text(), nullable=True),
            sa.Column('is_active', sa.Boolean(), nullable=True),
            *_timestamps(),
            sa.PrimaryKeyConstraint('id'),
        )
        op.create_index('ix_projects_uuid', 'projects', ['uuid'], unique=True)
        op.create_index('ix_projects_project_number', 'projects', ['project_number'], unique=True)
        op.create_index('ix_projects_is_active', 'projects', ['is_active'])

    if not table_exists('estimate_structures'):
        op.create_table(
            'estimate_structures',
            sa.Column('id', sa.Integer(), nullable=False),
            sa.Column('project_id', sa.Integer(), nullable=False),
            sa.Column('name', sa.String(200), nullable=False),
            sa.Column('amount_cents', sa.Integer(), nullable=False, server_default='0'),
            sa.Column('order_index', sa.Integer(), nullable=True),
            *_timestamps(),
            sa.PrimaryKeyConstraint('id'),
            sa.ForeignKeyConstraint(['project_id'], ['projects.id']),
        )
        op.create_index('ix_estimate_structures_project_id', 'estimate_structures', ['project_id'])
        op.create_index('ix_estimate_structures_name', 'estimate_structures', ['name'])

    if not table_exists('estimate_elements'):
        op.create_table(
            'estimate_elements',
            sa.Column('id', sa.Integer(), nullable=False),
            sa.Column('project_id', sa.Integer(), nullable=False),
            sa.Column('structure_id', sa.Integer(), nullable=True),
            sa.Column('name', sa.String(200), nullable=False),
            sa.Column('amount_cents', sa.Integer(), nullable=False, server_default='0'),
            sa.Column('order_index', sa.Integer(), nullable=True),
            *_timestamps(),
            sa.PrimaryKeyConstraint('id'),
            sa.ForeignKeyConstraint(['project_id'], ['projects.id']),
            sa.ForeignKeyConstraint(['structure_id'], ['estimate_structures.id']),
        )
        op.create_index('ix_estimate_elements_project_id', 'estimate_elements', ['project_id'])
        op.create_index('ix_estimate_elements_structure_id', 'estimate_elements', ['structure_id'])

    # =========================================================================
    # 2. BUDGET TREE
    # =========================================================================
    if not table_exists('budget_nodes'):
        op.create_table(
            'budget_nodes',
            sa.Column('id', sa.Integer(), nullable=False),
            sa.Column('uuid', sa.String(36), nullable=False),
            sa.Column('project_id', sa.Integer(), nullable=False),
            sa.Column('parent_id', sa.Integer(), nullable=True),
            sa.Column('name', sa.String(200), nullable=False),
            sa.Column('level', sa.Integer(), nullable=False, server_default='0'),
            sa.Column('is_parent', sa.Boolean(), nullable=False, server_default='0'),
            sa.Column('structure_id', sa.Integer(), nullable=True),
            sa.Column('element_id', sa.Integer(), nullable=True),
            sa.Column('budget_amount_cents', sa.Integer(), nullable=True),
            sa.Column('paid_bills_cents', sa.Integer(), nullable=False, server_default='0'),
            sa.Column('pending_bills_cents', sa.Integer(), nullable=False, server_default='0'),
            sa.Column('external_bills_cents', sa.Integer(), nullable=False, server_default='0'),
            sa.Column('wages_cents', sa.Integer(), nullable=False, server_default='0'),
            sa.Column('actual_cents', sa.Integer(), nullable=False, server_default='0'),
            sa.Column('order_index', sa.Integer(), nullable=True),
            sa.Column('is_deleted', sa.Boolean(), nullable=False, server_default='0'),
            sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
            *_timestamps(),
            sa.PrimaryKeyConstraint('id'),
            sa.ForeignKeyConstraint(['project_id'], ['projects.id']),
            sa.ForeignKeyConstraint(['parent_id'], ['budget_nodes.id']),
            sa.ForeignKeyConstraint(['structure_id'], ['estimate_structures.id']),
            sa.ForeignKeyConstraint(['element_id'], ['estimate_elements.id']),
            sa.CheckConstraint('paid_bills_cents >= 0', name='ck_node_paid_non_negative'),
            sa.CheckConstraint('pending_bills_cents >= 0', name='ck_node_pending_non_negative'),
            sa.CheckConstraint('external_bills_cents >= 0', name='ck_node_external_non_negative'),
            sa.CheckConstraint('wages_cents >= 0', name='ck_node_wages_non_negative'),
        )
        op.create_index('ix_budget_nodes_uuid', 'budget_nodes', ['uuid'], unique=True)
        op.create_index('ix_budget_nodes_project_id', 'budget_nodes', ['project_id'])
        op.create_index('ix_budget_nodes_parent_id', 'budget_nodes', ['parent_id'])
        op.create_index('ix_budget_nodes_structure_id', 'budget_nodes', ['structure_id'])
        op.create_index('ix_budget_nodes_element_id', 'budget_nodes', ['element_id'])
        op.create_index('ix_budget_nodes_is_deleted', 'budget_nodes', ['is_deleted'])

    # =========================================================================
    # 3. PURCHASE ORDERS
    # =========================================================================
    if not table_exists('purchase_orders'):
        op.create_table(
            'purchase_orders',
            sa.Column('id', sa.Integer(), nullable=False),
            sa.Column('project_id', sa.Integer(), nullable=False),
            sa.Column('po_number', sa.String(50), nullable=False),
            sa.Column('name', sa.String(200), nullable=True),
            sa.Column('supplier_id', sa.Integer(), nullable=True),
            sa.Column('status', sa.String(20), nullable=False, server_default='Draft'),
            sa.Column('total_cents', sa.Integer(), nullable=False, server_default='0'),
            sa.Column('linked_bill_number', sa.String(50), nullable=True),
            *_timestamps(),
            sa.PrimaryKeyConstraint('id'),
            sa.ForeignKeyConstraint(['project_id'], ['projects.id']),
            sa.UniqueConstraint('project_id', 'po_number', name='uq_project_po_number'),
        )
        op.create_index('ix_purchase_orders_project_id', 'purchase_orders', ['project_id'])
        op.create_index('ix_purchase_orders_po_number', 'purchase_orders', ['po_number'])

    if not table_exists('purchase_order_items'):
        op.create_table(
            'purchase_order_items',
            sa.Column('id', sa.Integer(), nullable=False),
            sa.Column('purchase_order_id', sa.Integer(), nullable=False),
            sa.Column('description', sa.String(500), nullable=True),
            sa.Column('quantity', sa.Float(), nullable=False, server_default='1'),
            sa.Column('unit_cost_cents', sa.Integer(), nullable=False, server_default='0'),
            sa.Column('amount_cents', sa.Integer(), nullable=False, server_default='0'),
            sa.Column('cost_control_item_id', sa.Integer(), nullable=True),
            sa.PrimaryKeyConstraint('id'),
            sa.ForeignKeyConstraint(['purchase_order_id'], ['purchase_orders.id']),
            sa.ForeignKeyConstraint(['cost_control_item_id'], ['budget_nodes.id']),
        )
        op.create_index('ix_purchase_order_items_purchase_order_id', 'purchase_order_items',
                        ['purchase_order_id'])

    # =========================================================================
    # 4. BILLS AND PAYMENTS
    # =========================================================================
    if not table_exists('bills'):
        op.create_table(
            'bills',
            sa.Column('id', sa.Integer(), nullable=False),
            sa.Column('uuid', sa.String(36), nullable=False),
            sa.Column('project_id', sa.Integer(), nullable=False),
            sa.Column('bill_number', sa.String(50), nullable=False),
            sa.Column('name', sa.String(200), nullable=True),
            sa.Column('supplier_id', sa.Integer(), nullable=True),
            sa.Column('purchase_order_id', sa.Integer(), nullable=True),
            sa.Column('amount_cents', sa.Integer(), nullable=False, server_default='0'),
            sa.Column('paid_amount_cents', sa.Integer(), nullable=False, server_default='0'),
            sa.Column('status', sa.String(20), nullable=False, server_default='Pending'),
            sa.Column('bill_date', sa.Date(), nullable=True),
            sa.Column('due_date', sa.Date(), nullable=True),
            sa.Column('notes', sa.Text(), nullable=True),
            sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
            *_timestamps(),
            sa.PrimaryKeyConstraint('id'),
            sa.ForeignKeyConstraint(['project_id'], ['projects.id']),
            sa.ForeignKeyConstraint(['purchase_order_id'], ['purchase_orders.id']),
            sa.UniqueConstraint('project_id', 'bill_number', name='uq_project_bill_number'),
            sa.CheckConstraint('amount_cents >= 0', name='ck_bill_amount_non_negative'),
        )
        op.create_index('ix_bills_uuid', 'bills', ['uuid'], unique=True)
        op.create_index('ix_bills_project_id', 'bills', ['project_id'])
        op.create_index('ix_bills_bill_number', 'bills', ['bill_number'])
        op.create_index('ix_bills_status', 'bills', ['status'])
        op.create_index('ix_bills_due_date', 'bills', ['due_date'])

    if not table_exists('bill_items'):
        op.create_table(
            'bill_items',
            sa.Column('id', sa.Integer(), nullable=False),
            sa.Column('bill_id', sa.Integer(), nullable=False),
            sa.Column('description', sa.String(500), nullable=True),
            sa.Column('quantity', sa.Float(), nullable=False, server_default='1'),
            sa.Column('unit_cost_cents', sa.Integer(), nullable=False, server_default='0'),
            sa.Column('amount_cents', sa.Integer(), nullable=False, server_default='0'),
            sa.Column('cost_control_item_id', sa.Integer(), nullable=True),
            sa.PrimaryKeyConstraint('id'),
            sa.ForeignKeyConstraint(['bill_id'], ['bills.id']),
            sa.ForeignKeyConstraint(['cost_control_item_id'], ['budget_nodes.id']),
        )
        op.create_index('ix_bill_items_bill_id', 'bill_items', ['bill_id'])
        op.create_index('ix_bill_items_cost_control_item_id', 'bill_items', ['cost_control_item_id'])

    if not table_exists('bill_payments'):
        op.create_table(
            'bill_payments',
            sa.Column('id', sa.Integer(), nullable=False),
            sa.Column('uuid', sa.String(36), nullable=False),
            sa.Column('bill_id', sa.Integer(), nullable=False),
            sa.Column('amount_cents', sa.Integer(), nullable=False),
            sa.Column('payment_date', sa.Date(), nullable=False),
            sa.Column('method', sa.String(50), nullable=False),
            sa.Column('reference', sa.String(100), nullable=True),
            sa.Column('note', sa.Text(), nullable=True),
            sa.Column('status', sa.String(20), nullable=False, server_default='Completed'),
            sa.Column('bill_paid_after_cents', sa.Integer(), nullable=True),
            sa.Column('allocation_status', sa.String(20), nullable=False, server_default='pending'),
            sa.Column('allocation_attempts', sa.Integer(), nullable=False, server_default='0'),
            sa.Column('allocated_at', sa.DateTime(), nullable=True),
            *_timestamps(updated=False),
            sa.PrimaryKeyConstraint('id'),
            sa.ForeignKeyConstraint(['bill_id'], ['bills.id']),
            sa.CheckConstraint('amount_cents > 0', name='ck_payment_positive'),
        )
        op.create_index('ix_bill_payments_uuid', 'bill_payments', ['uuid'], unique=True)
        op.create_index('ix_bill_payments_bill_id', 'bill_payments', ['bill_id'])
        op.create_index('ix_bill_payments_allocation_status', 'bill_payments', ['allocation_status'])

    if not table_exists('payment_allocations'):
        op.create_table(
            'payment_allocations',
            sa.Column('id', sa.Integer(), nullable=False),
            sa.Column('payment_id', sa.Integer(), nullable=False),
            sa.Column('bill_id', sa.Integer(), nullable=False),
            sa.Column('budget_node_id', sa.Integer(), nullable=True),
            sa.Column('item_total_cents', sa.Integer(), nullable=False, server_default='0'),
            sa.Column('attributed_cents', sa.Integer(), nullable=False, server_default='0'),
            sa.Column('applied_to_node', sa.Boolean(), nullable=False, server_default='1'),
            *_timestamps(updated=False),
            sa.PrimaryKeyConstraint('id'),
            sa.ForeignKeyConstraint(['payment_id'], ['bill_payments.id']),
            sa.ForeignKeyConstraint(['bill_id'], ['bills.id']),
            sa.ForeignKeyConstraint(['budget_node_id'], ['budget_nodes.id']),
            sa.UniqueConstraint('payment_id', 'budget_node_id', name='uq_payment_node_allocation'),
        )
        op.create_index('ix_payment_allocations_payment_id', 'payment_allocations', ['payment_id'])
        op.create_index('ix_payment_allocations_bill_id', 'payment_allocations', ['bill_id'])
        op.create_index('ix_payment_allocations_budget_node_id', 'payment_allocations',
                        ['budget_node_id'])

    # =========================================================================
    # 5. SUMMARY CACHE AND LOGS
    # =========================================================================
    if not table_exists('project_summaries'):
        op.create_table(
            'project_summaries',
            sa.Column('id', sa.Integer(), nullable=False),
            sa.Column('project_id', sa.Integer(), nullable=False),
            sa.Column('structure_count', sa.Integer(), nullable=False, server_default='0'),
            sa.Column('element_count', sa.Integer(), nullable=False, server_default='0'),
            sa.Column('estimate_total_cents', sa.Integer(), nullable=False, server_default='0'),
            sa.Column('paid_bills_total_cents', sa.Integer(), nullable=False, server_default='0'),
            sa.Column('unpaid_bills_total_cents', sa.Integer(), nullable=False, server_default='0'),
            sa.Column('bills_difference_cents', sa.Integer(), nullable=False, server_default='0'),
            sa.Column('purchase_orders_total_cents', sa.Integer(), nullable=False, server_default='0'),
            sa.Column('wages_total_cents', sa.Integer(), nullable=False, server_default='0'),
            sa.Column('is_stale', sa.Boolean(), nullable=False, server_default='0'),
            sa.Column('last_updated_at', sa.DateTime(), nullable=True),
            sa.PrimaryKeyConstraint('id'),
            sa.ForeignKeyConstraint(['project_id'], ['projects.id']),
        )
        op.create_index('ix_project_summaries_project_id', 'project_summaries', ['project_id'],
                        unique=True)

    if not table_exists('activity_log'):
        op.create_table(
            'activity_log',
            sa.Column('id', sa.Integer(), nullable=False),
            sa.Column('project_id', sa.Integer(), nullable=True),
            sa.Column('entity_type', sa.String(50), nullable=False),
            sa.Column('entity_id', sa.Integer(), nullable=True),
            sa.Column('action', sa.String(50), nullable=False),
            sa.Column('details', sa.Text(), nullable=True),
            *_timestamps(updated=False),
            sa.PrimaryKeyConstraint('id'),
            sa.ForeignKeyConstraint(['project_id'], ['projects.id']),
        )
        op.create_index('ix_activity_log_project_id', 'activity_log', ['project_id'])
        op.create_index('ix_activity_log_action', 'activity_log', ['action'])
        op.create_index('ix_activity_log_created_at', 'activity_log', ['created_at'])

    if not table_exists('ledger_error_log'):
        op.create_table(
            'ledger_error_log',
            sa.Column('id', sa.Integer(), nullable=False),
            sa.Column('project_id', sa.Integer(), nullable=True),
            sa.Column('operation', sa.String(50), nullable=False),
            sa.Column('bill_id', sa.Integer(), nullable=True),
            sa.Column('payment_id', sa.Integer(), nullable=True),
            sa.Column('node_ids', sa.Text(), nullable=True),
            sa.Column('message', sa.Text(), nullable=False),
            sa.Column('resolved', sa.Boolean(), nullable=False, server_default='0'),
            sa.Column('created_at', sa.DateTime(), nullable=True),
            sa.Column('resolved_at', sa.DateTime(), nullable=True),
            sa.PrimaryKeyConstraint('id'),
            sa.ForeignKeyConstraint(['project_id'], ['projects.id']),
        )
        op.create_index('ix_ledger_error_log_project_id', 'ledger_error_log', ['project_id'])
        op.create_index('ix_ledger_error_log_operation', 'ledger_error_log', ['operation'])
        op.create_index('ix_ledger_error_log_payment_id', 'ledger_error_log', ['payment_id'])
        op.create_index('ix_ledger_error_log_resolved', 'ledger_error_log', ['resolved'])


def downgrade() -> None:
    """Drop every ledger table, children first."""
    for table in (
        'ledger_error_log',
        'activity_log',
        'project_summaries',
        'payment_allocations',
        'bill_payments',
        'bill_items',
        'bills',
        'purchase_order_items',
        'purchase_orders',
        'budget_nodes',
        'estimate_elements',
        'estimate_structures',
        'projects',
    ):
        if table_exists(table):
            op.drop_table(table)
