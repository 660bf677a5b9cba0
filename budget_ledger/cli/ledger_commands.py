"""
Ledger CLI Commands - Maintenance commands for the budget ledger.

Provides command-line interface for:
- Database initialization
- Summary cache refresh and population
- Orphaned element repair
- Rollup rebuild and verification
- Payment allocation retries
- Estimate synchronization and summary export
"""
import click
import logging
from pathlib import Path

from budget_ledger.models import get_db, init_db
from budget_ledger.domain.services import (
    BillLedgerService,
    EstimateSyncService,
    OrphanReconciler,
    ProjectSummaryService,
    RollupPropagator,
    SummaryProjector,
    run_in_transaction,
)
from budget_ledger.domain.exceptions import DomainError
from budget_ledger.infrastructure.repositories import ProjectRepository

logger = logging.getLogger(__name__)


def _fail(message: str):
    click.echo(click.style(message, fg='red'), err=True)
    raise SystemExit(1)


@click.command('init-db')
def init_db_command():
    """Create all ledger tables."""
    init_db()
    click.echo(click.style("Database initialized", fg='green'))


@click.command('refresh-summary')
@click.argument('project_id', type=int)
def refresh_summary(project_id: int):
    """Rebuild the cached totals of one project."""
    db = next(get_db())
    try:
        service = ProjectSummaryService(db)
        service.refresh(project_id)
        totals = service.get(project_id)
    except DomainError as e:
        _fail(e.message)
    finally:
        db.close()

    click.echo(f"Project {project_id} summary refreshed")
    click.echo(f"  Structures:     {totals['structure_count']}")
    click.echo(f"  Elements:       {totals['element_count']}")
    click.echo(f"  Paid bills:     {totals['paid_bills_total_cents']}")
    click.echo(f"  Unpaid bills:   {totals['unpaid_bills_total_cents']}")


@click.command('populate-summaries')
def populate_summaries():
    """Rebuild the cached totals of every project."""
    db = next(get_db())
    try:
        click.echo(ProjectSummaryService(db).populate_all())
    finally:
        db.close()


@click.command('fix-orphans')
@click.argument('project_id', type=int)
def fix_orphans(project_id: int):
    """Attach orphaned estimate elements to the catch-all structure."""
    db = next(get_db())
    try:
        result = OrphanReconciler(db).fix_orphaned_elements(project_id)
    except DomainError as e:
        _fail(e.message)
    finally:
        db.close()

    if not result.success:
        _fail(f"{result.message} ({result.remaining} remaining)")
    click.echo(click.style(result.message, fg='green'))


@click.command('rebuild-rollups')
@click.argument('project_id', type=int)
def rebuild_rollups(project_id: int):
    """Recompute every parent node of a project from its children."""
    db = next(get_db())
    try:
        ProjectRepository(db).get_or_raise(project_id)
        corrected = run_in_transaction(
            db, lambda: RollupPropagator(db).rebuild_project(project_id),
            entity_type="Project", entity_id=project_id, operation_name="rebuild rollups",
        )
    except DomainError as e:
        _fail(e.message)
    finally:
        db.close()
    click.echo(f"Corrected {corrected} node(s)")


@click.command('verify-rollups')
@click.argument('project_id', type=int)
def verify_rollups(project_id: int):
    """Report parents whose totals differ from the sum of their children."""
    db = next(get_db())
    try:
        ProjectRepository(db).get_or_raise(project_id)
        violations = RollupPropagator(db).verify_project(project_id)
    except DomainError as e:
        _fail(e.message)
    finally:
        db.close()

    if not violations:
        click.echo(click.style("All rollups consistent", fg='green'))
        return
    for v in violations:
        click.echo(f"  node {v.node_id} {v.field}: expected {v.expected}, found {v.actual}")
    _fail(f"{len(violations)} rollup violation(s)")


@click.command('retry-allocations')
@click.option('--project-id', type=int, default=None, help='Limit to one project')
def retry_allocations(project_id):
    """Retry payments whose budget allocation is pending or failed."""
    db = next(get_db())
    try:
        outcome = BillLedgerService(db).retry_failed_allocations(project_id)
    finally:
        db.close()
    click.echo(
        f"Attempted {outcome['attempted']}, applied {outcome['applied']}, failed {outcome['failed']}"
    )
    if outcome['failed']:
        raise SystemExit(1)


@click.command('sync-estimate')
@click.argument('project_id', type=int)
def sync_estimate(project_id: int):
    """Create budget nodes for estimate structures and elements."""
    db = next(get_db())
    try:
        result = EstimateSyncService(db).sync_project(project_id)
    except DomainError as e:
        _fail(e.message)
    finally:
        db.close()
    click.echo(
        f"Created {result.created_structures} structure node(s) and "
        f"{result.created_elements} element node(s), re-parented {len(result.reparented)}"
    )
    if result.skipped_orphans:
        click.echo(click.style(
            f"Skipped {result.skipped_orphans} orphaned element(s); run fix-orphans first",
            fg='yellow',
        ))


@click.command('export-summary')
@click.argument('project_id', type=int)
@click.option('--output', '-o', required=True, type=click.Path(dir_okay=False),
              help='CSV file to write')
@click.option('--expand-all', is_flag=True, help='Include every level of the tree')
def export_summary(project_id: int, output: str, expand_all: bool):
    """Export the project summary rows as CSV."""
    db = next(get_db())
    try:
        content = SummaryProjector(db).export_csv(project_id, expand_all=expand_all)
    except DomainError as e:
        _fail(e.message)
    finally:
        db.close()

    Path(output).write_text(content)
    click.echo(f"Summary written to {output}")


LEDGER_COMMANDS = [
    init_db_command,
    refresh_summary,
    populate_summaries,
    fix_orphans,
    rebuild_rollups,
    verify_rollups,
    retry_allocations,
    sync_estimate,
    export_summary,
]


def register_commands(cli):
    """Register ledger commands with main CLI."""
    for command in LEDGER_COMMANDS:
        cli.add_command(command)
