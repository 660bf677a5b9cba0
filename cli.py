#!/usr/bin/env python3
"""
CLI for the Budget Ledger.

Usage:
    python cli.py init-db
    python cli.py fix-orphans 12
    python cli.py export-summary 12 --output summary.csv --expand-all
    python cli.py serve --port 8000

Commands:
    init-db             Create the ledger tables
    refresh-summary     Rebuild one project's cached totals
    populate-summaries  Rebuild every project's cached totals
    fix-orphans         Attach orphaned estimate elements
    rebuild-rollups     Recompute parent nodes from their children
    verify-rollups      Report rollup violations
    retry-allocations   Retry pending or failed payment allocations
    sync-estimate       Create budget nodes for the estimate
    export-summary      Write the summary rows as CSV
    serve               Start the API server
"""
import click
import logging

from budget_ledger import __version__
from budget_ledger.config import get_config
from budget_ledger.cli import register_commands

# Configure logging
logging.basicConfig(
    level=getattr(logging, get_config().log_level, logging.INFO),
    format=get_config().log_format
)
logger = logging.getLogger(__name__)


@click.group()
@click.version_option(version=__version__)
def cli():
    """Budget Ledger CLI.

    Maintain bills, payments and budget rollups for construction projects.
    """
    pass


register_commands(cli)


@cli.command()
@click.option('--port', type=int, default=8000, help='Server port')
@click.option('--host', default='0.0.0.0', help='Server host')
@click.option('--reload', is_flag=True, help='Enable auto-reload')
def serve(port: int, host: str, reload: bool):
    """Start the API server.

    Example:
        python cli.py serve --port 8000 --reload
    """
    import uvicorn

    click.echo(click.style('Budget Ledger - API Server', fg='cyan', bold=True))
    click.echo(f"Starting server at http://{host}:{port}")
    click.echo("Press CTRL+C to stop\n")

    uvicorn.run(
        "budget_ledger.main:app",
        host=host,
        port=port,
        reload=reload
    )


if __name__ == '__main__':
    cli()
