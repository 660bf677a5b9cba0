"""
CLI Module - Command-line interface for the budget ledger.

Provides maintenance commands for summaries, rollups, orphaned elements,
allocation retries and exports.
"""

from .ledger_commands import register_commands

__all__ = ['register_commands']
