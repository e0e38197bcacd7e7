"""Run orchestration."""

from .migration_orchestrator import CancellationToken, MigrationOrchestrator

__all__ = ['CancellationToken', 'MigrationOrchestrator']
