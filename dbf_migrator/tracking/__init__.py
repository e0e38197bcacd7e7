"""Durable tracking of run progress and record discrepancies."""

from .checkpoint_manager import CheckpointManager
from .discrepancy_tracker import DiscrepancyTracker

__all__ = ['CheckpointManager', 'DiscrepancyTracker']
