"""
Monitoring module for the DBF migration system.

Provides throughput and resource metrics for migration runs.
"""

from .performance_monitor import PerformanceMonitor, PerformanceMetrics

__all__ = [
    'PerformanceMonitor',
    'PerformanceMetrics'
]
