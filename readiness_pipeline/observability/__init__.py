"""
Observability layer for the readiness pipeline.

Main exports:
- ScanMetrics: Tracks metrics for a scan run
- QualityChecker: Runs data quality checks
- QualityCheckResult: Result of a quality check
- ScanReporter: Generates Markdown reports
- export_issues: JSON / CSV export of scanned issues
"""
from .metrics import ScanMetrics
from .quality_checks import QualityChecker, QualityCheckResult
from .reporter import ScanReporter, export_issues

__all__ = [
    "ScanMetrics",
    "QualityChecker",
    "QualityCheckResult",
    "ScanReporter",
    "export_issues",
]
