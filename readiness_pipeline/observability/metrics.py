"""
Metrics collection for scan runs.

ScanMetrics tracks one full scan:
- Counts of issues fetched, scanned, inserted and updated
- Status distribution after the scan
- Status transitions that occurred
- How often each rule was missing
- Provider health and errors

Design decisions:
- Single metrics object per scan
- Defaultdict used for automatic initialization of counters
- Transition tracking uses tuple keys (from_status, to_status)
- Serializable to_dict() for storage in the scan_runs table
"""
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional


@dataclass
class ScanMetrics:
    """
    Metrics for a single scan run.

    Designed to be serialized to JSON for storage in the scan_runs table.
    """
    run_id: str
    started_at: datetime
    completed_at: Optional[datetime] = None

    # Core counts
    issues_total: int = 0
    issues_scanned: int = 0
    issues_inserted: int = 0
    issues_updated: int = 0
    status_changes: int = 0
    errors: int = 0

    # Status distribution after the scan
    status_counts: Dict[str, int] = field(default_factory=dict)

    # Key: (from_status, to_status), Value: count
    transitions: Dict[tuple, int] = field(default_factory=lambda: defaultdict(int))

    # Key: rule name, Value: number of issues missing it
    rules_missing: Dict[str, int] = field(default_factory=lambda: defaultdict(int))

    # Key: provider id, Value: dict with health status
    source_health: Dict[str, Dict] = field(default_factory=dict)

    scores: List[float] = field(default_factory=list)

    quality_issues: List[Dict] = field(default_factory=list)

    def record_issue(self, from_status: Optional[str], to_status: str, score: float, missing_rules: List[str]):
        """
        Record the outcome of scanning one issue.

        Args:
            from_status: Status before the scan (None for a new issue)
            to_status: Status after the scan
            score: Resolved readiness score
            missing_rules: Names of missing rules
        """
        self.issues_scanned += 1
        if from_status is None:
            self.issues_inserted += 1
        else:
            self.issues_updated += 1
        self.record_transition(from_status or "new", to_status)
        self.scores.append(score)
        for rule in missing_rules:
            self.rules_missing[rule] += 1

    def record_transition(self, from_status: str, to_status: str):
        """Only counts as a change if from_status != to_status."""
        if from_status != to_status:
            self.transitions[(from_status, to_status)] += 1
            self.status_changes += 1

    def record_error(self, error: str, context: Dict = None):
        """
        Record an error encountered during the scan.

        Args:
            error: Error message
            context: Optional dict with additional context (e.g., jira_key)
        """
        self.errors += 1
        self.quality_issues.append({
            "type": "error",
            "message": error,
            "context": context or {}
        })

    @property
    def average_score(self) -> float:
        return sum(self.scores) / len(self.scores) if self.scores else 0.0

    def to_dict(self) -> Dict[str, Any]:
        """
        Convert metrics to dictionary for JSON serialization.

        Transition keys are converted from tuples to strings.
        """
        return {
            "run_id": self.run_id,
            "started_at": self.started_at.isoformat(),
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "issues_total": self.issues_total,
            "issues_scanned": self.issues_scanned,
            "issues_inserted": self.issues_inserted,
            "issues_updated": self.issues_updated,
            "status_changes": self.status_changes,
            "errors": self.errors,
            "average_score": round(self.average_score, 2),
            "status_counts": self.status_counts,
            "transitions": {f"{k[0]}->{k[1]}": v for k, v in self.transitions.items()},
            "rules_missing": dict(self.rules_missing),
            "source_health": self.source_health,
            "quality_issues": self.quality_issues
        }
