"""
Scan reports and exports.

ScanReporter turns ScanMetrics and quality check results into a Markdown
report; export_issues renders all scanned issues as JSON or CSV.

Report sections:
- Header with run metadata (ID, timestamp, duration)
- Summary table with core metrics
- Status distribution and transitions
- Most frequently missing rules
- Data quality check results
- Provider health
- Current issues
"""
import csv
import io
import json
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Optional, Sequence

from tabulate import tabulate

from errors import ValidationError
from .metrics import ScanMetrics
from .quality_checks import QualityCheckResult

EXPORT_FORMATS = ("json", "csv")
CSV_HEADERS = ["Jira Key", "Summary", "Assignee", "Readiness Score", "Status", "Missing Items"]


class ScanReporter:
    """Generates Markdown reports from scan metrics."""

    def generate_report(
        self,
        metrics: Optional[ScanMetrics],
        quality_results: List[QualityCheckResult],
        issues: Sequence = ()
    ) -> str:
        """
        Generate a scan report in Markdown format.

        Args:
            metrics: Metrics of the latest scan, or None if none ran yet
            quality_results: List of quality check results
            issues: Current ScannedIssue rows

        Returns:
            Markdown-formatted report as string
        """
        lines = ["# Readiness Scan Report"]

        if metrics is not None:
            lines.append(f"**Run ID:** {metrics.run_id}")
            lines.append(f"**Started:** {metrics.started_at.isoformat()}")
            if metrics.completed_at:
                duration = (metrics.completed_at - metrics.started_at).total_seconds()
                lines.append(f"**Duration:** {duration:.1f} seconds")
            lines.append("")

            lines.append("## Summary")
            summary_data = [
                ["Issues Fetched", metrics.issues_total],
                ["Scanned", metrics.issues_scanned],
                ["New", metrics.issues_inserted],
                ["Updated", metrics.issues_updated],
                ["Status Changes", metrics.status_changes],
                ["Errors", metrics.errors],
                ["Average Score", f"{metrics.average_score:.2f}"],
            ]
            lines.append(tabulate(summary_data, headers=["Metric", "Value"], tablefmt="github"))
            lines.append("")

            if metrics.status_counts:
                lines.append("## Status Distribution")
                status_data = [[k, v] for k, v in sorted(metrics.status_counts.items())]
                lines.append(tabulate(status_data, headers=["Status", "Count"], tablefmt="github"))
                lines.append("")

            if metrics.transitions:
                lines.append("## Status Transitions")
                trans_data = [[f"{k[0]} -> {k[1]}", v] for k, v in metrics.transitions.items()]
                lines.append(tabulate(trans_data, headers=["Transition", "Count"], tablefmt="github"))
                lines.append("")

            if metrics.rules_missing:
                lines.append("## Missing Rules")
                rules_data = sorted(metrics.rules_missing.items(), key=lambda kv: (-kv[1], kv[0]))
                lines.append(tabulate(rules_data, headers=["Rule", "Issues"], tablefmt="github"))
                lines.append("")
        else:
            lines.append("No scan has run yet.")
            lines.append("")

        lines.append("## Data Quality Checks")
        quality_data = [["PASS" if qr.passed else "FAIL", qr.check_name, qr.message] for qr in quality_results]
        lines.append(tabulate(quality_data, headers=["Status", "Check", "Details"], tablefmt="github"))
        lines.append("")

        if metrics is not None and metrics.source_health:
            lines.append("## Provider Health")
            health_data = [
                ["OK" if health.get("healthy", False) else "DOWN", source, health.get("records", 0)]
                for source, health in metrics.source_health.items()
            ]
            lines.append(tabulate(health_data, headers=["Status", "Provider", "Records"], tablefmt="github"))
            lines.append("")

        if issues:
            lines.append("## Issues")
            issue_data = [
                [i.jira_key, f"{i.readiness_score:.2f}", i.status, len(i.missing_items),
                 "yes" if i.manual_override else ""]
                for i in issues
            ]
            lines.append(tabulate(issue_data, headers=["Key", "Score", "Status", "Missing", "Override"],
                                  tablefmt="github"))
            lines.append("")

        return "\n".join(lines)

    def save_report(self, report: str, output_dir: Path) -> Path:
        """
        Save report to file with timestamp.

        Returns:
            Path to saved report file
        """
        output_dir.mkdir(parents=True, exist_ok=True)
        timestamp = datetime.now(timezone.utc).strftime("%Y%m%d-%H%M%S")
        filepath = output_dir / f"scan-report-{timestamp}.md"
        filepath.write_text(report)
        return filepath


def export_issues(issues: Sequence, fmt: str = "json", answers_by_issue: Optional[dict] = None) -> str:
    """
    Render scanned issues for download.

    Args:
        issues: ScannedIssue rows
        fmt: "json" (full records with Q&A) or "csv" (summary columns)
        answers_by_issue: issue id -> QaAnswer rows, included in JSON

    Raises:
        ValidationError: If fmt is not supported
    """
    fmt = (fmt or "json").lower()
    if fmt not in EXPORT_FORMATS:
        raise ValidationError(f"Unsupported export format: {fmt}")

    if fmt == "csv":
        buffer = io.StringIO()
        writer = csv.writer(buffer, quoting=csv.QUOTE_ALL, lineterminator="\n")
        writer.writerow(CSV_HEADERS)
        for issue in issues:
            writer.writerow([
                issue.jira_key,
                issue.summary,
                issue.assignee,
                f"{issue.readiness_score:.2f}",
                issue.status,
                "; ".join(item.rule for item in issue.missing_items),
            ])
        return buffer.getvalue()

    answers_by_issue = answers_by_issue or {}
    records = []
    for issue in issues:
        record = issue.to_dict()
        record["answers"] = [qa.to_dict() for qa in answers_by_issue.get(issue.id, [])]
        records.append(record)
    return json.dumps(records, indent=2)
