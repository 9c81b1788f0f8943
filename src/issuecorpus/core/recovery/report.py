# src/issuecorpus/core/recovery/report.py
"""Plain-text rendering of an ErrorAnalysis."""

from issuecorpus.contracts.results import ErrorAnalysis

REPORT_HEADER = "=== ERROR RECOVERY REPORT ==="


def render_recovery_report(analysis: ErrorAnalysis, checkpoint_count: int) -> str:
    """Render the human-readable recovery report.

    Args:
        analysis: Aggregated error log view
        checkpoint_count: Checkpoints created for the process

    Returns:
        Multi-line report text
    """
    lines = [
        REPORT_HEADER,
        f"Total Errors: {analysis.total_errors}",
        f"Recent Errors (1hr): {analysis.recent_errors}",
        f"Checkpoints Created: {checkpoint_count}",
        "",
        "Error Distribution by Type:",
        *(f"  {error_type}: {count}" for error_type, count in sorted(analysis.by_type.items())),
        "",
        "Error Distribution by Severity:",
        *(f"  {severity}: {count}" for severity, count in sorted(analysis.by_severity.items())),
        "",
        "Top Error Messages:",
        *(f"  {i}. {message} ({count} times)" for i, (message, count) in enumerate(analysis.top_messages, start=1)),
        "",
        "Problematic Records:",
        *(f"  {i}. {key}: {count} errors" for i, (key, count) in enumerate(analysis.problem_records, start=1)),
        "",
    ]
    return "\n".join(lines)
