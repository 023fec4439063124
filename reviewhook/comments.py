"""PR comment summarising the serious findings of a review."""

from __future__ import annotations

from .schemas import SEVERITY_ORDER, AIAnalysis, Issue

COMMENT_SEVERITIES = ("critical", "high")


def _format_issue(issue: Issue) -> str:
    line = f"- **{issue.file}:{issue.line}** - {issue.message}"
    if issue.suggestion:
        line += f"\n  Suggestion: *{issue.suggestion}*"
    return line


def build_review_comment(analysis: AIAnalysis) -> str | None:
    """Markdown comment listing critical and high issues, or None when there are none."""
    serious = sorted(
        (issue for issue in analysis.issues if issue.severity in COMMENT_SEVERITIES),
        key=lambda issue: SEVERITY_ORDER[issue.severity],
    )
    if not serious:
        return None

    parts = [
        "## Automated Code Review",
        "",
        f"**Overall Score:** {analysis.overall_score:g}/10",
        "",
        analysis.summary,
    ]
    for severity in COMMENT_SEVERITIES:
        group = [issue for issue in serious if issue.severity == severity]
        if group:
            parts.extend(["", f"### {severity.capitalize()} Issues ({len(group)})"])
            parts.extend(_format_issue(issue) for issue in group)
    return "\n".join(parts)
