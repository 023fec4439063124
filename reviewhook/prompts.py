"""Prompt construction for the AI reviewer."""

from __future__ import annotations

from .config import settings
from .github import ChangedFile, PullRequestSnapshot

SYSTEM_PROMPT = """You are an expert code reviewer for a {language} codebase.
Analyze pull request changes and report:

1. Critical issues: security vulnerabilities, bugs, performance problems
2. Best practices: code style, patterns, maintainability
3. Improvements: optimization opportunities and refactoring suggestions

Be concise and actionable. Only comment on the changes shown."""

RESPONSE_FORMAT = """Respond with only a JSON object in this format:
{
  "overallScore": <number 0-10>,
  "summary": "<brief overview>",
  "issues": [
    {
      "type": "security|bug|performance|style",
      "severity": "critical|high|medium|low",
      "file": "<filename>",
      "line": <line number in the new file>,
      "message": "<description>",
      "suggestion": "<how to fix>"
    }
  ],
  "suggestions": [
    {
      "type": "improvement|optimization|refactor",
      "file": "<filename>",
      "message": "<suggestion>",
      "example": "<code example if applicable>"
    }
  ],
  "confidence": <number 0-1>
}
If there are no issues, return empty lists. Do not return any text outside the JSON object."""


def build_system_prompt(language: str | None) -> str:
    return SYSTEM_PROMPT.format(language=language or "multi-language")


def _format_file(changed: ChangedFile) -> str:
    header = f"### {changed.filename} ({changed.status}, +{changed.additions}/-{changed.deletions})"
    if changed.patch_omitted:
        return f"{header}\n(diff omitted: size budget exceeded)"
    if not changed.patch:
        return f"{header}\n(no textual diff)"
    return f"{header}\n```diff\n{changed.patch}\n```"


def build_user_prompt(
    snapshot: PullRequestSnapshot,
    repository_full_name: str,
    *,
    max_description_chars: int | None = None,
) -> str:
    limit = max_description_chars or settings.max_description_chars
    description = snapshot.body.strip() or "(no description)"
    if len(description) > limit:
        description = description[:limit] + "..."

    sections = [
        f"## Pull Request #{snapshot.number} in {repository_full_name}",
        f"Title: {snapshot.title or '(untitled)'}",
        f"Branch: {snapshot.head_ref or '?'} -> {snapshot.base_ref or '?'}",
        "",
        "## Description",
        description,
        "",
        f"## Changed Files ({len(snapshot.files)} of {snapshot.total_files} shown)",
    ]
    if snapshot.truncated:
        sections.append(
            f"NOTE: the change set was truncated; {snapshot.omitted_files} file(s) and some "
            "diffs are not shown. Do not guess about code you cannot see."
        )
    sections.extend(_format_file(changed) for changed in snapshot.files)
    sections.extend(["", RESPONSE_FORMAT])
    return "\n".join(sections)


def build_messages(
    snapshot: PullRequestSnapshot, repository_full_name: str, language: str | None
) -> list[dict[str, str]]:
    return [
        {"role": "system", "content": build_system_prompt(language)},
        {"role": "user", "content": build_user_prompt(snapshot, repository_full_name)},
    ]
