"""Turn the AI reviewer's raw text into an AIAnalysis.

Strategies are tried in order and the first that yields a usable result wins:

1. the whole response as JSON (must carry a numeric score),
2. a fenced ```json block,
3. the span from the first ``{`` to the last ``}``,
4. line-based heuristics (score / summary / bulleted issues and suggestions),
5. a fixed "parsing failed" analysis that keeps the raw text.

``parse_response`` never raises. Which path produced the analysis is carried
on the result together with a confidence value, so callers can store and
report degraded parses without treating them as failures.
"""

from __future__ import annotations

import json
import logging
import math
import re
from dataclasses import dataclass
from enum import StrEnum
from typing import Any

from .errors import ParseDegradedWarning
from .schemas import SEVERITY_ORDER, AIAnalysis, Issue, Suggestion

logger = logging.getLogger(__name__)

DEFAULT_SCORE = 5.0
DEFAULT_SUMMARY = "Analysis completed"
FAILED_SUMMARY = "Analysis completed but parsing failed"


class ParseSource(StrEnum):
    DIRECT = "direct"
    FENCE = "fence"
    BRACES = "braces"
    HEURISTIC = "heuristic"
    DEGRADED = "degraded"


DEFAULT_CONFIDENCE: dict[ParseSource, float] = {
    ParseSource.DIRECT: 1.0,
    ParseSource.FENCE: 0.9,
    ParseSource.BRACES: 0.7,
    ParseSource.HEURISTIC: 0.4,
    ParseSource.DEGRADED: 0.0,
}


@dataclass(frozen=True)
class ParseResult:
    source: ParseSource
    analysis: AIAnalysis
    warning: ParseDegradedWarning | None = None

    @property
    def confidence(self) -> float:
        if self.analysis.confidence is None:
            return DEFAULT_CONFIDENCE[self.source]
        return self.analysis.confidence

    @property
    def degraded(self) -> bool:
        return self.source in (ParseSource.HEURISTIC, ParseSource.DEGRADED)


def parse_response(raw: str | None) -> ParseResult:
    """Parse an AI response into an AIAnalysis. Never raises."""
    text = raw if isinstance(raw, str) else ""
    try:
        return _parse(text)
    except Exception as exc:  # last line of defence; the contract is total
        logger.exception("Unexpected error while parsing AI response")
        return _degraded(text, f"parser error: {exc}")


def _parse(text: str) -> ParseResult:
    stripped = text.strip()
    if not stripped:
        return _degraded(text, "empty response")

    payload = _load_object(stripped)
    if payload is not None and _score_of(payload) is not None:
        return _structured(payload, ParseSource.DIRECT)

    payload = _from_fence(stripped)
    if payload is not None:
        return _structured(payload, ParseSource.FENCE)

    payload = _from_braces(stripped)
    if payload is not None:
        return _structured(payload, ParseSource.BRACES)

    analysis = _heuristic(text)
    if analysis is not None:
        return ParseResult(
            source=ParseSource.HEURISTIC,
            analysis=analysis,
            warning=ParseDegradedWarning("no JSON found; used text heuristics"),
        )
    return _degraded(text, "no usable content")


def _degraded(text: str, why: str) -> ParseResult:
    logger.warning("AI response could not be parsed (%s)", why)
    analysis = AIAnalysis(
        overall_score=DEFAULT_SCORE,
        summary=FAILED_SUMMARY,
        issues=[],
        suggestions=[],
        confidence=DEFAULT_CONFIDENCE[ParseSource.DEGRADED],
        raw_response=text,
    )
    return ParseResult(ParseSource.DEGRADED, analysis, ParseDegradedWarning(why))


# ---------------------------------------------------------------------------
# JSON paths
# ---------------------------------------------------------------------------

_FENCE_OPEN_RE = re.compile(r"```json[^\n]*\n?", re.IGNORECASE)
_FENCE_CLOSE = "```"


def _load_object(candidate: str) -> dict[str, Any] | None:
    try:
        value = json.loads(candidate)
    except (json.JSONDecodeError, ValueError):
        return None
    return value if isinstance(value, dict) else None


def _from_fence(text: str) -> dict[str, Any] | None:
    match = _FENCE_OPEN_RE.search(text)
    if not match:
        return None
    start = match.end()
    # Try each closing fence in turn: string values may themselves contain ``` blocks.
    close = text.find(_FENCE_CLOSE, start)
    while close != -1:
        payload = _load_object(text[start:close].strip())
        if payload is not None:
            return payload
        close = text.find(_FENCE_CLOSE, close + len(_FENCE_CLOSE))
    return None


def _from_braces(text: str) -> dict[str, Any] | None:
    first = text.find("{")
    last = text.rfind("}")
    if first == -1 or last <= first:
        return None
    return _load_object(text[first : last + 1])


_NUMBER_RE = re.compile(r"-?\d+(?:\.\d+)?")


def _coerce_float(value: Any) -> float | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        try:
            number = float(value)
        except OverflowError:
            return None
        return number if math.isfinite(number) else None
    if isinstance(value, str):
        match = _NUMBER_RE.search(value)
        if match:
            number = float(match.group())
            return number if math.isfinite(number) else None
    return None


def _score_of(payload: dict[str, Any]) -> float | None:
    for key in ("overallScore", "overall_score", "score"):
        if key in payload:
            score = _coerce_float(payload[key])
            if score is not None:
                return score
    return None


def _clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


def _text(value: Any, default: str) -> str:
    if value is None:
        return default
    text = value if isinstance(value, str) else str(value)
    return text.strip() or default


def _optional_text(value: Any) -> str | None:
    if value is None:
        return None
    text = value if isinstance(value, str) else json.dumps(value)
    return text.strip() or None


def _line_number(value: Any) -> int:
    number = _coerce_float(value)
    return max(0, int(number)) if number is not None else 0


def _severity(value: Any) -> str:
    severity = str(value).strip().lower() if value is not None else ""
    return severity if severity in SEVERITY_ORDER else "medium"


def _as_list(value: Any) -> list[Any]:
    return value if isinstance(value, list) else []


def _issue_from(item: Any) -> Issue | None:
    if isinstance(item, str):
        return Issue(message=item.strip()) if item.strip() else None
    if not isinstance(item, dict):
        return None
    message = _text(item.get("message") or item.get("description") or item.get("comment"), "")
    if not message:
        return None
    return Issue(
        severity=_severity(item.get("severity")),
        type=_text(item.get("type") or item.get("category"), "general"),
        file=_text(item.get("file") or item.get("path"), "unknown"),
        line=_line_number(item.get("line")),
        message=message,
        suggestion=_optional_text(item.get("suggestion")),
    )


def _suggestion_from(item: Any) -> Suggestion | None:
    if isinstance(item, str):
        return Suggestion(message=item.strip()) if item.strip() else None
    if not isinstance(item, dict):
        return None
    message = _text(item.get("message") or item.get("description"), "")
    if not message:
        return None
    return Suggestion(
        type=_text(item.get("type"), "improvement"),
        file=_text(item.get("file"), "general"),
        message=message,
        example=_optional_text(item.get("example")),
    )


def _confidence_of(payload: dict[str, Any]) -> float | None:
    confidence = _coerce_float(payload.get("confidence"))
    if confidence is None:
        return None
    if confidence > 1:
        confidence = confidence / 100
    return _clamp(confidence, 0.0, 1.0)


def _structured(payload: dict[str, Any], source: ParseSource) -> ParseResult:
    score = _score_of(payload)
    suggestions_raw = payload.get("suggestions")
    if suggestions_raw is None:
        suggestions_raw = payload.get("recommendations")

    issues = [i for i in map(_issue_from, _as_list(payload.get("issues"))) if i is not None]
    suggestions = [s for s in map(_suggestion_from, _as_list(suggestions_raw)) if s is not None]
    confidence = _confidence_of(payload)

    analysis = AIAnalysis(
        overall_score=_clamp(score if score is not None else DEFAULT_SCORE, 0.0, 10.0),
        summary=_text(payload.get("summary"), DEFAULT_SUMMARY),
        issues=issues,
        suggestions=suggestions,
        confidence=confidence if confidence is not None else DEFAULT_CONFIDENCE[source],
    )
    warning = None
    if source is not ParseSource.DIRECT:
        warning = ParseDegradedWarning(f"JSON recovered via {source.value} extraction")
    return ParseResult(source=source, analysis=analysis, warning=warning)


# ---------------------------------------------------------------------------
# Heuristic path
# ---------------------------------------------------------------------------

_SCORE_RE = re.compile(r"score[\s:*=]*(\d+(?:\.\d+)?)", re.IGNORECASE)
_BULLET_RE = re.compile(r"^\s*[-*•]\s+")
_LABEL_RE = re.compile(r"^[#*\s]*(?:summary|overview)[*\s]*[:\-]?[*\s]*", re.IGNORECASE)
_SEVERITY_PREFIX_RE = re.compile(
    r"^\[?\**(critical|high|medium|low)\**\]?\s*[:\-\]]\s*", re.IGNORECASE
)


def _is_heading(line: str) -> bool:
    return line.startswith("#") or line.endswith(":") or (
        line.startswith("**") and line.endswith("**")
    )


def _section_for(line: str) -> str | None:
    lowered = line.lower()
    if "suggest" in lowered or "recommend" in lowered:
        return "suggestions"
    if "issue" in lowered or "problem" in lowered:
        return "issues"
    return None


def _heuristic(text: str) -> AIAnalysis | None:
    lines = [line.strip() for line in text.splitlines() if line.strip()]

    score_match = _SCORE_RE.search(text)
    summary = _summary_from(lines)
    issues: list[Issue] = []
    suggestions: list[Suggestion] = []

    # Bullets before any recognised heading count as issues. Once an explicit
    # issues/suggestions heading has been seen, any other heading closes it.
    section: str | None = None
    explicit = False
    for line in lines:
        if _BULLET_RE.match(line):
            item = _BULLET_RE.sub("", line, count=1).strip()
            if not item:
                continue
            if section == "suggestions":
                suggestions.append(Suggestion(message=item))
            elif section in (None, "issues"):
                issues.append(_heuristic_issue(item))
            continue

        heading = _section_for(line)
        if heading is not None:
            section = heading
            explicit = True
        elif explicit and _is_heading(line):
            section = "other"

    if score_match is None and summary is None and not issues and not suggestions:
        return None

    score = float(score_match.group(1)) if score_match else DEFAULT_SCORE
    return AIAnalysis(
        overall_score=_clamp(score, 0.0, 10.0),
        summary=summary or DEFAULT_SUMMARY,
        issues=issues,
        suggestions=suggestions,
        confidence=DEFAULT_CONFIDENCE[ParseSource.HEURISTIC],
        raw_response=text,
    )


def _summary_from(lines: list[str]) -> str | None:
    for index, line in enumerate(lines):
        lowered = line.lower()
        if "summary" not in lowered and "overview" not in lowered:
            continue
        remainder = _LABEL_RE.sub("", line, count=1).strip()
        if remainder:
            return remainder
        # A bare "## Summary" heading: use the line that follows it.
        if index + 1 < len(lines) and not _BULLET_RE.match(lines[index + 1]):
            return lines[index + 1]
        return line
    return None


def _heuristic_issue(item: str) -> Issue:
    match = _SEVERITY_PREFIX_RE.match(item)
    if match:
        message = item[match.end() :].strip() or item
        return Issue(severity=match.group(1).lower(), type="general", message=message)
    return Issue(severity="medium", type="general", message=item)
