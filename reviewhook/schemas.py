"""Pydantic schemas for the structured review result and API responses."""

from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

Severity = Literal["critical", "high", "medium", "low"]

SEVERITY_ORDER: dict[str, int] = {"critical": 0, "high": 1, "medium": 2, "low": 3}


class Issue(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    severity: Severity = "medium"
    type: str = "general"
    file: str = "unknown"
    line: int = 0
    message: str
    suggestion: str | None = None


class Suggestion(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    type: str = "improvement"
    file: str = "general"
    message: str
    example: str | None = None


class AIAnalysis(BaseModel):
    """Structured outcome of parsing the reviewer's response.

    Serialised with camelCase keys, which is the shape stored on the review
    and returned to API consumers.
    """

    model_config = ConfigDict(populate_by_name=True)

    overall_score: float = Field(default=5.0, ge=0, le=10, alias="overallScore")
    summary: str = "Analysis completed"
    issues: list[Issue] = Field(default_factory=list)
    suggestions: list[Suggestion] = Field(default_factory=list)
    confidence: float | None = None
    raw_response: str | None = Field(default=None, alias="rawResponse")

    def to_json(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True, mode="json")


class WebhookAck(BaseModel):
    status: Literal["queued", "ignored", "duplicate"]
    delivery_id: str
    reason: str | None = None


class ReviewView(BaseModel):
    id: str
    status: str
    repository: str | None = None
    pull_request_number: int
    delivery_id: str
    analysis_source: str | None = None
    error_code: str | None = None
    ai_analysis: dict[str, Any] | None = None
