"""Event routing: which webhook deliveries start a review."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

REVIEW_EVENT = "pull_request"
REVIEW_ACTIONS = frozenset({"opened", "synchronize", "reopened"})


@dataclass(frozen=True)
class ReviewJob:
    """Everything a worker needs to review one pull request delivery."""

    delivery_id: str
    installation_id: int | None
    repository_id: int
    repository_full_name: str
    pull_request_number: int
    pull_request_id: int
    head_sha: str | None = None
    action: str = "opened"
    retry_count: int = 0

    def to_dict(self) -> dict[str, str]:
        payload: dict[str, str] = {
            "delivery_id": self.delivery_id,
            "repository_id": str(self.repository_id),
            "repository_full_name": self.repository_full_name,
            "pull_request_number": str(self.pull_request_number),
            "pull_request_id": str(self.pull_request_id),
            "action": self.action,
            "retry_count": str(self.retry_count),
        }
        if self.installation_id is not None:
            payload["installation_id"] = str(self.installation_id)
        if self.head_sha:
            payload["head_sha"] = self.head_sha
        return payload

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ReviewJob:
        installation_id = data.get("installation_id")
        return cls(
            delivery_id=str(data["delivery_id"]),
            installation_id=int(installation_id) if installation_id not in (None, "") else None,
            repository_id=int(data["repository_id"]),
            repository_full_name=str(data["repository_full_name"]),
            pull_request_number=int(data["pull_request_number"]),
            pull_request_id=int(data["pull_request_id"]),
            head_sha=data.get("head_sha") or None,
            action=str(data.get("action", "opened")),
            retry_count=int(data.get("retry_count", 0)),
        )


@dataclass(frozen=True)
class RouteDecision:
    """Either a job to enqueue or the reason the delivery is a no-op."""

    job: ReviewJob | None = None
    reason: str | None = None

    @property
    def should_review(self) -> bool:
        return self.job is not None


def route_event(event: str, payload: Any, delivery_id: str) -> RouteDecision:
    """Map (event, action) to a review job or an acknowledged no-op. Never raises."""
    if not isinstance(payload, dict):
        return RouteDecision(reason="malformed_payload")

    action = payload.get("action")
    if event != REVIEW_EVENT:
        return RouteDecision(reason=f"unhandled_event:{event}")
    if action not in REVIEW_ACTIONS:
        return RouteDecision(reason=f"unhandled_action:{action}")

    job = _build_job(payload, delivery_id, action)
    if job is None:
        return RouteDecision(reason="malformed_payload")
    return RouteDecision(job=job)


def _build_job(payload: dict[str, Any], delivery_id: str, action: str) -> ReviewJob | None:
    pull_request = payload.get("pull_request")
    repository = payload.get("repository")
    if not isinstance(pull_request, dict) or not isinstance(repository, dict):
        return None

    installation = payload.get("installation")
    installation_id = installation.get("id") if isinstance(installation, dict) else None
    head = pull_request.get("head")
    head_sha = head.get("sha") if isinstance(head, dict) else None

    try:
        return ReviewJob(
            delivery_id=delivery_id,
            installation_id=int(installation_id) if installation_id is not None else None,
            repository_id=int(repository["id"]),
            repository_full_name=str(repository["full_name"]),
            pull_request_number=int(pull_request.get("number") or payload["number"]),
            pull_request_id=int(pull_request["id"]),
            head_sha=head_sha if isinstance(head_sha, str) else None,
            action=action,
        )
    except (KeyError, TypeError, ValueError):
        return None
