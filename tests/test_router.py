import pytest
from conftest import INSTALLATION_ID, REPO_FULL_NAME, REPO_GITHUB_ID, pull_request_payload

from reviewhook.router import ReviewJob, route_event


@pytest.mark.parametrize("action", ["opened", "synchronize", "reopened"])
def test_reviewable_actions_produce_a_job(action: str) -> None:
    decision = route_event("pull_request", pull_request_payload(action=action), "d-1")

    assert decision.should_review
    job = decision.job
    assert job is not None
    assert job.delivery_id == "d-1"
    assert job.installation_id == INSTALLATION_ID
    assert job.repository_id == REPO_GITHUB_ID
    assert job.repository_full_name == REPO_FULL_NAME
    assert job.pull_request_number == 7
    assert job.pull_request_id == 555
    assert job.head_sha == "abc123"
    assert job.action == action


def test_other_pull_request_actions_are_ignored() -> None:
    decision = route_event("pull_request", pull_request_payload(action="closed"), "d-1")

    assert not decision.should_review
    assert decision.reason == "unhandled_action:closed"


@pytest.mark.parametrize(
    "event", ["ping", "installation", "pull_request_review", "push", "something_new"]
)
def test_other_events_are_ignored(event: str) -> None:
    decision = route_event(event, {"action": "created", "zen": "Keep it simple."}, "d-1")

    assert not decision.should_review
    assert decision.reason == f"unhandled_event:{event}"


@pytest.mark.parametrize(
    "payload",
    [
        [],
        "not an object",
        {"action": "opened"},
        {"action": "opened", "pull_request": {"id": 1}, "repository": {"id": 2}},
        {"action": "opened", "pull_request": "x", "repository": {}},
        {
            "action": "opened",
            "pull_request": {"id": "not-a-number", "number": 1},
            "repository": {"id": 2, "full_name": "a/b"},
        },
    ],
)
def test_malformed_payloads_are_ignored(payload: object) -> None:
    decision = route_event("pull_request", payload, "d-1")

    assert not decision.should_review
    assert decision.reason == "malformed_payload"


def test_missing_installation_is_allowed() -> None:
    decision = route_event("pull_request", pull_request_payload(installation_id=None), "d-1")

    assert decision.job is not None
    assert decision.job.installation_id is None


def test_job_survives_stream_encoding() -> None:
    job = route_event("pull_request", pull_request_payload(), "d-1").job
    assert job is not None

    encoded = job.to_dict()
    assert all(isinstance(value, str) for value in encoded.values())
    assert ReviewJob.from_dict(encoded) == job
