import asyncio
import json

import pytest
from click.testing import CliRunner

from reviewhook import db
from reviewhook.cli import main
from reviewhook.models import ReviewStatus
from reviewhook.persistence import ReviewOutcome, ReviewWriter


def test_parse_prints_analysis_json() -> None:
    raw = "Score: 6\nSummary: needs work\n- missing null check\n- add tests"

    result = CliRunner().invoke(main, ["parse", "--json"], input=raw)

    assert result.exit_code == 0, result.output
    data = json.loads(result.output)
    assert data["overallScore"] == 6
    assert len(data["issues"]) == 2


def test_parse_reads_file(tmp_path) -> None:
    source = tmp_path / "response.txt"
    source.write_text('```json\n{"overallScore": 8.2, "summary": "Looks solid"}\n```')

    result = CliRunner().invoke(main, ["parse", str(source)])

    assert result.exit_code == 0, result.output
    assert "8.2/10" in result.output
    assert "fence" in result.output


def test_enroll_requires_webhook_id() -> None:
    result = CliRunner().invoke(
        main,
        ["enroll", "octo/widgets", "--owner", "octo", "--installation-id", "77", "--repo-id", "1"],
    )

    assert result.exit_code == 2
    assert "--webhook-id" in result.output


@pytest.fixture
def stored_delivery():
    """Schema plus one stored review, set up outside any running event loop."""

    async def setup() -> None:
        await db.drop_db()
        await db.init_db()
        async with db.get_session() as session:
            repository = await db.enroll_repository(
                session,
                owner_login="octo",
                installation_id=77,
                github_id=4242,
                full_name="octo/widgets",
                webhook_id=9001,
                plan="free",
            )
        await ReviewWriter().write(
            ReviewOutcome(
                repository_id=repository.id,
                owner_id=repository.owner_id,
                pull_request_number=7,
                pull_request_id=555,
                delivery_id="d-cli",
                status=ReviewStatus.FAILED,
                error_code="github_unavailable",
            )
        )
        await db.engine.dispose()

    async def teardown() -> None:
        await db.drop_db()
        await db.engine.dispose()

    asyncio.run(setup())
    yield "d-cli"
    asyncio.run(teardown())


def test_delivery_reports_stored_reviews(stored_delivery: str) -> None:
    result = CliRunner().invoke(main, ["delivery", stored_delivery])

    assert result.exit_code == 0, result.output
    assert "Claimed: no" in result.output
    assert "Stored reviews: 1" in result.output


def test_usage_for_unknown_owner(stored_delivery: str) -> None:
    result = CliRunner().invoke(main, ["usage", "ghost"])

    assert result.exit_code == 0, result.output
    assert "Owner not found: ghost" in result.output
