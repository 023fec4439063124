"""GitHub REST client: pull request metadata, changed files and comments."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field, replace
from typing import Any

import httpx

from .config import settings
from .errors import UpstreamFetchError
from .retry import with_backoff

logger = logging.getLogger(__name__)

PER_PAGE = 100


@dataclass(frozen=True)
class ChangedFile:
    filename: str
    status: str
    additions: int = 0
    deletions: int = 0
    patch: str | None = None
    patch_omitted: bool = False


@dataclass(frozen=True)
class PullRequestSnapshot:
    number: int
    title: str
    body: str
    author: str | None
    head_sha: str | None
    base_ref: str | None
    head_ref: str | None
    total_files: int
    files: list[ChangedFile] = field(default_factory=list)
    truncated: bool = False
    omitted_files: int = 0


def _is_retryable(exc: Exception) -> bool:
    return isinstance(exc, _RetryableFetchError)


class _RetryableFetchError(UpstreamFetchError):
    pass


def _classify(response: httpx.Response, method: str, path: str) -> UpstreamFetchError:
    status = response.status_code
    message = f"GitHub API error {status} ({method} {path})"
    if status == 401:
        return UpstreamFetchError(message, code="github_unauthorized", status_code=status)
    if status == 429 or (status == 403 and response.headers.get("x-ratelimit-remaining") == "0"):
        return _RetryableFetchError(message, code="github_rate_limited", status_code=status)
    if status == 404:
        # A freshly opened PR can briefly 404 on read replicas.
        return _RetryableFetchError(message, code="github_not_found", status_code=status)
    if status >= 500:
        return _RetryableFetchError(message, code="github_unavailable", status_code=status)
    if status == 403:
        return UpstreamFetchError(message, code="github_forbidden", status_code=status)
    return UpstreamFetchError(message, code="github_bad_request", status_code=status)


class GitHubClient:
    """Async client for the GitHub REST API with retry and backoff."""

    def __init__(
        self,
        token: str,
        *,
        base_url: str | None = None,
        timeout_seconds: float | None = None,
        max_attempts: int | None = None,
        backoff_base: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._max_attempts = max_attempts or settings.fetch_max_attempts
        self._backoff_base = settings.fetch_backoff_base if backoff_base is None else backoff_base
        self._sleep = sleep
        self._client = httpx.AsyncClient(
            base_url=(base_url or settings.github_api_url).rstrip("/"),
            timeout=httpx.Timeout(timeout_seconds or settings.github_timeout),
            transport=transport,
            headers={
                "Accept": "application/vnd.github+json",
                "Authorization": f"Bearer {token}",
                "X-GitHub-Api-Version": "2022-11-28",
                "User-Agent": "reviewhook",
            },
        )

    async def __aenter__(self) -> GitHubClient:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _request_once(
        self, method: str, path: str, *, params: dict[str, Any] | None, body: Any | None
    ) -> httpx.Response:
        try:
            resp = await self._client.request(method, path, params=params, json=body)
        except httpx.TimeoutException as e:
            raise _RetryableFetchError(
                f"GitHub request timed out ({method} {path})", code="github_timeout"
            ) from e
        except httpx.RequestError as e:
            raise _RetryableFetchError(
                f"GitHub request failed ({method} {path}): {e}", code="github_network"
            ) from e
        if resp.status_code >= 400:
            raise _classify(resp, method, path)
        return resp

    async def _request(
        self,
        method: str,
        path: str,
        *,
        params: dict[str, Any] | None = None,
        body: Any | None = None,
        attempts: int | None = None,
    ) -> httpx.Response:
        try:
            return await with_backoff(
                lambda: self._request_once(method, path, params=params, body=body),
                attempts=attempts or self._max_attempts,
                base_delay=self._backoff_base,
                is_retryable=_is_retryable,
                label=f"GitHub {method} {path}",
                sleep=self._sleep,
            )
        except _RetryableFetchError as e:
            # Surface the plain error type once retries are exhausted.
            raise UpstreamFetchError(str(e), code=e.code, status_code=e.status_code) from e

    async def get_pull(self, full_name: str, number: int) -> dict[str, Any]:
        resp = await self._request("GET", f"/repos/{full_name}/pulls/{number}")
        return resp.json()

    async def list_files(
        self, full_name: str, number: int, *, max_pages: int | None = None
    ) -> list[dict[str, Any]]:
        """List changed files, following pages until a short page or the page cap."""
        max_pages = max_pages or settings.github_max_pages
        files: list[dict[str, Any]] = []
        for page in range(1, max_pages + 1):
            resp = await self._request(
                "GET",
                f"/repos/{full_name}/pulls/{number}/files",
                params={"per_page": PER_PAGE, "page": page},
            )
            batch = resp.json()
            if not isinstance(batch, list):
                break
            files.extend(item for item in batch if isinstance(item, dict))
            if len(batch) < PER_PAGE:
                break
        return files

    async def fetch_pull_request(
        self,
        full_name: str,
        number: int,
        *,
        max_files: int | None = None,
        max_diff_chars: int | None = None,
    ) -> PullRequestSnapshot:
        results = await asyncio.gather(
            self.get_pull(full_name, number),
            self.list_files(full_name, number),
            return_exceptions=True,
        )
        for result in results:
            if isinstance(result, BaseException):
                raise result
        pr, raw_files = results
        files = [_changed_file(item) for item in raw_files]
        total = pr.get("changed_files")
        total_files = total if isinstance(total, int) and total >= len(files) else len(files)

        user = pr.get("user") if isinstance(pr.get("user"), dict) else {}
        head = pr.get("head") if isinstance(pr.get("head"), dict) else {}
        base = pr.get("base") if isinstance(pr.get("base"), dict) else {}
        snapshot = PullRequestSnapshot(
            number=number,
            title=pr.get("title") or "",
            body=pr.get("body") or "",
            author=user.get("login"),
            head_sha=head.get("sha"),
            base_ref=base.get("ref"),
            head_ref=head.get("ref"),
            total_files=total_files,
            files=files,
        )
        return bound_files(
            snapshot,
            max_files=max_files or settings.max_files,
            max_diff_chars=max_diff_chars or settings.max_diff_chars,
        )

    async def post_comment(self, full_name: str, number: int, body: str) -> None:
        await self._request(
            "POST",
            f"/repos/{full_name}/issues/{number}/comments",
            body={"body": body},
            attempts=1,
        )


def _changed_file(item: dict[str, Any]) -> ChangedFile:
    patch = item.get("patch")
    return ChangedFile(
        filename=str(item.get("filename", "")),
        status=str(item.get("status", "modified")),
        additions=int(item.get("additions") or 0),
        deletions=int(item.get("deletions") or 0),
        patch=patch if isinstance(patch, str) else None,
    )


def bound_files(
    snapshot: PullRequestSnapshot, *, max_files: int, max_diff_chars: int
) -> PullRequestSnapshot:
    """Cap the file list and total patch size that will be sent to the reviewer.

    Files past ``max_files`` are dropped. A file whose patch does not fit the
    remaining character budget is kept without its patch.
    """
    kept: list[ChangedFile] = []
    budget = max_diff_chars
    truncated = snapshot.total_files > len(snapshot.files)

    for changed in snapshot.files[:max_files]:
        patch = changed.patch or ""
        if len(patch) <= budget:
            kept.append(changed)
            budget -= len(patch)
        else:
            kept.append(replace(changed, patch=None, patch_omitted=True))
            truncated = True

    if len(snapshot.files) > max_files:
        truncated = True

    return replace(
        snapshot,
        files=kept,
        truncated=truncated,
        omitted_files=max(0, snapshot.total_files - len(kept)),
    )
