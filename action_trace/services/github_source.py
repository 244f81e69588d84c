"""
GitHub Metadata Source
======================
MetadataSource backed by the GitHub Actions REST API.

Endpoints:
    GET /repos/{owner}/{repo}/actions/workflows
    GET /repos/{owner}/{repo}/actions/workflows/{workflow_id}/runs
    GET /repos/{owner}/{repo}/actions/runs/{run_id}/jobs
    GET /repos/{owner}/{repo}/actions/jobs/{job_id}

Pagination:
    The cursor is the ``next`` URL from the Link header. per_page is capped
    at 100; run listings shrink it to the caller's remaining limit so small
    samples cost a single request.

Error mapping:
    401                                  → Unauthorized
    403/429 with a rate-limit signal     → RateLimited(retry_after)
    other 403                            → Unauthorized
    404 / 410                            → NotFound
    5xx, timeouts, connection errors     → Transient

Steps:
    The job listing already embeds each job's steps. They travel on the Job
    itself (steps_listed), so list_steps normally costs no request and the
    source keeps no per-job state; when absent the single-job endpoint is
    queried.

Payloads:
    A body that is not JSON, or that does not fit the models, raises
    MalformedResponse. It is permanent; a retry would get the same body.
"""
import logging
import time
from contextlib import contextmanager
from typing import Any, Dict, Iterator, List, Optional

import httpx

from action_trace.core.config import GITHUB_API_URL, HTTP_TIMEOUT_SECONDS
from action_trace.core.constants import (
    GITHUB_ACCEPT, GITHUB_API_VERSION, MAX_PAGE_SIZE, USER_AGENT,
)
from action_trace.core.errors import MalformedResponse, NotFound, RateLimited, Transient, Unauthorized
from action_trace.models.job import Job, Step
from action_trace.models.page import Page
from action_trace.models.workflow_run import WorkflowRef, WorkflowRunSummary

logger = logging.getLogger(__name__)


def _retry_after_seconds(response: httpx.Response) -> Optional[float]:
    """Read the wait hint from retry-after or x-ratelimit-reset."""
    retry_after = response.headers.get("retry-after")
    if retry_after:
        try:
            return max(float(retry_after), 0.0)
        except ValueError:
            pass
    reset = response.headers.get("x-ratelimit-reset")
    if reset:
        try:
            return max(float(reset) - time.time(), 0.0)
        except ValueError:
            pass
    return None


def _is_rate_limited(response: httpx.Response) -> bool:
    if response.status_code == 429:
        return True
    if response.headers.get("x-ratelimit-remaining") == "0":
        return True
    if "retry-after" in response.headers:
        return True
    try:
        message = str(response.json().get("message", ""))
    except (ValueError, AttributeError):
        return False
    return "rate limit" in message.lower()


def raise_for_api_status(response: httpx.Response) -> None:
    """Translate a non-2xx response into the metadata source taxonomy."""
    status_code = response.status_code
    if status_code < 400:
        return
    url = str(response.request.url) if response.request else ""
    if status_code in (403, 429) and _is_rate_limited(response):
        raise RateLimited(
            retry_after=_retry_after_seconds(response),
            message=f"Rate limited by GitHub (HTTP {status_code}) on {url}",
        )
    if status_code in (401, 403):
        raise Unauthorized(f"HTTP {status_code} from {url}")
    if status_code in (404, 410):
        raise NotFound(f"HTTP {status_code} from {url}")
    if status_code >= 500 or status_code == 408:
        raise Transient(cause=f"HTTP {status_code}", message=f"Server error (HTTP {status_code}) on {url}")
    # Remaining 4xx are caller errors and will not improve on retry
    raise NotFound(f"HTTP {status_code} from {url}")


@contextmanager
def _payload(url: str) -> Iterator[None]:
    """Map body decoding and model validation errors to MalformedResponse."""
    try:
        yield
    except (ValueError, KeyError, TypeError, AttributeError) as e:
        # pydantic's ValidationError and json's JSONDecodeError are ValueErrors
        raise MalformedResponse(f"Unexpected response body from {url}: {e}") from e


class GitHubMetadataSource:
    """
    Async client for the Actions listing endpoints.

    Usage:
        async with GitHubMetadataSource(token="...") as source:
            page = await source.list_workflows("owner", "repo")
    """

    def __init__(
        self,
        token: Optional[str] = None,
        base_url: str = GITHUB_API_URL,
        timeout: float = HTTP_TIMEOUT_SECONDS,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.headers = {
            "Accept": GITHUB_ACCEPT,
            "X-GitHub-Api-Version": GITHUB_API_VERSION,
            "User-Agent": USER_AGENT,
        }
        if token:
            self.headers["Authorization"] = f"Bearer {token}"
        self._transport = transport
        self._http: Optional[httpx.AsyncClient] = None

    async def _get_http(self) -> httpx.AsyncClient:
        """Lazy-initialise the HTTP client."""
        if self._http is None or self._http.is_closed:
            self._http = httpx.AsyncClient(
                headers=self.headers,
                timeout=httpx.Timeout(self.timeout),
                transport=self._transport,
            )
        return self._http

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._http and not self._http.is_closed:
            await self._http.aclose()
            self._http = None

    async def __aenter__(self) -> "GitHubMetadataSource":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    async def _get(self, url: str, params: Optional[Dict[str, Any]] = None) -> httpx.Response:
        client = await self._get_http()
        try:
            response = await client.get(url, params=params)
        except httpx.TimeoutException as e:
            raise Transient(cause=e, message=f"Timeout on {url}") from e
        except httpx.TransportError as e:
            raise Transient(cause=e, message=f"Connection error on {url}: {e}") from e
        raise_for_api_status(response)
        logger.debug(
            "GET %s → %d (rate limit remaining: %s)",
            response.request.url, response.status_code,
            response.headers.get("x-ratelimit-remaining", "?"),
        )
        return response

    async def _get_page(
        self, url: str, cursor: Optional[str], per_page: int
    ) -> tuple[Dict[str, Any], Optional[str], int]:
        """Fetch one page; returns (json body, next cursor, per_page used)."""
        if cursor:
            response = await self._get(cursor)
            try:
                per_page = int(httpx.URL(cursor).params.get("per_page", per_page))
            except ValueError:
                pass
        else:
            response = await self._get(url, params={"per_page": per_page})
        next_link = response.links.get("next", {}).get("url")
        with _payload(cursor or url):
            body = response.json()
            if not isinstance(body, dict):
                raise TypeError(f"expected an object, got {type(body).__name__}")
        return body, next_link, per_page

    # ------------------------------------------------------------------
    # MetadataSource
    # ------------------------------------------------------------------
    async def list_workflows(
        self, owner: str, repo: str, cursor: Optional[str] = None
    ) -> Page[WorkflowRef]:
        repository = f"{owner}/{repo}"
        url = f"{self.base_url}/repos/{repository}/actions/workflows"
        body, next_cursor, per_page = await self._get_page(url, cursor, MAX_PAGE_SIZE)
        with _payload(url):
            workflows = [WorkflowRef.from_api(w, repository) for w in body.get("workflows") or []]
        return Page[WorkflowRef](items=workflows, next_cursor=next_cursor, per_page=per_page)

    async def list_runs(
        self, workflow: WorkflowRef, cursor: Optional[str] = None, limit: Optional[int] = None
    ) -> Page[WorkflowRunSummary]:
        url = f"{self.base_url}/repos/{workflow.repository}/actions/workflows/{workflow.id}/runs"
        per_page = MAX_PAGE_SIZE if not limit else max(1, min(limit, MAX_PAGE_SIZE))
        body, next_cursor, per_page = await self._get_page(url, cursor, per_page)
        with _payload(url):
            runs = [
                WorkflowRunSummary.from_api(r, workflow.repository)
                for r in body.get("workflow_runs") or []
            ]
        return Page[WorkflowRunSummary](items=runs, next_cursor=next_cursor, per_page=per_page)

    async def list_jobs(
        self, run: WorkflowRunSummary, cursor: Optional[str] = None
    ) -> Page[Job]:
        url = f"{self.base_url}/repos/{run.repository}/actions/runs/{run.id}/jobs"
        body, next_cursor, per_page = await self._get_page(url, cursor, MAX_PAGE_SIZE)
        with _payload(url):
            jobs = [Job.from_api(payload, run.repository) for payload in body.get("jobs") or []]
        return Page[Job](items=jobs, next_cursor=next_cursor, per_page=per_page)

    async def list_steps(self, job: Job) -> List[Step]:
        if job.steps_listed:
            return list(job.steps)
        url = f"{self.base_url}/repos/{job.repository}/actions/jobs/{job.id}"
        response = await self._get(url)
        with _payload(url):
            return [Step.from_api(s) for s in response.json().get("steps") or []]
