"""
GitHub REST client for the data a change payload needs: commit messages and
unified diffs for a pull request, and the commit history of a branch for
backfills.
"""

import logging
import time
from typing import Any, Dict, List, Optional

import httpx

from prcast.config import settings
from prcast.utils.logging import log_api_call
from prcast.utils.resilience import create_github_circuit_breaker, retry_with_backoff

logger = logging.getLogger(__name__)

JSON_ACCEPT = "application/vnd.github.v3+json"
DIFF_ACCEPT = "application/vnd.github.v3.diff"


class GitHubAPIError(Exception):
    """Raised when a GitHub API call fails."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class GitHubClient:
    """
    Minimal GitHub API client.

    Uses a personal access token when one is configured; public repositories
    also work anonymously, within GitHub's lower rate limit.
    """

    def __init__(
        self,
        token: Optional[str] = None,
        api_url: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self._token = token if token is not None else settings.github_token
        self._api_url = (api_url or settings.github_api_url).rstrip("/")
        self._timeout = timeout if timeout is not None else settings.github_timeout_seconds
        self._transport = transport
        self._circuit_breaker = create_github_circuit_breaker()

    def _headers(self, accept: str) -> Dict[str, str]:
        headers = {"Accept": accept, "User-Agent": "prcast"}
        if self._token:
            headers["Authorization"] = f"Bearer {self._token}"
        return headers

    @retry_with_backoff(max_retries=3, base_delay=1.0, exceptions=(httpx.TransportError,))
    async def _get(
        self,
        url: str,
        accept: str = JSON_ACCEPT,
        params: Optional[Dict[str, Any]] = None,
    ) -> httpx.Response:
        """GET a URL; non-2xx responses raise GitHubAPIError."""
        async def _request() -> httpx.Response:
            async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
                return await client.get(url, headers=self._headers(accept), params=params)

        start = time.time()
        response = await self._circuit_breaker.call(_request)
        duration_ms = (time.time() - start) * 1000

        if response.status_code >= 400:
            log_api_call(
                logger, "github", url, "GET",
                status_code=response.status_code,
                duration_ms=duration_ms,
                error=response.text[:200],
            )
            raise GitHubAPIError(
                f"GitHub API returned {response.status_code} for {url}",
                status_code=response.status_code,
            )

        log_api_call(logger, "github", url, "GET", status_code=response.status_code, duration_ms=duration_ms)
        return response

    async def _get_all_pages(self, url: str, params: Dict[str, Any]) -> List[Dict[str, Any]]:
        """GET a list endpoint, following ``Link: rel="next"`` until the last page."""
        items: List[Dict[str, Any]] = []
        next_url: Optional[str] = url
        next_params: Optional[Dict[str, Any]] = params

        while next_url:
            response = await self._get(next_url, params=next_params)
            items.extend(response.json())
            next_url = response.links.get("next", {}).get("url")
            next_params = None  # the next link already carries the query

        return items

    async def get_pull_request_commits(self, repo_full_name: str, pr_number: int) -> List[Dict[str, Any]]:
        """List the commits of a pull request (GitHub returns at most 250)."""
        url = f"{self._api_url}/repos/{repo_full_name}/pulls/{pr_number}/commits"
        return await self._get_all_pages(url, {"per_page": 100})

    async def get_pull_request_diff(self, repo_full_name: str, pr_number: int) -> str:
        """Get the unified diff of a pull request."""
        url = f"{self._api_url}/repos/{repo_full_name}/pulls/{pr_number}"
        response = await self._get(url, accept=DIFF_ACCEPT)
        return response.text

    async def get_repository(self, repo_full_name: str) -> Dict[str, Any]:
        """Get repository metadata (default branch, visibility, ...)."""
        response = await self._get(f"{self._api_url}/repos/{repo_full_name}")
        return response.json()

    async def list_branch_commits(self, repo_full_name: str, branch: str) -> List[Dict[str, Any]]:
        """
        List every commit on a branch, newest first.

        Follows the ``Link: rel="next"`` header until the last page.
        """
        url = f"{self._api_url}/repos/{repo_full_name}/commits"
        commits = await self._get_all_pages(url, {"sha": branch, "per_page": 100})
        logger.info(f"Fetched {len(commits)} commits from {repo_full_name}@{branch}")
        return commits

    async def get_commit_diff(self, repo_full_name: str, sha: str) -> str:
        """Get the unified diff of a single commit."""
        url = f"{self._api_url}/repos/{repo_full_name}/commits/{sha}"
        response = await self._get(url, accept=DIFF_ACCEPT)
        return response.text


_github_client: Optional[GitHubClient] = None


def get_github_client() -> GitHubClient:
    """Get or create the global GitHub client instance."""
    global _github_client
    if _github_client is None:
        _github_client = GitHubClient()
    return _github_client
