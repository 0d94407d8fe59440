"""
Event Ingestor component.

The synchronous half of webhook handling: decide whether a delivery
qualifies, find its project, assemble a self-contained change payload,
store it and enqueue a pipeline run. Also builds the synthetic event for
backfilling a project's existing commits.
"""

import asyncio
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

from prcast.models.project import Project
from prcast.models.webhook_event import (
    EventInfo,
    EventType,
    HighLevel,
    WebhookEvent,
    WebhookPayload,
)
from prcast.services.github_client import GitHubAPIError, GitHubClient, get_github_client
from prcast.services.redis_client import RedisClient, get_redis_client
from prcast.services.repository_matcher import (
    ProjectNotFoundError,
    RepositoryMatcher,
    parse_repository_url,
)
from prcast.services.store import EventStore, get_event_store
from prcast.utils.logging import get_logger

logger = get_logger(__name__)

GITHUB_FETCH_BUDGET_SECONDS = 8.0


def is_qualifying_event(payload: Dict[str, Any]) -> bool:
    """Only merged pull requests produce an update."""
    pull_request = payload.get("pull_request") or {}
    return payload.get("action") == "closed" and pull_request.get("merged") is True


def _parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None


class EventIngestor:
    """Turns webhook deliveries into stored, queued pipeline runs."""

    def __init__(
        self,
        store: Optional[EventStore] = None,
        redis_client: Optional[RedisClient] = None,
        github_client: Optional[GitHubClient] = None,
        matcher: Optional[RepositoryMatcher] = None,
        fetch_timeout: float = GITHUB_FETCH_BUDGET_SECONDS,
    ):
        self.store = store or get_event_store()
        self.redis_client = redis_client or get_redis_client()
        self.github_client = github_client or get_github_client()
        self.matcher = matcher or RepositoryMatcher()
        self.fetch_timeout = fetch_timeout

    async def find_project(self, repository_full_name: str) -> Project:
        """
        Find the project configured for a repository.

        Raises:
            ProjectNotFoundError: If no project matches
        """
        projects = await self.store.list_projects()
        return self.matcher.match(repository_full_name, projects)

    async def build_payload(self, delivery: Dict[str, Any]) -> WebhookPayload:
        """
        Assemble the change payload for a merged pull request.

        Commit messages and the diff are fetched from GitHub; if either
        request fails, or both together outlast ``fetch_timeout``, the payload
        carries an empty value and a warning is logged.
        """
        repository = delivery["repository"]["full_name"]
        pull_request = delivery["pull_request"]
        pr_number = pull_request["number"]

        try:
            commits_result, diff_result = await asyncio.wait_for(
                asyncio.gather(
                    self.github_client.get_pull_request_commits(repository, pr_number),
                    self.github_client.get_pull_request_diff(repository, pr_number),
                    return_exceptions=True,
                ),
                timeout=self.fetch_timeout,
            )
        except asyncio.TimeoutError:
            commits_result = diff_result = asyncio.TimeoutError(f"timed out after {self.fetch_timeout}s")

        commit_messages: List[str] = []
        if isinstance(commits_result, BaseException):
            self._log_fetch_failure("commits", repository, pr_number, commits_result)
        else:
            commit_messages = [
                c["commit"]["message"] for c in commits_result if c.get("commit", {}).get("message")
            ]

        raw_diff = ""
        if isinstance(diff_result, BaseException):
            self._log_fetch_failure("diff", repository, pr_number, diff_result)
        else:
            raw_diff = diff_result

        return WebhookPayload(
            event_info=EventInfo(
                repository=repository,
                pr_number=pr_number,
                merged_by=(pull_request.get("merged_by") or {}).get("login") or "unknown",
                timestamp=pull_request.get("merged_at") or datetime.now(timezone.utc).isoformat(),
            ),
            high_level=HighLevel(
                title=pull_request.get("title") or "",
                body=pull_request.get("body") or "",
            ),
            raw_commits=commit_messages,
            raw_diff=raw_diff,
        )

    def _log_fetch_failure(self, what: str, repository: str, pr_number: int, error: BaseException) -> None:
        if not isinstance(error, Exception):
            raise error
        logger.warning(
            f"Could not fetch {what} for {repository}#{pr_number}: {error}; continuing without it",
            extra={"repository": repository, "pr_number": pr_number},
        )

    async def ingest(self, project: Project, delivery: Dict[str, Any]) -> WebhookEvent:
        """
        Store a qualifying delivery and enqueue its pipeline run.

        Returns:
            The stored event (status pending)
        """
        payload = await self.build_payload(delivery)
        event = await self.store.insert_webhook_event(
            project.id,
            payload,
            event_type=EventType.PULL_REQUEST,
            merged_at=_parse_timestamp(delivery["pull_request"].get("merged_at")),
        )
        await self.redis_client.enqueue_pipeline_run(event.id)
        return event

    async def ingest_initial_commits(self, project: Project) -> Tuple[WebhookEvent, int, str]:
        """
        Backfill a project from the existing history of its default branch.

        Returns:
            (stored event, number of commits, branch name)

        Raises:
            ProjectNotFoundError: If the project has no usable GitHub URL
            GitHubAPIError: If the repository or its commits cannot be read,
                or the branch has no commits
        """
        ref = parse_repository_url(project.github_url)
        if ref is None:
            raise ProjectNotFoundError(f"Project {project.id} has no valid GitHub repository URL")

        repository = await self.github_client.get_repository(ref.full_name)
        branch = repository.get("default_branch") or "main"
        commits = await self.github_client.list_branch_commits(ref.full_name, branch)
        if not commits:
            raise GitHubAPIError(f"No commits found on {ref.full_name}@{branch}")

        latest = commits[0]
        try:
            raw_diff = await self.github_client.get_commit_diff(ref.full_name, latest["sha"])
        except GitHubAPIError as e:
            logger.warning(f"Could not fetch diff of {latest['sha']}: {e}; continuing without it")
            raw_diff = ""

        messages = [c["commit"]["message"] for c in reversed(commits) if c.get("commit", {}).get("message")]
        count = len(commits)
        plural = "s" if count != 1 else ""
        title = f"Initial Update: {count} commit{plural} from {branch} branch"
        numbered = "\n".join(f"{i + 1}. {message}" for i, message in enumerate(messages))
        committer = latest.get("committer") or {}
        committed_at = (latest.get("commit", {}).get("committer") or {}).get("date")

        payload = WebhookPayload(
            event_info=EventInfo(
                repository=ref.full_name,
                pr_number=0,
                merged_by=committer.get("login") or "unknown",
                timestamp=committed_at or datetime.now(timezone.utc).isoformat(),
            ),
            high_level=HighLevel(
                title=title,
                body=f"Processing existing commits from the {branch} branch.\n\nCommits:\n{numbered}",
            ),
            raw_commits=messages,
            raw_diff=raw_diff,
        )

        event = await self.store.insert_webhook_event(
            project.id,
            payload,
            event_type=EventType.INITIAL_COMMITS,
            merged_at=_parse_timestamp(committed_at),
        )
        await self.redis_client.enqueue_pipeline_run(event.id)
        logger.info(f"Backfill event {event.id} queued for project {project.id} ({count} commits)")
        return event, count, branch
