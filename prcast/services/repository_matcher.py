"""
Repository matching: map a webhook's repository to the project tracking it.

Projects store their GitHub URL in whatever form the user typed it, so URLs
are normalized to ``owner/repo`` before a case-insensitive comparison.
"""

import logging
import re
from collections import defaultdict
from typing import Dict, Iterable, List, Optional

from prcast.models.project import Project, RepositoryRef

logger = logging.getLogger(__name__)


class ProjectNotFoundError(Exception):
    """Raised when no project is configured for a repository."""
    pass


_OWNER_REPO = r"(?P<owner>[A-Za-z0-9_.-]+)/(?P<repo>[A-Za-z0-9_.-]+)"

_URL_PATTERNS = [
    re.compile(rf"^https?://(?:www\.)?github\.com/{_OWNER_REPO}$", re.IGNORECASE),
    re.compile(rf"^(?:www\.)?github\.com/{_OWNER_REPO}$", re.IGNORECASE),
    re.compile(rf"^git@github\.com:{_OWNER_REPO}$", re.IGNORECASE),
    re.compile(rf"^github\.com:{_OWNER_REPO}$", re.IGNORECASE),
    re.compile(rf"^{_OWNER_REPO}$"),
]


def parse_repository_url(url: Optional[str]) -> Optional[RepositoryRef]:
    """
    Parse a GitHub repository URL into owner and repo.

    Accepts ``https://github.com/o/r``, ``http://github.com/o/r``,
    ``github.com/o/r``, ``git@github.com:o/r``, ``github.com:o/r`` and a bare
    ``o/r``; surrounding whitespace, a trailing ``/`` and a ``.git`` suffix
    are ignored.

    Args:
        url: Repository URL as stored on the project

    Returns:
        RepositoryRef, or None when the URL is not a GitHub repository
    """
    if not url:
        return None

    cleaned = url.strip().rstrip("/")
    if cleaned.lower().endswith(".git"):
        cleaned = cleaned[:-4]

    for pattern in _URL_PATTERNS:
        match = pattern.match(cleaned)
        if match:
            return RepositoryRef(owner=match.group("owner"), repo=match.group("repo"))

    return None


class RepositoryMatcher:
    """Find the project whose GitHub URL names a given repository."""

    def match(self, full_name: str, projects: Iterable[Project]) -> Project:
        """
        Find the project configured for ``full_name``.

        Args:
            full_name: ``owner/repo`` from the webhook's repository object
            projects: Candidate projects in store order

        Returns:
            The matching project. When several projects claim the same
            repository the first one wins and the conflict is logged.

        Raises:
            ProjectNotFoundError: If no project matches
        """
        target = full_name.strip().lower()
        matches: List[Project] = []

        for project in projects:
            ref = parse_repository_url(project.github_url)
            if ref is not None and ref.key == target:
                matches.append(project)

        if not matches:
            raise ProjectNotFoundError(f"No project configured for repository {full_name}")

        if len(matches) > 1:
            logger.error(
                f"Repository {full_name} is claimed by {len(matches)} projects; "
                f"using project {matches[0].id}",
                extra={"conflicting_project_ids": [p.id for p in matches]},
            )

        return matches[0]

    def find_conflicts(self, projects: Iterable[Project]) -> Dict[str, List[Project]]:
        """
        Group projects that point at the same repository.

        Args:
            projects: Projects to check

        Returns:
            Mapping of ``owner/repo`` (lower-cased) to the projects sharing it,
            only for repositories claimed more than once
        """
        by_repo: Dict[str, List[Project]] = defaultdict(list)
        for project in projects:
            ref = parse_repository_url(project.github_url)
            if ref is not None:
                by_repo[ref.key].append(project)

        return {key: group for key, group in by_repo.items() if len(group) > 1}
