"""
Progress Estimator: estimate how complete a project is from its scope and
the work delivered so far.
"""

import json
import logging
import math
from typing import Any, List, Optional, Sequence, Tuple

from prcast.services.llm_client import LLMClient, get_llm_client
from prcast.services.store import EventStore
from prcast.utils.metrics import RunMetrics

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = (
    'You estimate how complete a software project is. Return ONLY a JSON object '
    'with a single "progress" field, an integer from 0 to 100. Be conservative.'
)


class ProgressEstimationError(Exception):
    """Raised when a progress estimate cannot be obtained."""
    pass


def parse_progress(value: Any) -> Optional[int]:
    """
    Normalize a model-reported progress value.

    Ints, floats and numeric strings are rounded half up and clamped to
    [0, 100]. Anything else (including booleans, NaN and infinities) is
    rejected.

    Returns:
        Integer percentage, or None when the value is not numeric
    """
    if isinstance(value, bool):
        return None
    if isinstance(value, str):
        try:
            value = float(value.strip().rstrip("%"))
        except ValueError:
            return None
    if not isinstance(value, (int, float)) or not math.isfinite(value):
        return None

    return min(100, max(0, int(math.floor(value + 0.5))))


def format_completed_work(entries: Sequence[Tuple[str, Optional[str]]]) -> str:
    """Number ``(title, summary)`` pairs oldest first."""
    if not entries:
        return "No updates yet."
    return "\n".join(f"{i + 1}. {title}: {summary or ''}".rstrip() for i, (title, summary) in enumerate(entries))


class ProgressEstimator:
    """Scores project completion and persists the result."""

    def __init__(self, store: EventStore, llm_client: Optional[LLMClient] = None, settings=None):
        if settings is None:
            from prcast.config import settings as app_settings
            settings = app_settings
        self.settings = settings
        self.store = store
        self.llm_client = llm_client or get_llm_client()

    async def estimate(
        self,
        project_id: str,
        project_scope: Optional[str],
        current_title: Optional[str] = None,
        current_summary: Optional[str] = None,
        metrics: Optional[RunMetrics] = None,
    ) -> Optional[int]:
        """
        Estimate and store a project's progress.

        The history is every completed update of the project, oldest first,
        followed by the run in progress when ``current_title`` is given.

        Returns:
            The stored percentage, or None when the project has no scope or
            the model's answer was not a number (existing progress is kept)

        Raises:
            ProgressEstimationError: If the model call or the write fails
        """
        if not project_scope or not project_scope.strip():
            logger.info(f"Project {project_id} has no scope; keeping existing progress")
            return None

        try:
            updates = await self.store.list_completed_updates(project_id)
            entries: List[Tuple[str, Optional[str]]] = [(u.title, u.summary) for u in updates]
            if current_title:
                entries.append((current_title, current_summary))

            raw = await self.llm_client.complete(
                SYSTEM_PROMPT,
                f"Project Scope:\n{project_scope.strip()}\n\n"
                f"Completed Work:\n{format_completed_work(entries)}\n\n"
                'Return {"progress": <0-100>}',
                model=self.settings.progress_model,
                max_tokens=50,
                temperature=0.3,
                json_mode=True,
                metrics=metrics,
            )
        except Exception as e:
            raise ProgressEstimationError(f"Progress estimation failed: {e}") from e

        try:
            reported = json.loads(raw).get("progress")
        except (ValueError, AttributeError):
            reported = None

        progress = parse_progress(reported)
        if progress is None:
            logger.warning(f"Discarding non-numeric progress estimate {raw!r} for project {project_id}")
            return None

        try:
            await self.store.set_project_progress(project_id, progress)
        except Exception as e:
            raise ProgressEstimationError(f"Failed to store progress: {e}") from e

        return progress
