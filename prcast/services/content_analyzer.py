"""
Content Analyzer: turn a change payload into narration and a list of visual
changes to show on the live site.

The model is asked for strict JSON. Output that does not parse or validate
is replaced by a bare prose summary plus a single homepage overview, so the
run can still produce a video.
"""

import json
import logging
from typing import Any, Dict, List, Optional

from pydantic import ValidationError

from prcast.models.analysis import ContentAnalysis, VisualChange, default_change
from prcast.models.webhook_event import WebhookPayload
from prcast.services.llm_client import LLMClient, get_llm_client
from prcast.utils.metrics import RunMetrics

logger = logging.getLogger(__name__)

ANALYSIS_MAX_TOKENS = 2000
ANALYSIS_TEMPERATURE = 0.7
FALLBACK_MAX_TOKENS = 200
TRUNCATION_MARKER = "\n... [diff truncated]"

SYSTEM_PROMPT = """You analyze merged GitHub pull requests and write video walkthrough scripts for non-technical reviewers.

From the pull request, produce:
1) "summary": what changed, in 2-3 sentences
2) "script": narration for the walkthrough, conversational, 30-60 seconds when spoken
3) "changes": the user-visible changes to show, in the order the narration mentions them, each with
   - "title": short title of the change
   - "description": what changed
   - "page_url": path relative to the live site, e.g. "/", "/pricing"
   - "selector": CSS selector of the element to show, e.g. ".hero", "#footer", "body"
   - "duration_seconds": how long to show it, between 4 and 8

Return a single JSON object with exactly these fields.
Focus on what a visitor would notice. Skip internal refactoring unless it changes the UI.
If nothing visible changed, return one change showing the homepage."""

FALLBACK_SYSTEM_PROMPT = "Summarize this GitHub pull request in 2-3 sentences."
DEFAULT_SUMMARY = "PR merged successfully"


class ContentAnalysisError(Exception):
    """Raised when no usable narration can be produced."""
    pass


def truncate_diff(diff: str, max_chars: int) -> str:
    """Cut a diff to ``max_chars`` characters, marking the cut."""
    if len(diff) <= max_chars:
        return diff
    return diff[:max_chars] + TRUNCATION_MARKER


def default_summary(payload: WebhookPayload) -> str:
    """Narration used when the model returns nothing at all."""
    title = payload.high_level.title.strip()
    if title:
        return f"{title}. {DEFAULT_SUMMARY}."
    return DEFAULT_SUMMARY


def build_analysis_context(payload: WebhookPayload, max_diff_chars: int) -> str:
    """
    Render a change payload as the text the model analyzes.

    Args:
        payload: Assembled change payload
        max_diff_chars: Diff size limit

    Returns:
        Prompt body
    """
    info = payload.event_info
    commits = "\n".join(f"{i + 1}. {message}" for i, message in enumerate(payload.raw_commits))

    return "\n".join([
        "GitHub Pull Request Analysis:",
        "",
        f"Repository: {info.repository}",
        f"PR #{info.pr_number}: {payload.high_level.title}",
        f"Merged by: {info.merged_by or 'unknown'}",
        f"Merged at: {info.timestamp or 'unknown'}",
        "",
        "PR Description:",
        payload.high_level.body or "No description provided",
        "",
        "Commits:",
        commits or "(none)",
        "",
        "Code Changes (Diff):",
        truncate_diff(payload.raw_diff, max_diff_chars) or "(no diff available)",
    ])


def parse_analysis(raw: str) -> Optional[ContentAnalysis]:
    """
    Parse and validate the model's JSON output.

    Individual changes that fail validation are dropped; an empty change
    list is replaced with the homepage overview and an empty script falls
    back to the summary.

    Returns:
        ContentAnalysis, or None if the output is unusable
    """
    try:
        data = json.loads(raw)
    except (TypeError, ValueError):
        return None

    if not isinstance(data, dict):
        return None

    summary = str(data.get("summary") or "").strip()
    script = str(data.get("script") or "").strip() or summary
    if not script:
        return None

    changes: List[VisualChange] = []
    raw_changes: Any = data.get("changes") or []
    if isinstance(raw_changes, list):
        for item in raw_changes:
            if not isinstance(item, dict):
                continue
            try:
                changes.append(VisualChange.model_validate(_clean_change(item)))
            except ValidationError as e:
                logger.warning(f"Dropping invalid visual change {item!r}: {e.error_count()} errors")

    if not changes:
        changes = [default_change()]

    return ContentAnalysis(summary=summary or script, script=script, changes=changes)


def _clean_change(item: Dict[str, Any]) -> Dict[str, Any]:
    cleaned = {k: v for k, v in item.items() if v is not None}
    page_url = str(cleaned.get("page_url") or "/").strip()
    if not page_url.startswith("/"):
        page_url = "/" + page_url
    cleaned["page_url"] = page_url
    if isinstance(cleaned.get("selector"), str) and not cleaned["selector"].strip():
        cleaned.pop("selector")
    return cleaned


class ContentAnalyzer:
    """Generates narration and visual changes for a change payload."""

    def __init__(self, llm_client: Optional[LLMClient] = None, settings=None):
        if settings is None:
            from prcast.config import settings as app_settings
            settings = app_settings
        self.settings = settings
        self.llm_client = llm_client or get_llm_client()

    async def analyze(
        self,
        payload: WebhookPayload,
        live_url: Optional[str] = None,
        metrics: Optional[RunMetrics] = None,
    ) -> ContentAnalysis:
        """
        Analyze a change payload.

        Args:
            payload: Assembled change payload
            live_url: Live site URL, given to the model as context
            metrics: Run metrics

        Returns:
            ContentAnalysis with at least one visual change

        Raises:
            ContentAnalysisError: If the structured or the fallback request
                fails outright
        """
        context = build_analysis_context(payload, self.settings.max_diff_chars)
        user_prompt = (
            "Analyze this pull request and write the walkthrough:\n\n"
            f"{context}\n\nLive site URL: {live_url or 'Not provided'}"
        )

        try:
            raw = await self.llm_client.complete(
                SYSTEM_PROMPT,
                user_prompt,
                model=self.settings.analysis_model,
                max_tokens=ANALYSIS_MAX_TOKENS,
                temperature=ANALYSIS_TEMPERATURE,
                json_mode=True,
                metrics=metrics,
            )
        except Exception as e:
            raise ContentAnalysisError(f"Analysis request failed: {e}") from e

        analysis = parse_analysis(raw)
        if analysis is not None:
            logger.info(
                f"Analysis complete: {len(analysis.changes)} visual changes, "
                f"script {len(analysis.script)} chars"
            )
            return analysis

        logger.warning("Analysis output did not parse; falling back to a prose summary")
        return await self._fallback(payload, context, metrics)

    async def _fallback(self, payload: WebhookPayload, context: str, metrics: Optional[RunMetrics]) -> ContentAnalysis:
        try:
            summary = await self.llm_client.complete(
                FALLBACK_SYSTEM_PROMPT,
                context,
                model=self.settings.analysis_model,
                max_tokens=FALLBACK_MAX_TOKENS,
                temperature=ANALYSIS_TEMPERATURE,
                metrics=metrics,
            )
        except Exception as e:
            raise ContentAnalysisError(f"Fallback summary request failed: {e}") from e

        if not summary or not summary.strip():
            logger.warning("Fallback summary was empty; using a default summary")
            summary = default_summary(payload)

        return ContentAnalysis(
            summary=summary,
            script=summary,
            changes=[default_change()],
            fallback_used=True,
        )
