"""
Screenshot & Document Generator.

Takes one still of every visual change and assembles them, with the
narration, into a paginated PDF report. Everything here is best-effort:
a screenshot that fails leaves a gap in the report, and a report that fails
leaves the run without a document.
"""

import asyncio
import base64
import html
import logging
from datetime import date
from pathlib import Path
from typing import Awaitable, Callable, List, Optional

from playwright.async_api import Error as PlaywrightError

from prcast.models.analysis import VisualChange
from prcast.models.pipeline import DocumentResult, Screenshot
from prcast.services.artifact_store import ArtifactStore, RunWorkspace
from prcast.services.browser_pool import BrowserPool, get_browser_pool
from prcast.services.screen_recorder import focus_selector, resolve_page_url
from prcast.utils.resilience import ErrorRecoveryManager

logger = logging.getLogger(__name__)

PAGE_SETTLE_SECONDS = 1.0
SELECTOR_SETTLE_SECONDS = 0.5
REPORT_TITLE = "Project Update Report"

_STYLE = """
  * { margin: 0; padding: 0; box-sizing: border-box; }
  body { font-family: -apple-system, 'Segoe UI', Roboto, Arial, sans-serif; color: #1a1a2e; }
  .header { background: #1a1a2e; color: #fff; padding: 32px 40px; }
  .header h1 { font-size: 26px; margin-bottom: 6px; }
  .header .project-name { font-size: 17px; opacity: 0.9; }
  .header .date { font-size: 13px; opacity: 0.7; margin-top: 4px; }
  .content { padding: 32px 40px; }
  .summary { background: #f8fafc; border-left: 4px solid #667eea; padding: 20px; margin-bottom: 28px; }
  .summary h2, .changes h2 { font-size: 18px; margin-bottom: 12px; }
  .summary p { color: #4a5568; line-height: 1.6; white-space: pre-wrap; }
  .change { border: 1px solid #e2e8f0; border-radius: 8px; padding: 20px; margin-bottom: 20px; page-break-inside: avoid; }
  .change h3 { font-size: 15px; margin-bottom: 12px; }
  .change img { width: 100%; border-radius: 4px; border: 1px solid #e2e8f0; }
  .change .caption { color: #4a5568; font-size: 13px; margin-top: 10px; line-height: 1.5; }
"""


class DocumentGenerationError(Exception):
    """Raised when the report cannot be produced."""
    pass


def _image_data_uri(path: Optional[str]) -> Optional[str]:
    if not path:
        return None
    try:
        encoded = base64.b64encode(Path(path).read_bytes()).decode("ascii")
    except OSError as e:
        logger.warning(f"Could not read screenshot {path}: {e}")
        return None
    return f"data:image/png;base64,{encoded}"


def render_report_html(
    project_name: str,
    script: str,
    screenshots: List[Screenshot],
    on_date: Optional[date] = None,
) -> str:
    """
    Compose the report as a standalone HTML page.

    Screenshots are embedded as base64 data URIs, in their original order;
    a change whose screenshot failed keeps its title and caption.
    """
    on_date = on_date or date.today()
    sections = []
    for position, shot in enumerate(screenshots, start=1):
        image = _image_data_uri(shot.path)
        parts = [f'<div class="change"><h3>{position}. {html.escape(shot.title)}</h3>']
        if image:
            parts.append(f'<img src="{image}" alt="{html.escape(shot.title, quote=True)}" />')
        if shot.description:
            parts.append(f'<p class="caption">{html.escape(shot.description)}</p>')
        parts.append("</div>")
        sections.append("".join(parts))

    return f"""<!DOCTYPE html>
<html lang="en">
<head>
<meta charset="UTF-8">
<title>{html.escape(project_name)} - {REPORT_TITLE}</title>
<style>{_STYLE}</style>
</head>
<body>
<div class="header">
  <h1>{REPORT_TITLE}</h1>
  <div class="project-name">{html.escape(project_name)}</div>
  <div class="date">{on_date.strftime('%A, %B %d, %Y')}</div>
</div>
<div class="content">
  <div class="summary">
    <h2>Executive Summary</h2>
    <p>{html.escape(script)}</p>
  </div>
  <div class="changes">
    <h2>Changes</h2>
    {"".join(sections)}
  </div>
</div>
</body>
</html>"""


class DocumentGenerator:
    """Produces screenshots and the PDF report for a run."""

    def __init__(
        self,
        browser_pool: Optional[BrowserPool] = None,
        settings=None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        if settings is None:
            from prcast.config import settings as app_settings
            settings = app_settings
        self.settings = settings
        self.browser_pool = browser_pool or get_browser_pool()
        self._sleep = sleep

    async def capture_screenshots(
        self,
        live_url: Optional[str],
        changes: List[VisualChange],
        output_dir: Path,
    ) -> List[Screenshot]:
        """
        Take one viewport screenshot per change as ``change_<n>.png``.

        Every change is navigated to independently. A change that cannot be
        captured yields a Screenshot with ``path=None``.
        """
        shots = [
            Screenshot(index=i, title=change.title, description=change.description)
            for i, change in enumerate(changes)
        ]
        if not live_url or not changes:
            return shots

        output_dir.mkdir(parents=True, exist_ok=True)
        errors: List[str] = []

        async with self.browser_pool.page() as page:
            for shot, change in zip(shots, changes):
                target = output_dir / f"change_{shot.index + 1}.png"
                try:
                    await page.goto(
                        resolve_page_url(live_url, change.page_url),
                        wait_until="networkidle",
                        timeout=self.settings.navigation_timeout_ms,
                    )
                    await self._sleep(PAGE_SETTLE_SECONDS)
                    await focus_selector(page, change.selector, SELECTOR_SETTLE_SECONDS, self._sleep)
                    await page.screenshot(path=str(target), full_page=False)
                    shot.path = str(target)
                except PlaywrightError as e:
                    errors.append(f"{change.title}: {e}")

        ErrorRecoveryManager.handle_partial_failure(
            "screenshot capture",
            total_items=len(shots),
            successful_items=sum(1 for s in shots if s.path),
            errors=errors,
            context={},
        )
        return shots

    async def render_pdf(self, report_html: str, output_path: Path) -> Path:
        """Render HTML to an A4 PDF with Chromium."""
        async with self.browser_pool.page() as page:
            await page.set_content(report_html, wait_until="load")
            await page.pdf(
                path=str(output_path),
                format="A4",
                print_background=True,
                margin={"top": "12mm", "bottom": "12mm", "left": "10mm", "right": "10mm"},
            )
        return output_path

    async def generate(
        self,
        report_key: str,
        project_name: str,
        script: str,
        changes: List[VisualChange],
        live_url: Optional[str],
        workspace: RunWorkspace,
        artifact_store: ArtifactStore,
    ) -> DocumentResult:
        """
        Capture screenshots, render the report and store both.

        Returns:
            DocumentResult with the stored document's URL

        Raises:
            DocumentGenerationError: If the report cannot be rendered or stored
        """
        try:
            screenshots = await self.capture_screenshots(live_url, changes, workspace.screenshots_dir)

            for shot in screenshots:
                if shot.path:
                    await artifact_store.put_screenshot(report_key, shot.path)

            report_html = render_report_html(project_name, script, screenshots)
            await self.render_pdf(report_html, workspace.document_path)
            document_url = await artifact_store.put_document(report_key, workspace.document_path)
        except Exception as e:
            raise DocumentGenerationError(f"Document generation failed: {e}") from e

        logger.info(f"Report generated for {report_key}")
        return DocumentResult(
            document_path=str(workspace.document_path),
            document_url=document_url,
            title=f"{project_name} - {REPORT_TITLE}",
        )
