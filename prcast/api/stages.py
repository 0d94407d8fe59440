"""
Internal stage endpoints.

Each pipeline stage can be invoked on its own with a strict JSON contract.
Intermediate files live in the run's scratch workspace under the report key,
so ``synthesize`` and ``record`` must precede ``mux`` for the same key, and
``DELETE /internal/stages/{reportKey}`` removes the workspace when done.
Failures return ``{"error": "..."}`` with status 500.
"""

import logging
from pathlib import Path

from fastapi import APIRouter, Depends, Path as PathParam
from fastapi.responses import JSONResponse

from prcast.api.auth import verify_api_key
from prcast.config import settings
from prcast.models.stages import (
    AnalyzeRequest,
    DocumentRequest,
    MuxRequest,
    RecordRequest,
    ScreenshotsRequest,
    SynthesizeRequest,
)
from prcast.services.artifact_store import RunWorkspace, get_artifact_store
from prcast.services.content_analyzer import ContentAnalyzer
from prcast.services.document_generator import DocumentGenerator, render_report_html
from prcast.services.muxer import Muxer
from prcast.services.narration import NarrationSynthesizer
from prcast.services.screen_recorder import ScreenRecorder

logger = logging.getLogger(__name__)

REPORT_KEY_PATTERN = r"^[A-Za-z0-9_-]+$"

router = APIRouter(
    prefix="/internal/stages",
    tags=["stages"],
    dependencies=[Depends(verify_api_key)],
)

analyzer = ContentAnalyzer()
narrator = NarrationSynthesizer()
recorder = ScreenRecorder()
muxer = Muxer()
document_generator = DocumentGenerator()


def _workspace(report_key: str) -> RunWorkspace:
    return RunWorkspace(settings.scratch_root, report_key).create()


def _stage_error(stage: str, error: Exception) -> JSONResponse:
    logger.error(f"Stage {stage} failed: {error}", exc_info=True)
    return JSONResponse(status_code=500, content={"error": str(error)})


@router.post("/analyze")
async def analyze(request: AnalyzeRequest):
    """Change payload in, narration script and visual changes out."""
    try:
        analysis = await analyzer.analyze(request.webhookPayload, request.liveUrl)
    except Exception as e:
        return _stage_error("analyze", e)

    return {
        "summary": analysis.summary,
        "script": analysis.script,
        "changes": [change.model_dump() for change in analysis.changes],
        "fallbackUsed": analysis.fallback_used,
    }


@router.post("/synthesize")
async def synthesize(request: SynthesizeRequest):
    try:
        workspace = _workspace(request.reportKey)
        narration = await narrator.synthesize(request.script, workspace.audio_path)
    except Exception as e:
        return _stage_error("synthesize", e)

    return {"audioPath": narration.audio_path, "durationSeconds": narration.duration_seconds}


@router.post("/record")
async def record(request: RecordRequest):
    try:
        workspace = _workspace(request.reportKey)
        recording = await recorder.record(
            request.liveUrl, request.changes, workspace.frames_dir, workspace.raw_video_path
        )
    except Exception as e:
        return _stage_error("record", e)

    return {
        "videoPath": recording.video_path,
        "frameCount": recording.frame_count,
        "fps": recording.fps,
        "requestedSeconds": recording.requested_seconds,
    }


@router.post("/mux")
async def mux(request: MuxRequest):
    """Reconcile the recorded video with the narration and store the result."""
    try:
        workspace = _workspace(request.reportKey)
        result = await muxer.mux(workspace.raw_video_path, workspace.audio_path, workspace.final_video_path)
        video_url = await get_artifact_store().put_video(request.reportKey, result.final_video_path)
    except Exception as e:
        return _stage_error("mux", e)

    return {
        "videoUrl": video_url,
        "videoDuration": result.video_duration,
        "audioDuration": result.audio_duration,
        "strategy": result.strategy.value,
        "speedFactor": result.speed_factor,
    }


@router.post("/screenshots")
async def screenshots(request: ScreenshotsRequest):
    try:
        workspace = _workspace(request.reportKey)
        shots = await document_generator.capture_screenshots(
            request.liveUrl, request.changes, workspace.screenshots_dir
        )
    except Exception as e:
        return _stage_error("screenshots", e)

    return {"screenshots": [shot.model_dump() for shot in shots]}


@router.post("/document")
async def document(request: DocumentRequest):
    """Render the report from previously captured screenshots and store it."""
    try:
        workspace = _workspace(request.reportKey)
        report_html = render_report_html(request.projectName, request.script, request.screenshots)
        pdf_path: Path = await document_generator.render_pdf(report_html, workspace.document_path)
        doc_url = await get_artifact_store().put_document(request.reportKey, pdf_path)
    except Exception as e:
        return _stage_error("document", e)

    return {"docUrl": doc_url}


@router.delete("/{report_key}")
async def delete_workspace(report_key: str = PathParam(..., pattern=REPORT_KEY_PATTERN)):
    """Remove a run's scratch workspace once its stages are finished."""
    workspace = RunWorkspace(settings.scratch_root, report_key)
    existed = workspace.root.exists()
    try:
        await workspace.cleanup()
    except Exception as e:
        return _stage_error("cleanup", e)

    return {"reportKey": report_key, "removed": existed}
