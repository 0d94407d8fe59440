"""
Pipeline Orchestrator.

LangGraph state graph that turns one stored webhook event into a narrated
video, a PDF report and a progress estimate:

    analyzing -> narrating -> recording -> muxing -> documenting -> scoring -> finalize
         \\___________\\____________\\___________\\--> handle_failure

A failure in analyzing, narrating, recording or muxing ends the run.
Documenting and scoring are best-effort: their failures are logged and the
run completes without a document or a new progress value.
"""

import asyncio
import time
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, List, Optional, TypedDict

from langgraph.graph import StateGraph, END

from prcast.models.analysis import ContentAnalysis
from prcast.models.pipeline import (
    FATAL_STAGES,
    MuxResult,
    NarrationResult,
    PipelineJob,
    PipelineStage,
    RecordingResult,
    RunSnapshot,
)
from prcast.models.project import Project
from prcast.models.update import UpdateStatus
from prcast.models.webhook_event import ProcessingStatus, WebhookEvent
from prcast.services.artifact_store import (
    ArtifactStore,
    RunWorkspace,
    generate_report_key,
    get_artifact_store,
)
from prcast.services.content_analyzer import ContentAnalyzer
from prcast.services.document_generator import DocumentGenerator
from prcast.services.muxer import Muxer
from prcast.services.narration import NarrationSynthesizer
from prcast.services.progress_estimator import ProgressEstimator
from prcast.services.redis_client import RedisClient, get_redis_client
from prcast.services.screen_recorder import ScreenRecorder
from prcast.services.store import EventStore, get_event_store
from prcast.utils.logging import get_logger, log_error_with_context, log_stage_transition
from prcast.utils.metrics import RunMetrics, emit_metric
from prcast.utils.resilience import ErrorRecoveryManager

logger = get_logger(__name__)


class PipelineState(TypedDict):
    """State schema for one pipeline run."""
    report_key: str
    event: WebhookEvent
    project: Project
    update_id: str
    workspace: Optional[RunWorkspace]
    metrics: RunMetrics
    snapshot: RunSnapshot
    analysis: Optional[ContentAnalysis]
    narration: Optional[NarrationResult]
    recording: Optional[RecordingResult]
    mux: Optional[MuxResult]
    video_url: Optional[str]
    doc_url: Optional[str]
    progress: Optional[int]
    degraded_stages: List[str]
    error: Optional[str]


class PipelineOrchestrator:
    """Runs the update-generation pipeline for stored webhook events."""

    def __init__(
        self,
        store: Optional[EventStore] = None,
        redis_client: Optional[RedisClient] = None,
        artifact_store: Optional[ArtifactStore] = None,
        analyzer: Optional[ContentAnalyzer] = None,
        narrator: Optional[NarrationSynthesizer] = None,
        recorder: Optional[ScreenRecorder] = None,
        muxer: Optional[Muxer] = None,
        document_generator: Optional[DocumentGenerator] = None,
        progress_estimator: Optional[ProgressEstimator] = None,
        settings=None,
    ):
        if settings is None:
            from prcast.config import settings as app_settings
            settings = app_settings
        self.settings = settings

        self.store = store or get_event_store()
        self.redis_client = redis_client or get_redis_client()
        self.artifact_store = artifact_store or get_artifact_store()
        self.analyzer = analyzer or ContentAnalyzer(settings=settings)
        self.narrator = narrator or NarrationSynthesizer(settings=settings)
        self.recorder = recorder or ScreenRecorder(settings=settings)
        self.muxer = muxer or Muxer()
        self.document_generator = document_generator or DocumentGenerator(settings=settings)
        self.progress_estimator = progress_estimator or ProgressEstimator(self.store, settings=settings)

        self.stage_timeouts: Dict[PipelineStage, float] = {
            PipelineStage.ANALYZING: settings.analyze_timeout_seconds,
            PipelineStage.NARRATING: settings.narrate_timeout_seconds,
            PipelineStage.RECORDING: settings.record_timeout_seconds,
            PipelineStage.MUXING: settings.mux_timeout_seconds,
            PipelineStage.DOCUMENTING: settings.document_timeout_seconds,
            PipelineStage.SCORING: settings.progress_timeout_seconds,
        }

        self.graph = self._build_state_graph()

    def _build_state_graph(self):
        """
        Build the LangGraph state graph for the pipeline.

        Returns:
            Compiled graph
        """
        workflow = StateGraph(PipelineState)

        workflow.add_node("analyzing", self._analyzing_node)
        workflow.add_node("narrating", self._narrating_node)
        workflow.add_node("recording", self._recording_node)
        workflow.add_node("muxing", self._muxing_node)
        workflow.add_node("documenting", self._documenting_node)
        workflow.add_node("scoring", self._scoring_node)
        workflow.add_node("finalize", self._finalize_node)
        workflow.add_node("handle_failure", self._handle_failure_node)

        workflow.set_entry_point("analyzing")
        for stage, next_stage in (
            ("analyzing", "narrating"),
            ("narrating", "recording"),
            ("recording", "muxing"),
            ("muxing", "documenting"),
        ):
            workflow.add_conditional_edges(
                stage,
                self._route_after_fatal_stage,
                {"continue": next_stage, "failed": "handle_failure"},
            )
        workflow.add_edge("documenting", "scoring")
        workflow.add_edge("scoring", "finalize")
        workflow.add_edge("finalize", END)
        workflow.add_edge("handle_failure", END)

        return workflow.compile()

    @staticmethod
    def _route_after_fatal_stage(state: PipelineState) -> str:
        return "failed" if state.get("error") else "continue"

    # ========== Entry points ==========

    async def process_job(self, job: PipelineJob) -> Optional[RunSnapshot]:
        """
        Run the pipeline for a queued job, at most once at a time per event.

        Returns:
            Final run snapshot, or None if the job was skipped
        """
        event_id = job.webhook_event_id
        claimed = await self.redis_client.claim_event(event_id, ttl_seconds=self.settings.pipeline_timeout_seconds)
        if not claimed:
            logger.info(f"Skipping event {event_id}: another worker owns it", extra={"webhook_event_id": event_id})
            return None

        try:
            return await self.run(event_id, force=job.force)
        finally:
            await self.redis_client.release_event(event_id)

    async def run(self, webhook_event_id: str, force: bool = False) -> Optional[RunSnapshot]:
        """
        Run the pipeline for one webhook event.

        Args:
            webhook_event_id: Stored event to process
            force: Re-run an event that already completed

        Returns:
            Final run snapshot, or None if the event was missing or skipped
        """
        event = await self.store.get_webhook_event(webhook_event_id)
        if event is None:
            logger.error(f"Webhook event {webhook_event_id} not found", extra={"webhook_event_id": webhook_event_id})
            return None

        if event.processing_status == ProcessingStatus.COMPLETED and not force:
            logger.info(
                f"Event {webhook_event_id} already completed; skipping",
                extra={"webhook_event_id": webhook_event_id},
            )
            return None

        project = await self.store.get_project(event.project_id)
        if project is None:
            await self._mark_event_failed(event.id, f"Project {event.project_id} not found")
            return None

        try:
            await self.store.update_webhook_event_status(event.id, ProcessingStatus.PROCESSING)
            title = event.pr_title or f"PR #{event.pr_number}"
            update = await self.store.create_update(project.id, event.id, title)
        except Exception as e:
            log_error_with_context(logger, f"Failed to open a run for event {event.id}", e, webhook_event_id=event.id)
            await self._mark_event_failed(event.id, f"Failed to open run: {e}")
            return None

        report_key = generate_report_key(project.name, event.pr_number, update.id, event.event_type)

        run_logger = logger.with_context(report_key=report_key, webhook_event_id=event.id, project_id=project.id)
        run_logger.info(f"Starting pipeline run {report_key}")

        metrics = RunMetrics(report_key, event.id, project.id)
        metrics.start()

        state: PipelineState = {
            "report_key": report_key,
            "event": event,
            "project": project,
            "update_id": update.id,
            "workspace": None,
            "metrics": metrics,
            "snapshot": RunSnapshot(
                report_key=report_key,
                webhook_event_id=event.id,
                project_id=project.id,
                update_id=update.id,
                started_at=datetime.now(timezone.utc),
            ),
            "analysis": None,
            "narration": None,
            "recording": None,
            "mux": None,
            "video_url": None,
            "doc_url": None,
            "progress": None,
            "degraded_stages": [],
            "error": None,
        }
        await self._persist_snapshot(state)

        workspace = None
        try:
            workspace = RunWorkspace(self.settings.scratch_root, report_key).create()
            state["workspace"] = workspace
            state = await asyncio.wait_for(
                self.graph.ainvoke(state),
                timeout=self.settings.pipeline_timeout_seconds,
            )
        except asyncio.TimeoutError:
            state["error"] = f"Pipeline timed out after {self.settings.pipeline_timeout_seconds}s"
            state = await self._handle_failure_node(state)
        except Exception as e:
            log_error_with_context(run_logger, f"Pipeline run {report_key} crashed", e)
            state["error"] = f"Unexpected error: {e}"
            state = await self._handle_failure_node(state)
        finally:
            if workspace is not None:
                await workspace.cleanup()

        return state["snapshot"]

    # ========== Stage execution ==========

    async def _run_stage(
        self,
        state: PipelineState,
        stage: PipelineStage,
        operation: Callable[[], Awaitable[Any]],
    ) -> Any:
        """
        Run one stage under its timeout.

        A fatal stage's failure is recorded in ``state["error"]``; a degraded
        stage's failure is logged and yields None.
        """
        report_key = state["report_key"]
        snapshot = state["snapshot"]
        snapshot.stage = stage
        snapshot.stage_history.append(stage.value)
        await self._persist_snapshot(state)

        log_stage_transition(logger, report_key, stage.value, "started")
        started = time.time()
        try:
            result = await asyncio.wait_for(operation(), timeout=self.stage_timeouts[stage])
        except Exception as e:
            duration_ms = (time.time() - started) * 1000
            state["metrics"].record_stage(stage.value, duration_ms)
            snapshot.stage_durations[stage.value] = round(duration_ms, 2)
            reason = (
                f"timed out after {self.stage_timeouts[stage]}s"
                if isinstance(e, asyncio.TimeoutError) else str(e)
            )

            if stage in FATAL_STAGES:
                log_stage_transition(logger, report_key, stage.value, "failed", duration_ms)
                log_error_with_context(logger, f"Stage {stage.value} failed: {reason}", e, stage=stage.value)
                state["error"] = f"{stage.value} failed: {reason}"
            else:
                log_stage_transition(logger, report_key, stage.value, "degraded", duration_ms)
                logger.warning(f"Stage {stage.value} degraded: {reason}", extra={"report_key": report_key})
                state["degraded_stages"].append(stage.value)
                snapshot.degraded_stages.append(stage.value)
                state["metrics"].record_degraded(stage.value)
            return None

        duration_ms = (time.time() - started) * 1000
        state["metrics"].record_stage(stage.value, duration_ms)
        snapshot.stage_durations[stage.value] = round(duration_ms, 2)
        log_stage_transition(logger, report_key, stage.value, "completed", duration_ms)
        return result

    async def _analyzing_node(self, state: PipelineState) -> PipelineState:
        event = state["event"]
        state["analysis"] = await self._run_stage(
            state,
            PipelineStage.ANALYZING,
            lambda: self.analyzer.analyze(event.raw_payload, state["project"].live_url, state["metrics"]),
        )
        return state

    async def _narrating_node(self, state: PipelineState) -> PipelineState:
        state["narration"] = await self._run_stage(
            state,
            PipelineStage.NARRATING,
            lambda: self.narrator.synthesize(
                state["analysis"].script, state["workspace"].audio_path, state["metrics"]
            ),
        )
        return state

    async def _recording_node(self, state: PipelineState) -> PipelineState:
        workspace = state["workspace"]
        recording = await self._run_stage(
            state,
            PipelineStage.RECORDING,
            lambda: self.recorder.record(
                state["project"].live_url,
                state["analysis"].changes,
                workspace.frames_dir,
                workspace.raw_video_path,
            ),
        )
        if recording is not None:
            state["metrics"].record_recording(recording.frame_count)
        state["recording"] = recording
        return state

    async def _muxing_node(self, state: PipelineState) -> PipelineState:
        report_key = state["report_key"]
        workspace = state["workspace"]

        async def _mux_and_store():
            result = await self.muxer.mux(
                state["recording"].video_path,
                state["narration"].audio_path,
                workspace.final_video_path,
            )
            state["video_url"] = await self.artifact_store.put_video(report_key, result.final_video_path)
            try:
                await self.artifact_store.put_audio(report_key, state["narration"].audio_path)
            except Exception as e:
                logger.warning(f"Could not store narration audio for {report_key}: {e}")
            return result

        mux = await self._run_stage(state, PipelineStage.MUXING, _mux_and_store)
        if mux is not None:
            state["metrics"].record_mux(mux.video_duration, mux.audio_duration, mux.strategy.value, mux.speed_factor)
            state["snapshot"].video_url = state["video_url"]
        state["mux"] = mux
        return state

    async def _documenting_node(self, state: PipelineState) -> PipelineState:
        analysis = state["analysis"]
        project = state["project"]
        document = await self._run_stage(
            state,
            PipelineStage.DOCUMENTING,
            lambda: self.document_generator.generate(
                state["report_key"],
                project.name,
                analysis.script,
                analysis.changes,
                project.live_url,
                state["workspace"],
                self.artifact_store,
            ),
        )
        state["doc_url"] = document.document_url if document else None
        state["snapshot"].doc_url = state["doc_url"]
        return state

    async def _scoring_node(self, state: PipelineState) -> PipelineState:
        project = state["project"]
        state["progress"] = await self._run_stage(
            state,
            PipelineStage.SCORING,
            lambda: self.progress_estimator.estimate(
                project.id,
                project.project_scope,
                current_title=state["event"].pr_title or f"PR #{state['event'].pr_number}",
                current_summary=state["analysis"].script,
                metrics=state["metrics"],
            ),
        )
        state["snapshot"].progress = state["progress"]
        return state

    async def _finalize_node(self, state: PipelineState) -> PipelineState:
        """Record a successful run on its update row and event."""
        await self.store.finalize_update(
            state["update_id"],
            UpdateStatus.COMPLETED,
            summary=state["analysis"].script,
            video_url=state["video_url"],
            doc_url=state["doc_url"],
        )
        await self.store.update_webhook_event_status(state["event"].id, ProcessingStatus.COMPLETED)

        snapshot = state["snapshot"]
        snapshot.stage = PipelineStage.COMPLETED
        snapshot.finished_at = datetime.now(timezone.utc)
        await self._persist_snapshot(state)

        metrics = state["metrics"]
        metrics.complete(status="completed")
        if metrics.duration_ms is not None:
            emit_metric("pipeline.run.duration_ms", metrics.duration_ms, report_key=state["report_key"])

        logger.info(
            f"Pipeline run {state['report_key']} completed",
            extra={"report_key": state["report_key"], "degraded_stages": state["degraded_stages"]},
        )
        return state

    async def _handle_failure_node(self, state: PipelineState) -> PipelineState:
        """Record a failed run on its update row and event."""
        error = state.get("error") or "Unknown error"
        analysis = state.get("analysis")

        try:
            await self.store.finalize_update(
                state["update_id"],
                UpdateStatus.FAILED,
                summary=analysis.script if analysis else None,
                video_url=state.get("video_url"),
            )
            await self.store.update_webhook_event_status(state["event"].id, ProcessingStatus.FAILED, error)
        except Exception as e:
            log_error_with_context(
                logger, f"Failed to record failure of run {state['report_key']}", e,
                report_key=state["report_key"],
            )

        snapshot = state["snapshot"]
        snapshot.stage = PipelineStage.FAILED
        snapshot.error = error
        snapshot.finished_at = datetime.now(timezone.utc)
        await self._persist_snapshot(state)

        state["metrics"].complete(status="failed", error_message=error)
        logger.error(f"Pipeline run {state['report_key']} failed: {error}", extra={"report_key": state["report_key"]})
        return state

    async def _mark_event_failed(self, event_id: str, error: str) -> None:
        """Fail an event that never got an update row."""
        try:
            await self.store.update_webhook_event_status(event_id, ProcessingStatus.FAILED, error)
        except Exception as e:
            log_error_with_context(logger, f"Failed to mark event {event_id} failed", e, webhook_event_id=event_id)

    async def _persist_snapshot(self, state: PipelineState) -> None:
        await ErrorRecoveryManager.persist_snapshot_safely(
            self.redis_client,
            state["report_key"],
            state["snapshot"].model_dump(mode="json"),
        )
