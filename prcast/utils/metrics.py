"""
Metrics collection for pipeline runs.

Tracks per-run timing, per-stage durations, media measurements (frame count,
narration and recording durations, mux strategy), degraded stages and
outbound API latency. Metrics are emitted as structured log records.
"""

import time
from datetime import datetime, timezone
from typing import Optional, Dict, Any, List
from contextlib import asynccontextmanager

from prcast.utils.logging import get_logger, log_api_call

logger = get_logger(__name__)


class RunMetrics:
    """
    Collects metrics during one pipeline run.

    Tracks:
    - Run start/end time and final status
    - Duration of every stage
    - Frame count, audio and video durations, mux strategy
    - Stages that degraded instead of failing the run
    - API call counts and latency
    """

    def __init__(self, report_key: str, webhook_event_id: str, project_id: str):
        """
        Initialize metrics collector.

        Args:
            report_key: Run identifier
            webhook_event_id: Event being processed
            project_id: Owning project
        """
        self.report_key = report_key
        self.webhook_event_id = webhook_event_id
        self.project_id = project_id

        self.start_time: Optional[datetime] = None
        self.end_time: Optional[datetime] = None
        self.duration_ms: Optional[int] = None

        self.stage_durations: Dict[str, float] = {}
        self.degraded_stages: List[str] = []

        self.frame_count: Optional[int] = None
        self.audio_duration: Optional[float] = None
        self.video_duration: Optional[float] = None
        self.mux_strategy: Optional[str] = None
        self.speed_factor: Optional[float] = None

        self.api_calls: Dict[str, int] = {}
        self.api_latencies: Dict[str, List[float]] = {}

        self.status: str = "running"
        self.error_message: Optional[str] = None

    def _context(self) -> Dict[str, Any]:
        return {
            "report_key": self.report_key,
            "webhook_event_id": self.webhook_event_id,
            "project_id": self.project_id,
        }

    def start(self) -> None:
        """Mark run start."""
        self.start_time = datetime.now(timezone.utc)
        self.status = "running"
        logger.info(f"Metrics collection started for run {self.report_key}", extra=self._context())

    def complete(self, status: str = "completed", error_message: Optional[str] = None) -> None:
        """
        Mark run completion.

        Args:
            status: Final status ('completed', 'failed', 'timeout')
            error_message: Error message if failed
        """
        self.end_time = datetime.now(timezone.utc)
        self.status = status
        self.error_message = error_message

        if self.start_time:
            duration = (self.end_time - self.start_time).total_seconds()
            self.duration_ms = int(duration * 1000)

        extra = self._context()
        extra.update({
            "status": self.status,
            "duration_ms": self.duration_ms,
            "frame_count": self.frame_count,
            "mux_strategy": self.mux_strategy,
            "degraded_stages": self.degraded_stages,
        })
        logger.info(f"Metrics collection completed for run {self.report_key}", extra=extra)

    def record_stage(self, stage: str, duration_ms: float) -> None:
        self.stage_durations[stage] = round(duration_ms, 2)

    def record_degraded(self, stage: str) -> None:
        if stage not in self.degraded_stages:
            self.degraded_stages.append(stage)

    def record_recording(self, frame_count: int) -> None:
        self.frame_count = frame_count

    def record_mux(
        self,
        video_duration: float,
        audio_duration: float,
        strategy: str,
        speed_factor: Optional[float],
    ) -> None:
        """Record both measured input durations and the chosen reconciliation."""
        self.video_duration = video_duration
        self.audio_duration = audio_duration
        self.mux_strategy = strategy
        self.speed_factor = speed_factor

    def record_api_call(self, service: str, duration_ms: float) -> None:
        """
        Record API call and latency.

        Args:
            service: Service name (e.g., 'github', 'openai')
            duration_ms: Call duration in milliseconds
        """
        self.api_calls[service] = self.api_calls.get(service, 0) + 1
        self.api_latencies.setdefault(service, []).append(duration_ms)

    def get_metrics_summary(self) -> Dict[str, Any]:
        """
        Get summary of collected metrics.

        Returns:
            Dictionary of metrics
        """
        summary: Dict[str, Any] = {
            "report_key": self.report_key,
            "webhook_event_id": self.webhook_event_id,
            "project_id": self.project_id,
            "status": self.status,
            "start_time": self.start_time.isoformat() if self.start_time else None,
            "end_time": self.end_time.isoformat() if self.end_time else None,
            "duration_ms": self.duration_ms,
            "stage_durations": self.stage_durations,
            "degraded_stages": self.degraded_stages,
            "frame_count": self.frame_count,
            "audio_duration": self.audio_duration,
            "video_duration": self.video_duration,
            "mux_strategy": self.mux_strategy,
            "speed_factor": self.speed_factor,
            "api_calls": self.api_calls,
        }

        if self.api_latencies:
            latency_stats = {}
            for service, latencies in self.api_latencies.items():
                if latencies:
                    latency_stats[service] = {
                        "count": len(latencies),
                        "min_ms": round(min(latencies), 2),
                        "max_ms": round(max(latencies), 2),
                        "avg_ms": round(sum(latencies) / len(latencies), 2),
                    }
            summary["api_latencies"] = latency_stats

        if self.error_message:
            summary["error_message"] = self.error_message

        return summary


@asynccontextmanager
async def track_api_call(
    metrics: Optional[RunMetrics],
    service: str,
    logger_adapter,
    endpoint: str = "",
    method: str = "",
):
    """
    Context manager to track API call timing.

    Usage:
        async with track_api_call(metrics, "openai", logger, endpoint="chat.completions"):
            response = await client.chat.completions.create(...)
    """
    start_time = time.time()
    error = None

    try:
        yield
    except Exception as e:
        error = e
        raise
    finally:
        duration_ms = (time.time() - start_time) * 1000

        if metrics:
            metrics.record_api_call(service, duration_ms)

        log_api_call(
            logger_adapter,
            service=service,
            endpoint=endpoint,
            method=method,
            duration_ms=duration_ms,
            error=str(error) if error else None
        )


def emit_metric(metric_name: str, value: float, **tags: Any) -> None:
    """
    Emit a metric as a structured log record.

    Args:
        metric_name: Metric name
        value: Metric value
        **tags: Metric tags/labels
    """
    logger.info(
        f"Metric: {metric_name}",
        extra={
            "metric_name": metric_name,
            "metric_value": value,
            "metric_tags": tags,
        }
    )
