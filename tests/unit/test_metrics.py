"""
Unit tests for run metrics.
"""

import pytest
from unittest.mock import MagicMock

from prcast.utils.metrics import RunMetrics, emit_metric, track_api_call


@pytest.fixture
def metrics():
    return RunMetrics(report_key="acme_PR_12", webhook_event_id="evt-1", project_id="proj-1")


def test_initialization(metrics):
    assert metrics.status == "running"
    assert metrics.start_time is None
    assert metrics.stage_durations == {}
    assert metrics.degraded_stages == []


def test_start_and_complete(metrics):
    metrics.start()
    metrics.complete(status="failed", error_message="muxing failed: ffmpeg exited 1")

    assert metrics.end_time >= metrics.start_time
    assert metrics.duration_ms >= 0
    summary = metrics.get_metrics_summary()
    assert summary["status"] == "failed"
    assert summary["error_message"] == "muxing failed: ffmpeg exited 1"


def test_record_stage_and_media(metrics):
    metrics.record_stage("recording", 1520.456)
    metrics.record_recording(frame_count=180)
    metrics.record_mux(video_duration=15.0, audio_duration=10.0, strategy="trim", speed_factor=None)

    summary = metrics.get_metrics_summary()
    assert summary["stage_durations"] == {"recording": 1520.46}
    assert summary["frame_count"] == 180
    assert summary["mux_strategy"] == "trim"
    assert summary["audio_duration"] == 10.0


def test_record_degraded_is_deduplicated(metrics):
    metrics.record_degraded("documenting")
    metrics.record_degraded("documenting")
    metrics.record_degraded("scoring")

    assert metrics.degraded_stages == ["documenting", "scoring"]


def test_api_latency_summary(metrics):
    metrics.record_api_call("openai", 100.0)
    metrics.record_api_call("openai", 300.0)
    metrics.record_api_call("github", 50.0)

    summary = metrics.get_metrics_summary()
    assert summary["api_calls"] == {"openai": 2, "github": 1}
    assert summary["api_latencies"]["openai"] == {
        "count": 2, "min_ms": 100.0, "max_ms": 300.0, "avg_ms": 200.0,
    }


@pytest.mark.asyncio
async def test_track_api_call_records_success(metrics):
    logger = MagicMock()

    async with track_api_call(metrics, "github", logger, endpoint="/repos", method="GET"):
        pass

    assert metrics.api_calls == {"github": 1}
    logger.info.assert_called_once()


@pytest.mark.asyncio
async def test_track_api_call_records_failure(metrics):
    logger = MagicMock()

    with pytest.raises(RuntimeError):
        async with track_api_call(metrics, "openai", logger, endpoint="chat.completions", method="POST"):
            raise RuntimeError("rate limited")

    assert metrics.api_calls == {"openai": 1}
    assert logger.error.call_args.kwargs["extra"]["api_error"] == "rate limited"


@pytest.mark.asyncio
async def test_track_api_call_without_metrics():
    logger = MagicMock()

    async with track_api_call(None, "github", logger):
        pass

    logger.info.assert_called_once()


def test_emit_metric(caplog):
    caplog.set_level("INFO")

    emit_metric("pipeline_duration_ms", 4200, project_id="proj-1")

    record = caplog.records[-1]
    assert record.metric_name == "pipeline_duration_ms"
    assert record.metric_tags == {"project_id": "proj-1"}
