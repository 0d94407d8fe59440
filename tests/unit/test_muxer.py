"""
Unit tests for duration reconciliation and muxing.
"""

import pytest
from unittest.mock import AsyncMock

from prcast.models.pipeline import MuxPlan, MuxStrategy
from prcast.services.ffmpeg import FFmpegError
from prcast.services.muxer import MuxError, Muxer, build_mux_command, plan_reconciliation


class TestPlanReconciliation:
    """Test the trim / stretch / passthrough decision."""

    def test_audio_longer_stretches_video(self):
        plan = plan_reconciliation(10.0, 15.0)

        assert plan.strategy == MuxStrategy.STRETCH
        assert plan.speed_factor == pytest.approx(0.667, abs=1e-3)
        assert plan.trim_to_seconds == 15.0

    def test_video_longer_trims_to_audio(self):
        plan = plan_reconciliation(15.0, 10.0)

        assert plan.strategy == MuxStrategy.TRIM
        assert plan.trim_to_seconds == 10.0
        assert plan.speed_factor is None

    def test_equal_durations_pass_through(self):
        plan = plan_reconciliation(12.0, 12.0)

        assert plan.strategy == MuxStrategy.PASSTHROUGH
        assert plan.trim_to_seconds is None

    def test_within_tolerance_passes_through(self):
        assert plan_reconciliation(12.03, 12.0).strategy == MuxStrategy.PASSTHROUGH
        assert plan_reconciliation(12.0, 12.04).strategy == MuxStrategy.PASSTHROUGH

    def test_just_outside_tolerance(self):
        assert plan_reconciliation(12.1, 12.0).strategy == MuxStrategy.TRIM
        assert plan_reconciliation(12.0, 12.1).strategy == MuxStrategy.STRETCH

    @pytest.mark.parametrize("video,audio", [(0, 10), (10, 0), (-1, 5)])
    def test_non_positive_durations(self, video, audio):
        with pytest.raises(ValueError):
            plan_reconciliation(video, audio)


class TestBuildMuxCommand:
    """Test ffmpeg argument construction."""

    def test_stretch_command(self):
        plan = MuxPlan(strategy=MuxStrategy.STRETCH, speed_factor=10 / 15, trim_to_seconds=15.0)

        args = build_mux_command("raw.mp4", "voice.mp3", "final.mp4", plan)

        assert args[:4] == ["-i", "raw.mp4", "-i", "voice.mp3"]
        assert args[args.index("-filter:v") + 1] == "setpts=PTS/0.666667"
        assert args[args.index("-t") + 1] == "15.000"
        assert args[-1] == "final.mp4"

    def test_trim_command(self):
        plan = MuxPlan(strategy=MuxStrategy.TRIM, trim_to_seconds=10.0)

        args = build_mux_command("raw.mp4", "voice.mp3", "final.mp4", plan)

        assert "-filter:v" not in args
        assert args[args.index("-t") + 1] == "10.000"
        assert "-shortest" not in args

    def test_passthrough_command(self):
        args = build_mux_command("raw.mp4", "voice.mp3", "final.mp4", MuxPlan(strategy=MuxStrategy.PASSTHROUGH))

        assert "-filter:v" not in args
        assert "-t" not in args
        assert args[args.index("-c:a") + 1] == "aac"
        assert args[-2:] == ["-shortest", "final.mp4"]


class TestMuxer:
    """Test the muxer with a mocked ffmpeg runner."""

    @pytest.mark.asyncio
    async def test_mux_trims_long_recording(self):
        runner = AsyncMock()
        runner.probe_duration.side_effect = [15.0, 10.0, 10.0]
        muxer = Muxer(runner=runner, tolerance=0.05)

        result = await muxer.mux("raw.mp4", "voice.mp3", "final.mp4")

        assert result.strategy == MuxStrategy.TRIM
        assert result.video_duration == 15.0
        assert result.audio_duration == 10.0
        assert result.output_duration == 10.0
        args = runner.run_ffmpeg.call_args.args[0]
        assert args[args.index("-t") + 1] == "10.000"

    @pytest.mark.asyncio
    async def test_mux_stretches_short_recording(self):
        runner = AsyncMock()
        runner.probe_duration.side_effect = [10.0, 15.0, 15.0]
        muxer = Muxer(runner=runner, tolerance=0.05)

        result = await muxer.mux("raw.mp4", "voice.mp3", "final.mp4")

        assert result.strategy == MuxStrategy.STRETCH
        assert result.speed_factor == pytest.approx(0.667, abs=1e-3)
        assert result.output_duration == 15.0

    @pytest.mark.asyncio
    async def test_mux_encode_failure(self):
        runner = AsyncMock()
        runner.probe_duration.side_effect = [12.0, 12.0]
        runner.run_ffmpeg.side_effect = FFmpegError("ffmpeg mux failed: invalid data")
        muxer = Muxer(runner=runner, tolerance=0.05)

        with pytest.raises(MuxError):
            await muxer.mux("raw.mp4", "voice.mp3", "final.mp4")

    @pytest.mark.asyncio
    async def test_mux_probe_failure(self):
        runner = AsyncMock()
        runner.probe_duration.side_effect = FFmpegError("ffprobe failed")
        muxer = Muxer(runner=runner, tolerance=0.05)

        with pytest.raises(MuxError):
            await muxer.mux("raw.mp4", "voice.mp3", "final.mp4")
        runner.run_ffmpeg.assert_not_called()
