"""
Utility modules for prcast.
"""

from prcast.utils.logging import (
    get_logger,
    setup_logging,
    log_webhook_event,
    log_stage_transition,
    log_api_call,
    log_error_with_context,
)
from prcast.utils.metrics import (
    RunMetrics,
    track_api_call,
    emit_metric,
)

__all__ = [
    "get_logger",
    "setup_logging",
    "log_webhook_event",
    "log_stage_transition",
    "log_api_call",
    "log_error_with_context",
    "RunMetrics",
    "track_api_call",
    "emit_metric",
]
