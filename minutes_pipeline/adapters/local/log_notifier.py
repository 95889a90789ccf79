"""LogNotificationAdapter: posts meeting summaries and failures to the log."""

import logging
from typing import Optional

from minutes_pipeline.domain.models import RecordingUnit
from minutes_pipeline.errors import PipelineError, describe_error
from minutes_pipeline.models import ProcessingResult
from minutes_pipeline.ports.notification import NotificationPort

logger = logging.getLogger(__name__)


class LogNotificationAdapter(NotificationPort):
    def notify_success(
        self, unit: RecordingUnit, result: ProcessingResult, location: Optional[str] = None,
    ) -> None:
        summary = result.structured_summary
        lines = [
            f"Minutes ready: {unit.meeting.topic or unit.recording_id}",
            f"  client: {summary.client_name or '-'}",
            f"  purpose: {summary.meeting_purpose[:200]}",
            f"  decisions: {len(summary.decisions)}, actions: {len(summary.next_actions_with_due_date)}",
            f"  quality: {result.quality_score}/100{' (degraded)' if result.degraded else ''}",
        ]
        if location:
            lines.append(f"  saved to: {location}")
        for warning in result.warnings:
            lines.append(f"  warning: {warning}")
        logger.info("\n".join(lines))

    def notify_failure(self, recording_id: str, error: PipelineError) -> None:
        info = describe_error(error.kind)
        hints = "; ".join(info.troubleshooting)
        logger.error(
            f"Processing failed for {recording_id}: {info.message} [{error.kind.value}] "
            f"after {error.attempts} attempts: {error.message}. Try: {hints}"
        )
