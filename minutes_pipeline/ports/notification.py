"""NotificationPort: abstract interface for operator and team notifications."""

from abc import ABC, abstractmethod
from typing import Optional

from minutes_pipeline.domain.models import RecordingUnit
from minutes_pipeline.errors import PipelineError
from minutes_pipeline.models import ProcessingResult


class NotificationPort(ABC):
    @abstractmethod
    def notify_success(
        self, unit: RecordingUnit, result: ProcessingResult, location: Optional[str] = None,
    ) -> None:
        """Announce a processed meeting."""

    @abstractmethod
    def notify_failure(self, recording_id: str, error: PipelineError) -> None:
        """Alert operators that a recording could not be processed."""
