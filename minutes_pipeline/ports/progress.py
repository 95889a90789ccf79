"""ProgressPort: abstract interface for reporting pipeline progress."""

from abc import ABC, abstractmethod
from typing import Optional

from minutes_pipeline.domain.models import ProcessingState


class ProgressPort(ABC):
    @abstractmethod
    def report(
        self,
        job_id: str,
        state: ProcessingState,
        progress: float = 0.0,
        detail: Optional[str] = None,
    ) -> None:
        """Report a state transition for one processing unit."""
