"""DocumentStorePort: abstract interface for persisting processed minutes."""

from abc import ABC, abstractmethod

from minutes_pipeline.domain.models import RecordingUnit
from minutes_pipeline.models import ProcessingResult


class DocumentStorePort(ABC):
    @abstractmethod
    def save(self, unit: RecordingUnit, result: ProcessingResult) -> str:
        """Persist the result. Returns a location the notifier can reference."""
