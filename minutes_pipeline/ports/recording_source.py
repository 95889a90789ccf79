"""RecordingSourcePort: abstract interface for where recordings come from."""

from abc import ABC, abstractmethod

from minutes_pipeline.domain.models import RecordingUnit


class RecordingSourcePort(ABC):
    @abstractmethod
    def list_pending(self) -> list[str]:
        """Return ids of recordings that have not been processed yet."""

    @abstractmethod
    def fetch(self, recording_id: str) -> RecordingUnit:
        """Load the audio and meeting metadata for one recording."""

    @abstractmethod
    def mark_done(self, recording_id: str) -> None:
        """Record that a recording was processed so it is not listed again."""
