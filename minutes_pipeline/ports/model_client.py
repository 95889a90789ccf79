"""ModelClientPort: abstract interface for generative audio/text models."""

from abc import ABC, abstractmethod

from minutes_pipeline.domain.models import ModelRequest, RawModelResponse


class ModelClientPort(ABC):
    @abstractmethod
    async def generate(self, request: ModelRequest) -> RawModelResponse:
        """Run one model call. Raises the underlying client error on failure."""

    @abstractmethod
    def model_name(self) -> str:
        """Return the resolved model name for result metadata."""
