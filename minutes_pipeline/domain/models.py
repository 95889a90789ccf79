"""Framework-agnostic domain models for the minutes pipeline.

Processing stages pass these dataclasses between each other. The pydantic
models in models.py stay at the output boundary, with mappers in between.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional


class ProcessingState(str, Enum):
    PREPARING = "PREPARING"
    DISPATCHING = "DISPATCHING"
    RETRY = "RETRY"
    RESPONDED = "RESPONDED"
    FAILED_TERMINAL = "FAILED_TERMINAL"
    PARSING = "PARSING"
    PARSED = "PARSED"
    PARSE_DEGRADED = "PARSE_DEGRADED"
    EVALUATING = "EVALUATING"
    REPROCESSING = "REPROCESSING"
    ACCEPTED = "ACCEPTED"
    DONE = "DONE"


@dataclass(frozen=True)
class MeetingInfo:
    """Metadata describing the recorded meeting."""
    topic: str = ""
    start_time: str = ""
    duration_minutes: Optional[float] = None
    host_name: str = ""


@dataclass(frozen=True)
class RecordingUnit:
    """One recording handed over by the recording source."""
    audio_bytes: bytes
    mime_type: Optional[str]
    meeting: MeetingInfo
    recording_id: str = ""


@dataclass(frozen=True)
class AudioPayload:
    """Prepared audio, ready to be sent whole or split into chunks."""
    data: bytes
    mime_type: str
    size_bytes: int
    detected_format: str
    original_size_bytes: int = 0
    compressed: bool = False
    requires_split: bool = False
    estimated_duration_seconds: float = 0.0


@dataclass(frozen=True)
class ChunkPlan:
    chunk_duration_seconds: float
    chunk_size_bytes: int
    estimated_total_duration_seconds: float
    total_chunks: int
    bytes_per_second: float


@dataclass
class AudioChunk:
    """A time-bounded slice of an audio payload."""
    data: bytes
    start_time: float
    end_time: float
    index: int
    is_first: bool = False
    is_last: bool = False
    quality_score: float = 1.0
    quality_issues: list[str] = field(default_factory=list)
    corrupted: bool = False

    @property
    def duration(self) -> float:
        return self.end_time - self.start_time


@dataclass(frozen=True)
class GenerationConfig:
    max_output_tokens: int = 65536
    temperature: float = 0.7
    top_p: float = 0.95
    top_k: int = 40


@dataclass(frozen=True)
class InlineAudio:
    data: bytes
    mime_type: str


@dataclass(frozen=True)
class ModelRequest:
    prompt_parts: tuple[str, ...]
    inline_audio: Optional[InlineAudio] = None
    generation_config: GenerationConfig = GenerationConfig()


@dataclass(frozen=True)
class RawModelResponse:
    """Unparsed model output plus dispatch bookkeeping."""
    text: str
    attempts: int = 1
    waited_seconds: float = 0.0


@dataclass
class ParsedResult:
    """Transcript and structured summary recovered from a model response.

    ``summary`` is the raw JSON object tree; it is normalized into the
    StructuredSummary DTO only at assembly time.
    """
    transcription: str
    summary: dict[str, Any] = field(default_factory=dict)
    strategy: str = ""
    degraded: bool = False

    def as_tree(self) -> dict[str, Any]:
        return {"transcription": self.transcription, "summary": self.summary}


class IssueType(str, Enum):
    JSON_MIXED_CONTENT = "JSON_MIXED_CONTENT"
    EMPTY_CONTENT = "EMPTY_CONTENT"
    INSUFFICIENT_CONTENT = "INSUFFICIENT_CONTENT"


class Severity(str, Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"


@dataclass(frozen=True)
class Issue:
    type: IssueType
    field_path: str
    severity: Severity
    description: str = ""


@dataclass
class QualityReport:
    overall_score: int
    issues: list[Issue] = field(default_factory=list)
    json_mixed_detected: bool = False
    needs_reprocessing: bool = False


@dataclass
class ReprocessResult:
    success: bool
    original_score: int
    improved_score: int
    repaired_result: ParsedResult
    final_report: QualityReport
    improvements_made: list[str] = field(default_factory=list)


@dataclass
class UnitOutcome:
    """Result of processing one recording inside a batch."""
    recording_id: str
    succeeded: bool
    error: Optional[str] = None
