from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, computed_field
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, extra="allow", coerce_numbers_to_str=True,
    )


class Attendee(CamelModel):
    """A participant and the organisation they represent."""
    name: str = ""
    company: str = ""
    role: str = ""


class Material(CamelModel):
    material_name: str = ""
    description: str = ""
    mentioned_by: str = ""
    timestamp: str = ""


class TimeRange(CamelModel):
    """Start and end of a discussion, as MM:SS strings."""
    start_time: str = ""
    end_time: str = ""


class KeyArgument(CamelModel):
    speaker: str = ""
    company: str = ""
    timestamp: str = ""
    argument: str = ""
    reasoning: str = ""
    reaction_from_others: str = ""


class DiscussionFlow(CamelModel):
    background_context: str = ""
    key_arguments: List[KeyArgument] = []
    logical_progression: str = ""
    decision_process: str = ""


class DiscussionTopic(CamelModel):
    """One discussion thread with its argument chain and outcome."""
    topic_title: str = ""
    time_range: TimeRange = Field(default_factory=TimeRange)
    discussion_flow: DiscussionFlow = Field(default_factory=DiscussionFlow)
    outcome: str = ""


class Decision(CamelModel):
    decision: str = ""
    decided_by: str = ""
    reason: str = ""
    implementation_date: str = ""
    related_topic: str = ""


class NextAction(CamelModel):
    """A follow-up task; due dates use YYYY/MM/DD."""
    action: str = ""
    assignee: str = ""
    due_date: str = ""
    priority: str = ""
    related_decision: str = ""


class AudioQuality(CamelModel):
    clarity: str = ""
    issues: List[str] = []
    transcription_confidence: str = ""


class StructuredSummary(CamelModel):
    """Fixed-shape meeting summary produced by the model."""
    meeting_purpose: str = ""
    client_name: str = ""
    attendees_and_companies: List[Attendee] = []
    materials: List[Material] = []
    discussions_by_topic: List[DiscussionTopic] = []
    decisions: List[Decision] = []
    next_actions_with_due_date: List[NextAction] = []
    audio_quality: AudioQuality = Field(default_factory=AudioQuality)


class CompressionInfo(CamelModel):
    applied: bool = False
    original_size_bytes: int = 0
    size_bytes: int = 0


class ProcessingResult(CamelModel):
    """Assembled output handed to the document store and notifier.

    The legacy fields (summary, participants, actionItems, decisions) are
    computed from structured_summary and are never stored separately.
    """
    model_config = ConfigDict(extra="ignore")

    transcription: str
    structured_summary: StructuredSummary
    model: str
    timestamp: datetime
    processing_time: int = Field(description="Wall-clock processing time in milliseconds")
    quality_score: int
    parse_strategy: str = ""
    degraded: bool = False
    attempts_used: int = 0
    chunked: bool = False
    compression: CompressionInfo = Field(default_factory=CompressionInfo)
    quality_issues: List[str] = []
    warnings: List[str] = []

    @computed_field(alias="summary")
    @property
    def summary(self) -> str:
        return self.structured_summary.meeting_purpose

    @computed_field(alias="participants")
    @property
    def participants(self) -> List[Attendee]:
        return self.structured_summary.attendees_and_companies

    @computed_field(alias="actionItems")
    @property
    def action_items(self) -> List[NextAction]:
        return self.structured_summary.next_actions_with_due_date

    @computed_field(alias="decisions")
    @property
    def decisions(self) -> List[Decision]:
        return self.structured_summary.decisions

    def to_document(self) -> Dict[str, Any]:
        """Serialize with camelCase keys, the shape stored and sent downstream."""
        return self.model_dump(mode="json", by_alias=True)


class HealthResponse(BaseModel):
    status: str = "ok"
    model: Optional[str] = None
    config: Dict[str, Any] = {}
