"""Domain <-> DTO mappers.

Model output is loosely shaped JSON. These functions coerce it into the
StructuredSummary DTO and assemble the ProcessingResult handed downstream.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Optional, Type

from pydantic import BaseModel, ValidationError

from minutes_pipeline.domain.models import AudioPayload, ParsedResult, QualityReport
from minutes_pipeline.models import (
    Attendee, AudioQuality, CompressionInfo, Decision, DiscussionTopic, Material,
    NextAction, ProcessingResult, StructuredSummary,
)

logger = logging.getLogger(__name__)

_LIST_FIELDS: dict[str, Type[BaseModel]] = {
    "attendeesAndCompanies": Attendee,
    "materials": Material,
    "discussionsByTopic": DiscussionTopic,
    "decisions": Decision,
    "nextActionsWithDueDate": NextAction,
}

# Key a bare string is assigned to when a list item is not an object.
_STRING_ITEM_KEYS = {
    "attendeesAndCompanies": "name",
    "materials": "materialName",
    "discussionsByTopic": "topicTitle",
    "decisions": "decision",
    "nextActionsWithDueDate": "action",
}


def _as_text(value: Any) -> str:
    if value is None:
        return ""
    return value if isinstance(value, str) else str(value)


def _without_nulls(value: Any) -> Any:
    if isinstance(value, dict):
        return {k: _without_nulls(v) for k, v in value.items() if v is not None}
    if isinstance(value, list):
        return [_without_nulls(v) for v in value if v is not None]
    return value


def _coerce_items(field: str, items: Any) -> list[BaseModel]:
    if not isinstance(items, list):
        return []
    model = _LIST_FIELDS[field]
    coerced = []
    for index, item in enumerate(items):
        if isinstance(item, str):
            item = {_STRING_ITEM_KEYS[field]: item}
        item = _without_nulls(item)
        try:
            coerced.append(model.model_validate(item))
        except ValidationError as e:
            logger.warning(f"Dropping invalid {field}[{index}]: {e.error_count()} validation errors")
    return coerced


def summary_to_dto(summary: dict[str, Any]) -> StructuredSummary:
    """Coerce a raw summary tree into the fixed StructuredSummary shape."""
    purpose = _as_text(summary.get("meetingPurpose")) or _as_text(summary.get("overview"))
    client = _as_text(summary.get("clientName")) or _as_text(summary.get("client"))
    attendees = summary.get("attendeesAndCompanies", summary.get("attendees"))

    quality_raw = summary.get("audioQuality")
    try:
        quality_data = _without_nulls(quality_raw) if isinstance(quality_raw, dict) else {}
        audio_quality = AudioQuality.model_validate(quality_data)
    except ValidationError:
        logger.warning("Dropping invalid audioQuality block")
        audio_quality = AudioQuality()

    return StructuredSummary(
        meeting_purpose=purpose,
        client_name=client,
        attendees_and_companies=_coerce_items("attendeesAndCompanies", attendees),
        materials=_coerce_items("materials", summary.get("materials")),
        discussions_by_topic=_coerce_items("discussionsByTopic", summary.get("discussionsByTopic")),
        decisions=_coerce_items("decisions", summary.get("decisions")),
        next_actions_with_due_date=_coerce_items(
            "nextActionsWithDueDate", summary.get("nextActionsWithDueDate")
        ),
        audio_quality=audio_quality,
    )


def assemble_result(
    parsed: ParsedResult,
    report: QualityReport,
    model: str,
    processing_time_ms: int,
    payload: Optional[AudioPayload] = None,
    attempts_used: int = 0,
    chunked: bool = False,
    warnings: Optional[list[str]] = None,
) -> ProcessingResult:
    compression = CompressionInfo()
    if payload is not None:
        compression = CompressionInfo(
            applied=payload.compressed,
            original_size_bytes=payload.original_size_bytes,
            size_bytes=payload.size_bytes,
        )
    return ProcessingResult(
        transcription=parsed.transcription,
        structured_summary=summary_to_dto(parsed.summary),
        model=model,
        timestamp=datetime.now(timezone.utc),
        processing_time=processing_time_ms,
        quality_score=report.overall_score,
        parse_strategy=parsed.strategy,
        degraded=parsed.degraded,
        attempts_used=attempts_used,
        chunked=chunked,
        compression=compression,
        quality_issues=[f"{i.type.value}:{i.field_path}" for i in report.issues],
        warnings=warnings or [],
    )
