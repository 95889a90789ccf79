"""ProcessMeetingUseCase: runs one recording through the full pipeline.

prepare -> dispatch -> parse -> evaluate -> (repair) -> assemble. Long or
oversized recordings are split into chunks, each run through dispatch ..
repair on its own, and merged before assembly. Only AUDIO_INSUFFICIENT and
retry exhaustion escape as exceptions; every other problem degrades into a
visibly marked result.
"""

import logging
import time
import uuid
from dataclasses import dataclass, field
from typing import Optional

from minutes_pipeline.audio_preparation import AudioPreparer, validate_chunks
from minutes_pipeline.dispatch import RequestDispatcher
from minutes_pipeline.domain.models import (
    AudioChunk, AudioPayload, Issue, IssueType, ParsedResult, ProcessingState, QualityReport,
    RecordingUnit, Severity,
)
from minutes_pipeline.errors import ErrorKind, PipelineError
from minutes_pipeline.mappers import assemble_result
from minutes_pipeline.models import ProcessingResult
from minutes_pipeline.ports.progress import ProgressPort
from minutes_pipeline.prompts import build_request
from minutes_pipeline.quality import INSUFFICIENT_PENALTY, QualityEvaluator, build_report
from minutes_pipeline.reprocessing import Reprocessor
from minutes_pipeline.response_parser import (
    UNKNOWN_CLIENT, ResponseParser, ensure_usable, extract_client_from_topic,
)

logger = logging.getLogger(__name__)

CHUNK_FAILED_MARKER = "[CHUNK_FAILED]"
MIN_COMPLETION_RATE = 0.8


@dataclass
class UnitResult:
    """Outcome of one dispatch..repair pass over a payload or chunk."""
    parsed: ParsedResult
    report: QualityReport
    attempts: int = 0


@dataclass
class ChunkResult:
    chunk: AudioChunk
    result: Optional[UnitResult] = None
    error: Optional[PipelineError] = None


@dataclass
class MergedResult:
    parsed: ParsedResult
    report: QualityReport
    attempts: int
    warnings: list[str] = field(default_factory=list)


def format_timestamp(seconds: float) -> str:
    minutes, secs = divmod(int(seconds), 60)
    return f"{minutes}:{secs:02d}"


def format_time_range(start: float, end: float) -> str:
    return f"{format_timestamp(start)}-{format_timestamp(end)}"


def merge_chunk_results(chunk_results: list[ChunkResult]) -> MergedResult:
    """Combine per-chunk results into one transcript and summary."""
    sections = []
    purpose = client = ""
    materials: list = []
    topics: list = []
    decisions: list = []
    actions: list = []
    attendees: list = []
    seen_attendees: set[tuple[str, str]] = set()
    quality_issues: list[str] = []
    clarity = confidence = ""
    scores = []
    attempts = 0

    for item in chunk_results:
        time_range = format_time_range(item.chunk.start_time, item.chunk.end_time)
        if item.result is None:
            sections.append(
                f"--- {time_range} ---\n{CHUNK_FAILED_MARKER} "
                f"{item.error.kind.value if item.error else ErrorKind.UNKNOWN.value}"
            )
            continue

        parsed, report = item.result.parsed, item.result.report
        scores.append(report.overall_score)
        attempts += item.result.attempts
        sections.append(f"--- {time_range} ---\n{parsed.transcription}")

        summary = parsed.summary
        if not purpose:
            purpose = summary.get("meetingPurpose") or ""
        if not client or client == UNKNOWN_CLIENT:
            client = summary.get("clientName") or client
        if not materials:
            materials = list(summary.get("materials") or [])
        for topic in summary.get("discussionsByTopic") or []:
            if isinstance(topic, dict):
                topics.append({**topic, "chunkTimeRange": time_range})
        decisions.extend(summary.get("decisions") or [])
        actions.extend(summary.get("nextActionsWithDueDate") or [])
        for attendee in summary.get("attendeesAndCompanies") or []:
            if not isinstance(attendee, dict):
                continue
            key = (attendee.get("name", ""), attendee.get("company", ""))
            if key not in seen_attendees:
                seen_attendees.add(key)
                attendees.append(attendee)

        audio_quality = summary.get("audioQuality")
        if isinstance(audio_quality, dict):
            clarity = clarity or audio_quality.get("clarity", "")
            confidence = _lower_confidence(confidence, audio_quality.get("transcriptionConfidence", ""))
            for issue in audio_quality.get("issues") or []:
                if issue not in quality_issues:
                    quality_issues.append(issue)

    failed = [c for c in chunk_results if c.result is None]
    warnings = []
    if failed:
        warnings.append(f"{len(failed)} of {len(chunk_results)} chunks failed to process")
    completion = (len(chunk_results) - len(failed)) / len(chunk_results) if chunk_results else 0.0
    if completion < MIN_COMPLETION_RATE:
        warnings.append(f"Only {completion:.0%} of the recording was processed")

    merged = ParsedResult(
        transcription="\n\n".join(sections),
        summary={
            "meetingPurpose": purpose,
            "clientName": client,
            "attendeesAndCompanies": attendees,
            "materials": materials,
            "discussionsByTopic": topics,
            "decisions": decisions,
            "nextActionsWithDueDate": actions,
            "audioQuality": {
                "clarity": clarity,
                "issues": quality_issues,
                "transcriptionConfidence": confidence,
            },
        },
        strategy="chunk_merge",
        degraded=bool(failed) or any(c.result.parsed.degraded for c in chunk_results if c.result),
    )
    issues = []
    for index, item in enumerate(chunk_results):
        if item.result is None:
            issues.append(Issue(
                IssueType.INSUFFICIENT_CONTENT, f"chunks[{index}]", Severity.HIGH,
                "Chunk could not be processed",
            ))
        else:
            issues.extend(item.result.report.issues)
    score = (min(scores) if scores else 0) - INSUFFICIENT_PENALTY * len(failed)
    report = build_report(issues, score)
    return MergedResult(parsed=merged, report=report, attempts=attempts, warnings=warnings)


_CONFIDENCE_ORDER = {"low": 0, "medium": 1, "high": 2}


def _lower_confidence(current: str, new: str) -> str:
    if not current:
        return new
    if not new:
        return current
    return min(current, new, key=lambda c: _CONFIDENCE_ORDER.get(c, 1))


class ProcessMeetingUseCase:
    def __init__(
        self,
        preparer: AudioPreparer,
        dispatcher: RequestDispatcher,
        parser: ResponseParser,
        evaluator: QualityEvaluator,
        reprocessor: Reprocessor,
        progress: ProgressPort,
        model_name: str,
    ):
        self._preparer = preparer
        self._dispatcher = dispatcher
        self._parser = parser
        self._evaluator = evaluator
        self._reprocessor = reprocessor
        self._progress = progress
        self._model_name = model_name

    @property
    def model_name(self) -> str:
        return self._model_name

    async def execute(self, unit: RecordingUnit) -> ProcessingResult:
        job_id = uuid.uuid4().hex[:12]
        try:
            return await self._execute(job_id, unit)
        except Exception as e:
            self._progress.report(job_id, ProcessingState.FAILED_TERMINAL, detail=type(e).__name__)
            raise

    async def _execute(self, job_id: str, unit: RecordingUnit) -> ProcessingResult:
        started = time.monotonic()
        meeting = unit.meeting

        # 1. Prepare audio
        self._progress.report(job_id, ProcessingState.PREPARING, detail=unit.recording_id or None)
        payload = self._preparer.prepare(unit.audio_bytes, unit.mime_type, meeting.duration_minutes)

        # 2. Dispatch, parse, evaluate, repair (whole payload or per chunk)
        warnings: list[str] = []
        if payload.requires_split:
            merged = await self._process_chunks(job_id, unit, payload)
            parsed, report, attempts = merged.parsed, merged.report, merged.attempts
            warnings.extend(merged.warnings)
        else:
            result = await self._process_audio(job_id, unit, payload.data, payload.mime_type)
            parsed, report, attempts = result.parsed, result.report, result.attempts

        # 3. Fill in the client from the meeting topic when the model could not tell
        client = parsed.summary.get("clientName")
        if not client or client == UNKNOWN_CLIENT:
            from_topic = extract_client_from_topic(meeting.topic)
            if from_topic:
                parsed.summary["clientName"] = from_topic
                logger.info(f"[{job_id}] Client name taken from meeting topic: {from_topic}")

        if parsed.degraded:
            warnings.append(f"Result recovered with degraded parsing ({parsed.strategy})")

        # 4. Assemble
        elapsed_ms = int((time.monotonic() - started) * 1000)
        result = assemble_result(
            parsed, report, self._model_name, elapsed_ms,
            payload=payload, attempts_used=attempts,
            chunked=payload.requires_split, warnings=warnings,
        )
        self._progress.report(job_id, ProcessingState.DONE, detail=f"quality {report.overall_score}/100")
        return result

    async def _process_audio(
        self,
        job_id: str,
        unit: RecordingUnit,
        audio: bytes,
        mime_type: str,
        chunk_label: str = "",
    ) -> UnitResult:
        request = build_request(unit.meeting, audio, mime_type, chunk_label)
        parsed_responses: list[ParsedResult] = []

        def on_retry(attempt, kind, delay):
            self._progress.report(
                job_id, ProcessingState.RETRY, detail=f"attempt {attempt} {kind.value}, waiting {delay:.0f}s",
            )

        def parse_response(text):
            self._progress.report(job_id, ProcessingState.RESPONDED)
            self._progress.report(job_id, ProcessingState.PARSING)
            parsed = self._parser.parse(text)
            parsed_responses.append(parsed)
            ensure_usable(text, parsed)

        self._progress.report(job_id, ProcessingState.DISPATCHING, detail=chunk_label or None)
        try:
            response = await self._dispatcher.dispatch(request, on_retry=on_retry, validate=parse_response)
            attempts = response.attempts
        except PipelineError as e:
            if e.kind != ErrorKind.RESPONSE_PARSE_FAILURE or not parsed_responses:
                raise
            # Retries ran out on responses without a usable transcription.
            logger.warning(f"[{job_id}] No usable response after {e.attempts} attempts, keeping failure marker")
            attempts = e.attempts
        parsed = parsed_responses[-1]
        self._progress.report(
            job_id, ProcessingState.PARSE_DEGRADED if parsed.degraded else ProcessingState.PARSED,
            detail=parsed.strategy,
        )

        self._progress.report(job_id, ProcessingState.EVALUATING)
        report = self._evaluator.evaluate(parsed)
        if report.needs_reprocessing:
            self._progress.report(job_id, ProcessingState.REPROCESSING)
            repair = self._reprocessor.repair(parsed, report)
            self._progress.report(job_id, ProcessingState.EVALUATING, detail="after repair")
            if repair.improved_score > report.overall_score:
                parsed, report = repair.repaired_result, repair.final_report
        else:
            self._progress.report(job_id, ProcessingState.ACCEPTED)

        return UnitResult(parsed=parsed, report=report, attempts=attempts)

    async def _process_chunks(self, job_id: str, unit: RecordingUnit, payload: AudioPayload) -> MergedResult:
        plan = self._preparer.plan(payload, unit.meeting.duration_minutes)
        chunks = self._preparer.split(payload, plan)
        if not chunks:
            raise PipelineError(ErrorKind.AUDIO_INSUFFICIENT, "No usable audio chunks (all silent or too short)")
        warnings = validate_chunks(chunks, self._preparer.max_payload_bytes)
        excluded = plan.total_chunks - len(chunks)
        if excluded > 0:
            warnings.append(f"{excluded} silent or too-short chunks were skipped")

        chunk_results: list[ChunkResult] = []
        for chunk in chunks:
            label = f"part {chunk.index + 1}/{len(chunks)} ({format_time_range(chunk.start_time, chunk.end_time)})"
            self._progress.report(
                job_id, ProcessingState.DISPATCHING,
                progress=(chunk.index + 1) / len(chunks), detail=label,
            )
            try:
                result = await self._process_audio(job_id, unit, chunk.data, payload.mime_type, label)
                chunk_results.append(ChunkResult(chunk=chunk, result=result))
            except PipelineError as e:
                logger.error(f"[{job_id}] Chunk {label} failed: {e}")
                chunk_results.append(ChunkResult(chunk=chunk, error=e))

        errors = [c.error for c in chunk_results if c.error]
        if len(errors) == len(chunk_results):
            raise errors[-1]

        merged = merge_chunk_results(chunk_results)
        merged.warnings = warnings + merged.warnings
        return merged
