"""JsonFileDocumentStore: writes minutes and transcripts to a local directory."""

import json
import logging
import re
from datetime import datetime
from pathlib import Path

from minutes_pipeline.domain.models import RecordingUnit
from minutes_pipeline.models import ProcessingResult
from minutes_pipeline.ports.document_store import DocumentStorePort

logger = logging.getLogger(__name__)

_UNSAFE_CHARS = re.compile(r'[\\/:*?"<>|\s]+')


def _date_and_time(start_time: str) -> tuple[str, str]:
    """Split an ISO start time into YYYYMMDD and HHMM, as written (no timezone shift)."""
    if not start_time:
        return "", ""
    try:
        moment = datetime.fromisoformat(start_time.replace("Z", "+00:00"))
    except ValueError:
        return start_time[:10].replace("-", ""), ""
    if len(start_time) <= 10:
        return moment.strftime("%Y%m%d"), ""
    return moment.strftime("%Y%m%d"), moment.strftime("%H%M")


def document_stem(unit: RecordingUnit) -> str:
    """``<date>_<HHMM>_<topic>``, with the recording id standing in for a missing time."""
    date, hhmm = _date_and_time(unit.meeting.start_time)
    name = unit.meeting.topic or unit.recording_id or "meeting"
    parts = [date, hhmm, name]
    if not hhmm and unit.recording_id and unit.recording_id != name:
        parts.append(Path(unit.recording_id).stem)
    stem = _UNSAFE_CHARS.sub("_", "_".join(p for p in parts if p)).strip("_")
    return stem[:100] or "meeting"


class JsonFileDocumentStore(DocumentStorePort):
    def __init__(self, output_dir: str):
        self._output_dir = Path(output_dir)

    def save(self, unit: RecordingUnit, result: ProcessingResult) -> str:
        self._output_dir.mkdir(parents=True, exist_ok=True)
        stem = document_stem(unit)
        minutes_path = self._output_dir / f"{stem}_minutes.json"
        transcript_path = self._output_dir / f"{stem}_transcript.txt"

        document = result.to_document()
        document["meeting"] = {
            "topic": unit.meeting.topic,
            "startTime": unit.meeting.start_time,
            "durationMinutes": unit.meeting.duration_minutes,
            "hostName": unit.meeting.host_name,
        }
        with open(minutes_path, "w", encoding="utf-8") as f:
            json.dump(document, f, ensure_ascii=False, indent=2)
        with open(transcript_path, "w", encoding="utf-8") as f:
            f.write(result.transcription)

        logger.info(f"Saved minutes to {minutes_path}")
        return str(minutes_path)
