"""DirectoryRecordingSource: picks up recordings dropped into an inbox directory.

Each audio file may have a JSON sidecar with the same stem holding meeting
metadata (topic, startTime, durationMinutes, hostName). Processed
recordings are recorded in a ``.processed`` file so they are not listed again.
"""

import json
import logging
import math
from pathlib import Path
from typing import Optional

from minutes_pipeline.domain.models import MeetingInfo, RecordingUnit
from minutes_pipeline.ports.recording_source import RecordingSourcePort

logger = logging.getLogger(__name__)

AUDIO_SUFFIXES = {".m4a": "audio/mp4", ".mp4": "audio/mp4", ".mp3": "audio/mpeg", ".wav": "audio/wav"}
PROCESSED_LEDGER = ".processed"


def _duration(value, source: str) -> Optional[float]:
    if value in (None, ""):
        return None
    try:
        duration = float(value)
    except (TypeError, ValueError):
        logger.warning(f"Ignoring non-numeric duration {value!r} in {source}")
        return None
    return duration if math.isfinite(duration) and duration > 0 else None


def _text(data: dict, *keys: str) -> str:
    for key in keys:
        value = data.get(key)
        if value not in (None, ""):
            return str(value)
    return ""


class DirectoryRecordingSource(RecordingSourcePort):
    def __init__(self, inbox_dir: str):
        self._inbox = Path(inbox_dir)

    def _processed(self) -> set[str]:
        ledger = self._inbox / PROCESSED_LEDGER
        if not ledger.exists():
            return set()
        return {line.strip() for line in ledger.read_text(encoding="utf-8").splitlines() if line.strip()}

    def list_pending(self) -> list[str]:
        if not self._inbox.is_dir():
            logger.warning(f"Inbox {self._inbox} does not exist")
            return []
        done = self._processed()
        return sorted(
            p.name for p in self._inbox.iterdir()
            if p.suffix.lower() in AUDIO_SUFFIXES and p.name not in done
        )

    def _load_meeting(self, audio_path: Path) -> MeetingInfo:
        sidecar = audio_path.with_suffix(".json")
        if not sidecar.exists():
            return MeetingInfo(topic=audio_path.stem)
        try:
            with open(sidecar, encoding="utf-8") as f:
                data = json.load(f)
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            logger.warning(f"Ignoring unreadable metadata {sidecar.name}: {e}")
            return MeetingInfo(topic=audio_path.stem)
        if not isinstance(data, dict):
            logger.warning(f"Ignoring metadata {sidecar.name}: expected an object, got {type(data).__name__}")
            return MeetingInfo(topic=audio_path.stem)
        return MeetingInfo(
            topic=_text(data, "topic") or audio_path.stem,
            start_time=_text(data, "startTime", "start_time"),
            duration_minutes=_duration(data.get("durationMinutes", data.get("duration")), sidecar.name),
            host_name=_text(data, "hostName", "host_name"),
        )

    def fetch(self, recording_id: str) -> RecordingUnit:
        audio_path = self._inbox / recording_id
        return RecordingUnit(
            audio_bytes=audio_path.read_bytes(),
            mime_type=AUDIO_SUFFIXES.get(audio_path.suffix.lower()),
            meeting=self._load_meeting(audio_path),
            recording_id=recording_id,
        )

    def mark_done(self, recording_id: str) -> None:
        with open(self._inbox / PROCESSED_LEDGER, "a", encoding="utf-8") as f:
            f.write(recording_id + "\n")
