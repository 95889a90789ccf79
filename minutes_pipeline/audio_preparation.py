"""AudioPreparer: sizes, compresses and splits audio payloads before dispatch.

Nothing here decodes audio. Compression is a deterministic byte-stride
downsampling that is lossy and best-effort: it keeps the payload under the
upstream size limit at the cost of audio fidelity. Splitting slices the
byte stream proportionally to an estimated duration.
"""

import base64
import logging
import math
from typing import Optional

from minutes_pipeline.domain.models import AudioChunk, AudioPayload, ChunkPlan
from minutes_pipeline.errors import ErrorKind, PipelineError

logger = logging.getLogger(__name__)

MB = 1024 * 1024

DEFAULT_MAX_PAYLOAD_MB = 18.0
DEFAULT_HARD_LIMIT_MB = 20.0
# Compressed output aims below the target so container overhead still fits.
COMPRESSION_HEADROOM = 0.8

# Typical bitrates for meeting recordings, in MB per minute of audio.
FORMAT_RATES_MB_PER_MINUTE = {
    "m4a": 0.8,
    "mp3": 1.0,
    "wav": 10.0,
}
DEFAULT_RATE_MB_PER_MINUTE = 0.9

MIME_TYPES = {
    "m4a": "audio/mp4",
    "mp3": "audio/mpeg",
    "wav": "audio/wav",
}

MIN_ESTIMATED_DURATION_SECONDS = 300
MIN_CHUNK_SECONDS = 5.0
SILENCE_NONZERO_RATIO = 0.01
SMALL_CHUNK_BYTES = int(0.1 * MB)
MAX_CHUNK_GAP_SECONDS = 1.0


def detect_format(data: bytes) -> str:
    """Detect the container format from magic bytes, defaulting to m4a."""
    if len(data) >= 12 and data[:4] == b"RIFF" and data[8:12] == b"WAVE":
        return "wav"
    if len(data) >= 8 and data[4:8] == b"ftyp":
        return "m4a"
    if data[:3] == b"ID3":
        return "mp3"
    if len(data) >= 2 and data[0] == 0xFF and (data[1] & 0xE0) == 0xE0:
        return "mp3"
    return "m4a"


def compress(data: bytes, target_mb: float) -> bytes:
    """Downsample ``data`` by keeping every step-th byte.

    Returns the input unchanged when it is already within ``target_mb``.

    Raises:
        PipelineError: AUDIO_COMPRESSION_FAILURE when the data cannot be reduced.
    """
    original_mb = len(data) / MB
    if original_mb <= target_mb:
        return data

    ratio = (target_mb * COMPRESSION_HEADROOM) / original_mb
    new_length = math.floor(len(data) * ratio)
    if new_length <= 0:
        raise PipelineError(
            ErrorKind.AUDIO_COMPRESSION_FAILURE,
            f"Cannot compress {original_mb:.2f}MB audio to {target_mb}MB",
        )
    step = max(1, len(data) // new_length)
    compressed = data[::step][:new_length]
    logger.info(
        f"Compressed audio {original_mb:.2f}MB -> {len(compressed) / MB:.2f}MB "
        f"(step={step}, lossy)"
    )
    return compressed


def chunk_duration_for(estimated_seconds: float) -> float:
    """Pick a chunk length by total duration: short meetings split in two,
    longer ones use progressively shorter chunks."""
    if estimated_seconds <= 1800:
        return max(300.0, estimated_seconds / 2)
    if estimated_seconds <= 3600:
        return 720.0
    if estimated_seconds <= 5400:
        return 600.0
    return 480.0


def is_silent(data: bytes) -> bool:
    if not data:
        return True
    nonzero = len(data) - data.count(0)
    return nonzero / len(data) < SILENCE_NONZERO_RATIO


def validate_chunks(chunks: list[AudioChunk], max_chunk_bytes: int) -> list[str]:
    """Return warnings for oversized chunks and gaps between consecutive chunks."""
    warnings = []
    for chunk in chunks:
        if len(chunk.data) > max_chunk_bytes:
            warnings.append(
                f"Chunk {chunk.index} is {len(chunk.data) / MB:.1f}MB, over the payload cap"
            )
    for previous, current in zip(chunks, chunks[1:]):
        gap = current.start_time - previous.end_time
        if gap > MAX_CHUNK_GAP_SECONDS:
            warnings.append(
                f"Gap of {gap:.1f}s between chunk {previous.index} and chunk {current.index}"
            )
    for warning in warnings:
        logger.warning(warning)
    return warnings


class AudioPreparer:
    def __init__(
        self,
        max_payload_mb: float = DEFAULT_MAX_PAYLOAD_MB,
        hard_limit_mb: float = DEFAULT_HARD_LIMIT_MB,
        enable_chunking: bool = True,
        chunking_threshold_mb: float = 20.0,
        chunking_duration_seconds: float = 1200.0,
    ):
        self._max_payload_mb = max_payload_mb
        self._hard_limit_mb = hard_limit_mb
        self._enable_chunking = enable_chunking
        self._chunking_threshold_mb = chunking_threshold_mb
        self._chunking_duration_seconds = chunking_duration_seconds

    @property
    def max_payload_bytes(self) -> int:
        return int(self._max_payload_mb * MB)

    def estimate_duration(
        self,
        size_bytes: int,
        detected_format: str,
        duration_hint_minutes: Optional[float] = None,
    ) -> float:
        """Estimate total duration in seconds, preferring the supplied hint."""
        if duration_hint_minutes and duration_hint_minutes > 0:
            return duration_hint_minutes * 60

        size_mb = size_bytes / MB
        rate = FORMAT_RATES_MB_PER_MINUTE.get(detected_format, DEFAULT_RATE_MB_PER_MINUTE)
        estimate = max(MIN_ESTIMATED_DURATION_SECONDS, size_mb / rate * 60)
        if size_mb > 30 and estimate < 1800:
            estimate = max(estimate, size_mb * 60)
        return estimate

    def should_split(self, size_bytes: int, estimated_seconds: float) -> bool:
        if not self._enable_chunking:
            return False
        size_mb = size_bytes / MB
        return (
            size_mb > self._chunking_threshold_mb
            or estimated_seconds > self._chunking_duration_seconds
            or (size_mb > 15 and estimated_seconds > 900)
        )

    def prepare(
        self,
        raw: bytes,
        mime_type: Optional[str] = None,
        duration_hint_minutes: Optional[float] = None,
    ) -> AudioPayload:
        """Build an immutable payload, compressing it when it will not be split."""
        if not raw:
            raise PipelineError(ErrorKind.AUDIO_INSUFFICIENT, "Audio payload is empty")

        detected = detect_format(raw)
        estimated = self.estimate_duration(len(raw), detected, duration_hint_minutes)
        mime = mime_type or MIME_TYPES[detected]

        if self.should_split(len(raw), estimated):
            logger.info(
                f"Audio {len(raw) / MB:.2f}MB (~{estimated / 60:.1f} min, {detected}) will be split"
            )
            return AudioPayload(
                data=raw, mime_type=mime, size_bytes=len(raw), detected_format=detected,
                original_size_bytes=len(raw), requires_split=True,
                estimated_duration_seconds=estimated,
            )

        data = raw
        if len(raw) > self.max_payload_bytes:
            try:
                data = compress(raw, self._max_payload_mb)
            except PipelineError as e:
                logger.warning(f"Compression failed, sending original audio: {e}")
        if len(data) > self._hard_limit_mb * MB:
            raise PipelineError(
                ErrorKind.AUDIO_COMPRESSION_FAILURE,
                f"Audio is {len(data) / MB:.2f}MB, over the {self._hard_limit_mb}MB upstream limit",
            )

        return AudioPayload(
            data=data, mime_type=mime, size_bytes=len(data), detected_format=detected,
            original_size_bytes=len(raw), compressed=data is not raw,
            estimated_duration_seconds=estimated,
        )

    def plan(self, payload: AudioPayload, duration_hint_minutes: Optional[float] = None) -> ChunkPlan:
        estimated = self.estimate_duration(
            payload.size_bytes, payload.detected_format, duration_hint_minutes
        )
        chunk_seconds = chunk_duration_for(estimated)
        bytes_per_second = payload.size_bytes / estimated
        chunk_size = max(1, math.floor(bytes_per_second * chunk_seconds))

        # Keep every chunk under the per-call cap even when the estimate is off.
        if chunk_size > self.max_payload_bytes:
            chunk_size = self.max_payload_bytes
            chunk_seconds = chunk_size / bytes_per_second

        plan = ChunkPlan(
            chunk_duration_seconds=chunk_seconds,
            chunk_size_bytes=chunk_size,
            estimated_total_duration_seconds=estimated,
            total_chunks=math.ceil(payload.size_bytes / chunk_size),
            bytes_per_second=bytes_per_second,
        )
        logger.info(
            f"Chunk plan: {plan.total_chunks} x {chunk_seconds:.0f}s "
            f"({chunk_size / MB:.2f}MB) over ~{estimated / 60:.1f} min"
        )
        return plan

    def split(self, payload: AudioPayload, plan: ChunkPlan) -> list[AudioChunk]:
        """Slice the payload per plan, dropping short, silent and corrupted chunks."""
        chunks: list[AudioChunk] = []
        offset = 0
        while offset < payload.size_bytes:
            end = min(offset + plan.chunk_size_bytes, payload.size_bytes)
            data = payload.data[offset:end]
            start_time = offset / plan.bytes_per_second
            end_time = end / plan.bytes_per_second
            position = f"{start_time:.1f}s-{end_time:.1f}s"
            offset = end

            if end_time - start_time < MIN_CHUNK_SECONDS:
                logger.warning(f"Skipping chunk {position}: shorter than {MIN_CHUNK_SECONDS:.0f}s")
                continue
            if is_silent(data):
                logger.warning(f"Skipping chunk {position}: silent or corrupted (almost all zero bytes)")
                continue
            try:
                base64.b64encode(data)
            except (TypeError, ValueError) as e:
                logger.warning(f"Skipping chunk {position}: corrupted ({e})")
                continue

            issues = []
            score = 1.0
            if len(data) < SMALL_CHUNK_BYTES:
                issues.append("small_chunk")
                score *= 0.5

            chunks.append(AudioChunk(
                data=data,
                start_time=start_time,
                end_time=end_time,
                index=len(chunks),
                is_first=not chunks,
                quality_score=score,
                quality_issues=issues,
            ))

        if chunks:
            chunks[-1].is_last = True
        logger.info(f"Split audio into {len(chunks)} usable chunks")
        return chunks
