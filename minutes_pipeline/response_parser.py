"""ResponseParser: turns raw model text into a ParsedResult.

Parsing is an ordered cascade of pure strategy functions. Each returns a
ParseOutcome (either a result or the reason it failed); the first success
wins. The last strategy is a best-effort regex repair layer and marks its
output as degraded. When every strategy fails, an explicit failure result
carrying ``PARSE_FAILURE_MARKER`` is returned instead of raising.
"""

import json
import logging
import re
from dataclasses import dataclass
from typing import Any, Callable, Optional

from minutes_pipeline.domain.models import ParsedResult
from minutes_pipeline.errors import ErrorKind, PipelineError

logger = logging.getLogger(__name__)

MIN_TRANSCRIPTION_LENGTH = 50
PARSE_FAILURE_MARKER = "[PARSE_FAILURE]"
UNKNOWN_CLIENT = "不明"
SYNTHESIZED_OVERVIEW_LENGTH = 500

_FENCED_BLOCK = re.compile(r"```(?:json)?\s*([\s\S]*?)\s*```", re.IGNORECASE)
_FENCE_MARKER = re.compile(r"```(?:json)?", re.IGNORECASE)
_LEADING_TEXT = re.compile(r"^[^{]*{")
_TRAILING_TEXT = re.compile(r"}[^}]*$")
_TRANSCRIPTION_FIELD = re.compile(r'["\']transcription["\']\s*:\s*"((?:[^"\\]|\\.)*)"', re.DOTALL)
_SUMMARY_FIELD = re.compile(r'["\']summary["\']\s*:\s*(?={)')

# Client-name heuristics, most specific first.
_CLIENT_PATTERNS: list[tuple[re.Pattern, str]] = [
    (re.compile(r"([一-龯ァ-ヶーA-Za-z0-9]+)様"), "{}様"),
    (re.compile(r"(株式会社[一-龯ァ-ヶーA-Za-z0-9]+)"), "{}"),
    (re.compile(r"([一-龯ァ-ヶーA-Za-z0-9]+株式会社)"), "{}"),
    (re.compile(r"([一-龯ァ-ヶーA-Za-z0-9]+)社"), "{}社"),
    (re.compile(r"\b([A-Z][\w&]*(?:\s+[A-Z][\w&]*)*,?\s+(?:Inc|Ltd|LLC|Corp|Co)\.?)"), "{}"),
]

_TOPIC_CLIENT_PATTERNS: list[tuple[re.Pattern, str]] = [
    (re.compile(r"^(.+?)様_"), "{}様"),
    (re.compile(r"^(株式会社.+?)_"), "{}"),
    (re.compile(r"^(.+?株式会社)_"), "{}"),
    (re.compile(r"^(.+?)社_"), "{}社"),
    (re.compile(r"^(.+?グループ)_"), "{}"),
]
_TOPIC_LEADING_WORD = re.compile(r"^(\w{2,10})_")
_GENERIC_MEETING_WORDS = {"会議", "定例", "打合せ", "打ち合わせ", "MTG", "ミーティング", "相談", "説明会"}


@dataclass(frozen=True)
class ParseOutcome:
    """Result of one parse strategy: ``result`` on success, ``error`` otherwise."""
    result: Optional[ParsedResult] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.result is not None


def _fail(reason: str) -> ParseOutcome:
    return ParseOutcome(error=reason)


def _accept(obj: Any, strategy: str, degraded: bool = False) -> ParseOutcome:
    """Accept a decoded object when it carries a usable transcription."""
    if not isinstance(obj, dict):
        return _fail(f"decoded {type(obj).__name__}, expected object")
    transcription = obj.get("transcription")
    if not isinstance(transcription, str) or len(transcription.strip()) < MIN_TRANSCRIPTION_LENGTH:
        return _fail("transcription missing or shorter than 50 characters")
    summary = obj.get("summary")
    if not isinstance(summary, dict):
        summary = {}
    return ParseOutcome(result=ParsedResult(
        transcription=transcription, summary=summary, strategy=strategy, degraded=degraded,
    ))


def _loads(text: str, strategy: str) -> ParseOutcome:
    try:
        return _accept(json.loads(text), strategy)
    except json.JSONDecodeError as e:
        return _fail(f"invalid JSON: {e.msg} at {e.pos}")
    except (ValueError, RecursionError) as e:
        # Oversized integers and runaway nesting from truncated, repetitive output.
        return _fail(f"undecodable JSON: {type(e).__name__}")


def parse_direct(text: str) -> ParseOutcome:
    return _loads(text.strip(), "direct")


def parse_fenced_block(text: str) -> ParseOutcome:
    match = _FENCED_BLOCK.search(text)
    if not match:
        return _fail("no fenced code block")
    return _loads(match.group(1), "fenced_block")


def parse_bracket_extraction(text: str) -> ParseOutcome:
    start, end = text.find("{"), text.rfind("}")
    if start == -1 or end <= start:
        return _fail("no brace-delimited object")
    return _loads(text[start:end + 1], "bracket_extraction")


def parse_cleaned_text(text: str) -> ParseOutcome:
    cleaned = _FENCE_MARKER.sub("", text).strip()
    cleaned = _LEADING_TEXT.sub("{", cleaned, count=1)
    cleaned = _TRAILING_TEXT.sub("}", cleaned, count=1)
    return _loads(cleaned, "text_cleaning")


def parse_line_filtered(text: str) -> ParseOutcome:
    lines = [line for line in text.splitlines() if not line.strip().startswith("```")]
    return _loads("\n".join(lines).strip(), "line_filter")


def find_json_objects(text: str) -> list[dict]:
    """Return every object that decodes on its own, fenced blocks first."""
    objects: list[dict] = []
    for block in _FENCED_BLOCK.findall(text):
        try:
            candidate = json.loads(block)
        except (ValueError, RecursionError):
            continue
        if isinstance(candidate, dict):
            objects.append(candidate)
    if objects:
        return objects

    decoder = json.JSONDecoder()
    position = text.find("{")
    while position != -1:
        try:
            candidate, end = decoder.raw_decode(text, position)
        except (ValueError, RecursionError):
            position = text.find("{", position + 1)
            continue
        if isinstance(candidate, dict):
            objects.append(candidate)
        position = text.find("{", end)
    return objects


def parse_multiple_blocks(text: str) -> ParseOutcome:
    candidates = [
        obj for obj in find_json_objects(text) if "transcription" in obj or "summary" in obj
    ]
    if not candidates:
        return _fail("no independent JSON object with transcription or summary")
    for candidate in candidates:
        outcome = _accept(candidate, "multi_block")
        if outcome.ok:
            return outcome
    return _fail(f"{len(candidates)} candidate objects, none with a usable transcription")


def balance_braces(text: str) -> str:
    """Append the closing braces a truncated object is missing."""
    deficit = text.count("{") - text.count("}")
    return text + "}" * deficit if deficit > 0 else text


def _unescape(value: str) -> str:
    try:
        return json.loads(f'"{value}"')
    except ValueError:
        return (
            value.replace("\\n", "\n").replace("\\r", "\r")
            .replace('\\"', '"').replace("\\\\", "\\")
        )


def extract_client_name(text: str) -> str:
    for pattern, template in _CLIENT_PATTERNS:
        match = pattern.search(text)
        if match:
            return template.format(match.group(1))
    return UNKNOWN_CLIENT


def extract_client_from_topic(topic: str) -> Optional[str]:
    """Recover a client name from a meeting topic like ``ACME様_定例``."""
    if not topic:
        return None
    for pattern, template in _TOPIC_CLIENT_PATTERNS:
        match = pattern.match(topic)
        if match:
            return template.format(match.group(1))
    match = _TOPIC_LEADING_WORD.match(topic)
    if match and match.group(1) not in _GENERIC_MEETING_WORDS:
        return f"{match.group(1)}様"
    return None


def synthesize_summary(text: str) -> dict[str, Any]:
    """Build a minimal summary from free text when no summary JSON survives."""
    overview = text[:SYNTHESIZED_OVERVIEW_LENGTH]
    if len(text) > SYNTHESIZED_OVERVIEW_LENGTH:
        overview += "..."
    return {
        "meetingPurpose": overview,
        "clientName": extract_client_name(text),
        "attendeesAndCompanies": [],
        "materials": [],
        "discussionsByTopic": [],
        "decisions": [],
        "nextActionsWithDueDate": [],
        "audioQuality": {
            "clarity": "unknown",
            "issues": [
                "Structured summary could not be parsed",
                "Only basic information was recovered from the response text",
            ],
            "transcriptionConfidence": "medium",
        },
    }


def _extract_summary(text: str) -> Optional[dict]:
    match = _SUMMARY_FIELD.search(text)
    if not match:
        return None
    fragment = text[match.end():]
    try:
        summary, _ = json.JSONDecoder().raw_decode(fragment)
    except (ValueError, RecursionError):
        end = fragment.rfind("}")
        candidate = balance_braces(fragment[:end + 1] if end != -1 else fragment)
        try:
            summary = json.loads(candidate)
        except (ValueError, RecursionError):
            return None
    return summary if isinstance(summary, dict) else None


def parse_regex_fields(text: str) -> ParseOutcome:
    """Best-effort repair: pull fields out of broken JSON with regexes."""
    match = _TRANSCRIPTION_FIELD.search(text)
    if not match:
        return _fail("no transcription field")
    transcription = _unescape(match.group(1))
    if len(transcription.strip()) < MIN_TRANSCRIPTION_LENGTH:
        return _fail("extracted transcription shorter than 50 characters")

    summary = _extract_summary(text)
    if summary is None:
        logger.warning("Summary JSON unrecoverable, synthesizing summary from response text")
        summary = synthesize_summary(text)
    return ParseOutcome(result=ParsedResult(
        transcription=transcription, summary=summary, strategy="regex_fields", degraded=True,
    ))


STRATEGIES: list[tuple[str, Callable[[str], ParseOutcome]]] = [
    ("direct", parse_direct),
    ("fenced_block", parse_fenced_block),
    ("bracket_extraction", parse_bracket_extraction),
    ("text_cleaning", parse_cleaned_text),
    ("line_filter", parse_line_filtered),
    ("multi_block", parse_multiple_blocks),
    ("regex_fields", parse_regex_fields),
]


def failure_result() -> ParsedResult:
    return ParsedResult(
        transcription=f"{PARSE_FAILURE_MARKER} The model response could not be parsed",
        summary={
            "meetingPurpose": f"{PARSE_FAILURE_MARKER} No summary could be generated",
            "clientName": UNKNOWN_CLIENT,
            "audioQuality": {
                "clarity": "unknown",
                "issues": ["Response parsing failed"],
                "transcriptionConfidence": "low",
            },
        },
        strategy="failed",
        degraded=True,
    )


def is_parse_failure(result: ParsedResult) -> bool:
    return result.transcription.startswith(PARSE_FAILURE_MARKER)


def ensure_usable(text: str, result: ParsedResult) -> None:
    """Reject a response that decodes to JSON but carries no usable transcription.

    Raises:
        PipelineError: RESPONSE_PARSE_FAILURE, which the dispatcher retries.
            Text with no JSON object at all is left to the failure marker.
    """
    if is_parse_failure(result) and find_json_objects(text or ""):
        raise PipelineError(ErrorKind.RESPONSE_PARSE_FAILURE, "Transcription too short or missing")


class ResponseParser:
    def __init__(self, strategies: Optional[list[tuple[str, Callable[[str], ParseOutcome]]]] = None):
        self._strategies = strategies or STRATEGIES

    def parse(self, raw_text: str) -> ParsedResult:
        """Run the cascade; never raises."""
        text = raw_text or ""
        for name, strategy in self._strategies:
            try:
                outcome = strategy(text)
            except (ValueError, RecursionError) as e:
                outcome = _fail(f"{type(e).__name__}: {e}")
            if outcome.ok:
                logger.info(f"Parsed model response with strategy '{name}'")
                return outcome.result
            logger.debug(f"Parse strategy '{name}' failed: {outcome.error}")

        logger.error(f"All parse strategies failed ({len(text)} chars); returning failure marker")
        logger.debug(f"Unparsable response head: {text[:500]!r}")
        return failure_result()
