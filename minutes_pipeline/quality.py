"""QualityEvaluator: scores a ParsedResult for structural and content defects.

Walks every string in the transcript/summary tree. Starting from 100, each
defect subtracts a fixed penalty:

    JSON_MIXED_CONTENT    HIGH    -25   raw JSON syntax leaked into prose
    EMPTY_CONTENT         MEDIUM  -10   zero-length string
    INSUFFICIENT_CONTENT  HIGH    -20   transcription under 50 characters
"""

import logging
import re

from minutes_pipeline.domain.json_tree import iter_strings
from minutes_pipeline.domain.models import Issue, IssueType, ParsedResult, QualityReport, Severity

logger = logging.getLogger(__name__)

PERFECT_SCORE = 100
ACCEPTABLE_SCORE = 70
MIN_TRANSCRIPTION_LENGTH = 50

JSON_MIXED_PENALTY = 25
EMPTY_PENALTY = 10
INSUFFICIENT_PENALTY = 20

JSON_OBJECT_PATTERN = re.compile(r'\{[^{}]*"[^"]+"\s*:\s*[^{}]*\}')
JSON_ARRAY_PATTERN = re.compile(r'\[[^\[\]]*"[^"]+"[^\[\]]*\]')
TRANSCRIPTION_ECHO_PATTERN = re.compile(r'"transcription"\s*:\s*"[^"]*"')
NESTED_JSON_PATTERN = re.compile(r"\{[^{}]*\{[^{}]*\}[^{}]*\}")

_LEAK_PATTERNS = (
    JSON_OBJECT_PATTERN,
    JSON_ARRAY_PATTERN,
    TRANSCRIPTION_ECHO_PATTERN,
    NESTED_JSON_PATTERN,
)


def contains_json(text: str) -> bool:
    return any(pattern.search(text) for pattern in _LEAK_PATTERNS)


def build_report(issues: list[Issue], score: int) -> QualityReport:
    """Derive the reprocessing flags for ``issues`` at the given score."""
    json_mixed = any(issue.type == IssueType.JSON_MIXED_CONTENT for issue in issues)
    needs_reprocessing = (
        json_mixed
        or score < ACCEPTABLE_SCORE
        or any(issue.severity == Severity.HIGH for issue in issues)
    )
    return QualityReport(
        overall_score=max(0, score),
        issues=issues,
        json_mixed_detected=json_mixed,
        needs_reprocessing=needs_reprocessing,
    )


class QualityEvaluator:
    def evaluate(self, parsed: ParsedResult) -> QualityReport:
        issues: list[Issue] = []

        for path, _key, text in iter_strings(parsed.as_tree()):
            if contains_json(text):
                issues.append(Issue(
                    IssueType.JSON_MIXED_CONTENT, path, Severity.HIGH,
                    "JSON syntax found inside a text field",
                ))
            elif not text:
                issues.append(Issue(
                    IssueType.EMPTY_CONTENT, path, Severity.MEDIUM, "Field is empty",
                ))

        if len(parsed.transcription.strip()) < MIN_TRANSCRIPTION_LENGTH:
            issues.append(Issue(
                IssueType.INSUFFICIENT_CONTENT, "transcription", Severity.HIGH,
                f"Transcription is shorter than {MIN_TRANSCRIPTION_LENGTH} characters",
            ))

        penalties = {
            IssueType.JSON_MIXED_CONTENT: JSON_MIXED_PENALTY,
            IssueType.EMPTY_CONTENT: EMPTY_PENALTY,
            IssueType.INSUFFICIENT_CONTENT: INSUFFICIENT_PENALTY,
        }
        report = build_report(issues, PERFECT_SCORE - sum(penalties[issue.type] for issue in issues))
        if issues:
            logger.info(
                f"Quality score {report.overall_score}/100, {len(issues)} issues "
                f"(json_mixed={report.json_mixed_detected}, reprocess={report.needs_reprocessing})"
            )
        return report
