"""Reprocessor: field-local repair of defects found by the QualityEvaluator."""

import copy
import logging
import re

from minutes_pipeline.domain.json_tree import get_at, set_at
from minutes_pipeline.domain.models import (
    IssueType, ParsedResult, QualityReport, ReprocessResult,
)
from minutes_pipeline.quality import (
    JSON_ARRAY_PATTERN, JSON_OBJECT_PATTERN, NESTED_JSON_PATTERN, QualityEvaluator,
)

logger = logging.getLogger(__name__)

PROCESSING_ERROR_PLACEHOLDER = "[PROCESSING_ERROR] Content could not be recovered"

_RESIDUE_PATTERNS = [
    (re.compile(r'"\s*:\s*"'), ": "),
    (re.compile(r'"\s*,\s*"'), ", "),
]
_INLINE_WHITESPACE = re.compile(r"[ \t　]{2,}")
_BLANK_LINES = re.compile(r"\n\s*\n(\s*\n)+")


def clean_string_value(value: str) -> str:
    """Strip embedded JSON fragments from a prose field.

    Objects and arrays are removed repeatedly until nothing matches, since
    removing an inner object can expose an outer one.
    """
    cleaned = value.replace('\\"', '"')
    previous = None
    while cleaned != previous:
        previous = cleaned
        cleaned = NESTED_JSON_PATTERN.sub("", cleaned)
        cleaned = JSON_OBJECT_PATTERN.sub("", cleaned)
        cleaned = JSON_ARRAY_PATTERN.sub("", cleaned)
    for pattern, replacement in _RESIDUE_PATTERNS:
        cleaned = pattern.sub(replacement, cleaned)
    cleaned = _BLANK_LINES.sub("\n\n", cleaned)
    cleaned = _INLINE_WHITESPACE.sub(" ", cleaned)
    return cleaned.strip()


class Reprocessor:
    def __init__(self, evaluator: QualityEvaluator):
        self._evaluator = evaluator

    def repair(self, parsed: ParsedResult, report: QualityReport) -> ReprocessResult:
        """Apply field-local fixes and re-score. Never raises."""
        tree = copy.deepcopy(parsed.as_tree())
        improvements: list[str] = []

        for issue in report.issues:
            try:
                if issue.type == IssueType.JSON_MIXED_CONTENT:
                    original = get_at(tree, issue.field_path)
                    if not isinstance(original, str):
                        continue
                    cleaned = clean_string_value(original) or PROCESSING_ERROR_PLACEHOLDER
                    if cleaned != original:
                        set_at(tree, issue.field_path, cleaned)
                        improvements.append(f"Removed JSON fragments from {issue.field_path}")
                elif issue.type == IssueType.EMPTY_CONTENT:
                    set_at(tree, issue.field_path, PROCESSING_ERROR_PLACEHOLDER)
                    improvements.append(f"Filled empty field {issue.field_path}")
                else:
                    logger.info(f"No local repair for {issue.type.value} at {issue.field_path}")
            except (KeyError, IndexError, TypeError, ValueError) as e:
                logger.warning(f"Could not repair {issue.field_path}: {e!r}")

        summary = tree.get("summary")
        repaired = ParsedResult(
            transcription=tree.get("transcription") if isinstance(tree.get("transcription"), str) else parsed.transcription,
            summary=summary if isinstance(summary, dict) else {},
            strategy=parsed.strategy,
            degraded=parsed.degraded,
        )
        final_report = self._evaluator.evaluate(repaired)
        result = ReprocessResult(
            success=final_report.overall_score > report.overall_score,
            original_score=report.overall_score,
            improved_score=final_report.overall_score,
            repaired_result=repaired,
            final_report=final_report,
            improvements_made=improvements,
        )
        logger.info(
            f"Reprocessing {'improved' if result.success else 'did not improve'} quality "
            f"{result.original_score} -> {result.improved_score} ({len(improvements)} fixes)"
        )
        return result
