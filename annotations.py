from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Sequence

from models import Conclusion, Diagnostic

log = logging.getLogger("annotations")

LEVELS = ("failure", "warning", "notice")
_ALIASES = {"error": "failure", "info": "notice"}
_TITLE_MAX = 255


@dataclass(frozen=True)
class Annotation:
    path: str
    start_line: int
    end_line: int
    annotation_level: str       # failure | warning | notice
    message: str
    title: str
    raw_details: Optional[str] = None

    def to_payload(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {
            "path": self.path,
            "start_line": self.start_line,
            "end_line": self.end_line,
            "annotation_level": self.annotation_level,
            "title": self.title,
            "message": self.message or self.title,
        }
        if self.raw_details:
            out["raw_details"] = self.raw_details
        return out


@dataclass(frozen=True)
class BatchPlan:
    batches: List[List[Annotation]]
    conclusion: Conclusion
    reported_count: int
    filtered_count: int
    counts: Dict[str, int] = field(default_factory=dict)

    @property
    def summary(self) -> str:
        return summarize(self.counts, self.filtered_count)


def annotation_level(severity: str) -> Optional[str]:
    """Map a diagnostic severity onto a check-run annotation level, or None if unknown."""
    sev = (severity or "").strip().lower()
    sev = _ALIASES.get(sev, sev)
    return sev if sev in LEVELS else None


def to_annotation(d: Diagnostic, level: str, default_title: str) -> Annotation:
    title = (d.rule or default_title)[:_TITLE_MAX]
    return Annotation(
        path=d.path,
        start_line=d.line,
        end_line=d.end_line or d.line,
        annotation_level=level,
        message=d.message,
        title=title,
        raw_details=f"Rule: {d.rule}" if d.rule else None,
    )


def chunk(items: Sequence[Any], size: int) -> Iterable[List[Any]]:
    for i in range(0, len(items), size):
        yield list(items[i : i + size])


def summarize(counts: Dict[str, int], filtered: int = 0) -> str:
    md = [
        "### Static analysis summary",
        "",
        f"- **Failures:** {counts.get('failure', 0)}",
        f"- **Warnings:** {counts.get('warning', 0)}",
        f"- **Notices:** {counts.get('notice', 0)}",
    ]
    if filtered:
        md.append(f"- **Dropped (unknown severity):** {filtered}")
    return "\n".join(md)


class AnnotationBatcher:
    """
    Projects diagnostics to check-run annotations, splits them into batches that
    fit one API call, and decides the check conclusion.

    Diagnostics with a severity we cannot map are dropped and counted as
    filtered. If every diagnostic is dropped the conclusion is neutral rather
    than success.
    """

    def __init__(self, warnings_block: bool = False, default_title: str = "Static analysis finding"):
        self.warnings_block = warnings_block
        self.default_title = default_title

    def batch(self, diagnostics: Sequence[Diagnostic], max_batch_size: int) -> BatchPlan:
        if max_batch_size < 1:
            raise ValueError(f"max_batch_size must be >= 1, got {max_batch_size}")

        annotations: List[Annotation] = []
        counts = {level: 0 for level in LEVELS}
        unknown: Dict[str, int] = {}
        for d in diagnostics:
            level = annotation_level(d.severity)
            if level is None:
                unknown[d.severity] = unknown.get(d.severity, 0) + 1
                continue
            counts[level] += 1
            annotations.append(to_annotation(d, level, self.default_title))

        filtered = len(diagnostics) - len(annotations)
        if unknown:
            log.warning("dropped %d diagnostics with unknown severity: %s", filtered, unknown)

        return BatchPlan(
            batches=list(chunk(annotations, max_batch_size)),
            conclusion=self._conclusion(counts, len(annotations), len(diagnostics)),
            reported_count=len(annotations),
            filtered_count=filtered,
            counts=counts,
        )

    def _conclusion(self, counts: Dict[str, int], reported: int, total: int) -> Conclusion:
        if counts["failure"]:
            return Conclusion.FAILURE
        if self.warnings_block and counts["warning"]:
            return Conclusion.FAILURE
        if reported or not total:
            return Conclusion.SUCCESS
        return Conclusion.NEUTRAL
