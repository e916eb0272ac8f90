# analysis/merge.py
"""Multi-source merge as a fold over immutable results.

``merge_results`` is associative: folding ``[A, B, C]`` equals merging
``(A, B)`` then ``C``. Nothing is mutated; every merge builds new values.
"""
from __future__ import annotations

from collections import Counter
from functools import reduce
from typing import Dict, Iterable, Optional, Tuple

from datamodels.findings import (
    AIInsights, AnalysisResult, ExecutiveReport, FileMetadata, TechnicalFindings, Timeline,
)
from analysis.timeline import sort_entries

MIXED_MIME = "multipart/mixed"


def sum_counts(a: Dict[str, int], b: Dict[str, int]) -> Dict[str, int]:
    total = Counter(a)
    total.update(b)
    return dict(total)


def _merge_metadata(a: FileMetadata, b: FileMetadata) -> FileMetadata:
    # The leftmost digest is kept; per-file digests live on the individual results.
    return FileMetadata(
        size=a.size + b.size,
        created=min(a.created, b.created),
        modified=max(a.modified, b.modified),
        sha256=a.sha256,
        mime_type=a.mime_type if a.mime_type == b.mime_type else MIXED_MIME,
    )


def _merge_formats(a: str, b: str) -> str:
    parts = []
    for fmt in (a.split("+") if a else []) + (b.split("+") if b else []):
        if fmt not in parts:
            parts.append(fmt)
    return "+".join(parts)


def merge_findings(a: TechnicalFindings, b: TechnicalFindings) -> TechnicalFindings:
    """Raw data last-write-wins, events/IOCs concatenate, counters sum."""
    raw = dict(a.raw_data)
    raw.update(b.raw_data)
    processed = [ts for ts in (a.processed_at, b.processed_at) if ts is not None]
    return TechnicalFindings(
        raw_data=raw,
        security_events=a.security_events + b.security_events,
        detected_iocs=a.detected_iocs + b.detected_iocs,
        events_by_type=sum_counts(a.events_by_type, b.events_by_type),
        iocs_by_category=sum_counts(a.iocs_by_category, b.iocs_by_category),
        metadata=_merge_metadata(a.metadata, b.metadata),
        total_lines=a.total_lines + b.total_lines,
        file_format=_merge_formats(a.file_format, b.file_format),
        processed_at=max(processed) if processed else None,
    )


def _merge_timelines(a: Optional[Timeline], b: Optional[Timeline]) -> Optional[Timeline]:
    if a is None or b is None:
        return a or b
    return sort_entries(a.events + b.events)


def _representative(a: AnalysisResult, b: AnalysisResult) -> Tuple[AnalysisResult, AnalysisResult]:
    """(winner, other): the higher severity result, ties to the left."""
    if a.ai is None:
        return (b, a) if b.ai is not None else (a, b)
    if b.ai is None:
        return a, b
    return (b, a) if b.ai.severity_score > a.ai.severity_score else (a, b)


def _merge_insights(winner: Optional[AIInsights], other: Optional[AIInsights],
                    left_first: Tuple[Optional[AIInsights], Optional[AIInsights]]) -> Optional[AIInsights]:
    if winner is None:
        return other
    actions = tuple(a for ins in left_first if ins is not None for a in ins.recommended_actions)
    return AIInsights(
        attack_vector=winner.attack_vector,
        threat_assessment=winner.threat_assessment,
        severity_score=winner.severity_score,
        recommended_actions=actions,
        business_impact=winner.business_impact,
        model_used=winner.model_used,
    )


def merge_results(a: AnalysisResult, b: AnalysisResult) -> AnalysisResult:
    winner, other = _representative(a, b)
    executive: Optional[ExecutiveReport] = winner.executive or other.executive
    failed = dict(a.failed_files)
    failed.update(b.failed_files)
    return AnalysisResult(
        file_names=a.file_names + b.file_names,
        file_types=a.file_types + b.file_types,
        analysis_timestamp=max(a.analysis_timestamp, b.analysis_timestamp),
        technical=merge_findings(a.technical, b.technical),
        correlations=a.correlations + b.correlations,
        timeline=_merge_timelines(a.timeline, b.timeline),
        ai=_merge_insights(winner.ai, other.ai, (a.ai, b.ai)),
        executive=executive,
        failed_files=failed,
    )


def merge_all(results: Iterable[AnalysisResult]) -> AnalysisResult:
    """Left fold of ``merge_results``; at least one result is required."""
    items = list(results)
    if not items:
        raise ValueError("merge_all() needs at least one result")
    return reduce(merge_results, items)
