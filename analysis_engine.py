"""
analysis_engine.py - Orchestrates parsing, normalization, correlation, timeline
and insight generation for one or many evidence files.
"""

import asyncio
import dataclasses
import logging
import os
from collections import Counter
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple, Union

import constants
from ai_insights import ModelInsightGenerator, create_client
from analysis.correlation import correlate
from analysis.merge import merge_all
from analysis.normalizer import normalize
from analysis.timeline import build_timeline
from datamodels.findings import (
    AnalysisResult, CorrelatedGroup, TechnicalFindings, Timeline,
)
from infra.errors import EvidenceNotFound
from infra.log_config import get_audit_logger
from infra.storage import cleanup_temp_file, spool_bytes
from insight_rules import InsightGenerator, RuleBasedInsightGenerator
from parsers.base import now_utc
from parsers.registry import ParserRegistry, default_registry

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AnalysisOptions:
    enable_ai_analysis: bool = True
    generate_executive_report: bool = True
    include_timeline: bool = True
    include_correlation: bool = True
    max_security_events: int = constants.MAX_SECURITY_EVENTS
    max_iocs: int = constants.MAX_IOCS

    @classmethod
    def from_settings(cls, cfg: Dict[str, Any], **overrides) -> "AnalysisOptions":
        base = cls(max_security_events=cfg.get("max_security_events", constants.MAX_SECURITY_EVENTS),
                   max_iocs=cfg.get("max_iocs", constants.MAX_IOCS))
        return dataclasses.replace(base, **overrides)


@dataclass(frozen=True)
class EvidenceInput:
    """A file on disk, or raw bytes with an optional file name hint."""
    path: Optional[str] = None
    content: Optional[bytes] = None
    filename: Optional[str] = None

    @property
    def display_name(self) -> str:
        if self.filename:
            return os.path.basename(self.filename)
        if self.path:
            return os.path.basename(self.path)
        return "upload"


Evidence = Union[str, os.PathLike, EvidenceInput]


def _as_input(evidence: Evidence) -> EvidenceInput:
    if isinstance(evidence, EvidenceInput):
        if evidence.path is None and evidence.content is None:
            raise ValueError("EvidenceInput needs a path or content")
        return evidence
    return EvidenceInput(path=os.fspath(evidence))


def _cap(findings: TechnicalFindings, options: AnalysisOptions) -> TechnicalFindings:
    """Apply the event/IOC caps, keeping counters consistent with what is kept."""
    events = findings.security_events
    iocs = findings.detected_iocs
    if len(events) <= options.max_security_events and len(iocs) <= options.max_iocs:
        return findings
    raw = dict(findings.raw_data)
    if len(events) > options.max_security_events:
        raw["TruncatedEvents"] = len(events) - options.max_security_events
        events = events[:options.max_security_events]
    if len(iocs) > options.max_iocs:
        raw["TruncatedIOCs"] = len(iocs) - options.max_iocs
        iocs = iocs[:options.max_iocs]
    return dataclasses.replace(
        findings,
        raw_data=raw,
        security_events=events,
        detected_iocs=iocs,
        events_by_type=dict(Counter(ev.event_type for ev in events)),
        iocs_by_category=dict(Counter(i.split(":", 1)[0] for i in iocs)),
    )


class AnalysisEngine:
    """Runs the pipeline. Parsing and the pure per-file stages run in worker
    threads; the model call (if any) runs on the event loop with a timeout.
    """

    def __init__(
        self,
        registry: Optional[ParserRegistry] = None,
        model_generator: Optional[InsightGenerator] = None,
        rule_generator: Optional[InsightGenerator] = None,
        audit_logger: Optional[logging.Logger] = None,
    ):
        self.registry = registry or default_registry()
        self.model_generator = model_generator
        self.rule_generator = rule_generator or RuleBasedInsightGenerator()
        self.audit_logger = audit_logger

    @classmethod
    def from_settings(cls, cfg: Dict[str, Any], audit: bool = True) -> "AnalysisEngine":
        client = create_client(cfg)
        return cls(
            registry=default_registry(include_private_ips=cfg.get("include_private_ips", True)),
            model_generator=ModelInsightGenerator(client, timeout=cfg.get("model_timeout", 30.0)) if client else None,
            audit_logger=get_audit_logger("engine", cfg.get("log_dir")) if audit else None,
        )

    def select_generator(self, options: AnalysisOptions) -> InsightGenerator:
        if options.enable_ai_analysis and self.model_generator is not None and self.model_generator.is_available():
            return self.model_generator
        return self.rule_generator

    def _process(self, path: str, options: AnalysisOptions
                 ) -> Tuple[str, TechnicalFindings, Tuple[CorrelatedGroup, ...], Optional[Timeline]]:
        """Synchronous, side-effect free part of the pipeline for one file."""
        file_type = self.registry.detect_type(path)
        findings = self.registry.dispatch(path)
        # a lower-priority parser may have taken over after a failure
        file_type = findings.raw_data.get("ParserFileType", file_type)
        events = tuple(normalize(findings.security_events))
        findings = _cap(dataclasses.replace(findings, security_events=events), options)
        correlations = correlate(findings.security_events) if options.include_correlation else ()
        timeline = build_timeline(findings.security_events, findings.metadata) if options.include_timeline else None
        return file_type, findings, correlations, timeline

    async def analyze_file(self, evidence: Evidence, options: Optional[AnalysisOptions] = None) -> AnalysisResult:
        """Analyse one file.

        Raises ``EvidenceNotFound`` or ``UnsupportedFileType``; every other
        failure is contained by the stage that produced it.
        """
        options = options or AnalysisOptions()
        item = _as_input(evidence)
        spooled: Optional[str] = None
        if item.content is not None:
            spooled = await spool_bytes(item.content, item.filename or "")
            path = spooled
        else:
            path = item.path
            if not os.path.isfile(path):
                raise EvidenceNotFound(path)

        try:
            file_type, findings, correlations, timeline = await asyncio.to_thread(self._process, path, options)
        finally:
            if spooled:
                await cleanup_temp_file(spooled)

        generator = self.select_generator(options)
        insights = await generator.generate_insights(findings)
        executive = None
        if options.generate_executive_report:
            executive = await generator.generate_executive_report(findings, insights)

        result = AnalysisResult(
            file_names=(item.display_name,),
            file_types=(file_type,),
            analysis_timestamp=now_utc(),
            technical=findings,
            correlations=correlations,
            timeline=timeline,
            ai=insights,
            executive=executive,
        )
        self._audit(result, generator)
        return result

    async def analyze_files(self, evidences: Sequence[Evidence],
                            options: Optional[AnalysisOptions] = None) -> AnalysisResult:
        """Analyse files concurrently and merge the results.

        A file that fails is skipped and reported in ``failed_files`` under its
        display name, with ``#<position>`` appended when several inputs share
        that name. If every file fails, the first failure is raised. Cancelling
        this call cancels the per-file tasks it started and nothing else.
        """
        if not evidences:
            raise ValueError("analyze_files() needs at least one file")
        options = options or AnalysisOptions()
        inputs = [_as_input(e) for e in evidences]
        outcomes = await asyncio.gather(*(self.analyze_file(i, options) for i in inputs), return_exceptions=True)

        names = Counter(i.display_name for i in inputs)
        results: List[AnalysisResult] = []
        failed: Dict[str, str] = {}
        first_error: Optional[BaseException] = None
        for index, (item, outcome) in enumerate(zip(inputs, outcomes)):
            if isinstance(outcome, asyncio.CancelledError):
                raise outcome
            if isinstance(outcome, Exception):
                logger.error(f"Skipping {item.display_name}: {outcome}")
                # Inputs sharing a name are told apart by their position
                key = item.display_name if names[item.display_name] == 1 else f"{item.display_name}#{index}"
                failed[key] = str(outcome)
                first_error = first_error or outcome
                continue
            if isinstance(outcome, BaseException):
                raise outcome
            results.append(outcome)

        if not results:
            raise first_error
        merged = merge_all(results)
        if failed:
            merged = dataclasses.replace(merged, failed_files={**merged.failed_files, **failed})
        return merged

    def _audit(self, result: AnalysisResult, generator: InsightGenerator):
        if self.audit_logger is None:
            return
        t = result.technical
        self.audit_logger.info(
            f"file={','.join(result.file_names)} type={','.join(result.file_types)} "
            f"sha256={t.metadata.sha256} events={len(t.security_events)} iocs={len(t.detected_iocs)} "
            f"severity={result.ai.severity_score if result.ai else '-'} generator={generator.name}"
        )


async def analyze_paths(paths: Iterable[str], options: Optional[AnalysisOptions] = None,
                        engine: Optional[AnalysisEngine] = None) -> AnalysisResult:
    """Convenience wrapper: one file -> analyze_file, several -> analyze_files."""
    engine = engine or AnalysisEngine()
    items = list(paths)
    if len(items) == 1:
        return await engine.analyze_file(items[0], options)
    return await engine.analyze_files(items, options)
