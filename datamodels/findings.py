# datamodels/findings.py
from __future__ import annotations
from dataclasses import dataclass, field, fields, is_dataclass
from datetime import datetime
from typing import Any, Dict, Optional, Tuple

SEVERITY_LEVELS = ("Low", "Medium", "High", "Critical")
RISK_LEVELS = ("LOW", "MEDIUM", "HIGH")


@dataclass(frozen=True)
class FileMetadata:
    size: int                       # bytes
    created: datetime               # UTC-aware
    modified: datetime              # UTC-aware
    sha256: str                     # lowercase hex digest of the content
    mime_type: str = "application/octet-stream"


@dataclass(frozen=True)
class SecurityEvent:
    timestamp: datetime
    event_type: str                 # e.g. "Log Entry", "WinEvent-4625", "Web Request"
    description: str
    severity: str = "Low"           # Low|Medium|High|Critical
    priority: int = 1               # 1 (low) .. 4 (critical), derived from severity
    source: str = ""
    attributes: Dict[str, str] = field(default_factory=dict)
    category: str = ""              # auth, network, malware, injection, ...
    is_malicious: bool = False


@dataclass(frozen=True)
class TechnicalFindings:
    raw_data: Dict[str, Any]
    security_events: Tuple[SecurityEvent, ...]
    detected_iocs: Tuple[str, ...]
    events_by_type: Dict[str, int]
    iocs_by_category: Dict[str, int]
    metadata: FileMetadata
    total_lines: int = 0
    file_format: str = ""
    processed_at: Optional[datetime] = None


@dataclass(frozen=True)
class CorrelatedGroup:
    key: str                        # "IP:<value>" or "TIME:<iso minute>"
    events: Tuple[SecurityEvent, ...]


@dataclass(frozen=True)
class TimelineEvent:
    timestamp: datetime
    event: str
    source: str
    confidence: str = "High"


@dataclass(frozen=True)
class Timeline:
    events: Tuple[TimelineEvent, ...]
    first_activity: datetime
    last_activity: datetime


@dataclass(frozen=True)
class AIInsights:
    attack_vector: str
    threat_assessment: str
    severity_score: int             # 1..10
    recommended_actions: Tuple[str, ...]
    business_impact: str
    model_used: str = "rules"


@dataclass(frozen=True)
class ExecutiveReport:
    summary: str
    key_findings: str
    risk_level: str                 # LOW|MEDIUM|HIGH
    immediate_actions: str
    long_term_recommendations: str


@dataclass(frozen=True)
class AnalysisResult:
    file_names: Tuple[str, ...]
    file_types: Tuple[str, ...]
    analysis_timestamp: datetime
    technical: TechnicalFindings
    correlations: Tuple[CorrelatedGroup, ...] = ()
    timeline: Optional[Timeline] = None
    ai: Optional[AIInsights] = None
    executive: Optional[ExecutiveReport] = None
    failed_files: Dict[str, str] = field(default_factory=dict)


def to_serializable(obj: Any) -> Any:
    """Convert result objects into plain dicts/lists for JSON output.

    Datetimes become ISO-8601 strings; tuples become lists. Anything that is
    already a plain value is returned as-is.
    """
    if is_dataclass(obj) and not isinstance(obj, type):
        return {f.name: to_serializable(getattr(obj, f.name)) for f in fields(obj)}
    if isinstance(obj, datetime):
        return obj.isoformat()
    if isinstance(obj, dict):
        return {str(k): to_serializable(v) for k, v in obj.items()}
    if isinstance(obj, (list, tuple, set)):
        return [to_serializable(v) for v in obj]
    return obj
