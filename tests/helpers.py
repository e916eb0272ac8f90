from datetime import datetime, timedelta, timezone

from datamodels.findings import (
    AIInsights, AnalysisResult, FileMetadata, SecurityEvent, TechnicalFindings,
)
from analysis.timeline import build_timeline

BASE_TS = datetime(2024, 3, 1, 10, 0, 0, tzinfo=timezone.utc)

FAILED_LOGIN_CSV = (
    "timestamp,event_type,description,source_ip\n"
    "2024-03-01 10:15:01,Authentication,failed login for admin,10.0.0.5\n"
    "2024-03-01 10:15:20,Authentication,failed login for root,10.0.0.5\n"
    "2024-03-01 10:15:45,Authentication,failed login for guest,10.0.0.5\n"
)


def ev(description="failed login", severity="Low", event_type="Log Entry", minutes=0,
       category="", malicious=False, source="test", **attributes):
    return SecurityEvent(
        timestamp=BASE_TS + timedelta(minutes=minutes),
        event_type=event_type,
        description=description,
        severity=severity,
        priority=1,
        source=source,
        attributes=dict(attributes),
        category=category,
        is_malicious=malicious,
    )


def metadata(size=100, minutes=0, sha="ab" * 32):
    ts = BASE_TS + timedelta(minutes=minutes)
    return FileMetadata(size=size, created=ts, modified=ts, sha256=sha, mime_type="text/plain")


def findings(events=(), iocs=(), raw=None, size=100, fmt="LOG"):
    events = tuple(events)
    by_type = {}
    for e in events:
        by_type[e.event_type] = by_type.get(e.event_type, 0) + 1
    by_cat = {}
    for i in iocs:
        cat = i.split(":", 1)[0]
        by_cat[cat] = by_cat.get(cat, 0) + 1
    return TechnicalFindings(
        raw_data=dict(raw or {}),
        security_events=events,
        detected_iocs=tuple(iocs),
        events_by_type=by_type,
        iocs_by_category=by_cat,
        metadata=metadata(size=size),
        total_lines=len(events),
        file_format=fmt,
        processed_at=BASE_TS,
    )


def result(name, tf, score=None, actions=("watch",), minutes=0):
    ai = None
    if score is not None:
        ai = AIInsights(attack_vector=f"vector-{name}", threat_assessment=f"threat-{name}",
                        severity_score=score, recommended_actions=tuple(actions),
                        business_impact=f"impact-{name}")
    return AnalysisResult(
        file_names=(name,),
        file_types=("LOG",),
        analysis_timestamp=BASE_TS + timedelta(minutes=minutes),
        technical=tf,
        correlations=(),
        timeline=build_timeline(tf.security_events, tf.metadata),
        ai=ai,
        executive=None,
    )
