# analysis/correlation.py
from __future__ import annotations

from datetime import datetime
from typing import Dict, Iterable, List, Tuple

from datamodels.findings import CorrelatedGroup, SecurityEvent

MIN_GROUP_SIZE = 2


def minute_bucket(ts: datetime) -> datetime:
    return ts.replace(second=0, microsecond=0)


def group_by_ip(events: List[SecurityEvent]) -> List[CorrelatedGroup]:
    buckets: Dict[str, List[SecurityEvent]] = {}
    for ev in events:
        ip = ev.attributes.get("ip")
        if ip:
            buckets.setdefault(ip, []).append(ev)
    return [CorrelatedGroup(key=f"IP:{ip}", events=tuple(members))
            for ip, members in buckets.items() if len(members) >= MIN_GROUP_SIZE]


def group_by_minute(events: List[SecurityEvent]) -> List[CorrelatedGroup]:
    buckets: Dict[datetime, List[SecurityEvent]] = {}
    for ev in events:
        buckets.setdefault(minute_bucket(ev.timestamp), []).append(ev)
    return [CorrelatedGroup(key=f"TIME:{minute.isoformat()}", events=tuple(members))
            for minute, members in buckets.items() if len(members) >= MIN_GROUP_SIZE]


def correlate(events: Iterable[SecurityEvent]) -> Tuple[CorrelatedGroup, ...]:
    """IP groups followed by minute groups; each keeps input order and has >= 2 events.

    Expects normalized events (``ip`` attribute key, UTC timestamps).
    """
    materialized = list(events)
    return tuple(group_by_ip(materialized) + group_by_minute(materialized))
