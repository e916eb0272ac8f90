# analysis/timeline.py
from __future__ import annotations

from typing import Iterable, List

from datamodels.findings import FileMetadata, SecurityEvent, Timeline, TimelineEvent
from analysis.normalizer import to_utc

FALLBACK_TEXT = "Evidence file created"
FALLBACK_SOURCE = "File System"


def build_timeline(events: Iterable[SecurityEvent], metadata: FileMetadata) -> Timeline:
    """Chronological view of the events; never empty.

    With no events a single entry at the file's creation time is synthesized.
    """
    entries: List[TimelineEvent] = [
        TimelineEvent(timestamp=to_utc(ev.timestamp), event=ev.description, source=ev.event_type, confidence="High")
        for ev in events
    ]
    if not entries:
        entries = [TimelineEvent(timestamp=to_utc(metadata.created), event=FALLBACK_TEXT,
                                 source=FALLBACK_SOURCE, confidence="High")]
    return sort_entries(entries)


def sort_entries(entries: Iterable[TimelineEvent]) -> Timeline:
    ordered = sorted(entries, key=lambda e: e.timestamp)
    return Timeline(events=tuple(ordered), first_activity=ordered[0].timestamp, last_activity=ordered[-1].timestamp)
