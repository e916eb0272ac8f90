# parsers/windows_event.py
"""Windows event records.

XML exports (``wevtutil qe /f:xml`` or Event Viewer "Save as XML") are decoded
record by record. Binary ``.evtx``/``.evt`` containers are not decoded; they
yield a single "file detected" event plus whatever IOCs can be recovered
from embedded UTF-16 strings, and ``raw_data["partial"]`` is set.
"""
from __future__ import annotations

import logging
import os
import re
import xml.etree.ElementTree as ET
from collections import Counter
from datetime import datetime
from typing import Dict, List, Optional, Tuple

import constants
from datamodels.findings import SecurityEvent, TechnicalFindings
from parsers.base import (
    LogParser, as_utc, build_findings, extension, make_event, now_utc, parse_timestamp, read_head,
)
from parsers.iocs import IocCollector, is_valid_ip

logger = logging.getLogger(__name__)

LEVEL_SEVERITY = {"1": "Critical", "2": "High", "3": "Medium", "4": "Low", "5": "Low", "0": "Low"}

# Security-relevant event id families: name -> (ids, severity, category)
SECURITY_PATTERNS: Dict[str, Tuple[Tuple[str, ...], str, str]] = {
    "LoginAttacks": (("4625", "4771", "4776"), "Medium", "auth"),
    "PrivilegeEscalation": (("4672", "4673", "4674"), "High", "privilege"),
    "PersistenceMechanisms": (("7045", "4698", "4699"), "Medium", "persistence"),
    "LateralMovement": (("4648", "4624"), "Medium", "network"),
    "DataExfiltration": (("5156", "5157", "5158"), "Medium", "exfiltration"),
    "LogTampering": (("1102", "1100", "1101"), "Critical", "tampering"),
}
_PATTERN_BY_ID = {eid: name for name, (ids, _, _) in SECURITY_PATTERNS.items() for eid in ids}

_IP_FIELDS = ("IpAddress", "SourceAddress", "SourceNetworkAddress", "ClientAddress", "DestAddress")
_USER_FIELDS = ("TargetUserName", "SubjectUserName", "AccountName")

EVTX_MAGIC = b"ElfFile\x00"
EVTX_RECORD_MAGIC = b"\x2a\x2a\x00\x00"
EVT_MAGIC = b"LfLe"
_UTF16_STRING_RE = re.compile(rb"(?:[\x20-\x7e]\x00){6,}")


def _local(tag: str) -> str:
    return tag.rsplit("}", 1)[-1]


def _child(elem: ET.Element, name: str) -> Optional[ET.Element]:
    for c in elem:
        if _local(c.tag) == name:
            return c
    return None


class WindowsEventLogParser(LogParser):
    file_type = "EVTX,EVT,XML"
    priority = 95
    extensions = (".evtx", ".evt")

    def claims(self, path: str) -> bool:
        ext = extension(path)
        if ext in self.extensions:
            return True
        return ext == ".xml" and "event" in os.path.basename(path).lower()

    def _parse(self, path: str) -> TechnicalFindings:
        head = read_head(path, 16)
        binary_ext = extension(path) in self.extensions and not head.lstrip().startswith(b"<")
        if head.startswith(EVTX_MAGIC) or head[4:8] == EVT_MAGIC or binary_ext:
            return self._parse_binary(path, head)

        iocs = self.new_collector()
        try:
            tree = ET.parse(path)
        except ET.ParseError as e:
            logger.warning(f"Malformed event XML in {path}: {e}")
            return self._detected_only(path, iocs, reason=f"XML parse error: {e}")

        root = tree.getroot()
        records = [root] if _local(root.tag) == "Event" else [e for e in root.iter() if _local(e.tag) == "Event"]
        events: List[SecurityEvent] = []
        for record in records:
            ev = self._record_to_event(record, iocs)
            if ev is not None:
                events.append(ev)

        events.extend(self._pattern_events(events))
        if not events and not records:
            return self._detected_only(path, iocs, reason="no Event records found")

        raw = {
            "Format": "EVTX-XML",
            "RecordCount": len(records),
            "EventIds": dict(Counter(ev.attributes.get("EventID", "") for ev in events
                                     if ev.event_type.startswith("WinEvent-")).most_common(20)),
        }
        return build_findings(path, events, iocs, raw, total_lines=len(records), file_format="XML")

    def _record_to_event(self, record: ET.Element, iocs: IocCollector) -> Optional[SecurityEvent]:
        system = _child(record, "System")
        if system is None:
            return None
        values: Dict[str, str] = {}
        for name in ("EventID", "Level", "Computer", "Channel", "EventRecordID"):
            node = _child(system, name)
            if node is not None and node.text:
                values[name] = node.text.strip()
        provider = _child(system, "Provider")
        created = _child(system, "TimeCreated")
        ts: Optional[datetime] = None
        if created is not None and created.get("SystemTime"):
            ts = parse_timestamp(created.get("SystemTime"))

        data: Dict[str, str] = {}
        parts: List[str] = []
        event_data = _child(record, "EventData")
        if event_data is not None:
            for i, node in enumerate(event_data):
                text = (node.text or "").strip()
                if not text:
                    continue
                parts.append(text)
                data[node.get("Name") or f"Data{i}"] = text
        for text in parts:
            iocs.feed(text)

        event_id = values.get("EventID", "0")
        pattern = _PATTERN_BY_ID.get(event_id)
        severity = LEVEL_SEVERITY.get(values.get("Level", ""), "Medium")
        category = None
        if pattern:
            _, pattern_severity, category = SECURITY_PATTERNS[pattern]
            if pattern_severity in ("High", "Critical"):
                severity = pattern_severity

        attrs = {"EventID": event_id}
        attrs.update({k: v for k, v in values.items() if k != "EventID"})
        if provider is not None and provider.get("Name"):
            attrs["Provider"] = provider.get("Name")
        for key in _IP_FIELDS:
            if key in data and is_valid_ip(data[key], self.include_private_ips):
                attrs["ip"] = data[key]
                break
        for key in _USER_FIELDS:
            if data.get(key) and data[key] != "-":
                attrs["user"] = data[key]
                break

        description = " | ".join(parts) or f"Event {event_id} from {attrs.get('Provider', 'unknown provider')}"
        return make_event(
            timestamp=ts,
            event_type=f"WinEvent-{event_id}",
            description=description[:constants.WINDOWS_DESCRIPTION_LIMIT],
            severity=severity,
            source=values.get("Computer") or attrs.get("Provider", "Windows"),
            attributes=attrs,
            category=category,
        )

    def _pattern_events(self, events: List[SecurityEvent]) -> List[SecurityEvent]:
        """Summary events per matched security pattern, plus one high-risk marker."""
        by_pattern: Dict[str, List[SecurityEvent]] = {}
        for ev in events:
            pattern = _PATTERN_BY_ID.get(ev.attributes.get("EventID", ""))
            if pattern:
                by_pattern.setdefault(pattern, []).append(ev)

        out: List[SecurityEvent] = []
        for name, members in by_pattern.items():
            _, severity, category = SECURITY_PATTERNS[name]
            out.append(make_event(
                timestamp=min(as_utc(ev.timestamp) for ev in members),
                event_type=f"SecurityPattern-{name}",
                description=f"Detected {len(members)} event(s) matching {name}",
                severity=severity,
                source="Pattern Analysis",
                attributes={"pattern": name, "count": str(len(members))},
                category=category,
            ))

        critical = sum(1 for ev in events + out if ev.severity == "Critical")
        high = sum(1 for ev in events + out if ev.severity == "High")
        if critical > 0 or high > 5:
            out.append(make_event(
                timestamp=max(as_utc(ev.timestamp) for ev in events) if events else None,
                event_type="HighRiskActivity",
                description=f"High risk activity: {critical} critical and {high} high severity events",
                severity="Critical",
                source="Pattern Analysis",
                attributes={"critical": str(critical), "high": str(high)},
            ))
        return out

    def _parse_binary(self, path: str, head: bytes) -> TechnicalFindings:
        iocs = self.new_collector()
        with open(path, "rb") as f:
            blob = f.read()
        for m in _UTF16_STRING_RE.finditer(blob):
            iocs.feed(m.group(0).decode("utf-16-le", errors="ignore"))
        fmt = "EVTX" if head.startswith(EVTX_MAGIC) else "EVT"
        return self._detected_only(
            path, iocs, reason="binary container not decoded",
            extra={"Format": fmt, "EstimatedRecords": blob.count(EVTX_RECORD_MAGIC),
                   "ValidHeader": head.startswith(EVTX_MAGIC) or head[4:8] == EVT_MAGIC},
        )

    def _detected_only(self, path: str, iocs: IocCollector, reason: str, extra: Optional[dict] = None) -> TechnicalFindings:
        event = make_event(
            timestamp=now_utc(),
            event_type="FileDetected",
            description=f"Windows event log {os.path.basename(path)} detected ({reason})",
            severity="Low",
            source="Windows",
            attributes={"reason": reason},
        )
        raw = {"Format": "EVTX", "partial": True, "PartialReason": reason}
        raw.update(extra or {})
        return build_findings(path, [event], iocs, raw, total_lines=0, file_format=raw["Format"])
