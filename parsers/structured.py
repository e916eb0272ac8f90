# parsers/structured.py
"""CSV, JSON-lines and plain text logs.

This is the catch-all parser: it owns ``.csv``/``.json*`` and accepts any
``.log``/``.txt`` file that no specialised parser claimed first.
"""
from __future__ import annotations

import csv
import json
import logging
from typing import Any, Dict, Iterable, List, Optional, Tuple

import constants
from datamodels.findings import SecurityEvent, TechnicalFindings
from parsers.base import (
    LogParser, build_findings, extension, extract_timestamp, infer_severity,
    is_security_relevant, make_event, map_severity, parse_timestamp,
)
from parsers.iocs import IP_RE, IocCollector, is_valid_ip

logger = logging.getLogger(__name__)

# Raised CSV field limit for wide log exports
csv.field_size_limit(10 * 1024 * 1024)


def _pick(record: Dict[str, Any], names: List[str]) -> Optional[str]:
    """Value of the first known field present (header names compared case-insensitively)."""
    lowered = {str(k).strip().lower(): v for k, v in record.items() if k is not None}
    for name in names:
        value = lowered.get(name)
        if value is not None and str(value).strip():
            return str(value).strip()
    return None


def _flatten(record: Dict[str, Any]) -> Dict[str, str]:
    out: Dict[str, str] = {}
    for k, v in record.items():
        if k is None or str(k).strip() == "":
            continue
        if isinstance(v, (dict, list)):
            v = json.dumps(v, sort_keys=True)
        out[str(k).strip()] = "" if v is None else str(v)
    return out


def first_ip(text: str, include_private: bool = True) -> Optional[str]:
    for m in IP_RE.finditer(text or ""):
        if is_valid_ip(m.group(0), include_private):
            return m.group(0)
    return None


class CsvLogParser(LogParser):
    file_type = "CSV,LOG,TXT"
    priority = 10
    extensions = (".csv", ".json", ".jsonl", ".ndjson", ".log", ".txt")

    def claims(self, path: str) -> bool:
        return extension(path) in self.extensions

    def _parse(self, path: str) -> TechnicalFindings:
        ext = extension(path)
        with open(path, "r", encoding="utf-8", errors="replace", newline="") as f:
            content = f.read()

        iocs = self.new_collector()
        if ext == ".csv":
            events, raw, total = self._parse_csv(content, iocs)
            fmt = "CSV"
        elif ext in (".json", ".jsonl", ".ndjson") or content.lstrip().startswith("{"):
            events, raw, total = self._parse_json(content, iocs)
            fmt = "JSON"
        else:
            events, raw, total = self._parse_text(content, iocs)
            fmt = "TXT" if ext == ".txt" else "LOG"
        raw["Format"] = fmt
        return build_findings(path, events, iocs, raw, total_lines=total, file_format=fmt)

    # ---- structured records -------------------------------------------------

    def record_to_event(self, record: Dict[str, Any], source: str) -> Optional[SecurityEvent]:
        """One CSV row / JSON object -> event, or None when not security relevant."""
        attrs = _flatten(record)
        text = " ".join(attrs.values())
        explicit = _pick(record, constants.SEVERITY_FIELDS)
        severity = map_severity(explicit) if explicit else infer_severity(text)
        if not is_security_relevant(text) and not (explicit and severity != constants.SEVERITY_LOW):
            return None

        ts_value = _pick(record, constants.TIMESTAMP_FIELDS)
        timestamp = parse_timestamp(ts_value) if ts_value else None
        if timestamp is None:
            timestamp = extract_timestamp(text)

        description = _pick(record, constants.DESCRIPTION_FIELDS)
        if not description:
            description = " ".join(v for v in list(attrs.values())[:3] if v)

        if not any(k.lower() in constants.IP_FIELDS for k in attrs):
            ip = first_ip(text, self.include_private_ips)
            if ip:
                attrs["ip"] = ip

        return make_event(
            timestamp=timestamp,
            event_type=_pick(record, constants.EVENT_TYPE_FIELDS) or constants.DEFAULT_STRUCTURED_EVENT_TYPE,
            description=description,
            severity=severity,
            source=_pick(record, constants.SOURCE_FIELDS) or source,
            attributes=attrs,
        )

    def _records(self, records: Iterable[Dict[str, Any]], iocs: IocCollector, source: str) -> List[SecurityEvent]:
        events = []
        for record in records:
            iocs.feed_all(str(v) for v in record.values() if v is not None)
            ev = self.record_to_event(record, source)
            if ev is not None:
                events.append(ev)
        return events

    def _parse_csv(self, content: str, iocs: IocCollector) -> Tuple[List[SecurityEvent], Dict[str, Any], int]:
        lines = content.splitlines()
        if not any(ln.strip() for ln in lines):
            return [], {"Columns": [], "RowCount": 0}, 0
        reader = csv.DictReader(lines)
        rows = [row for row in reader if any((v or "").strip() for v in row.values() if isinstance(v, str))]
        events = self._records(rows, iocs, "CSV")
        return events, {"Columns": list(reader.fieldnames or []), "RowCount": len(rows)}, len(rows)

    def _parse_json(self, content: str, iocs: IocCollector) -> Tuple[List[SecurityEvent], Dict[str, Any], int]:
        records: List[Dict[str, Any]] = []
        invalid = 0
        stripped = content.strip()
        whole = None
        if stripped.startswith("["):
            try:
                whole = json.loads(stripped)
            except ValueError:
                whole = None
        if isinstance(whole, list):
            records = [r for r in whole if isinstance(r, dict)]
            invalid = len(whole) - len(records)
            total = len(whole)
        else:
            total = 0
            for line in content.splitlines():
                if not line.strip():
                    continue
                total += 1
                try:
                    obj = json.loads(line)
                except ValueError:
                    invalid += 1
                    continue
                if isinstance(obj, dict):
                    records.append(obj)
                else:
                    invalid += 1
        if invalid:
            logger.debug(f"Skipped {invalid} non-object JSON records")
        events = self._records(records, iocs, "JSON")
        return events, {"RecordCount": len(records), "InvalidRecords": invalid}, total

    # ---- free text ------------------------------------------------------------

    def _parse_text(self, content: str, iocs: IocCollector) -> Tuple[List[SecurityEvent], Dict[str, Any], int]:
        events: List[SecurityEvent] = []
        lines = content.splitlines()
        for number, line in enumerate(lines, start=1):
            if not line.strip():
                continue
            iocs.feed(line)
            if not is_security_relevant(line):
                continue
            text = line.strip()
            description = text if len(text) <= constants.TEXT_DESCRIPTION_LIMIT else \
                text[:constants.TEXT_DESCRIPTION_LIMIT] + "..."
            attrs = {"LineNumber": str(number), "FullLine": text}
            ip = first_ip(text, self.include_private_ips)
            if ip:
                attrs["ip"] = ip
            events.append(make_event(
                timestamp=extract_timestamp(text),
                event_type=constants.TEXT_EVENT_TYPE,
                description=description,
                severity=infer_severity(text),
                source="Text Log",
                attributes=attrs,
            ))
        return events, {"LineCount": len(lines), "RelevantLines": len(events)}, len(lines)
