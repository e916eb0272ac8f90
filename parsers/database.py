# parsers/database.py
from __future__ import annotations

import re
from collections import Counter
from typing import List, Optional, Tuple

from datamodels.findings import SecurityEvent, TechnicalFindings
from parsers.base import (
    LineSniffingParser, build_findings, extract_timestamp, infer_severity,
    is_security_relevant, make_event,
)
from parsers.structured import first_ip

# PostgreSQL "[pid] LEVEL:  msg", MySQL "thread [Warning]" or "[MY-nnnnnn]", Oracle "ORA-nnnnn", MSSQL "Login failed"
DB_LINE_RE = re.compile(
    r"\[\d+\](?:-\d+)?\s+(?:\S+\s+)?(?:LOG|ERROR|FATAL|PANIC|STATEMENT|WARNING|DETAIL):\s|\bpostgres(?:ql)?\[\d+\]"
    r"|\s\d+\s+\[(?:Note|Warning|ERROR|System)\]|\[MY-\d{6}\]"
    r"|\bORA-\d{5}\b|\bAccess denied for user\b|\bLogin failed for user\b"
)

# (pattern, event type, severity, category, malicious)
DB_RULES: List[Tuple[re.Pattern, str, str, str, bool]] = [
    (re.compile(r"union\s+(?:all\s+)?select|\bor\s+1\s*=\s*1\b|xp_cmdshell|;\s*drop\s+table|sleep\(\d+\)|benchmark\(", re.I),
     "SQL Injection Attempt", "High", "injection", True),
    (re.compile(r"password authentication failed|Access denied for user|Login failed for user|ORA-01017", re.I),
     "Database Authentication Failure", "Medium", "auth", False),
    (re.compile(r"\bgrant\s+all\b|\balter\s+(?:user|role)\b.*\b(?:superuser|dba)\b|\bcreate\s+user\b", re.I),
     "Database Privilege Change", "Medium", "privilege", False),
    (re.compile(r"\b(?:drop|truncate)\s+(?:table|database)\b", re.I),
     "Destructive Statement", "High", "", False),
    (re.compile(r"\bcopy\b.+\bto\b|\binto\s+outfile\b|\bselect\b.+\bfrom\b.+\b(?:users|passwords|credentials)\b", re.I),
     "Bulk Data Export", "Medium", "exfiltration", False),
]
_USER_RE = re.compile(r"user\s+['\"]?(?P<user>[\w.\-@]+)['\"]?", re.I)


def _classify(line: str) -> Optional[Tuple[str, str, str, bool]]:
    for pattern, event_type, severity, category, malicious in DB_RULES:
        if pattern.search(line):
            return event_type, severity, category, malicious
    return None


class DatabaseLogParser(LineSniffingParser):
    file_type = "DB"
    priority = 50
    extensions = (".dblog",)
    line_pattern = DB_LINE_RE

    def _parse(self, path: str) -> TechnicalFindings:
        iocs = self.new_collector()
        events: List[SecurityEvent] = []
        kinds: Counter = Counter()
        total = 0

        for number, line in self.iter_lines(path):
            if not line.strip():
                continue
            total += 1
            iocs.feed(line)
            rule = _classify(line)
            if rule is None and not is_security_relevant(line):
                continue
            if rule is not None:
                event_type, severity, category, malicious = rule
            else:
                event_type, severity, category, malicious = "Database Event", infer_severity(line), None, None
            kinds[event_type] += 1

            attrs = {"LineNumber": str(number)}
            ip = first_ip(line, self.include_private_ips)
            if ip:
                attrs["ip"] = ip
            um = _USER_RE.search(line)
            if um:
                attrs["user"] = um.group("user")
            events.append(make_event(
                timestamp=extract_timestamp(line),
                event_type=event_type,
                description=line.strip()[:300],
                severity=severity,
                source="Database",
                attributes=attrs,
                category=category or None,
                is_malicious=malicious,
            ))

        raw = {"Format": "DB", "Findings": dict(kinds)}
        return build_findings(path, events, iocs, raw, total_lines=total, file_format="DB")
