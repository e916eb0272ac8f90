# parsers/weblog.py
from __future__ import annotations

import re
from collections import Counter
from datetime import datetime
from typing import List, Optional
from urllib.parse import unquote

from datamodels.findings import SecurityEvent, TechnicalFindings
from parsers.base import LineSniffingParser, build_findings, looks_malicious, make_event, parse_timestamp

ACCESS_RE = re.compile(
    r'^(?P<ip>\S+) \S+ (?P<user>\S+) \[(?P<time>[^\]]+)\] '
    r'"(?P<method>\S+) (?P<url>\S+)[^"]*" (?P<status>\d{3})(?: (?P<size>\d+|-))?'
    r'(?: "(?P<referer>[^"]*)" "(?P<agent>[^"]*)")?'
)
_SCANNER_AGENTS = re.compile(r"sqlmap|nikto|nmap|masscan|acunetix|nessus|dirbuster|gobuster|wpscan", re.I)
_SENSITIVE_PATHS = re.compile(r"/(?:wp-admin|wp-login|phpmyadmin|\.env|\.git|admin|login)\b", re.I)


def _severity_for(status: int, malicious: bool) -> str:
    if malicious:
        return "High"
    if status in (401, 403):
        return "Medium"
    if status >= 500:
        return "Medium"
    return "Low"


class WebServerLogParser(LineSniffingParser):
    """Apache/Nginx common and combined access logs.

    A request becomes an event when it failed (4xx/5xx), targets a sensitive
    path, carries an injection or traversal probe, or comes from a known
    scanner user agent.
    """

    file_type = "WEBLOG"
    priority = 70
    extensions = (".access",)
    line_pattern = ACCESS_RE

    def _parse(self, path: str) -> TechnicalFindings:
        iocs = self.new_collector()
        events: List[SecurityEvent] = []
        statuses: Counter = Counter()
        clients: Counter = Counter()
        total = 0

        for number, line in self.iter_lines(path):
            if not line.strip():
                continue
            total += 1
            m = ACCESS_RE.match(line)
            if not m:
                iocs.feed(line)
                continue
            ip, url, status = m.group("ip"), m.group("url"), int(m.group("status"))
            iocs.feed(ip)
            statuses[str(status)] += 1
            clients[ip] += 1

            decoded = unquote(url)
            agent = m.group("agent") or ""
            malicious = looks_malicious(decoded)
            scanner = bool(_SCANNER_AGENTS.search(agent))
            sensitive = bool(_SENSITIVE_PATHS.search(decoded))
            if status < 400 and not (malicious or scanner or sensitive):
                continue

            ts: Optional[datetime] = parse_timestamp(m.group("time"))
            attrs = {"ip": ip, "url": url, "status": str(status), "method": m.group("method"),
                     "LineNumber": str(number)}
            if agent:
                attrs["user_agent"] = agent
            if m.group("user") and m.group("user") != "-":
                attrs["user"] = m.group("user")

            if malicious:
                event_type, category = "Web Attack", "injection"
            elif scanner:
                event_type, category = "Web Scan", "network"
            elif status in (401, 403):
                event_type, category = "Web Access Denied", "auth"
            else:
                event_type, category = "Web Request", "network"
            events.append(make_event(
                timestamp=ts,
                event_type=event_type,
                description=f"{m.group('method')} {url} returned {status} for {ip}",
                severity=_severity_for(status, malicious or scanner),
                source="Web Server",
                attributes=attrs,
                category=category,
                is_malicious=malicious,
            ))

        raw = {
            "Format": "WEBLOG",
            "StatusCodes": dict(statuses),
            "TopClients": dict(clients.most_common(10)),
            "Requests": total,
        }
        return build_findings(path, events, iocs, raw, total_lines=total, file_format="WEBLOG")
