# parsers/syslog.py
from __future__ import annotations

import re
from collections import Counter
from typing import List

import constants
from datamodels.findings import SecurityEvent, TechnicalFindings
from parsers.base import (
    LineSniffingParser, build_findings, infer_severity, is_security_relevant,
    make_event, now_utc, parse_timestamp,
)
from parsers.structured import first_ip

SYSLOG_RE = re.compile(
    r"^(?P<month>\w{3})\s+(?P<day>\d{1,2})\s+(?P<time>\d{2}:\d{2}:\d{2})\s+"
    r"(?P<host>\S+)\s+(?P<service>[^:]+):\s+(?P<msg>.*)$"
)
_PID_RE = re.compile(r"^(?P<name>[^\[]+)\[(?P<pid>\d+)\]$")
_USER_RE = re.compile(r"\b(?:for|user)\s+(?:invalid user\s+)?(?P<user>[\w.\-]+)", re.IGNORECASE)


class SyslogParser(LineSniffingParser):
    """BSD syslog lines (``Mon DD HH:MM:SS host service[pid]: message``).

    The year is not part of the format; the current year is assumed.
    """

    file_type = "SYSLOG"
    priority = 65
    extensions = (".syslog",)
    line_pattern = SYSLOG_RE

    def _parse(self, path: str) -> TechnicalFindings:
        iocs = self.new_collector()
        events: List[SecurityEvent] = []
        services: Counter = Counter()
        hosts: Counter = Counter()
        total = unmatched = 0
        year = now_utc().year

        for number, line in self.iter_lines(path):
            if not line.strip():
                continue
            total += 1
            iocs.feed(line)
            m = SYSLOG_RE.match(line)
            if not m:
                unmatched += 1
                continue
            service = m.group("service").strip()
            pm = _PID_RE.match(service)
            attrs = {"host": m.group("host"), "service": pm.group("name") if pm else service}
            if pm:
                attrs["pid"] = pm.group("pid")
            services[attrs["service"]] += 1
            hosts[attrs["host"]] += 1

            msg = m.group("msg")
            if not is_security_relevant(msg):
                continue
            ip = first_ip(msg, self.include_private_ips)
            if ip:
                attrs["ip"] = ip
            um = _USER_RE.search(msg)
            if um:
                attrs["user"] = um.group("user")
            attrs["LineNumber"] = str(number)

            ts = parse_timestamp(f"{m.group('month')} {m.group('day')} {m.group('time')}", default_year=year)
            events.append(make_event(
                timestamp=ts,
                event_type=f"Syslog-{attrs['service']}",
                description=msg[:constants.SYSLOG_DESCRIPTION_LIMIT],
                severity=infer_severity(msg),
                source=m.group("host"),
                attributes=attrs,
            ))

        raw = {
            "Format": "SYSLOG",
            "Services": dict(services.most_common(20)),
            "Hosts": dict(hosts.most_common(20)),
            "UnparsedLines": unmatched,
        }
        return build_findings(path, events, iocs, raw, total_lines=total, file_format="SYSLOG")
