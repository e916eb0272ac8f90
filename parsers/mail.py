# parsers/mail.py
from __future__ import annotations

import re
from collections import Counter
from typing import List

from datamodels.findings import SecurityEvent, TechnicalFindings
from parsers.base import (
    LineSniffingParser, build_findings, extract_timestamp, infer_severity,
    is_security_relevant, make_event,
)
from parsers.structured import first_ip

MAIL_LINE_RE = re.compile(
    r"\b(?:postfix|sendmail|dovecot|exim|smtpd?)(?:/\w+)?\[\d+\]|\bfrom=<|\bto=<|\bstatus=(?:sent|bounced|deferred)"
)
_FROM_RE = re.compile(r"from=<(?P<addr>[^>]*)>")
_TO_RE = re.compile(r"to=<(?P<addr>[^>]*)>")
_STATUS_RE = re.compile(r"status=(?P<status>\w+)")
_ATTACHMENT_RE = re.compile(r"\b[\w\-]+\.(?:exe|scr|js|vbs|bat|cmd|hta|jar|docm|xlsm)\b", re.I)

MAIL_RULES = [
    (re.compile(r"SASL \w+ authentication failed|auth failed|authentication failure", re.I),
     "Mail Authentication Failure", "Medium", "auth"),
    (re.compile(r"Relay access denied|relaying denied", re.I), "Relay Attempt", "Medium", "network"),
    (re.compile(r"\b(?:spam|phish\w*|blacklisted|blocklisted|RBL|DNSBL)\b", re.I), "Spam/Phishing", "Medium", "malware"),
    (re.compile(r"\b(?:virus|malware|infected)\b", re.I), "Malware Attachment", "High", "malware"),
]


class MailServerLogParser(LineSniffingParser):
    file_type = "MAIL"
    priority = 45
    extensions = (".maillog",)
    line_pattern = MAIL_LINE_RE

    def _parse(self, path: str) -> TechnicalFindings:
        iocs = self.new_collector()
        events: List[SecurityEvent] = []
        statuses: Counter = Counter()
        senders: Counter = Counter()
        total = 0

        for number, line in self.iter_lines(path):
            if not line.strip():
                continue
            total += 1
            iocs.feed(line)
            fm, tm, sm = _FROM_RE.search(line), _TO_RE.search(line), _STATUS_RE.search(line)
            if fm and fm.group("addr"):
                senders[fm.group("addr").lower()] += 1
            if sm:
                statuses[sm.group("status")] += 1

            event_type = severity = category = None
            for pattern, etype, sev, cat in MAIL_RULES:
                if pattern.search(line):
                    event_type, severity, category = etype, sev, cat
                    break
            attachment = _ATTACHMENT_RE.search(line)
            if event_type is None and attachment:
                event_type, severity, category = "Executable Attachment", "High", "malware"
            if event_type is None:
                if not is_security_relevant(line) and not (sm and sm.group("status") == "bounced"):
                    continue
                event_type, severity, category = "Mail Event", infer_severity(line), None

            attrs = {"LineNumber": str(number)}
            if fm:
                attrs["from"] = fm.group("addr")
            if tm:
                attrs["to"] = tm.group("addr")
            if sm:
                attrs["status"] = sm.group("status")
            if attachment:
                attrs["attachment"] = attachment.group(0)
            ip = first_ip(line, self.include_private_ips)
            if ip:
                attrs["ip"] = ip
            events.append(make_event(
                timestamp=extract_timestamp(line),
                event_type=event_type,
                description=line.strip()[:300],
                severity=severity,
                source="Mail Server",
                attributes=attrs,
                category=category,
                is_malicious=True if event_type in ("Malware Attachment", "Executable Attachment") else None,
            ))

        raw = {"Format": "MAIL", "DeliveryStatus": dict(statuses), "TopSenders": dict(senders.most_common(10))}
        return build_findings(path, events, iocs, raw, total_lines=total, file_format="MAIL")
