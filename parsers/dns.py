# parsers/dns.py
from __future__ import annotations

import math
import re
from collections import Counter
from typing import List

from datamodels.findings import SecurityEvent, TechnicalFindings
from parsers.base import LineSniffingParser, build_findings, extract_timestamp, make_event

# BIND query log, dnsmasq and generic "query: name IN TYPE" records
DNS_LINE_RE = re.compile(
    r"\bquery(?:\[\w+\])?:?\s+\S+|\bclient\s+(?:@\S+\s+)?\d+\.\d+\.\d+\.\d+#\d+|\bNXDOMAIN\b|\bIN\s+(?:A|AAAA|TXT|MX|CNAME|ANY|PTR)\b"
)
_CLIENT_RE = re.compile(r"(?:client\s+(?:@\S+\s+)?|from\s+)(?P<ip>\d{1,3}(?:\.\d{1,3}){3})")
_QUERY_RE = re.compile(
    r"query(?:\[(?P<qtype1>\w+)\])?:?\s+\(?(?P<name>[A-Za-z0-9_.\-]+\.[A-Za-z]{2,})\)?"
    r"(?:\s+IN\s+(?P<qtype2>\w+))?",
    re.IGNORECASE,
)
SUSPICIOUS_TLDS = {"xyz", "top", "tk", "ml", "ga", "cf", "gq", "pw", "onion", "bit"}

# Subdomain labels longer than this, or this random, look like tunnelling
TUNNEL_LABEL_LENGTH = 40
TUNNEL_ENTROPY = 4.0
NXDOMAIN_BURST = 20


def _entropy(text: str) -> float:
    if not text:
        return 0.0
    counts = Counter(text)
    n = len(text)
    return -sum(c / n * math.log2(c / n) for c in counts.values())


class DnsLogParser(LineSniffingParser):
    file_type = "DNS"
    priority = 40
    extensions = (".dnslog",)
    line_pattern = DNS_LINE_RE

    def _parse(self, path: str) -> TechnicalFindings:
        iocs = self.new_collector()
        events: List[SecurityEvent] = []
        qtypes: Counter = Counter()
        nx_by_client: Counter = Counter()
        domains: Counter = Counter()
        total = 0

        for number, line in self.iter_lines(path):
            if not line.strip():
                continue
            total += 1
            iocs.feed(line)
            qm = _QUERY_RE.search(line)
            cm = _CLIENT_RE.search(line)
            client = cm.group("ip") if cm else ""
            if not qm:
                continue
            name = qm.group("name").lower().rstrip(".")
            qtype = (qm.group("qtype1") or qm.group("qtype2") or "A").upper()
            qtypes[qtype] += 1
            domains[name] += 1
            nx = "NXDOMAIN" in line
            if nx and client:
                nx_by_client[client] += 1

            labels = name.split(".")
            longest = max(labels[:-2] or [""], key=len)
            reasons = []
            if len(longest) >= TUNNEL_LABEL_LENGTH or (len(longest) >= 16 and _entropy(longest) >= TUNNEL_ENTROPY):
                reasons.append("possible DNS tunnelling")
            if labels[-1] in SUSPICIOUS_TLDS:
                reasons.append(f"suspicious TLD .{labels[-1]}")
            if qtype in ("TXT", "ANY") and len(longest) >= 16:
                reasons.append(f"{qtype} query with long label")
            if not reasons:
                continue

            attrs = {"query": name, "qtype": qtype, "LineNumber": str(number)}
            if client:
                attrs["ip"] = client
            tunnelling = "possible DNS tunnelling" in reasons
            events.append(make_event(
                timestamp=extract_timestamp(line),
                event_type="DNS Tunnelling" if tunnelling else "Suspicious DNS Query",
                description=f"{client or 'client'} queried {name} ({qtype}): {', '.join(reasons)}",
                severity="High" if tunnelling else "Medium",
                source="DNS",
                attributes=attrs,
                category="exfiltration" if tunnelling else "network",
                is_malicious=False,
            ))

        for client, count in nx_by_client.items():
            if count >= NXDOMAIN_BURST:
                events.append(make_event(
                    timestamp=None,
                    event_type="NXDOMAIN Burst",
                    description=f"{client} received {count} NXDOMAIN answers (possible DGA activity)",
                    severity="Medium",
                    source="DNS",
                    attributes={"ip": client, "nxdomain_count": str(count)},
                    category="malware",
                ))

        raw = {
            "Format": "DNS",
            "QueryTypes": dict(qtypes),
            "TopDomains": dict(domains.most_common(10)),
        }
        return build_findings(path, events, iocs, raw, total_lines=total, file_format="DNS")
