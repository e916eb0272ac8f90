# parsers/firewall.py
from __future__ import annotations

import re
from collections import Counter, defaultdict
from typing import Dict, List, Set

from datamodels.findings import SecurityEvent, TechnicalFindings
from parsers.base import (
    LineSniffingParser, build_findings, extract_timestamp, is_security_relevant, make_event,
)

# iptables / ufw style key=value records and vendor "action=" records
FIREWALL_RE = re.compile(r"\b(?:SRC=\S+|DST=\S+|DPT=\d+|UFW (?:BLOCK|ALLOW|AUDIT)|action=\w+)", re.IGNORECASE)
_KV_RE = re.compile(r"\b([A-Za-z_]+)=(\S+)")
_ACTION_RE = re.compile(r"\b(DROP|DENY|DENIED|BLOCK|BLOCKED|REJECT|ALLOW|ACCEPT|PERMIT)\b", re.IGNORECASE)
_BLOCKING = {"drop", "deny", "denied", "block", "blocked", "reject"}

# Distinct destination ports from one source before it is reported as a scan
PORT_SCAN_THRESHOLD = 10


def _fields(line: str) -> Dict[str, str]:
    return {k.lower(): v for k, v in _KV_RE.findall(line)}


class FirewallLogParser(LineSniffingParser):
    file_type = "FIREWALL"
    priority = 55
    extensions = (".fwlog",)
    line_pattern = FIREWALL_RE

    def _parse(self, path: str) -> TechnicalFindings:
        iocs = self.new_collector()
        events: List[SecurityEvent] = []
        actions: Counter = Counter()
        blocked_sources: Counter = Counter()
        ports_by_source: Dict[str, Set[str]] = defaultdict(set)
        first_seen = {}
        total = 0

        for number, line in self.iter_lines(path):
            if not line.strip():
                continue
            total += 1
            iocs.feed(line)
            kv = _fields(line)
            am = _ACTION_RE.search(kv.get("action", "") or line)
            action = am.group(1).upper() if am else "UNKNOWN"
            actions[action] += 1
            src = kv.get("src") or kv.get("srcip") or kv.get("source")
            dst = kv.get("dst") or kv.get("dstip") or kv.get("destination")
            dport = kv.get("dpt") or kv.get("dstport") or kv.get("dport")
            ts = extract_timestamp(line)
            if src and dport:
                ports_by_source[src].add(dport)
                first_seen.setdefault(src, ts)

            blocked = action.lower() in _BLOCKING
            if not blocked and not is_security_relevant(line):
                continue
            if blocked and src:
                blocked_sources[src] += 1

            attrs = {"action": action, "LineNumber": str(number)}
            if src:
                attrs["src"] = src
            if dst:
                attrs["dst"] = dst
            if dport:
                attrs["dst_port"] = dport
            if kv.get("proto"):
                attrs["protocol"] = kv["proto"]
            target = f"{dst}:{dport}" if dst and dport else (dst or "unknown destination")
            events.append(make_event(
                timestamp=ts,
                event_type="Firewall Block" if blocked else "Firewall Event",
                description=f"{action} {kv.get('proto', '')} {src or 'unknown source'} -> {target}".replace("  ", " "),
                severity="Medium" if blocked else "Low",
                source="Firewall",
                attributes=attrs,
                category="network",
            ))

        for src, ports in ports_by_source.items():
            if len(ports) >= PORT_SCAN_THRESHOLD:
                events.append(make_event(
                    timestamp=first_seen.get(src),
                    event_type="Port Scan",
                    description=f"{src} probed {len(ports)} distinct destination ports",
                    severity="High",
                    source="Firewall",
                    attributes={"src": src, "distinct_ports": str(len(ports))},
                    category="network",
                ))

        raw = {
            "Format": "FIREWALL",
            "Actions": dict(actions),
            "TopBlockedSources": dict(blocked_sources.most_common(10)),
        }
        return build_findings(path, events, iocs, raw, total_lines=total, file_format="FIREWALL")
