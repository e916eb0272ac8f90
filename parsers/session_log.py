# parsers/session_log.py
"""Unix login accounting: wtmp/utmp/btmp records and lastlog.

Binary files are decoded as glibc x86-64 ``struct utmp`` (384 bytes) or
``struct lastlog`` (292 bytes). Text exports (``last``/``lastb`` output) are
read line by line.
"""
from __future__ import annotations

import ipaddress
import os
import re
import struct
from collections import Counter
from datetime import datetime, timezone
from typing import Dict, List, Optional

from datamodels.findings import SecurityEvent, TechnicalFindings
from parsers.base import LogParser, as_utc, build_findings, extension, make_event, parse_timestamp, read_head
from parsers.structured import first_ip

UTMP_STRUCT = struct.Struct("<hxxi32s4s32s256shhiii16s20s")
LASTLOG_STRUCT = struct.Struct("<i32s256s")

BOOT_TIME = 2
USER_PROCESS = 7
DEAD_PROCESS = 8

# Failed logins from one source before a brute-force event is raised
BRUTE_FORCE_THRESHOLD = 5

_LAST_LINE_RE = re.compile(
    r"^(?P<user>\S+)\s+(?P<tty>\S+)\s+(?:(?P<host>\S+)\s+)?"
    r"(?P<when>\w{3}\s+\w{3}\s+\d{1,2}\s+\d{2}:\d{2}(?::\d{2})?(?:\s+\d{4})?)"
)


def _cstr(raw: bytes) -> str:
    return raw.split(b"\x00", 1)[0].decode("utf-8", errors="replace").strip()


def _addr(raw: bytes) -> str:
    if not raw.strip(b"\x00"):
        return ""
    if raw[4:].strip(b"\x00"):
        return str(ipaddress.IPv6Address(raw))
    return str(ipaddress.IPv4Address(raw[:4]))


class LinuxSessionLogParser(LogParser):
    file_type = "WTMP,UTMP,BTMP,LASTLOG"
    priority = 80
    extensions = (".wtmp", ".utmp", ".btmp", ".lastlog")

    def claims(self, path: str) -> bool:
        if extension(path) in self.extensions:
            return True
        # Files copied straight out of /var/log keep their bare names
        return os.path.basename(path).lower() in ("wtmp", "utmp", "btmp", "lastlog")

    def _kind(self, path: str) -> str:
        ext = extension(path).lstrip(".") or os.path.basename(path).lower()
        return ext if ext in ("wtmp", "utmp", "btmp", "lastlog") else "wtmp"

    def _parse(self, path: str) -> TechnicalFindings:
        kind = self._kind(path)
        size = os.path.getsize(path)
        head = read_head(path, 512)
        binary = b"\x00" in head
        record_size = LASTLOG_STRUCT.size if kind == "lastlog" else UTMP_STRUCT.size

        iocs = self.new_collector()
        failed = kind == "btmp"
        if binary and size % record_size == 0:
            if kind == "lastlog":
                events, total = self._parse_lastlog(path, iocs)
            else:
                events, total = self._parse_utmp(path, iocs, failed)
            fmt = "binary"
        elif binary:
            # Truncated or foreign-architecture records
            events, total, fmt = [], 0, "unrecognised"
        else:
            events, total = self._parse_text(path, iocs, failed)
            fmt = "text"

        events.extend(self._brute_force(events))
        raw = {
            "Format": kind.upper(),
            "Encoding": fmt,
            "Records": total,
            "Users": dict(Counter(ev.attributes.get("user", "") for ev in events if ev.attributes.get("user"))),
        }
        if fmt == "unrecognised":
            raw["partial"] = True
        return build_findings(path, events, iocs, raw, total_lines=total, file_format=kind.upper())

    def _login_event(self, ts: Optional[datetime], user: str, tty: str, host: str, failed: bool) -> SecurityEvent:
        attrs = {"user": user, "tty": tty}
        origin = host or "local console"
        if host:
            attrs["host"] = host
            ip = first_ip(host, self.include_private_ips)
            if ip:
                attrs["ip"] = ip
        if failed:
            return make_event(ts, "Failed Login", f"Failed login for {user} from {origin} on {tty}",
                              "Medium", source="btmp", attributes=attrs, category="auth", is_malicious=False)
        severity = "Medium" if user == "root" and host else "Low"
        event_type = "Root Login" if user == "root" else "Session Login"
        return make_event(ts, event_type, f"{user} logged in from {origin} on {tty}",
                          severity, source="wtmp", attributes=attrs, category="auth", is_malicious=False)

    def _parse_utmp(self, path: str, iocs, failed: bool):
        events: List[SecurityEvent] = []
        total = 0
        with open(path, "rb") as f:
            data = f.read()
        for (ut_type, pid, line, _id, user, host, _term, _exit, _session, tv_sec, _usec, addr, _unused) \
                in UTMP_STRUCT.iter_unpack(data):
            total += 1
            ts = datetime.fromtimestamp(tv_sec, tz=timezone.utc) if tv_sec > 0 else None
            host_s = _cstr(host) or _addr(addr)
            if host_s:
                iocs.feed(host_s)
            if ut_type == BOOT_TIME:
                events.append(make_event(ts, "System Boot", "System boot recorded", "Low",
                                         source="wtmp", attributes={"pid": str(pid)}, category="", is_malicious=False))
            elif ut_type == USER_PROCESS or (failed and ut_type != DEAD_PROCESS):
                events.append(self._login_event(ts, _cstr(user) or "unknown", _cstr(line), host_s, failed))
        return events, total

    def _parse_lastlog(self, path: str, iocs):
        events: List[SecurityEvent] = []
        total = 0
        with open(path, "rb") as f:
            data = f.read()
        for uid, (ll_time, line, host) in enumerate(LASTLOG_STRUCT.iter_unpack(data)):
            total += 1
            if ll_time <= 0:
                continue
            host_s = _cstr(host)
            if host_s:
                iocs.feed(host_s)
            ev = self._login_event(datetime.fromtimestamp(ll_time, tz=timezone.utc),
                                   f"uid:{uid}", _cstr(line), host_s, failed=False)
            events.append(ev)
        return events, total

    def _parse_text(self, path: str, iocs, failed: bool):
        events: List[SecurityEvent] = []
        total = 0
        with open(path, "r", encoding="utf-8", errors="replace") as f:
            for line in f:
                line = line.rstrip("\r\n")
                if not line.strip() or line.startswith(("wtmp begins", "btmp begins")):
                    continue
                total += 1
                iocs.feed(line)
                m = _LAST_LINE_RE.match(line)
                if not m or m.group("user") in ("reboot", "shutdown"):
                    if m and m.group("user") == "reboot":
                        events.append(make_event(parse_timestamp(m.group("when")), "System Boot", line.strip(),
                                                 "Low", source="wtmp", category="", is_malicious=False))
                    continue
                events.append(self._login_event(parse_timestamp(m.group("when")), m.group("user"),
                                                m.group("tty"), m.group("host") or "", failed))
        return events, total

    def _brute_force(self, events: List[SecurityEvent]) -> List[SecurityEvent]:
        failures: Dict[str, List[SecurityEvent]] = {}
        for ev in events:
            if ev.event_type == "Failed Login":
                failures.setdefault(ev.attributes.get("host", "local console"), []).append(ev)
        out = []
        for host, members in failures.items():
            if len(members) >= BRUTE_FORCE_THRESHOLD:
                users = sorted({ev.attributes.get("user", "") for ev in members})
                attrs = {"host": host, "attempts": str(len(members)), "users": ",".join(users)}
                ip = members[0].attributes.get("ip")
                if ip:
                    attrs["ip"] = ip
                out.append(make_event(
                    min(as_utc(ev.timestamp) for ev in members),
                    "Brute Force Attempt",
                    f"{len(members)} failed logins from {host} against {len(users)} account(s)",
                    "High", source="btmp", attributes=attrs, category="auth", is_malicious=True,
                ))
        return out
