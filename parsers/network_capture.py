# parsers/network_capture.py
"""Packet captures.

Classic libpcap files with Ethernet or raw-IP link types are walked record by
record and summarised (packets, protocols, talkers, risky ports, scans).
pcapng and anything that does not decode produce one summary event and are
reported as partial.
"""
from __future__ import annotations

import ipaddress
import logging
import struct
from collections import Counter, defaultdict
from datetime import datetime, timezone
from typing import Dict, List, Optional, Set, Tuple

from datamodels.findings import SecurityEvent, TechnicalFindings
from parsers.base import LogParser, build_findings, extension, make_event, now_utc, read_head
from parsers.iocs import is_valid_ip

logger = logging.getLogger(__name__)

PCAP_MAGICS = {
    b"\xd4\xc3\xb2\xa1": ("<", 1e-6),
    b"\xa1\xb2\xc3\xd4": (">", 1e-6),
    b"\x4d\x3c\xb2\xa1": ("<", 1e-9),
    b"\xa1\xb2\x3c\x4d": (">", 1e-9),
}
PCAPNG_MAGIC = b"\x0a\x0d\x0d\x0a"

LINKTYPE_ETHERNET = 1
LINKTYPE_RAW = 101
IP_PROTOCOLS = {1: "ICMP", 6: "TCP", 17: "UDP", 47: "GRE", 50: "ESP"}

RISKY_PORTS = {
    23: "Telnet", 135: "MSRPC", 139: "NetBIOS", 445: "SMB", 1433: "MSSQL",
    3389: "RDP", 4444: "Metasploit default", 5900: "VNC", 6667: "IRC", 31337: "Back Orifice",
}
PORT_SCAN_THRESHOLD = 10
MAX_RISKY_EVENTS = 100


def _ipv4_packet(frame: bytes, linktype: int) -> Optional[bytes]:
    if linktype == LINKTYPE_ETHERNET:
        if len(frame) < 34:
            return None
        ethertype = struct.unpack("!H", frame[12:14])[0]
        offset = 14
        if ethertype == 0x8100 and len(frame) >= 38:  # 802.1Q tag
            ethertype = struct.unpack("!H", frame[16:18])[0]
            offset = 18
        return frame[offset:] if ethertype == 0x0800 else None
    if linktype == LINKTYPE_RAW and frame and frame[0] >> 4 == 4:
        return frame
    return None


def _decode_ipv4(packet: bytes) -> Optional[Tuple[str, str, int, Optional[int]]]:
    """(src, dst, protocol, destination port or None)."""
    if len(packet) < 20:
        return None
    ihl = (packet[0] & 0x0F) * 4
    proto = packet[9]
    src = str(ipaddress.IPv4Address(packet[12:16]))
    dst = str(ipaddress.IPv4Address(packet[16:20]))
    dport = None
    if proto in (6, 17) and len(packet) >= ihl + 4:
        dport = struct.unpack("!H", packet[ihl + 2:ihl + 4])[0]
    return src, dst, proto, dport


class NetworkCaptureParser(LogParser):
    file_type = "PCAP"
    priority = 60
    extensions = (".pcap", ".pcapng", ".cap")

    def claims(self, path: str) -> bool:
        return extension(path) in self.extensions

    def _parse(self, path: str) -> TechnicalFindings:
        head = read_head(path, 24)
        iocs = self.new_collector()
        if head[:4] in PCAP_MAGICS and len(head) == 24:
            return self._parse_pcap(path, head, iocs)
        reason = "pcapng not decoded" if head[:4] == PCAPNG_MAGIC else "unrecognised capture header"
        return self._summary_only(path, iocs, reason)

    def _summary_only(self, path: str, iocs, reason: str) -> TechnicalFindings:
        event = make_event(
            timestamp=now_utc(),
            event_type="Network Capture",
            description=f"Network capture processed ({reason})",
            severity="Low",
            source="PCAP",
            attributes={"reason": reason},
            category="network",
        )
        raw = {"Format": "PCAP", "partial": True, "PartialReason": reason}
        return build_findings(path, [event], iocs, raw, total_lines=0, file_format="PCAP")

    def _parse_pcap(self, path: str, head: bytes, iocs) -> TechnicalFindings:
        endian, ts_scale = PCAP_MAGICS[head[:4]]
        linktype = struct.unpack(endian + "I", head[20:24])[0]
        record_header = struct.Struct(endian + "IIII")

        packets = decoded = 0
        truncated = False
        protocols: Counter = Counter()
        talkers: Counter = Counter()
        ports_by_src: Dict[str, Set[int]] = defaultdict(set)
        risky: Dict[Tuple[str, str, int], datetime] = {}
        first_ts: Optional[datetime] = None
        last_ts: Optional[datetime] = None

        with open(path, "rb") as f:
            f.seek(24)
            while True:
                hdr = f.read(record_header.size)
                if not hdr:
                    break
                if len(hdr) < record_header.size:
                    truncated = True
                    break
                ts_sec, ts_frac, incl_len, _orig_len = record_header.unpack(hdr)
                frame = f.read(incl_len)
                if len(frame) < incl_len:
                    truncated = True
                    break
                packets += 1
                ts = datetime.fromtimestamp(ts_sec + ts_frac * ts_scale, tz=timezone.utc)
                first_ts = first_ts or ts
                last_ts = ts

                packet = _ipv4_packet(frame, linktype)
                info = _decode_ipv4(packet) if packet else None
                if info is None:
                    protocols["other"] += 1
                    continue
                decoded += 1
                src, dst, proto, dport = info
                protocols[IP_PROTOCOLS.get(proto, str(proto))] += 1
                talkers[src] += 1
                for addr in (src, dst):
                    if is_valid_ip(addr, self.include_private_ips):
                        iocs.feed(addr)
                if dport is not None:
                    ports_by_src[src].add(dport)
                    if dport in RISKY_PORTS and len(risky) < MAX_RISKY_EVENTS:
                        risky.setdefault((src, dst, dport), ts)

        events: List[SecurityEvent] = [make_event(
            timestamp=first_ts or now_utc(),
            event_type="Network Capture",
            description=f"Network capture processed: {packets} packets, {decoded} IPv4, "
                        f"{len(talkers)} source hosts",
            severity="Low",
            source="PCAP",
            attributes={"packets": str(packets), "linktype": str(linktype)},
            category="network",
        )]
        for (src, dst, port), ts in risky.items():
            events.append(make_event(
                timestamp=ts,
                event_type="Risky Port Connection",
                description=f"{src} connected to {dst}:{port} ({RISKY_PORTS[port]})",
                severity="High" if port in (4444, 31337) else "Medium",
                source="PCAP",
                attributes={"ip": src, "dst": dst, "dst_port": str(port)},
                category="network",
                is_malicious=port in (4444, 31337),
            ))
        for src, ports in ports_by_src.items():
            if len(ports) >= PORT_SCAN_THRESHOLD:
                events.append(make_event(
                    timestamp=first_ts,
                    event_type="Port Scan",
                    description=f"{src} probed {len(ports)} distinct destination ports",
                    severity="High",
                    source="PCAP",
                    attributes={"ip": src, "distinct_ports": str(len(ports))},
                    category="network",
                ))

        raw = {
            "Format": "PCAP",
            "LinkType": linktype,
            "Packets": packets,
            "DecodedIPv4": decoded,
            "Protocols": dict(protocols),
            "TopTalkers": dict(talkers.most_common(10)),
            "FirstPacket": first_ts.isoformat() if first_ts else None,
            "LastPacket": last_ts.isoformat() if last_ts else None,
        }
        if truncated:
            raw["partial"] = True
            raw["PartialReason"] = "truncated capture"
        return build_findings(path, events, iocs, raw, total_lines=packets, file_format="PCAP")
