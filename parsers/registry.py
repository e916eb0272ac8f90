# parsers/registry.py
from __future__ import annotations

import dataclasses
import logging
import os
import time
from typing import Iterable, List, Optional, Tuple

from datamodels.findings import TechnicalFindings
from infra.errors import EvidenceNotFound, ParseError, UnsupportedFileType
from parsers.base import LogParser, extension, read_head
from parsers.database import DatabaseLogParser
from parsers.dns import DnsLogParser
from parsers.firewall import FirewallLogParser
from parsers.mail import MailServerLogParser
from parsers.network_capture import NetworkCaptureParser
from parsers.session_log import LinuxSessionLogParser
from parsers.structured import CsvLogParser
from parsers.syslog import SyslogParser
from parsers.weblog import WebServerLogParser
from parsers.windows_event import WindowsEventLogParser

logger = logging.getLogger(__name__)

UNKNOWN_TYPE = "Unknown"


def detect_content_type(path: str) -> str:
    """Cheap content heuristic, independent of which parser claimed the file."""
    head = read_head(path, 2048)
    if not head:
        return "Empty"
    if head.startswith(b"ElfFile\x00"):
        return "EVTX"
    if head[:4] in (b"\xd4\xc3\xb2\xa1", b"\xa1\xb2\xc3\xd4", b"\x4d\x3c\xb2\xa1", b"\xa1\xb2\x3c\x4d"):
        return "PCAP"
    if head[:4] == b"\x0a\x0d\x0d\x0a":
        return "PCAPNG"
    if b"\x00" in head:
        return "Binary"
    text = head.decode("utf-8", errors="replace").lstrip()
    if text.startswith("<"):
        return "XML"
    if text.startswith(("{", "[")):
        return "JSON"
    first = text.splitlines()[0] if text else ""
    if first.count(",") >= 2:
        return "CSV"
    return "Text"


class ParserRegistry:
    """Parsers in descending priority; ties keep registration order.

    The order is fixed at construction and the registry is never mutated
    afterwards, so one instance can serve concurrent dispatches.
    """

    def __init__(self, parsers: Iterable[LogParser]):
        indexed = list(enumerate(parsers))
        indexed.sort(key=lambda item: (-item[1].priority, item[0]))
        self._parsers: Tuple[LogParser, ...] = tuple(p for _, p in indexed)

    @property
    def parsers(self) -> Tuple[LogParser, ...]:
        return self._parsers

    def detect_type(self, path: str) -> str:
        for parser in self._parsers:
            if parser.can_parse(path):
                return parser.file_type
        return UNKNOWN_TYPE

    def can_process(self, path: str) -> bool:
        return os.path.isfile(path) and self.detect_type(path) != UNKNOWN_TYPE

    def supported_file_types(self) -> List[str]:
        return [p.file_type for p in self._parsers]

    def dispatch(self, path: str) -> TechnicalFindings:
        """Parse with the first claiming parser that succeeds.

        A parser raising ``ParseError`` is logged and the next claiming parser
        is tried. Raises ``EvidenceNotFound`` for a missing file and
        ``UnsupportedFileType`` when nothing claimed or every claim failed.
        """
        path = str(path)
        if not os.path.isfile(path):
            raise EvidenceNotFound(path)

        attempted: List[str] = []
        last_error: Optional[ParseError] = None
        for parser in self._parsers:
            if not parser.can_parse(path):
                continue
            attempted.append(parser.name)
            started = time.perf_counter()
            try:
                findings = parser.parse(path)
            except ParseError as e:
                logger.warning(f"{parser.name} failed on {os.path.basename(path)}, trying next parser: {e.cause}")
                last_error = e
                continue
            elapsed_ms = round((time.perf_counter() - started) * 1000, 2)
            logger.info(f"Parsed {os.path.basename(path)} with {parser.name}: "
                        f"{len(findings.security_events)} events, {len(findings.detected_iocs)} IOCs")
            raw = dict(findings.raw_data)
            raw.update({
                "ParserUsed": parser.name,
                "ParserFileType": parser.file_type,
                "ProcessingTimeMs": elapsed_ms,
                "DetectedFileType": detect_content_type(path),
                "FileValidation": {
                    "SizeBytes": findings.metadata.size,
                    "Extension": extension(path),
                    "ParsersAttempted": list(attempted),
                },
            })
            return dataclasses.replace(findings, raw_data=raw)

        err = UnsupportedFileType(path, attempted)
        if last_error is not None:
            raise err from last_error
        raise err


def default_parsers(include_private_ips: bool = True) -> List[LogParser]:
    classes = [
        WindowsEventLogParser,
        LinuxSessionLogParser,
        WebServerLogParser,
        SyslogParser,
        NetworkCaptureParser,
        FirewallLogParser,
        DatabaseLogParser,
        MailServerLogParser,
        DnsLogParser,
        CsvLogParser,
    ]
    return [cls(include_private_ips=include_private_ips) for cls in classes]


def default_registry(include_private_ips: bool = True) -> ParserRegistry:
    return ParserRegistry(default_parsers(include_private_ips))
