# parsers/base.py
from __future__ import annotations

import hashlib
import logging
import os
import re
from abc import ABC, abstractmethod
from collections import Counter
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from dateutil import parser as dt_parser

import constants
from datamodels.findings import FileMetadata, SecurityEvent, TechnicalFindings
from infra.errors import ParseError
from parsers.iocs import IocCollector

logger = logging.getLogger(__name__)

# Whole-token match: "scan" hits "port scan detected" but not "scanner" or "rescan".
SECURITY_KEYWORD_RE = re.compile(r"\b(?:" + "|".join(constants.SECURITY_KEYWORDS) + r")\b", re.IGNORECASE)
_SEVERITY_BAND_RES = [
    (re.compile(r"\b(?:" + "|".join(words) + r")\b", re.IGNORECASE), label)
    for words, label in constants.SEVERITY_KEYWORD_BANDS
]
_TIMESTAMP_RES = [re.compile(p) for p in constants.TIMESTAMP_PATTERNS]
_APACHE_TS_RE = re.compile(r"^(\d{2}/\w{3}/\d{4}):(\d{2}:\d{2}:\d{2})")

# Event categories, checked in order against description + type
CATEGORY_RULES: List[Tuple[str, re.Pattern]] = [
    ("auth", re.compile(r"\b(?:login|logon|logoff|authentication|password|credential|sshd|kerberos|su|sudo)\b", re.I)),
    ("malware", re.compile(r"\b(?:malware|virus|trojan|ransomware|backdoor|worm)\b", re.I)),
    ("injection", re.compile(r"\b(?:injection|sql|xss|union\s+select)\b|<script|\.\./", re.I)),
    ("privilege", re.compile(r"\b(?:privilege|escalation|sudo|admin|administrator|root)\b", re.I)),
    ("exfiltration", re.compile(r"\b(?:exfiltration|exfil|upload|transfer)\b", re.I)),
    ("network", re.compile(r"\b(?:network|connection|firewall|port|tcp|udp|dns|packet|dropped)\b", re.I)),
]
MALICIOUS_RE = re.compile(
    r"\b(?:malware|trojan|virus|ransomware|backdoor|exploit|rootkit|c2|botnet)\b"
    r"|union\s+select|<script|\.\./\.\./|/etc/passwd|cmd\.exe",
    re.IGNORECASE,
)


def now_utc() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(ts: datetime) -> datetime:
    """Naive timestamps are taken as UTC; aware ones are converted."""
    if ts.tzinfo is None or ts.tzinfo.utcoffset(ts) is None:
        return ts.replace(tzinfo=timezone.utc)
    return ts.astimezone(timezone.utc)


def is_security_relevant(text: str) -> bool:
    return bool(text) and SECURITY_KEYWORD_RE.search(text) is not None


def map_severity(value: Any) -> str:
    """Explicit severity field -> label; unknown values are Medium."""
    return constants.SEVERITY_FIELD_MAP.get(str(value).strip().lower(), constants.SEVERITY_MEDIUM)


def infer_severity(text: str) -> str:
    """Keyword bands on free text; Low when nothing matches."""
    for pattern, label in _SEVERITY_BAND_RES:
        if text and pattern.search(text):
            return label
    return constants.SEVERITY_LOW


def priority_for(severity: str) -> int:
    return constants.PRIORITY_MAP.get(str(severity).strip().lower(), constants.DEFAULT_PRIORITY)


def classify_category(text: str) -> str:
    for name, pattern in CATEGORY_RULES:
        if pattern.search(text or ""):
            return name
    return ""


def looks_malicious(text: str) -> bool:
    return bool(text) and MALICIOUS_RE.search(text) is not None


def parse_timestamp(value: str, default_year: Optional[int] = None) -> Optional[datetime]:
    """Parse one timestamp string with dateutil; None when it is not one."""
    if not value or not str(value).strip():
        return None
    text = str(value).strip()
    if text.isdigit() and len(text) in (10, 13):
        seconds = int(text) / (1000 if len(text) == 13 else 1)
        return datetime.fromtimestamp(seconds, tz=timezone.utc)
    m = _APACHE_TS_RE.match(text)
    if m:
        text = f"{m.group(1)} {m.group(2)}{text[m.end():]}"
    default = None
    if default_year is not None:
        default = datetime(default_year, 1, 1)
    try:
        return dt_parser.parse(text, default=default) if default else dt_parser.parse(text)
    except (ValueError, OverflowError, TypeError):
        return None


def extract_timestamp(text: str) -> Optional[datetime]:
    """First recognisable timestamp in free text."""
    for pattern in _TIMESTAMP_RES:
        m = pattern.search(text or "")
        if m:
            ts = parse_timestamp(m.group(0), default_year=now_utc().year)
            if ts is not None:
                return ts
    return None


def make_event(
    timestamp: Optional[datetime],
    event_type: str,
    description: str,
    severity: str,
    source: str = "",
    attributes: Optional[Dict[str, str]] = None,
    category: Optional[str] = None,
    is_malicious: Optional[bool] = None,
) -> SecurityEvent:
    """Build an event, deriving priority, category and the malicious flag when not given."""
    text = f"{event_type} {description}"
    return SecurityEvent(
        timestamp=timestamp or now_utc(),
        event_type=event_type,
        description=description,
        severity=severity,
        priority=priority_for(severity),
        source=source,
        attributes={str(k): "" if v is None else str(v) for k, v in (attributes or {}).items()},
        category=classify_category(text) if category is None else category,
        is_malicious=looks_malicious(text) if is_malicious is None else is_malicious,
    )


def file_metadata(path: str) -> FileMetadata:
    st = os.stat(path)
    digest = hashlib.sha256()
    with open(path, "rb") as f:
        for chunk in iter(lambda: f.read(1024 * 1024), b""):
            digest.update(chunk)
    created_ts = getattr(st, "st_birthtime", None) or st.st_ctime
    ext = os.path.splitext(path)[1].lower()
    return FileMetadata(
        size=st.st_size,
        created=datetime.fromtimestamp(created_ts, tz=timezone.utc),
        modified=datetime.fromtimestamp(st.st_mtime, tz=timezone.utc),
        sha256=digest.hexdigest(),
        mime_type=constants.MIME_TYPES.get(ext, constants.DEFAULT_MIME),
    )


def read_head(path: str, size: int = constants.SNIFF_BYTES) -> bytes:
    with open(path, "rb") as f:
        return f.read(size)


def head_lines(path: str, count: int = constants.SNIFF_LINES) -> List[str]:
    text = read_head(path).decode("utf-8", errors="replace")
    return [ln for ln in text.splitlines() if ln.strip()][:count]


def extension(path: str) -> str:
    return os.path.splitext(str(path))[1].lower()


def build_findings(
    path: str,
    events: Sequence[SecurityEvent],
    iocs: IocCollector,
    raw_data: Optional[Dict[str, Any]] = None,
    total_lines: int = 0,
    file_format: str = "",
) -> TechnicalFindings:
    counts = Counter(ev.event_type for ev in events)
    return TechnicalFindings(
        raw_data=dict(raw_data or {}),
        security_events=tuple(events),
        detected_iocs=iocs.iocs(),
        events_by_type=dict(counts),
        iocs_by_category=iocs.counts(),
        metadata=file_metadata(path),
        total_lines=total_lines,
        file_format=file_format,
        processed_at=now_utc(),
    )


class LogParser(ABC):
    """One log family. Subclasses set ``file_type``/``priority`` and implement
    ``claims`` and ``_parse``.

    ``can_parse`` never raises: any I/O problem while sniffing means "no".
    ``parse`` wraps every failure in ``ParseError``.
    """

    file_type: str = "Unknown"
    priority: int = 0
    extensions: Tuple[str, ...] = ()

    def __init__(self, include_private_ips: bool = True):
        self.include_private_ips = include_private_ips

    @property
    def name(self) -> str:
        return type(self).__name__

    def new_collector(self) -> IocCollector:
        return IocCollector(include_private_ips=self.include_private_ips)

    def can_parse(self, path: str) -> bool:
        try:
            return self.claims(str(path))
        except (OSError, ValueError) as e:
            logger.debug(f"{self.name} sniff failed for {path}: {e}")
            return False

    def parse(self, path: str) -> TechnicalFindings:
        path = str(path)
        try:
            return self._parse(path)
        except ParseError:
            raise
        except Exception as e:
            raise ParseError(self.name, path, e) from e

    @abstractmethod
    def claims(self, path: str) -> bool:
        ...

    @abstractmethod
    def _parse(self, path: str) -> TechnicalFindings:
        ...


class LineSniffingParser(LogParser):
    """Text family parser: owns its dedicated extensions and claims generic
    .log/.txt files only when enough of the first lines match ``line_pattern``.
    """

    line_pattern: re.Pattern = re.compile(r"(?!)")
    sniff_ratio: float = 0.5

    def claims(self, path: str) -> bool:
        ext = extension(path)
        if ext in self.extensions:
            return True
        if ext not in constants.TEXT_EXTENSIONS:
            return False
        lines = head_lines(path)
        if not lines:
            return False
        hits = sum(1 for ln in lines if self.line_pattern.search(ln))
        return hits / len(lines) >= self.sniff_ratio

    def iter_lines(self, path: str) -> Iterable[Tuple[int, str]]:
        with open(path, "r", encoding="utf-8", errors="replace") as f:
            for number, line in enumerate(f, start=1):
                yield number, line.rstrip("\r\n")
