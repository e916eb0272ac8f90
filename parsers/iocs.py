# parsers/iocs.py
from __future__ import annotations

import ipaddress
import re
from collections import Counter
from typing import Dict, Iterable, List, Tuple

import constants

IP_RE = re.compile(r"\b(?:[0-9]{1,3}\.){3}[0-9]{1,3}\b")
DOMAIN_RE = re.compile(
    r"\b[a-zA-Z0-9](?:[a-zA-Z0-9\-]{0,61}[a-zA-Z0-9])?\."
    r"(?:[a-zA-Z0-9](?:[a-zA-Z0-9\-]{0,61}[a-zA-Z0-9])?\.)*[a-zA-Z]{2,}\b"
)
HASH_RE = re.compile(r"\b[a-fA-F0-9]{64}\b|\b[a-fA-F0-9]{40}\b|\b[a-fA-F0-9]{32}\b")
EMAIL_RE = re.compile(r"\b[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}\b")

# Dotted tokens that are file names, not hosts
_FILE_SUFFIXES = {
    "exe", "dll", "sys", "log", "txt", "csv", "json", "xml", "html", "htm",
    "php", "asp", "aspx", "jsp", "cgi", "js", "css", "py", "sh", "bat",
    "ps1", "tmp", "ini", "cfg", "conf", "jpg", "jpeg", "png", "gif", "zip",
    "evtx", "pcap", "msi", "bak", "old",
}


def is_valid_ip(candidate: str, include_private: bool = True) -> bool:
    """Octets must be <= 255; loopback (127.), 0.x and broadcast are excluded.

    RFC1918 ranges are kept unless ``include_private`` is False.
    """
    try:
        addr = ipaddress.IPv4Address(candidate)
    except ValueError:
        return False
    if candidate.startswith(("127.", "0.")) or candidate == "255.255.255.255":
        return False
    if not include_private and addr.is_private:
        return False
    return True


def _is_domain(candidate: str) -> bool:
    tld = candidate.rsplit(".", 1)[-1].lower()
    return tld not in _FILE_SUFFIXES


def extract_iocs(text: str, include_private: bool = True) -> List[str]:
    """All IOCs in text as "Type: value" strings, in order of first appearance."""
    found: List[str] = []
    seen = set()

    def add(kind: str, value: str):
        item = f"{kind}: {value}"
        if item not in seen:
            seen.add(item)
            found.append(item)

    if not text:
        return found
    for m in IP_RE.finditer(text):
        if is_valid_ip(m.group(0), include_private):
            add(constants.IOC_IP, m.group(0))
    emails = [m.group(0) for m in EMAIL_RE.finditer(text)]
    email_domains = {e.split("@", 1)[1].lower() for e in emails}
    for m in DOMAIN_RE.finditer(text):
        value = m.group(0)
        if value.lower() in email_domains or not _is_domain(value):
            continue
        add(constants.IOC_DOMAIN, value.lower())
    for m in HASH_RE.finditer(text):
        add(constants.IOC_HASH, m.group(0).lower())
    for email in emails:
        add(constants.IOC_EMAIL, email.lower())
    return found


class IocCollector:
    """Accumulates IOCs for one file; keeps first-seen order, no duplicates."""

    def __init__(self, include_private_ips: bool = True):
        self.include_private_ips = include_private_ips
        self._items: Dict[str, None] = {}

    def feed(self, text: str) -> None:
        for item in extract_iocs(text, self.include_private_ips):
            self._items.setdefault(item, None)

    def feed_all(self, texts: Iterable[str]) -> None:
        for text in texts:
            self.feed(text)

    def iocs(self) -> Tuple[str, ...]:
        return tuple(self._items)

    def counts(self) -> Dict[str, int]:
        return dict(Counter(item.split(":", 1)[0] for item in self._items))
