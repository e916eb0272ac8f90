# analysis/normalizer.py
from __future__ import annotations

import dataclasses
from typing import Dict, Iterable, Iterator, Mapping

from datamodels.findings import SecurityEvent
from parsers.base import as_utc

# Attribute keys that all mean "the remote address"
KEY_ALIASES = {"src": "ip", "source_ip": "ip", "ip": "ip"}

to_utc = as_utc


def canonical_attributes(attributes: Mapping[str, str]) -> Dict[str, str]:
    out: Dict[str, str] = {}
    for key, value in attributes.items():
        k = str(key).strip().lower()
        k = KEY_ALIASES.get(k, k)
        # an explicit "ip" wins over an aliased one
        if k in out and k == "ip" and str(key).strip().lower() != "ip":
            continue
        out[k] = value
    return out


def normalize_event(ev: SecurityEvent) -> SecurityEvent:
    return dataclasses.replace(
        ev,
        timestamp=to_utc(ev.timestamp),
        source=ev.source.strip().upper(),
        attributes=canonical_attributes(ev.attributes),
    )


class NormalizedEvents:
    """Lazy, restartable view: every iteration re-reads the source."""

    def __init__(self, events: Iterable[SecurityEvent]):
        self._events = events

    def __iter__(self) -> Iterator[SecurityEvent]:
        return (normalize_event(ev) for ev in self._events)


def normalize(events: Iterable[SecurityEvent]) -> NormalizedEvents:
    """UTC timestamps, trimmed upper-case sources, canonical attribute keys.

    Idempotent. The input should itself be re-iterable (a list or tuple) for
    the result to be restartable.
    """
    return NormalizedEvents(events)
