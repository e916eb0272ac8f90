import pytest

from helpers import FAILED_LOGIN_CSV, findings
from infra.errors import EvidenceNotFound, UnsupportedFileType
from parsers.base import LogParser
from parsers.registry import ParserRegistry, default_registry, detect_content_type


class StubParser(LogParser):
    def __init__(self, label, priority, claim=True, fail=False, calls=None):
        super().__init__()
        self.file_type = label
        self.priority = priority
        self._claim = claim
        self._fail = fail
        self._calls = calls if calls is not None else []

    @property
    def name(self):
        return self.file_type

    def claims(self, path):
        return self._claim

    def _parse(self, path):
        self._calls.append(self.file_type)
        if self._fail:
            raise RuntimeError("boom")
        return findings(raw={"by": self.file_type})


def test_parsers_sorted_by_priority_ties_keep_registration_order():
    registry = ParserRegistry([
        StubParser("low", 1), StubParser("first-mid", 5), StubParser("high", 9), StubParser("second-mid", 5),
    ])
    assert [p.file_type for p in registry.parsers] == ["high", "first-mid", "second-mid", "low"]
    assert registry.supported_file_types() == ["high", "first-mid", "second-mid", "low"]


def test_detect_type_picks_highest_claiming_parser(write_file):
    path = write_file("x.log", "hello")
    registry = ParserRegistry([StubParser("a", 1), StubParser("b", 7, claim=False), StubParser("c", 3)])
    assert registry.detect_type(path) == "c"
    assert registry.can_process(path)


def test_detect_type_unknown_when_nothing_claims(write_file):
    path = write_file("x.bin", b"\x00\x01")
    registry = ParserRegistry([StubParser("a", 1, claim=False)])
    assert registry.detect_type(path) == "Unknown"
    assert not registry.can_process(path)


def test_dispatch_falls_back_to_next_claiming_parser(write_file):
    calls = []
    registry = ParserRegistry([
        StubParser("broken", 9, fail=True, calls=calls),
        StubParser("working", 5, calls=calls),
    ])
    tf = registry.dispatch(write_file("x.log", "data"))

    assert calls == ["broken", "working"]
    assert tf.raw_data["by"] == "working"
    assert tf.raw_data["ParserUsed"] == "working"
    assert tf.raw_data["FileValidation"]["ParsersAttempted"] == ["broken", "working"]
    assert tf.raw_data["DetectedFileType"] == "Text"
    assert "ProcessingTimeMs" in tf.raw_data


def test_dispatch_all_failed_is_unsupported(write_file):
    registry = ParserRegistry([StubParser("broken", 9, fail=True)])
    with pytest.raises(UnsupportedFileType) as info:
        registry.dispatch(write_file("x.log", "data"))
    assert info.value.attempted == ["broken"]
    assert info.value.__cause__ is not None


def test_dispatch_nothing_claims(write_file):
    registry = ParserRegistry([StubParser("a", 1, claim=False)])
    with pytest.raises(UnsupportedFileType):
        registry.dispatch(write_file("x.bin", b"\x00"))


def test_dispatch_missing_file(tmp_path):
    with pytest.raises(EvidenceNotFound):
        default_registry().dispatch(str(tmp_path / "nope.log"))


def test_default_registry_routing(write_file):
    registry = default_registry()
    syslog = write_file("auth.log", "Mar  1 10:00:01 web01 sshd[1]: Failed password for root from 203.0.113.7\n")
    plain = write_file("notes.log", "nothing to see\nfailed once\n")

    assert registry.detect_type(write_file("events.csv", FAILED_LOGIN_CSV)) == "CSV,LOG,TXT"
    assert registry.detect_type(syslog) == "SYSLOG"
    assert registry.detect_type(plain) == "CSV,LOG,TXT"
    assert registry.detect_type(write_file("dump.pcap", b"\xd4\xc3\xb2\xa1")) == "PCAP"
    assert registry.detect_type(write_file("wtmp", b"\x00" * 384)) == "WTMP,UTMP,BTMP,LASTLOG"
    assert registry.detect_type(write_file("Security.evtx", b"ElfFile\x00")) == "EVTX,EVT,XML"
    assert registry.detect_type(write_file("image.png", b"\x89PNG")) == "Unknown"
    assert registry.parsers[0].file_type == "EVTX,EVT,XML"
    assert registry.parsers[-1].file_type == "CSV,LOG,TXT"


def test_level_prefixed_app_log_is_not_a_database_log(write_file):
    registry = default_registry()
    path = write_file("app.log", "2024-03-01 10:00:00 ERROR: failed login for bob from 8.8.8.8\n"
                                 "2024-03-01 10:00:01 INFO: request served\n")

    assert registry.detect_type(path) == "CSV,LOG,TXT"
    tf = registry.dispatch(path)
    assert "Database" not in {e.source for e in tf.security_events}


def test_postgres_log_with_generic_extension_is_a_database_log(write_file):
    path = write_file("postgresql.log", "2024-03-01 10:00:00 UTC [123] FATAL:  password authentication failed for user \"bob\"\n"
                                        "2024-03-01 10:00:02 UTC [124] LOG:  checkpoint starting: time\n")
    assert default_registry().detect_type(path) == "DB"


def test_detect_content_type(write_file):
    assert detect_content_type(write_file("a.txt", "")) == "Empty"
    assert detect_content_type(write_file("a.json", '{"a": 1}')) == "JSON"
    assert detect_content_type(write_file("a.csv", "a,b,c\n1,2,3\n")) == "CSV"
    assert detect_content_type(write_file("a.xml", "<Events/>")) == "XML"
