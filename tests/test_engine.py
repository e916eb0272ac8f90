import asyncio

import pytest

from ai_insights import ModelInsightGenerator, TextGenerationClient
from analysis_engine import AnalysisEngine, AnalysisOptions, EvidenceInput, analyze_paths
from helpers import FAILED_LOGIN_CSV
from infra.errors import EvidenceNotFound, UnsupportedFileType
from insight_rules import compute_severity

SYSLOG = (
    "Mar  1 10:00:01 web01 sshd[1234]: Failed password for root from 203.0.113.7 port 22 ssh2\n"
    "Mar  1 10:00:09 web01 sshd[1234]: Failed password for admin from 203.0.113.7 port 22 ssh2\n"
)


class BrokenClient(TextGenerationClient):
    model_name = "broken"

    async def complete(self, system_prompt, prompt):
        raise ConnectionError("model host unreachable")


class CannedClient(TextGenerationClient):
    model_name = "canned"

    async def complete(self, system_prompt, prompt):
        return '{"severity_score": 2, "summary": "Nothing serious."}'


def _engine(model=None):
    return AnalysisEngine(model_generator=model)


def test_single_file_end_to_end(write_file):
    path = write_file("logins.csv", FAILED_LOGIN_CSV)
    result = asyncio.run(_engine().analyze_file(path))

    assert result.file_names == ("logins.csv",)
    assert result.file_types == ("CSV,LOG,TXT",)
    tf = result.technical
    assert len(tf.security_events) == 3
    assert all(ev.source == "CSV" for ev in tf.security_events)
    assert all(ev.attributes["ip"] == "10.0.0.5" for ev in tf.security_events)
    assert all(ev.timestamp.tzinfo is not None for ev in tf.security_events)
    assert tf.raw_data["ParserUsed"] == "CsvLogParser"
    assert [g.key for g in result.correlations][0] == "IP:10.0.0.5"
    assert len(result.timeline.events) == 3
    assert result.ai.model_used == "rules"
    assert result.ai.severity_score == compute_severity(tf)
    assert result.executive is not None
    assert result.failed_files == {}


def test_stages_can_be_switched_off(write_file):
    path = write_file("logins.csv", FAILED_LOGIN_CSV)
    options = AnalysisOptions(include_timeline=False, include_correlation=False, generate_executive_report=False)
    result = asyncio.run(_engine().analyze_file(path, options))

    assert result.timeline is None
    assert result.correlations == ()
    assert result.executive is None
    assert result.ai is not None


def test_uploaded_bytes_are_spooled():
    item = EvidenceInput(content=SYSLOG.encode(), filename="auth.log")
    result = asyncio.run(_engine().analyze_file(item))

    assert result.file_names == ("auth.log",)
    assert result.file_types == ("SYSLOG",)
    assert len(result.technical.security_events) == 2


def test_model_failure_falls_back_inside_the_engine(write_file):
    path = write_file("logins.csv", FAILED_LOGIN_CSV)
    engine = _engine(ModelInsightGenerator(BrokenClient()))
    result = asyncio.run(engine.analyze_file(path))

    assert result.ai.model_used == "rules"
    assert result.executive.risk_level == "LOW"


def test_model_used_only_when_enabled(write_file):
    path = write_file("logins.csv", FAILED_LOGIN_CSV)
    engine = _engine(ModelInsightGenerator(CannedClient()))

    assert asyncio.run(engine.analyze_file(path)).ai.model_used == "canned"
    disabled = asyncio.run(engine.analyze_file(path, AnalysisOptions(enable_ai_analysis=False)))
    assert disabled.ai.model_used == "rules"


def test_caps_trim_events_and_recount(write_file):
    path = write_file("logins.csv", FAILED_LOGIN_CSV)
    result = asyncio.run(_engine().analyze_file(path, AnalysisOptions(max_security_events=2, max_iocs=1)))
    tf = result.technical

    assert len(tf.security_events) == 2
    assert tf.events_by_type == {"Authentication": 2}
    assert tf.raw_data["TruncatedEvents"] == 1
    assert len(tf.detected_iocs) == 1


def test_missing_file(tmp_path):
    with pytest.raises(EvidenceNotFound):
        asyncio.run(_engine().analyze_file(str(tmp_path / "gone.csv")))


def test_unsupported_file(write_file):
    with pytest.raises(UnsupportedFileType):
        asyncio.run(_engine().analyze_file(write_file("photo.png", b"\x89PNG\r\n")))


def test_many_files_merge(write_file):
    csv_path = write_file("logins.csv", FAILED_LOGIN_CSV)
    syslog_path = write_file("auth.log", SYSLOG)
    result = asyncio.run(_engine().analyze_files([csv_path, syslog_path]))

    assert result.file_names == ("logins.csv", "auth.log")
    assert result.file_types == ("CSV,LOG,TXT", "SYSLOG")
    assert len(result.technical.security_events) == 5
    assert result.technical.events_by_type["Authentication"] == 3
    assert result.technical.events_by_type["Syslog-sshd"] == 2
    assert 1 <= result.ai.severity_score <= 10


def test_failed_files_are_skipped_and_reported(write_file, tmp_path):
    good = write_file("logins.csv", FAILED_LOGIN_CSV)
    missing = str(tmp_path / "missing.log")
    result = asyncio.run(_engine().analyze_files([good, missing]))

    assert result.file_names == ("logins.csv",)
    assert list(result.failed_files) == ["missing.log"]


def test_failures_with_the_same_name_are_kept_apart(write_file, tmp_path):
    good = write_file("logins.csv", FAILED_LOGIN_CSV)
    (tmp_path / "a").mkdir()
    (tmp_path / "b").mkdir()
    first, second = str(tmp_path / "a" / "auth.log"), str(tmp_path / "b" / "auth.log")
    result = asyncio.run(_engine().analyze_files([first, good, second]))

    assert sorted(result.failed_files) == ["auth.log#0", "auth.log#2"]


def test_every_file_failing_raises_the_first_error(write_file, tmp_path):
    with pytest.raises(EvidenceNotFound):
        asyncio.run(_engine().analyze_files([str(tmp_path / "a.log"), write_file("b.png", b"\x89PNG")]))


def test_analyze_paths_dispatches_on_count(write_file):
    path = write_file("logins.csv", FAILED_LOGIN_CSV)
    single = asyncio.run(analyze_paths([path], engine=_engine()))
    double = asyncio.run(analyze_paths([path, path], engine=_engine()))

    assert single.file_names == ("logins.csv",)
    assert len(double.technical.security_events) == 6


def test_engine_from_settings(tmp_path):
    cfg = {"model_backend": "none", "include_private_ips": False, "log_dir": str(tmp_path / "logs")}
    engine = AnalysisEngine.from_settings(cfg, audit=False)

    assert engine.model_generator is None
    assert engine.audit_logger is None
    assert all(not p.include_private_ips for p in engine.registry.parsers)
