import json

from cli import main
from helpers import FAILED_LOGIN_CSV


def test_analyze_prints_json(write_file, capsys):
    path = write_file("logins.csv", FAILED_LOGIN_CSV)
    assert main(["analyze", path, "--no-ai"]) == 0

    payload = json.loads(capsys.readouterr().out)
    assert payload["file_names"] == ["logins.csv"]
    assert len(payload["technical"]["security_events"]) == 3
    assert payload["ai"]["model_used"] == "rules"
    assert payload["executive"]["risk_level"] == "LOW"


def test_analyze_writes_output_file(write_file, tmp_path):
    path = write_file("logins.csv", FAILED_LOGIN_CSV)
    out = tmp_path / "reports" / "result.json"
    assert main(["analyze", path, "--no-report", "--no-timeline", "-o", str(out)]) == 0

    payload = json.loads(out.read_text(encoding="utf-8"))
    assert payload["executive"] is None
    assert payload["timeline"] is None


def test_missing_file_exit_code(tmp_path, capsys):
    assert main(["analyze", str(tmp_path / "absent.csv")]) == 2
    err = capsys.readouterr().err
    error = json.loads(err[err.index("{\n"):])
    assert error["error_code"] == "E.IN.001"


def test_detect(write_file, capsys):
    path = write_file("auth.syslog", "anything\n")
    assert main(["detect", path]) == 0
    assert capsys.readouterr().out.strip().endswith("SYSLOG")
