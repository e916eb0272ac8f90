import os
import sys

import pytest

ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
sys.path.insert(0, ROOT)
sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))


@pytest.fixture
def write_file(tmp_path):
    """write_file(name, content) -> path; str content is written as UTF-8."""
    def _write(name, content=""):
        path = tmp_path / name
        if isinstance(content, bytes):
            path.write_bytes(content)
        else:
            path.write_text(content, encoding="utf-8")
        return str(path)
    return _write


@pytest.fixture(autouse=True)
def _isolated_env(monkeypatch, tmp_path):
    # Keep developer environment variables out of settings-driven code
    for name in ("MODEL_BACKEND", "OPENAI_API_KEY", "OPENAI_MODEL", "MODEL_ENDPOINT", "THREATLENS_CONFIG",
                 "MAX_IOCS", "MAX_SECURITY_EVENTS", "INCLUDE_PRIVATE_IPS", "OPENAI_TIMEOUT"):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("THREATLENS_LOG_DIR", str(tmp_path / "audit"))
