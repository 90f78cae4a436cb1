"""Tests for the security/PII gate script."""

import importlib.util
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parent.parent


@pytest.fixture(scope="module")
def gate():
    spec = importlib.util.spec_from_file_location("gate_security_pii", ROOT / "scripts" / "gate_security_pii.py")
    module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(module)
    return module


def test_source_tree_passes(gate):
    errors = []
    for path in (ROOT / "src").rglob("*.py"):
        errors.extend(gate.check_file(path))
    assert errors == []


def test_flags_print(gate, tmp_path):
    source = tmp_path / "bad.py"
    source.write_text('print("hello")\n')
    assert len(gate.check_file(source)) == 1


def test_flags_unredacted_multiline_logger_call(gate, tmp_path):
    source = tmp_path / "bad.py"
    source.write_text(
        "logger.info(\n"
        '    "sending",\n'
        '    extra={"reply_token": handle.token},\n'
        ")\n"
    )
    [error] = gate.check_file(source)
    assert "reply_token" in error


def test_redacted_logger_call_allowed(gate, tmp_path):
    source = tmp_path / "ok.py"
    source.write_text(
        'logger.info("sent", extra={"extra_fields": safe_log_context(user_hash=hash_identifier(user_id))})\n'
    )
    assert gate.check_file(source) == []
