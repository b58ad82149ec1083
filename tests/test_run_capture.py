"""Tests for the capture runbook CLI."""

import json
from pathlib import Path

import pytest

import run_capture


def test_requires_a_source() -> None:
    """Test either --port or --simulate must be given."""
    with pytest.raises(SystemExit):
        run_capture.parse_args([])


def test_simulated_session_saves_visit(tmp_path: Path, capsys) -> None:
    """Test a short simulated session commits required vitals and saves them."""
    path = tmp_path / "visits.json"

    code = run_capture.main(["--simulate", "--seed", "11", "--window", "0.6", "--save", str(path)])

    assert code == 0
    out = capsys.readouterr().out
    assert "All required vitals captured" in out

    records = json.loads(path.read_text())
    assert len(records) == 1
    assert records[0]["bpSys"] is not None
    assert records[0]["raw"] is None


def test_unopenable_port_reports_error(capsys) -> None:
    code = run_capture.main(["--port", ""])

    assert code == 2
    assert "Error" in capsys.readouterr().err
