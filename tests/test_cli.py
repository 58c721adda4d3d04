"""Tests for the command-line entry point against the demo snapshot."""

import json
from pathlib import Path

import pytest

from main import EXIT_ERROR, EXIT_NO_SLOT, EXIT_OK, main

DEMO = str(Path(__file__).resolve().parent.parent / "sample_data" / "demo_org.json")

# A Friday well past every dated record in the demo snapshot.
FUTURE_FRIDAY = "2035-03-09"


def _run(capsys, *args):
    code = main(["--data", DEMO, *args])
    out = capsys.readouterr().out
    return code, json.loads(out) if out.strip() else None


class TestAvailabilityCommand:
    def test_demo_monday(self, capsys):
        code, payload = _run(
            capsys,
            "availability", "--org", "org_demo", "--worker", "w_ana",
            "--date", "2026-03-02", "--duration", "60",
        )
        assert code == EXIT_OK
        times = payload["local_times"]
        assert times[0] == "08:00"
        assert "09:00" not in times
        assert "12:00" not in times
        assert "12:30" in times
        assert "14:00" in times
        assert len(times) == 12
        assert payload["weekly_hours"]["1"] == ["08:00-17:00"]

    def test_unknown_worker(self, capsys):
        code, payload = _run(
            capsys,
            "availability", "--org", "org_demo", "--worker", "w_nobody", "--date", "2026-03-02",
        )
        assert code == EXIT_ERROR
        assert payload["error"] == "InvalidInputError"


class TestConflictsCommand:
    def test_reports_event(self, capsys):
        code, payload = _run(
            capsys,
            "conflicts", "--org", "org_demo", "--workers", "w_ana", "w_ben",
            "--start", "2026-03-02T17:00:00Z", "--end", "2026-03-02T18:00:00Z",
        )
        assert code == EXIT_OK
        assert payload["has_conflicts"]
        assert [(c["worker_id"], c["source_id"]) for c in payload["conflicts"]] == [("w_ana", "evt_1")]

    def test_holds_only(self, capsys):
        code, payload = _run(
            capsys,
            "conflicts", "--org", "org_demo", "--workers", "w_ana", "w_cara",
            "--start", "2026-03-02T17:30:00Z", "--end", "2026-03-02T18:30:00Z", "--holds-only",
        )
        assert code == EXIT_OK
        assert [c["source"] for c in payload["conflicts"]] == ["HOLD"]

    def test_instant_requires_offset(self, capsys):
        with pytest.raises(SystemExit):
            main([
                "--data", DEMO, "conflicts", "--org", "org_demo", "--workers", "w_ana",
                "--start", "2026-03-02T17:00:00", "--end", "2026-03-02T18:00:00Z",
            ])


class TestNextOpenCommand:
    def test_preferred_worker(self, capsys):
        code, payload = _run(
            capsys,
            "next-open", "--org", "org_demo", "--worker", "w_ana",
            "--date", FUTURE_FRIDAY, "--duration", "60",
        )
        assert code == EXIT_OK
        assert payload["worker_id"] == "w_ana"
        assert payload["strategy_used"] == "PREFERRED"
        assert payload["label"].startswith("Mar 9, 2035")

    def test_no_slot_exit_code(self, capsys):
        code, payload = _run(
            capsys,
            "next-open", "--org", "org_demo", "--worker", "w_ana",
            "--date", "2035-03-10", "--lookahead", "1", "--fallback", "OWNER",
        )
        assert code == EXIT_NO_SLOT
        assert payload["error"] == "slot_not_found"


class TestRoundRobinCommand:
    def test_preview(self, capsys):
        code, payload = _run(
            capsys,
            "round-robin-test", "--org", "org_demo", "--date", FUTURE_FRIDAY, "--iterations", "3",
        )
        assert code == EXIT_OK
        assert payload["actual_sequence"] == ["w_ben", "w_cara", "w_ana"]
        assert payload["passed"]
        assert payload["summary"] == "Ben Okafor -> Cara Lind -> Ana Reyes"


class TestDataFile:
    def test_missing_snapshot(self, capsys, tmp_path):
        code = main([
            "--data", str(tmp_path / "missing.json"),
            "availability", "--org", "org_demo", "--worker", "w_ana", "--date", "2026-03-02",
        ])
        assert code == EXIT_ERROR
