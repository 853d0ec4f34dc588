from __future__ import annotations

import csv
import json

import pytest

from territory_run import main as cli
from territory_run.models import format_timestamp


def _write_csv(path, fixes):
    with path.open("w", encoding="utf-8", newline="") as handle:
        writer = csv.writer(handle)
        writer.writerow(["lat", "lng", "timestamp", "accuracy"])
        for fix in fixes:
            writer.writerow([fix.lat, fix.lng, format_timestamp(fix.timestamp), fix.accuracy])
    return path


@pytest.fixture
def loop_csv(tmp_path, square_loop):
    return _write_csv(tmp_path / "loop.csv", square_loop(60))


def test_evaluate_prints_snapshot(loop_csv, capsys: pytest.CaptureFixture[str]) -> None:
    code = cli.main(["evaluate", str(loop_csv)])

    payload = json.loads(capsys.readouterr().out)
    assert code == 0
    assert payload["mode"] == "walk_run"
    assert payload["claimable"] is True
    assert payload["point_count"] == 60


def test_evaluate_cycle_mode_not_claimable(loop_csv, capsys) -> None:
    assert cli.main(["evaluate", str(loop_csv), "--mode", "cycle"]) == 2
    assert json.loads(capsys.readouterr().out)["claimable"] is False


def test_replay_claims_closed_loop(loop_csv, capsys) -> None:
    code = cli.main(
        ["replay", str(loop_csv), "--no-snap", "--ephemeral", "--city-id", "london", "--live"]
    )

    payload = json.loads(capsys.readouterr().out)
    assert code == 0
    assert payload["status"] == "claimed"
    assert payload["finalized"] is True
    assert payload["eligibility"]["point_count"] == 60


def test_replay_without_city_fails_to_start(loop_csv) -> None:
    assert cli.main(["replay", str(loop_csv), "--no-snap", "--ephemeral"]) == 1


def test_replay_persists_local_state(tmp_path, capsys, square_loop) -> None:
    track = _write_csv(tmp_path / "short.csv", square_loop(60)[:10])
    state_dir = tmp_path / "state"

    code = cli.main(
        ["replay", str(track), "--no-snap", "--city-id", "london", "--state-dir", str(state_dir)]
    )

    assert code == 2
    assert json.loads(capsys.readouterr().out)["status"] == "requirements_unmet"
    assert (state_dir / "territoryrun_profile.json").exists()
    assert (state_dir / "territoryrun_session_buffer.json").exists()
    assert not (state_dir / "territoryrun_active_session.json").exists()


def test_missing_track_returns_error_code(tmp_path) -> None:
    assert cli.main(["evaluate", str(tmp_path / "nope.csv")]) == 1
