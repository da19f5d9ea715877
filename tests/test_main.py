import pytest

import main
from pvptracker.database import Database
from tests.helpers import ENV_VARS, FakeAPIClient, at, make_data, make_delta


@pytest.fixture
def clean_env(monkeypatch, tmp_path):
    for name in ENV_VARS:
        monkeypatch.setenv(name, "")
        monkeypatch.delenv(name)
    monkeypatch.setenv("PVP_BRACKETS", "shuffle-priest-shadow")
    env_file = tmp_path / "empty.env"
    env_file.write_text("")
    return monkeypatch, str(env_file), str(tmp_path / "cli.db")


def test_missing_credentials_exit_nonzero(clean_env):
    _, env_file, db_path = clean_env
    assert main.main(["--once", "--env-file", env_file, "--db", db_path]) == 1


def test_invalid_config_exit_nonzero(clean_env):
    monkeypatch, env_file, db_path = clean_env
    monkeypatch.setenv("PVP_POLL_INTERVAL_SECONDS", "soon")
    assert main.main(["--stats", "--env-file", env_file, "--db", db_path]) == 1


def test_once_runs_single_cycle(clean_env, capsys):
    monkeypatch, env_file, db_path = clean_env
    monkeypatch.setenv("BLIZZARD_CLIENT_ID", "cid")
    monkeypatch.setenv("BLIZZARD_CLIENT_SECRET", "secret")
    fake = FakeAPIClient(responses={"shuffle-priest-shadow": [make_data(rating=1612, played=30)]})
    monkeypatch.setattr(main, "BattleNetAPIClient", lambda *args, **kwargs: fake)

    assert main.main(["--once", "--env-file", env_file, "--db", db_path]) == 0
    assert "shuffle-priest-shadow: Rating 1612, Played 30" in capsys.readouterr().out

    with Database(db_path) as db:
        character_id = db.find_character("bigbrainwiz", "malganis", "us")
        assert db.snapshot_count(character_id) == 1


def test_stats_prints_history_and_hours(clean_env, capsys):
    _, env_file, db_path = clean_env
    with Database(db_path) as db:
        character_id = db.get_or_create_character("bigbrainwiz", "malganis", "us")
        db.add_rating_change(character_id, "shuffle-priest-shadow", make_delta(), recorded_at=at(0))

    assert main.main(["--stats", "--env-file", env_file, "--db", db_path]) == 0
    out = capsys.readouterr().out
    assert "=== shuffle-priest-shadow Rating History ===" in out
    assert "+16" in out
    assert "1W/1L" in out
    assert "--- Time of Day Analysis ---" in out
    assert "2 games, +16 rating, 50.0% win rate" in out


def test_stats_for_untracked_character(clean_env, capsys):
    _, env_file, db_path = clean_env
    assert main.main(["--stats", "--env-file", env_file, "--db", db_path]) == 0
    assert "No data recorded" in capsys.readouterr().out
