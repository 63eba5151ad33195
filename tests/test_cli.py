from __future__ import annotations

import json

import pytest

import polecat.cli as cli
from polecat.models import Cleanliness, SandboxState
from polecat.registry import SQLiteRegistry
from polecat.session import NullSessionStarter
from tests.collaborators.fakes import FakeCreator, RecordingStarter, make_sandbox


@pytest.fixture
def db(tmp_path, monkeypatch) -> SQLiteRegistry:
    monkeypatch.setenv("POLECAT_HOME", str(tmp_path))
    monkeypatch.setenv("POLECAT_DB_PATH", str(tmp_path / "registry.db"))
    registry = SQLiteRegistry(tmp_path / "registry.db")
    registry.register(make_sandbox("A", minutes=1, cleanliness=Cleanliness.CLEAN))
    registry.register(make_sandbox("B", minutes=2, cleanliness=Cleanliness.DIRTY))
    registry.register(make_sandbox("C", minutes=3, cleanliness=Cleanliness.CLEAN))
    return registry


@pytest.fixture
def creator(monkeypatch) -> FakeCreator:
    fake = FakeCreator()
    monkeypatch.setattr(cli, "GitWorktreeCreator", lambda root, registry: fake)
    monkeypatch.setattr(cli, "TmuxSessionStarter", lambda tmux: NullSessionStarter())
    monkeypatch.setattr(cli, "probe_sandbox", lambda sandbox: sandbox.cleanliness)
    return fake


def test_reuse_with_no_session_warns_and_succeeds(db, creator, capsys) -> None:
    exit_code = cli.main(["sling", "gastown", "--reuse", "--no-session", "--prefer", "newest"])

    captured = capsys.readouterr()
    assert exit_code == 0
    assert "warning: --no-session ignored" in captured.err
    assert "reused polecat C" in captured.out
    assert db.get("gastown", "C").state == SandboxState.ACTIVE


def test_unknown_preference_exits_two(db, creator, capsys) -> None:
    exit_code = cli.main(["sling", "gastown", "--reuse", "--prefer", "shiniest"])

    assert exit_code == 2
    assert "unknown preference" in capsys.readouterr().err
    assert [s.name for s in db.list_idle("gastown")] == ["A", "B", "C"]


def test_named_miss_exits_two_without_creating(db, creator, capsys) -> None:
    exit_code = cli.main(["sling", "gastown", "--reuse", "--name", "Z"])

    assert exit_code == 2
    assert "no idle polecat named 'Z'" in capsys.readouterr().err
    assert creator.calls == []


def test_dry_run_names_the_live_choice(db, creator, capsys) -> None:
    assert cli.main(["sling", "gastown", "--prefer", "oldest", "--dry-run"]) == 0
    assert "would reuse polecat A" in capsys.readouterr().out
    assert db.get("gastown", "A").state == SandboxState.IDLE

    assert cli.main(["sling", "gastown", "--prefer", "oldest"]) == 0
    assert "reused polecat A" in capsys.readouterr().out


def test_exhaustion_creates_fresh(db, creator, capsys) -> None:
    for name in ("A", "B", "C"):
        db.destroy("gastown", name)

    assert cli.main(["sling", "gastown", "--reuse"]) == 0
    assert "created fresh polecat fresh-1" in capsys.readouterr().out
    assert creator.calls == ["gastown"]


def test_session_failure_exits_one_and_rolls_back(db, creator, capsys, monkeypatch) -> None:
    monkeypatch.setattr(
        cli, "TmuxSessionStarter", lambda tmux: RecordingStarter(fail=RuntimeError("no tmux"))
    )
    assert cli.main(["sling", "gastown", "--reuse", "--name", "B"]) == 1
    assert "failed to start session" in capsys.readouterr().err
    assert db.get("gastown", "B").state == SandboxState.IDLE


def test_followup_runs_in_workdir(db, creator, monkeypatch) -> None:
    seen = {}

    def fake_followup(result, command):
        seen["cwd"] = result.workdir
        seen["command"] = command
        return 0

    monkeypatch.setattr(cli, "run_followup", fake_followup)
    assert cli.main(["sling", "gastown", "--reuse", "--name", "B", "--", "make", "test"]) == 0
    assert seen == {"cwd": "/rigs/gastown/polecats/B", "command": ["make", "test"]}


def test_list_json(db, capsys) -> None:
    assert cli.main(["list", "gastown", "--json"]) == 0
    payload = json.loads(capsys.readouterr().out)
    assert [p["name"] for p in payload] == ["A", "B", "C"]
    assert payload[0]["state"] == "idle"


def test_release_and_destroy(db, capsys) -> None:
    assert cli.main(["release", "gastown", "A"]) == 2
    assert "not active" in capsys.readouterr().err

    db.try_claim("gastown", "A")
    db.transition("gastown", "A", SandboxState.CLAIMED, SandboxState.ACTIVE)
    assert cli.main(["release", "gastown", "A"]) == 0
    assert db.get("gastown", "A").state == SandboxState.IDLE

    assert cli.main(["destroy", "gastown", "A"]) == 0
    assert cli.main(["destroy", "gastown", "A"]) == 2
    assert cli.main(["release", "gastown", "A"]) == 2


def test_followup_holds_fresh_polecat_until_it_returns(db, creator, monkeypatch) -> None:
    seen = {}

    def fake_followup(result, command):
        seen["state"] = db.get("gastown", result.sandbox.name).state
        return 5

    monkeypatch.setattr(cli, "run_followup", fake_followup)
    assert cli.main(["sling", "gastown", "--no-session", "--", "make", "test"]) == 5
    assert seen == {"state": SandboxState.CLAIMED}
    assert db.get("gastown", "fresh-1").state == SandboxState.IDLE


def test_fresh_without_followup_is_left_idle(db, creator) -> None:
    assert cli.main(["sling", "gastown", "--no-session"]) == 0
    assert db.get("gastown", "fresh-1").state == SandboxState.IDLE
