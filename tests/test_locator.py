"""Tests for idle polecat ranking."""
from __future__ import annotations

import random

import pytest

from polecat.locator import IdleSandboxLocator, rank_candidates
from polecat.models import Cleanliness, Preference, SandboxState, SelectionRequest
from polecat.registry import InMemoryRegistry
from tests.collaborators.fakes import make_sandbox


@pytest.fixture
def pool() -> InMemoryRegistry:
    """A at T1 clean, B at T2 dirty, C at T3 clean."""
    registry = InMemoryRegistry()
    registry.register(make_sandbox("A", minutes=1, cleanliness=Cleanliness.CLEAN))
    registry.register(make_sandbox("B", minutes=2, cleanliness=Cleanliness.DIRTY))
    registry.register(make_sandbox("C", minutes=3, cleanliness=Cleanliness.CLEAN))
    return registry


def _names(sandboxes) -> list:
    return [s.name for s in sandboxes]


@pytest.mark.parametrize(
    "preference, expected",
    [
        (Preference.ANY, ["A", "B", "C"]),
        (Preference.NEWEST, ["C", "B", "A"]),
        (Preference.OLDEST, ["A", "B", "C"]),
        (Preference.CLEANEST, ["C", "A", "B"]),
    ],
)
def test_scenario_rankings(pool, preference, expected) -> None:
    locator = IdleSandboxLocator(pool)
    assert _names(locator.locate(SelectionRequest(rig="gastown", preference=preference))) == expected


def test_ties_broken_by_name() -> None:
    sandboxes = [make_sandbox(n, minutes=5) for n in ("nux", "ace", "slit")]
    assert _names(rank_candidates(sandboxes, Preference.NEWEST)) == ["ace", "nux", "slit"]
    assert _names(rank_candidates(sandboxes, Preference.OLDEST)) == ["ace", "nux", "slit"]


def test_cleanest_unknown_ranks_last() -> None:
    sandboxes = [
        make_sandbox("u", minutes=9, cleanliness=Cleanliness.UNKNOWN),
        make_sandbox("d", minutes=1, cleanliness=Cleanliness.DIRTY),
        make_sandbox("c", minutes=0, cleanliness=Cleanliness.CLEAN),
    ]
    assert _names(rank_candidates(sandboxes, Preference.CLEANEST)) == ["c", "d", "u"]


@pytest.mark.parametrize("preference", [p for p in Preference if p != Preference.ANY])
def test_ranking_is_deterministic(preference) -> None:
    """Input order never changes a ranked result."""
    sandboxes = [
        make_sandbox(
            f"p{i}",
            minutes=i % 3,
            cleanliness=list(Cleanliness)[i % 3],
        )
        for i in range(12)
    ]
    expected = _names(rank_candidates(sandboxes, preference))
    rng = random.Random(7)
    for _ in range(20):
        shuffled = list(sandboxes)
        rng.shuffle(shuffled)
        assert _names(rank_candidates(shuffled, preference)) == expected


def test_any_keeps_registry_order() -> None:
    sandboxes = [make_sandbox("z", minutes=1), make_sandbox("a", minutes=9)]
    assert _names(rank_candidates(sandboxes, Preference.ANY)) == ["z", "a"]


def test_name_filter_is_exact(pool) -> None:
    locator = IdleSandboxLocator(pool)
    assert _names(locator.locate(SelectionRequest(rig="gastown", name="B"))) == ["B"]
    assert locator.locate(SelectionRequest(rig="gastown", name="b")) == []
    assert locator.locate(SelectionRequest(rig="gastown", name="D")) == []


def test_name_filter_only_sees_idle(pool) -> None:
    pool.try_claim("gastown", "B")
    locator = IdleSandboxLocator(pool)
    assert locator.locate(SelectionRequest(rig="gastown", name="B")) == []


def test_locate_does_not_mutate(pool) -> None:
    locator = IdleSandboxLocator(pool)
    locator.locate(SelectionRequest(rig="gastown", preference=Preference.CLEANEST))
    assert all(s.state == SandboxState.IDLE for s in pool.list("gastown"))


def test_probe_recomputes_cleanliness(pool) -> None:
    """A configured probe overrides recorded cleanliness for cleanest ranking."""
    verdicts = {"A": Cleanliness.DIRTY, "B": Cleanliness.CLEAN, "C": Cleanliness.DIRTY}
    calls = []

    def probe(sandbox):
        calls.append(sandbox.name)
        return verdicts[sandbox.name]

    locator = IdleSandboxLocator(pool, cleanliness_probe=probe)
    ranked = locator.locate(SelectionRequest(rig="gastown", preference=Preference.CLEANEST))
    assert _names(ranked) == ["B", "C", "A"]
    assert sorted(calls) == ["A", "B", "C"]

    calls.clear()
    locator.locate(SelectionRequest(rig="gastown", preference=Preference.NEWEST))
    assert calls == []


def test_probe_failure_counts_as_unknown(pool) -> None:
    def probe(sandbox):
        if sandbox.name == "C":
            raise OSError("git missing")
        return Cleanliness.CLEAN

    locator = IdleSandboxLocator(pool, cleanliness_probe=probe)
    ranked = locator.locate(SelectionRequest(rig="gastown", preference=Preference.CLEANEST))
    assert _names(ranked) == ["B", "A", "C"]
    assert ranked[-1].cleanliness == Cleanliness.UNKNOWN
