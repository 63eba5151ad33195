from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Dict, FrozenSet, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from polecat.exceptions import UnknownPreferenceError


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class SandboxState(str, Enum):
    """
    Lifecycle of a polecat.

    idle -> claimed -> active, claimed -> idle on a failed session start,
    active -> idle when the session ends. Any live state can be destroyed
    by external teardown; destroyed is terminal.
    """

    IDLE = "idle"
    CLAIMED = "claimed"
    ACTIVE = "active"
    DESTROYED = "destroyed"


ALLOWED_TRANSITIONS: Dict[SandboxState, FrozenSet[SandboxState]] = {
    SandboxState.IDLE: frozenset({SandboxState.CLAIMED, SandboxState.DESTROYED}),
    SandboxState.CLAIMED: frozenset(
        {SandboxState.ACTIVE, SandboxState.IDLE, SandboxState.DESTROYED}
    ),
    SandboxState.ACTIVE: frozenset({SandboxState.IDLE, SandboxState.DESTROYED}),
    SandboxState.DESTROYED: frozenset(),
}


def is_allowed_transition(source: SandboxState, target: SandboxState) -> bool:
    return target in ALLOWED_TRANSITIONS[source]


class Cleanliness(str, Enum):
    """Working-tree cleanliness, ordered clean < dirty < unknown."""

    CLEAN = "clean"
    DIRTY = "dirty"
    UNKNOWN = "unknown"

    @property
    def badness(self) -> int:
        return _CLEANLINESS_BADNESS[self]


_CLEANLINESS_BADNESS = {
    Cleanliness.CLEAN: 0,
    Cleanliness.DIRTY: 1,
    Cleanliness.UNKNOWN: 2,
}


class Preference(str, Enum):
    """
    Ranking policy for idle candidates.

    ANY keeps registry order and skips ranking entirely; the others sort
    the whole eligible set before the claim walk starts.
    """

    ANY = "any"
    NEWEST = "newest"
    OLDEST = "oldest"
    CLEANEST = "cleanest"

    @classmethod
    def choices(cls) -> List[str]:
        return [member.value for member in cls]

    @classmethod
    def parse(cls, value: Optional[str]) -> "Preference":
        """
        Parse a user-supplied preference.

        None or an empty string means ANY. Anything else must name a
        preference (case-insensitive); an unknown value is a user error,
        never silently treated as ANY.
        """
        if value is None or not value.strip():
            return cls.ANY
        normalized = value.strip().lower()
        for member in cls:
            if member.value == normalized:
                return member
        raise UnknownPreferenceError(value, choices=cls.choices())


class Sandbox(BaseModel):
    """
    One polecat: an isolated working copy plus an optional session.

    Instances are immutable snapshots. The registry owns the live state;
    state changes produce new snapshots via model_copy().
    """

    model_config = ConfigDict(extra="forbid", frozen=True)

    name: str = Field(..., min_length=1)
    rig: str = Field(..., min_length=1)
    clone_path: str
    created_at: datetime = Field(default_factory=utc_now)
    state: SandboxState = SandboxState.IDLE
    cleanliness: Cleanliness = Cleanliness.UNKNOWN

    @field_validator("created_at")
    @classmethod
    def assume_utc(cls, value: datetime) -> datetime:
        # Naive timestamps compare badly against aware ones.
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value

    def with_state(self, state: SandboxState) -> "Sandbox":
        return self.model_copy(update={"state": state})


class SelectionRequest(BaseModel):
    """Locator input. Name and preference may both be set."""

    model_config = ConfigDict(extra="forbid")

    rig: str = Field(..., min_length=1)
    name: Optional[str] = None
    preference: Preference = Preference.ANY


class DispatchKind(str, Enum):
    REUSED = "reused"
    FRESH = "fresh"


class DispatchResult(BaseModel):
    """
    Outcome of one sling.

    Attributes:
        kind: Whether an idle polecat was reused or a fresh one created.
        rig: Rig the work was dispatched into.
        sandbox: The selected polecat. None only for a dry-run that
            projects fresh creation (no name exists yet).
        workdir: Clone path follow-up commands must run in.
        session_started: True if a session was started.
        dry_run: True if nothing was mutated.
        warnings: Non-fatal flag conflicts resolved by precedence.
    """

    model_config = ConfigDict(extra="forbid")

    kind: DispatchKind
    rig: str
    sandbox: Optional[Sandbox] = None
    workdir: Optional[str] = None
    session_started: bool = False
    dry_run: bool = False
    warnings: List[str] = Field(default_factory=list)

    def describe(self) -> str:
        """One-line report shared by live and dry-run output."""
        prefix = "would " if self.dry_run else ""
        if self.kind == DispatchKind.REUSED and self.sandbox is not None:
            verb = "reuse" if self.dry_run else "reused"
            return (
                f"{prefix}{verb} polecat {self.sandbox.name} "
                f"in rig {self.rig} at {self.workdir}"
            )
        if self.sandbox is None:
            return f"{prefix}create fresh polecat in rig {self.rig}"
        return (
            f"created fresh polecat {self.sandbox.name} "
            f"in rig {self.rig} at {self.workdir}"
        )
