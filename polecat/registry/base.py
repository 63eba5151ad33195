"""
SandboxRegistry: authoritative record of every polecat.

The registry is the only holder of sandbox state. Its one contended
operation is transition(), an atomic compare-and-set on a single record:
the state changes only if it still equals the expected state. Backends
must never implement it as an unguarded read followed by a write.
"""
from __future__ import annotations

from abc import ABC, abstractmethod
from enum import Enum
from typing import List, Optional

from polecat.exceptions import InvalidTransitionError
from polecat.models import Sandbox, SandboxState, is_allowed_transition


class ClaimResult(str, Enum):
    CLAIMED = "claimed"
    CONFLICT = "conflict"


class SandboxRegistry(ABC):
    """Storage-agnostic registry contract."""

    @abstractmethod
    def list_idle(self, rig: str) -> List[Sandbox]:
        """Snapshot of the rig's idle polecats in registry order."""

    @abstractmethod
    def list(self, rig: str, *, include_destroyed: bool = False) -> List[Sandbox]:
        """Snapshot of all polecats in a rig."""

    @abstractmethod
    def get(self, rig: str, name: str) -> Optional[Sandbox]:
        """Current record for a live polecat, or the destroyed one if none is live."""

    @abstractmethod
    def register(self, sandbox: Sandbox) -> Sandbox:
        """
        Record a new polecat.

        Raises:
            DuplicateSandboxError: A live polecat already uses the name.
        """

    @abstractmethod
    def _compare_and_set(
        self,
        rig: str,
        name: str,
        expected: SandboxState,
        target: SandboxState,
    ) -> bool:
        """Backend primitive: atomically swap expected -> target."""

    def transition(
        self,
        rig: str,
        name: str,
        expected: SandboxState,
        target: SandboxState,
    ) -> bool:
        """
        Atomically move a polecat from expected to target.

        Returns False when the record is missing or no longer in the
        expected state.

        Raises:
            InvalidTransitionError: expected -> target is not a legal edge.
        """
        if not is_allowed_transition(expected, target):
            raise InvalidTransitionError(expected.value, target.value)
        return self._compare_and_set(rig, name, expected, target)

    def try_claim(
        self,
        rig: str,
        name: str,
        expected: SandboxState = SandboxState.IDLE,
    ) -> ClaimResult:
        if self.transition(rig, name, expected, SandboxState.CLAIMED):
            return ClaimResult.CLAIMED
        return ClaimResult.CONFLICT

    def destroy(self, rig: str, name: str) -> bool:
        """
        Mark a polecat destroyed from whatever live state it is in.

        Retries while the state shifts underneath, since destroy is
        reachable from every live state.
        """
        while True:
            current = self.get(rig, name)
            if current is None or current.state == SandboxState.DESTROYED:
                return False
            if self._compare_and_set(
                rig, name, current.state, SandboxState.DESTROYED
            ):
                return True
