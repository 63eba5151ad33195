"""
ClaimCoordinator: turns a ranked candidate list into at most one claim.

Contention is expected under concurrent dispatch. A lost compare-and-set
moves the walk to the next candidate; the same candidate is never retried
and the ranking is never recomputed, so a walk costs at most one
compare-and-set per candidate.
"""
from __future__ import annotations

import logging
import threading
from typing import Iterable, Optional

from polecat.collaborators import SessionStarter
from polecat.exceptions import ClaimLostError, SessionStartError
from polecat.models import Sandbox, SandboxState
from polecat.registry.base import ClaimResult, SandboxRegistry

logger = logging.getLogger(__name__)


class ClaimCoordinator:
    """
    Owns every state change a dispatch makes to a polecat.

    Usage:
        coordinator = ClaimCoordinator(registry)
        sandbox = coordinator.claim(locator.locate(request))
        if sandbox is not None:
            coordinator.start_session(sandbox, starter)
    """

    def __init__(self, registry: SandboxRegistry) -> None:
        self._registry = registry
        self._stats_lock = threading.Lock()
        self._claimed = 0
        self._conflicts = 0

    def claim(self, candidates: Iterable[Sandbox]) -> Optional[Sandbox]:
        """
        Claim the first candidate still idle.

        Returns:
            The claimed polecat (state=claimed), or None if every
            candidate was taken first.
        """
        for candidate in candidates:
            result = self._registry.try_claim(
                candidate.rig, candidate.name, SandboxState.IDLE
            )
            if result == ClaimResult.CLAIMED:
                with self._stats_lock:
                    self._claimed += 1
                logger.info("Claimed polecat %s/%s", candidate.rig, candidate.name)
                return candidate.with_state(SandboxState.CLAIMED)
            with self._stats_lock:
                self._conflicts += 1
            logger.debug(
                "Lost claim on %s/%s, trying next candidate",
                candidate.rig,
                candidate.name,
            )
        return None

    def activate(self, sandbox: Sandbox) -> Optional[Sandbox]:
        """Mark a claimed polecat active; None if it is no longer claimed."""
        if not self._move(sandbox, SandboxState.CLAIMED, SandboxState.ACTIVE):
            return None
        return sandbox.with_state(SandboxState.ACTIVE)

    def rollback(self, sandbox: Sandbox) -> Optional[Sandbox]:
        """Return a claimed polecat to idle so it stays reusable."""
        if not self._move(sandbox, SandboxState.CLAIMED, SandboxState.IDLE):
            return None
        logger.info("Rolled back claim on %s/%s", sandbox.rig, sandbox.name)
        return sandbox.with_state(SandboxState.IDLE)

    def release(self, sandbox: Sandbox) -> Optional[Sandbox]:
        """Return an active polecat to idle after its session ended."""
        if not self._move(sandbox, SandboxState.ACTIVE, SandboxState.IDLE):
            return None
        return sandbox.with_state(SandboxState.IDLE)

    def start_session(self, sandbox: Sandbox, starter: SessionStarter) -> Sandbox:
        """
        Start a session in a claimed polecat.

        The polecat stays exclusively ours until the starter returns. On
        failure it is rolled back to idle (not destroyed) and the error is
        surfaced; no other candidate is tried.

        Raises:
            SessionStartError: The starter raised.
            ClaimLostError: The polecat left the claimed state while the
                session was starting (for example it was destroyed).
        """
        try:
            starter.start_session(sandbox)
        except Exception as exc:
            self.rollback(sandbox)
            raise SessionStartError(
                f"failed to start session in polecat {sandbox.name}: {exc}",
                rig=sandbox.rig,
                sandbox_name=sandbox.name,
                code="session_start_failed",
            ) from exc
        active = self.activate(sandbox)
        if active is None:
            current = self._registry.get(sandbox.rig, sandbox.name)
            state = current.state.value if current else "missing"
            raise ClaimLostError(sandbox.rig, sandbox.name, state)
        return active

    def _move(
        self, sandbox: Sandbox, expected: SandboxState, target: SandboxState
    ) -> bool:
        if self._registry.transition(sandbox.rig, sandbox.name, expected, target):
            return True
        current = self._registry.get(sandbox.rig, sandbox.name)
        state = current.state.value if current else "missing"
        # A claimed polecat only moves under its claimant, so a mismatch
        # there means external teardown happened mid-dispatch.
        logger.warning(
            "Polecat %s/%s expected %s, found %s; not moved to %s",
            sandbox.rig,
            sandbox.name,
            expected.value,
            state,
            target.value,
        )
        return False

    def stats(self) -> dict:
        with self._stats_lock:
            return {"claimed": self._claimed, "conflicts": self._conflicts}
