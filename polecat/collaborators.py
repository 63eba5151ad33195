from __future__ import annotations

from typing import Protocol

from polecat.models import DispatchKind, Sandbox


class SandboxCreator(Protocol):
    """Creates a fresh polecat when no idle one can be reused."""

    def create_fresh(self, rig: str) -> Sandbox:
        ...


class SessionStarter(Protocol):
    """Starts the interactive session for a claimed polecat. Raises on failure."""

    def start_session(self, sandbox: Sandbox) -> None:
        ...


class EventRecorder(Protocol):
    """Receives reused/fresh dispatch events. Failures are never fatal."""

    def record_event(self, kind: DispatchKind, rig: str, sandbox_name: str) -> None:
        ...
