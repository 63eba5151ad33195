from __future__ import annotations

import threading
from datetime import datetime, timedelta, timezone
from typing import List, Optional, Tuple

from polecat.models import Cleanliness, DispatchKind, Sandbox, SandboxState

T0 = datetime(2026, 1, 1, tzinfo=timezone.utc)


def make_sandbox(
    name: str,
    *,
    rig: str = "gastown",
    minutes: int = 0,
    cleanliness: Cleanliness = Cleanliness.UNKNOWN,
    state: SandboxState = SandboxState.IDLE,
) -> Sandbox:
    return Sandbox(
        name=name,
        rig=rig,
        clone_path=f"/rigs/{rig}/polecats/{name}",
        created_at=T0 + timedelta(minutes=minutes),
        state=state,
        cleanliness=cleanliness,
    )


class FakeCreator:
    """Creates numbered polecats without touching disk."""

    def __init__(self, *, fail: Optional[Exception] = None) -> None:
        self._fail = fail
        self._counter = 0
        self._lock = threading.Lock()
        self.calls: List[str] = []

    def create_fresh(self, rig: str) -> Sandbox:
        with self._lock:
            self.calls.append(rig)
            self._counter += 1
            index = self._counter
        if self._fail is not None:
            raise self._fail
        return make_sandbox(f"fresh-{index}", rig=rig, minutes=1000 + index)


class RecordingStarter:
    """Session starter that remembers which polecats it started."""

    def __init__(self, *, fail: Optional[Exception] = None) -> None:
        self._fail = fail
        self.started: List[Sandbox] = []

    def start_session(self, sandbox: Sandbox) -> None:
        if self._fail is not None:
            raise self._fail
        self.started.append(sandbox)


class ListRecorder:
    def __init__(self) -> None:
        self.events: List[Tuple[DispatchKind, str, str]] = []

    def record_event(self, kind: DispatchKind, rig: str, sandbox_name: str) -> None:
        self.events.append((kind, rig, sandbox_name))


class ExplodingRecorder:
    def record_event(self, kind: DispatchKind, rig: str, sandbox_name: str) -> None:
        raise ConnectionError("metrics backend down")
