"""
In-process registry.

Thread-safe: a pool lock guards the record table and each record carries
its own lock for compare-and-set, so claims on different polecats never
serialize behind each other.
"""
from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

from polecat.exceptions import DuplicateSandboxError
from polecat.models import Sandbox, SandboxState
from polecat.registry.base import SandboxRegistry

logger = logging.getLogger(__name__)


@dataclass
class _Record:
    sandbox: Sandbox
    lock: threading.Lock = field(default_factory=threading.Lock)


class InMemoryRegistry(SandboxRegistry):
    """
    Registry kept in memory.

    Usage:
        registry = InMemoryRegistry()
        registry.register(Sandbox(name="nux", rig="gastown", clone_path="/w/nux"))
        registry.try_claim("gastown", "nux")
    """

    def __init__(self) -> None:
        self._records: Dict[Tuple[str, str], _Record] = {}
        self._lock = threading.Lock()

    def _record(self, rig: str, name: str) -> Optional[_Record]:
        with self._lock:
            return self._records.get((rig, name))

    def _snapshot(self, rig: str) -> List[Sandbox]:
        with self._lock:
            records = [r for (r_rig, _), r in self._records.items() if r_rig == rig]
        # Reads of a single attribute are atomic; the list is a snapshot.
        return [record.sandbox for record in records]

    def list_idle(self, rig: str) -> List[Sandbox]:
        return [s for s in self._snapshot(rig) if s.state == SandboxState.IDLE]

    def list(self, rig: str, *, include_destroyed: bool = False) -> List[Sandbox]:
        sandboxes = self._snapshot(rig)
        if include_destroyed:
            return sandboxes
        return [s for s in sandboxes if s.state != SandboxState.DESTROYED]

    def get(self, rig: str, name: str) -> Optional[Sandbox]:
        record = self._record(rig, name)
        return record.sandbox if record else None

    def register(self, sandbox: Sandbox) -> Sandbox:
        key = (sandbox.rig, sandbox.name)
        with self._lock:
            existing = self._records.get(key)
            if existing and existing.sandbox.state != SandboxState.DESTROYED:
                raise DuplicateSandboxError(sandbox.rig, sandbox.name)
            # Re-insert so a recycled name moves to the end of registry order.
            self._records.pop(key, None)
            self._records[key] = _Record(sandbox=sandbox)
        logger.debug(
            "Registered polecat %s/%s (%s)", sandbox.rig, sandbox.name, sandbox.state.value
        )
        return sandbox

    def _compare_and_set(
        self,
        rig: str,
        name: str,
        expected: SandboxState,
        target: SandboxState,
    ) -> bool:
        record = self._record(rig, name)
        if record is None:
            return False
        with record.lock:
            if record.sandbox.state != expected:
                return False
            record.sandbox = record.sandbox.with_state(target)
        logger.debug(
            "Polecat %s/%s: %s -> %s", rig, name, expected.value, target.value
        )
        return True
