"""
Dispatch metrics: reused vs fresh counts per rig.

Thread-safe, in-memory collection with Prometheus-compatible export.
DispatchMetricsCollector satisfies the EventRecorder protocol, so it can
be handed straight to the dispatch orchestrator.

Usage:
    from polecat.metrics import get_dispatch_metrics

    collector = get_dispatch_metrics()
    print(collector.snapshot()["reuse_ratio"])
    print(collector.prometheus_format())
"""

from __future__ import annotations

import logging
import threading
from collections import defaultdict
from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from polecat.models import DispatchKind, utc_now

logger = logging.getLogger(__name__)


class DispatchEvent(BaseModel):
    """
    One completed dispatch.

    Attributes:
        kind: reused or fresh.
        rig: Rig the work went to (low-cardinality, safe for metric labels).
        sandbox_name: Polecat that received the work (logs only).
        recorded_at: When the event was recorded.
    """

    model_config = ConfigDict(extra="forbid")

    kind: DispatchKind
    rig: str
    sandbox_name: str
    recorded_at: datetime = Field(default_factory=utc_now)

    def to_log_dict(self) -> Dict[str, Any]:
        """
        Serialize to a dict suitable for JSON logging.

        {"type": "polecat.dispatch_event.v1", ...fields...}
        """
        data = self.model_dump(mode="json")
        data["type"] = "polecat.dispatch_event.v1"
        return data


class _CounterValue:
    """Thread-safe counter."""

    def __init__(self) -> None:
        self._value = 0
        self._lock = threading.Lock()

    def inc(self, amount: int = 1) -> None:
        with self._lock:
            self._value += amount

    def get(self) -> int:
        with self._lock:
            return self._value


class DispatchMetricsCollector:
    """
    Collects dispatch events.

    Keeps counters by (kind, rig) and a bounded tail of recent events for
    inspection.
    """

    def __init__(self, max_recent: int = 100) -> None:
        self._by_kind_rig: Dict[str, _CounterValue] = defaultdict(_CounterValue)
        self._total = _CounterValue()
        self._recent: List[DispatchEvent] = []
        self._max_recent = max_recent
        self._lock = threading.Lock()

    def record_event(self, kind: DispatchKind, rig: str, sandbox_name: str) -> None:
        self.observe(DispatchEvent(kind=kind, rig=rig, sandbox_name=sandbox_name))

    def observe(self, event: DispatchEvent) -> None:
        with self._lock:
            self._total.inc()
            self._by_kind_rig[f"{event.kind.value}|{event.rig}"].inc()
            self._recent.append(event)
            if len(self._recent) > self._max_recent:
                del self._recent[: len(self._recent) - self._max_recent]
        logger.info("dispatch event %s", event.to_log_dict())

    def counts(self) -> Dict[str, int]:
        """Map "kind|rig" to count."""
        with self._lock:
            return {k: v.get() for k, v in self._by_kind_rig.items()}

    def recent(self) -> List[DispatchEvent]:
        with self._lock:
            return list(self._recent)

    def snapshot(self) -> Dict[str, Any]:
        counts = self.counts()
        reused = sum(v for k, v in counts.items() if k.startswith("reused|"))
        total = self._total.get()
        return {
            "total_dispatches": total,
            "reused": reused,
            "fresh": total - reused,
            "reuse_ratio": reused / total if total else None,
            "by_kind_rig": counts,
        }

    def prometheus_format(self) -> str:
        """
        Export metrics in Prometheus text exposition format.

        Returns:
            String suitable for a /metrics endpoint or textfile collector.
        """
        lines = [
            "# HELP polecat_dispatches_total Dispatches by kind and rig",
            "# TYPE polecat_dispatches_total counter",
        ]
        for key, value in sorted(self.counts().items()):
            kind, rig = key.split("|", 1)
            lines.append(
                f'polecat_dispatches_total{{kind="{_escape_label(kind)}",'
                f'rig="{_escape_label(rig)}"}} {value}'
            )
        return "\n".join(lines)


def _escape_label(value: str) -> str:
    return value.replace("\\", "\\\\").replace('"', '\\"').replace("\n", "\\n")


_global_collector: Optional[DispatchMetricsCollector] = None
_global_lock = threading.Lock()


def get_dispatch_metrics() -> DispatchMetricsCollector:
    """Get the global DispatchMetricsCollector singleton."""
    global _global_collector
    with _global_lock:
        if _global_collector is None:
            _global_collector = DispatchMetricsCollector()
        return _global_collector


def reset_dispatch_metrics() -> None:
    """Reset the global collector (mainly for testing)."""
    global _global_collector
    with _global_lock:
        _global_collector = DispatchMetricsCollector()
