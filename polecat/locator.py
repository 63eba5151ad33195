"""
IdleSandboxLocator: ranked, read-only query over a rig's idle polecats.

The locator never mutates the registry. It returns the whole ranked list
because the head candidate may lose a claim race and the caller moves on
to the next one.
"""
from __future__ import annotations

import logging
from typing import Callable, Iterable, List, Optional

from polecat.models import Cleanliness, Preference, Sandbox, SelectionRequest

logger = logging.getLogger(__name__)

CleanlinessProbe = Callable[[Sandbox], Cleanliness]


def _newest_key(sandbox: Sandbox):
    return (-sandbox.created_at.timestamp(), sandbox.name)


def _oldest_key(sandbox: Sandbox):
    return (sandbox.created_at.timestamp(), sandbox.name)


def _cleanest_key(sandbox: Sandbox):
    return (sandbox.cleanliness.badness, -sandbox.created_at.timestamp(), sandbox.name)


_RANK_KEYS = {
    Preference.NEWEST: _newest_key,
    Preference.OLDEST: _oldest_key,
    Preference.CLEANEST: _cleanest_key,
}


def rank_candidates(
    sandboxes: Iterable[Sandbox], preference: Preference
) -> List[Sandbox]:
    """
    Order candidates most-preferred first.

    Every key ends in the name, which is unique within a rig, so the order
    is total and repeat calls agree.
    """
    candidates = list(sandboxes)
    if preference == Preference.ANY:
        return candidates
    return sorted(candidates, key=_RANK_KEYS[preference])


class IdleSandboxLocator:
    """
    Build candidate lists for a SelectionRequest.

    Args:
        registry: Source of idle snapshots.
        cleanliness_probe: Recomputes cleanliness for the cleanest ranking.
            When None, the cleanliness recorded on each snapshot is used.
    """

    def __init__(
        self,
        registry,
        cleanliness_probe: Optional[CleanlinessProbe] = None,
    ) -> None:
        self._registry = registry
        self._probe = cleanliness_probe

    def locate(self, request: SelectionRequest) -> List[Sandbox]:
        idle = self._registry.list_idle(request.rig)
        if request.name is not None:
            idle = [s for s in idle if s.name == request.name]
        if request.preference == Preference.CLEANEST and self._probe is not None:
            idle = [self._probed(s) for s in idle]
        ranked = rank_candidates(idle, request.preference)
        logger.debug(
            "Located %d idle polecat(s) in %s (preference=%s, name=%s)",
            len(ranked),
            request.rig,
            request.preference.value,
            request.name,
        )
        return ranked

    def _probed(self, sandbox: Sandbox) -> Sandbox:
        try:
            cleanliness = self._probe(sandbox)
        except Exception as e:
            logger.warning("Cleanliness probe failed for %s: %s", sandbox.name, e)
            cleanliness = Cleanliness.UNKNOWN
        return sandbox.model_copy(update={"cleanliness": cleanliness})
