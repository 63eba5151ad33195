"""
DispatchOrchestrator: the sling operation.

Resolves flags once through FLAG_PRECEDENCE, locates and claims an idle
polecat, and falls back to fresh creation when an unfiltered search comes
up empty. Dry runs take the same locate path with the claim step swapped
for a projection that touches nothing, so they name exactly the polecat a
live run would pick.
"""
from __future__ import annotations

import logging
import subprocess
from dataclasses import dataclass, field
from typing import Callable, List, Optional, Sequence, Tuple

from polecat import telemetry
from polecat.claims import ClaimCoordinator
from polecat.collaborators import EventRecorder, SandboxCreator, SessionStarter
from polecat.exceptions import (
    PolecatError,
    SandboxCreationError,
    SandboxNotFoundError,
    SandboxUnavailableError,
)
from polecat.locator import CleanlinessProbe, IdleSandboxLocator
from polecat.models import (
    DispatchKind,
    DispatchResult,
    Preference,
    Sandbox,
    SandboxState,
    SelectionRequest,
)
from polecat.registry.base import SandboxRegistry

logger = logging.getLogger(__name__)

ClaimStep = Callable[[List[Sandbox]], Optional[Sandbox]]


@dataclass
class SlingOptions:
    """
    User intent for one dispatch, as given on the command line.

    hold keeps a fresh polecat created without a session claimed, so a
    follow-up command owns its tree; DispatchOrchestrator.finish returns it
    to idle.
    """

    rig: str
    name: Optional[str] = None
    preference: Optional[str] = None
    reuse: bool = False
    no_session: bool = False
    dry_run: bool = False
    hold: bool = False

    @property
    def has_selector(self) -> bool:
        return self.name is not None or bool(self.preference)


@dataclass
class DispatchIntent:
    reuse: bool
    start_session: bool
    warnings: List[str] = field(default_factory=list)


@dataclass(frozen=True)
class FlagRule:
    name: str
    applies: Callable[[SlingOptions], bool]
    reuse: bool
    start_session: bool
    warning: Optional[str] = None


# First matching rule wins. Conflicts resolve toward reuse-and-start and
# are reported as warnings, never errors.
FLAG_PRECEDENCE: Tuple[FlagRule, ...] = (
    FlagRule(
        "reuse-beats-no-session",
        lambda o: o.reuse and o.no_session,
        reuse=True,
        start_session=True,
        warning="--no-session ignored: --reuse always starts a session",
    ),
    FlagRule(
        "selector-implies-reuse-beats-no-session",
        lambda o: not o.reuse and o.has_selector and o.no_session,
        reuse=True,
        start_session=True,
        warning="--name/--prefer imply --reuse; --no-session ignored",
    ),
    FlagRule(
        "selector-implies-reuse",
        lambda o: not o.reuse and o.has_selector,
        reuse=True,
        start_session=True,
        warning="--name/--prefer imply --reuse",
    ),
    FlagRule("reuse", lambda o: o.reuse, reuse=True, start_session=True),
    FlagRule("fresh-no-session", lambda o: o.no_session, reuse=False, start_session=False),
    FlagRule("fresh", lambda o: True, reuse=False, start_session=True),
)


def resolve_intent(options: SlingOptions) -> DispatchIntent:
    for rule in FLAG_PRECEDENCE:
        if rule.applies(options):
            warnings = [rule.warning] if rule.warning else []
            return DispatchIntent(
                reuse=rule.reuse, start_session=rule.start_session, warnings=warnings
            )
    raise AssertionError("FLAG_PRECEDENCE has no catch-all rule")


def _project_claim(candidates: List[Sandbox]) -> Optional[Sandbox]:
    # Dry-run stand-in for ClaimCoordinator.claim: the head candidate is
    # what an uncontended live claim would take.
    return candidates[0] if candidates else None


class DispatchOrchestrator:
    """
    Runs slings against a registry and its collaborators.

    Args:
        registry: Shared SandboxRegistry.
        creator: SandboxCreator used on exhaustion.
        starter: SessionStarter for claimed polecats.
        recorder: Optional EventRecorder; failures are logged and ignored.
        cleanliness_probe: Recomputes cleanliness for the cleanest ranking.

    Example:
        orchestrator = DispatchOrchestrator(registry, creator, starter)
        result = orchestrator.sling(SlingOptions(rig="gastown", reuse=True))
        print(result.describe())
    """

    def __init__(
        self,
        registry: SandboxRegistry,
        creator: SandboxCreator,
        starter: SessionStarter,
        recorder: Optional[EventRecorder] = None,
        cleanliness_probe: Optional[CleanlinessProbe] = None,
    ) -> None:
        self.registry = registry
        self.creator = creator
        self.starter = starter
        self.recorder = recorder
        self.locator = IdleSandboxLocator(registry, cleanliness_probe)
        self.coordinator = ClaimCoordinator(registry)

    def sling(self, options: SlingOptions) -> DispatchResult:
        """
        Dispatch work into a reused or fresh polecat.

        Raises:
            UnknownPreferenceError: Preference is not recognized.
            SandboxNotFoundError: Named polecat is not idle in the rig.
            SandboxUnavailableError: Named polecat was claimed concurrently.
            SandboxCreationError: Fresh creation failed.
            SessionStartError: Session start failed; the polecat is idle again.
        """
        intent = resolve_intent(options)
        for warning in intent.warnings:
            logger.warning(warning)
        # Input errors surface before anything is touched.
        request = SelectionRequest(
            rig=options.rig,
            name=options.name,
            preference=Preference.parse(options.preference),
        )

        with telemetry.span(
            "polecat.dispatch",
            rig=options.rig,
            preference=request.preference.value,
            dry_run=options.dry_run,
        ):
            if intent.reuse:
                claim_step = _project_claim if options.dry_run else self.coordinator.claim
                selected = self._select(request, claim_step)
                if selected is not None:
                    return self._reused(selected, intent, options.dry_run)
            return self._fresh(options.rig, intent, options.dry_run, options.hold)

    def plan(self, options: SlingOptions) -> DispatchResult:
        """Dry-run shortcut: the decision sling() would reach, with no mutation."""
        return self.sling(
            SlingOptions(
                rig=options.rig,
                name=options.name,
                preference=options.preference,
                reuse=options.reuse,
                no_session=options.no_session,
                dry_run=True,
                hold=options.hold,
            )
        )

    def _select(
        self, request: SelectionRequest, claim_step: ClaimStep
    ) -> Optional[Sandbox]:
        candidates = self.locator.locate(request)
        selected = claim_step(candidates)
        if selected is not None or request.name is None:
            return selected
        # Never fall back to fresh on an explicit name: it is likely a typo.
        if candidates:
            raise SandboxUnavailableError(request.rig, request.name)
        current = self.registry.get(request.rig, request.name)
        state = None
        if current is not None and current.state != SandboxState.DESTROYED:
            state = current.state.value
        raise SandboxNotFoundError(request.rig, request.name, state=state)

    def _reused(
        self, sandbox: Sandbox, intent: DispatchIntent, dry_run: bool
    ) -> DispatchResult:
        if dry_run:
            return DispatchResult(
                kind=DispatchKind.REUSED,
                rig=sandbox.rig,
                sandbox=sandbox,
                workdir=sandbox.clone_path,
                dry_run=True,
                warnings=intent.warnings,
            )
        active = self.coordinator.start_session(sandbox, self.starter)
        self._record(DispatchKind.REUSED, active)
        return DispatchResult(
            kind=DispatchKind.REUSED,
            rig=active.rig,
            sandbox=active,
            workdir=active.clone_path,
            session_started=True,
            warnings=intent.warnings,
        )

    def _fresh(
        self, rig: str, intent: DispatchIntent, dry_run: bool, hold: bool = False
    ) -> DispatchResult:
        if dry_run:
            return DispatchResult(
                kind=DispatchKind.FRESH, rig=rig, dry_run=True, warnings=intent.warnings
            )
        try:
            created = self.creator.create_fresh(rig)
        except PolecatError:
            raise
        except Exception as exc:
            raise SandboxCreationError(
                f"failed to create polecat in rig {rig}: {exc}",
                rig=rig,
                code="create_failed",
            ) from exc

        if intent.start_session:
            # Registered as claimed so no other dispatch can take it first.
            claimed = self.registry.register(created.with_state(SandboxState.CLAIMED))
            sandbox = self.coordinator.start_session(claimed, self.starter)
        else:
            state = SandboxState.CLAIMED if hold else SandboxState.IDLE
            sandbox = self.registry.register(created.with_state(state))
        self._record(DispatchKind.FRESH, sandbox)
        return DispatchResult(
            kind=DispatchKind.FRESH,
            rig=rig,
            sandbox=sandbox,
            workdir=sandbox.clone_path,
            session_started=intent.start_session,
            warnings=intent.warnings,
        )

    def _record(self, kind: DispatchKind, sandbox: Sandbox) -> None:
        telemetry.log(
            "info", "polecat.dispatch", kind=kind.value, rig=sandbox.rig, sandbox=sandbox.name
        )
        if self.recorder is None:
            return
        try:
            self.recorder.record_event(kind, sandbox.rig, sandbox.name)
        except Exception as e:
            logger.warning("Failed to record %s event for %s: %s", kind.value, sandbox.name, e)

    def finish(self, result: DispatchResult) -> Optional[Sandbox]:
        """
        Hand a held fresh polecat back to idle once the dispatch is done with it.

        Polecats with a running session stay active; only a held claim is
        released. Returns the idle snapshot, or None if nothing was held.
        """
        sandbox = result.sandbox
        if result.dry_run or sandbox is None or sandbox.state != SandboxState.CLAIMED:
            return None
        return self.coordinator.rollback(sandbox)


def run_followup(result: DispatchResult, command: Sequence[str]) -> int:
    """
    Run a follow-up command inside the dispatched polecat's tree.

    Returns:
        The command's exit code.
    """
    if not result.workdir:
        raise ValueError("dispatch result has no working directory (dry run?)")
    logger.info("Running %s in %s", list(command), result.workdir)
    return subprocess.run(list(command), cwd=result.workdir).returncode
