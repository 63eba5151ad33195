"""
polecat - Reuse idle sandboxes before creating fresh ones.

Dispatch ("sling") work into a rig:
    from polecat import DispatchOrchestrator, SlingOptions, SQLiteRegistry
    from polecat.git import GitWorktreeCreator
    from polecat.session import TmuxSessionStarter

    registry = SQLiteRegistry(db_path)
    orchestrator = DispatchOrchestrator(
        registry,
        creator=GitWorktreeCreator(rigs_root, registry),
        starter=TmuxSessionStarter(),
    )
    result = orchestrator.sling(SlingOptions(rig="gastown", reuse=True, preference="cleanest"))
    print(result.describe())

Lower-level pieces:
    from polecat.locator import IdleSandboxLocator, rank_candidates
    from polecat.claims import ClaimCoordinator
"""

from polecat.claims import ClaimCoordinator  # noqa: F401
from polecat.dispatch import (  # noqa: F401
    DispatchOrchestrator,
    SlingOptions,
    resolve_intent,
    run_followup,
)
from polecat.locator import IdleSandboxLocator, rank_candidates  # noqa: F401
from polecat.models import (  # noqa: F401
    Cleanliness,
    DispatchKind,
    DispatchResult,
    Preference,
    Sandbox,
    SandboxState,
    SelectionRequest,
)
from polecat.registry import (  # noqa: F401
    ClaimResult,
    InMemoryRegistry,
    SandboxRegistry,
    SQLiteRegistry,
)
from polecat.exceptions import (  # noqa: F401
    PolecatError,
    PolecatInputError,
    UnknownPreferenceError,
    SandboxNotFoundError,
    SandboxUnavailableError,
    PolecatCollaboratorError,
    SessionStartError,
    SandboxCreationError,
)

__all__ = [
    "ClaimCoordinator",
    "DispatchOrchestrator",
    "SlingOptions",
    "resolve_intent",
    "run_followup",
    "IdleSandboxLocator",
    "rank_candidates",
    "Cleanliness",
    "DispatchKind",
    "DispatchResult",
    "Preference",
    "Sandbox",
    "SandboxState",
    "SelectionRequest",
    "ClaimResult",
    "InMemoryRegistry",
    "SandboxRegistry",
    "SQLiteRegistry",
    "PolecatError",
    "PolecatInputError",
    "UnknownPreferenceError",
    "SandboxNotFoundError",
    "SandboxUnavailableError",
    "PolecatCollaboratorError",
    "SessionStartError",
    "SandboxCreationError",
]
