"""
Typed exceptions for polecat.

Provides structured error handling with:
- PolecatError: Base exception for all polecat errors
- PolecatInputError: User input errors (bad preference, unknown sandbox name)
- PolecatRegistryError: Registry contract violations
- PolecatCollaboratorError: Failures of sandbox creation or session start

All exceptions include structured attributes for programmatic handling.
Claim contention is not an error and never surfaces as one of these.
"""

from __future__ import annotations

from typing import Any, Dict, Optional


class PolecatError(Exception):
    """Base exception for all polecat errors.

    Attributes:
        message: Human-readable error description
        code: Machine-readable error code for programmatic handling
        details: Additional context as key-value pairs
    """

    def __init__(
        self,
        message: str,
        *,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        self.message = message
        self.code = code or self.__class__.__name__
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        """Serialize exception for logging or CLI output."""
        return {
            "error": self.code,
            "message": self.message,
            "details": self.details,
        }


class PolecatInputError(PolecatError):
    """User input error.

    Raised before any registry mutation is attempted. The CLI maps these
    to exit code 2.
    """

    pass


class UnknownPreferenceError(PolecatInputError):
    """Selection preference string is not one of any/newest/oldest/cleanest."""

    def __init__(self, value: str, *, choices: Optional[list] = None) -> None:
        choices = choices or []
        super().__init__(
            f"unknown preference {value!r} (expected one of: {', '.join(choices)})",
            code="unknown_preference",
            details={"value": value, "choices": choices},
        )
        self.value = value


class SandboxNotFoundError(PolecatInputError):
    """Explicitly named sandbox is not in the rig's idle set.

    Attributes:
        rig: Rig that was searched
        name: Requested sandbox name
        state: Current state if the sandbox exists but is not idle
    """

    def __init__(
        self,
        rig: str,
        name: str,
        *,
        state: Optional[str] = None,
    ) -> None:
        if state:
            message = f"polecat {name!r} in rig {rig!r} is not idle (state={state})"
        else:
            message = f"no idle polecat named {name!r} in rig {rig!r}"
        details: Dict[str, Any] = {"rig": rig, "name": name}
        if state:
            details["state"] = state
        super().__init__(message, code="sandbox_not_found", details=details)
        self.rig = rig
        self.name = name
        self.state = state


class SandboxUnavailableError(PolecatInputError):
    """Explicitly named sandbox was claimed by a concurrent dispatch."""

    def __init__(self, rig: str, name: str) -> None:
        super().__init__(
            f"polecat {name!r} in rig {rig!r} was claimed by another dispatch",
            code="sandbox_unavailable",
            details={"rig": rig, "name": name},
        )
        self.rig = rig
        self.name = name


class PolecatRegistryError(PolecatError):
    """Registry contract violation (duplicate names, illegal transitions)."""

    pass


class DuplicateSandboxError(PolecatRegistryError):
    """A live sandbox with the same name already exists in the rig."""

    def __init__(self, rig: str, name: str) -> None:
        super().__init__(
            f"polecat {name!r} already exists in rig {rig!r}",
            code="duplicate_sandbox",
            details={"rig": rig, "name": name},
        )


class InvalidTransitionError(PolecatRegistryError):
    """Requested state change is not part of the sandbox state machine."""

    def __init__(self, source: str, target: str) -> None:
        super().__init__(
            f"illegal sandbox transition {source} -> {target}",
            code="invalid_transition",
            details={"from": source, "to": target},
        )


class ClaimLostError(PolecatRegistryError):
    """A claimed sandbox changed state under its claimant (external teardown)."""

    def __init__(self, rig: str, name: str, state: str) -> None:
        super().__init__(
            f"polecat {name!r} in rig {rig!r} was {state} before its session was marked active",
            code="claim_lost",
            details={"rig": rig, "name": name, "state": state},
        )


class PolecatCollaboratorError(PolecatError):
    """External collaborator failure.

    Raised when:
    - Fresh sandbox creation fails
    - Session start fails (after the claimed sandbox was rolled back)

    Attributes:
        rig: Rig of the dispatch
        sandbox_name: Sandbox involved, if one was known
    """

    def __init__(
        self,
        message: str,
        *,
        rig: Optional[str] = None,
        sandbox_name: Optional[str] = None,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        details = details or {}
        if rig:
            details["rig"] = rig
        if sandbox_name:
            details["sandbox_name"] = sandbox_name

        self.rig = rig
        self.sandbox_name = sandbox_name

        super().__init__(message, code=code, details=details)


class SessionStartError(PolecatCollaboratorError):
    """Session could not be started in a claimed sandbox."""

    pass


class SandboxCreationError(PolecatCollaboratorError):
    """Fresh sandbox could not be created."""

    pass


__all__ = [
    "PolecatError",
    "PolecatInputError",
    "UnknownPreferenceError",
    "SandboxNotFoundError",
    "SandboxUnavailableError",
    "PolecatRegistryError",
    "DuplicateSandboxError",
    "InvalidTransitionError",
    "PolecatCollaboratorError",
    "SessionStartError",
    "SandboxCreationError",
]
