"""Session-start collaborators."""
from __future__ import annotations

import logging
import subprocess

from polecat.models import Sandbox

logger = logging.getLogger(__name__)


def session_name(sandbox: Sandbox) -> str:
    # tmux treats '.' and ':' as target separators.
    return f"{sandbox.rig}-{sandbox.name}".replace(".", "_").replace(":", "_")


class TmuxSessionStarter:
    """Starts a detached tmux session rooted at the polecat's clone path."""

    def __init__(self, tmux: str = "tmux", timeout: float = 30.0) -> None:
        self._tmux = tmux
        self._timeout = timeout

    def start_session(self, sandbox: Sandbox) -> None:
        cmd = [
            self._tmux,
            "new-session",
            "-d",
            "-s",
            session_name(sandbox),
            "-c",
            sandbox.clone_path,
        ]
        proc = subprocess.run(cmd, capture_output=True, text=True, timeout=self._timeout)
        if proc.returncode != 0:
            raise RuntimeError(
                f"tmux new-session exited {proc.returncode}: {proc.stderr.strip()}"
            )
        logger.info("Started session %s", session_name(sandbox))


class NullSessionStarter:
    """Accepts every polecat without starting anything."""

    def start_session(self, sandbox: Sandbox) -> None:
        return None
