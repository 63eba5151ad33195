"""
Configuration from environment variables.

Usage:
    from polecat.config import get_settings

    settings = get_settings()
    print(settings.db_path, settings.rigs_root)
"""

from functools import lru_cache
from pathlib import Path
import os


class Settings:
    """Configuration loaded from environment variables."""

    def __init__(self) -> None:
        # Storage
        self.home: Path = Path(
            os.getenv("POLECAT_HOME", str(Path.home() / ".polecat"))
        ).expanduser()
        self.db_path: Path = Path(
            os.getenv("POLECAT_DB_PATH", str(self.home / "registry.db"))
        ).expanduser()

        # Rig layout: <rigs_root>/<rig>/repo is the source repository,
        # <rigs_root>/<rig>/polecats/<name> holds each worktree.
        self.rigs_root: Path = Path(
            os.getenv("POLECAT_RIGS_ROOT", str(self.home / "rigs"))
        ).expanduser()

        # Sessions
        self.tmux: str = os.getenv("POLECAT_TMUX", "tmux")

        # Logging
        self.log_level: str = os.getenv("POLECAT_LOG_LEVEL", "WARNING").upper()


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


def reset_settings() -> None:
    """Clear settings cache. For testing only."""
    get_settings.cache_clear()
