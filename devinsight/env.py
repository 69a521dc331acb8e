"""
Environment loader for the devinsight CLI.

Loads a .env file (current directory or nearest parent) exactly once, before
devinsight.config reads its environment overrides.

Usage:
    from devinsight.env import ensure_env_loaded

    ensure_env_loaded()
"""

from __future__ import annotations

from pathlib import Path

from dotenv import load_dotenv

_ENV_LOADED = False


def find_env_file(start: Path | None = None) -> Path | None:
    current = (start or Path.cwd()).resolve()
    for directory in (current, *current.parents):
        candidate = directory / ".env"
        if candidate.is_file():
            return candidate
    return None


def ensure_env_loaded(env_path: Path | None = None) -> Path | None:
    """
    Load the .env file once. Existing environment variables win.

    Returns:
        Path of the loaded file, or None if no .env was found
    """
    global _ENV_LOADED
    if _ENV_LOADED:
        return None

    env_path = env_path or find_env_file()
    _ENV_LOADED = True
    if env_path is None or not env_path.exists():
        return None

    load_dotenv(env_path, override=False)
    return env_path
