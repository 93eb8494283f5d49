"""
Log directory resolution.

Locates the data directories of both tools from environment overrides or
their default locations.
"""

import os
from pathlib import Path
from typing import List, Mapping, Optional

CLAUDE_CONFIG_DIR_ENV = "CLAUDE_CONFIG_DIR"
CODEX_HOME_ENV = "CODEX_HOME"

CHAT_LOG_MARKER_SUBDIR = "projects"
DEFAULT_CODEX_DIR = ".codex"
DEFAULT_SESSION_SUBDIR = "sessions"


class DirectoryResolutionError(Exception):
    """Raised when no chat-log data directory can be located."""


class NoValidEnvPathsError(DirectoryResolutionError):
    """The override variable is set but none of its entries is usable."""

    def __init__(self, env_paths: str):
        super().__init__(
            f"no valid Claude data directories found in {CLAUDE_CONFIG_DIR_ENV}: {env_paths}"
        )
        self.env_paths = env_paths


class NoValidDefaultPathsError(DirectoryResolutionError):
    """No default location holds a data directory."""

    def __init__(self):
        super().__init__("no valid Claude data directories found in default locations")


def _resolve_against_cwd(raw: str) -> Path:
    path = Path(raw)
    if path.is_absolute():
        return path
    return Path.cwd() / path


def _has_marker_dir(base: Path) -> bool:
    return base.is_dir() and (base / CHAT_LOG_MARKER_SUBDIR).is_dir()


def default_chat_log_base_dirs(environ: Optional[Mapping[str, str]] = None) -> List[Path]:
    """Resolve the chat-log base directories.

    ``CLAUDE_CONFIG_DIR`` may list several comma-separated directories;
    relative entries resolve against the current working directory. A
    directory qualifies only if it contains a ``projects`` directory.
    Without the override, ``$XDG_CONFIG_HOME/claude`` and ``~/.claude``
    are checked.

    Args:
        environ: Environment to read; defaults to os.environ

    Returns:
        Qualifying directories in order, without duplicates

    Raises:
        NoValidEnvPathsError: If the override is set but nothing qualifies
        NoValidDefaultPathsError: If no default location qualifies
    """
    env = os.environ if environ is None else environ

    env_paths = env.get(CLAUDE_CONFIG_DIR_ENV, "")
    if env_paths.strip():
        found: List[Path] = []
        for raw in env_paths.split(","):
            raw = raw.strip()
            if not raw:
                continue
            base = _resolve_against_cwd(raw)
            if _has_marker_dir(base) and base not in found:
                found.append(base)
        if not found:
            raise NoValidEnvPathsError(env_paths.strip())
        return found

    home = env.get("HOME", "")
    if not home:
        raise NoValidDefaultPathsError()

    xdg_config = env.get("XDG_CONFIG_HOME") or f"{home}/.config"
    candidates = [Path(xdg_config) / "claude", Path(home) / ".claude"]

    found = [base for base in candidates if _has_marker_dir(base)]
    if not found:
        raise NoValidDefaultPathsError()
    return found


def default_exec_session_dirs(environ: Optional[Mapping[str, str]] = None) -> List[Path]:
    """Resolve the exec-session directories.

    Uses ``$CODEX_HOME/sessions`` (or ``~/.codex/sessions``) when it exists.
    A missing directory is not an error; the result is just empty.
    """
    env = os.environ if environ is None else environ

    home = env.get("HOME", "")
    if not home:
        return []

    override = env.get(CODEX_HOME_ENV, "").strip()
    codex_home = _resolve_against_cwd(override) if override else Path(home) / DEFAULT_CODEX_DIR

    sessions = codex_home / DEFAULT_SESSION_SUBDIR
    return [sessions] if sessions.is_dir() else []
