"""Session directory resolution and session-id validation.

The session root follows the platform's data-directory convention:

  - ``AUQ_SESSION_DIR`` (tilde expanded) overrides everything
  - macOS:   ~/Library/Application Support/auq/sessions
  - Windows: %APPDATA%/auq/sessions, falling back to %USERPROFILE%/auq/sessions
  - other:   $XDG_DATA_HOME/auq/sessions, falling back to ~/.local/share/auq/sessions

``platform`` and ``env`` are injectable so resolution can be exercised for
every platform from a single test run.
"""

from __future__ import annotations

import os
import sys
from pathlib import Path
from typing import Mapping

from auq_sessions.constants import APP_DIR_NAME, SESSION_ID_PATTERN, SESSIONS_DIR_NAME

SESSION_DIR_ENV = "AUQ_SESSION_DIR"


def is_valid_session_id(session_id: object) -> bool:
    """True if ``session_id`` is a UUID v4 string.

    Doubles as the path-traversal guard: only ids that pass this check are
    ever joined onto the session root.
    """
    return isinstance(session_id, str) and bool(SESSION_ID_PATTERN.match(session_id))


def expand_user(path: str | os.PathLike[str]) -> Path:
    """Expand a leading ``~`` and return a Path; other paths are left alone."""
    text = os.fspath(path)
    if text.startswith("~"):
        return Path(text).expanduser()
    return Path(text)


def resolve_session_directory(
    base_dir: str | os.PathLike[str] | None = None,
    *,
    platform: str | None = None,
    env: Mapping[str, str] | None = None,
) -> Path:
    """Return the session root for ``base_dir`` or the platform default."""
    if base_dir:
        return expand_user(base_dir)

    platform = platform or sys.platform
    env = os.environ if env is None else env

    if platform == "darwin":
        data_home = Path.home() / "Library" / "Application Support"
    elif platform == "win32":
        appdata = env.get("APPDATA")
        if appdata:
            data_home = Path(appdata)
        else:
            data_home = Path(env.get("USERPROFILE") or Path.home())
    else:
        xdg = env.get("XDG_DATA_HOME")
        data_home = Path(xdg) if xdg else Path.home() / ".local" / "share"

    return data_home / APP_DIR_NAME / SESSIONS_DIR_NAME


def get_session_directory(
    *,
    platform: str | None = None,
    env: Mapping[str, str] | None = None,
) -> Path:
    """Return the session root, honouring ``AUQ_SESSION_DIR`` first."""
    env = os.environ if env is None else env
    override = env.get(SESSION_DIR_ENV)
    if override:
        return expand_user(override)
    return resolve_session_directory(platform=platform, env=env)
