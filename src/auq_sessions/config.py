"""Session configuration — one immutable settings value per process.

``load_settings()`` is called once at process start (CLI, server lifespan)
and the resulting :class:`SessionSettings` is passed explicitly into every
component constructor.  Nothing in the SDK reads configuration from a
module-level cache.

Layering, later sources win:

  1. Built-in defaults
  2. Global config file: ``$XDG_CONFIG_HOME/auq/.auqrc.json`` (or ``.yaml``/``.yml``)
  3. Local config file:  ``./.auqrc.json`` (or ``.yaml``/``.yml``) in the working dir
  4. Environment: ``AUQ_SESSION_DIR``, ``AUQ_SESSION_TIMEOUT`` (seconds),
     ``AUQ_RETENTION_DAYS``, ``AUQ_LOG_LEVEL``

Config files use millisecond keys (``sessionTimeout``, ``retentionPeriod``),
the same file format the terminal client reads.
Unknown keys (UI theme, language, ...) are ignored.
"""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Any, Mapping, Optional

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError
from pydantic.alias_generators import to_camel

from auq_sessions.constants import MAX_OPTIONS_LIMIT, MAX_QUESTIONS_LIMIT, MIN_OPTIONS
from auq_sessions.paths import expand_user, get_session_directory

logger = logging.getLogger(__name__)

CONFIG_FILE_NAMES: tuple[str, ...] = (".auqrc.json", ".auqrc.yaml", ".auqrc.yml")

DEFAULT_RETENTION_PERIOD = 7 * 24 * 60 * 60.0  # 7 days


@dataclass(frozen=True)
class SessionSettings:
    """Immutable configuration for the session store, watcher and orchestrator."""

    # Root directory holding one sub-directory per session
    base_dir: Path

    # Overall producer wait, seconds.  0 waits forever.
    session_timeout: float = 0.0
    # How long finished sessions stay on disk, seconds.  0 disables cleanup.
    retention_period: float = DEFAULT_RETENTION_PERIOD
    max_sessions: int = 100

    # Question payload limits enforced at the process boundary
    max_questions: int = 4
    max_options: int = 4

    # Producer wait loop
    poll_interval: float = 0.2
    # Share of session_timeout the wait loop may use, leaving slack to
    # finalise status before an enclosing deadline.
    watcher_timeout_ratio: float = 0.9

    # Atomic file store
    lock_timeout: float = 5.0
    read_retries: int = 3
    retry_delay: float = 0.1
    file_mode: int = 0o600
    dir_mode: int = 0o700

    # Consumer-side new-session watcher
    watch_debounce: float = 0.2

    log_level: str = "INFO"

    @property
    def watcher_timeout(self) -> float:
        """Wait budget for the polling loop; 0 means no deadline."""
        if self.session_timeout <= 0:
            return 0.0
        return self.session_timeout * self.watcher_timeout_ratio


class ConfigFile(BaseModel):
    """Validated contents of a ``.auqrc`` file.  All keys optional."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")

    session_dir: Optional[str] = None
    session_timeout: Optional[float] = Field(None, ge=0)  # milliseconds
    retention_period: Optional[float] = Field(None, ge=0)  # milliseconds
    max_questions: Optional[int] = Field(None, ge=1, le=MAX_QUESTIONS_LIMIT)
    max_options: Optional[int] = Field(None, ge=MIN_OPTIONS, le=MAX_OPTIONS_LIMIT)
    max_sessions: Optional[int] = Field(None, ge=1)


def _xdg_config_home(env: Mapping[str, str]) -> Path:
    value = env.get("XDG_CONFIG_HOME")
    return Path(value) if value else Path.home() / ".config"


def _find_config_file(directory: Path) -> Path | None:
    for name in CONFIG_FILE_NAMES:
        candidate = directory / name
        if candidate.is_file():
            return candidate
    return None


def get_config_paths(
    cwd: Path | None = None, env: Mapping[str, str] | None = None,
) -> dict[str, Any]:
    """Report where config files are looked up and whether they exist."""
    env = os.environ if env is None else env
    cwd = cwd or Path.cwd()
    global_dir = _xdg_config_home(env) / "auq"
    local = _find_config_file(cwd)
    global_ = _find_config_file(global_dir)
    return {
        "local": local or cwd / CONFIG_FILE_NAMES[0],
        "global": global_ or global_dir / CONFIG_FILE_NAMES[0],
        "local_exists": local is not None,
        "global_exists": global_ is not None,
    }


def read_config_file(path: Path) -> ConfigFile | None:
    """Parse one config file; log and return None if it is unusable."""
    try:
        text = path.read_text(encoding="utf-8")
        if path.suffix == ".json":
            data = json.loads(text)
        else:
            data = yaml.safe_load(text)
    except (OSError, json.JSONDecodeError, yaml.YAMLError) as exc:
        logger.warning("Could not read config file %s: %s", path, exc)
        return None

    if data is None:
        return ConfigFile()
    if not isinstance(data, dict):
        logger.warning("Config file %s must contain an object, ignoring", path)
        return None
    try:
        return ConfigFile.model_validate(data)
    except ValidationError as exc:
        logger.warning("Invalid config file %s: %s", path, exc)
        return None


def _apply_config_file(settings: SessionSettings, cfg: ConfigFile) -> SessionSettings:
    changes: dict[str, Any] = {}
    if cfg.session_dir:
        changes["base_dir"] = expand_user(cfg.session_dir)
    if cfg.session_timeout is not None:
        changes["session_timeout"] = cfg.session_timeout / 1000.0
    if cfg.retention_period is not None:
        changes["retention_period"] = cfg.retention_period / 1000.0
    if cfg.max_questions is not None:
        changes["max_questions"] = cfg.max_questions
    if cfg.max_options is not None:
        changes["max_options"] = cfg.max_options
    if cfg.max_sessions is not None:
        changes["max_sessions"] = cfg.max_sessions
    return replace(settings, **changes)


def load_settings(
    cwd: Path | None = None, env: Mapping[str, str] | None = None,
) -> SessionSettings:
    """Build settings from defaults, config files and ``AUQ_*`` env vars."""
    env = os.environ if env is None else env
    settings = SessionSettings(base_dir=get_session_directory(env=env))

    paths = get_config_paths(cwd, env)
    for key in ("global", "local"):
        if not paths[f"{key}_exists"]:
            continue
        cfg = read_config_file(paths[key])
        if cfg is not None:
            settings = _apply_config_file(settings, cfg)
            logger.debug("Loaded %s config from %s", key, paths[key])

    changes: dict[str, Any] = {}
    if env.get("AUQ_SESSION_DIR"):
        changes["base_dir"] = expand_user(env["AUQ_SESSION_DIR"])
    if env.get("AUQ_SESSION_TIMEOUT"):
        changes["session_timeout"] = float(env["AUQ_SESSION_TIMEOUT"])
    if env.get("AUQ_RETENTION_DAYS"):
        changes["retention_period"] = float(env["AUQ_RETENTION_DAYS"]) * 24 * 60 * 60
    if env.get("AUQ_LOG_LEVEL"):
        changes["log_level"] = env["AUQ_LOG_LEVEL"].upper()

    return replace(settings, **changes)
