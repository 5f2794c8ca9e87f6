"""Configuration loader."""

import configparser
import logging
import os
import shutil
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Optional

from sourcectl.probes.repo import find_git_root

DEFAULT_STATE_DIR_NAME = ".sourcectl"
DEFAULT_EXECUTABLE = "git"
DEFAULT_MAX_WORKERS = 2
DEFAULT_COMMAND_TIMEOUT = 60.0
DEFAULT_MAX_COMMIT_FILES = 50
DEFAULT_MAX_BATCH_PATHS = 50
DEFAULT_LOCK_RETRY_DELAY = 0.5
DEFAULT_SHUTDOWN_GRACE = 5.0
DEFAULT_STATE_MAX_AGE = 60.0

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Settings:
    """sourcectl settings, read at Provider construction and on reload."""

    repository_root: Path
    executable_path: str = DEFAULT_EXECUTABLE
    use_locking: bool = False
    remote_url: Optional[str] = None
    max_workers: int = DEFAULT_MAX_WORKERS
    command_timeout: float = DEFAULT_COMMAND_TIMEOUT
    max_commit_files: int = DEFAULT_MAX_COMMIT_FILES
    max_batch_paths: int = DEFAULT_MAX_BATCH_PATHS
    lock_retry_delay: float = DEFAULT_LOCK_RETRY_DELAY
    shutdown_grace: float = DEFAULT_SHUTDOWN_GRACE
    state_max_age: float = DEFAULT_STATE_MAX_AGE
    event_log: bool = False
    state_dir: Path = field(default=None)  # type: ignore[assignment]

    def __post_init__(self) -> None:
        """Compute derived paths."""
        if self.state_dir is None:
            object.__setattr__(self, "state_dir", self.repository_root / DEFAULT_STATE_DIR_NAME)

    @property
    def config_path(self) -> Path:
        """Get config file path."""
        return self.state_dir / "config"

    def config_exists(self) -> bool:
        """Check if config file exists."""
        return self.config_path.exists()

    def with_overrides(self, **changes: object) -> "Settings":
        """Copy of these settings with the given fields replaced."""
        return replace(self, **changes)  # type: ignore[arg-type]


def _parse_config_file(config_path: Path) -> dict[str, str]:
    """
    Parse INI-style config file.

    Returns:
        Dict of config values (flattened: section.key -> value)
    """
    if not config_path.exists():
        return {}

    parser = configparser.ConfigParser()
    parser.read(config_path)

    config = {}

    # Parse DEFAULT section (values without [DEFAULT] prefix)
    if "DEFAULT" in parser:
        for key, value in parser["DEFAULT"].items():
            config[key.upper()] = value

    # Parse other sections
    for section in parser.sections():
        for key, value in parser[section].items():
            if section == "DEFAULT":
                continue
            config[f"{section}.{key}"] = value

    return config


def _lookup(env_key: str, file_key: str, file_config: dict[str, str]) -> Optional[str]:
    return os.environ.get(env_key) or file_config.get(file_key)


def _int_setting(env_key: str, file_key: str, file_config: dict[str, str], default: int, minimum: int) -> int:
    raw = _lookup(env_key, file_key, file_config)
    if not raw:
        return default
    try:
        value = int(raw)
    except ValueError:
        logger.warning(f"Invalid {env_key} value, using default: {default}")
        return default
    if value < minimum:
        logger.warning(f"{env_key} must be >={minimum}, using default: {default}")
        return default
    return value


def _float_setting(env_key: str, file_key: str, file_config: dict[str, str], default: float) -> float:
    raw = _lookup(env_key, file_key, file_config)
    if not raw:
        return default
    try:
        value = float(raw)
    except ValueError:
        logger.warning(f"Invalid {env_key} value, using default: {default}")
        return default
    if value < 0:
        logger.warning(f"{env_key} must be >=0, using default: {default}")
        return default
    return value


def _bool_setting(env_key: str, file_key: str, file_config: dict[str, str], default: bool) -> bool:
    raw = _lookup(env_key, file_key, file_config)
    if not raw:
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


def get_settings(repository_root: Optional[Path] = None) -> Settings:
    """
    Get current settings.

    Resolves from:
    1. Repository root (argument, SOURCECTL_ROOT, or git toplevel of the cwd)
    2. Config file (.sourcectl/config)
    3. Environment variables (SOURCECTL_*)

    A directory that is not yet a git repository is accepted as root so the
    repository can be initialized from it.

    Returns:
        Settings object with resolved values
    """
    executable = os.environ.get("SOURCECTL_GIT") or shutil.which(DEFAULT_EXECUTABLE) or DEFAULT_EXECUTABLE

    if repository_root is None and os.environ.get("SOURCECTL_ROOT"):
        repository_root = Path(os.environ["SOURCECTL_ROOT"])

    if repository_root is None:
        try:
            repository_root = find_git_root(executable=executable)
        except RuntimeError:
            repository_root = Path.cwd()
            logger.debug(f"Not inside a git repository, using {repository_root}")

    repository_root = repository_root.resolve()
    state_dir = Path(os.environ.get("SOURCECTL_DIR", repository_root / DEFAULT_STATE_DIR_NAME))

    file_config = _parse_config_file(state_dir / "config")

    executable = os.environ.get("SOURCECTL_GIT") or file_config.get("EXECUTABLE_PATH") or executable

    settings = Settings(
        repository_root=repository_root,
        executable_path=executable,
        use_locking=_bool_setting("SOURCECTL_USE_LOCKING", "USE_LOCKING", file_config, False),
        remote_url=_lookup("SOURCECTL_REMOTE_URL", "REMOTE_URL", file_config) or None,
        max_workers=_int_setting("SOURCECTL_MAX_WORKERS", "MAX_WORKERS", file_config, DEFAULT_MAX_WORKERS, 1),
        command_timeout=_float_setting(
            "SOURCECTL_COMMAND_TIMEOUT", "COMMAND_TIMEOUT", file_config, DEFAULT_COMMAND_TIMEOUT
        ),
        max_commit_files=_int_setting(
            "SOURCECTL_MAX_COMMIT_FILES", "MAX_COMMIT_FILES", file_config, DEFAULT_MAX_COMMIT_FILES, 1
        ),
        max_batch_paths=_int_setting(
            "SOURCECTL_MAX_BATCH_PATHS", "MAX_BATCH_PATHS", file_config, DEFAULT_MAX_BATCH_PATHS, 1
        ),
        lock_retry_delay=_float_setting(
            "SOURCECTL_LOCK_RETRY_DELAY", "LOCK_RETRY_DELAY", file_config, DEFAULT_LOCK_RETRY_DELAY
        ),
        shutdown_grace=_float_setting(
            "SOURCECTL_SHUTDOWN_GRACE", "SHUTDOWN_GRACE", file_config, DEFAULT_SHUTDOWN_GRACE
        ),
        state_max_age=_float_setting(
            "SOURCECTL_STATE_MAX_AGE", "STATE_MAX_AGE", file_config, DEFAULT_STATE_MAX_AGE
        ),
        event_log=_bool_setting("SOURCECTL_EVENT_LOG", "EVENT_LOG", file_config, False),
        state_dir=state_dir,
    )

    logger.debug(f"Repository root: {settings.repository_root}")
    logger.debug(f"Git executable: {settings.executable_path}")
    logger.debug(f"Use locking: {settings.use_locking}")
    logger.debug(f"Max workers: {settings.max_workers}")
    logger.debug(f"Command timeout: {settings.command_timeout}")
    logger.debug(f"Max commit files: {settings.max_commit_files}")

    return settings
