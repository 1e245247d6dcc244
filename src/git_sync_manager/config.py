"""Runtime configuration for the sync engine, store and scheduler.

Reads settings from CLI args, environment variables, .env files, and YAML
config file fallbacks.

Precedence (highest to lowest):
    CLI args > Environment variables > .env file > YAML config > Built-in defaults

Environment variables:
    GIT_SYNC_TEMP_DIR: Root directory for working copies
    GIT_SYNC_STORE_PATH: JSON store file (default: ./data/storage.json)
    GIT_SYNC_ENCRYPTION_KEY: Passphrase for encrypting tokens at rest (optional)
    GIT_SYNC_GIT_TIMEOUT: Seconds per git command (default: 300)
    GIT_SYNC_SYNC_TIMEOUT: Seconds per sync or preview call (default: 1800)
    GIT_SYNC_PREVIEW_CLEANUP_DELAY: Seconds before preview copies are removed (default: 5)
    GIT_SYNC_MAX_PARALLEL_SYNCS: Concurrent sync/preview calls (default: 4)
    GIT_SYNC_STALE_AFTER: Age in seconds of working copies swept at startup (default: 86400)
    GIT_SYNC_MAX_SYNC_LOGS: Sync log entries kept (default: 500)
    GIT_SYNC_SCHEDULER_ENABLED: Arm scheduled jobs at startup (default: true)
    GIT_SYNC_DEBUG: Enable debug logging (default: false)
"""

import logging
import os
import tempfile
from dataclasses import dataclass, field
from pathlib import Path

logger = logging.getLogger(__name__)

ENV_PREFIX = "GIT_SYNC_"


def _default_temp_dir() -> str:
    return str(Path(tempfile.gettempdir()) / "git-sync-manager")


def _default_store_path() -> str:
    return str(Path.cwd() / "data" / "storage.json")


@dataclass
class Config:
    temp_dir: str = field(default_factory=_default_temp_dir)
    store_path: str = field(default_factory=_default_store_path)
    encryption_key: str | None = field(default=None, repr=False)
    git_timeout: float = 300
    sync_timeout: float = 1800
    preview_cleanup_delay: float = 5
    max_parallel_syncs: int = 4
    stale_after: float = 86400
    max_sync_logs: int = 500
    scheduler_enabled: bool = True
    debug: bool = False
    log_file: str | None = None


def validate_config(config: Config) -> None:
    """Validate configuration values and raise ValueError if invalid.

    Raises:
        ValueError: If a path is empty or a numeric value is out of range.
    """
    config.temp_dir = config.temp_dir.strip()
    if not config.temp_dir:
        raise ValueError(
            "Working copy directory cannot be empty. Set GIT_SYNC_TEMP_DIR."
        )

    config.store_path = config.store_path.strip()
    if not config.store_path:
        raise ValueError("Store path cannot be empty. Set GIT_SYNC_STORE_PATH.")

    for name in ("git_timeout", "sync_timeout", "stale_after"):
        if getattr(config, name) <= 0:
            raise ValueError(f"Invalid {name} {getattr(config, name)}: must be positive")

    if config.preview_cleanup_delay < 0:
        raise ValueError(
            f"Invalid preview_cleanup_delay {config.preview_cleanup_delay}: must not be negative"
        )

    if config.sync_timeout < config.git_timeout:
        logger.warning(
            "sync_timeout (%s) is shorter than git_timeout (%s); "
            "single git commands will be cut short",
            config.sync_timeout,
            config.git_timeout,
        )

    if config.encryption_key is not None and not config.encryption_key.strip():
        config.encryption_key = None

    if config.encryption_key is None:
        logger.warning(
            "No encryption key configured: credential tokens are stored in plain text"
        )


def _get_bool_env(key: str) -> bool | None:
    """Return True/False from env var, or None if unset."""
    val = os.getenv(key)
    if val is None:
        return None
    return val.lower() in ("true", "1", "yes", "on")


def _numeric(
    key: str,
    fb: dict,
    default: float,
    minimum: float,
    maximum: float | None = None,
    cast: type = float,
):
    """Resolve a numeric field: env > YAML > default."""
    env_key = ENV_PREFIX + key.upper()
    bounds = f"at least {minimum}" if maximum is None else f"between {minimum} and {maximum}"
    raw = os.getenv(env_key)
    if raw is not None:
        try:
            value = cast(raw)
        except ValueError:
            raise ValueError(
                f"Invalid {env_key} '{raw}': must be a number {bounds}"
            ) from None
    elif key in fb:
        value = cast(fb[key])
    else:
        return default

    if value < minimum or (maximum is not None and value > maximum):
        source = env_key if raw is not None else key
        raise ValueError(f"Invalid {source} '{value}': must be a number {bounds}")
    return value


def load_config(
    temp_dir: str | None = None,
    store_path: str | None = None,
    debug: bool = False,
    no_scheduler: bool = False,
    log_file: str | None = None,
    yaml_fallbacks: dict | None = None,
) -> Config:
    """Load configuration with unified precedence.

    Resolution order for each field (highest to lowest):
        CLI arg > env var / .env > yaml_fallbacks > built-in default

    The caller is responsible for calling ``load_dotenv()`` before this
    function so that .env values are available via ``os.getenv()``.

    Args:
        temp_dir: Override working-copy root (CLI).
        store_path: Override JSON store path (CLI).
        debug: Enable debug logging (CLI flag).
        no_scheduler: Do not arm scheduled jobs (CLI flag).
        log_file: Override log file (CLI).
        yaml_fallbacks: Flattened YAML values (see
            ``config_schema.yaml_fallbacks``).

    Returns:
        Validated Config instance.

    Raises:
        ValueError: If a value is malformed or out of range.
    """
    fb = yaml_fallbacks or {}

    # --- Path fields: CLI > env > YAML > default ---

    final_temp_dir = (
        temp_dir
        or os.getenv("GIT_SYNC_TEMP_DIR")
        or fb.get("temp_dir")
        or _default_temp_dir()
    )
    final_store_path = (
        store_path
        or os.getenv("GIT_SYNC_STORE_PATH")
        or fb.get("store_path")
        or _default_store_path()
    )
    final_log_file = log_file or os.getenv("GIT_SYNC_LOG_FILE") or fb.get("log_file")
    encryption_key = os.getenv("GIT_SYNC_ENCRYPTION_KEY") or fb.get("encryption_key")

    # --- Boolean fields: CLI > env > YAML > default ---

    if debug:
        final_debug = True
    else:
        env_debug = _get_bool_env("GIT_SYNC_DEBUG")
        if env_debug is not None:
            final_debug = env_debug
        else:
            final_debug = str(fb.get("log_level", "INFO")).upper() == "DEBUG"

    if no_scheduler:
        scheduler_enabled = False
    else:
        env_enabled = _get_bool_env("GIT_SYNC_SCHEDULER_ENABLED")
        if env_enabled is not None:
            scheduler_enabled = env_enabled
        else:
            scheduler_enabled = bool(fb.get("scheduler_enabled", True))

    # --- Numeric fields: env > YAML > default ---

    config = Config(
        temp_dir=str(final_temp_dir),
        store_path=str(final_store_path),
        encryption_key=encryption_key,
        git_timeout=_numeric("git_timeout", fb, 300, 1),
        sync_timeout=_numeric("sync_timeout", fb, 1800, 1),
        preview_cleanup_delay=_numeric("preview_cleanup_delay", fb, 5, 0),
        max_parallel_syncs=_numeric("max_parallel_syncs", fb, 4, 1, 64, cast=int),
        stale_after=_numeric("stale_after", fb, 86400, 1),
        max_sync_logs=_numeric("max_sync_logs", fb, 500, 1, cast=int),
        scheduler_enabled=scheduler_enabled,
        debug=final_debug,
        log_file=final_log_file,
    )

    validate_config(config)

    return config
