"""Lifespan management for MCP server startup and shutdown."""

import logging
import sys
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from dotenv import load_dotenv

from ..config import Config, load_config
from ..config_loader import (
    discover_config_files,
    load_hierarchical_config,
)
from ..config_schema import build_config, yaml_fallbacks as flatten_yaml
from ..core.async_utils import init_semaphore, reset_semaphore, run_sync
from ..engine.orchestrator import SyncOrchestrator
from ..engine.service import SyncService
from ..engine.working_copy import sweep_stale_working_copies
from ..scheduler import SchedulerService
from ..store import JsonFileStore, SecretBox

logger = logging.getLogger(__name__)


@dataclass
class AppContext:
    """Everything a tool handler needs, built once per server run."""

    config: Config
    store: JsonFileStore
    orchestrator: SyncOrchestrator
    service: SyncService
    scheduler: SchedulerService


def _stderr_print(msg: str) -> None:
    """Print message to stderr for user feedback (safe in MCP mode)."""
    print(msg, file=sys.stderr, flush=True)


def build_context(config: Config) -> AppContext:
    """Wire store, orchestrator, service and scheduler from *config*."""
    secret_box = SecretBox(config.encryption_key) if config.encryption_key else None
    store = JsonFileStore(
        Path(config.store_path),
        secret_box=secret_box,
        max_sync_logs=config.max_sync_logs,
    )
    orchestrator = SyncOrchestrator(
        Path(config.temp_dir),
        git_timeout=config.git_timeout,
        sync_timeout=config.sync_timeout,
        preview_cleanup_delay=config.preview_cleanup_delay,
    )
    service = SyncService(store, orchestrator)
    scheduler = SchedulerService(
        store,
        service.sync_repository,
        temp_root=Path(config.temp_dir),
        stale_after=config.stale_after,
    )
    return AppContext(
        config=config,
        store=store,
        orchestrator=orchestrator,
        service=service,
        scheduler=scheduler,
    )


@asynccontextmanager
async def server_lifespan(
    config_overrides: dict[str, Any] | None = None,
) -> AsyncIterator[AppContext]:
    """
    Manage server startup and shutdown lifecycle.

    On startup:
    - Load .env file (so values are available for env var lookups and YAML interpolation)
    - Load YAML config file if present (as fallback values)
    - Merge all sources via load_config(): CLI > env vars > .env > YAML > defaults
    - Open the JSON store and build the sync service
    - Arm scheduled jobs unless the scheduler is disabled

    On shutdown:
    - Disarm scheduled jobs
    - Drop the sync semaphore

    Args:
        config_overrides: Optional dict with config values from CLI
            (temp_dir, store_path, debug, no_scheduler, log_file)

    Yields:
        The initialized AppContext

    Raises:
        RuntimeError: If configuration is invalid or the store cannot be read.
    """
    logger.info("MCP server starting...")
    _stderr_print("git-sync-manager starting...")

    # CLI args > env vars (.env loaded first) > YAML config > defaults
    try:
        load_dotenv()

        fallbacks: dict[str, Any] | None = None
        config_files = discover_config_files()
        sources = []

        if config_files:
            unified = build_config(load_hierarchical_config())
            fallbacks = flatten_yaml(unified)
            sources.append(f"config file: {config_files[0]}")

        overrides = config_overrides or {}
        config = load_config(
            temp_dir=overrides.get("temp_dir"),
            store_path=overrides.get("store_path"),
            debug=overrides.get("debug", False),
            no_scheduler=overrides.get("no_scheduler", False),
            log_file=overrides.get("log_file"),
            yaml_fallbacks=fallbacks,
        )

        if overrides:
            sources.append("CLI arguments")
        sources.append("environment variables")
        source_desc = ", ".join(sources)
        logger.info("Configuration loaded from: %s", source_desc)
        _stderr_print(f"  Configuration loaded from: {source_desc}")
        _stderr_print(f"  Store: {config.store_path}")
        _stderr_print(f"  Working copies: {config.temp_dir}")
        if not config.encryption_key:
            logger.warning("GIT_SYNC_ENCRYPTION_KEY not set; tokens are stored in plain text")
    except ValueError as e:
        logger.error("Configuration error: %s", e)
        _stderr_print(f"ERROR: Configuration error: {e}")
        raise RuntimeError(f"Configuration error: {e}") from e

    try:
        context = build_context(config)
        # Reading the job list up front surfaces a corrupt store or a wrong
        # encryption key before the client connects.
        jobs = await run_sync(context.store.list_jobs)
    except Exception as e:
        logger.error("Failed to open store %s: %s", config.store_path, e)
        _stderr_print("ERROR: Store could not be opened.")
        _stderr_print(f"  {e}")
        raise RuntimeError(f"Store error: {e}") from e

    init_semaphore(config.max_parallel_syncs)
    _stderr_print(f"  Parallel syncs: {config.max_parallel_syncs}")

    if config.scheduler_enabled:
        armed = await context.scheduler.start()
        _stderr_print(f"  Scheduler: {armed} of {len(jobs)} jobs armed")
    else:
        removed = await run_sync(
            sweep_stale_working_copies, Path(config.temp_dir), config.stale_after
        )
        logger.info("Scheduler disabled; removed %d stale working copies", removed)
        _stderr_print("  Scheduler: disabled")

    _stderr_print("Server ready. Waiting for MCP client connection...")

    try:
        yield context
    finally:
        logger.info("MCP server shutting down")
        context.scheduler.stop()
        reset_semaphore()
        _stderr_print("git-sync-manager shutting down.")
