"""MCP tool handlers for the job scheduler and cron helpers.

Tools:

- ``scheduler_status`` -- running flag, armed jobs, stored jobs.
- ``scheduler_start_job`` / ``scheduler_stop_job`` -- arm or disarm one job.
- ``scheduler_trigger_job`` -- run one job now.
- ``cron_validate`` / ``cron_next_run`` -- check expressions, list presets.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import TYPE_CHECKING, Any

import mcp.types as types

from ...core.async_utils import run_sync
from ...scheduler import CRON_PRESETS, get_next_run_time
from ...validators import validate_cron_expression
from .errors import format_timestamp
from .registry import ToolSpec

if TYPE_CHECKING:
    from ..lifespan import AppContext

logger = logging.getLogger(__name__)

_JOB_ID_SCHEMA = {
    "type": "object",
    "properties": {
        "job_id": {"type": "string", "description": "Id of the scheduled job"},
    },
    "required": ["job_id"],
}

_CRON_SCHEMA = {
    "type": "object",
    "properties": {
        "expression": {
            "type": "string",
            "description": (
                "Cron expression with 5 fields (minute hour day month weekday) "
                "or 6 fields with leading seconds, or a preset name such as DAILY_AT_MIDNIGHT"
            ),
        },
    },
    "required": ["expression"],
}


def _text(text: str, structured: dict | None = None) -> types.CallToolResult:
    return types.CallToolResult(
        content=[types.TextContent(type="text", text=text)],
        structuredContent=structured,
    )


def _expression(args: dict[str, Any]) -> str:
    expression = args.get("expression")
    if not isinstance(expression, str) or not expression.strip():
        raise ValueError("expression is required")
    return CRON_PRESETS.get(expression.strip(), expression.strip())


def _job_id(args: dict[str, Any]) -> str:
    job_id = args.get("job_id")
    if not isinstance(job_id, str) or not job_id:
        raise ValueError("job_id is required")
    return job_id


# ---------------------------------------------------------------------------
# Handlers
# ---------------------------------------------------------------------------


async def _handle_scheduler_status(
    context: AppContext, args: dict[str, Any]
) -> types.CallToolResult:
    """Handle the ``scheduler_status`` tool."""
    scheduler = context.scheduler
    jobs = await run_sync(context.store.list_jobs)
    active = set(scheduler.active_job_ids())

    lines = [
        f"Scheduler: {'running' if scheduler.is_running else 'stopped'}",
        f"Armed jobs: {len(active)} of {len(jobs)}",
        "",
    ]
    for job in jobs:
        state = "armed" if job.id in active else ("enabled" if job.enabled else "disabled")
        lines.append(
            f"  {job.id} '{job.name}' [{job.cron_expression}] {state}; "
            f"runs={job.run_count} last={format_timestamp(job.last_run_at)} "
            f"next={format_timestamp(job.next_run_at)}"
        )

    structured = {
        "running": scheduler.is_running,
        "active_job_ids": sorted(active),
        "jobs": [
            {**job.model_dump(mode="json"), "armed": job.id in active} for job in jobs
        ],
    }
    return _text("\n".join(lines).rstrip(), structured)


async def _handle_scheduler_start_job(
    context: AppContext, args: dict[str, Any]
) -> types.CallToolResult:
    """Handle the ``scheduler_start_job`` tool (restarts an armed job)."""
    job_id = _job_id(args)
    job = await run_sync(context.store.get_job, job_id)
    if job is None:
        raise KeyError(f"Scheduled job not found: {job_id}")
    if not job.enabled:
        raise ValueError(f"Job {job_id} is disabled; enable it before arming")

    is_valid, error = validate_cron_expression(job.cron_expression)
    if not is_valid:
        raise ValueError(error)

    context.scheduler.restart_job(job)
    return _text(
        f"Job {job_id} armed with schedule '{job.cron_expression}'",
        {"job_id": job_id, "armed": True},
    )


async def _handle_scheduler_stop_job(
    context: AppContext, args: dict[str, Any]
) -> types.CallToolResult:
    """Handle the ``scheduler_stop_job`` tool."""
    job_id = _job_id(args)
    stopped = context.scheduler.stop_job(job_id)
    text = f"Job {job_id} stopped" if stopped else f"Job {job_id} was not armed"
    return _text(text, {"job_id": job_id, "stopped": stopped})


async def _handle_scheduler_trigger_job(
    context: AppContext, args: dict[str, Any]
) -> types.CallToolResult:
    """Handle the ``scheduler_trigger_job`` tool."""
    job_id = _job_id(args)
    report = await context.scheduler.trigger_job(job_id)

    lines = [
        f"Job {job_id} ran: {len(report.succeeded)} succeeded, {len(report.failed)} failed",
    ]
    for outcome in report.failed:
        lines.append(f"  {outcome.repository_id}: {outcome.error}")
    return types.CallToolResult(
        content=[types.TextContent(type="text", text="\n".join(lines))],
        structuredContent=report.model_dump(mode="json"),
        isError=bool(report.failed),
    )


async def _handle_cron_validate(
    context: AppContext, args: dict[str, Any]
) -> types.CallToolResult:
    """Handle the ``cron_validate`` tool."""
    expression = _expression(args)
    is_valid, error = validate_cron_expression(expression)
    if not is_valid:
        return _text(f"Invalid: {error}", {"expression": expression, "valid": False, "error": error})
    next_run = context.scheduler.get_next_run_time(expression)
    return _text(
        f"Valid. Next run: {next_run.isoformat()}",
        {"expression": expression, "valid": True, "next_run_at": next_run.isoformat()},
    )


async def _handle_cron_next_run(
    context: AppContext, args: dict[str, Any]
) -> types.CallToolResult:
    """Handle the ``cron_next_run`` tool.

    Invalid expressions are not an error: the answer falls back to one hour
    from now.
    """
    expression = _expression(args)
    after = args.get("after")
    now = datetime.fromisoformat(after) if after else None
    next_run = get_next_run_time(expression, now) if now else context.scheduler.get_next_run_time(expression)
    presets = "\n".join(f"  {name}: {expr}" for name, expr in CRON_PRESETS.items())
    return _text(
        f"Next run of '{expression}': {next_run.isoformat()}\n\nPresets:\n{presets}",
        {"expression": expression, "next_run_at": next_run.isoformat(), "presets": CRON_PRESETS},
    )


# ---------------------------------------------------------------------------
# Tool definitions
# ---------------------------------------------------------------------------

SCHEDULER_SPECS: list[ToolSpec] = [
    ToolSpec(
        tool=types.Tool(
            name="scheduler_status",
            description="Show whether the scheduler runs, which jobs are armed, and each job's run history.",
            annotations=types.ToolAnnotations(readOnlyHint=True, openWorldHint=False),
            inputSchema={"type": "object", "properties": {}, "required": []},
        ),
        permissions=frozenset({"SCHEDULER_VIEW"}),
        handler=_handle_scheduler_status,
    ),
    ToolSpec(
        tool=types.Tool(
            name="scheduler_start_job",
            description="Arm (or re-arm) a stored scheduled job using its current cron expression.",
            annotations=types.ToolAnnotations(readOnlyHint=False, idempotentHint=True),
            inputSchema=_JOB_ID_SCHEMA,
        ),
        permissions=frozenset({"SCHEDULER_ADMIN"}),
        handler=_handle_scheduler_start_job,
    ),
    ToolSpec(
        tool=types.Tool(
            name="scheduler_stop_job",
            description="Disarm a scheduled job. The stored job is kept.",
            annotations=types.ToolAnnotations(readOnlyHint=False, idempotentHint=True),
            inputSchema=_JOB_ID_SCHEMA,
        ),
        permissions=frozenset({"SCHEDULER_ADMIN"}),
        handler=_handle_scheduler_stop_job,
    ),
    ToolSpec(
        tool=types.Tool(
            name="scheduler_trigger_job",
            description="Run a scheduled job now: sync each of its repositories in order and record the run.",
            annotations=types.ToolAnnotations(
                readOnlyHint=False, destructiveHint=True, openWorldHint=True
            ),
            inputSchema=_JOB_ID_SCHEMA,
        ),
        permissions=frozenset({"SCHEDULER_ADMIN", "SYNC_RUN"}),
        handler=_handle_scheduler_trigger_job,
    ),
    ToolSpec(
        tool=types.Tool(
            name="cron_validate",
            description="Check a cron expression (5 or 6 fields, or a preset name) and show its next run time.",
            annotations=types.ToolAnnotations(readOnlyHint=True, openWorldHint=False),
            inputSchema=_CRON_SCHEMA,
        ),
        permissions=frozenset({"SYNC_VIEW"}),
        handler=_handle_cron_validate,
    ),
    ToolSpec(
        tool=types.Tool(
            name="cron_next_run",
            description=(
                "Next fire time of a cron expression (UTC) and the list of presets. "
                "Unparseable expressions fall back to one hour from now."
            ),
            annotations=types.ToolAnnotations(readOnlyHint=True, openWorldHint=False),
            inputSchema={
                "type": "object",
                "properties": {
                    **_CRON_SCHEMA["properties"],
                    "after": {
                        "type": "string",
                        "description": "ISO 8601 timestamp to compute from (default: now)",
                    },
                },
                "required": ["expression"],
            },
        ),
        permissions=frozenset({"SYNC_VIEW"}),
        handler=_handle_cron_next_run,
    ),
]
