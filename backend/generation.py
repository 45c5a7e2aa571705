"""
Recurring task generation.

A sweep finds every active template whose next_generation_at has passed,
creates one task per template and moves the template's schedule forward.
Each template is handled on its own: a failure is recorded in its
GenerationResult and the sweep moves on, leaving that template's schedule
untouched so the next sweep retries it.
"""
import sqlite3
from datetime import datetime, timezone
from typing import Any, Optional

from loguru import logger

import database
from assignment import determine_assigned_user
from models import GenerationResult, Template
from recurrence import (
    MalformedRuleError,
    calculate_next_generation,
    dump_recurrence_rule,
    parse_recurrence_rule,
    schedule_now,
    schedule_timezone,
)


class MissingDefaultStatusError(RuntimeError):
    """No status is marked as the default for new tasks."""


class ScheduleConflictError(RuntimeError):
    """The template's schedule changed between the scan and the advance."""


class TemplateNotFoundError(LookupError):
    pass


def _in_schedule_timezone(value: datetime) -> datetime:
    """Naive datetimes are UTC, matching the storage layer."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(schedule_timezone())


def _failure(template: Template, error: str) -> GenerationResult:
    return GenerationResult(
        template_id=template.id,
        template_name=template.name,
        success=False,
        error=error,
    )


def generate_task_from_template(template: Template, now: Optional[datetime] = None) -> GenerationResult:
    """
    Generate one task from a due template and advance its schedule.

    The next due instant is computed from the template's current
    next_generation_at, not from now, so the cadence does not drift with
    sweep latency. Task insert and schedule advance share one transaction.
    """
    if now is None:
        now = schedule_now()

    try:
        rule = parse_recurrence_rule(template.recurrence_rule)

        status_id = database.get_default_status_id()
        if not status_id:
            raise MissingDefaultStatusError("No default status found")

        assignment = determine_assigned_user(rule, template.last_assigned_index)

        scheduled_for = template.next_generation_at
        anchor = _in_schedule_timezone(scheduled_for or now)
        next_generation_at = calculate_next_generation(rule, anchor)

        with database.transaction() as conn:
            # Claim first so a stale snapshot is rejected by the schedule
            # check; the unique (template_id, scheduled_for) index backs it up.
            advanced = database.advance_template_schedule(
                conn,
                template.id,
                scheduled_for,
                next_generation_at,
                now,
                assignment.rotation_index,
            )
            if not advanced:
                raise ScheduleConflictError(
                    "Template schedule changed during the sweep (claimed by a concurrent sweep or deactivated)"
                )
            task = database.create_task_from_template_db(
                conn,
                template,
                status_id,
                assignment.user_id,
                scheduled_for,
            )
    except (MalformedRuleError, MissingDefaultStatusError, ScheduleConflictError, sqlite3.Error) as e:
        logger.warning("Template {} ({}) failed: {}", template.id, template.name, e)
        return _failure(template, str(e))
    except Exception as e:
        logger.exception("Unexpected error generating task from template {}", template.id)
        return _failure(template, str(e) or type(e).__name__)

    logger.info(
        "Generated task {} from template {} ({}), next at {}",
        task.id, template.id, template.name, next_generation_at.isoformat(),
    )
    return GenerationResult(
        template_id=template.id,
        template_name=template.name,
        task_id=task.id,
        success=True,
    )


def process_recurring_templates(now: Optional[datetime] = None) -> list[GenerationResult]:
    """
    Process all due recurring templates and generate tasks.
    Errors from the scan itself propagate; per-template errors never do.
    """
    if now is None:
        now = schedule_now()

    templates = database.get_templates_due_for_generation(now)
    if templates:
        logger.info("Sweep found {} due template(s)", len(templates))

    return [generate_task_from_template(template, now) for template in templates]


def activate_recurring_template(template_id: str, rule: Any, now: Optional[datetime] = None) -> Template:
    """
    Attach a recurrence rule to a template and schedule its first generation
    from now. Raises MalformedRuleError or TemplateNotFoundError.
    """
    parsed = parse_recurrence_rule(rule)
    now = schedule_now() if now is None else _in_schedule_timezone(now)

    template = database.update_template_db(
        template_id,
        recurrence_rule=dump_recurrence_rule(parsed),
        is_active=True,
        next_generation_at=calculate_next_generation(parsed, now),
    )
    if template is None:
        raise TemplateNotFoundError(f"Template {template_id} not found")

    logger.info("Activated template {}, first generation at {}", template_id, template.next_generation_at)
    return template


def deactivate_recurring_template(template_id: str) -> Template:
    """Stop generating from a template. Clearing next_generation_at drops it from sweeps."""
    template = database.update_template_db(template_id, is_active=False, next_generation_at=None)
    if template is None:
        raise TemplateNotFoundError(f"Template {template_id} not found")

    logger.info("Deactivated template {}", template_id)
    return template
