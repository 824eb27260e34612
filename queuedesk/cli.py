"""CLI tools for queue administration."""

from datetime import date
from uuid import UUID

import click

from queuedesk.core.config import settings
from queuedesk.core.structured_logging import configure_logging
from queuedesk.db.session import SessionLocal
from queuedesk.services import queue_service
from queuedesk.services.queue_errors import QueueServiceError


def _parse_uuid(ctx, param, value):
    if value is None:
        return None
    try:
        return UUID(value)
    except ValueError:
        raise click.BadParameter(f"'{value}' is not a valid UUID")


def _parse_date(ctx, param, value):
    if value is None:
        return date.today()
    try:
        return date.fromisoformat(value)
    except ValueError:
        raise click.BadParameter(f"'{value}' is not a date (YYYY-MM-DD)")


@click.group()
def cli():
    """Queue desk CLI tools."""
    configure_logging(settings.LOG_LEVEL)


@cli.command()
@click.option("--queue-id", required=True, callback=_parse_uuid, help="Queue to repair")
def reconcile(queue_id: UUID):
    """
    Rewrite appointment positions and waits from the queue's order.

    Run after an operation reported that the appointment projection
    could not be written.

    Example:
        queuedesk reconcile --queue-id 3f1c...
    """
    db = SessionLocal()
    try:
        updated = queue_service.reconcile_positions(db, queue_id)
        click.echo(f"✓ Reconciled queue {queue_id}")
        click.echo(f"  Appointments updated: {updated}")
    except QueueServiceError as e:
        click.echo(f"❌ Error: {e}")
        raise SystemExit(1)
    finally:
        db.close()


@cli.command("close-day")
@click.option("--date", "queue_date", default=None, callback=_parse_date, help="Day to close (default: today)")
@click.option("--organization-id", default=None, callback=_parse_uuid, help="Only this organization")
def close_day(queue_date: date, organization_id: UUID | None):
    """Close every open queue for a day."""
    db = SessionLocal()
    try:
        closed = queue_service.close_day(db, queue_date, organization_id)
        click.echo(f"✓ Closed {closed} queue(s) for {queue_date.isoformat()}")
    except QueueServiceError as e:
        click.echo(f"❌ Error: {e}")
        raise SystemExit(1)
    finally:
        db.close()


@cli.command()
@click.option("--queue-id", required=True, callback=_parse_uuid, help="Queue to inspect")
def status(queue_id: UUID):
    """Print a queue's counters."""
    db = SessionLocal()
    try:
        current = queue_service.get_queue_status(db, queue_id)
    except QueueServiceError as e:
        click.echo(f"❌ Error: {e}")
        raise SystemExit(1)
    finally:
        db.close()

    state = "open" if current["is_active"] else "closed"
    click.echo(f"Queue {queue_id} ({state})")
    click.echo(f"  Waiting: {current['active_count']}")
    click.echo(f"  Serving: {current['current_token'] or '-'}")
    click.echo(f"  Served: {current['total_served']}")
    click.echo(f"  No-shows: {current['no_show_count']}")
    click.echo(f"  Estimated wait: {current['estimated_wait_minutes']} min")


if __name__ == "__main__":
    cli()
