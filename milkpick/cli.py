# milkpick/cli.py
"""
Cron entry points, e.g.

    0 1 * * *   flask --app wsgi jobs due-sweep
    5 * * * *   flask --app wsgi jobs mark-late
    0 8 * * *   flask --app wsgi jobs pickup-reminders
    0 7 * * MON flask --app wsgi jobs weekly-summaries
"""
import click
from flask.cli import AppGroup

from .services.cadence import parse_date
from .services.scheduler import mark_late_orders, run_due_sweep, send_pickup_reminders, send_weekly_summaries

jobs_cli = AppGroup("jobs", help="Scheduled maintenance jobs.")


def _day(value):
    if value is None:
        return None
    day = parse_date(value)
    if day is None:
        raise click.BadParameter("expected YYYY-MM-DD")
    return day


@jobs_cli.command("due-sweep")
@click.option("--today", default=None, help="Override today's date (YYYY-MM-DD).")
def due_sweep(today):
    """Create orders for due subscriptions."""
    result = run_due_sweep(_day(today))
    click.echo(f"created={result['created']} updated={result['updated']}")


@jobs_cli.command("mark-late")
def mark_late():
    """Mark orders past their pickup grace period as late."""
    result = mark_late_orders()
    click.echo(f"updated={result['updated']}")


@jobs_cli.command("pickup-reminders")
@click.option("--today", default=None, help="Override today's date (YYYY-MM-DD).")
def pickup_reminders(today):
    result = send_pickup_reminders(_day(today))
    click.echo(f"sent={result['sent']}")


@jobs_cli.command("weekly-summaries")
@click.option("--today", default=None, help="Override today's date (YYYY-MM-DD).")
def weekly_summaries(today):
    result = send_weekly_summaries(_day(today))
    click.echo(f"customers={result['customers']} farmers={result['farmers']}")
