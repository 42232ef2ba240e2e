#!/usr/bin/env python3
"""
Check-in CLI Tool

Management and testing commands for the check-in scheduling service.

Usage:
    python -m tools.checkin_cli upsert-schedule owner-1 --contact "+15551234567" --timezone America/New_York --time 09:00
    python -m tools.checkin_cli list-schedules
    python -m tools.checkin_cli tick
    python -m tools.checkin_cli list-jobs owner-1
    python -m tools.checkin_cli replay-webhook payload.json
    python -m tools.checkin_cli quota owner-1 --set-limit 20
    python -m tools.checkin_cli redis-status
"""
import json
from collections import Counter
from typing import Optional

import click
import redis
from dotenv import load_dotenv
from rq import Queue
from tabulate import tabulate

from calls.webhook_ingestor import WebhookIngestor
from config.redis import create_redis_connection
from config.settings import CALL_QUEUE_NAME, GENERATION_QUEUE_NAME, KEY_PREFIX
from pipeline.entities import EntityResolver
from pipeline.event_store import EventStore
from pipeline.media import MediaArtifactStore, MediaSynthesizer
from pipeline.models import EntityKind, energy_number_to_word, mood_number_to_word
from pipeline.quota import RedisQuotaLedger
from pipeline.synthesis_client import parse_media_callback
from scheduling.cadence import describe_cadence
from scheduling.errors import ScheduleValidationError
from scheduling.executor import Executor
from scheduling.job_tracker import JobTracker, SessionStore
from scheduling.schedule_store import ScheduleStore
from utils.redis_atomic import create_atomic_redis_ops


class CheckinManager:
    """Wires the stores together around one Redis connection"""

    def __init__(self, redis_client: redis.Redis):
        self.redis_client = redis_client
        atomic_ops = create_atomic_redis_ops(redis_client)
        self.schedules = ScheduleStore(redis_client, atomic_ops)
        self.jobs = JobTracker(redis_client, atomic_ops)
        self.sessions = SessionStore(redis_client)
        self.resolver = EntityResolver(redis_client, atomic_ops)
        self.events = EventStore(redis_client, self.resolver)
        self.artifacts = MediaArtifactStore(redis_client, atomic_ops)
        self.quota = RedisQuotaLedger(redis_client, atomic_ops)

    def executor(self, call_queue: Optional[Queue] = None) -> Executor:
        return Executor(
            self.schedules, self.jobs,
            call_queue or Queue(CALL_QUEUE_NAME, connection=self.redis_client)
        )

    def ingestor(self, generation_queue: Optional[Queue] = None) -> WebhookIngestor:
        return WebhookIngestor(
            self.jobs, self.sessions,
            generation_queue or Queue(GENERATION_QUEUE_NAME, connection=self.redis_client)
        )


def _load_json(path: str) -> dict:
    with open(path) as f:
        return json.load(f)


def _short(value: Optional[str], length: int = 8) -> str:
    if not value:
        return "-"
    return value[:length] + "..." if len(value) > length else value


def _fmt_time(dt) -> str:
    return dt.strftime('%Y-%m-%d %H:%M') if dt else "-"


# CLI Commands
@click.group()
@click.pass_context
def cli(ctx):
    """Check-in Scheduling Management CLI"""
    load_dotenv()
    ctx.ensure_object(dict)
    if 'manager' not in ctx.obj:
        ctx.obj['manager'] = CheckinManager(create_redis_connection())


@cli.command()
@click.argument('owner_id')
@click.option('--contact', required=True, help="E.164 phone number to call")
@click.option('--timezone', 'timezone_name', required=True, help="IANA timezone, e.g. America/New_York")
@click.option('--time', 'time_of_day', required=True, help="Local time of day, HH:MM")
@click.option('--cadence', type=click.Choice(['daily', 'weekdays', 'weekends', 'custom']), default='daily')
@click.option('--days', help="Comma-separated weekday numbers for custom cadence (0=Sunday .. 6=Saturday)")
@click.option('--name', 'owner_name', help="Name the agent greets the owner with")
@click.option('--inactive', is_flag=True, help="Store the schedule switched off")
@click.pass_context
def upsert_schedule(ctx, owner_id, contact, timezone_name, time_of_day, cadence, days, owner_name, inactive):
    """Create or update an owner's check-in schedule"""
    manager = ctx.obj['manager']

    custom_days = None
    if days:
        try:
            custom_days = [int(day) for day in days.split(',')]
        except ValueError:
            raise click.BadParameter("days must be comma-separated integers", param_hint='--days')

    try:
        schedule, created = manager.schedules.upsert(
            owner_id, contact, timezone_name, time_of_day, cadence,
            custom_days=custom_days, active=not inactive, owner_name=owner_name
        )
    except ScheduleValidationError as e:
        click.echo(f"❌ Invalid schedule: {e}")
        ctx.exit(1)

    click.echo(f"✅ {'Created' if created else 'Updated'} schedule {schedule.id}")
    click.echo(f"   {describe_cadence(schedule.cadence, schedule.weekday_mask)} at {schedule.time_of_day} ({schedule.timezone})")
    click.echo(f"   Next run: {_fmt_time(schedule.next_run_at)} UTC")


@cli.command()
@click.argument('owner_id')
@click.pass_context
def deactivate(ctx, owner_id):
    """Switch off an owner's schedule"""
    if ctx.obj['manager'].schedules.deactivate(owner_id):
        click.echo(f"✅ Deactivated schedule for {owner_id}")
    else:
        click.echo(f"❌ No schedule found for {owner_id}")
        ctx.exit(1)


@cli.command()
@click.pass_context
def list_schedules(ctx):
    """List every schedule"""
    schedules = ctx.obj['manager'].schedules.list_schedules()
    if not schedules:
        click.echo("📋 No schedules found")
        return

    table_data = [
        [
            schedule.owner_id,
            schedule.contact,
            schedule.time_of_day,
            schedule.timezone,
            describe_cadence(schedule.cadence, schedule.weekday_mask),
            "yes" if schedule.active else "no",
            _fmt_time(schedule.next_run_at)
        ]
        for schedule in schedules
    ]
    click.echo(tabulate(
        table_data,
        headers=['Owner', 'Contact', 'Time', 'Timezone', 'Cadence', 'Active', 'Next Run (UTC)'],
        tablefmt='grid'
    ))


@cli.command()
@click.pass_context
def tick(ctx):
    """Run one executor tick now"""
    report = ctx.obj['manager'].executor().tick()
    click.echo(
        f"⏰ Tick: {report.processed} processed, {report.skipped} skipped, {report.failed} failed"
    )
    for job_id in report.job_ids:
        click.echo(f"   queued job {job_id}")


@cli.command()
@click.argument('owner_id')
@click.option('--limit', default=20, help="Maximum number of jobs to show")
@click.pass_context
def list_jobs(ctx, owner_id, limit):
    """List an owner's most recent jobs"""
    jobs = ctx.obj['manager'].jobs.list_jobs(owner_id, limit=limit)
    if not jobs:
        click.echo(f"📋 No jobs found for {owner_id}")
        return

    table_data = [
        [
            _short(job.id),
            job.status.value,
            _fmt_time(job.scheduled_for),
            job.attempt_count,
            _short(job.external_call_id, 20),
            (job.error or "")[:40]
        ]
        for job in jobs
    ]
    click.echo(tabulate(
        table_data,
        headers=['Job ID', 'Status', 'Scheduled', 'Attempts', 'Call', 'Error'],
        tablefmt='grid'
    ))


@cli.command()
@click.argument('owner_id')
@click.pass_context
def job_stats(ctx, owner_id):
    """Show job counts per status for an owner"""
    stats = ctx.obj['manager'].jobs.job_stats(owner_id)
    click.echo(f"📊 Jobs for {owner_id}: {stats['total']}")
    for status, count in sorted(stats['by_status'].items()):
        click.echo(f"   {status}: {count}")
    if stats['last_error']:
        click.echo(f"   Last error: {stats['last_error']}")


@cli.command()
@click.argument('owner_id')
@click.option('--limit', default=20, help="Maximum number of events to show")
@click.pass_context
def list_events(ctx, owner_id, limit):
    """List an owner's extracted events"""
    manager = ctx.obj['manager']
    events = manager.events.list_events(owner_id, limit=limit)
    if not events:
        click.echo(f"📋 No events found for {owner_id}")
        return

    table_data = [
        [
            _fmt_time(event.happened_at),
            event.title[:30],
            ", ".join(event.people) or "-",
            ", ".join(event.tags) or "-",
            mood_number_to_word(event.mood),
            energy_number_to_word(event.energy)
        ]
        for event in events
    ]
    click.echo(tabulate(
        table_data,
        headers=['Happened', 'Title', 'People', 'Tags', 'Mood', 'Energy'],
        tablefmt='grid'
    ))

    people = manager.resolver.list_entities(owner_id, EntityKind.PERSON, limit=10)
    if people:
        click.echo("\n👥 People: " + ", ".join(f"{p.display_name} ({p.usage_count})" for p in people))


@cli.command()
@click.argument('payload_file', type=click.Path(exists=True, dir_okay=False))
@click.pass_context
def replay_webhook(ctx, payload_file):
    """Apply a call provider webhook payload from a JSON file"""
    result = ctx.obj['manager'].ingestor().ingest_payload(_load_json(payload_file))
    click.echo(f"📨 {result.action} (applied={result.applied}, job={result.job_id or '-'}, session={result.session_id or '-'})")


@cli.command()
@click.argument('payload_file', type=click.Path(exists=True, dir_okay=False))
@click.pass_context
def media_callback(ctx, payload_file):
    """Apply a media synthesis callback payload from a JSON file"""
    manager = ctx.obj['manager']
    callback = parse_media_callback(_load_json(payload_file))
    if callback is None:
        click.echo("📨 Callback ignored")
        return

    synthesizer = MediaSynthesizer(manager.artifacts, manager.quota)
    applied = synthesizer.apply_callback(callback)
    click.echo(f"📨 Task {callback.task_id}: {'applied' if applied else 'no-op'}")


@cli.command()
@click.argument('owner_id')
@click.option('--set-limit', type=int, help="Override the owner's quota limit")
@click.option('--reset', is_flag=True, help="Clear the owner's used count")
@click.pass_context
def quota(ctx, owner_id, set_limit, reset):
    """Show (or change) an owner's media quota"""
    ledger = ctx.obj['manager'].quota
    if set_limit is not None:
        try:
            ledger.set_limit(owner_id, set_limit)
        except ValueError as e:
            raise click.BadParameter(str(e), param_hint='--set-limit')
    if reset:
        ledger.reset(owner_id)

    usage = ledger.usage(owner_id)
    click.echo(f"🎵 {owner_id}: {usage['used']}/{usage['limit']} used, {usage['remaining']} remaining")


@cli.command()
@click.pass_context
def redis_status(ctx):
    """Check Redis connection and check-in data status"""
    redis_client = ctx.obj['manager'].redis_client

    try:
        ping_result = redis_client.ping()
    except redis.RedisError as e:
        click.echo(f"❌ Redis connection failed: {e}")
        ctx.exit(1)

    click.echo(f"✅ Redis connection: {'OK' if ping_result else 'Failed'}")

    keys = list(redis_client.scan_iter(f"{KEY_PREFIX}:*"))
    click.echo(f"📊 Check-in keys in Redis: {len(keys)}")

    key_types = Counter(key.split(':')[1] if ':' in key else 'other' for key in keys)
    if key_types:
        click.echo("📋 Key breakdown:")
        for key_type, count in sorted(key_types.items()):
            click.echo(f"   {key_type}: {count}")


if __name__ == '__main__':
    cli()
