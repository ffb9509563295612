"""CLI tools for helpdesk channel operations."""

import asyncio
from datetime import datetime, timezone
from uuid import UUID

import click

from helpdesk.db.session import SessionLocal
from helpdesk.services import channel_sync_service


@click.group()
def cli():
    """Helpdesk CLI tools."""
    pass


@cli.command()
@click.option("--channel-id", default=None, help="Sync only this email channel")
@click.option("--now", "run_now", is_flag=True, help="Run syncs inline instead of enqueueing jobs")
def sync_channels(channel_id: str | None, run_now: bool):
    """
    Poll email channels.

    Without options, enqueues a sync job for every channel that is due.
    With --now, runs the sync inline and prints the result.

    Example:
        python -m helpdesk.cli sync-channels --channel-id <uuid> --now
    """
    with SessionLocal() as db:
        if not run_now and channel_id is None:
            created = channel_sync_service.schedule_due_channel_syncs(db)
            click.echo(f"✓ Scheduled {created} channel sync job(s)")
            return

        if channel_id:
            channel_ids = [UUID(channel_id)]
        else:
            channel_ids = [
                channel.id
                for channel in channel_sync_service.channels_due_for_sync(
                    db, datetime.now(timezone.utc)
                )
            ]

        for cid in channel_ids:
            try:
                result = channel_sync_service.sync_email_channel(db, channel_id=cid)
            except Exception as e:
                click.echo(f"❌ Channel {cid}: {e}")
                continue
            click.echo(f"✓ Channel {cid}: {result.status.value} {result.as_dict()}")


@cli.command()
@click.option("--channel-id", required=True, help="Email channel receiving the message")
@click.argument("source", type=click.File("rb"))
def ingest_mime(channel_id: str, source):
    """
    Ingest one raw RFC 822 email into a channel.

    Example:
        python -m helpdesk.cli ingest-mime --channel-id <uuid> message.eml
        cat message.eml | python -m helpdesk.cli ingest-mime --channel-id <uuid> -
    """
    with SessionLocal() as db:
        try:
            outcome = channel_sync_service.ingest_raw_email(
                db, channel_id=UUID(channel_id), raw=source.read()
            )
        except Exception as e:
            db.rollback()
            raise click.ClickException(str(e))

        if outcome.duplicate:
            click.echo(f"→ Duplicate message, already on ticket {outcome.ticket.ticket_number}")
        elif outcome.ticket_created:
            click.echo(f"✓ Created ticket {outcome.ticket.ticket_number}")
        else:
            click.echo(f"✓ Added message to ticket {outcome.ticket.ticket_number}")


@cli.command()
def run_worker():
    """Run the background job worker in the foreground."""
    from helpdesk import worker

    try:
        asyncio.run(worker.worker_loop())
    except KeyboardInterrupt:
        click.echo("Worker stopped")


if __name__ == "__main__":
    cli()
