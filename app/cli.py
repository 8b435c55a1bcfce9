"""CLI tools for school records administration."""

import sys
from uuid import UUID

import click

from app.db.session import SessionLocal
from app.services import directory_service, enrollment_event_service, snapshot_service
from app.services.errors import RecordsServiceError


@click.group()
def cli():
    """School records CLI tools."""
    pass


@cli.command()
@click.option("--name", required=True, help="Tenant name")
@click.option("--slug", required=True, help="URL-friendly slug (lowercase, no spaces)")
def create_tenant(name: str, slug: str):
    """
    Create a tenant.

    Example:
        python -m app.cli create-tenant --name "North District" --slug "north"
    """
    db = SessionLocal()
    try:
        slug = slug.lower().strip()
        if not slug.replace("-", "").replace("_", "").isalnum():
            click.echo("❌ Slug must be alphanumeric (with optional hyphens/underscores)")
            sys.exit(1)

        tenant = directory_service.create_tenant(db, name=name, slug=slug)
        click.echo(f"✓ Created tenant: {tenant.name}")
        click.echo(f"  ID: {tenant.id}")
        click.echo(f"  Slug: {tenant.slug}")
    except RecordsServiceError as e:
        click.echo(f"❌ {e.message}")
        sys.exit(1)
    finally:
        db.close()


@cli.command()
@click.option("--tenant-id", required=True, type=click.UUID, help="Owning tenant ID")
@click.option("--snapshot-id", required=True, type=click.UUID, help="Snapshot ID")
def verify_snapshot(tenant_id: UUID, snapshot_id: UUID):
    """
    Recompute a snapshot's payload hash.

    Exits with status 1 when the stored hash does not match.
    """
    db = SessionLocal()
    try:
        result = snapshot_service.verify_snapshot(db, snapshot_id, tenant_id)
    except RecordsServiceError as e:
        click.echo(f"❌ {e.message}")
        sys.exit(1)
    finally:
        db.close()

    click.echo(f"  Algorithm: {result.hash_algo}")
    click.echo(f"  Stored:    {result.stored_hash}")
    click.echo(f"  Computed:  {result.computed_hash}")
    if not result.valid:
        click.echo("❌ Hash mismatch: payload has changed since it was sealed")
        sys.exit(1)
    click.echo("✓ Snapshot payload is intact")


@cli.command()
@click.option("--tenant-id", required=True, type=click.UUID, help="Owning tenant ID")
@click.option("--enrollment-id", required=True, type=click.UUID, help="Enrollment ID")
def list_events(tenant_id: UUID, enrollment_id: UUID):
    """List ledger events for an enrollment, newest first."""
    db = SessionLocal()
    try:
        events = enrollment_event_service.list_events(db, tenant_id, enrollment_id)
    except RecordsServiceError as e:
        click.echo(f"❌ {e.message}")
        sys.exit(1)
    finally:
        db.close()

    if not events:
        click.echo("No events recorded")
        return
    for event in events:
        actor = f"{event.actor_type}:{event.actor_id}" if event.actor_id else event.actor_type
        click.echo(f"{event.id:>8}  {event.effective_at.isoformat()}  {event.event_type:<24}  {actor}")


if __name__ == "__main__":
    cli()
