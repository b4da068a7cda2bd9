import click
from flask.cli import AppGroup

from app.models import Link
from app.services.activity import recompute_link_totals

ledger_cli = AppGroup("ledger", help="Ledger maintenance.")


@ledger_cli.command("reconcile")
@click.option("--link-id", type=int, default=None, help="Only this link.")
def reconcile(link_id):
    """Rebuild cached link totals from the activity log and report drift."""
    if link_id is not None:
        ids = [link_id]
    else:
        ids = [row.id for row in Link.query.with_entities(Link.id).order_by(Link.id)]

    drifted = 0
    for current_id in ids:
        result = recompute_link_totals(current_id)
        if result["drift"]:
            drifted += 1
            click.echo(f"link {current_id}: {result['before']} -> {result['after']}")

    click.echo(f"Checked {len(ids)} link(s), {drifted} drifted.")


def register_cli(app):
    app.cli.add_command(ledger_cli)
