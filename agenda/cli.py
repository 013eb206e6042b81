"""
Admin commands, registered under `flask agenda`.

    flask --app agenda agenda generate-year 2027
    flask --app agenda agenda delete-year 2027 --yes
    flask --app agenda agenda year-report 2027
"""
import click
from flask.cli import AppGroup

from .errors import DomainError
from .notifications import YearDeleted, YearGenerated
from .scheduler import delete_year, generate_year, year_report
from .telegram import send_notification

agenda_cli = AppGroup("agenda", help="Yearly service agenda.")


@agenda_cli.command("generate-year")
@click.argument("year", type=int)
def generate_year_command(year):
    """Generate every Sunday and quarantine service of YEAR."""
    try:
        summary = generate_year(year)
    except DomainError as e:
        raise click.ClickException(str(e))

    click.echo(f"Generated {summary['total']} services for {year}")
    click.echo(f"  Sundays: {summary['sundays']} ({summary['sunday_services']} services)")
    click.echo(f"  Quarantine Saturdays: {summary['quarantine_saturdays']}")
    click.echo(f"  Quarantine Wednesdays: {summary['quarantine_wednesdays']}")
    click.echo(f"  First Sunday rotation: {summary['rotation_source']}")
    send_notification(YearGenerated(
        year=year,
        total=summary["total"],
        sundays=summary["sundays"],
        quarantine_saturdays=summary["quarantine_saturdays"],
        quarantine_wednesdays=summary["quarantine_wednesdays"],
    ))


@agenda_cli.command("delete-year")
@click.argument("year", type=int)
@click.option("--yes", is_flag=True, help="Skip the confirmation prompt.")
def delete_year_command(year, yes):
    """Delete every service of YEAR. Irreversible."""
    if not yes:
        click.confirm(f"Permanently delete every service of {year}?", abort=True)
    try:
        count = delete_year(year)
    except DomainError as e:
        raise click.ClickException(str(e))
    click.echo(f"Deleted {count} services for {year}")
    send_notification(YearDeleted(year=year, deleted=count))


@agenda_cli.command("year-report")
@click.argument("year", type=int)
def year_report_command(year):
    """Per-director and per-group counts for YEAR."""
    report = year_report(year)
    click.echo(f"{report['total']} services in {year}")
    click.echo(f"{'Director':<34} | {'Total':<5} | {'Dom':<3} | {'Cuar':<4}")
    click.echo("-" * 56)
    rows = sorted(report["directors"].items(), key=lambda x: x[1]["total"], reverse=True)
    for name, data in rows:
        click.echo(
            f"{name:<34} | {data['total']:<5} | {data['Servicio Dominical']:<3} | {data['cuarentena']:<4}"
        )
    click.echo("")
    for group, count in sorted(report["groups"].items()):
        click.echo(f"{group:<10} {count}")
