"""Command-line interface for caregiver attendance billing."""

import calendar as month_calendar
import json
import logging
from datetime import datetime, time, timedelta
from pathlib import Path
from zoneinfo import ZoneInfo

import click
import yaml
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape
from rich.table import Table

from . import db
from .analysis.billing import compute_breakdown, validate_config
from .collectors import csv_import, supabase
from .holidays import get_calendar, majoration_for
from .models import BillingConfig, BillingPeriod, ConfigurationError, MajorationClass, as_utc
from .rates import load_beneficiaries_from_yaml, load_billing_config, save_beneficiaries_to_db
from .reports import csv_export, summary
from .reports.formatting import decimal_to_hhmm, format_hours, format_money

console = Console()


def period_window(period: BillingPeriod, timezone: str) -> tuple[datetime, datetime]:
    """UTC window covering a month plus one day each side.

    The margin lets sessions crossing the month boundary pair up; the
    engine then keeps only sessions starting within the month.
    """
    tz = ZoneInfo(timezone)
    start = datetime.combine(period.start - timedelta(days=1), time.min, tzinfo=tz)
    end = datetime.combine(period.end + timedelta(days=1), time.min, tzinfo=tz)
    return start, end


def load_period(ctx, beneficiary_id: str, month: str):
    """Load a beneficiary's config and events, then run the billing engine."""
    period = BillingPeriod.parse(month)
    config = load_billing_config(beneficiary_id, ctx.obj["db_path"])
    validate_config(config)
    start, end = period_window(period, config.timezone)
    events = db.get_events(beneficiary_id, start, end, ctx.obj["db_path"])
    breakdown = compute_breakdown(events, config, period)
    return config, events, breakdown


def fail(ctx, message: str) -> None:
    console.print(f"[red]Error: {escape(message)}[/red]")
    ctx.exit(1)


@click.group()
@click.option("--db-path", type=click.Path(), help="Path to SQLite database")
@click.option("--verbose", "-v", is_flag=True, help="Show debug logging")
@click.pass_context
def cli(ctx, db_path, verbose):
    """Caregiver attendance - track visits and compute monthly billing."""
    ctx.ensure_object(dict)
    ctx.obj["db_path"] = Path(db_path) if db_path else None

    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        handlers=[RichHandler(console=console, show_path=False)],
    )


# Database commands
@cli.group()
def database():
    """Database management commands."""
    pass


@database.command("init")
@click.pass_context
def db_init(ctx):
    """Initialize the database schema."""
    db.init_db(ctx.obj["db_path"])
    console.print("[green]Database initialized successfully[/green]")


@database.command("stats")
@click.pass_context
def db_stats(ctx):
    """Show database statistics."""
    stats = db.get_stats(ctx.obj["db_path"])

    table = Table(title="Database Statistics")
    table.add_column("Category", style="cyan")
    table.add_column("Count", justify="right")
    table.add_column("Range")

    events = stats["attendance_events"]
    table.add_row(
        "Attendance events",
        str(events["count"]),
        f"{events['earliest'] or 'N/A'} → {events['latest'] or 'N/A'}",
    )
    for beneficiary_id, count in stats.get("events_by_beneficiary", {}).items():
        table.add_row(f"  └ {beneficiary_id}", str(count), "")

    table.add_row("Beneficiaries", str(stats["beneficiaries"]["count"]), "")
    table.add_row("Rate changes", str(stats["rate_history"]["count"]), "")

    console.print(table)


# Import commands
@cli.group("import")
def import_cmd():
    """Import check-ins from various sources."""
    pass


@import_cmd.command("csv")
@click.option("--file", "file_path", type=click.Path(exists=True), required=True, help="Path to check-in CSV export")
@click.pass_context
def import_csv(ctx, file_path):
    """Import check-ins and check-outs from a CSV export."""
    result = csv_import.import_from_csv(Path(file_path), ctx.obj["db_path"])
    console.print(f"[green]Imported {result['imported']} events[/green]")
    if result["skipped"]:
        console.print(f"[yellow]Skipped {result['skipped']} duplicates[/yellow]")
    if result["invalid"]:
        console.print(f"[yellow]Ignored {result['invalid']} malformed rows[/yellow]")


@import_cmd.command("supabase")
@click.option("--beneficiary", "beneficiary_id", required=True, help="Beneficiary ID")
@click.option("--month", help="Month to fetch (YYYY-MM), defaults to everything")
@click.pass_context
def import_supabase(ctx, beneficiary_id, month):
    """Fetch check-ins from the hosted app database.

    Requires SUPABASE_URL and SUPABASE_KEY environment variables.
    """
    start = end = None
    try:
        if month:
            period = BillingPeriod.parse(month)
            start, end = period_window(period, "UTC")
        result = supabase.import_check_ins(beneficiary_id, start, end, ctx.obj["db_path"])
    except (supabase.SupabaseError, ValueError) as e:
        fail(ctx, str(e))
        return

    console.print(f"[green]Imported {result['imported']} events[/green]")
    if result["skipped"]:
        console.print(f"[yellow]Skipped {result['skipped']} existing events[/yellow]")


# Rate commands
@cli.group()
def rates():
    """Beneficiary rate management commands."""
    pass


@rates.command("load")
@click.option("--config", type=click.Path(exists=True), help="Path to beneficiaries.yaml")
@click.pass_context
def rates_load(ctx, config):
    """Load beneficiaries and rate history from YAML config."""
    config_path = Path(config) if config else None
    try:
        configs = load_beneficiaries_from_yaml(config_path)
        for beneficiary in configs:
            validate_config(beneficiary)
    except (KeyError, ValueError, yaml.YAMLError) as e:
        fail(ctx, f"Invalid beneficiary config: {e}")
        return
    count = save_beneficiaries_to_db(configs, ctx.obj["db_path"])
    console.print(f"[green]Loaded {count} beneficiar{'y' if count == 1 else 'ies'}[/green]")


def _print_breakdown(config: BillingConfig, breakdown) -> None:
    currency = config.currency
    table = Table(title=f"{config.name or config.beneficiary_id} - {breakdown.period}")
    table.add_column("Caregiver", style="cyan")
    for label in summary.CLASS_LABELS.values():
        table.add_column(f"{label} h", justify="right")
    table.add_column("Total h", justify="right")
    table.add_column(f"Amount ({currency})", justify="right")

    for c in breakdown.per_caregiver:
        table.add_row(
            c.name,
            *(f"{c.hours(m):.2f}" for m in MajorationClass),
            f"{c.total_hours:.2f} ({decimal_to_hhmm(c.total_hours)})",
            f"{c.total_amount:.2f}",
        )

    totals = breakdown.totals
    table.add_section()
    table.add_row(
        "TOTAL",
        *(f"{totals.hours[m]:.2f}" for m in MajorationClass),
        f"{totals.total_hours:.2f} ({decimal_to_hhmm(totals.total_hours)})",
        f"{totals.pre_vat_total:.2f}",
        style="bold",
    )
    console.print(table)

    split = Table(title="Payment split")
    split.add_column("", style="cyan")
    split.add_column("Excl. VAT", justify="right")
    split.add_column(f"VAT ({totals.vat_rate * 100:g}%)", justify="right")
    split.add_column("Incl. VAT", justify="right")
    split.add_row("Total", f"{totals.pre_vat_total:.2f}", f"{totals.vat_amount:.2f}", f"{totals.total_with_vat:.2f}")
    split.add_row("Insurance", f"{totals.payer_amount:.2f}", f"{totals.payer_vat:.2f}", f"{totals.payer_with_vat:.2f}")
    split.add_row(
        "Beneficiary",
        f"{totals.beneficiary_amount:.2f}",
        f"{totals.beneficiary_vat:.2f}",
        f"{totals.beneficiary_with_vat:.2f}",
    )
    console.print(split)

    if breakdown.allowance:
        a = breakdown.allowance
        console.print(
            f"[cyan]Allowance:[/cyan] {a.hours_used:.2f}h of {a.allowance_hours:g}h "
            f"({a.usage_percent:.1f}%), {format_money(a.value_remaining, currency)} remaining"
        )
    for name, hours in breakdown.training_per_caregiver.items():
        console.print(f"[dim]Training (not billed): {name} {hours:.2f}h[/dim]")
    if breakdown.discrepancies:
        console.print(
            f"[yellow]{len(breakdown.discrepancies)} unpaired event(s) excluded, "
            f"see 'caretrack discrepancies'[/yellow]"
        )


# Report commands
@cli.command()
@click.option("--beneficiary", "beneficiary_id", required=True, help="Beneficiary ID")
@click.option("--month", required=True, help="Month to report (YYYY-MM)")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.option("--text", "as_text", is_flag=True, help="Output as plain text")
@click.option("--csv", "csv_path", type=click.Path(), help="Write the financial summary CSV here")
@click.option("--detail-csv", "detail_path", type=click.Path(), help="Write the detailed check-in CSV here")
@click.pass_context
def report(ctx, beneficiary_id, month, as_json, as_text, csv_path, detail_path):
    """Compute the monthly billing report of a beneficiary."""
    try:
        config, events, breakdown = load_period(ctx, beneficiary_id, month)
    except (ConfigurationError, ValueError) as e:
        fail(ctx, str(e))
        return

    if csv_path:
        Path(csv_path).write_text(csv_export.financial_summary_csv(breakdown, config))
        console.print(f"[green]Wrote {csv_path}[/green]")
    if detail_path:
        tz = ZoneInfo(config.timezone)
        in_period = [e for e in events if breakdown.period.contains(as_utc(e.timestamp).astimezone(tz).date())]
        Path(detail_path).write_text(csv_export.detailed_check_ins_csv(in_period, config.timezone))
        console.print(f"[green]Wrote {detail_path}[/green]")

    data = summary.build_report(breakdown, config)
    if as_json:
        click.echo(json.dumps(data, indent=2, ensure_ascii=False))
    elif as_text:
        console.print(summary.format_report_text(data), markup=False, highlight=False)
    else:
        _print_breakdown(config, breakdown)


@cli.command()
@click.option("--beneficiary", "beneficiary_id", required=True, help="Beneficiary ID")
@click.option("--month", required=True, help="Month to check (YYYY-MM)")
@click.pass_context
def discrepancies(ctx, beneficiary_id, month):
    """List unpaired or duplicated check-ins and check-outs."""
    try:
        config, _, breakdown = load_period(ctx, beneficiary_id, month)
    except (ConfigurationError, ValueError) as e:
        fail(ctx, str(e))
        return

    if not breakdown.discrepancies:
        console.print("[green]No discrepancies[/green]")
        return

    tz = ZoneInfo(config.timezone)
    table = Table(title=f"Discrepancies - {breakdown.period}")
    table.add_column("When", style="cyan")
    table.add_column("Caregiver")
    table.add_column("Kind")
    table.add_column("Event ID", style="dim")

    for d in breakdown.discrepancies:
        local = as_utc(d.event.timestamp).astimezone(tz)
        table.add_row(local.strftime("%Y-%m-%d %H:%M"), d.event.caregiver_name, d.kind.value, d.event.id)

    console.print(table)


@cli.command()
@click.option("--beneficiary", "beneficiary_id", required=True, help="Beneficiary ID")
@click.option("--month", required=True, help="Month to show (YYYY-MM)")
@click.pass_context
def daily(ctx, beneficiary_id, month):
    """Show worked hours per day."""
    try:
        config, _, breakdown = load_period(ctx, beneficiary_id, month)
    except (ConfigurationError, ValueError) as e:
        fail(ctx, str(e))
        return

    days = summary.daily_hours(breakdown, config)
    if not days:
        console.print("[yellow]No sessions found[/yellow]")
        return

    table = Table(title=f"Daily hours - {breakdown.period}")
    table.add_column("Date", style="cyan")
    table.add_column("Hours", justify="right")
    table.add_column("Training", justify="right")
    table.add_column("Holiday")

    for day, values in days.items():
        table.add_row(
            day,
            format_hours(values["hours"]),
            f"{values['training_hours']:.2f}" if values["training_hours"] else "",
            values["holiday"] or "",
        )

    console.print(table)


@cli.command("calendar")
@click.option("--month", required=True, help="Month to show (YYYY-MM)")
@click.option("--country", default="FR", help="Country code of the holiday calendar (default: FR)")
@click.pass_context
def calendar_cmd(ctx, month, country):
    """Show the majoration class of each day of a month."""
    try:
        period = BillingPeriod.parse(month)
        holidays = get_calendar(country)
    except (KeyError, ValueError) as e:
        fail(ctx, str(e.args[0]))
        return

    table = Table(
        title=f"Majorations {period} ({country.upper()})",
        caption="Ordinary days: +25% before 08:00 and from 20:00",
    )
    table.add_column("Date", style="cyan")
    table.add_column("Class")
    table.add_column("Holiday")

    _, days_in_month = month_calendar.monthrange(period.year, period.month)
    for offset in range(days_in_month):
        day = period.start + timedelta(days=offset)
        majoration = majoration_for(day, country)
        table.add_row(
            day.strftime("%a %Y-%m-%d"),
            summary.CLASS_LABELS[majoration],
            holidays.holiday_name(day) or "",
        )

    console.print(table)


if __name__ == "__main__":
    cli()
