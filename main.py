#!/usr/bin/env python3
"""
AP invoice matching pipeline: CLI entry point.

Usage examples:
  apmatch check                                  # Verify config and data files
  apmatch process extracted/INV-10442.json       # Process one extraction payload
  apmatch process extracted/                     # Batch-process a folder of payloads
  apmatch process extracted/ --po-csv data/po.csv

  apmatch holds list --unresolved                # Open holds
  apmatch holds list --reason missing_po
  apmatch holds resolve <hold-id> --by jdoe --note "PO corrected"

  apmatch summary --date 2024-03-15              # Daily summary
  apmatch variance --threshold 50.00             # Variance analysis
  apmatch prune                                  # Drop dedup keys past retention
"""
import json
import logging
from pathlib import Path

import click

from config import Config
from models.result import HOLD_REASONS
from pipeline.database import Database
from pipeline.errors import PipelineError
from pipeline.holds import HoldTracker
from pipeline.normalize import format_currency, parse_currency
from pipeline.processor import DocumentProcessor, prune_expired
from pipeline.reports import daily_summary, variance_analysis


def _setup_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s  %(levelname)-8s  %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )
    # Quieten noisy third-party loggers
    logging.getLogger("urllib3").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("openai").setLevel(logging.WARNING)


def _load_config(ctx: click.Context, **overrides) -> Config:
    try:
        return Config.load(settings_file=ctx.obj.get("settings"), **overrides)
    except PipelineError as e:
        raise click.ClickException(str(e)) from e


@click.group()
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging")
@click.option(
    "--settings", default=None, type=click.Path(dir_okay=False, path_type=Path),
    help="Path to pipeline_settings.json (default: $CONFIG_DIR/pipeline_settings.json)",
)
@click.pass_context
def cli(ctx: click.Context, verbose: bool, settings: Path | None) -> None:
    """AP invoice matching: PO match, dedup, variance and hold disposition."""
    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose
    ctx.obj["settings"] = settings
    _setup_logging(verbose)


# --------------------------------------------------------------------
# check command
# --------------------------------------------------------------------

@cli.command()
@click.pass_context
def check(ctx: click.Context) -> None:
    """Verify the configuration and that all data files are ready."""
    config = _load_config(ctx)
    processor = DocumentProcessor(config)
    status = processor.check_setup()

    click.echo("\n=== Pipeline Setup Check ===\n")
    click.echo(f"  Variance tolerance:  {format_currency(config.variance_cents)}")
    click.echo(f"  Dedup window:        {config.dedupe_window_days} days")
    click.echo()

    for key, label in [
        ("vendors_csv", "vendors.csv"),
        ("po_csv", "purchase_orders.csv"),
        ("jobs_csv", "jobs.csv"),
    ]:
        info = status[key]
        tick = "✓" if info["exists"] else "✗"
        count_str = f" ({info['count']} loaded)" if info["exists"] and "count" in info else ""
        missing = "" if info["exists"] else " (file not found)"
        click.echo(f"  {label:<28} {tick}{count_str}{missing}")
        if not info["exists"]:
            click.echo(f"     → Expected at: {info['path']}")

    click.echo()
    db = status["database"]
    click.echo(f"  Database:                    {'✓' if db['exists'] else '✗'}  {db['path']}")
    teams = status["teams_webhook"]
    click.echo(f"  Teams webhook:               {'✓' if teams['ok'] else '-'}  {teams['note'] or ''}")
    ai = status["ai_categorization"]
    click.echo(f"  AI categorization:           {'on' if ai['enabled'] else 'off'}")
    click.echo()


# --------------------------------------------------------------------
# process command
# --------------------------------------------------------------------

@cli.command()
@click.argument("target", type=click.Path(exists=True, path_type=Path))
@click.option("--vendors", default=None, type=click.Path(path_type=Path), help="Path to vendors CSV")
@click.option("--po-csv", default=None, type=click.Path(path_type=Path), help="Path to purchase_orders CSV")
@click.option("--jobs-csv", default=None, type=click.Path(path_type=Path), help="Path to jobs CSV")
@click.option("--db", default=None, type=click.Path(path_type=Path), help="Path to the SQLite database")
@click.pass_context
def process(
    ctx: click.Context,
    target: Path,
    vendors: Path | None,
    po_csv: Path | None,
    jobs_csv: Path | None,
    db: Path | None,
) -> None:
    """Process one extraction JSON file or a directory of them."""
    config = _load_config(ctx, vendors_csv=vendors, po_csv=po_csv, jobs_csv=jobs_csv, db_path=db)
    processor = DocumentProcessor(config)

    if target.is_dir():
        result = processor.process_batch(target)
        click.echo(f"\nProcessed {len(result.outcomes)} document(s).")
        held = [o for o in result.outcomes if o.hold is not None]
        if held:
            click.echo(f"⚠  {len(held)} held for review:")
            for o in held:
                click.echo(
                    f"   {o.document.invoice_number or '(no invoice #)'}  "
                    f"{o.document.supplier_name_raw}: {o.hold.reason}"
                )
        if result.failures:
            click.echo(f"✗  {len(result.failures)} failed:")
            for name, error in result.failures.items():
                click.echo(f"   {name}: {error}")
        return

    if target.suffix.lower() != ".json":
        raise click.ClickException(f"'{target}' is not an extraction JSON file.")

    try:
        outcome = processor.process_file(target)
    except PipelineError as e:
        raise click.ClickException(str(e)) from e

    doc, match = outcome.document, outcome.match
    click.echo()
    click.echo(f"  Invoice:     {doc.invoice_number or '(unknown)'}")
    click.echo(f"  Date:        {doc.invoice_date or '(unknown)'}")
    click.echo(f"  Supplier:    {doc.supplier_name_raw or '(unknown)'}")
    click.echo(f"  Total:       {format_currency(doc.total) if doc.total is not None else '(unknown)'}")
    click.echo(f"  PO:          {doc.po_number_raw or '(none)'}")
    click.echo(f"  Vendor:      {doc.vendor_id or '(unmatched)'}")
    click.echo(f"  Disposition: {match.action}")
    click.echo()

    for r in match.reasons:
        icon = "✗" if r.severity == "error" else ("⚠" if r.severity == "warning" else "ℹ")
        click.echo(f"    {icon} [{r.code}] {r.description}")
    if match.suggestions:
        click.echo("  Suggested jobs:")
        for s in match.suggestions:
            click.echo(f"    {s.job_id}  {s.confidence:.2f}  ({s.basis})")
    if outcome.hold:
        click.echo(f"\n  Hold created: {outcome.hold.id}")
    if outcome.bill:
        click.echo(f"\n  Bill recorded: {outcome.bill.id} ({outcome.bill.status})")


# --------------------------------------------------------------------
# holds commands
# --------------------------------------------------------------------

@cli.group()
def holds() -> None:
    """List and resolve held documents."""


@holds.command("list")
@click.option("--reason", type=click.Choice(HOLD_REASONS), default=None, help="Only this hold reason")
@click.option("--unresolved", is_flag=True, help="Only holds still open")
@click.option("--json", "as_json", is_flag=True, help="Output JSON")
@click.pass_context
def holds_list(ctx: click.Context, reason: str | None, unresolved: bool, as_json: bool) -> None:
    """Show holds, newest first."""
    config = _load_config(ctx)
    tracker = HoldTracker(Database(config.db_path))
    rows = tracker.list_holds(reason=reason, unresolved=unresolved)

    if as_json:
        click.echo(json.dumps([json.loads(h.model_dump_json()) for h in rows], indent=2))
        return
    if not rows:
        click.echo("No holds found.")
        return
    for h in rows:
        state = f"resolved by {h.resolved_by}" if h.is_resolved else "OPEN"
        click.echo(f"{h.id}  {h.created_at:%Y-%m-%d %H:%M}  {h.reason:<18} {state}")
        click.echo(f"    {h.details}")


@holds.command("resolve")
@click.argument("hold_id")
@click.option("--by", "resolved_by", required=True, help="Who resolved the hold")
@click.option("--note", "resolution", required=True, help="How it was resolved")
@click.pass_context
def holds_resolve(ctx: click.Context, hold_id: str, resolved_by: str, resolution: str) -> None:
    """Resolve an open hold (each hold can be resolved once)."""
    config = _load_config(ctx)
    tracker = HoldTracker(Database(config.db_path))
    try:
        hold = tracker.resolve_hold(hold_id, resolved_by, resolution)
    except PipelineError as e:
        raise click.ClickException(str(e)) from e
    click.echo(f"✓ Hold {hold.id} resolved by {hold.resolved_by}")


@holds.command("stats")
@click.pass_context
def holds_stats(ctx: click.Context) -> None:
    """Hold counts and average time to resolve."""
    config = _load_config(ctx)
    stats = HoldTracker(Database(config.db_path)).hold_stats()
    click.echo(json.dumps(stats, indent=2))


# --------------------------------------------------------------------
# reports
# --------------------------------------------------------------------

@cli.command()
@click.option(
    "--date", "day", default=None, type=click.DateTime(formats=["%Y-%m-%d"]),
    help="Day to summarise (UTC, default today)",
)
@click.pass_context
def summary(ctx: click.Context, day) -> None:
    """Daily processing summary."""
    config = _load_config(ctx)
    report = daily_summary(Database(config.db_path), day.date() if day else None)

    click.echo(f"\n=== Daily summary {report['date']} ===\n")
    click.echo(f"  Processed:     {report['processed']}")
    click.echo(f"  Finalized:     {report['finalized']}")
    click.echo(f"  Drafted:       {report['drafted']}")
    click.echo(f"  Held:          {report['held']}")
    click.echo(f"  Failed:        {report['failed']}")
    click.echo(f"  Success rate:  {report['success_rate']}%")
    click.echo(f"  Total amount:  {report['total_amount']}")
    if report["top_vendors"]:
        click.echo("\n  Top vendors:")
        for v in report["top_vendors"]:
            click.echo(f"    {v['vendor']:<30} {v['amount']}")
    if report["hold_reasons"]:
        click.echo("\n  Holds by reason:")
        for reason, count in report["hold_reasons"].items():
            click.echo(f"    {reason:<20} {count}")
    click.echo()


@cli.command()
@click.option("--threshold", default=None, help="Dollar threshold (default: configured tolerance)")
@click.pass_context
def variance(ctx: click.Context, threshold: str | None) -> None:
    """Variance analysis across all evaluated documents."""
    config = _load_config(ctx)
    threshold_cents = config.variance_cents
    if threshold is not None:
        threshold_cents = parse_currency(threshold)
        if threshold_cents is None or threshold_cents < 0:
            raise click.BadParameter(f"not an amount: {threshold!r}", param_hint="--threshold")

    report = variance_analysis(Database(config.db_path), threshold_cents)
    click.echo(f"\n=== Variance analysis (threshold {report['threshold']}) ===\n")
    click.echo(f"  Documents with variance:  {report['count']}")
    click.echo(f"  Over threshold:           {report['over_threshold']}")
    click.echo(f"  Total variance:           {report['total_variance']}")
    click.echo(f"  Average variance:         {report['average_variance']}")
    if report["top"]:
        click.echo("\n  Largest variances:")
        for r in report["top"]:
            click.echo(
                f"    {r['variance']:>12}  {r['supplier'] or '?':<28} "
                f"{r['invoice_number'] or '?':<14} (total {r['total']})"
            )
    click.echo()


# --------------------------------------------------------------------
# prune command
# --------------------------------------------------------------------

@cli.command()
@click.pass_context
def prune(ctx: click.Context) -> None:
    """Drop dedup keys older than the retention period."""
    config = _load_config(ctx)
    removed = prune_expired(Database(config.db_path), config.retention_years)
    click.echo(f"Removed {removed} dedup key(s) older than {config.retention_years} year(s).")


if __name__ == "__main__":
    cli()
