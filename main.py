#!/usr/bin/env python3
"""Traefik Log Monitor - CLI Entry Point."""
import sys
import json
from datetime import datetime, timedelta, timezone
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent))

import click
from rich.console import Console
from rich.table import Table

from __version__ import __version__

console = Console()


def _init_components(config_path=None, verbose=False):
    """Lazy initialization of all components."""
    from utils.logger import setup_logging
    from config import load_config
    from monitor.components import build_components

    config = load_config(config_path)
    log_cfg = config.get("logging", {})
    setup_logging("DEBUG" if verbose else log_cfg.get("level", "INFO"), log_cfg.get("file"))

    Path(config["database"]["path"]).parent.mkdir(parents=True, exist_ok=True)
    return build_components(config)


@click.group()
@click.option("--config", "config_path", default=None, help="Path to config YAML")
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging")
@click.version_option(__version__, prog_name="logmonitor")
@click.pass_context
def cli(ctx, config_path, verbose):
    """Traefik Log Monitor - access-log metrics, alert rules & retention."""
    ctx.ensure_object(dict)
    ctx.obj["config_path"] = config_path
    ctx.obj["verbose"] = verbose


def _get_components(ctx):
    if "_components" not in ctx.obj:
        ctx.obj["_components"] = _init_components(ctx.obj.get("config_path"), ctx.obj.get("verbose"))
    return ctx.obj["_components"]


def _print_cycle(result):
    style = "green" if result.ok else "yellow"
    console.print(f"[{style}]Cycle: {result.processed}/{result.units} units ok, {result.failed} failed[/{style}]")
    for err in result.errors:
        console.print(f"  [red]✗[/red] {err}")


# ──────────────────────────────────────────────────────
# SERVER
# ──────────────────────────────────────────────────────
@cli.command()
@click.option("--port", default=None, type=int, help="Port (default from config)")
@click.option("--host", default=None, help="Bind address (default from config)")
@click.option("--no-scheduler", is_flag=True, help="Serve the API without the background scheduler")
@click.pass_context
def run(ctx, port, host, no_scheduler):
    """Start the background scheduler and the HTTP control surface."""
    from web.app import create_app
    from monitor.components import shutdown_components

    c = _get_components(ctx)
    web_cfg = c["config"].get("web", {})
    host = host or web_cfg.get("host", "127.0.0.1")
    port = port or web_cfg.get("port", 5000)

    c["coordinator"].initialize()
    if no_scheduler or not c["scheduler"].enabled:
        console.print("[yellow]Scheduler disabled[/yellow]")
    else:
        c["scheduler"].start()

    app = create_app(c["config"], c)

    console.print(f"\n[bold]Traefik Log Monitor[/bold] v{__version__}")
    console.print(f"  API:     http://{host}:{port}/api/status")
    console.print(f"  Agents:  {len(c['db'].get_agents())}")
    console.print(f"  Rules:   {len(c['rules'].get_enabled_rules())} enabled")
    console.print("\n  Press Ctrl+C to stop.\n")

    try:
        app.run(host=host, port=port, debug=False, use_reloader=False)
    finally:
        shutdown_components(c)


@cli.command()
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_context
def trigger(ctx, as_json):
    """Run one scheduler cycle now and report the outcome."""
    from monitor.scheduler import SchedulerBusyError

    c = _get_components(ctx)
    try:
        result = c["scheduler"].run_once()
    except SchedulerBusyError as e:
        raise click.ClickException(str(e))

    if as_json:
        click.echo(json.dumps(result.to_dict(), indent=2))
    else:
        _print_cycle(result)
    if not result.ok:
        ctx.exit(1)


@cli.command()
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_context
def status(ctx, as_json):
    """Show scheduler, coordinator and storage status."""
    c = _get_components(ctx)
    data = {
        "scheduler": c["scheduler"].get_status(),
        "services": c["coordinator"].get_status(),
        "snapshots": c["db"].get_snapshot_stats(),
        "agents": [a.id for a in c["db"].get_agents()],
    }
    if as_json:
        click.echo(json.dumps(data, indent=2, default=str))
        return

    table = Table(title="Log Monitor Status", show_header=False)
    table.add_column("Key", style="bold")
    table.add_column("Value")
    sched = data["scheduler"]
    table.add_row("Scheduler", "[green]enabled[/green]" if sched["enabled"] else "[red]disabled[/red]")
    table.add_row("Tick", f"{sched['tick_seconds']}s")
    table.add_row("Agents", ", ".join(data["agents"]) or "[dim]none configured[/dim]")
    table.add_row("Snapshots", str(data["snapshots"]["total_count"]))
    table.add_row("Oldest snapshot", str(data["snapshots"]["oldest_entry"] or "-"))
    archival = data["services"]["archival"]
    table.add_row("Historical", "enabled" if archival["enabled"] else "disabled")
    table.add_row("Retention", f"{archival['retention_days']} days")
    table.add_row("Archive every", f"{archival['archive_interval']} min")
    console.print(table)


@cli.command()
@click.option("--archive", is_flag=True, help="Also archive cached metrics before sweeping")
@click.pass_context
def sweep(ctx, archive):
    """Delete snapshots and history older than the retention period."""
    c = _get_components(ctx)
    if archive:
        result = c["archival"].run()
        if result is None:
            raise click.ClickException("Archival already in progress")
    else:
        result = c["archival"].sweep()
    console.print(f"[green]✓[/green] Removed {result['snapshots_deleted']} snapshots, "
                  f"{result['historical_deleted']} historical rows (cutoff {result['cutoff'][:10]})")


@cli.command()
@click.option("--agent", "agent_id", default=None, help="Only show rows for this agent")
@click.option("--hours", default=None, type=int, help="Only show rows from the last N hours")
@click.option("--limit", default=20, help="Number of rows")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_context
def history(ctx, agent_id, hours, limit, as_json):
    """Show archived metrics."""
    c = _get_components(ctx)
    start = datetime.now(timezone.utc) - timedelta(hours=hours) if hours else None
    rows = c["db"].query_historical_data(agent_id=agent_id, start=start, limit=limit)
    if as_json:
        click.echo(json.dumps({"data": rows, "stats": c["db"].get_historical_stats(agent_id)}, indent=2))
        return
    if not rows:
        console.print("[dim]No archived metrics[/dim]")
        return
    table = Table(title="Archived Metrics", show_header=True)
    table.add_column("Time", style="dim")
    table.add_column("Agent")
    table.add_column("Requests", justify="right")
    table.add_column("Error rate", justify="right")
    table.add_column("p95 ms", justify="right")
    for row in rows:
        m = row["metrics"]
        table.add_row(row["timestamp"][:16].replace("T", " "), row["agent_id"],
                      str(m.get("request_count", "-")), str(m.get("error_rate", "-")),
                      str(m.get("p95_response_time_ms", "-")))
    console.print(table)


# ──────────────────────────────────────────────────────
# HISTORICAL CONFIG
# ──────────────────────────────────────────────────────
@cli.group("config")
def config_group():
    """Historical retention/archival settings."""
    pass


@config_group.command("show")
@click.pass_context
def config_show(ctx):
    """Show the stored historical config."""
    c = _get_components(ctx)
    click.echo(json.dumps(c["db"].get_historical_config().to_dict(), indent=2))


@config_group.command("set")
@click.option("--retention-days", type=int, default=None, help="Days to keep snapshots")
@click.option("--archive-interval", type=int, default=None, help="Minutes between archive runs")
@click.option("--enabled/--disabled", default=None, help="Toggle historical archiving")
@click.pass_context
def config_set(ctx, retention_days, archive_interval, enabled):
    """Update the historical config."""
    from models.historical import ValidationError

    updates = {}
    if retention_days is not None:
        updates["retention_days"] = retention_days
    if archive_interval is not None:
        updates["archive_interval"] = archive_interval
    if enabled is not None:
        updates["enabled"] = enabled
    if not updates:
        raise click.UsageError("Nothing to update")

    c = _get_components(ctx)
    try:
        updated = c["db"].update_historical_config(updates)
    except ValidationError as e:
        raise click.BadParameter(str(e))
    console.print("[green]✓[/green] Historical config updated")
    click.echo(json.dumps(updated.to_dict(), indent=2))


# ──────────────────────────────────────────────────────
# ALERTS
# ──────────────────────────────────────────────────────
@cli.group()
def alerts():
    """Alert rules and notification history."""
    pass


@alerts.command("recent")
@click.option("--limit", default=20, help="Number of records")
@click.option("--rule", "rule_id", default=None, help="Only show records for this rule")
@click.option("--plain", is_flag=True, help="One line per record, no table")
@click.pass_context
def alerts_recent(ctx, limit, rule_id, plain):
    """Show recent notification records."""
    c = _get_components(ctx)
    engine = c["alert_engine"]
    recent = engine.get_recent_for_rule(rule_id, limit) if rule_id else engine.get_recent(limit)
    if plain:
        click.echo(engine.format_alert_summary(recent))
        return
    if not recent:
        console.print("[dim]No alerts in history[/dim]")
        return
    title = f"Recent Alerts for {rule_id} (last {limit})" if rule_id else f"Recent Alerts (last {limit})"
    table = Table(title=title, show_header=True)
    table.add_column("Time", style="dim")
    table.add_column("Status")
    table.add_column("Rule")
    table.add_column("Agent")
    table.add_column("Detail")
    for r in recent:
        status_cell = "[green]success[/green]" if r.status.value == "success" else "[red]failed[/red]"
        table.add_row(r.created_at.strftime("%Y-%m-%d %H:%M"), status_cell, r.rule_id, r.agent_id, r.detail[:60])
    console.print(table)


@alerts.command("stats")
@click.pass_context
def alerts_stats(ctx):
    """Show notification counts over recent history."""
    c = _get_components(ctx)
    stats = c["alert_engine"].get_alert_stats()
    console.print(f"Total: [bold]{stats['total']}[/bold]  Last 24h: {stats['last_24h']}  "
                  f"Success: [green]{stats['success']}[/green]  Failed: [red]{stats['failed']}[/red]")
    for r in stats["recent"]:
        console.print(f"  {r['created_at'][:16]} {r['status']:<7} {r['rule_id']} ({r['agent_id']})")


@alerts.command("test")
@click.argument("rule_id")
@click.option("--agent", "agent_id", required=True, help="Agent ID to attribute the test to")
@click.pass_context
def alerts_test(ctx, rule_id, agent_id):
    """Send one test notification for a rule."""
    c = _get_components(ctx)
    try:
        record = c["alert_engine"].test_fire(rule_id, agent_id)
    except KeyError:
        raise click.BadParameter(f"Unknown rule: {rule_id}")
    mark = "[green]✓[/green]" if record.status.value == "success" else "[red]✗[/red]"
    console.print(f"{mark} {record.rule_id}: {record.detail}")


@alerts.command("preview")
@click.option("--agent", "agent_id", required=True, help="Agent whose latest snapshot to use")
@click.option("--interval", default="5m", help="Snapshot interval")
@click.pass_context
def alerts_preview(ctx, agent_id, interval):
    """Dry-run all rules against an agent's latest snapshot."""
    c = _get_components(ctx)
    snapshot = c["db"].get_latest_snapshot(agent_id, interval)
    if snapshot is None:
        raise click.ClickException(f"No {interval} snapshot for {agent_id}")
    table = Table(title=f"Rule Preview ({agent_id}, {interval})", show_header=True)
    table.add_column("Rule")
    table.add_column("Condition")
    table.add_column("Value")
    table.add_column("Fires")
    for row in c["alert_engine"].preview_rules(dict(snapshot.metrics), agent_id):
        value = row["current_value"]
        table.add_row(row["rule_id"], f"{row['metric']} {row['operator']} {row['threshold']:g}",
                      "-" if value is None else f"{value:g}",
                      "[red]yes[/red]" if row["would_fire"] else "no")
    console.print(table)


@alerts.command("rules")
@click.pass_context
def alerts_rules(ctx):
    """List all configured alert rules."""
    c = _get_components(ctx)
    rules = c["rules"].get_all_rules()
    table = Table(title="Alert Rules", show_header=True)
    table.add_column("ID", style="dim")
    table.add_column("Name")
    table.add_column("Condition")
    table.add_column("Interval")
    table.add_column("Severity")
    table.add_column("Enabled")
    for r in rules:
        condition = "every window" if r.trigger.value == "interval" else f"{r.metric} {r.operator} {r.threshold:g}"
        table.add_row(r.id, r.name, condition, r.interval.value, r.severity,
                      "[green]✓[/green]" if r.enabled else "[red]✗[/red]")
    console.print(table)


if __name__ == "__main__":
    cli()
