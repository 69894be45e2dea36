"""
CLI interface for Spend Monitor.

Operator commands for checking configuration, previewing alerts, and
inspecting device registrations and the inference budget ledger.
"""

import json
import sys
from datetime import date, datetime, time, timezone
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, Optional

import typer
import yaml
from rich.console import Console
from rich.table import Table

from spend_monitor.config.loader import MonitorConfig, collect_config_warnings, load_monitor_config
from spend_monitor.config.logging_config import setup_logging
from spend_monitor.core.channels import PushChannel
from spend_monitor.core.errors import ConfigurationError, ValidationError
from spend_monitor.core.evaluation import (
    CostEvaluation,
    build_alert_context,
    exceeds_threshold,
    project_period_total,
    to_decimal,
)
from spend_monitor.core.formatter import (
    build_subject,
    format_long_message,
    format_push_payload,
    format_short_message,
)
from spend_monitor.core.ledger import BudgetLedger
from spend_monitor.core.rate_limit import adaptive_rate_factor
from spend_monitor.core.validation import token_preview
from spend_monitor.storage.db import DEFAULT_DB_PATH
from spend_monitor.storage.kv import SqliteKeyValueStore
from spend_monitor.storage.repository import get_endpoint_store

app = typer.Typer()
console = Console()

# Exit codes - warnings are non-failing (0)
EXIT_CODE_PASS = 0
EXIT_CODE_WARN = 0  # Non-failing warning
EXIT_CODE_FAIL = 1  # Failing error


@app.callback(invoke_without_command=True)
def main(
    ctx: typer.Context,
    log_level: str = typer.Option("WARNING", "--log-level", "-l", help="Logging level"),
    json_logs: bool = typer.Option(False, "--json-logs", help="Emit logs as JSON lines"),
):
    """Spend Monitor CLI."""
    setup_logging(log_level, json_output=json_logs)
    if ctx.invoked_subcommand is None:
        console.print("Spend Monitor - Use --help to see available commands")


def _load_config_or_exit(config_path: str) -> MonitorConfig:
    try:
        return load_monitor_config(config_path)
    except FileNotFoundError as e:
        console.print(f"[red]Error:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)
    except ConfigurationError as e:
        console.print(f"[red]Invalid configuration:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)


@app.command("validate-config")
def validate_config(config_path: str = typer.Argument(..., help="Path to monitor YAML config")):
    """Validate a configuration file and report warnings."""
    config = _load_config_or_exit(config_path)

    table = Table(title="Monitor Configuration")
    table.add_column("Setting")
    table.add_column("Value")
    table.add_row("Spend threshold", _format_currency(config.monitor.spend_threshold))
    table.add_row("Topic", config.monitor.topic)
    table.add_row("Channels", ", ".join(channel.value for channel in config.monitor.channels))
    if isinstance(config.push, PushChannel):
        mode = "sandbox" if config.push.sandbox else "production"
        table.add_row("Push", f"{config.push.bundle_id} ({mode})")
    else:
        table.add_row("Push", "disabled")
    inference = config.inference
    table.add_row(
        "AI enrichment",
        f"{inference.model}, budget {_format_currency(inference.cost_threshold)}/month"
        if inference.enabled else "disabled",
    )
    table.add_row("Retry", f"{config.retry.max_attempts} attempts, max delay {config.retry.max_delay}s")
    console.print(table)

    warnings = collect_config_warnings(config)
    if warnings:
        console.print("\n[bold yellow]Warnings:[/]")
        for warning in warnings:
            console.print(f"[yellow]⚠[/] {warning}")
        sys.exit(EXIT_CODE_WARN)

    console.print("\n[green]✓[/] Configuration is valid")
    sys.exit(EXIT_CODE_PASS)


def _to_datetime(value: Any, field_name: str) -> datetime:
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if isinstance(value, date):
        return datetime.combine(value, time.min, tzinfo=timezone.utc)
    if isinstance(value, str):
        parsed = datetime.fromisoformat(value)
        return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)
    raise ValidationError(f"'{field_name}' must be a date")


def _load_cost_file(path: str) -> CostEvaluation:
    """Read a cost snapshot (YAML or JSON) into a CostEvaluation."""
    with open(path, "r", encoding="utf-8") as f:
        data: Dict[str, Any] = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ValidationError("Cost file must be a mapping")

    for key in ("total_cost", "breakdown", "period_start", "period_end"):
        if key not in data:
            raise ValidationError(f"Missing required '{key}' in cost file")
    if not isinstance(data["breakdown"], dict):
        raise ValidationError("'breakdown' must be a mapping of category to amount")

    period_end = _to_datetime(data["period_end"], "period_end")
    if "projected_total" in data:
        projected_total = to_decimal(str(data["projected_total"]))
    else:
        projected_total = project_period_total(str(data["total_cost"]), period_end)

    return CostEvaluation.create(
        total_cost=str(data["total_cost"]),
        breakdown={str(name): str(amount) for name, amount in data["breakdown"].items()},
        period_start=_to_datetime(data["period_start"], "period_start"),
        period_end=period_end,
        projected_total=projected_total,
        currency=str(data.get("currency", "USD")),
    )


@app.command("preview-alert")
def preview_alert(
    config_path: str = typer.Argument(..., help="Path to monitor YAML config"),
    costs_path: str = typer.Argument(..., help="Cost snapshot (YAML or JSON)"),
):
    """Render the alert a cost snapshot would produce, without sending it."""
    config = _load_config_or_exit(config_path)
    try:
        evaluation = _load_cost_file(costs_path)
    except FileNotFoundError as e:
        console.print(f"[red]Error:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)
    except (ValidationError, ValueError, InvalidOperation, yaml.YAMLError) as e:
        console.print(f"[red]Invalid cost file:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)

    settings = config.monitor
    if not exceeds_threshold(evaluation, settings.spend_threshold):
        console.print(
            f"[green]✓[/] Spend {_format_currency(evaluation.total_cost)} is within the "
            f"{_format_currency(settings.spend_threshold)} threshold - no alert would be sent"
        )
        sys.exit(EXIT_CODE_PASS)

    context = build_alert_context(evaluation, settings.spend_threshold, settings.min_category_cost)
    console.print(f"[bold]Subject:[/bold] {build_subject(context)}")
    console.print(f"[bold]Severity:[/bold] {context.severity.value}\n")
    console.print(format_long_message(evaluation, context), markup=False)
    console.print("\n[bold]SMS:[/bold]")
    console.print(format_short_message(evaluation, context), markup=False)
    if isinstance(config.push, PushChannel):
        console.print("\n[bold]Push payload:[/bold]")
        console.print_json(json.dumps(format_push_payload(evaluation, context)))
    sys.exit(EXIT_CODE_PASS)


@app.command()
def devices(
    db_path: str = typer.Option(DEFAULT_DB_PATH, "--db", help="SQLite database path"),
    show_all: bool = typer.Option(False, "--all", "-a", help="Include deactivated registrations"),
    limit: int = typer.Option(100, "--limit", "-n", help="Maximum rows to show"),
):
    """List registered push devices."""
    try:
        store = get_endpoint_store(db_path)
        registrations, next_token = store.list_registrations(active_only=not show_all, limit=limit)
    except Exception as e:
        console.print(f"[red]Error:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)

    if not registrations:
        console.print("[dim]No registered devices.[/]")
        sys.exit(EXIT_CODE_PASS)

    table = Table(title="Registered Devices")
    table.add_column("Token")
    table.add_column("Endpoint")
    table.add_column("User")
    table.add_column("Updated")
    table.add_column("Active")
    for registration in registrations:
        table.add_row(
            token_preview(registration.device_token),
            registration.endpoint_id,
            registration.user_id or "-",
            registration.updated_at.strftime("%Y-%m-%d %H:%M"),
            "[green]yes[/]" if registration.active else "[red]no[/]",
        )
    console.print(table)
    if next_token:
        console.print(f"[dim]More devices available (showing first {limit}).[/]")
    sys.exit(EXIT_CODE_PASS)


@app.command()
def ledger(config_path: str = typer.Argument(..., help="Path to monitor YAML config")):
    """Show this period's AI enrichment spend against its budget."""
    config = _load_config_or_exit(config_path)
    inference = config.inference
    if not inference.enabled:
        console.print("[yellow]AI enrichment is disabled in this configuration.[/]")
        sys.exit(EXIT_CODE_PASS)

    try:
        budget = BudgetLedger(inference.cost_threshold, store=SqliteKeyValueStore(config.storage.db_path))
        entry = budget.snapshot()
    except Exception as e:
        console.print(f"[red]Error:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)

    factor = adaptive_rate_factor(entry.utilization)
    table = Table(title=f"Inference Budget {entry.period_id}")
    table.add_column("Metric")
    table.add_column("Value")
    table.add_row("Spent", _format_currency(entry.spent, places=5))
    table.add_row("Threshold", _format_currency(entry.threshold))
    table.add_row("Remaining", _format_currency(entry.remaining, places=5))
    table.add_row("Utilization", f"{entry.utilization * 100:.1f}%")
    table.add_row("Rate limit", f"{factor * 100:.0f}% of {inference.rate_limit_per_minute}/min")
    table.add_row("Status", "[red]disabled[/]" if entry.disabled else "[green]active[/]")
    console.print(table)
    sys.exit(EXIT_CODE_PASS)


def _format_currency(amount: Optional[Decimal], places: int = 2) -> str:
    """Format currency with proper symbols and formatting."""
    if amount is None:
        return "-"
    sign = "-" if amount < 0 else ""
    return f"{sign}${abs(amount):,.{places}f}"


if __name__ == "__main__":
    app()
