"""
CLI interface for Token Ledger.

Provides command-line access to balances, projections and receipt analysis.
"""

import sqlite3
import sys
from typing import Optional

import typer
from rich.console import Console
from rich.table import Table

from token_ledger.config.loader import DEFAULT_CONFIG, LedgerConfig, load_ledger_config
from token_ledger.core.account import SYSTEM_SCOPE, analyze_receipts, summarize_account
from token_ledger.core.balance import BalanceStatus
from token_ledger.core.fair_share import period_cost_analysis, rate_cost_efficiency
from token_ledger.demo.seed_demo_data import seed_demo_data
from token_ledger.logging_setup import configure_logging, get_logger
from token_ledger.storage.db import DEFAULT_DB_PATH
from token_ledger.storage.repository import get_repository, initialize_schema

app = typer.Typer()
console = Console()
logger = get_logger(__name__)

EXIT_CODE_OK = 0
EXIT_CODE_FAIL = 1

MONTH_NAMES = (
    "Jan", "Feb", "Mar", "Apr", "May", "Jun",
    "Jul", "Aug", "Sep", "Oct", "Nov", "Dec",
)

_STATUS_STYLES = {
    BalanceStatus.HEALTHY: "green",
    BalanceStatus.WARNING: "yellow",
    BalanceStatus.CRITICAL: "red",
}


@app.callback(invoke_without_command=True)
def main(
    ctx: typer.Context,
    db: str = typer.Option(DEFAULT_DB_PATH, "--db", help="Path to the SQLite database"),
    config: Optional[str] = typer.Option(
        None, "--config", "-c", help="Path to a YAML threshold configuration"
    ),
    log_level: Optional[str] = typer.Option(
        None, "--log-level", help="Log level (DEBUG, INFO, WARNING, ...)"
    ),
):
    """Token Ledger CLI."""
    try:
        configure_logging(log_level)
        ledger_config = load_ledger_config(config) if config else DEFAULT_CONFIG
    except (FileNotFoundError, ValueError) as e:
        console.print(f"[red]Configuration error:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)

    ctx.obj = {"db": db, "config": ledger_config}
    if ctx.invoked_subcommand is None:
        console.print("Token Ledger - Use --help to see available commands")


def _db(ctx: typer.Context) -> str:
    return ctx.obj["db"]


def _config(ctx: typer.Context) -> LedgerConfig:
    return ctx.obj["config"]


def _handle_failure(e: Exception) -> None:
    """Report a failed command and exit."""
    if isinstance(e, sqlite3.OperationalError) and "no such table" in str(e).lower():
        console.print("\n[bold yellow]No ledger data found[/]")
        console.print("\nRun `token-ledger init` to create the database,")
        console.print("or `token-ledger demo` to load sample data.\n")
        sys.exit(EXIT_CODE_OK)
    logger.exception("Command failed")
    console.print("[red]Error:[/] An internal error occurred. Re-run with --log-level DEBUG for details.")
    sys.exit(EXIT_CODE_FAIL)


@app.command()
def init(ctx: typer.Context):
    """Initialize the Token Ledger database."""
    try:
        initialize_schema(_db(ctx))
        console.print("[green]✓[/] Database initialized successfully")
        sys.exit(EXIT_CODE_OK)
    except Exception as e:
        console.print(f"[red]Error initializing database:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)


@app.command()
def demo(ctx: typer.Context):
    """Load a year of sample purchases, contributions and receipts."""
    try:
        count = seed_demo_data(_db(ctx))
        console.print(f"[green]✓[/] Inserted {count} demo purchases")
        sys.exit(EXIT_CODE_OK)
    except sqlite3.IntegrityError:
        console.print("[yellow]Demo data is already loaded[/]")
        sys.exit(EXIT_CODE_OK)
    except Exception as e:
        console.print(f"[red]Error loading demo data:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)


@app.command()
def balance(
    ctx: typer.Context,
    user: Optional[str] = typer.Option(
        None, "--user", "-u", help="Show the balance of a single user"
    ),
):
    """
    Show the running balance and anticipated payment.

    Positive amounts are credit, negative amounts are owed.
    """
    try:
        summary = summarize_account(get_repository(_db(ctx)), user_id=user, config=_config(ctx))
    except Exception as e:
        _handle_failure(e)
        return

    _display_account_summary(summary)
    sys.exit(EXIT_CODE_OK)


@app.command()
def analyze(
    ctx: typer.Context,
    user: Optional[str] = typer.Option(
        None, "--user", "-u", help="Only analyse purchases a user contributed to"
    ),
):
    """Analyse historical receipts for price trends and anomalies."""
    try:
        result = analyze_receipts(get_repository(_db(ctx)), user_id=user, config=_config(ctx))
    except Exception as e:
        _handle_failure(e)
        return

    _display_analysis(result)
    sys.exit(EXIT_CODE_OK)


@app.command()
def costs(ctx: typer.Context):
    """Show the fair-share cost breakdown per user."""
    try:
        repository = get_repository(_db(ctx))
        analysis = period_cost_analysis(
            repository.list_purchases(), repository.list_contributions()
        )
    except Exception as e:
        _handle_failure(e)
        return

    _display_costs(analysis)
    sys.exit(EXIT_CODE_OK)


def _format_currency(amount: float) -> str:
    """Format a signed USD amount."""
    sign = "-" if amount < 0 else ""
    return f"{sign}${abs(amount):,.2f}"


def _format_percent(value: float) -> str:
    """Format a percentage with sign."""
    return f"{'+' if value >= 0 else ''}{value:,.1f}%"


def _display_account_summary(summary):
    """Display an account summary in a compact financial format."""
    projection = summary.projection
    style = _STATUS_STYLES[projection.status]

    console.print(f"\n[bold]Account Balance ({summary.scope})[/bold]")
    console.print("-" * 40)
    console.print(f"Running balance: {_format_currency(summary.running_balance)}")
    console.print(f"Status: [{style}]{projection.status.value}[/]")
    console.print(f"Total paid: {_format_currency(summary.cost_summary.total_amount_paid)}")
    console.print(f"Fair-share cost: {_format_currency(summary.cost_summary.total_true_cost)}")
    console.print(f"Efficiency: {summary.cost_summary.efficiency:,.2f}%")

    console.print("\n[bold]Anticipated payment[/bold]")
    console.print(f"Tokens since last contribution: {projection.tokens_consumed_since_last_contribution:,.1f}")
    console.print(f"Historical cost/kWh: ${projection.historical_cost_per_kwh:,.4f}")
    console.print(f"Estimated cost since last contribution: {_format_currency(projection.estimated_cost_since_last_contribution)}")
    console.print(f"Anticipated payment: {_format_currency(projection.anticipated_payment)}")
    if summary.scope != SYSTEM_SCOPE:
        console.print(f"Anticipated others' payment: {_format_currency(projection.anticipated_others_payment)}")
        console.print(f"Anticipated token purchase: {_format_currency(projection.anticipated_token_purchase)}")

    consumption = summary.consumption
    console.print(
        f"\nConsumption trend: {consumption.trend.value} "
        f"({_format_percent(consumption.trend_percentage)}), "
        f"{consumption.average_daily:,.1f} kWh/day"
    )


def _display_analysis(result):
    """Display historical receipt analysis."""
    summary = result.summary
    console.print("\n[bold]Historical Receipt Analysis[/bold]")
    console.print("-" * 40)
    console.print(f"Receipts: {summary.total_receipts}")
    if summary.date_range:
        start, end = summary.date_range
        console.print(f"Period: {start:%Y-%m-%d} to {end:%Y-%m-%d}")
    console.print(f"Average rate: {summary.avg_zwg_per_kwh:,.2f} ZWG/kWh (${summary.avg_usd_per_kwh:,.4f}/kWh)")
    console.print(f"Implied exchange rate: {summary.implied_exchange_rate:,.2f} ZWG/USD")
    console.print(
        f"Overall trend: {result.trends.overall.value} "
        f"({_format_percent(result.trends.percentage_change)})"
    )

    if result.trends.monthly_trends:
        table = Table(title="Monthly trends")
        table.add_column("Month")
        table.add_column("Avg ZWG/kWh", justify="right")
        table.add_column("Min", justify="right")
        table.add_column("Max", justify="right")
        table.add_column("kWh", justify="right")
        table.add_column("Purchases", justify="right")
        for trend in result.trends.monthly_trends:
            table.add_row(
                trend.period,
                f"{trend.avg_zwg_per_kwh:,.2f}",
                f"{trend.min_zwg_per_kwh:,.2f}",
                f"{trend.max_zwg_per_kwh:,.2f}",
                f"{trend.total_kwh:,.1f}",
                str(trend.purchase_count),
            )
        console.print(table)

    if result.anomalies:
        console.print("\n[bold]Anomalies[/bold]")
        for anomaly in result.anomalies:
            console.print(
                f"{anomaly.date:%Y-%m-%d} {anomaly.type.value} "
                f"{_format_percent(anomaly.deviation)} ({anomaly.severity.value})"
            )

    if result.seasonal:
        console.print("\n[bold]Seasonal averages[/bold]")
        for pattern in result.seasonal:
            console.print(f"{MONTH_NAMES[pattern.month]}: {pattern.avg_zwg_per_kwh:,.2f} ZWG/kWh")

    console.print("\n[bold]Recommendations[/bold]")
    for recommendation in result.recommendations:
        console.print(f"- {recommendation}")


def _display_costs(analysis):
    """Display the per-user cost breakdown."""
    table = Table(title="Fair-share costs")
    table.add_column("User")
    table.add_column("Tokens", justify="right")
    table.add_column("Paid", justify="right")
    table.add_column("Fair share", justify="right")
    table.add_column("Overpayment", justify="right")
    table.add_column("Rating")
    for user in analysis.users:
        advice = rate_cost_efficiency(user.summary)
        table.add_row(
            user.user_id,
            f"{user.summary.total_tokens_used:,.1f}",
            _format_currency(user.summary.total_amount_paid),
            _format_currency(user.summary.total_true_cost),
            _format_currency(user.summary.overpayment),
            advice.rating.value,
        )
    console.print(table)

    impact = analysis.emergency_impact
    console.print(
        f"\nEmergency purchases: {impact.emergency_purchases} of "
        f"{impact.regular_purchases + impact.emergency_purchases}, "
        f"additional cost {_format_currency(impact.additional_cost_due_to_emergency)}"
    )


if __name__ == "__main__":
    app()
