"""
Main CLI application for Ethereum Wallet Analytics.
"""

from .utils import is_valid_ethereum_address, normalize_address, format_number
from .models import AddressReport
from .flows import shorten_address
import sys
from typing import Optional
from dataclasses import asdict
import json
from pathlib import Path

import typer
from rich.console import Console
from rich.table import Table
from rich.progress import Progress, SpinnerColumn, TextColumn
from rich.panel import Panel

from .config import Config
from .errors import AnalyticsError
from .api_clients import AlchemyClient, Web3Client
from .pipeline import WalletAnalyzer
from .store import JsonStore, SearchStore

# Logging setup
import logging
logger = logging.getLogger(__name__)


app = typer.Typer(
    name="eth-analytics",
    help="Analyze an Ethereum address: transfer partners, anomalies, gas usage, "
         "behavioral patterns and related addresses."
)

console = Console()
err_console = Console(stderr=True)

RISK_COLORS = {
    "High": "red",
    "Medium": "yellow",
    "Low": "green",
    "Very Low": "green",
    "Minimal": "green",
    "Unknown": "white",
}


def load_config() -> Config:
    """Load application configuration."""
    try:
        return Config.from_env()
    except ValueError as e:
        console.print(f"[red]Configuration error: {e}[/red]")
        console.print(
            "\n[yellow]Please create a .env file with your API key:[/yellow]")
        console.print("ALCHEMY_API_KEY=your_key_here")
        console.print("Or run: eth-analytics setup")
        raise typer.Exit(1)


def open_store(config: Config) -> SearchStore:
    return SearchStore(JsonStore(config.store_path))


def run_analysis(analyzer: WalletAnalyzer, address: str, include_gas: bool,
                 include_clusters: bool, check_contracts: bool,
                 show_progress: bool = True) -> AddressReport:
    """Run the pipeline with a progress spinner, hidden when stdout carries the result."""
    with Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        console=console,
        disable=not show_progress,
    ) as progress:
        task = progress.add_task("Fetching and analyzing transfers...", total=None)
        report = analyzer.analyze(address, include_gas=include_gas, include_clusters=include_clusters,
                                  include_contracts=check_contracts)
        progress.update(task, description="✓ Analyzed transfers")

        if check_contracts:
            task2 = progress.add_task("Checking partner contracts...", total=None)
            analyzer.classify_contracts(report)
            progress.update(task2, description="✓ Checked partner contracts")

    return report


def display_partners(report: AddressReport, top: int):
    table = Table(title=f"\nTop Transfer Partners of {shorten_address(report.address)}")

    table.add_column("Rank", style="cyan", no_wrap=True)
    table.add_column("Address", style="magenta", no_wrap=True)
    table.add_column("Sent", style="red", justify="right")
    table.add_column("Received", style="green", justify="right")
    table.add_column("Txs", style="white", justify="right")
    table.add_column("Anomalies", style="yellow")
    table.add_column("Annotation", style="blue")

    for i, partner in enumerate(report.partners[:top], 1):
        flags = []
        if partner.anomalies.large_transfers:
            flags.append(f"{len(partner.anomalies.large_transfers)} large")
        if partner.anomalies.unusual_frequency:
            flags.append("timing")
        if partner.anomalies.irregular_pattern:
            flags.append("cash-out")

        address = shorten_address(partner.address)
        if partner.is_contract:
            address += " 📜"

        annotation = partner.annotation
        if len(annotation) > 20:
            annotation = annotation[:20] + "..."

        table.add_row(
            str(i),
            address,
            f"{format_number(partner.total_sent, 4)} ETH",
            f"{format_number(partner.total_received, 4)} ETH",
            str(len(partner.transactions)),
            ", ".join(flags) or "-",
            annotation or "-",
        )

    console.print(table)


def display_patterns(report: AddressReport):
    color = RISK_COLORS.get(report.risk.level, "white")
    lines = [
        f"Wallet type: [bold]{report.behavior.type}[/bold] ({report.behavior.confidence}% confidence)",
        f"Risk score: [{color}]{report.risk.score} ({report.risk.level})[/{color}]",
    ]
    lines += [f"[red]▲[/red] {factor}" for factor in report.risk.risk_factors]
    lines += [f"[green]▼[/green] {factor}" for factor in report.risk.protective_factors]
    console.print(Panel("\n".join(lines), title="Behavior & Risk", expand=False))

    if not report.patterns:
        console.print("[yellow]No behavioral patterns detected.[/yellow]")
        return

    table = Table(title="\nDetected Patterns")
    table.add_column("Pattern", style="cyan")
    table.add_column("Confidence", style="green", justify="right")
    table.add_column("Importance", style="yellow")
    table.add_column("Description", style="white")
    for pattern in report.patterns:
        table.add_row(pattern.type, f"{pattern.confidence}%", pattern.importance, pattern.description)
    console.print(table)


def display_gas(report: AddressReport):
    if report.gas is None:
        return
    analysis = report.gas.analysis
    console.print(Panel(
        f"Transactions analyzed: [green]{analysis.total_transactions}[/green]\n"
        f"Total gas used: [green]{analysis.total_gas_used:,}[/green]\n"
        f"Total fees: [green]{analysis.total_gas_fee:.6f} ETH[/green]\n"
        f"Average gas price: [green]{analysis.average_gas_price_gwei:.2f} gwei[/green]\n"
        f"Gas efficiency: [green]{analysis.gas_efficiency:.1f}%[/green]",
        title="Gas Usage",
        expand=False
    ))

    if report.gas_tips:
        for tip in report.gas_tips.tips:
            console.print(f"[bold]{tip.title}[/bold] ({tip.savings_potential}): {tip.description}")


def display_clusters(report: AddressReport):
    if report.clustering is None:
        return
    if not report.clustering.clusters:
        console.print("[yellow]No related address clusters found.[/yellow]")
        return

    table = Table(title="\nRelated Address Clusters")
    table.add_column("Cluster", style="cyan")
    table.add_column("Type", style="blue")
    table.add_column("Confidence", style="green", justify="right")
    table.add_column("Members", style="magenta")
    table.add_column("Risk", style="red", justify="right")
    for cluster in report.clustering.clusters:
        risk = report.cluster_risks.get(cluster.id)
        table.add_row(
            cluster.name,
            cluster.type,
            f"{cluster.confidence}%",
            ", ".join(shorten_address(m.address) for m in cluster.addresses),
            f"{risk.score} ({risk.level})" if risk else "-",
        )
    console.print(table)


def display_contracts(report: AddressReport):
    if report.contracts is None:
        return
    contracts = report.contracts
    if not contracts.total_interactions:
        console.print("[yellow]No contract interactions found.[/yellow]")
        return

    frequency = contracts.interaction_frequency
    categories = ", ".join(f"{name}: {count}" for name, count in contracts.categories.items())
    console.print(Panel(
        f"Interactions: [green]{contracts.total_interactions}[/green] with "
        f"[green]{contracts.unique_contracts}[/green] contracts\n"
        f"Last day / week / month: {frequency.daily} / {frequency.weekly} / {frequency.monthly}\n"
        f"Categories: {categories}",
        title="Contract Interactions",
        expand=False
    ))

    table = Table(title="\nMost Used Contracts")
    table.add_column("Contract", style="magenta", no_wrap=True)
    table.add_column("Name", style="cyan")
    table.add_column("Interactions", style="green", justify="right")
    table.add_column("Last Seen", style="white")
    for contract in contracts.most_used_contracts:
        last = contract.last_interaction
        table.add_row(
            shorten_address(contract.address),
            contract.name,
            str(contract.interaction_count),
            last.strftime("%Y-%m-%d") if last else "-",
        )
    console.print(table)

    for trend in contracts.recent_trends:
        console.print(f"[yellow]{trend.trend}[/yellow] with {shorten_address(trend.contract)}: "
                      f"{trend.recent_interactions} of {trend.total_interactions} interactions this week")


def display_results_table(report: AddressReport, top: int):
    """Display results in rich tables."""
    console.print(f"\n[bold]Analysis Summary:[/bold]")
    console.print(f"Address: [yellow]{report.address}[/yellow]")
    console.print(f"Transfer partners: [green]{len(report.partners):,}[/green]")
    for warning in report.warnings:
        console.print(f"[yellow]Warning: {warning}[/yellow]")

    if report.partners:
        display_partners(report, top)
    else:
        console.print("[yellow]No transfers found.[/yellow]")

    display_patterns(report)
    display_gas(report)
    display_clusters(report)
    display_contracts(report)


def report_to_dict(report: AddressReport) -> dict:
    data = asdict(report)
    for partner, raw in zip(report.partners, data["partners"]):
        raw["total_volume"] = partner.total_volume
        raw["anomalies"]["has_anomalies"] = partner.anomalies.has_anomalies
    return data


def export_to_json(report: AddressReport, filepath: Optional[str] = None):
    """Export analysis results to JSON, or print them when no file is given."""
    data = report_to_dict(report)
    if filepath is None:
        json.dump(data, sys.stdout, indent=2, default=str)
        sys.stdout.write("\n")
        return
    with open(filepath, 'w') as jsonfile:
        json.dump(data, jsonfile, indent=2, default=str)


@app.callback()
def main(verbose: bool = typer.Option(False, "--verbose", "-v", help="Show progress logs")):
    logging.basicConfig(
        level=logging.INFO if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


@app.command()
def analyze(
    address: str = typer.Argument(..., help="Ethereum address to analyze"),
    output_format: Optional[str] = typer.Option(
        None, "--format", "-f", help="Output format: table, json"),
    output_file: Optional[str] = typer.Option(
        None, "--output", "-o", help="Output file path"),
    no_gas: bool = typer.Option(False, "--no-gas", help="Skip receipt lookups and gas analysis"),
    no_clusters: bool = typer.Option(False, "--no-clusters", help="Skip identity clustering"),
    top: int = typer.Option(20, "--top", "-t", help="Number of transfer partners to show"),
    save: Optional[str] = typer.Option(None, "--save", "-s", help="Save this search under a name"),
    check_contracts: bool = typer.Option(
        False, "--check-contracts", help="Analyze contract interactions and mark contract partners"),
):
    """Analyze the transfer history of an Ethereum address."""
    if not is_valid_ethereum_address(address):
        console.print(f"[red]Invalid Ethereum address: {address}[/red]")
        raise typer.Exit(1)

    config = load_config()
    output_format = output_format or config.output_format
    json_to_stdout = output_format == "json" and not output_file
    store = open_store(config)

    client = AlchemyClient(config)
    receipt_client = Web3Client(config) if config.rpc_url else None
    analyzer = WalletAnalyzer(client, config, receipt_client=receipt_client,
                              annotations=store.get_annotations())

    try:
        report = run_analysis(analyzer, address, not no_gas, not no_clusters, check_contracts,
                              show_progress=not json_to_stdout)
    except AnalyticsError as e:
        console.print(f"[red]Analysis failed: {e}[/red]")
        raise typer.Exit(1)

    if output_format == "json":
        export_to_json(report, output_file)
        if output_file:
            console.print(f"[green]Results exported to {output_file}[/green]")
    elif output_format == "table":
        display_results_table(report, top)
        if output_file:
            export_to_json(report, output_file)
            console.print(f"[green]Results exported to {output_file}[/green]")
    else:
        console.print(f"[yellow]Unsupported output format: {output_format}[/yellow]")

    if save:
        store.save_search(report.address, name=save, summary={
            "partners": len(report.partners),
            "risk_score": report.risk.score,
            "wallet_type": report.behavior.type,
        })
        (err_console if json_to_stdout else console).print(f"[green]Saved search '{save}'[/green]")


@app.command()
def annotate(
    address: str = typer.Argument(..., help="Address to annotate"),
    note: str = typer.Argument(..., help="Annotation text; empty string removes it"),
):
    """Attach a note to an address; it shows up in partner tables."""
    if not is_valid_ethereum_address(address):
        console.print(f"[red]Invalid Ethereum address: {address}[/red]")
        raise typer.Exit(1)

    store = open_store(load_config())
    store.save_annotation(address, note)
    if note:
        console.print(f"[green]Annotated {normalize_address(address)}[/green]")
    else:
        console.print(f"[green]Removed annotation of {normalize_address(address)}[/green]")


@app.command()
def searches(
    tag: Optional[str] = typer.Option(None, "--tag", help="Only searches with this tag"),
    address: Optional[str] = typer.Option(None, "--address", help="Address substring"),
    name: Optional[str] = typer.Option(None, "--name", help="Name substring"),
):
    """List saved searches, newest first."""
    store = open_store(load_config())
    results = store.list_searches(address=address, tag=tag, name=name)

    if not results:
        console.print("[yellow]No saved searches.[/yellow]")
        return

    table = Table(title="Saved Searches")
    table.add_column("ID", style="cyan", no_wrap=True)
    table.add_column("Name", style="white")
    table.add_column("Address", style="magenta", no_wrap=True)
    table.add_column("Saved", style="white", no_wrap=True)
    table.add_column("Tags", style="blue")
    for search in results:
        saved = search.saved_datetime
        table.add_row(
            search.id[:8],
            search.name,
            shorten_address(search.address),
            saved.strftime("%Y-%m-%d %H:%M") if saved else "-",
            ", ".join(search.tags) or "-",
        )
    console.print(table)


@app.command()
def setup():
    """Setup the application by creating a .env file template."""
    env_content = """# Ethereum Wallet Analytics Configuration

# Required: Alchemy API Key (get from https://www.alchemy.com/)
ALCHEMY_API_KEY=your_alchemy_api_key_here
ALCHEMY_NETWORK=eth-mainnet

# Optional: any JSON-RPC endpoint for receipt and contract lookups
# RPC_URL=https://eth.llamarpc.com

# Fetch Settings
MAX_TRANSFERS=1000
MAX_GAS_TRANSACTIONS=50
RECEIPT_WORKERS=8
RATE_LIMIT_DELAY=0.0

# Output Settings
OUTPUT_FORMAT=table
# STORE_PATH=~/.eth_wallet_analytics/store.json
"""

    env_path = Path(".env")
    if env_path.exists():
        console.print("[yellow].env file already exists![/yellow]")
        if not typer.confirm("Overwrite existing .env file?"):
            return

    with open(env_path, 'w') as f:
        f.write(env_content)

    console.print(f"[green]Created .env file at {env_path.absolute()}[/green]")
    console.print(
        "\n[yellow]Please edit the .env file and add your API key:[/yellow]")
    console.print("1. Get an Alchemy API key from https://www.alchemy.com/")
    console.print(
        "2. Replace 'your_alchemy_api_key_here' with your real key")
    console.print("3. Run: eth-analytics analyze <address>")


if __name__ == "__main__":
    app()
