import click
from rich.console import Console
from rich.table import Table
from ..client import run_command

console = Console()

SEVERITY_STYLES = {
    "low": "green",
    "warning": "green",
    "medium": "yellow",
    "error": "red",
    "high": "red",
    "critical": "bold red",
}

def _styled(level: str) -> str:
    style = SEVERITY_STYLES.get(level, "white")
    return f"[{style}]{level.upper()}[/{style}]"

@click.command()
@click.option("--limit", "-n", default=10, help="Number of incidents to show")
def incidents(limit):
    """List recent incidents."""
    try:
        data = run_command("incidents", {"limit": limit})

        if not data:
            console.print("No incidents found.")
            return

        table = Table(title="Recent Incidents")
        table.add_column("ID", style="cyan")
        table.add_column("Time", style="dim")
        table.add_column("Severity")
        table.add_column("Status")
        table.add_column("Source")
        table.add_column("Target")
        table.add_column("Description")

        for incident in data:
            table.add_row(
                incident["id"],
                incident["timestamp"],
                _styled(incident["severity"]),
                incident["status"],
                incident["source"],
                incident["target"],
                incident["description"],
            )

        console.print(table)

    except ConnectionError:
        console.print("[bold red]Error:[/bold red] Agent not running.")
    except Exception as e:
        console.print(f"[bold red]Error:[/bold red] {e}")

@click.command()
@click.option("--limit", "-n", default=10, help="Number of alerts to show")
@click.option("--unacknowledged", "-u", is_flag=True, help="Only show alerts nobody acknowledged yet")
def alerts(limit, unacknowledged):
    """List recent alerts with their correlation links."""
    try:
        data = run_command("alerts", {"limit": limit, "unacknowledged": unacknowledged})

        if not data:
            console.print("No alerts found.")
            return

        table = Table(title="Recent Alerts")
        table.add_column("ID", style="cyan")
        table.add_column("Time", style="dim")
        table.add_column("Type")
        table.add_column("Risk", justify="right")
        table.add_column("Ack")
        table.add_column("Related")
        table.add_column("Message")

        for alert in data:
            related = ", ".join(alert["related_alerts"])
            if alert["is_duplicate"]:
                related = f"[magenta]dup[/magenta] {related}"
            table.add_row(
                alert["id"],
                alert["timestamp"],
                _styled(alert["type"]),
                str(alert["risk_score"]),
                "✓" if alert["acknowledged"] else "",
                related,
                alert["message"],
            )

        console.print(table)

    except ConnectionError:
        console.print("[bold red]Error:[/bold red] Agent not running.")
    except Exception as e:
        console.print(f"[bold red]Error:[/bold red] {e}")

@click.command()
@click.option("--limit", "-n", default=10, help="Number of detections to show")
def detections(limit):
    """List recent threat detections."""
    try:
        data = run_command("detections", {"limit": limit})

        if not data:
            console.print("No detections found.")
            return

        table = Table(title="Threat Detections")
        table.add_column("ID", style="cyan")
        table.add_column("Time", style="dim")
        table.add_column("Method")
        table.add_column("Confidence", justify="right")
        table.add_column("Indicators")

        for detection in data:
            table.add_row(
                detection["id"],
                detection["timestamp"],
                detection["threat_type"],
                f"{detection['confidence']}%",
                ", ".join(detection["indicators"]),
            )

        console.print(table)

    except ConnectionError:
        console.print("[bold red]Error:[/bold red] Agent not running.")
    except Exception as e:
        console.print(f"[bold red]Error:[/bold red] {e}")

@click.command()
def stats():
    """Show the last statistics snapshot from the backend."""
    try:
        data = run_command("stats")

        if not data:
            console.print("No statistics received yet.")
            return

        console.print(f"Total threats: {data['total_threats']}  Active: {data['active_threats']}  Blocked IPs: {data['blocked_ips']}")
        console.print(f"Last hour: {data['threats_last_hour']}  Last 24h: {data['threats_last_24h']}")

        table = Table(title="Top Threat IPs")
        table.add_column("IP", style="cyan")
        table.add_column("Threats", justify="right")
        table.add_column("Max Severity", justify="right")
        table.add_column("Blocked")
        for entry in data.get("top_threat_ips", []):
            table.add_row(
                entry["ip"],
                str(entry["threat_count"]),
                str(entry["max_severity"]),
                "yes" if entry["blocked"] else "",
            )
        console.print(table)

    except ConnectionError:
        console.print("[bold red]Error:[/bold red] Agent not running.")
    except Exception as e:
        console.print(f"[bold red]Error:[/bold red] {e}")
