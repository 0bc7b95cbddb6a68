import click
from rich.console import Console
from ..client import run_command

console = Console()

CONNECTION_STYLES = {
    "connected": "green",
    "connecting": "yellow",
    "reconnecting": "yellow",
    "disconnected": "dim",
    "failed": "bold red",
}

@click.command()
def status():
    """Show agent and backend connection status."""
    try:
        data = run_command("status")

        connection = data.get("connection", "unknown")
        style = CONNECTION_STYLES.get(connection, "white")

        console.print(f"\n[bold green]SocFeed Agent v{data.get('version', '?')}[/bold green]")
        console.print(f"Backend: {data.get('backend', 'N/A')}")
        console.print(f"Connection: [{style}]● {connection}[/{style}]")
        if data.get("reconnect_attempts"):
            console.print(f"Reconnect attempts: {data['reconnect_attempts']}")
        console.print(f"Monitoring: {'on' if data.get('monitoring') else 'paused'}")
        console.print(f"Dropped events: {data.get('dropped_events', 0)}")

        console.print("\n[bold]Views:[/bold]")
        for name, size in data.get("views", {}).items():
            console.print(f"  - {name}: {size}")

    except ConnectionError:
        console.print("[bold red]Error:[/bold red] Agent not running.")
    except Exception as e:
        console.print(f"[bold red]Error:[/bold red] {e}")
