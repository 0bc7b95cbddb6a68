import click
from rich.console import Console
from ..client import AgentError, run_command

console = Console()

def _run(method: str, params: dict):
    try:
        return run_command(method, params)
    except ConnectionError:
        console.print("[bold red]Error:[/bold red] Agent not running.")
    except AgentError as e:
        if e.invalid_params:
            console.print(f"[yellow]Rejected by agent:[/yellow] {e.message}")
        elif e.unknown_method:
            console.print(f"[bold red]Error:[/bold red] Agent does not support '{method}'; is it an older version?")
        else:
            console.print(f"[bold red]Agent error {e.code}:[/bold red] {e.message}")
    except Exception as e:
        console.print(f"[bold red]Error:[/bold red] {e}")
    return None

@click.command()
@click.argument("alert_id")
def ack(alert_id):
    """Acknowledge an alert."""
    result = _run("acknowledge", {"id": alert_id})
    if result is None:
        return
    if result["found"]:
        console.print(f"Alert [cyan]{alert_id}[/cyan] acknowledged.")
    else:
        console.print(f"[yellow]No alert {alert_id} in the current view.[/yellow]")

@click.command()
@click.argument("incident_id")
def resolve(incident_id):
    """Mark an incident as resolved."""
    result = _run("resolve", {"id": incident_id})
    if result is None:
        return
    if result["found"]:
        console.print(f"Incident [cyan]{incident_id}[/cyan] resolved.")
    else:
        console.print(f"[yellow]No incident {incident_id} in the current view.[/yellow]")

@click.command()
@click.argument("ip")
def block(ip):
    """Ask the backend to block an IP address."""
    result = _run("block", {"ip": ip})
    if result is None:
        return
    if result["ok"]:
        console.print(f"[green]Blocked {ip}[/green]")
    else:
        console.print(f"[bold red]Backend refused to block {ip}[/bold red]")

@click.command()
@click.argument("ip")
def unblock(ip):
    """Ask the backend to unblock an IP address."""
    result = _run("unblock", {"ip": ip})
    if result is None:
        return
    if result["ok"]:
        console.print(f"[green]Unblocked {ip}[/green]")
    else:
        console.print(f"[bold red]Backend refused to unblock {ip}[/bold red]")

@click.command()
def reconnect():
    """Reconnect to the backend, resetting the retry budget."""
    result = _run("reconnect", {})
    if result is not None:
        console.print(f"Connection: {result['connection']}")
