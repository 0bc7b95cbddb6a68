import click
from .commands.status import status
from .commands.views import incidents, alerts, detections, stats
from .commands.actions import ack, resolve, block, unblock, reconnect

@click.group()
@click.version_option(version="0.1.0")
def cli():
    """SocFeed - threat feed monitor"""
    pass

cli.add_command(status)
cli.add_command(incidents)
cli.add_command(alerts)
cli.add_command(detections)
cli.add_command(stats)
cli.add_command(ack)
cli.add_command(resolve)
cli.add_command(block)
cli.add_command(unblock)
cli.add_command(reconnect)

if __name__ == "__main__":
    cli()
