"""Root CLI group and version flag."""

import signal

import click

# Keep a closed stdout pipe from killing the process mid-echo.
if hasattr(signal, "SIGPIPE"):
    signal.signal(signal.SIGPIPE, signal.SIG_IGN)

from agentrelay import __version__
from agentrelay.commands.run import run


@click.group()
@click.version_option(version=__version__, prog_name="agentrelay")
def cli() -> None:
    """agentrelay — relay a coding-agent CLI session into a conversation."""


cli.add_command(run)
