"""
pushenv command line.

The click group lives here; commands are registered from `commands.py`.

Entry point: cli:main
"""

from __future__ import annotations

import logging

import click

__version__ = "0.3.0"


@click.group()
@click.version_option(version=__version__, prog_name="pushenv")
@click.option("--verbose", is_flag=True, help="Enable debug logging.")
def main(verbose: bool):
    """pushenv - encrypted .env sync for teams.

    Secrets are encrypted on this machine with a shared passphrase before
    they reach cloud storage.
    """
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )


from .commands import register_commands  # noqa: E402

register_commands(main)
