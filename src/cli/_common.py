"""Shared helpers for the command modules: console, dependency wiring, error exit."""

from __future__ import annotations

import functools
import sys
from typing import Any, Callable

import click
from rich.console import Console

from common.errors import AuthenticationError, PushEnvError
from state.blob_store import BlobStore
from state.keyring import DeviceKeyring
from state.project import ProjectStore
from state.s3_store import S3BlobStore
from sync.orchestrator import SyncOrchestrator

console = Console()


def build_store() -> BlobStore:
    return S3BlobStore.from_env()


def prompt_passphrase(message: str) -> str:
    return click.prompt(message, hide_input=True)


def build_orchestrator() -> SyncOrchestrator:
    return SyncOrchestrator(
        store=build_store(),
        project=ProjectStore(),
        keyring=DeviceKeyring(),
        prompt=prompt_passphrase,
    )


def handle_errors(fn: Callable[..., Any]) -> Callable[..., Any]:
    """Print pushenv errors in red and exit 1 instead of dumping a traceback."""

    @functools.wraps(fn)
    def wrapper(*args: Any, **kwargs: Any) -> Any:
        try:
            return fn(*args, **kwargs)
        except AuthenticationError as exc:
            console.print(f"[bold red]✗ {exc}[/]")
            console.print("[dim]  Run the command again and enter the correct passphrase.[/]")
            sys.exit(1)
        except PushEnvError as exc:
            console.print(f"[bold red]✗ {exc}[/]")
            sys.exit(1)

    return wrapper
