"""Project and sync commands: init, add-stage, list-stages, push, pull, run, diff, history, rollback."""

from __future__ import annotations

import sys
from typing import Optional, Tuple

import click
from rich.table import Table

from common.r2 import R2Config, probe_bucket, status_message
from state.keyring import DeviceKeyring
from state.models import AVAILABLE_STAGES, DEFAULT_STAGE
from state.project import ProjectStore
from sync.orchestrator import PushOptions, check_passphrase
from sync.runner import run_command

from . import _common
from ._common import console, handle_errors

_stage_option = click.option(
    "--stage",
    "-s",
    default=DEFAULT_STAGE,
    show_default=True,
    type=click.Choice(AVAILABLE_STAGES),
    help="Stage to operate on.",
)


def register_commands(main: click.Group) -> None:
    """Register every pushenv command on the main group."""

    @main.command("init")
    @click.option("--env-path", default=None, help="Location of the .env file.")
    @handle_errors
    def init(env_path: Optional[str]):
        """Create .pushenv/config.json and cache the key on this machine."""
        project = ProjectStore()
        if project.exists() and not click.confirm(
            "This project is already initialized. Overwrite the existing config?", default=False
        ):
            console.print("[dim]Initialization cancelled.[/]")
            return

        path = env_path or click.prompt("Where is your .env file located?", default=".env")
        passphrase = click.prompt(
            "Enter a passphrase to encrypt your .env",
            hide_input=True,
            confirmation_prompt="Confirm your passphrase",
        )
        check_passphrase(passphrase)

        config = _common.build_orchestrator().init_project(passphrase, env_path=path)
        console.print(f"[green]✓[/] Project ID: [cyan]{config.project_id}[/]")
        console.print(f"[green]✓[/] Saved config to {project.config_path}")
        console.print(f"[green]✓[/] Saved key to {DeviceKeyring().path}")
        console.print("\n[bold]Next steps:[/]")
        console.print(f"  1. Add your secrets to [yellow]{path}[/]")
        console.print("  2. Run [yellow]pushenv push[/] to encrypt and upload")
        console.print("  3. Commit [yellow].pushenv/config.json[/] and share the passphrase securely")

    @main.command("add-stage")
    @click.argument("stage", type=click.Choice(AVAILABLE_STAGES))
    @click.option("--env-path", default=None, help="Defaults to .env.<stage>.")
    @handle_errors
    def add_stage(stage: str, env_path: Optional[str]):
        """Add a stage with its own .env file and history."""
        config = _common.build_orchestrator().add_stage(stage, env_path=env_path)
        console.print(f"[green]✓[/] Added stage '{stage}'")
        for name in config.stage_names():
            console.print(f"  • [yellow]{name}[/]: {config.env_path_for(name)}")

    @main.command("list-stages")
    @handle_errors
    def list_stages():
        """Show configured stages and where their data lives."""
        statuses = _common.build_orchestrator().list_stages()
        if not statuses:
            console.print("[yellow]No stages configured.[/] Run 'pushenv init' first.")
            return
        table = Table(title="Configured stages")
        table.add_column("Stage", style="yellow")
        table.add_column("File")
        table.add_column("Local")
        table.add_column("Cloud")
        table.add_column("Versions", justify="right")
        for st in statuses:
            table.add_row(
                st.name,
                st.env_path,
                "[green]✓[/]" if st.local_exists else "[dim]✗[/]",
                "[green]✓[/]" if st.remote_exists else "[dim]✗[/]",
                str(st.versions),
            )
        console.print(table)

    @main.command("push")
    @_stage_option
    @click.option("--message", "-m", default=None, help="Note stored with the version.")
    @click.option("--force", is_flag=True, help="Record a version even if nothing changed.")
    @handle_errors
    def push(stage: str, message: Optional[str], force: bool):
        """Encrypt the stage's .env and record a new version."""
        result = _common.build_orchestrator().push(stage, PushOptions(message=message, force=force))
        if result.skipped:
            console.print(
                f"[yellow]No changes since version {result.sequence}.[/] Use --force to push anyway."
            )
            return
        console.print(f"[green]✓[/] Pushed [cyan]{stage}[/] as version {result.sequence}")

    @main.command("pull")
    @_stage_option
    @click.option("--yes", "-y", is_flag=True, help="Overwrite the local file without asking.")
    @handle_errors
    def pull(stage: str, yes: bool):
        """Download and decrypt the stage's latest version."""
        project = ProjectStore()
        target = project.resolve_env_path(project.load(), stage)
        if target.exists() and not yes:
            if not click.confirm(f"{project.relative(target)} already exists. Overwrite?", default=False):
                console.print("[dim]Pull cancelled.[/]")
                return
        result = _common.build_orchestrator().pull(stage)
        console.print(f"[green]✓[/] Saved {result.count} environment variables to {project.relative(result.path)}")
        if result.legacy:
            console.print("[dim]  Read from pre-stage storage; the next push migrates it.[/]")

    @main.command(
        "run",
        context_settings={"ignore_unknown_options": True, "allow_interspersed_args": False},
    )
    @_stage_option
    @click.option("--verbose", "-v", "show_keys", is_flag=True, help="List injected variable names.")
    @click.option("--dry-run", is_flag=True, help="Decrypt and show what would run, without running it.")
    @click.argument("command", nargs=-1, required=True, type=click.UNPROCESSED)
    @handle_errors
    def run(stage: str, show_keys: bool, dry_run: bool, command: Tuple[str, ...]):
        """Run COMMAND with the stage's secrets injected; no file is written."""
        env = _common.build_orchestrator().load_env(stage)
        console.print(f"[green]✓[/] Loaded {len(env)} environment variables")
        if show_keys or dry_run:
            names = list(env)
            for name in names[:10]:
                console.print(f"[dim]    • {name}[/]")
            if len(names) > 10:
                console.print(f"[dim]    ... and {len(names) - 10} more[/]")
        if dry_run:
            console.print(f"[cyan]Command that would run:[/] {' '.join(command)}")
            return
        sys.exit(run_command(command, env))

    @main.command("diff")
    @_stage_option
    @click.option("--version", "-v", "version", type=int, default=None, help="Compare against this version.")
    @handle_errors
    def diff(stage: str, version: Optional[int]):
        """Compare the local .env with a remote version (default: latest)."""
        result = _common.build_orchestrator().diff(stage, version)
        for key in result.added:
            console.print(f"[green]+ {key}[/]  (only in cloud)")
        for key in result.removed:
            console.print(f"[red]- {key}[/]  (only local)")
        for key in result.changed:
            console.print(f"[yellow]~ {key}[/]  (value differs)")
        console.print(f"[dim]{result.unchanged_count} unchanged[/]")

    @main.command("history")
    @_stage_option
    @handle_errors
    def history(stage: str):
        """List recorded versions of a stage, newest first."""
        records = _common.build_orchestrator().history(stage)
        if not records:
            console.print(f"[yellow]No versions recorded for '{stage}' yet.[/]")
            return
        table = Table(title=f"History of {stage}")
        table.add_column("Version", justify="right", style="cyan")
        table.add_column("Pushed at (UTC)")
        table.add_column("Message")
        for rec in reversed(records):
            table.add_row(str(rec.sequence), rec.timestamp.isoformat(timespec="seconds"), rec.message or "")
        console.print(table)

    @main.command("rollback")
    @_stage_option
    @click.argument("version", type=int)
    @click.option("--yes", "-y", is_flag=True, help="Do not ask for confirmation.")
    @handle_errors
    def rollback(stage: str, version: int, yes: bool):
        """Record a new version that restores VERSION's content."""
        if not yes and not click.confirm(f"Restore {stage} to version {version}?", default=False):
            console.print("[dim]Rollback cancelled.[/]")
            return
        rec = _common.build_orchestrator().rollback(stage, version)
        console.print(f"[green]✓[/] Recorded version {rec.sequence} (copy of version {version})")

    @main.command("check-remote")
    @handle_errors
    def check_remote():
        """Show remote store configuration and probe the bucket."""
        console.print(status_message())
        probe_bucket(R2Config.from_env())
        console.print("[green]✓[/] Bucket reachable")


__all__ = ["register_commands"]
