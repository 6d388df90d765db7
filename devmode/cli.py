"""devmode CLI -- inspect and switch the guard from a shell or cron job."""

import logging
import sys

import click
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table

from devmode import __version__

console = Console()


def _guard(ctx: click.Context):
    from devmode.core import DevModeGuard

    return DevModeGuard(ctx.obj["settings"])


def _operator():
    """The shell user, recorded as the actor of CLI transitions."""
    import getpass

    from devmode.security.requester import Requester

    try:
        name = getpass.getuser()
    except (KeyError, OSError):
        name = "cli"
    return Requester(user_id=0, user_name=name, client_ip="127.0.0.1")


@click.group()
@click.version_option(version=__version__)
@click.option("--config", "config_path", default=None, help="Path to a settings YAML file")
@click.pass_context
def main(ctx: click.Context, config_path: str | None):
    """devmode -- switch a site between Active and Protected.

    Active allows changes. Protected blocks file edits, plugin and theme
    installs, user creation and dangerous uploads, and logs every attempt.
    """
    from devmode.config import load_settings

    settings = load_settings(config_path)
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(message)s",
        handlers=[RichHandler(console=Console(stderr=True), show_path=False)],
    )
    ctx.ensure_object(dict)
    ctx.obj["settings"] = settings


# ── State ────────────────────────────────────────────────────────────


@main.command()
@click.pass_context
def status(ctx: click.Context):
    """Show the current mode, options and hardening state."""
    guard = _guard(ctx)
    mode = guard.mode
    colour = "green" if mode.value == "active" else "red"

    lines = [f"Mode: [bold {colour}]{mode.label}[/]"]
    hours = guard.hours_until_revert()
    if hours is not None:
        lines.append(f"Auto-revert in {hours} hours")
    if guard.consume_notice():
        lines.append("[yellow]Dev.Mode has been automatically reverted to Protected state.[/]")
    console.print(Panel("\n".join(lines), title="Dev.Mode"))

    table = Table(title="Options")
    table.add_column("Option", style="cyan")
    table.add_column("Value", justify="right")
    for key, value in guard.config.to_dict().items():
        table.add_row(key, str(value))
    console.print(table)

    hardening = guard.hardener.status()
    mark = "[green]protected[/]" if hardening.is_protected else "[yellow]unprotected[/]"
    console.print(f"Uploads: {hardening.uploads_path} ({mark})")


@main.command()
@click.pass_context
def toggle(ctx: click.Context):
    """Switch between Active and Protected."""
    from devmode.errors import PersistenceError

    guard = _guard(ctx)
    try:
        result = guard.toggle(_operator())
    except PersistenceError as e:
        console.print(f"[red]Failed to change Dev.Mode state:[/] {e}")
        sys.exit(1)
    console.print(f"[green]{result.message}[/]")


@main.command(name="set-mode")
@click.argument("mode", type=click.Choice(["active", "protected"]))
@click.pass_context
def set_mode(ctx: click.Context, mode: str):
    """Set the mode explicitly. Setting the current mode is a no-op."""
    from devmode.errors import PersistenceError
    from devmode.state.models import Mode

    guard = _guard(ctx)
    try:
        guard.set_mode(Mode(mode), _operator())
    except PersistenceError as e:
        console.print(f"[red]Failed to change Dev.Mode state:[/] {e}")
        sys.exit(1)
    console.print(f"Dev.Mode is {Mode(mode).label}.")


# ── Config ───────────────────────────────────────────────────────────


@main.group()
def config():
    """Show or change guard options."""


@config.command(name="show")
@click.pass_context
def config_show(ctx: click.Context):
    """Print the current options."""
    guard = _guard(ctx)
    for key, value in guard.config.to_dict().items():
        console.print(f"  [cyan]{key}[/] = {value}")


@config.command(name="set")
@click.argument("key")
@click.argument("value")
@click.pass_context
def config_set(ctx: click.Context, key: str, value: str):
    """Change one option. Values are coerced and clamped, never rejected."""
    from devmode.errors import ValidationError

    guard = _guard(ctx)
    try:
        updated = guard.update_config({key: value})
    except ValidationError as exc:
        raise click.BadParameter(str(exc), param_hint="KEY") from exc
    console.print(f"  [cyan]{key}[/] = {getattr(updated, key)}")


# ── Log ──────────────────────────────────────────────────────────────


@main.command()
@click.option("--limit", "-n", default=20, show_default=True, help="Number of entries")
@click.pass_context
def log(ctx: click.Context, limit: int):
    """Show the newest audit log entries."""
    from devmode.security.audit_log import LEGEND, line_category

    guard = _guard(ctx)
    entries = guard.audit.recent(limit)
    if not entries:
        console.print("[yellow]No activity logged yet.[/]")
        return

    for entry in entries:
        category = line_category(entry)
        style = "blue" if category is not None and not category.is_blocked else "red"
        console.print(f"[{style}]{escape(entry)}[/]", highlight=False)

    table = Table(title="Log Legend")
    table.add_column("Category", style="bold")
    table.add_column("Meaning")
    for category, text in LEGEND.items():
        table.add_row(category.value, text)
    console.print(table)


# ── Hardening ────────────────────────────────────────────────────────


@main.group()
def harden():
    """Manage the uploads directory rule files."""


@harden.command(name="apply")
@click.pass_context
def harden_apply(ctx: click.Context):
    """Write the protection blocks."""
    if _guard(ctx).hardener.apply_protection():
        console.print("[green]Uploads protection applied.[/]")
    else:
        console.print("[red]Could not apply uploads protection. See errors above.[/]")
        sys.exit(1)


@harden.command(name="remove")
@click.pass_context
def harden_remove(ctx: click.Context):
    """Strip the protection blocks, keeping any other rules."""
    if _guard(ctx).hardener.remove_protection():
        console.print("[green]Uploads protection removed.[/]")
    else:
        console.print("[red]Could not remove uploads protection.[/]")
        sys.exit(1)


@harden.command(name="status")
@click.pass_context
def harden_status(ctx: click.Context):
    """Report which rule files exist and contain the protection block."""
    result = _guard(ctx).hardener.status()
    table = Table(title=f"Uploads: {result.uploads_path}")
    table.add_column("File", style="cyan")
    table.add_column("Exists", justify="center")
    table.add_column("Protected", justify="center")
    yes, no = "[green]Y[/]", "[red]N[/]"
    table.add_row(".htaccess", yes if result.htaccess_exists else no, yes if result.htaccess_protected else no)
    table.add_row("web.config", yes if result.webconfig_exists else no, yes if result.webconfig_protected else no)
    console.print(table)
    console.print(f"Writable: {'yes' if result.writable else 'no'}")


@harden.command(name="probe")
@click.argument("base_url")
@click.pass_context
def harden_probe(ctx: click.Context, base_url: str):
    """Check over HTTP that PHP in the uploads directory does not run.

    BASE_URL is the public URL of the uploads directory.
    """
    result = _guard(ctx).hardener.probe_execution(base_url)
    colour = {"blocked": "green", "allowed": "red"}.get(result.status, "yellow")
    console.print(f"[{colour}]{result.status.upper()}[/] {result.message}")


# ── Scheduler & lifecycle ────────────────────────────────────────────


@main.command(name="run-due")
@click.pass_context
def run_due(ctx: click.Context):
    """Fire a pending auto-revert if it is due. Meant for cron."""
    if _guard(ctx).run_due():
        console.print("Auto-revert fired.")


@main.command()
@click.pass_context
def activate(ctx: click.Context):
    """Seed Protected defaults on a fresh install."""
    guard = _guard(ctx)
    guard.activate()
    console.print(f"Dev.Mode installed. Mode: {guard.mode.label}")


@main.command()
@click.pass_context
def deactivate(ctx: click.Context):
    """Cancel auto-revert and remove uploads hardening."""
    _guard(ctx).deactivate()
    console.print("Dev.Mode deactivated.")


@main.command()
@click.confirmation_option(prompt="Remove all Dev.Mode state?")
@click.pass_context
def uninstall(ctx: click.Context):
    """Deactivate and delete persisted state."""
    _guard(ctx).uninstall()
    console.print("Dev.Mode state removed.")


if __name__ == "__main__":
    main()
