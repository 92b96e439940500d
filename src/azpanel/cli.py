"""CLI interface for azpanel."""

import asyncio
import logging
from collections.abc import AsyncIterator, Coroutine
from dataclasses import dataclass
from pathlib import Path
from typing import Annotated, Any, TypeVar

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape
from rich.table import Table

from azpanel import __version__
from azpanel.config import PanelConfig, load_config_or_default
from azpanel.models import AppRuntimeInfo
from azpanel.runner import AzCliError, AzCliRunner
from azpanel.services import WEBAPP_LOG_LEVELS, AzureCliFacade, LoggingObserver
from azpanel.util import CancelToken

T = TypeVar("T")

app = typer.Typer(
    name="azpanel",
    help="Inspect and control Azure web apps and container apps through the Azure CLI.",
    no_args_is_help=True,
)

webapp_app = typer.Typer(help="Inspect and control App Service web apps.")
containerapp_app = typer.Typer(help="Inspect and control container apps.")

app.add_typer(webapp_app, name="webapp")
app.add_typer(containerapp_app, name="containerapp")

console = Console()


@dataclass
class CliState:
    """Options shared by every command."""

    config: PanelConfig
    verbose: bool = False


def create_facade(state: CliState) -> AzureCliFacade:
    """Build the facade for one command invocation."""
    runner = AzCliRunner(az_path_override=state.config.az_path)
    facade = AzureCliFacade(runner, state.config)
    # Failures log at WARNING; successes only show with --verbose
    facade.output.subscribe(LoggingObserver())
    return facade


def _setup_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        handlers=[RichHandler(console=Console(stderr=True), show_path=False)],
        force=True,
    )


def _facade(ctx: typer.Context) -> AzureCliFacade:
    return create_facade(ctx.obj)


def _run(coro: Coroutine[Any, Any, T]) -> T:
    """Run a coroutine, turning Azure CLI errors into a red message and exit 1."""
    try:
        return asyncio.run(coro)
    except (AzCliError, ValueError) as e:
        console.print(f"[red]{escape(str(e))}[/red]")
        raise typer.Exit(1) from None


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        console.print(f"azpanel {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    ctx: typer.Context,
    config: Annotated[
        Path | None,
        typer.Option("--config", "-c", help="Path to config file (default ~/.config/azpanel/config.toml)"),
    ] = None,
    az_path: Annotated[
        str | None,
        typer.Option("--az-path", help="Explicit path to the az executable"),
    ] = None,
    verbose: Annotated[
        bool,
        typer.Option("--verbose", help="Log every Azure CLI command"),
    ] = False,
    version: Annotated[
        bool | None,
        typer.Option("--version", "-v", callback=version_callback, is_eager=True),
    ] = None,
) -> None:
    """azpanel: a safe, cached front end for the Azure CLI."""
    _setup_logging(verbose)

    if config is not None and not config.exists():
        console.print(f"[red]Config file not found: {config}[/red]")
        raise typer.Exit(1)
    try:
        panel_config = load_config_or_default(config)
    except Exception as e:
        console.print(f"[red]Failed to load config: {escape(str(e))}[/red]")
        raise typer.Exit(1) from None

    if az_path:
        panel_config = panel_config.model_copy(update={"az_path": az_path})
    ctx.obj = CliState(config=panel_config, verbose=verbose)


# --- Account ---


@app.command()
def account(ctx: typer.Context) -> None:
    """Show the signed-in account."""
    facade = _facade(ctx)
    status = _run(facade.get_account())

    if not status.signed_in or status.account is None:
        console.print("[yellow]Not signed in.[/yellow]")
        if status.error:
            console.print(f"[dim]{escape(status.error)}[/dim]")
        raise typer.Exit(1)

    acct = status.account
    console.print(f"User: [cyan]{escape(acct.user_name or 'unknown')}[/cyan] ({acct.user_type or '?'})")
    console.print(f"Subscription: {escape(acct.subscription_name)} [dim]{acct.subscription_id}[/dim]")
    console.print(f"Tenant: {acct.tenant_id}")
    if acct.environment_name:
        console.print(f"Cloud: {acct.environment_name}")
    console.print(f"[dim]az: {facade.az_path or 'not found'}[/dim]")


@app.command()
def login(ctx: typer.Context) -> None:
    """Sign in interactively (az login)."""
    _run(_facade(ctx).login())
    console.print("[green]Signed in.[/green]")


@app.command()
def logout(ctx: typer.Context) -> None:
    """Sign out (az logout)."""
    _run(_facade(ctx).logout())
    console.print("[green]Signed out.[/green]")


@app.command()
def subscriptions(ctx: typer.Context) -> None:
    """List subscriptions available to the signed-in account."""
    subs = _run(_facade(ctx).list_subscriptions())
    if not subs:
        console.print("[dim]No subscriptions found.[/dim]")
        return

    table = Table(title="Subscriptions")
    table.add_column("Name", style="cyan")
    table.add_column("ID")
    table.add_column("State")
    table.add_column("Default", justify="center")
    for sub in subs:
        table.add_row(sub.name, sub.id, sub.state, "*" if sub.is_default else "")
    console.print(table)


@app.command()
def use(
    ctx: typer.Context,
    subscription: Annotated[str, typer.Argument(help="Subscription name or ID")],
) -> None:
    """Switch the active subscription."""
    _run(_facade(ctx).switch_subscription(subscription))
    console.print(f"[green]Active subscription: {escape(subscription)}[/green]")


# --- Resources ---


@app.command()
def groups(ctx: typer.Context) -> None:
    """List resource groups."""
    rgs = _run(_facade(ctx).list_resource_groups())
    if not rgs:
        console.print("[dim]No resource groups found.[/dim]")
        return

    table = Table(title="Resource Groups")
    table.add_column("Name", style="cyan")
    table.add_column("Location")
    for rg in rgs:
        table.add_row(rg.name, rg.location)
    console.print(table)


@app.command()
def resources(
    ctx: typer.Context,
    group: Annotated[
        list[str] | None,
        typer.Option("--group", "-g", help="Resource group (repeatable; default: all groups)"),
    ] = None,
) -> None:
    """List web apps, static sites and container apps."""
    by_group = _run(_facade(ctx).list_all_resources(group or None))

    table = Table(title="Resources")
    table.add_column("Group", style="cyan")
    table.add_column("Name")
    table.add_column("Type")
    table.add_column("Location")
    count = 0
    for rg, items in by_group.items():
        for res in items:
            table.add_row(rg, res.name, res.type, res.location)
            count += 1

    if not count:
        console.print("[dim]No web apps or container apps found.[/dim]")
        return
    console.print(table)


@app.command("portal-link")
def portal_link(
    ctx: typer.Context,
    resource_id: Annotated[str, typer.Argument(help="Full Azure resource ID")],
) -> None:
    """Print the Azure portal URL for a resource."""
    console.print(_run(_facade(ctx).build_portal_link(resource_id)), soft_wrap=True)


# --- Shared helpers ---


def _print_runtime(name: str, runtime: AppRuntimeInfo) -> None:
    colors = {"running": "green", "stopped": "red"}
    color = colors.get(runtime.state.value, "yellow")
    console.print(f"[bold]{escape(name)}[/bold]: [{color}]{runtime.state.value}[/{color}]")
    for host in runtime.host_names:
        console.print(f"  https://{host}")


def _follow(lines: AsyncIterator[str], token: CancelToken) -> None:
    """Print streamed lines until the stream ends, the deadline passes or Ctrl-C."""

    async def _consume() -> None:
        async for line in lines:
            console.print(line, markup=False, highlight=False)

    try:
        _run(_consume())
    except KeyboardInterrupt:
        token.cancel()
        console.print("\n[dim]Stopped.[/dim]")


def _deadline(timeout: float | None) -> CancelToken:
    return CancelToken.with_timeout(timeout) if timeout else CancelToken()


# --- webapp subcommand group ---


ResourceGroupOption = Annotated[str, typer.Option("--resource-group", "-g", help="Resource group")]
NameOption = Annotated[str, typer.Option("--name", "-n", help="App name")]
TimeoutOption = Annotated[
    float | None,
    typer.Option("--timeout", "-t", help="Stop following after this many seconds"),
]


@webapp_app.command("show")
def webapp_show(ctx: typer.Context, resource_group: ResourceGroupOption, name: NameOption) -> None:
    """Show a web app's state and host names."""
    _print_runtime(name, _run(_facade(ctx).get_webapp_runtime(resource_group, name)))


@webapp_app.command("identity")
def webapp_identity(ctx: typer.Context, resource_group: ResourceGroupOption, name: NameOption) -> None:
    """Show how a web app authenticates (EasyAuth or managed identity)."""
    info = _run(_facade(ctx).get_webapp_identity(resource_group, name))

    console.print(f"Source: [cyan]{escape(info.source)}[/cyan]")
    console.print(f"Tenant: {info.tenant_id or '[dim]unknown[/dim]'}")
    if info.client_id:
        console.print(f"Client ID: {info.client_id}")
    if info.managed_identity_principal_id:
        console.print(f"Principal ID: {info.managed_identity_principal_id}")
    for key, value in info.raw.items():
        console.print(f"  [dim]{key}: {escape(value)}[/dim]")


@webapp_app.command("start")
def webapp_start(ctx: typer.Context, resource_group: ResourceGroupOption, name: NameOption) -> None:
    """Start a web app."""
    _run(_facade(ctx).webapp_start(resource_group, name))
    console.print(f"[green]Started {escape(name)}.[/green]")


@webapp_app.command("stop")
def webapp_stop(ctx: typer.Context, resource_group: ResourceGroupOption, name: NameOption) -> None:
    """Stop a web app."""
    _run(_facade(ctx).webapp_stop(resource_group, name))
    console.print(f"[green]Stopped {escape(name)}.[/green]")


@webapp_app.command("restart")
def webapp_restart(ctx: typer.Context, resource_group: ResourceGroupOption, name: NameOption) -> None:
    """Restart a web app."""
    _run(_facade(ctx).webapp_restart(resource_group, name))
    console.print(f"[green]Restarted {escape(name)}.[/green]")


@webapp_app.command("log-config")
def webapp_log_config(
    ctx: typer.Context,
    resource_group: ResourceGroupOption,
    name: NameOption,
    level: Annotated[
        str,
        typer.Option("--level", "-l", help=f"Application log level: {', '.join(WEBAPP_LOG_LEVELS)}"),
    ] = "information",
) -> None:
    """Enable filesystem application and web server logging."""
    _run(_facade(ctx).webapp_log_config(resource_group, name, level))
    console.print(f"[green]Logging enabled for {escape(name)} at level {level}.[/green]")


@webapp_app.command("logs")
def webapp_logs(
    ctx: typer.Context,
    resource_group: ResourceGroupOption,
    name: NameOption,
    timeout: TimeoutOption = None,
) -> None:
    """Follow a web app's live log stream."""
    token = _deadline(timeout)
    _follow(_facade(ctx).webapp_log_tail(resource_group, name, token), token)


# --- containerapp subcommand group ---


@containerapp_app.command("show")
def containerapp_show(ctx: typer.Context, resource_group: ResourceGroupOption, name: NameOption) -> None:
    """Show whether a container app has an active revision."""
    _print_runtime(name, _run(_facade(ctx).get_containerapp_runtime(resource_group, name)))


@containerapp_app.command("restart")
def containerapp_restart(ctx: typer.Context, resource_group: ResourceGroupOption, name: NameOption) -> None:
    """Restart the newest revision of a container app."""
    revision = _run(_facade(ctx).containerapp_restart(resource_group, name))
    console.print(f"[green]Restarted revision {escape(revision)}.[/green]")


@containerapp_app.command("logs")
def containerapp_logs(
    ctx: typer.Context,
    resource_group: ResourceGroupOption,
    name: NameOption,
    timeout: TimeoutOption = None,
) -> None:
    """Follow a container app's console logs."""
    token = _deadline(timeout)
    _follow(_facade(ctx).containerapp_logs(resource_group, name, token), token)


if __name__ == "__main__":
    app()
