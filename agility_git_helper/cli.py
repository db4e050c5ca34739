"""CLI entry point: all Click commands for ag."""

from __future__ import annotations

import shutil
import sys
import webbrowser
from pathlib import Path
from typing import Sequence

import click

from .agility_api import (
    fetch_statuses,
    fetch_ticket_by_number,
    fetch_ticket_detail,
    get_agility_client,
)
from .branching import (
    BranchCreator,
    BranchOutcome,
    BranchRequest,
    BranchResult,
    EmptyRepositoryChoice,
    ExistingBranchChoice,
)
from .config import (
    CERT_FILE,
    connection_fingerprint,
    current_fingerprint,
    get_access_token,
    get_config,
    get_instance_url,
    get_selected_id,
    get_selected_member_id,
    get_selected_team_id,
    get_status_config,
    record_connection,
    save_status_config,
    set_config,
    _read_config,
)
from .errors import AgilityError, ConfigurationError, NotFoundError, get_error_message
from .git import find_repository
from .logging import setup_logging
from .models import DirectoryEntry, StatusConfig, StatusConfigMap, TeamInfo, TicketData, ViewMode
from .statuses import (
    clear_dev_in_progress,
    merge_status_config,
    prune_status_config,
    set_dev_in_progress,
    set_status_color,
    sorted_statuses,
    toggle_status_hidden,
)
from .view_state import Placeholder, TicketsViewController
from . import __version__


@click.group(invoke_without_command=True)
@click.version_option(__version__, prog_name="ag")
@click.option(
    "--log-level",
    default=None,
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
    help="Log level for ~/.local/share/agility-git-helper/ag.log (default: $AG_LOG_LEVEL or WARNING)",
)
@click.pass_context
def main(ctx: click.Context, log_level: str | None) -> None:
    """Browse Agility tickets and create git branches for them."""
    setup_logging(log_level)
    if ctx.invoked_subcommand is None:
        ctx.invoke(cmd_tickets)


# ---------------------------------------------------------------------------
# Prompts
# ---------------------------------------------------------------------------

def _numbered_pick(title: str, rows: Sequence[tuple[str, str, str]]) -> str | None:
    """Print a numbered list of (id, label, detail) and return the chosen id. 0 cancels."""
    click.echo(title)
    for i, (_, label, detail) in enumerate(rows, start=1):
        suffix = f"  ({detail})" if detail and detail != "—" else ""
        click.echo(f"  {i:>3}) {label}{suffix}")
    choice = click.prompt(
        "Number (0 to cancel)",
        type=click.IntRange(0, len(rows)),
        default=0,
        show_default=False,
    )
    if choice == 0:
        return None
    return rows[choice - 1][0]


def _pick_entry(mode: ViewMode):
    title = {
        ViewMode.MY_TICKETS: "Select a team member to view their tickets:",
        ViewMode.TEAM_TICKETS: "Select a team to view their tickets:",
    }[mode]

    def pick(entries: Sequence[DirectoryEntry]) -> str | None:
        return _numbered_pick(title, [(e.id, e.name, e.detail) for e in entries])

    return pick


class ClickPrompter:
    """Answers BranchCreator's questions on the terminal."""

    def choose_team(self, teams: Sequence[TeamInfo]) -> str | None:
        if not teams:
            click.echo("No teams found.", err=True)
            return None
        if not click.confirm(
            "Please select a team first to configure the Dev in Progress status. Select now?",
            default=True,
        ):
            return None
        return _numbered_pick("Teams:", [(t.id, t.name, "") for t in teams])

    def choose_dev_status(self, statuses: Sequence[StatusConfig]) -> str | None:
        if not click.confirm(
            "No Dev in Progress status configured. Would you like to select one now?",
            default=True,
        ):
            return None
        return _numbered_pick(
            'Select the status to use as "Dev in Progress":',
            [(s.id, s.name, "") for s in statuses],
        )

    def resolve_existing_branch(self, branch_name: str) -> ExistingBranchChoice:
        value = click.prompt(
            f"Branch '{branch_name}' already exists. Switch, delete and recreate, or cancel?",
            type=click.Choice([c.value for c in ExistingBranchChoice]),
            default=ExistingBranchChoice.SWITCH.value,
        )
        return ExistingBranchChoice(value)

    def resolve_empty_repository(self, branch_name: str) -> EmptyRepositoryChoice:
        value = click.prompt(
            "This repository has no commits yet. Create an initial commit, "
            f"start '{branch_name}' as an orphan branch, or cancel?",
            type=click.Choice([c.value for c in EmptyRepositoryChoice]),
            default=EmptyRepositoryChoice.INITIAL_COMMIT.value,
        )
        return EmptyRepositoryChoice(value)


# ---------------------------------------------------------------------------
# ag configure / config / cert
# ---------------------------------------------------------------------------

@main.command("configure")
@click.option("--server", default=None, help="Agility instance URL, e.g. https://www7.v1host.com/MyCompany")
@click.option("--token", default=None, help="Agility access token")
def cmd_configure(server: str | None, token: str | None) -> None:
    """Set the Agility instance URL and access token."""
    old_url, old_token = get_instance_url(), get_access_token()
    before = connection_fingerprint(old_url, old_token)
    if server is None:
        server = click.prompt("Agility instance URL", default=old_url or None)
    if token is None:
        token = click.prompt(
            "Access token" + (" (leave blank to keep current)" if old_token else ""),
            default="" if old_token else None,
            hide_input=True,
            show_default=False,
        ) or old_token
    server = server.strip().rstrip("/")
    set_config("server", server)
    set_config("token", token.strip())

    # Member and team ids belong to the previous instance
    if record_connection(previous=before):
        click.echo("Connection changed: member and team selections cleared.")
    click.echo(f"Configured {server}")


@main.group("config")
def cmd_config() -> None:
    """Get and set configuration values."""


@cmd_config.command("get")
@click.argument("key")
def config_get(key: str) -> None:
    """Get a config value."""
    value = get_config(key)
    if value is None:
        click.echo(f"{key} is not set", err=True)
        sys.exit(1)
    click.echo(value)


@cmd_config.command("set")
@click.argument("key")
@click.argument("value")
def config_set(key: str, value: str) -> None:
    """Set a config value."""
    before = current_fingerprint()
    if key == "server":
        value = value.rstrip("/")
    set_config(key, value)
    click.echo(f"{key} = {value}")
    if key in ("server", "token") and record_connection(previous=before):
        click.echo("Connection changed: member and team selections cleared.")


@cmd_config.command("list")
def config_list() -> None:
    """List all config values."""
    known = [
        ("server", "Agility instance URL, e.g. https://www7.v1host.com/MyCompany", False),
        ("token",  "Agility access token",                                         True),
        ("member", "Member id for My Tickets (set with: ag member select)",        False),
        ("team",   "Team id for Team Tickets (set with: ag team select)",          False),
    ]
    config = _read_config()
    for key, description, secret in known:
        value = config.get(key)
        if value:
            display = "****" if secret else value
            click.echo(f"{key} = {display}")
        else:
            click.echo(f"{key} = (not set)  # {description}")

    statuses = get_status_config()
    click.echo()
    click.echo(f"statuses = {len(statuses)} configured  # see: ag status list")
    click.echo(f"cacerts = {CERT_FILE if CERT_FILE.exists() else '(not installed)'}")


@main.command("cert")
@click.argument("path", type=click.Path(exists=True, dir_okay=False, path_type=Path))
def cmd_cert(path: Path) -> None:
    """Install a CA bundle (PEM) used to verify the Agility server."""
    CERT_FILE.parent.mkdir(parents=True, exist_ok=True)
    shutil.copyfile(path, CERT_FILE)
    click.echo(f"Installed {path} as {CERT_FILE}")


@main.command("version")
def cmd_version() -> None:
    """Show the ag version."""
    click.echo(f"ag {__version__}")


# ---------------------------------------------------------------------------
# ag tickets
# ---------------------------------------------------------------------------

@main.command("tickets")
@click.option("--team", "team_view", is_flag=True, help="Show team tickets instead of my tickets")
@click.option("--plain", is_flag=True, help="Print grouped tickets instead of opening the browser")
@click.option("--filter", "filter_text", default="", help="Only show tickets matching this text")
def cmd_tickets(team_view: bool = False, plain: bool = False, filter_text: str = "") -> None:
    """Browse tickets grouped by status."""
    mode = ViewMode.TEAM_TICKETS if team_view else ViewMode.MY_TICKETS

    if plain:
        with TicketsViewController(mode) as controller:
            controller.set_filter(filter_text)
            _print_view(controller.resolve(_pick_entry(mode)))
        return

    from .tui.tickets import TicketsApp

    app = TicketsApp(mode, initial_filter=filter_text)
    app.run()

    if app.branch_ticket:
        ticket = app.branch_ticket
        _create_branch(BranchRequest(
            ticket_number=ticket.number,
            title=ticket.label,
            asset_id=ticket.asset_id,
            asset_type=ticket.asset_type,
            owner_id=app.controllers[ViewMode.MY_TICKETS].get_selected_member_id(),
        ))


def _print_view(view) -> None:
    from rich.console import Console
    from rich.text import Text

    console = Console()
    if isinstance(view, Placeholder):
        console.print(view.message)
        if view.warning:
            console.print(Text(view.warning, style="#ffca28"))
        return

    console.print(Text(view.header, style="bold #80deea"))
    if view.empty_message:
        console.print(Text(view.empty_message, style="dim"))
    for group in view.groups:
        line = Text("● ", style=group.color)
        line.append(group.status, style="bold")
        line.append(f"  ({len(group.tickets)})", style="dim")
        console.print(line)
        for ticket in group.tickets:
            row = Text("    ")
            row.append(ticket.number, style="bold #80deea")
            row.append("  ")
            row.append(ticket.label.removeprefix(f"{ticket.number}: "))
            row.append(f"  [{ticket.project}]", style="#ffca28")
            console.print(row)


# ---------------------------------------------------------------------------
# ag member / ag team
# ---------------------------------------------------------------------------

def _add_target_commands(group: click.Group, mode: ViewMode, noun: str) -> None:
    @group.command("select", help=f"Choose the {noun} whose tickets are shown.")
    @click.argument("target_id", required=False)
    def cmd_select(target_id: str | None) -> None:
        with TicketsViewController(mode) as controller:
            controller.sync_connection()
            if controller.state.connection is None:
                raise ConfigurationError(
                    "Agility instance URL or access token not configured. Run: ag configure"
                )
            if target_id:
                controller.select(target_id)
                click.echo(f"Selected {noun} {target_id}")
                return
            if not controller.change_target(_pick_entry(mode)):
                warning = controller.state.directory_warning
                click.echo(f"No {noun}s found." + (f" ({warning})" if warning else ""), err=True)
                sys.exit(1)
            selected = controller.state.target_id
            if selected:
                name = controller.directory_names().get(selected, selected)
                click.echo(f"Selected {noun} {name} ({selected})")
            else:
                click.echo("Cancelled.", err=True)

    @group.command("clear", help=f"Forget the selected {noun}.")
    def cmd_clear() -> None:
        TicketsViewController(mode).clear_target()
        click.echo(f"{noun.capitalize()} selection cleared")

    @group.command("show", help=f"Print the selected {noun} id.")
    def cmd_show() -> None:
        target_id = get_selected_id(mode)
        if not target_id:
            click.echo(f"No {noun} selected. Use 'ag {group.name} select'.", err=True)
            sys.exit(1)
        click.echo(target_id)


@main.group("member")
def cmd_member() -> None:
    """Select the member for My Tickets."""


@main.group("team")
def cmd_team() -> None:
    """Select the team for Team Tickets."""


_add_target_commands(cmd_member, ViewMode.MY_TICKETS, "member")
_add_target_commands(cmd_team, ViewMode.TEAM_TICKETS, "team")


# ---------------------------------------------------------------------------
# ag status
# ---------------------------------------------------------------------------

@main.group("status")
def cmd_status() -> None:
    """Manage status colours, visibility and the Dev in Progress status."""


def _require_team(team_id: str | None) -> str:
    team_id = team_id or get_selected_team_id()
    if not team_id:
        raise click.ClickException("No team selected. Use 'ag team select' or pass --team.")
    return team_id


def _resolve_status_id(config: StatusConfigMap, key: str) -> str:
    """Accept a status id or a (case-insensitive) status name."""
    if key in config:
        return key
    matches = [sid for sid, cfg in config.items() if cfg.name.lower() == key.lower()]
    if len(matches) == 1:
        return matches[0]
    if len(matches) > 1:
        raise click.ClickException(
            f"Status name '{key}' is ambiguous; use one of the ids: {', '.join(matches)}"
        )
    raise NotFoundError("Status", key)


@cmd_status.command("list")
def status_list() -> None:
    """List configured statuses."""
    from rich.console import Console
    from rich.table import Table
    from rich.text import Text

    config = get_status_config()
    if not config:
        click.echo("No statuses configured. Run: ag status sync")
        return
    table = Table(box=None, header_style="bold #80deea")
    table.add_column("")
    table.add_column("Status")
    table.add_column("Id")
    table.add_column("Order", justify="right")
    table.add_column("Color")
    table.add_column("Flags")
    for cfg in sorted_statuses(config):
        flags = []
        if cfg.is_dev_in_progress:
            flags.append("dev in progress")
        if cfg.hidden:
            flags.append("hidden")
        table.add_row(
            Text("●", style=cfg.color),
            cfg.name,
            cfg.id,
            str(cfg.order),
            cfg.color,
            Text(", ".join(flags), style="#ffca28"),
        )
    Console().print(table)


@cmd_status.command("sync")
@click.option("--team", "team_id", default=None, help="Team id (default: the selected team)")
def status_sync(team_id: str | None) -> None:
    """Fetch the team's statuses and merge them into the local configuration."""
    team_id = _require_team(team_id)
    with get_agility_client() as client:
        fetched = fetch_statuses(client, team_id)
    existing = get_status_config()
    merged = merge_status_config(existing, fetched)
    save_status_config(merged)
    added = len(merged) - len(existing)
    click.echo(f"Synced {len(fetched)} status(es) for team {team_id} ({added} new).")


@cmd_status.command("dev")
@click.argument("status")
def status_dev(status: str) -> None:
    """Use STATUS (id or name) as the Dev in Progress status."""
    config = get_status_config()
    status_id = _resolve_status_id(config, status)
    save_status_config(set_dev_in_progress(config, status_id))
    click.echo(f'"{config[status_id].name}" is now the Dev in Progress status.')


@cmd_status.command("clear-dev")
def status_clear_dev() -> None:
    """Unset the Dev in Progress status."""
    save_status_config(clear_dev_in_progress(get_status_config()))
    click.echo("Dev in Progress status cleared.")


@cmd_status.command("color")
@click.argument("status")
@click.argument("color")
def status_color(status: str, color: str) -> None:
    """Set the colour of STATUS to #RRGGBB or a preset name (blue, teal, coral, ...)."""
    config = get_status_config()
    status_id = _resolve_status_id(config, status)
    try:
        updated = set_status_color(config, status_id, color)
    except ValueError as e:
        raise click.BadParameter(str(e), param_hint="COLOR") from e
    save_status_config(updated)
    click.echo(f"{updated[status_id].name} = {updated[status_id].color}")


@cmd_status.command("hide")
@click.argument("status")
def status_hide(status: str) -> None:
    """Toggle whether STATUS is shown in ticket views."""
    config = get_status_config()
    status_id = _resolve_status_id(config, status)
    updated = toggle_status_hidden(config, status_id)
    save_status_config(updated)
    state = "hidden" if updated[status_id].hidden else "shown"
    click.echo(f"{updated[status_id].name} is now {state}.")


@cmd_status.command("prune")
@click.option("--team", "team_id", default=None, help="Team id (default: the selected team)")
@click.option("--yes", is_flag=True, help="Do not ask for confirmation")
def status_prune(team_id: str | None, yes: bool) -> None:
    """Remove configured statuses the team no longer has."""
    team_id = _require_team(team_id)
    with get_agility_client() as client:
        fetched = fetch_statuses(client, team_id)
    kept, removed = prune_status_config(get_status_config(), fetched)
    if not removed:
        click.echo("Nothing to prune.")
        return
    for cfg in removed:
        click.echo(f"  - {cfg.name} ({cfg.id})")
    if not yes:
        click.confirm(f"Remove {len(removed)} status(es)?", abort=True)
    save_status_config(kept)
    click.echo(f"Removed {len(removed)} status(es).")


# ---------------------------------------------------------------------------
# ag branch / info / open
# ---------------------------------------------------------------------------

def _lookup_ticket(number: str) -> TicketData:
    with get_agility_client() as client:
        return fetch_ticket_by_number(client, number)


def _create_branch(request: BranchRequest) -> BranchResult:
    with BranchCreator(get_agility_client, find_repository(), ClickPrompter()) as creator:
        result = creator.create(request)

    for warning in result.warnings:
        click.echo(f"Warning: {warning}", err=True)

    if result.outcome is BranchOutcome.CANCELLED:
        click.echo("Cancelled.", err=True)
    elif result.outcome is BranchOutcome.SWITCHED:
        click.echo(f"Switched to branch '{result.branch_name}'")
    elif result.outcome is BranchOutcome.ORPHAN:
        click.echo(f"Created orphan branch '{result.branch_name}' with an empty initial commit")
    else:
        click.echo(f"Created and checked out branch '{result.branch_name}'")
        if result.status_updated:
            owner_msg = " and added you as owner" if result.owner_added else ""
            click.echo(f"Ticket status updated{owner_msg}.")
        elif result.status_error:
            click.echo(f"Warning: Failed to update ticket status: {result.status_error}", err=True)
    return result


@main.command("branch")
@click.argument("ticket", required=False)
@click.option("--title", default=None, help="Ticket title for the branch slug (default: fetched from Agility)")
def cmd_branch(ticket: str | None, title: str | None) -> None:
    """Create a git branch for TICKET and move it to Dev in Progress."""
    if not ticket:
        ticket = click.prompt("Ticket number for branch name").strip()

    request = BranchRequest(ticket_number=ticket, title=title, owner_id=get_selected_member_id())
    try:
        found = _lookup_ticket(ticket)
    except AgilityError as e:
        click.echo(f"Warning: could not look up {ticket}: {get_error_message(e)}", err=True)
    else:
        request = BranchRequest(
            ticket_number=found.number,
            title=title or found.label,
            asset_id=found.asset_id,
            asset_type=found.asset_type,
            owner_id=request.owner_id,
        )

    if not request.title:
        entered = click.prompt(
            "Ticket title (used to create branch slug)", default="", show_default=False
        )
        request = BranchRequest(
            ticket_number=request.ticket_number,
            title=entered or None,
            asset_id=request.asset_id,
            asset_type=request.asset_type,
            owner_id=request.owner_id,
        )

    _create_branch(request)


@main.command("info")
@click.argument("ticket")
def cmd_info(ticket: str) -> None:
    """Show details for a ticket number, e.g. S-01234."""
    from rich.console import Console
    from rich.panel import Panel

    from .tui.theme import build_ticket_info

    with get_agility_client() as client:
        found = fetch_ticket_by_number(client, ticket)
        detail = fetch_ticket_detail(client, found.asset_id)
    content = build_ticket_info(detail, found)
    Console().print(Panel(content, title=f"[bold bright_blue]{found.number}[/bold bright_blue]", border_style="bright_blue", padding=(1, 2)))


@main.command("open")
@click.argument("ticket")
def cmd_open(ticket: str) -> None:
    """Open a ticket in the browser."""
    url = _lookup_ticket(ticket).url
    click.echo(f"Opening {url}")
    webbrowser.open(url)
