"""Shared CSS blocks, colour constants, and rendering helpers for TUI apps."""

from __future__ import annotations

import html
import re
from typing import Any

from rich.console import Group
from rich.rule import Rule
from rich.table import Table
from rich.text import Text
from textual.coordinate import Coordinate
from textual.widgets import DataTable, Input

from ..config import get_instance_url, get_selected_member_id, get_selected_team_id
from ..git import GitRepository
from ..models import TicketData


# ---------------------------------------------------------------------------
# Colour constants
# ---------------------------------------------------------------------------

COL_ACCENT = "#42a5f5"
COL_CYAN = "#80deea"
COL_PALE = "#c5d3e0"
COL_AMBER = "#ffca28"
COL_PURPLE = "#b39ddb"
COL_DIM = "#5a7288"
COL_BG = "#0b0f14"
COL_SURFACE = "#111a24"
COL_DARK = "#16222e"


# ---------------------------------------------------------------------------
# Shared CSS blocks: compose these in each App's CSS string
# ---------------------------------------------------------------------------

SCREEN_CSS = f"""
    Screen {{ background: {COL_BG}; }}
"""

CONTEXT_BAR_CSS = f"""
    .context-bar {{
        height: 1;
        background: {COL_SURFACE};
        color: {COL_ACCENT};
        padding: 0 1;
        text-style: bold;
    }}
"""

DATATABLE_CSS = f"""
    DataTable {{
        height: 1fr;
        background: {COL_BG};
    }}
    DataTable > .datatable--header {{ background: {COL_SURFACE}; color: {COL_CYAN}; text-style: bold; }}
    DataTable > .datatable--cursor {{ background: #0d3050; color: {COL_ACCENT}; text-style: bold; }}
    DataTable > .datatable--hover  {{ background: #0a1e30; }}
    DataTable > .datatable--odd-row  {{ background: #0a0d12; color: {COL_PALE}; }}
    DataTable > .datatable--even-row {{ background: {COL_BG}; color: {COL_PALE}; }}
"""

TREE_CSS = f"""
    Tree {{ height: 1fr; background: {COL_BG}; padding: 0 1; color: {COL_PALE}; }}
    Tree > .tree--cursor {{ background: #0d3050; text-style: bold; }}
    Tree > .tree--guides       {{ color: #1c2c3c; }}
    Tree > .tree--guides-hover {{ color: #2c4a66; }}
"""

FOOTER_CSS = f"""
    Footer {{ background: {COL_SURFACE}; color: {COL_DIM}; }}
    Footer > .footer--key {{ background: {COL_DARK}; color: {COL_CYAN}; }}
"""

FILTER_BAR_CSS = f"""
    #filter-bar {{
        display: none;
        border: tall {COL_ACCENT};
        background: {COL_SURFACE};
        color: {COL_ACCENT};
    }}
"""


# ---------------------------------------------------------------------------
# Shared widget helpers
# ---------------------------------------------------------------------------

def cursor_row_key(table: DataTable) -> str | None:
    """Return the row key under the cursor, or None for an empty table."""
    if table.row_count == 0:
        return None
    return table.coordinate_to_cell_key(Coordinate(table.cursor_row, 0)).row_key.value


class FilterBarMixin:
    """Show/hide behaviour for a ``#filter-bar`` Input.

    The host implements ``_reset_filter()`` and ``_filter_target()`` (the widget
    that gets focus back when the bar closes).
    """

    def action_activate_filter(self) -> None:
        filter_bar = self.query_one("#filter-bar", Input)
        filter_bar.display = True
        filter_bar.focus()

    def _close_filter_bar(self, filter_bar: Input) -> None:
        filter_bar.value = ""
        filter_bar.display = False
        self._reset_filter()
        self._filter_target().focus()

    def _handle_filter_keys(self, event) -> bool:
        """Handle escape/enter for the filter bar. Returns True if the key was consumed."""
        filter_bar = self.query_one("#filter-bar", Input)
        if self.focused is filter_bar:
            if event.key == "escape":
                self._close_filter_bar(filter_bar)
                event.prevent_default()
                return True
            if event.key == "enter":
                self._filter_target().focus()
                event.prevent_default()
                return True
            return False
        if event.key == "escape" and filter_bar.display:
            self._close_filter_bar(filter_bar)
            event.prevent_default()
            return True
        return False


# ---------------------------------------------------------------------------
# Shared rendering helpers
# ---------------------------------------------------------------------------

def context_bar_text() -> str:
    """Return a one-line context string: instance host, member, team and branch."""
    url = get_instance_url() or "not configured"
    host = re.sub(r"^https?://", "", url)
    member = get_selected_member_id() or "—"
    team = get_selected_team_id() or "—"
    try:
        branch = GitRepository(".").current_branch or "—"
    except OSError:
        branch = "—"
    return f"  agility: {host}   member: {member}   team: {team}   branch: {branch}"


_TAG_RE = re.compile(r"<[^>]+>")
_BREAK_RE = re.compile(r"<\s*(br|/p|/div|/li)\s*/?>", re.IGNORECASE)


def html_to_text(value: str | None) -> str:
    """Plain-text rendering of an Agility rich-text field."""
    if not value:
        return ""
    text = _BREAK_RE.sub("\n", value)
    text = _TAG_RE.sub("", text)
    text = html.unescape(text)
    return re.sub(r"\n{3,}", "\n\n", text).strip()


def _display(value: Any, default: str = "—") -> str:
    if value is None or value == "" or value == []:
        return default
    if isinstance(value, list):
        return ", ".join(str(v) for v in value)
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def build_ticket_info(detail: dict[str, Any], ticket: TicketData) -> Group:
    """Build a Rich renderable with title, meta table, URL, and description.

    Used by TicketInfoModal and ``ag info``. *detail* is the flattened
    attribute map of the workitem.
    """
    description = html_to_text(detail.get("Description"))
    status = _display(detail.get("Status.Name"), ticket.status or "Unknown")

    meta = Table.grid(padding=(0, 3), expand=False)
    meta.add_column(style="bold bright_black", no_wrap=True, min_width=10)
    meta.add_column(min_width=22)
    meta.add_column(style="bold bright_black", no_wrap=True, min_width=10)
    meta.add_column(min_width=16)
    meta.add_row("STATUS", Text(status, style=COL_AMBER),
                 "TYPE", Text(_display(detail.get("AssetType"), ticket.asset_type), style="cyan"))
    meta.add_row("OWNERS", Text(_display(detail.get("Owners.Name"), "Unassigned"), style=COL_PURPLE),
                 "PROJECT", _display(detail.get("Scope.Name"), ticket.project))
    meta.add_row("ESTIMATE", _display(detail.get("Estimate")),
                 "TO DO", _display(detail.get("ToDo")))
    meta.add_row("CHANGED", _display(detail.get("ChangeDate")), "", "")

    truncated = (
        description[:800] + "\n…truncated"
    ) if len(description) > 800 else (description or "—")

    desc_block = Group(
        Rule(style="bright_black"),
        Text.from_markup("[bold bright_black]DESCRIPTION[/bold bright_black]"),
        Text(f"\n{truncated}"),
    )

    url_line = Text.assemble(
        ("URL  ", "bold bright_black"),
        (ticket.url, f"link {ticket.url} bright_cyan"),
    )

    title = detail.get("Name") or ticket.label
    return Group(
        Text(f"{ticket.number}  {title}", style="bold white"),
        Text(""),
        meta,
        Text(""),
        url_line,
        Text(""),
        desc_block,
    )


def status_dot(color: str) -> Text:
    return Text("● ", style=color)
