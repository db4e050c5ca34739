"""Reusable modal screens: PickerModal, TicketInfoModal."""

from __future__ import annotations

from typing import Callable, Sequence

from rich.text import Text
from textual.app import ComposeResult
from textual.binding import Binding
from textual.containers import ScrollableContainer, Vertical
from textual.screen import ModalScreen
from textual.widgets import DataTable, Footer, Input, Label, Static

from ..agility_api import AgilityClient, fetch_ticket_detail
from ..errors import get_error_message
from ..models import DirectoryEntry, TicketData
from .theme import (
    COL_CYAN, COL_PALE, DATATABLE_CSS, FILTER_BAR_CSS, FOOTER_CSS,
    FilterBarMixin, build_ticket_info, cursor_row_key,
)


class PickerModal(FilterBarMixin, ModalScreen):
    """Pick one member or team. Dismisses with its id, or None on cancel."""

    CSS = DATATABLE_CSS + FILTER_BAR_CSS + FOOTER_CSS + """
    PickerModal { align: center middle; background: #0b0f14 85%; }
    #pk-dialog { width: 80%; height: 80%; border: thick #42a5f5; background: #111a24; }
    #pk-title { text-style: bold; padding: 0 1; background: #16222e; color: #42a5f5; }
    #pk-table { height: 1fr; }
    """

    BINDINGS = [
        Binding("escape", "cancel", "Cancel"),
        Binding("enter", "choose", "Select", show=True),
        Binding("slash", "activate_filter", "Filter", show=True),
    ]

    def __init__(self, title: str, entries: Sequence[DirectoryEntry], current_id: str | None = None) -> None:
        super().__init__()
        self._title = title
        self._entries = list(entries)
        self._current_id = current_id

    def compose(self) -> ComposeResult:
        with Vertical(id="pk-dialog"):
            yield Label(f" {self._title}", id="pk-title")
            yield DataTable(id="pk-table", cursor_type="row", zebra_stripes=True)
            yield Input(id="filter-bar", placeholder="Filter…")
            yield Footer()

    def on_mount(self) -> None:
        table = self.query_one("#pk-table", DataTable)
        table.add_column(" ", width=2)
        table.add_column("Name", width=32)
        table.add_column("Detail")
        self._populate(self._entries)
        table.focus()

    def _populate(self, entries: Sequence[DirectoryEntry]) -> None:
        table = self.query_one("#pk-table", DataTable)
        table.clear()
        for entry in entries:
            marker = "●" if entry.id == self._current_id else " "
            table.add_row(
                marker,
                Text(entry.name, style=f"bold {COL_CYAN}"),
                Text(entry.detail, style=COL_PALE),
                key=entry.id,
            )

    def _filter_target(self) -> DataTable:
        return self.query_one("#pk-table", DataTable)

    def _reset_filter(self) -> None:
        self._populate(self._entries)

    def on_input_changed(self, event: Input.Changed) -> None:
        q = event.value.lower()
        self._populate([
            e for e in self._entries
            if q in e.name.lower() or q in e.detail.lower()
        ])

    def on_key(self, event) -> None:
        if self._handle_filter_keys(event):
            return
        if event.key == "enter":
            self.action_choose()
            event.prevent_default()

    def action_choose(self) -> None:
        if isinstance(self.focused, Input):
            return
        key = cursor_row_key(self._filter_target())
        if key is not None:
            self.dismiss(key)

    def action_cancel(self) -> None:
        if self.query_one("#filter-bar", Input).display:
            return
        self.dismiss(None)


class TicketInfoModal(ModalScreen):
    CSS = FOOTER_CSS + """
    TicketInfoModal { align: center middle; background: #0b0f14 85%; }
    #ti-container { width: 90%; height: 90%; border: thick #42a5f5; background: #111a24; }
    #ti-title { text-style: bold; padding: 0 1; background: #16222e; color: #42a5f5; }
    #ti-scroll { height: 1fr; }
    #ti-content { padding: 1 2; color: #c5d3e0; }
    """

    BINDINGS = [Binding("escape", "dismiss", "Close")]

    def __init__(self, ticket: TicketData, client_factory: Callable[[], AgilityClient]) -> None:
        super().__init__()
        self._ticket = ticket
        self._client_factory = client_factory

    def compose(self) -> ComposeResult:
        with Vertical(id="ti-container"):
            yield Label(f" {self._ticket.number}", id="ti-title")
            with ScrollableContainer(id="ti-scroll"):
                yield Static("Loading…", id="ti-content")
            yield Footer()

    def on_mount(self) -> None:
        self.run_worker(self._fetch_info, thread=True)

    def _fetch_info(self) -> None:
        try:
            with self._client_factory() as client:
                detail = fetch_ticket_detail(client, self._ticket.asset_id)
        except Exception as e:
            self.app.call_from_thread(
                self._update_content, Text(f"Error: {get_error_message(e)}", style="red")
            )
            return

        content = build_ticket_info(detail, self._ticket)
        self.app.call_from_thread(self._update_content, content)

    def _update_content(self, content) -> None:
        self.query_one("#ti-content", Static).update(content)
