"""Ticket browser TUI: TicketsApp."""

from __future__ import annotations

import webbrowser
from typing import Callable

from rich.text import Text
from textual.app import App, ComposeResult
from textual.binding import Binding
from textual.widgets import Footer, Input, Static, Tree

from ..agility_api import AgilityClient, get_agility_client
from ..git import copy_to_clipboard
from ..models import TicketData, ViewMode
from ..view_state import Placeholder, TicketsViewController
from .modals import PickerModal, TicketInfoModal
from .theme import (
    COL_AMBER, COL_CYAN, COL_DIM, COL_PALE,
    SCREEN_CSS, CONTEXT_BAR_CSS, TREE_CSS, FILTER_BAR_CSS, FOOTER_CSS,
    context_bar_text, status_dot,
    FilterBarMixin,
)

_TITLES = {
    ViewMode.MY_TICKETS: "My Tickets",
    ViewMode.TEAM_TICKETS: "Team Tickets",
}

_PICKER_TITLES = {
    ViewMode.MY_TICKETS: "Select a team member to view their tickets",
    ViewMode.TEAM_TICKETS: "Select a team to view their tickets",
}


class TicketsApp(FilterBarMixin, App):
    """Browse tickets grouped by status.

    After app.run(), ``branch_ticket`` is set when the user asked for a branch;
    the caller creates it once the terminal is released.
    """

    CSS = SCREEN_CSS + CONTEXT_BAR_CSS + TREE_CSS + FILTER_BAR_CSS + FOOTER_CSS + """
    #view-header { height: 1; background: #16222e; color: #80deea; padding: 0 1; text-style: bold; }
    #placeholder { height: 1fr; padding: 1 2; color: #c5d3e0; display: none; }
    #warning { height: 1; background: #111a24; color: #ffca28; padding: 0 1; display: none; }
    """

    BINDINGS = [
        Binding("escape", "quit", "Quit"),
        Binding("r", "refresh", "Refresh", show=True),
        Binding("m", "change_target", "Change", show=True),
        Binding("x", "clear_target", "Clear", show=True),
        Binding("b", "create_branch", "Branch", show=True),
        Binding("i", "show_info", "Info", show=True),
        Binding("o", "open_ticket", "Open", show=True),
        Binding("c", "copy_url", "Copy URL", show=True),
        Binding("tab", "switch_view", "My/Team", show=True, priority=True),
        Binding("slash", "activate_filter", "Filter", show=True),
    ]

    def __init__(
        self,
        mode: ViewMode = ViewMode.MY_TICKETS,
        client_factory: Callable[[], AgilityClient] = get_agility_client,
        initial_filter: str = "",
    ) -> None:
        super().__init__()
        self.mode = mode
        self._client_factory = client_factory
        self.controllers = {
            m: TicketsViewController(m, client_factory) for m in ViewMode
        }
        if initial_filter:
            self.controller.set_filter(initial_filter)
        self.branch_ticket: TicketData | None = None

    @property
    def controller(self) -> TicketsViewController:
        return self.controllers[self.mode]

    def compose(self) -> ComposeResult:
        yield Static(context_bar_text(), classes="context-bar", id="context-bar")
        yield Static("", id="view-header")
        yield Tree("tickets", id="ticket-tree")
        yield Static("", id="placeholder")
        yield Static("", id="warning")
        yield Input(id="filter-bar", placeholder="Filter…")
        yield Footer()

    def on_mount(self) -> None:
        filter_text = self.controller.state.filter_text
        if filter_text:
            filter_bar = self.query_one("#filter-bar", Input)
            filter_bar.value = filter_text
            filter_bar.display = True
        self._resolve()

    def on_unmount(self) -> None:
        for controller in self.controllers.values():
            controller.close()

    # --- data flow ---

    def _resolve(self) -> None:
        self._render_view()
        self.run_worker(self._resolve_worker, thread=True, group="resolve")

    def _resolve_worker(self) -> None:
        controller = self.controller
        controller.sync_connection()
        state = controller.state
        if state.connection is None:
            self.call_from_thread(self._render_view)
            return
        if state.target_id is None:
            self._prompt_for_target(controller)
            return
        controller.ensure_directory()
        if controller.state.needs_load:
            self.call_from_thread(self._render_view)
            controller.load()
        self.call_from_thread(self._render_view)

    def _prompt_for_target(self, controller: TicketsViewController) -> None:
        """Worker side of a selection: fetch the directory, then open the picker."""
        entries = controller.begin_selection()
        if entries is None:
            # Directory empty or a prompt is already open
            self.call_from_thread(self._render_view)
            return
        self.call_from_thread(self._render_view)
        self.call_from_thread(
            self.push_screen,
            PickerModal(_PICKER_TITLES[controller.mode], entries, controller.state.target_id),
            lambda chosen: self._on_target_picked(controller, chosen),
        )

    def _on_target_picked(self, controller: TicketsViewController, chosen: str | None) -> None:
        state = controller.finish_selection(chosen)
        self.query_one("#context-bar", Static).update(context_bar_text())
        if controller is not self.controller:
            return
        if state.target_id is None:
            self._render_view()
        else:
            self._resolve()

    # --- rendering ---

    def _render_view(self) -> None:
        controller = self.controller
        view = controller.view()
        header = self.query_one("#view-header", Static)
        tree = self.query_one(Tree)
        placeholder = self.query_one("#placeholder", Static)
        warning = self.query_one("#warning", Static)

        if isinstance(view, Placeholder):
            header.update(f"{_TITLES[self.mode]}")
            tree.display = False
            placeholder.update(view.message)
            placeholder.display = True
            warning.update(view.warning or "")
            warning.display = bool(view.warning)
            return

        header.update(f"{_TITLES[self.mode]}  ·  {view.header}  ·  {view.total} ticket(s)")
        placeholder.display = False
        warning.display = False
        tree.display = True

        tree.clear()
        tree.root.label = Text(view.header, style=COL_DIM)
        if view.empty_message:
            tree.root.add_leaf(Text(view.empty_message, style=COL_DIM))
        for group in view.groups:
            label = status_dot(group.color)
            label.append(group.status, style=f"bold {COL_PALE}")
            label.append(f"  ({len(group.tickets)})", style=COL_DIM)
            node = tree.root.add(label, expand=True)
            for ticket in group.tickets:
                node.add_leaf(self._ticket_label(ticket), data=ticket)
        tree.root.expand()

    @staticmethod
    def _ticket_label(ticket: TicketData) -> Text:
        t = Text()
        t.append(ticket.number, style=f"bold {COL_CYAN}")
        t.append("  ")
        t.append(ticket.label.removeprefix(f"{ticket.number}: ")[:80], style=COL_PALE)
        t.append("  ")
        t.append(ticket.project, style=COL_AMBER)
        return t

    # --- filter bar ---

    def _filter_target(self) -> Tree:
        return self.query_one(Tree)

    def _reset_filter(self) -> None:
        self.controller.set_filter("")
        self._render_view()

    def on_input_changed(self, event: Input.Changed) -> None:
        self.controller.set_filter(event.value)
        self._render_view()

    def on_key(self, event) -> None:
        if len(self.screen_stack) > 1:
            return
        self._handle_filter_keys(event)

    # --- actions ---

    def _active_ticket(self) -> TicketData | None:
        node = self.query_one(Tree).cursor_node
        if node is not None and isinstance(node.data, TicketData):
            return node.data
        return None

    def on_tree_node_selected(self, event: Tree.NodeSelected) -> None:
        if isinstance(event.node.data, TicketData):
            self.push_screen(TicketInfoModal(event.node.data, self._client_factory))

    def action_refresh(self) -> None:
        if isinstance(self.focused, Input):
            return
        self.controller.refresh()
        self._resolve()

    def action_change_target(self) -> None:
        if isinstance(self.focused, Input):
            return
        controller = self.controller
        self.run_worker(lambda: self._prompt_for_target(controller), thread=True, group="resolve")

    def action_clear_target(self) -> None:
        if isinstance(self.focused, Input):
            return
        self.controller.clear_target()
        self.query_one("#context-bar", Static).update(context_bar_text())
        self._render_view()

    def action_switch_view(self) -> None:
        if isinstance(self.focused, Input):
            return
        self.mode = (
            ViewMode.TEAM_TICKETS if self.mode is ViewMode.MY_TICKETS else ViewMode.MY_TICKETS
        )
        filter_bar = self.query_one("#filter-bar", Input)
        with filter_bar.prevent(Input.Changed):
            filter_bar.value = self.controller.state.filter_text
        filter_bar.display = bool(filter_bar.value)
        self._resolve()

    def action_create_branch(self) -> None:
        if isinstance(self.focused, Input):
            return
        ticket = self._active_ticket()
        if ticket:
            self.branch_ticket = ticket
            self.exit()

    def action_show_info(self) -> None:
        if isinstance(self.focused, Input):
            return
        ticket = self._active_ticket()
        if ticket:
            self.push_screen(TicketInfoModal(ticket, self._client_factory))

    def action_open_ticket(self) -> None:
        if isinstance(self.focused, Input):
            return
        ticket = self._active_ticket()
        if ticket:
            webbrowser.open(ticket.url)

    def action_copy_url(self) -> None:
        if isinstance(self.focused, Input):
            return
        ticket = self._active_ticket()
        if not ticket:
            return
        if copy_to_clipboard(ticket.url):
            self.notify(f"Copied: {ticket.url}")
        else:
            self.notify("No clipboard utility found (install pbcopy, wl-copy, or xclip)", severity="warning")

    def action_quit(self) -> None:
        self.exit()
