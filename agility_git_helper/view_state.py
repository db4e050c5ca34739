"""What a ticket view shows, as an immutable state value plus transitions.

A view is either "my tickets" (target = member id) or "team tickets"
(target = team id). ``ViewState`` holds everything that was fetched or chosen;
the module-level functions are pure transitions returning a new value, and
``TicketsViewController`` applies them under a lock, does the network calls and
persists the chosen target.

The ``in_flight`` tag is the re-entrancy guard: only one selection prompt or
ticket load can be running per view. A second request while one is in flight
is rejected and callers render a placeholder instead.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import asdict, dataclass, field, replace
from enum import Enum
from typing import Any, Callable, Sequence

from . import config
from .agility_api import (
    AgilityClient,
    fetch_members,
    fetch_teams,
    fetch_tickets_by_member,
    fetch_tickets_by_team,
    get_agility_client,
)
from .errors import AgilityError, get_error_message
from .models import DirectoryEntry, StatusConfigMap, StatusGroup, TicketData, ViewMode
from .tickets import filter_tickets, group_tickets

logger = logging.getLogger("agility_git_helper.view_state")


class Phase(str, Enum):
    UNCONFIGURED = "unconfigured"
    NO_RESULTS = "no-results"
    AWAITING_SELECTION = "awaiting-selection"
    SELECTING = "selecting"
    LOADING = "loading"
    READY = "ready"
    ERROR = "error"


class InFlight(str, Enum):
    SELECTING = "selecting"
    LOADING = "loading"


@dataclass(frozen=True)
class ViewState:
    mode: ViewMode
    connection: str | None = None
    # None = not fetched yet
    directory: tuple[DirectoryEntry, ...] | None = None
    directory_warning: str | None = None
    target_id: str | None = None
    # None = not fetched yet, () = fetched, nothing found
    tickets: tuple[TicketData, ...] | None = None
    filter_text: str = ""
    error: str | None = None
    in_flight: InFlight | None = None

    @property
    def phase(self) -> Phase:
        if self.connection is None:
            return Phase.UNCONFIGURED
        if self.in_flight is InFlight.SELECTING:
            return Phase.SELECTING
        if self.in_flight is InFlight.LOADING:
            return Phase.LOADING
        if self.target_id is None:
            if self.directory is not None and not self.directory:
                return Phase.NO_RESULTS
            return Phase.AWAITING_SELECTION
        if self.error is not None:
            return Phase.ERROR
        if self.tickets is not None:
            return Phase.READY
        return Phase.LOADING

    @property
    def needs_load(self) -> bool:
        """Target chosen, nothing fetched, nothing running."""
        return (
            self.connection is not None
            and self.target_id is not None
            and self.tickets is None
            and self.error is None
            and self.in_flight is None
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "mode": self.mode.value,
            "phase": self.phase.value,
            "connection": self.connection,
            "directory": None if self.directory is None else [asdict(e) for e in self.directory],
            "directory_warning": self.directory_warning,
            "target_id": self.target_id,
            "tickets": None if self.tickets is None else [asdict(t) for t in self.tickets],
            "filter_text": self.filter_text,
            "error": self.error,
            "in_flight": self.in_flight.value if self.in_flight else None,
        }


def initial_state(
    mode: ViewMode, url: str | None, token: str | None, target_id: str | None = None
) -> ViewState:
    connection = config.connection_fingerprint(url, token)
    return ViewState(
        mode=mode,
        connection=connection,
        target_id=target_id if connection else None,
    )


# --- transitions ---


def apply_connection(state: ViewState, url: str | None, token: str | None) -> ViewState:
    """Reset everything when the instance URL or token changed."""
    connection = config.connection_fingerprint(url, token)
    if connection == state.connection:
        return state
    return ViewState(mode=state.mode, connection=connection)


def directory_loaded(state: ViewState, entries: Sequence[DirectoryEntry]) -> ViewState:
    return replace(state, directory=tuple(entries), directory_warning=None)


def directory_failed(state: ViewState, message: str) -> ViewState:
    """A failed member/team fetch degrades to an empty directory with a warning."""
    return replace(state, directory=(), directory_warning=message)


def begin_selection(state: ViewState) -> tuple[ViewState, bool]:
    if state.in_flight is not None or state.connection is None or not state.directory:
        return state, False
    return replace(state, in_flight=InFlight.SELECTING), True


def finish_selection(state: ViewState, chosen_id: str | None) -> ViewState:
    """Close the prompt. ``None`` means cancelled: the previous target stays."""
    if state.in_flight is not InFlight.SELECTING:
        return state
    state = replace(state, in_flight=None)
    if chosen_id is None or chosen_id == state.target_id:
        return state
    return replace(state, target_id=chosen_id, tickets=None, error=None)


def select_target(state: ViewState, target_id: str) -> ViewState:
    if target_id == state.target_id:
        return state
    return replace(state, target_id=target_id, tickets=None, error=None)


def clear_target(state: ViewState) -> ViewState:
    return replace(state, target_id=None, tickets=None, error=None)


def begin_load(state: ViewState) -> tuple[ViewState, bool]:
    """Start a load. An ERROR state only leaves through refresh()."""
    if (
        state.in_flight is not None
        or state.connection is None
        or state.target_id is None
        or state.error is not None
    ):
        return state, False
    return replace(state, in_flight=InFlight.LOADING), True


def load_succeeded(
    state: ViewState, tickets: Sequence[TicketData], target_id: str | None = None
) -> ViewState:
    """Store fetched tickets. Results for a target that is no longer current are dropped."""
    if state.in_flight is not InFlight.LOADING:
        return state
    state = replace(state, in_flight=None)
    if target_id is not None and target_id != state.target_id:
        return state
    return replace(state, tickets=tuple(tickets), error=None)


def load_failed(state: ViewState, message: str, target_id: str | None = None) -> ViewState:
    if state.in_flight is not InFlight.LOADING:
        return state
    state = replace(state, in_flight=None)
    if target_id is not None and target_id != state.target_id:
        return state
    return replace(state, tickets=None, error=message)


def refresh(state: ViewState) -> ViewState:
    """Drop cached tickets (and an empty directory) so the next load refetches."""
    if state.in_flight is InFlight.LOADING:
        return state
    directory = state.directory if state.directory else None
    return replace(state, tickets=None, error=None, directory=directory)


def set_filter(state: ViewState, text: str) -> ViewState:
    return replace(state, filter_text=text)


# --- rendering ---


@dataclass(frozen=True)
class Placeholder:
    kind: str
    message: str
    warning: str | None = None


@dataclass(frozen=True)
class TicketsView:
    header: str
    filter_text: str
    groups: tuple[StatusGroup, ...] = field(default_factory=tuple)
    empty_message: str | None = None
    total: int = 0


ViewModel = Placeholder | TicketsView

_NOUNS = {ViewMode.MY_TICKETS: "team member", ViewMode.TEAM_TICKETS: "team"}


def render(
    state: ViewState,
    status_config: StatusConfigMap,
    directory_names: dict[str, str] | None = None,
) -> ViewModel:
    noun = _NOUNS[state.mode]
    phase = state.phase
    if phase is Phase.UNCONFIGURED:
        return Placeholder(
            "configure",
            "Configure your Agility instance URL and access token. Run: ag configure",
        )
    if phase is Phase.SELECTING:
        return Placeholder("selecting", f"Select a {noun} to continue")
    if phase is Phase.NO_RESULTS:
        plural = "team members" if state.mode is ViewMode.MY_TICKETS else "teams"
        return Placeholder("no-results", f"No {plural} found.", state.directory_warning)
    if phase is Phase.AWAITING_SELECTION:
        return Placeholder("select", f"Select a {noun} to view their tickets")
    if phase is Phase.LOADING:
        return Placeholder("loading", "Loading tickets…")
    if phase is Phase.ERROR:
        return Placeholder("error", f"Failed to load tickets: {state.error}")

    tickets = state.tickets or ()
    names = directory_names or {}
    name = names.get(state.target_id or "", state.target_id or "")
    header = f"Tickets for {name}" if state.mode is ViewMode.MY_TICKETS else f"Team: {name}"
    groups = tuple(group_tickets(tickets, status_config, state.filter_text))
    empty_message = None
    if not tickets:
        empty_message = "No tickets found."
    elif not groups:
        empty_message = "No tickets match the filter."
    return TicketsView(
        header=header,
        filter_text=state.filter_text,
        groups=groups,
        empty_message=empty_message,
        total=len(filter_tickets(tickets, state.filter_text)),
    )


# --- controller ---


Picker = Callable[[Sequence[DirectoryEntry]], "str | None"]


class TicketsViewController:
    """Owns the ViewState of one view and the side effects around it.

    All transitions are applied under ``self._lock``; network calls happen
    outside the lock. Safe to call from Textual thread workers.
    """

    def __init__(
        self,
        mode: ViewMode,
        client_factory: Callable[[], AgilityClient] = get_agility_client,
    ) -> None:
        self.mode = mode
        self._client_factory = client_factory
        self._client: AgilityClient | None = None
        self._lock = threading.Lock()
        config.record_connection()
        self._state = initial_state(
            mode,
            config.get_instance_url(),
            config.get_access_token(),
            config.get_selected_id(mode),
        )

    @property
    def state(self) -> ViewState:
        with self._lock:
            return self._state

    def _apply(self, transition: Callable[..., ViewState], *args: Any) -> ViewState:
        with self._lock:
            self._state = transition(self._state, *args)
            return self._state

    def _try(self, transition: Callable[[ViewState], tuple[ViewState, bool]]) -> bool:
        with self._lock:
            self._state, accepted = transition(self._state)
            return accepted

    def _get_client(self) -> AgilityClient:
        """One client per connection, built on first use."""
        with self._lock:
            if self._client is None:
                self._client = self._client_factory()
            return self._client

    def close(self) -> None:
        """Close the HTTP session. A later fetch opens a new one."""
        with self._lock:
            client, self._client = self._client, None
        if client is not None:
            client.close()

    def __enter__(self) -> TicketsViewController:
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()

    # connection

    def sync_connection(self) -> bool:
        """Re-read URL/token from config. Returns True if the view was reset."""
        url, token = config.get_instance_url(), config.get_access_token()
        with self._lock:
            before = self._state
            self._state = apply_connection(before, url, token)
            changed = self._state is not before
        if changed:
            logger.info("Connection settings changed, resetting %s view", self.mode.value)
            self.close()
            config.record_connection()
            if before.connection is not None and before.target_id is not None:
                config.set_selected_id(self.mode, None)
        return changed

    # directory

    def ensure_directory(self) -> tuple[DirectoryEntry, ...]:
        """Fetch members/teams once per connection. Failures leave an empty directory."""
        state = self.state
        if state.connection is None:
            return ()
        if state.directory is not None:
            return state.directory
        try:
            client = self._get_client()
            if self.mode is ViewMode.MY_TICKETS:
                entries: list[DirectoryEntry] = list(fetch_members(client))
            else:
                entries = list(fetch_teams(client))
        except AgilityError as e:
            logger.warning("Directory fetch failed for %s: %s", self.mode.value, e)
            return self._apply(directory_failed, get_error_message(e)).directory or ()
        return self._apply(directory_loaded, entries).directory or ()

    def directory_names(self) -> dict[str, str]:
        return {e.id: e.name for e in self.state.directory or ()}

    # selection

    def begin_selection(self) -> tuple[DirectoryEntry, ...] | None:
        """Open a selection. Returns the entries to pick from, or None if rejected."""
        self.ensure_directory()
        if not self._try(begin_selection):
            return None
        return self.state.directory

    def finish_selection(self, chosen_id: str | None) -> ViewState:
        with self._lock:
            before = self._state
            self._state = finish_selection(before, chosen_id)
            after = self._state
        if (
            chosen_id
            and before.in_flight is InFlight.SELECTING
            and after.target_id == chosen_id
        ):
            config.set_selected_id(self.mode, chosen_id)
            logger.info("Selected %s %s", self.mode.value, chosen_id)
        return after

    def change_target(self, pick: Picker) -> bool:
        """Run a whole selection with *pick*. Returns False if it could not start."""
        entries = self.begin_selection()
        if entries is None:
            return False
        chosen: str | None = None
        try:
            chosen = pick(entries)
        finally:
            self.finish_selection(chosen)
        return True

    def select(self, target_id: str) -> ViewState:
        state = self._apply(select_target, target_id)
        config.set_selected_id(self.mode, target_id)
        return state

    def clear_target(self) -> ViewState:
        state = self._apply(clear_target)
        config.set_selected_id(self.mode, None)
        return state

    # tickets

    def load(self) -> ViewState:
        """Fetch tickets for the current target unless a load is already running."""
        with self._lock:
            self._state, accepted = begin_load(self._state)
            target_id = self._state.target_id
        if not accepted or target_id is None:
            return self.state
        try:
            client = self._get_client()
            if self.mode is ViewMode.MY_TICKETS:
                tickets = fetch_tickets_by_member(client, target_id)
            else:
                tickets = fetch_tickets_by_team(client, target_id)
        except AgilityError as e:
            logger.warning("Ticket load failed for %s %s: %s", self.mode.value, target_id, e)
            return self._apply(load_failed, get_error_message(e), target_id)
        logger.info("Loaded %d tickets for %s %s", len(tickets), self.mode.value, target_id)
        return self._apply(load_succeeded, tickets, target_id)

    def refresh(self) -> ViewState:
        return self._apply(refresh)

    def set_filter(self, text: str) -> ViewState:
        return self._apply(set_filter, text)

    def view(self) -> ViewModel:
        return render(self.state, config.get_status_config(), self.directory_names())

    def resolve(self, pick: Picker) -> ViewModel:
        """Drive the view to a displayable result: select if needed, then load."""
        self.sync_connection()
        state = self.state
        if state.phase is Phase.UNCONFIGURED:
            return self.view()
        if state.target_id is None:
            self.change_target(pick)
        if self.state.target_id is not None:
            self.ensure_directory()
        if self.state.needs_load:
            self.load()
        return self.view()

    def get_selected_member_id(self) -> str | None:
        if self.mode is ViewMode.MY_TICKETS:
            return self.state.target_id
        return config.get_selected_member_id()
