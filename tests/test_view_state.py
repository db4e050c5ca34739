"""Tests for the view state machine and its controller."""

from dataclasses import replace
from unittest.mock import MagicMock

import pytest

from agility_git_helper import config, view_state
from agility_git_helper.errors import ApiError
from agility_git_helper.models import MemberInfo, StatusConfig, TeamInfo, TicketData, ViewMode
from agility_git_helper.view_state import (
    InFlight,
    Phase,
    Placeholder,
    TicketsView,
    TicketsViewController,
    ViewState,
    apply_connection,
    begin_load,
    begin_selection,
    clear_target,
    directory_failed,
    directory_loaded,
    finish_selection,
    initial_state,
    load_failed,
    load_succeeded,
    refresh,
    render,
    select_target,
    set_filter,
)

URL = "https://v1.example.com/Acme"
MEMBERS = [MemberInfo(id="20", name="Ann", username="ann"), MemberInfo(id="21", name="Bo")]


def ticket(number: str, status: str = "Ready") -> TicketData:
    return TicketData(
        label=f"{number}: Thing",
        number=number,
        asset_id=number[2:],
        status=status,
        project="Web",
        url=f"{URL}/assetDetail.v1?oid={number[2:]}",
    )


def ready_state(**overrides) -> ViewState:
    state = initial_state(ViewMode.MY_TICKETS, URL, "tok", "20")
    state = directory_loaded(state, MEMBERS)
    state, _ = begin_load(state)
    state = load_succeeded(state, [ticket("S-1"), ticket("S-2", "Done")])
    return replace(state, **overrides)


@pytest.mark.unit
class TestTransitions:
    def test_unconfigured(self):
        state = initial_state(ViewMode.MY_TICKETS, None, "tok", "20")
        assert state.phase is Phase.UNCONFIGURED
        assert state.target_id is None
        assert isinstance(render(state, {}), Placeholder)
        assert render(state, {}).kind == "configure"

    def test_same_connection_is_noop(self):
        state = ready_state()
        assert apply_connection(state, URL + "/", "tok") is state

    def test_connection_change_resets_everything(self):
        state = ready_state(filter_text="x")
        reset = apply_connection(state, URL, "other-token")
        assert reset.connection is not None
        assert reset.connection != state.connection
        assert reset.target_id is None
        assert reset.directory is None
        assert reset.tickets is None
        assert reset.filter_text == ""
        assert reset.phase is Phase.AWAITING_SELECTION

    def test_connection_removed(self):
        assert apply_connection(ready_state(), "", "tok").phase is Phase.UNCONFIGURED

    def test_empty_directory_is_terminal(self):
        state = initial_state(ViewMode.TEAM_TICKETS, URL, "tok")
        state = directory_loaded(state, [])
        assert state.phase is Phase.NO_RESULTS
        state, accepted = begin_selection(state)
        assert not accepted
        view = render(state, {})
        assert (view.kind, view.message) == ("no-results", "No teams found.")

    def test_directory_failure_degrades_to_warning(self):
        state = directory_failed(initial_state(ViewMode.MY_TICKETS, URL, "tok"), "HTTP 401")
        view = render(state, {})
        assert view.kind == "no-results"
        assert view.warning == "HTTP 401"

    def test_selection_guard(self):
        state = directory_loaded(initial_state(ViewMode.MY_TICKETS, URL, "tok"), MEMBERS)
        state, accepted = begin_selection(state)
        assert accepted
        assert state.phase is Phase.SELECTING
        again, accepted_again = begin_selection(state)
        assert not accepted_again
        assert again is state
        view = render(state, {})
        assert (view.kind, view.message) == ("selecting", "Select a team member to continue")

    def test_load_rejected_while_selecting(self):
        state = ready_state(in_flight=InFlight.SELECTING)
        assert begin_load(state) == (state, False)

    def test_cancel_keeps_previous_target_and_tickets(self):
        state, _ = begin_selection(ready_state())
        cancelled = finish_selection(state, None)
        assert cancelled.target_id == "20"
        assert cancelled.tickets == ready_state().tickets
        assert cancelled.in_flight is None

    def test_new_target_clears_tickets_keeps_directory(self):
        state, _ = begin_selection(ready_state())
        changed = finish_selection(state, "21")
        assert changed.target_id == "21"
        assert changed.tickets is None
        assert changed.directory == tuple(MEMBERS)
        assert changed.phase is Phase.LOADING
        assert changed.needs_load

    def test_finish_without_prompt_is_ignored(self):
        state = ready_state()
        assert finish_selection(state, "21") is state

    def test_select_and_clear_target(self):
        state = select_target(ready_state(), "21")
        assert (state.target_id, state.tickets) == ("21", None)
        cleared = clear_target(state)
        assert cleared.target_id is None
        assert cleared.phase is Phase.AWAITING_SELECTION

    def test_load_guard(self):
        state = select_target(ready_state(), "21")
        loading, accepted = begin_load(state)
        assert accepted
        assert loading.phase is Phase.LOADING
        assert begin_load(loading) == (loading, False)

    def test_zero_tickets_is_ready(self):
        state, _ = begin_load(select_target(ready_state(), "21"))
        state = load_succeeded(state, [])
        assert state.phase is Phase.READY
        view = render(state, {}, {"21": "Bo"})
        assert isinstance(view, TicketsView)
        assert view.groups == ()
        assert view.empty_message == "No tickets found."
        assert view.header == "Tickets for Bo"

    def test_failure_needs_refresh(self):
        state, _ = begin_load(select_target(ready_state(), "21"))
        failed = load_failed(state, "HTTP 500")
        assert failed.phase is Phase.ERROR
        assert render(failed, {}).message == "Failed to load tickets: HTTP 500"
        assert begin_load(failed) == (failed, False)
        refreshed = refresh(failed)
        assert refreshed.error is None
        assert begin_load(refreshed)[1]

    def test_stale_results_are_dropped(self):
        state, _ = begin_load(select_target(ready_state(), "21"))
        state = select_target(state, "22")
        state = load_succeeded(state, [ticket("S-9")], target_id="21")
        assert state.in_flight is None
        assert state.tickets is None
        assert state.target_id == "22"

    def test_refresh_ignored_while_loading(self):
        state, _ = begin_load(select_target(ready_state(), "21"))
        assert refresh(state) is state

    def test_refresh_clears_tickets(self):
        state = refresh(ready_state())
        assert state.tickets is None
        assert state.directory == tuple(MEMBERS)
        assert state.needs_load

    def test_refresh_retries_empty_directory(self):
        state = directory_failed(initial_state(ViewMode.MY_TICKETS, URL, "tok"), "down")
        assert refresh(state).directory is None

    def test_filter_is_a_view(self):
        state = set_filter(ready_state(), "done")
        assert state.phase is Phase.READY
        view = render(state, {"1": StatusConfig(id="1", name="Done", color="#00ff00", order=1)})
        assert [g.status for g in view.groups] == ["Done"]
        assert view.groups[0].color == "#00ff00"
        assert view.total == 1

    def test_filter_with_no_matches(self):
        view = render(set_filter(ready_state(), "zzz"), {})
        assert view.groups == ()
        assert view.empty_message == "No tickets match the filter."

    def test_team_header(self):
        state = initial_state(ViewMode.TEAM_TICKETS, URL, "tok", "7")
        state, _ = begin_load(state)
        state = load_succeeded(state, [])
        assert render(state, {}, {"7": "Platform"}).header == "Team: Platform"

    def test_to_dict(self):
        data = ready_state().to_dict()
        assert data["mode"] == "my-tickets"
        assert data["phase"] == "ready"
        assert data["target_id"] == "20"
        assert data["tickets"][0]["number"] == "S-1"
        assert data["directory"][0] == {"id": "20", "name": "Ann", "username": "ann"}
        assert data["in_flight"] is None


@pytest.fixture
def fetchers(monkeypatch):
    mocks = {
        "fetch_members": MagicMock(return_value=list(MEMBERS)),
        "fetch_teams": MagicMock(return_value=[TeamInfo(id="7", name="Platform")]),
        "fetch_tickets_by_member": MagicMock(return_value=[ticket("S-1")]),
        "fetch_tickets_by_team": MagicMock(return_value=[ticket("S-2")]),
    }
    for name, mock in mocks.items():
        monkeypatch.setattr(view_state, name, mock)
    return mocks


def make_controller(mode: ViewMode = ViewMode.MY_TICKETS) -> TicketsViewController:
    return TicketsViewController(mode, client_factory=MagicMock)


@pytest.mark.unit
class TestController:
    def test_unconfigured(self, fetchers):
        view = make_controller().resolve(MagicMock())
        assert view.kind == "configure"
        fetchers["fetch_members"].assert_not_called()

    def test_resolve_prompts_then_loads(self, configured, fetchers):
        pick = MagicMock(return_value="21")
        view = make_controller().resolve(pick)
        pick.assert_called_once_with(tuple(MEMBERS))
        assert config.get_selected_member_id() == "21"
        assert isinstance(view, TicketsView)
        assert view.header == "Tickets for Bo"
        assert fetchers["fetch_tickets_by_member"].call_args.args[1] == "21"

    def test_resolve_uses_persisted_target(self, configured, fetchers):
        config.set_config("team", "7")
        pick = MagicMock()
        view = make_controller(ViewMode.TEAM_TICKETS).resolve(pick)
        pick.assert_not_called()
        assert view.header == "Team: Platform"
        assert [t.number for g in view.groups for t in g.tickets] == ["S-2"]

    def test_cancel_persists_nothing(self, configured, fetchers):
        config.set_config("member", "20")
        controller = make_controller()
        assert controller.change_target(lambda entries: None)
        assert config.get_selected_member_id() == "20"
        assert controller.state.target_id == "20"

    def test_cancel_without_previous_selection(self, configured, fetchers):
        view = make_controller().resolve(lambda entries: None)
        assert view.kind == "select"
        assert config.get_selected_member_id() is None
        fetchers["fetch_tickets_by_member"].assert_not_called()

    def test_picker_error_releases_prompt(self, configured, fetchers):
        controller = make_controller()

        def boom(entries):
            raise RuntimeError("closed")

        with pytest.raises(RuntimeError):
            controller.change_target(boom)
        assert controller.state.in_flight is None

    def test_second_prompt_rejected(self, configured, fetchers):
        controller = make_controller()
        assert controller.begin_selection() == tuple(MEMBERS)
        assert controller.begin_selection() is None
        assert controller.view().kind == "selecting"
        controller.finish_selection("20")
        assert config.get_selected_member_id() == "20"

    def test_empty_directory(self, configured, fetchers):
        fetchers["fetch_members"].return_value = []
        controller = make_controller()
        assert controller.change_target(MagicMock()) is False
        assert controller.view().kind == "no-results"

    def test_directory_failure(self, configured, fetchers):
        fetchers["fetch_members"].side_effect = ApiError("GET /Data/Member failed", 401)
        view = make_controller().resolve(MagicMock())
        assert view.kind == "no-results"
        assert "HTTP 401" in view.warning

    def test_load_failure(self, configured, fetchers):
        config.set_config("member", "20")
        fetchers["fetch_tickets_by_member"].side_effect = ApiError("GET failed", 500)
        controller = make_controller()
        view = controller.resolve(MagicMock())
        assert view.kind == "error"
        # still failed until refreshed
        controller.load()
        assert fetchers["fetch_tickets_by_member"].call_count == 1
        fetchers["fetch_tickets_by_member"].side_effect = None
        controller.refresh()
        assert controller.load().phase is Phase.READY

    def test_connection_change_clears_persisted_selection(self, configured, fetchers):
        config.set_config("member", "20")
        controller = make_controller()
        controller.resolve(MagicMock())
        config.set_config("token", "rotated")
        assert controller.sync_connection()
        assert controller.state.target_id is None
        assert controller.state.directory is None
        assert controller.state.tickets is None
        assert config.get_selected_member_id() is None

    def test_sync_without_change(self, configured, fetchers):
        controller = make_controller()
        assert controller.sync_connection() is False

    def test_stale_persisted_target_not_used(self, configured, fetchers):
        config.set_selected_id(ViewMode.MY_TICKETS, "20")
        config.set_config("server", "https://other.example.com/X")
        controller = make_controller()
        assert controller.state.target_id is None
        assert config.get_config("member") is None
        fetchers["fetch_tickets_by_member"].assert_not_called()

    def test_load_without_target_is_ignored(self, configured, fetchers):
        factory = MagicMock()
        controller = TicketsViewController(ViewMode.MY_TICKETS, client_factory=factory)
        state = controller.load()
        assert state.in_flight is None
        assert state.target_id is None
        factory.assert_not_called()

    def test_client_reused_until_closed(self, configured, fetchers):
        config.set_config("member", "20")
        factory = MagicMock()
        controller = TicketsViewController(ViewMode.MY_TICKETS, client_factory=factory)
        controller.resolve(MagicMock())
        controller.refresh()
        controller.load()
        factory.assert_called_once()
        client = factory.return_value
        assert fetchers["fetch_members"].call_args.args[0] is client
        assert fetchers["fetch_tickets_by_member"].call_args.args[0] is client
        controller.close()
        client.close.assert_called_once()

    def test_connection_change_closes_client(self, configured, fetchers):
        config.set_config("member", "20")
        factory = MagicMock()
        with TicketsViewController(ViewMode.MY_TICKETS, client_factory=factory) as controller:
            controller.resolve(MagicMock())
            config.set_config("token", "rotated")
            assert controller.sync_connection()
            factory.return_value.close.assert_called_once()

    def test_clear_target(self, configured, fetchers):
        config.set_config("member", "20")
        controller = make_controller()
        controller.clear_target()
        assert config.get_selected_member_id() is None
        assert controller.state.phase is Phase.AWAITING_SELECTION

    def test_get_selected_member_id(self, configured, fetchers):
        config.set_config("member", "20")
        assert make_controller().get_selected_member_id() == "20"
        assert make_controller(ViewMode.TEAM_TICKETS).get_selected_member_id() == "20"
