"""Tests for the branch creation workflow, with git and the API mocked out."""

from unittest.mock import MagicMock

import pytest

from agility_git_helper import branching, config
from agility_git_helper.branching import (
    BranchCreator,
    BranchOutcome,
    BranchRequest,
    EmptyRepositoryChoice,
    ExistingBranchChoice,
)
from agility_git_helper.errors import ApiError
from agility_git_helper.models import StatusConfig, StatusInfo, TeamInfo
from agility_git_helper.statuses import set_dev_in_progress

pytestmark = pytest.mark.unit

REQUEST = BranchRequest("S-01234", "[Urgent] S-01234: Fix login bug", asset_id="1234", owner_id="20")
BRANCH = "S-01234/fix_login_bug"


@pytest.fixture
def repo() -> MagicMock:
    repo = MagicMock()
    repo.branch_exists.return_value = False
    repo.head_commit = "abc123"
    return repo


@pytest.fixture
def prompter() -> MagicMock:
    return MagicMock()


@pytest.fixture
def api(monkeypatch) -> dict[str, MagicMock]:
    mocks = {
        "update_ticket_status": MagicMock(),
        "fetch_teams": MagicMock(return_value=[TeamInfo(id="7", name="Platform")]),
        "fetch_statuses": MagicMock(return_value=[
            StatusInfo(id="101", name="Ready", order=1),
            StatusInfo(id="133", name="In Progress", order=2),
        ]),
    }
    for name, mock in mocks.items():
        monkeypatch.setattr(branching, name, mock)
    return mocks


@pytest.fixture
def dev_status():
    config.save_status_config(set_dev_in_progress(
        {"133": StatusConfig(id="133", name="In Progress", color="#ff7f0e", order=2)}, "133"
    ))


@pytest.fixture
def creator(repo, prompter) -> BranchCreator:
    return BranchCreator(MagicMock, repo, prompter)


class TestCreate:
    def test_creates_branch_and_updates_status(self, creator, repo, api, dev_status):
        result = creator.create(REQUEST)
        repo.create_branch.assert_called_once_with(BRANCH, checkout=True)
        assert api["update_ticket_status"].call_args.args[1:] == ("1234", "133", "Story", "20")
        assert result.branch_name == BRANCH
        assert result.outcome is BranchOutcome.CREATED
        assert result.status_updated
        assert result.owner_added
        assert not result.partial

    def test_context_manager_closes_client(self, repo, prompter, api, dev_status):
        factory = MagicMock()
        with BranchCreator(factory, repo, prompter) as creator:
            creator.create(REQUEST)
        factory.assert_called_once()
        factory.return_value.close.assert_called_once()

    def test_ticket_id_falls_back_to_number_digits(self, creator, api, dev_status):
        creator.create(BranchRequest("D-00055", "Crash", asset_type="Defect"))
        assert api["update_ticket_status"].call_args.args[1:] == ("00055", "133", "Defect", None)

    def test_without_owner(self, creator, api, dev_status):
        result = creator.create(BranchRequest("S-1", "Thing", asset_id="1"))
        assert result.status_updated
        assert not result.owner_added

    def test_status_failure_is_partial_success(self, creator, repo, api, dev_status):
        api["update_ticket_status"].side_effect = ApiError("Failed to update ticket status", 403)
        result = creator.create(REQUEST)
        repo.create_branch.assert_called_once()
        repo.delete_branch.assert_not_called()
        assert result.outcome is BranchOutcome.CREATED
        assert result.partial
        assert not result.status_updated
        assert result.status_error == "Failed to update ticket status (HTTP 403)"

    def test_existing_branch_switch(self, creator, repo, prompter, api, dev_status):
        repo.branch_exists.return_value = True
        prompter.resolve_existing_branch.return_value = ExistingBranchChoice.SWITCH
        result = creator.create(REQUEST)
        repo.checkout.assert_called_once_with(BRANCH)
        repo.create_branch.assert_not_called()
        api["update_ticket_status"].assert_not_called()
        assert result.outcome is BranchOutcome.SWITCHED

    def test_existing_branch_delete_then_recreate(self, creator, repo, prompter, api, dev_status):
        repo.branch_exists.return_value = True
        prompter.resolve_existing_branch.return_value = ExistingBranchChoice.DELETE
        result = creator.create(REQUEST)
        repo.delete_branch.assert_called_once_with(BRANCH, force=False)
        repo.create_branch.assert_called_once_with(BRANCH, checkout=True)
        assert result.outcome is BranchOutcome.CREATED
        assert result.status_updated

    def test_existing_branch_cancel(self, creator, repo, prompter, api, dev_status):
        repo.branch_exists.return_value = True
        prompter.resolve_existing_branch.return_value = ExistingBranchChoice.CANCEL
        result = creator.create(REQUEST)
        assert result.outcome is BranchOutcome.CANCELLED
        repo.delete_branch.assert_not_called()
        repo.create_branch.assert_not_called()
        api["update_ticket_status"].assert_not_called()

    def test_empty_repository_initial_commit(self, creator, repo, prompter, api, dev_status):
        repo.head_commit = None
        prompter.resolve_empty_repository.return_value = EmptyRepositoryChoice.INITIAL_COMMIT
        result = creator.create(REQUEST)
        repo.create_initial_commit.assert_called_once_with()
        repo.create_branch.assert_called_once_with(BRANCH, checkout=True)
        assert result.outcome is BranchOutcome.CREATED
        assert result.status_updated

    def test_empty_repository_orphan(self, creator, repo, prompter, api, dev_status):
        repo.head_commit = None
        prompter.resolve_empty_repository.return_value = EmptyRepositoryChoice.ORPHAN
        result = creator.create(REQUEST)
        repo.create_orphan_branch.assert_called_once_with(BRANCH)
        repo.create_branch.assert_not_called()
        api["update_ticket_status"].assert_not_called()
        assert result.outcome is BranchOutcome.ORPHAN

    def test_empty_repository_cancel(self, creator, repo, prompter, api, dev_status):
        repo.head_commit = None
        prompter.resolve_empty_repository.return_value = EmptyRepositoryChoice.CANCEL
        result = creator.create(REQUEST)
        assert result.outcome is BranchOutcome.CANCELLED
        repo.create_initial_commit.assert_not_called()
        repo.create_branch.assert_not_called()


class TestDevInProgress:
    def test_configured_status_needs_no_prompt(self, creator, prompter, api, dev_status):
        creator.create(REQUEST)
        prompter.choose_team.assert_not_called()
        prompter.choose_dev_status.assert_not_called()
        api["fetch_statuses"].assert_not_called()

    def test_legacy_key_is_honoured(self, creator, prompter, api):
        config.set_config("dev_status", "555")
        creator.create(REQUEST)
        prompter.choose_dev_status.assert_not_called()
        assert api["update_ticket_status"].call_args.args[2] == "555"

    def test_prompts_team_then_status_and_persists(self, creator, prompter, api):
        prompter.choose_team.return_value = "7"
        prompter.choose_dev_status.return_value = "133"
        result = creator.create(REQUEST)

        teams = prompter.choose_team.call_args.args[0]
        assert [t.id for t in teams] == ["7"]
        assert api["fetch_statuses"].call_args.args[1] == "7"
        offered = prompter.choose_dev_status.call_args.args[0]
        assert [s.name for s in offered] == ["Ready", "In Progress"]

        assert config.get_selected_team_id() == "7"
        assert config.get_dev_in_progress_status_id() == "133"
        assert set(config.get_status_config()) == {"101", "133"}
        assert result.status_updated

    def test_uses_selected_team(self, creator, prompter, api):
        config.set_config("team", "7")
        prompter.choose_dev_status.return_value = "101"
        creator.create(REQUEST)
        prompter.choose_team.assert_not_called()
        assert api["update_ticket_status"].call_args.args[2] == "101"

    def test_skipping_team_still_creates_branch(self, creator, repo, prompter, api):
        prompter.choose_team.return_value = None
        result = creator.create(REQUEST)
        repo.create_branch.assert_called_once()
        api["fetch_statuses"].assert_not_called()
        api["update_ticket_status"].assert_not_called()
        assert not result.status_updated
        assert config.get_selected_team_id() is None

    def test_skipping_status_stores_merged_config(self, creator, repo, prompter, api):
        config.set_config("team", "7")
        prompter.choose_dev_status.return_value = None
        result = creator.create(REQUEST)
        repo.create_branch.assert_called_once()
        api["update_ticket_status"].assert_not_called()
        assert not result.status_updated
        assert config.get_dev_in_progress_status_id() is None
        assert set(config.get_status_config()) == {"101", "133"}

    def test_status_fetch_failure_is_a_warning(self, creator, repo, prompter, api):
        config.set_config("team", "7")
        api["fetch_statuses"].side_effect = ApiError("GET /Data/StoryStatus failed", 500)
        result = creator.create(REQUEST)
        repo.create_branch.assert_called_once()
        assert result.warnings == ["Failed to fetch statuses: GET /Data/StoryStatus failed (HTTP 500)"]
        assert not result.status_updated

    def test_no_statuses(self, creator, prompter, api):
        config.set_config("team", "7")
        api["fetch_statuses"].return_value = []
        result = creator.create(REQUEST)
        prompter.choose_dev_status.assert_not_called()
        assert result.warnings == ["No statuses found for the selected team."]
