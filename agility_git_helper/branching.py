"""Creating a git branch for a ticket and moving the ticket to "dev in progress".

``BranchCreator.create`` runs four steps:

1. make sure a dev-in-progress status is known, asking for a team and a status
   when none is flagged (the user may skip)
2. resolve a branch that already exists: switch to it, delete it, or cancel
3. resolve a repository with no commits: initial commit, orphan branch, or cancel
4. create and check out the branch, then update the ticket status

A failed status update never undoes the branch; it is returned in
``BranchResult.status_error`` instead.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Protocol, Sequence

from . import config
from .agility_api import AgilityClient, fetch_statuses, fetch_teams, update_ticket_status
from .branch_names import generate_branch_name, ticket_digits
from .errors import AgilityError, get_error_message
from .git import GitRepository
from .models import StatusConfig, TeamInfo, ViewMode
from .statuses import merge_status_config, set_dev_in_progress

logger = logging.getLogger("agility_git_helper.branching")


class BranchOutcome(str, Enum):
    CREATED = "created"
    SWITCHED = "switched"
    ORPHAN = "orphan"
    CANCELLED = "cancelled"


class ExistingBranchChoice(str, Enum):
    SWITCH = "switch"
    DELETE = "delete"
    CANCEL = "cancel"


class EmptyRepositoryChoice(str, Enum):
    INITIAL_COMMIT = "initial-commit"
    ORPHAN = "orphan"
    CANCEL = "cancel"


class Prompter(Protocol):
    """User decisions needed while creating a branch. Returning None means skip."""

    def choose_team(self, teams: Sequence[TeamInfo]) -> str | None: ...

    def choose_dev_status(self, statuses: Sequence[StatusConfig]) -> str | None: ...

    def resolve_existing_branch(self, branch_name: str) -> ExistingBranchChoice: ...

    def resolve_empty_repository(self, branch_name: str) -> EmptyRepositoryChoice: ...


@dataclass(frozen=True)
class BranchRequest:
    ticket_number: str
    title: str | None = None
    asset_id: str | None = None
    asset_type: str = "Story"
    owner_id: str | None = None

    @property
    def ticket_id(self) -> str:
        """Remote id to update: the asset id, else the digits of the number."""
        return self.asset_id or ticket_digits(self.ticket_number)


@dataclass
class BranchResult:
    branch_name: str
    outcome: BranchOutcome
    status_updated: bool = False
    owner_added: bool = False
    status_error: str | None = None
    warnings: list[str] = field(default_factory=list)

    @property
    def partial(self) -> bool:
        """Branch is in place but the ticket status could not be changed."""
        return self.status_error is not None


class BranchCreator:
    def __init__(
        self,
        client_factory: Callable[[], AgilityClient],
        repository: GitRepository,
        prompter: Prompter,
    ) -> None:
        self._client_factory = client_factory
        self._client: AgilityClient | None = None
        self.repository = repository
        self.prompter = prompter

    @property
    def client(self) -> AgilityClient:
        if self._client is None:
            self._client = self._client_factory()
        return self._client

    def close(self) -> None:
        if self._client is not None:
            self._client.close()
            self._client = None

    def __enter__(self) -> BranchCreator:
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()

    def create(self, request: BranchRequest) -> BranchResult:
        warnings: list[str] = []
        dev_status_id = self.ensure_dev_in_progress(warnings)

        branch_name = generate_branch_name(request.ticket_number, request.title)
        result = BranchResult(branch_name, BranchOutcome.CREATED, warnings=warnings)
        repo = self.repository

        if repo.branch_exists(branch_name):
            choice = self.prompter.resolve_existing_branch(branch_name)
            if choice is ExistingBranchChoice.SWITCH:
                repo.checkout(branch_name)
                result.outcome = BranchOutcome.SWITCHED
                return result
            if choice is ExistingBranchChoice.DELETE:
                repo.delete_branch(branch_name, force=False)
            else:
                result.outcome = BranchOutcome.CANCELLED
                return result

        if repo.head_commit is None:
            choice = self.prompter.resolve_empty_repository(branch_name)
            if choice is EmptyRepositoryChoice.INITIAL_COMMIT:
                repo.create_initial_commit()
            elif choice is EmptyRepositoryChoice.ORPHAN:
                repo.create_orphan_branch(branch_name)
                result.outcome = BranchOutcome.ORPHAN
                return result
            else:
                result.outcome = BranchOutcome.CANCELLED
                return result

        repo.create_branch(branch_name, checkout=True)

        if dev_status_id and request.ticket_id:
            self._update_status(request, dev_status_id, result)
        return result

    def _update_status(self, request: BranchRequest, status_id: str, result: BranchResult) -> None:
        try:
            update_ticket_status(
                self.client,
                request.ticket_id,
                status_id,
                request.asset_type,
                request.owner_id,
            )
        except AgilityError as e:
            logger.warning("Branch %s created but status update failed: %s", result.branch_name, e)
            result.status_error = get_error_message(e)
            return
        result.status_updated = True
        result.owner_added = bool(request.owner_id)

    def ensure_dev_in_progress(self, warnings: list[str]) -> str | None:
        """Return the dev-in-progress status id, asking the user to pick one if unset."""
        status_id = config.get_dev_in_progress_status_id()
        if status_id:
            return status_id

        try:
            team_id = config.get_selected_team_id()
            if not team_id:
                team_id = self.prompter.choose_team(fetch_teams(self.client))
                if not team_id:
                    return None
                config.set_selected_id(ViewMode.TEAM_TICKETS, team_id)

            fetched = fetch_statuses(self.client, team_id)
        except AgilityError as e:
            logger.warning("Could not resolve dev-in-progress status: %s", e)
            warnings.append(f"Failed to fetch statuses: {get_error_message(e)}")
            return None

        if not fetched:
            warnings.append("No statuses found for the selected team.")
            return None

        merged = merge_status_config(config.get_status_config(), fetched)
        config.save_status_config(merged)

        chosen = self.prompter.choose_dev_status([merged[s.id] for s in fetched])
        if not chosen:
            return None
        config.save_status_config(set_dev_in_progress(merged, chosen))
        logger.info("Dev-in-progress status set to %s", chosen)
        return chosen
