"""Error types for ag.

Every error is a ``click.ClickException`` so that anything escaping a command is
printed as a one-line message instead of a traceback.
"""

from __future__ import annotations

import click


class AgilityError(click.ClickException):
    """Base class for all ag errors."""

    code = "AGILITY_ERROR"

    def __init__(self, message: str) -> None:
        super().__init__(message)


class ConfigurationError(AgilityError):
    """Instance URL or access token missing."""

    code = "CONFIGURATION_ERROR"


class ApiError(AgilityError):
    """Non-2xx response from the Agility REST API."""

    code = "API_ERROR"

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        response_body: str | None = None,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.response_body = response_body

    def format_message(self) -> str:
        if self.status_code:
            return f"{self.message} (HTTP {self.status_code})"
        return self.message


class NotFoundError(AgilityError):
    """A lookup (repository, ticket, status) had no match."""

    code = "NOT_FOUND"

    def __init__(self, resource_type: str, identifier: str) -> None:
        super().__init__(f"{resource_type} not found: {identifier}")
        self.resource_type = resource_type
        self.identifier = identifier


class GitError(AgilityError):
    """A git command or branch operation failed."""

    code = "GIT_ERROR"


def get_error_message(error: BaseException) -> str:
    """Return a user-facing message for any exception."""
    if isinstance(error, click.ClickException):
        return error.format_message()
    return str(error) or error.__class__.__name__
