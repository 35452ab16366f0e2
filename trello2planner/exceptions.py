"""Custom exception classes for trello2planner.

This module defines the exception hierarchy for Trello API errors, Microsoft
Graph (Planner) API errors and configuration problems.
"""

from __future__ import annotations


class TrelloAPIError(Exception):
    """Base exception for Trello API errors"""

    def __init__(
        self, message: str, status_code: int | None = None, response_text: str | None = None
    ):
        self.status_code = status_code
        self.response_text = response_text
        super().__init__(message)


class TrelloAuthenticationError(TrelloAPIError):
    """Raised when API credentials are invalid or expired (401/403)"""

    pass


class TrelloNotFoundError(TrelloAPIError):
    """Raised when a board, card, or resource is not found (404)"""

    pass


class TrelloRateLimitError(TrelloAPIError):
    """Raised when rate limit is exceeded (429) after retries"""

    pass


class TrelloServerError(TrelloAPIError):
    """Raised when Trello's servers return an error (500/502/503/504)"""

    pass


class GraphAPIError(Exception):
    """Base exception for Microsoft Graph errors.

    Attributes:
        status_code: HTTP status returned by Graph (None for network errors)
        response_text: Raw response body, which carries Graph's error object

    Example:
        >>> try:
        ...     planner.delete_task(task_id, etag)
        ... except GraphAPIError as e:
        ...     print(e.status_code, e.response_text)
    """

    def __init__(
        self, message: str, status_code: int | None = None, response_text: str | None = None
    ):
        self.status_code = status_code
        self.response_text = response_text
        super().__init__(message)


class GraphAuthenticationError(GraphAPIError):
    """Raised when the access token is rejected (401/403) or sign-in fails.

    Resolution:
        Check GRAPH_CLIENT_ID / GRAPH_TENANT_ID and that the app registration
        allows public client flows and grants the requested scopes.
    """

    pass


class GraphNotFoundError(GraphAPIError):
    """Raised when a group, plan, task or thread does not exist (404)"""

    pass


class GraphPreconditionFailedError(GraphAPIError):
    """Raised when a concurrency token (etag) no longer matches (409/412).

    The resource changed on the server since the token was read; re-read it
    before retrying an update or delete.
    """

    pass


class GraphRateLimitError(GraphAPIError):
    """Raised when Graph throttling (429) persists after retries"""

    pass


class GraphServerError(GraphAPIError):
    """Raised when Graph returns 500/502/503/504 after retries"""

    pass


class ConfigurationError(Exception):
    """Raised when required settings are missing or malformed"""

    pass
