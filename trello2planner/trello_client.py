"""Trello API client with rate limiting and retry logic."""

from __future__ import annotations

import logging
from typing import Any, cast

import requests

from trello2planner.exceptions import (
    TrelloAPIError,
    TrelloAuthenticationError,
    TrelloNotFoundError,
    TrelloRateLimitError,
    TrelloServerError,
)
from trello2planner.fanout import fan_out
from trello2planner.models import Board, Card, Comment, Organization, TrelloList
from trello2planner.rate_limiter import RateLimiter
from trello2planner.retry import send_with_retry

logger = logging.getLogger(__name__)

# Errors raised while turning a JSON payload into models
PARSE_ERRORS = (KeyError, TypeError, ValueError, AttributeError)


class TrelloErrors:
    """Typed exceptions for a failed request to ``url``"""

    def __init__(self, url: str):
        self.url = url

    def status_error(self, status_code: int, response_text: str) -> TrelloAPIError:
        if status_code == 401:
            return TrelloAuthenticationError(
                "Invalid API credentials. Check your TRELLO_API_KEY and TRELLO_TOKEN.\n"
                "Get credentials at: https://trello.com/power-ups/admin",
                status_code=status_code,
                response_text=response_text,
            )
        if status_code == 403:
            return TrelloAuthenticationError(
                f"Access forbidden to resource: {self.url}\n"
                "Your API token may not have permission to access it.",
                status_code=status_code,
                response_text=response_text,
            )
        if status_code == 404:
            return TrelloNotFoundError(
                f"Resource not found: {self.url}",
                status_code=status_code,
                response_text=response_text,
            )
        return TrelloAPIError(
            f"HTTP {status_code} error for {self.url}: {response_text[:200]}",
            status_code=status_code,
            response_text=response_text,
        )

    def exhausted_error(
        self, status_code: int, response_text: str, attempts: int
    ) -> TrelloAPIError:
        if status_code == 429:
            return TrelloRateLimitError(
                f"Rate limit exceeded after {attempts} retry attempts.\n"
                "Trello's API rate limit: 100 requests per 10 seconds.",
                status_code=status_code,
                response_text=response_text,
            )
        return TrelloServerError(
            f"Trello server error (HTTP {status_code}) persisted after {attempts} retries.",
            status_code=status_code,
            response_text=response_text,
        )

    def network_error(self, error: requests.RequestException, attempts: int) -> TrelloAPIError:
        return TrelloAPIError(
            f"Network error after {attempts} attempts: {error}\n"
            "Check your internet connection and try again."
        )


class TrelloReader:
    """Read organizations, boards, cards and attachments from the Trello API

    Trello API rate limits (per token):
    - 100 requests per 10 seconds = 10 req/sec sustained

    We use 9 req/sec so that bursts of concurrent requests stay under the limit.

    Public fetch methods never raise for API or payload problems: they log the
    server's error body and return None (or omit the failed item), leaving the
    caller to decide whether to skip or abort.
    """

    def __init__(
        self,
        api_key: str,
        token: str,
        rate_limiter: RateLimiter | None = None,
        max_workers: int = 16,
        verify_ssl: bool = True,
    ):
        self.api_key = api_key
        self.token = token
        self.base_url = "https://api.trello.com/1"
        self.max_workers = max_workers
        self.verify_ssl = verify_ssl
        self.rate_limiter = rate_limiter or RateLimiter(requests_per_second=9)

    def _send(
        self, url: str, params: dict | None = None, headers: dict | None = None
    ) -> requests.Response:
        """Rate-limited GET with retry logic for transient failures"""
        return send_with_retry(
            lambda: requests.get(
                url, params=params, headers=headers, timeout=30, verify=self.verify_ssl
            ),
            self.rate_limiter,
            TrelloErrors(url),
        )

    def _request(self, endpoint: str, params: dict | None = None) -> Any:
        """Make authenticated request to Trello API and decode the JSON body"""
        auth_params = {"key": self.api_key, "token": self.token}
        if params:
            auth_params.update(params)

        response = self._send(f"{self.base_url}/{endpoint}", params=auth_params)
        try:
            return cast(Any, response.json())
        except ValueError as e:
            raise TrelloAPIError(
                f"Response from {endpoint} is not valid JSON: {e}",
                status_code=response.status_code,
                response_text=response.text,
            ) from e

    def _paginated_request(self, endpoint: str, params: dict | None = None) -> list[dict]:
        """Make paginated requests to handle Trello's 1000-item limit

        Trello API limits responses to 1000 items. This method automatically
        paginates using the 'before' parameter to fetch all results.
        """
        all_items: list[dict] = []
        request_params = params.copy() if params else {}
        request_params["limit"] = 1000  # Maximum allowed by Trello

        while True:
            page_items = self._request(endpoint, request_params)

            if not isinstance(page_items, list):
                return cast(list[dict], page_items)

            if not page_items:
                break

            all_items.extend(page_items)

            if len(page_items) < 1000:
                break

            # Trello accepts IDs directly for 'before' (converts to timestamp internally)
            last_item_id = page_items[-1].get("id")
            if not last_item_id:
                break

            request_params["before"] = last_item_id

        return all_items

    @staticmethod
    def _log_api_error(action: str, error: TrelloAPIError) -> None:
        logger.error("Error %s: %s", action, error)
        if error.response_text:
            logger.error("Server said: %s", error.response_text)

    def validate_credentials(self) -> dict:
        """Verify credentials work by fetching the token's member.

        Raises:
            TrelloAuthenticationError: If API credentials are invalid
            TrelloAPIError: If other API errors occur
        """
        return cast(dict, self._request("members/me", {"fields": "id,username,fullName"}))

    def list_organizations(self) -> list[Organization] | None:
        """List the workspaces visible to the token.

        Returns:
            Organizations (empty for an account without workspaces), or None if
            the request failed or the payload could not be parsed
        """
        try:
            data = self._request("members/me/organizations")
        except TrelloAPIError as e:
            self._log_api_error("retrieving organizations", e)
            return None

        if not isinstance(data, list):
            logger.error("Unable to retrieve organizations: expected a list, got %s", type(data))
            return None

        if not data:
            logger.warning("No organizations found for this Trello account")
            return []

        # A first entry without an id means the payload is not what we expect,
        # not that the account is empty
        if not isinstance(data[0], dict) or data[0].get("id") is None:
            logger.error("Unable to parse organizations from Trello response")
            return None

        try:
            organizations = [Organization.from_api(entry) for entry in data]
        except PARSE_ERRORS as e:
            logger.error("Unable to parse organizations from Trello response: %s", e)
            return None

        logger.info(f"🏢 Total organizations: {len(organizations)}")
        for org in organizations:
            logger.info(
                f"   {org.id} - {org.display_name} ({org.members_count} members, "
                f"{len(org.board_ids)} boards)"
            )
        return organizations

    def fetch_board(self, board_id: str) -> Board | None:
        """Fetch one board with all of its lists (open and closed)"""
        try:
            data = self._request(f"boards/{board_id}", {"lists": "all", "fields": "name"})
            return Board.from_api(data)
        except TrelloAPIError as e:
            self._log_api_error(f"retrieving board {board_id}", e)
        except PARSE_ERRORS as e:
            logger.error("Unable to parse board %s: %s", board_id, e)
        return None

    def fetch_boards(self, organizations: list[Organization]) -> list[Board]:
        """Fetch every board of every organization concurrently.

        All board requests are submitted at once and collected in submission
        order. Boards that fail to load are omitted.
        """
        board_ids: list[str] = []
        for org in organizations:
            for board_id in org.board_ids:
                if board_id not in board_ids:
                    board_ids.append(board_id)

        logger.info(f"📋 Fetching {len(board_ids)} boards...")
        results = fan_out(self.fetch_board, board_ids, self.max_workers)

        boards = [board for board in results if board is not None]
        if len(boards) < len(board_ids):
            logger.warning(f"⚠️  {len(board_ids) - len(boards)} boards could not be fetched")
        return boards

    def fetch_card_comments(self, card: Card) -> list[Comment] | None:
        """Fetch the comments of one card in the order Trello returns them"""
        try:
            actions = self._paginated_request(
                f"cards/{card.id}/actions", {"filter": "commentCard"}
            )
            return [Comment.from_api(action) for action in actions]
        except TrelloAPIError as e:
            self._log_api_error(f"retrieving comments for card {card.id}", e)
        except PARSE_ERRORS as e:
            logger.error("Unable to parse comments for card %s: %s", card.id, e)
        return None

    def fetch_cards_with_comments(self, board_id: str) -> list[Card] | None:
        """Get all cards of a board with attachments, checklists and comments

        One paginated request returns every card with attachments and
        checklists inlined; comments need one request per card, which are
        issued concurrently. A card whose comment fetch fails is kept without
        comments.
        """
        try:
            raw_cards = self._paginated_request(
                f"boards/{board_id}/cards/all",
                {"attachments": "true", "checklists": "all", "fields": "all"},
            )
            cards = [Card.from_api(raw) for raw in raw_cards]
        except TrelloAPIError as e:
            self._log_api_error(f"retrieving cards for board {board_id}", e)
            return None
        except PARSE_ERRORS as e:
            logger.error("Unable to parse cards for board %s: %s", board_id, e)
            return None

        comment_lists = fan_out(self.fetch_card_comments, cards, self.max_workers)
        for card, comments in zip(cards, comment_lists):
            if comments is not None:
                card.comments = comments

        logger.info(
            f"🎴 Board {board_id}: {len(cards)} cards, "
            f"{sum(len(c.comments) for c in cards)} comments"
        )
        return cards

    @staticmethod
    def assemble_board(board: Board, cards: list[Card]) -> Board:
        """Distribute a flat card list into the board's lists by list id.

        Card order within each list follows the input order. A card pointing at
        a list that is not on the board is logged as an internal error and left
        out.
        """
        lists = [TrelloList(lst.id, lst.name, lst.closed, []) for lst in board.lists]
        lists_by_id = {lst.id: lst for lst in lists}

        for card in cards:
            target = lists_by_id.get(card.list_id)
            if target is None:
                logger.error(
                    "Internal error: card %s (%s) references list %s, which is not on board %s",
                    card.id,
                    card.name,
                    card.list_id,
                    board.id,
                )
                continue
            target.cards.append(card)

        return Board(board.id, board.name, lists)

    def download_attachment(self, url: str) -> bytes | None:
        """Download the raw bytes of an uploaded attachment.

        The download endpoint ignores key/token query parameters and wants an
        OAuth Authorization header instead.
        """
        headers = {
            "Authorization": (
                f'OAuth oauth_consumer_key="{self.api_key}", oauth_token="{self.token}"'
            )
        }
        try:
            return self._send(url, headers=headers).content
        except TrelloAPIError as e:
            self._log_api_error(f"downloading attachment {url}", e)
            return None
