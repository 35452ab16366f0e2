"""
Unit tests for TrelloReader fetch operations
"""

import sys
import threading
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest

# Add parent directory to path to import trello2planner module
sys.path.insert(0, str(Path(__file__).parent.parent.parent))

from trello2planner import TrelloReader
from trello2planner.exceptions import TrelloAPIError, TrelloNotFoundError
from trello2planner.models import Board, Card, Organization, TrelloList


@pytest.fixture
def reader():
    reader = TrelloReader(api_key="test_key", token="test_token", max_workers=4)
    with patch.object(reader.rate_limiter, "acquire", return_value=True):
        yield reader


class TestListOrganizations:
    """Test organization listing"""

    def test_parses_organizations(self, reader, simple_board_fixture):
        """Should return Organization models"""
        with patch.object(reader, "_request", return_value=simple_board_fixture["organizations"]):
            orgs = reader.list_organizations()

        assert orgs == [Organization("org_1", "Acme Team", "acmeteam", 2, ["board_1"])]

    def test_empty_account_returns_empty_list(self, reader):
        """No workspaces is a valid answer"""
        with patch.object(reader, "_request", return_value=[]):
            assert reader.list_organizations() == []

    def test_first_entry_without_id_is_failure(self, reader):
        """A payload whose first entry has no id is not trusted"""
        with patch.object(reader, "_request", return_value=[{"displayName": "x"}]):
            assert reader.list_organizations() is None

    def test_non_list_payload_is_failure(self, reader):
        with patch.object(reader, "_request", return_value={"message": "odd"}):
            assert reader.list_organizations() is None

    def test_api_error_returns_none(self, reader):
        """API errors are logged with the server body, not raised"""
        error = TrelloAPIError("boom", status_code=400, response_text="invalid token")
        with patch.object(reader, "_request", side_effect=error):
            assert reader.list_organizations() is None


class TestFetchBoards:
    """Test concurrent board fetching"""

    def test_fetch_board(self, reader, simple_board_fixture):
        with patch.object(reader, "_request", return_value=simple_board_fixture["board"]) as req:
            board = reader.fetch_board("board_1")

        assert board.name == "Product Roadmap"
        assert [lst.name for lst in board.lists] == ["To Do", "Done"]
        assert req.call_args.args == ("boards/board_1", {"lists": "all", "fields": "name"})

    def test_fetch_boards_dedupes_and_keeps_order(self, reader):
        """Boards shared by two orgs are fetched once, results in submission order"""
        orgs = [
            Organization("o1", "One", board_ids=["b1", "b2"]),
            Organization("o2", "Two", board_ids=["b2", "b3"]),
        ]
        requested = []
        lock = threading.Lock()

        def fake_fetch(board_id):
            with lock:
                requested.append(board_id)
            return Board(board_id, f"Board {board_id}")

        with patch.object(reader, "fetch_board", side_effect=fake_fetch):
            boards = reader.fetch_boards(orgs)

        assert sorted(requested) == ["b1", "b2", "b3"]
        assert [b.id for b in boards] == ["b1", "b2", "b3"]

    def test_failed_boards_are_omitted(self, reader):
        orgs = [Organization("o1", "One", board_ids=["b1", "b2"])]

        with patch.object(
            reader, "fetch_board", side_effect=lambda bid: None if bid == "b1" else Board(bid, "")
        ):
            boards = reader.fetch_boards(orgs)

        assert [b.id for b in boards] == ["b2"]


class TestCardsWithComments:
    """Test card and comment fetching"""

    def test_cards_get_their_comments(self, reader, simple_board_fixture):
        """Each card gets its own comments in the order Trello returns them"""
        comments = simple_board_fixture["comments"]

        def fake_paginated(endpoint, params=None):
            if endpoint == "boards/board_1/cards/all":
                assert params == {"attachments": "true", "checklists": "all", "fields": "all"}
                return simple_board_fixture["cards"]
            card_id = endpoint.split("/")[1]
            assert params == {"filter": "commentCard"}
            return comments[card_id]

        with patch.object(reader, "_paginated_request", side_effect=fake_paginated):
            cards = reader.fetch_cards_with_comments("board_1")

        assert [c.id for c in cards] == ["card_1", "card_2"]
        assert [c.text for c in cards[0].comments] == ["Looks good to me"]
        assert cards[1].comments == []
        assert len(cards[0].attachments) == 2

    def test_comment_failure_keeps_card(self, reader, simple_board_fixture):
        """A card whose comments cannot be fetched is kept without comments"""

        def fake_paginated(endpoint, params=None):
            if endpoint.startswith("boards/"):
                return simple_board_fixture["cards"]
            raise TrelloNotFoundError("gone", status_code=404)

        with patch.object(reader, "_paginated_request", side_effect=fake_paginated):
            cards = reader.fetch_cards_with_comments("board_1")

        assert len(cards) == 2
        assert all(card.comments == [] for card in cards)

    def test_card_fetch_failure_returns_none(self, reader):
        with patch.object(reader, "_paginated_request", side_effect=TrelloAPIError("down")):
            assert reader.fetch_cards_with_comments("board_1") is None

    def test_malformed_card_returns_none(self, reader):
        """A card without idList cannot be placed and fails the fetch"""
        with patch.object(reader, "_paginated_request", return_value=[{"id": "c1"}]):
            assert reader.fetch_cards_with_comments("board_1") is None


class TestAssembleBoard:
    """Test distributing cards into lists"""

    def test_cards_land_in_their_lists_in_order(self):
        """Card order within each list follows input order"""
        board = Board("b1", "Board", [TrelloList("l1", "One"), TrelloList("l2", "Two")])
        cards = [
            Card("c1", "l2", "first in two"),
            Card("c2", "l1", "first in one"),
            Card("c3", "l2", "second in two"),
        ]

        assembled = TrelloReader.assemble_board(board, cards)

        assert [c.id for c in assembled.lists[0].cards] == ["c2"]
        assert [c.id for c in assembled.lists[1].cards] == ["c1", "c3"]
        # Every card appears exactly once
        assert sorted(c.id for c in assembled.cards()) == ["c1", "c2", "c3"]

    def test_unknown_list_is_dropped(self):
        """A card pointing at a missing list is logged and left out"""
        board = Board("b1", "Board", [TrelloList("l1", "One")])
        cards = [Card("c1", "l1", "ok"), Card("c2", "nope", "orphan")]

        assembled = TrelloReader.assemble_board(board, cards)

        assert [c.id for c in assembled.cards()] == ["c1"]

    def test_input_board_not_modified(self):
        board = Board("b1", "Board", [TrelloList("l1", "One")])
        TrelloReader.assemble_board(board, [Card("c1", "l1", "x")])
        assert board.lists[0].cards == []


class TestDownloadAttachment:
    """Test attachment downloads"""

    def test_uses_oauth_header(self, reader):
        """Downloads authenticate with an OAuth header, not query params"""
        response = MagicMock()
        response.content = b"0123456789"
        response.raise_for_status.return_value = None

        with patch("requests.get", return_value=response) as mock_get:
            content = reader.download_attachment("https://trello.com/download/plan.txt")

        assert content == b"0123456789"
        headers = mock_get.call_args.kwargs["headers"]
        assert headers["Authorization"] == (
            'OAuth oauth_consumer_key="test_key", oauth_token="test_token"'
        )
        assert mock_get.call_args.kwargs["params"] is None

    def test_failure_returns_none(self, reader):
        with patch.object(reader, "_send", side_effect=TrelloNotFoundError("gone", 404)):
            assert reader.download_attachment("https://trello.com/x") is None
