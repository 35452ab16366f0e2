"""
Unit tests for Trello's 1000-item pagination
"""

import sys
from pathlib import Path
from unittest.mock import patch

# Add parent directory to path to import trello2planner module
sys.path.insert(0, str(Path(__file__).parent.parent.parent))

from trello2planner import TrelloReader


class TestPagination:
    """Test _paginated_request with the 'before' parameter"""

    def test_single_page(self):
        """Fewer than 1000 items means no further request"""
        reader = TrelloReader(api_key="k", token="t")
        page = [{"id": f"c{i}"} for i in range(5)]

        with patch.object(reader, "_request", return_value=page) as mock_request:
            result = reader._paginated_request("boards/b1/cards/all")

        assert result == page
        assert mock_request.call_count == 1
        assert mock_request.call_args.args[1]["limit"] == 1000

    def test_multiple_pages_use_before(self):
        """A full page triggers another request before the last id"""
        reader = TrelloReader(api_key="k", token="t")
        first = [{"id": f"a{i}"} for i in range(1000)]
        second = [{"id": f"b{i}"} for i in range(3)]
        seen_params = []

        def fake_request(endpoint, params):
            seen_params.append(dict(params))
            return first if len(seen_params) == 1 else second

        with patch.object(reader, "_request", side_effect=fake_request):
            result = reader._paginated_request("cards/c1/actions", {"filter": "commentCard"})

        assert len(result) == 1003
        assert "before" not in seen_params[0]
        assert seen_params[1]["before"] == "a999"
        assert seen_params[1]["filter"] == "commentCard"

    def test_empty_result(self):
        reader = TrelloReader(api_key="k", token="t")
        with patch.object(reader, "_request", return_value=[]):
            assert reader._paginated_request("cards/c1/actions") == []

    def test_does_not_mutate_caller_params(self):
        """The caller's params dict is copied, not modified"""
        reader = TrelloReader(api_key="k", token="t")
        params = {"filter": "commentCard"}

        with patch.object(reader, "_request", return_value=[]):
            reader._paginated_request("cards/c1/actions", params)

        assert params == {"filter": "commentCard"}
