"""Interactive pairing of Trello boards with Planner plans."""

from __future__ import annotations

import logging
from collections.abc import Callable

from trello2planner.models import Board, BoardMap, GroupPlan

logger = logging.getLogger(__name__)


class BoardMapper:
    """Ask the operator which plan each board should be migrated into.

    Each plan can receive at most one board: a chosen plan is removed from the
    choices offered for the following boards. Plans are never created here;
    they must exist in Planner beforehand.
    """

    def __init__(
        self,
        prompt: Callable[[str], str] = input,
        output: Callable[[str], object] = print,
        max_attempts: int = 5,
    ):
        self.prompt = prompt
        self.output = output
        self.max_attempts = max_attempts

    @staticmethod
    def parse_selection(raw: str, choices: int) -> int | None:
        """Return the selected index, or None unless ``0 <= n < choices``"""
        try:
            index = int(raw.strip())
        except (ValueError, AttributeError):
            return None
        if 0 <= index < choices:
            return index
        return None

    def _select(self, board: Board, remaining: list[GroupPlan]) -> int | None:
        for _ in range(self.max_attempts):
            self.output(f"Trello Board: {board.id} - {board.name}")
            self.output("Select Planner Plan to sync to:")
            self.output("")
            for i, plan in enumerate(remaining):
                self.output(f"{i}. {plan}")

            index = self.parse_selection(self.prompt("> "), len(remaining))
            if index is not None:
                return index
            self.output("Invalid input, please try again.")
        return None

    def map_boards(self, boards: list[Board], plans: list[GroupPlan]) -> list[BoardMap]:
        """Prompt for a plan for every board, in board order.

        A board whose selection is still invalid after ``max_attempts`` is left
        unmapped. Once every plan has been assigned, the remaining boards stay
        unmapped as well.
        """
        remaining = list(plans)
        board_maps: list[BoardMap] = []

        for board in boards:
            if not remaining:
                logger.warning(
                    "⚠️  No plans left to map; %d boards remain unmapped",
                    len(boards) - boards.index(board),
                )
                break

            index = self._select(board, remaining)
            if index is None:
                logger.warning(
                    "⚠️  No valid selection after %d attempts, board %s (%s) left unmapped",
                    self.max_attempts,
                    board.id,
                    board.name,
                )
                continue

            plan = remaining.pop(index)
            board_maps.append(BoardMap(board.id, plan.group_id, plan.plan_id))

        if board_maps and len(board_maps) == len(boards):
            logger.info("✅ All Trello boards mapped to Planner plans")
        return board_maps


def plan_for_board(board_maps: list[BoardMap], board_id: str) -> BoardMap | None:
    for board_map in board_maps:
        if board_map.board_id == board_id:
            return board_map
    return None


def format_board_maps(board_maps: list[BoardMap]) -> str:
    if not board_maps:
        return "No board maps defined."
    return "\n".join(str(board_map) for board_map in board_maps)
