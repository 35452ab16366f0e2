"""Trello to Planner migration workflow."""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path

from trello2planner.board_mapper import BoardMapper, format_board_maps, plan_for_board
from trello2planner.fanout import fan_out
from trello2planner.file_registry import FileMetaRegistry
from trello2planner.models import Board, BoardMap, Card, FileMeta, flatten_checklists
from trello2planner.planner_client import PlannerClient
from trello2planner.planner_payloads import ExternalReference, TaskDetails
from trello2planner.snapshots import SnapshotStore
from trello2planner.trello_client import PARSE_ERRORS, TrelloReader

logger = logging.getLogger(__name__)

CONFIRMATION_PHRASE = "understood"
DATA_EXPORT = "data-export"
UPLOAD_STATE = "graph-upload-state"


@dataclass
class MigrationState:
    """Everything the operator has loaded or decided so far in a session."""

    boards: list[Board] | None = None
    board_maps: list[BoardMap] = field(default_factory=list)
    uploaded_metas: list[FileMeta] = field(default_factory=list)
    lock: threading.Lock = field(default_factory=threading.Lock, repr=False)


@dataclass
class SyncReport:
    boards: int = 0
    lists: int = 0
    cards: int = 0
    tasks_created: int = 0
    tasks_with_attachments: int = 0
    comments_posted: int = 0
    comments_failed: int = 0
    skipped_boards: list[str] = field(default_factory=list)
    failed_card_ids: list[str] = field(default_factory=list)

    def log_summary(self) -> None:
        logger.info("=" * 60)
        logger.info("📊 Sync summary")
        logger.info(f"   Counted boards: {self.boards}")
        logger.info(f"   Counted lists: {self.lists}")
        logger.info(f"   Counted cards: {self.cards}")
        logger.info(f"   Tasks created: {self.tasks_created}")
        logger.info(f"   Tasks with attachments: {self.tasks_with_attachments}")
        logger.info(f"   Comments posted: {self.comments_posted}")
        if self.comments_failed:
            logger.warning(f"   Comments failed: {self.comments_failed}")
        for board_id in self.skipped_boards:
            logger.warning(f"   Skipped unmapped board: {board_id}")
        if self.failed_card_ids:
            logger.error("The following cards had unrecoverable errors:")
            for card_id in self.failed_card_ids:
                logger.error(f"   {card_id}")
        logger.info("=" * 60)


class TrelloToPlannerMigrator:
    """Drive the migration one operator-chosen step at a time.

    The steps build on each other through ``state``: boards are downloaded
    (or loaded), mapped to plans, their attachments uploaded, and finally
    every list and card is recreated as buckets and tasks. Each step checks
    its own preconditions and logs what is missing instead of raising.

    Destructive or non-idempotent steps (sync, clean) require the operator to
    type ``understood``.
    """

    def __init__(
        self,
        trello: TrelloReader,
        planner: PlannerClient,
        registry: FileMetaRegistry,
        store: SnapshotStore,
        mapper: BoardMapper | None = None,
        prompt: Callable[[str], str] = input,
        output: Callable[[str], object] = print,
        max_workers: int = 16,
    ):
        self.trello = trello
        self.planner = planner
        self.registry = registry
        self.store = store
        self.prompt = prompt
        self.output = output
        self.mapper = mapper or BoardMapper(prompt=prompt, output=output)
        self.max_workers = max_workers
        self.state = MigrationState()

    def confirm(self, *warnings: str) -> bool:
        for line in warnings:
            self.output(line)
        self.output(f"Please type '{CONFIRMATION_PHRASE}' and press enter to continue.")
        if self.prompt("> ").strip() != CONFIRMATION_PHRASE:
            logger.warning("Aborting...")
            return False
        return True

    # Step 1: Trello data

    def _board_with_cards(self, board: Board) -> Board | None:
        cards = self.trello.fetch_cards_with_comments(board.id)
        if cards is None:
            return None
        return self.trello.assemble_board(board, cards)

    def download_trello_boards(self) -> list[Board] | None:
        """Download every board of every organization with all card data.

        Also renders and persists the attachment catalog, and writes the full
        board export so later sessions can ``load_boards`` instead.
        """
        organizations = self.trello.list_organizations()
        if organizations is None:
            logger.error("❌ Unable to list Trello organizations")
            return None

        boards = self.trello.fetch_boards(organizations)
        results = fan_out(self._board_with_cards, boards, self.max_workers)

        assembled = []
        for board, result in zip(boards, results):
            if result is None:
                logger.error(
                    "Skipping board %s (%s): cards could not be fetched", board.id, board.name
                )
                continue
            assembled.append(result)

        self.state.boards = assembled
        logger.info(f"✅ Downloaded {len(assembled)} boards")

        if assembled:
            self.registry.render(assembled)
            self.registry.save()
            self.registry.log_statistics()

        path = self.store.save(DATA_EXPORT, [board.to_dict() for board in assembled])
        logger.info(f"💾 Board export saved to {path}")
        return assembled

    def load_boards(self, filename: str | None = None) -> bool:
        filename = filename or SnapshotStore.latest_name(DATA_EXPORT)
        data = self.store.load(filename)
        if data is None:
            return False

        try:
            boards = [Board.from_api(item) for item in data]
        except PARSE_ERRORS as e:
            logger.error("Board export %s is malformed: %s", filename, e)
            return False

        self.state.boards = boards
        logger.info(f"📂 Loaded {len(boards)} boards from {filename}")
        return True

    def log_board_statistics(self) -> None:
        if self.state.boards is None:
            logger.warning("Boards not loaded")
            return

        cards = [card for board in self.state.boards for card in board.cards()]
        logger.info("📋 Trello data:")
        logger.info(f"   Boards: {len(self.state.boards)}")
        logger.info(f"   Lists: {sum(len(board.lists) for board in self.state.boards)}")
        logger.info(f"   Cards: {len(cards)}")
        logger.info(f"   Archived cards: {sum(1 for card in cards if card.closed)}")
        logger.info(f"   Attachments: {sum(len(card.attachments) for card in cards)}")
        logger.info(f"   Comments: {sum(len(card.comments) for card in cards)}")
        logger.info(f"   Checklists: {sum(len(card.checklists) for card in cards)}")

    # Steps 2 and 3: plans and mapping

    def discover_plans(self) -> int:
        plans = self.planner.enumerate_plans()
        self.planner.log_plans()
        return len(plans)

    def map_boards(self) -> list[BoardMap] | None:
        if not self.state.boards or not self.planner.plans:
            logger.error("❌ Need to load both: Trello boards and Planner plans")
            logger.error("   Plans must exist in Planner already; this tool does not create plans")
            return None

        self.state.board_maps = self.mapper.map_boards(self.state.boards, self.planner.plans)
        self.output(self.format_board_maps())
        return self.state.board_maps

    def format_board_maps(self) -> str:
        return format_board_maps(self.state.board_maps)

    # Step 4: attachments

    def _record_upload(self, meta: FileMeta) -> None:
        with self.state.lock:
            self.state.uploaded_metas.append(meta)

    def _upload_one(self, meta: FileMeta) -> FileMeta:
        attachment = meta.attachment
        if attachment.is_empty:
            logger.info(f"{attachment.id} - Empty attachment, skipping upload")
            self.registry.mark_complete(meta)
            self._record_upload(meta)
            return meta

        board_map = plan_for_board(self.state.board_maps, meta.origin_board)
        if board_map is None:
            logger.warning(
                "No plan mapped for board %s, attachment %s not uploaded",
                meta.origin_board,
                attachment.id,
            )
            self.registry.mark_uploaded(meta, None)
            self._record_upload(meta)
            return meta

        stream = self.registry.open_for_read(meta)
        if stream is None:
            logger.error(
                f"Unable to upload {attachment.id} - {meta.file_id} - {attachment.file_name}"
            )
            self.registry.mark_uploaded(meta, None)
            self._record_upload(meta)
            return meta

        with stream:
            url = self.planner.upload_file(board_map.plan_id, attachment.file_name, stream)

        self.registry.mark_uploaded(meta, url)
        self._record_upload(meta)
        return meta

    def upload_attachments(self) -> int | None:
        """Upload every cataloged attachment to the drive of its board's plan.

        Returns:
            Number of attachments that received a Planner URL, or None if the
            step could not run
        """
        if not self.state.board_maps:
            logger.error("❌ No board maps defined")
            return None
        if not self.registry.loaded:
            logger.error("❌ File metadata not loaded")
            return None
        if self.state.uploaded_metas:
            logger.error("❌ Files already uploaded this session (reset the upload state first)")
            return None

        metas = list((self.registry.entries or {}).values())
        logger.info(f"⬆️  Uploading {len(metas)} attachments...")
        results = fan_out(self._upload_one, metas, self.max_workers)

        uploaded = sum(1 for meta in results if meta.graph_url)
        logger.info(f"✅ {uploaded}/{len(metas)} attachments uploaded to Planner")
        self.save_upload_state()
        return uploaded

    def save_upload_state(self) -> Path | None:
        with self.state.lock:
            if not self.state.uploaded_metas:
                logger.warning("No upload state to save")
                return None
            data = [meta.to_dict() for meta in self.state.uploaded_metas]
        path = self.store.save(UPLOAD_STATE, data)
        logger.info(f"💾 Upload state saved to {path}")
        return path

    def load_upload_state(self, filename: str | None = None) -> bool:
        filename = filename or SnapshotStore.latest_name(UPLOAD_STATE)
        data = self.store.load(filename)
        if data is None:
            logger.error(f"Error loading upload state, ensure {filename} exists")
            return False

        try:
            metas = [FileMeta.from_dict(item) for item in data]
        except PARSE_ERRORS as e:
            logger.error("Upload state %s is malformed: %s", filename, e)
            return False

        with self.state.lock:
            self.state.uploaded_metas = metas
        logger.info(f"📂 Loaded upload state for {len(metas)} attachments")
        return True

    def reset_upload_state(self) -> None:
        with self.state.lock:
            self.state.uploaded_metas = []
        logger.info("Upload state cleared")

    def format_upload_state(self) -> str:
        with self.state.lock:
            metas = list(self.state.uploaded_metas)
        if not metas:
            return "No files uploaded to Planner!"

        lines = [
            "FileId:AttachmentId/FileName (complete):(isUpload) == PlannerUrl",
            "Attachments that were not uploaded have no PlannerUrl.",
        ]
        for meta in metas:
            lines.append(
                f"{meta.file_id}:{meta.attachment.id}/{meta.attachment.file_name} "
                f"({meta.complete}):({meta.attachment.is_upload}) == {meta.graph_url}"
            )
        return "\n".join(lines)

    # Step 5: sync

    def build_task_details(self, card: Card, uploaded: dict[str, FileMeta]) -> TaskDetails:
        """Collect description, flattened checklist and attachment references.

        Attachments reference their Planner URL when uploaded and fall back to
        the Trello URL otherwise.
        """
        references = []
        for attachment in card.attachments:
            meta = uploaded.get(attachment.id)
            if meta is not None and meta.graph_url:
                url = meta.graph_url
            else:
                if meta is None:
                    logger.warning(
                        "Attachment %s of card %s missing from upload state, linking Trello URL",
                        attachment.id,
                        card.id,
                    )
                url = attachment.url
            if not url:
                logger.warning("Attachment %s of card %s has no URL", attachment.id, card.id)
                continue
            references.append(ExternalReference(url=url, alias=attachment.file_name))

        return TaskDetails.with_check_items(
            card.description, flatten_checklists(card.checklists), references
        )

    def _sync_card(
        self,
        card: Card,
        board_map: BoardMap,
        bucket_id: str,
        uploaded: dict[str, FileMeta],
        report: SyncReport,
    ) -> None:
        try:
            details = self.build_task_details(card, uploaded)
            result = self.planner.create_task(board_map.plan_id, bucket_id, card.name, details)
            if result is None:
                logger.error(f"❌ Task failed to create for card {card.id} ({card.name})")
                report.failed_card_ids.append(card.id)
                return

            task_id, thread_id = result
            report.tasks_created += 1
            if card.attachments:
                report.tasks_with_attachments += 1

            for comment in card.comments:
                if self.planner.post_reply(board_map.group_id, thread_id, comment.format()):
                    report.comments_posted += 1
                else:
                    report.comments_failed += 1
        except Exception as e:
            logger.error(f"❌ Card {card.id} ({card.name}) failed: {e}")
            logger.debug("Traceback:", exc_info=True)
            report.failed_card_ids.append(card.id)
            return

        logger.debug("Task %s created for card %s", task_id, card.id)

    def sync_boards_to_plans(self) -> SyncReport | None:
        """Recreate every mapped board as buckets and tasks in its plan.

        Lists become buckets in board order and cards become tasks one at a time
        in list order, each followed by its comments in Trello order. Cards that
        fail are collected in the report instead of aborting the sync.
        """
        boards = self.state.boards
        if not boards or not self.state.board_maps or not self.planner.plans_loaded:
            logger.error("❌ Missing required information to continue")
            logger.error("   Ensure boards are loaded and mapped, and attachments uploaded")
            return None

        has_attachments = any(card.attachments for board in boards for card in board.cards())
        if has_attachments and not self.state.uploaded_metas:
            logger.error("❌ Attachments not uploaded yet (upload or load the upload state first)")
            return None

        if not self.confirm(
            "WARNING: existing tasks and buckets in the mapped plans are not checked.",
            "All buckets and tasks will be created new on the mapped plans.",
        ):
            return None

        with self.state.lock:
            uploaded = {meta.attachment.id: meta for meta in self.state.uploaded_metas}

        report = SyncReport()
        for board in boards:
            report.boards += 1
            board_map = plan_for_board(self.state.board_maps, board.id)
            if board_map is None:
                logger.warning(f"⚠️  Board {board.id} ({board.name}) is not mapped, skipping")
                report.skipped_boards.append(board.id)
                continue

            for lst in board.lists:
                report.lists += 1
                report.cards += len(lst.cards)
                logger.info(f"Creating bucket {lst.name}")
                bucket_id = self.planner.create_bucket(board_map.plan_id, lst.name)
                if bucket_id is None:
                    logger.error(
                        f"❌ Unable to create bucket {lst.name} in plan {board_map.plan_id}"
                    )
                    report.failed_card_ids.extend(card.id for card in lst.cards)
                    continue

                for card in lst.cards:
                    self._sync_card(card, board_map, bucket_id, uploaded, report)

        report.log_summary()
        return report

    # Step 6: cleanup

    def clean_mapped_boards(self) -> tuple[int, int] | None:
        """Delete every task, then every bucket, of each mapped plan.

        Returns:
            Tuple of (tasks_deleted, buckets_deleted), or None if not run
        """
        if not self.state.board_maps:
            logger.error("❌ Need board maps to clean boards")
            return None

        if not self.confirm("WARNING: this deletes ALL tasks and buckets from the mapped plans."):
            return None

        tasks_deleted = 0
        buckets_deleted = 0
        for board_map in self.state.board_maps:
            tasks = self.planner.list_task_ids(board_map.plan_id)
            if tasks is None:
                continue
            results = fan_out(lambda t: self.planner.delete_task(*t), tasks, self.max_workers)
            tasks_deleted += sum(1 for ok in results if ok)

            buckets = self.planner.list_bucket_ids(board_map.plan_id)
            if buckets is None:
                continue
            results = fan_out(lambda b: self.planner.delete_bucket(*b), buckets, self.max_workers)
            buckets_deleted += sum(1 for ok in results if ok)

        logger.info(f"🧹 Deleted {tasks_deleted} tasks and {buckets_deleted} buckets")
        return tasks_deleted, buckets_deleted
