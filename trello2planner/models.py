"""Data models for Trello boards and migration bookkeeping.

Source models are parsed from Trello JSON with ``from_api`` and written back
with ``to_dict`` in the same camelCase shape, so exported snapshots reload
through the same parser.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any


def parse_timestamp(value: str | None) -> datetime | None:
    """Parse a Trello/Graph ISO-8601 timestamp (``...Z`` suffix allowed)."""
    if not value:
        return None
    if value.endswith("Z"):
        value = value[:-1] + "+00:00"
    return datetime.fromisoformat(value)


def format_timestamp(value: datetime | None) -> str | None:
    if value is None:
        return None
    return value.isoformat()


@dataclass
class Organization:
    """A Trello workspace and the ids of its boards."""

    id: str
    display_name: str
    name: str = ""
    members_count: int = 0
    board_ids: list[str] = field(default_factory=list)

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> Organization:
        if data.get("id") is None:
            raise ValueError(f"Organization entry has no id: {data!r}")
        return cls(
            id=data["id"],
            display_name=data.get("displayName") or "",
            name=data.get("name") or "",
            members_count=data.get("membersCount") or len(data.get("memberships") or []),
            board_ids=list(data.get("idBoards") or []),
        )


@dataclass
class Label:
    id: str
    name: str = ""
    color: str | None = None

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> Label:
        return cls(id=data["id"], name=data.get("name") or "", color=data.get("color"))

    def to_dict(self) -> dict[str, Any]:
        return {"id": self.id, "name": self.name, "color": self.color}


@dataclass
class Attachment:
    """A card attachment.

    ``bytes`` is None (or negative) for link attachments that point somewhere
    other than Trello's file storage. Only ``is_upload`` attachments can be
    downloaded.
    """

    id: str
    name: str
    file_name: str
    bytes: int | None
    is_upload: bool
    mime_type: str | None
    date: datetime | None
    url: str

    @property
    def file_names_match(self) -> bool:
        return self.name == self.file_name

    @property
    def is_empty(self) -> bool:
        return self.bytes is None or self.bytes < 1

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> Attachment:
        return cls(
            id=data["id"],
            name=data.get("name") or "",
            file_name=data.get("fileName") or data.get("name") or "",
            bytes=data.get("bytes"),
            is_upload=bool(data.get("isUpload", False)),
            mime_type=data.get("mimeType"),
            date=parse_timestamp(data.get("date")),
            url=data.get("url") or "",
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "fileName": self.file_name,
            "bytes": self.bytes,
            "isUpload": self.is_upload,
            "mimeType": self.mime_type,
            "date": format_timestamp(self.date),
            "url": self.url,
        }


@dataclass
class Member:
    id: str
    full_name: str = ""
    username: str = ""

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> Member:
        return cls(
            id=data.get("id") or "",
            full_name=data.get("fullName") or "",
            username=data.get("username") or "",
        )

    def to_dict(self) -> dict[str, Any]:
        return {"id": self.id, "fullName": self.full_name, "username": self.username}


@dataclass
class Comment:
    """A ``commentCard`` action on a card."""

    id: str
    date: datetime | None
    author: Member
    text: str

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> Comment:
        return cls(
            id=data["id"],
            date=parse_timestamp(data.get("date")),
            author=Member.from_api(data.get("memberCreator") or {}),
            text=(data.get("data") or {}).get("text") or "",
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "date": format_timestamp(self.date),
            "memberCreator": self.author.to_dict(),
            "data": {"text": self.text},
        }

    def format(self) -> str:
        """Render the comment as the text of a migrated reply."""
        when = ""
        if self.date is not None:
            when = self.date.astimezone(timezone.utc).strftime("%Y-%m-%d %H:%M:%SZ")
        return f"[trello][{when}] {self.author.full_name} ({self.author.username}): {self.text}"


@dataclass
class CheckItem:
    id: str
    name: str
    state: str = "incomplete"

    @property
    def checked(self) -> bool:
        return self.state == "complete"

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> CheckItem:
        return cls(id=data["id"], name=data.get("name") or "", state=data.get("state") or "")

    def to_dict(self) -> dict[str, Any]:
        return {"id": self.id, "name": self.name, "state": self.state}


@dataclass
class Checklist:
    id: str
    name: str
    items: list[CheckItem] = field(default_factory=list)

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> Checklist:
        items = sorted(data.get("checkItems") or [], key=lambda i: i.get("pos", 0))
        return cls(
            id=data["id"],
            name=data.get("name") or "",
            items=[CheckItem.from_api(i) for i in items],
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "checkItems": [i.to_dict() for i in self.items],
        }


def flatten_checklists(checklists: list[Checklist]) -> list[CheckItem]:
    """Merge several checklists into one ordered item list.

    Planner tasks carry a single checklist. With exactly one source checklist
    its items pass through unchanged; with several, each item title is prefixed
    with its checklist name ("Checklist - item").
    """
    if len(checklists) == 1:
        return list(checklists[0].items)

    flattened = []
    for checklist in checklists:
        for item in checklist.items:
            flattened.append(CheckItem(item.id, f"{checklist.name} - {item.name}", item.state))
    return flattened


@dataclass
class Card:
    id: str
    list_id: str
    name: str
    description: str = ""
    closed: bool = False
    start: datetime | None = None
    due: datetime | None = None
    labels: list[Label] = field(default_factory=list)
    attachments: list[Attachment] = field(default_factory=list)
    comments: list[Comment] = field(default_factory=list)
    checklists: list[Checklist] = field(default_factory=list)

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> Card:
        return cls(
            id=data["id"],
            list_id=data["idList"],
            name=data.get("name") or "",
            description=data.get("desc") or "",
            closed=bool(data.get("closed", False)),
            start=parse_timestamp(data.get("start")),
            due=parse_timestamp(data.get("due")),
            labels=[Label.from_api(lb) for lb in data.get("labels") or []],
            attachments=[Attachment.from_api(a) for a in data.get("attachments") or []],
            comments=[Comment.from_api(c) for c in data.get("comments") or []],
            checklists=[Checklist.from_api(c) for c in data.get("checklists") or []],
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "idList": self.list_id,
            "name": self.name,
            "desc": self.description,
            "closed": self.closed,
            "start": format_timestamp(self.start),
            "due": format_timestamp(self.due),
            "labels": [lb.to_dict() for lb in self.labels],
            "attachments": [a.to_dict() for a in self.attachments],
            "comments": [c.to_dict() for c in self.comments],
            "checklists": [c.to_dict() for c in self.checklists],
        }


@dataclass
class TrelloList:
    id: str
    name: str
    closed: bool = False
    cards: list[Card] = field(default_factory=list)

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> TrelloList:
        return cls(
            id=data["id"],
            name=data.get("name") or "",
            closed=bool(data.get("closed", False)),
            cards=[Card.from_api(c) for c in data.get("cards") or []],
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "closed": self.closed,
            "cards": [c.to_dict() for c in self.cards],
        }


@dataclass
class Board:
    id: str
    name: str
    lists: list[TrelloList] = field(default_factory=list)

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> Board:
        return cls(
            id=data["id"],
            name=data.get("name") or "",
            lists=[TrelloList.from_api(lst) for lst in data.get("lists") or []],
        )

    def to_dict(self) -> dict[str, Any]:
        return {"id": self.id, "name": self.name, "lists": [lst.to_dict() for lst in self.lists]}

    def cards(self) -> list[Card]:
        return [card for lst in self.lists for card in lst.cards]


@dataclass
class FileMeta:
    """Download/upload bookkeeping for one attachment.

    ``file_id`` names the local cache file, so attachments with the same
    original filename never collide on disk.
    """

    attachment: Attachment
    origin_board: str
    file_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    complete: bool = False
    hash: str | None = None
    graph_url: str | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> FileMeta:
        return cls(
            attachment=Attachment.from_api(data["attachment"]),
            origin_board=data["originBoard"],
            file_id=data["fileId"],
            complete=bool(data.get("complete", False)),
            hash=data.get("hash"),
            graph_url=data.get("graphUrl"),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "fileId": self.file_id,
            "attachment": self.attachment.to_dict(),
            "complete": self.complete,
            "hash": self.hash,
            "graphUrl": self.graph_url,
            "originBoard": self.origin_board,
        }


@dataclass(frozen=True)
class BoardMap:
    """Operator-chosen pairing of a Trello board with a Planner plan."""

    board_id: str
    group_id: str
    plan_id: str

    def __str__(self) -> str:
        return f"Trello Board: {self.board_id} = Group: {self.group_id}, Plan: {self.plan_id}"


@dataclass(frozen=True)
class GroupPlan:
    """A Planner plan together with its owning group and the group's drive."""

    group_id: str
    group_name: str
    plan_id: str
    plan_name: str
    drive_id: str = ""
    drive_name: str = ""

    def __str__(self) -> str:
        return f"{self.group_name} / {self.plan_name} (plan {self.plan_id})"
