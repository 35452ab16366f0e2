"""Request bodies for the Planner and group-conversation write endpoints.

Each class maps to exactly one Graph write endpoint and renders the JSON that
endpoint accepts, nothing more. Fields Graph rejects on writes (for example
``lastModifiedDateTime`` on external references) are never emitted.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from typing import Any

from trello2planner.models import CheckItem

logger = logging.getLogger(__name__)

TITLE_MAX_LENGTH = 255
CHECKLIST_TITLE_MAX_LENGTH = 100

# Planner accepts " !" as "after everything so far"; each further item appends
# another " !" so items keep their source order.
ORDER_HINT_STEP = " !"

# Characters Graph requires escaped in externalReference keys
_REFERENCE_KEY_ESCAPES = {"%": "%25", "@": "%40", ".": "%2E", ":": "%3A", "#": "%23"}


def encode_external_reference_url(url: str) -> str:
    """Escape a URL for use as a key of ``plannerExternalReferences``.

    Graph uses the URL itself as the property name, so characters that carry
    meaning in OData property names must be percent-encoded. A key starting
    with ``@`` would otherwise be read as an annotation. ``%`` is escaped first
    so existing escapes survive.

    Example:
        >>> encode_external_reference_url("https://x.sharepoint.com/a b.pdf")
        'https%3A//x%2Esharepoint%2Ecom/a b%2Epdf'
    """
    return "".join(_REFERENCE_KEY_ESCAPES.get(ch, ch) for ch in url)


def truncate(text: str, limit: int, what: str) -> str:
    if len(text) <= limit:
        return text
    truncated = text[:limit]
    logger.warning("Truncating %s to %d chars: %s", what, limit, truncated)
    return truncated


@dataclass
class NewBucket:
    """Body of ``POST /planner/buckets``."""

    plan_id: str
    name: str

    def to_json(self) -> dict[str, Any]:
        return {"name": self.name, "planId": self.plan_id, "orderHint": ORDER_HINT_STEP}


@dataclass
class NewTask:
    """Body of ``POST /planner/tasks``."""

    plan_id: str
    bucket_id: str
    title: str
    conversation_thread_id: str | None = None

    def to_json(self) -> dict[str, Any]:
        body: dict[str, Any] = {
            "planId": self.plan_id,
            "bucketId": self.bucket_id,
            "title": truncate(self.title, TITLE_MAX_LENGTH, "task title"),
        }
        if self.conversation_thread_id:
            body["conversationThreadId"] = self.conversation_thread_id
        return body


@dataclass
class ChecklistItem:
    title: str
    is_checked: bool = False


@dataclass
class ExternalReference:
    url: str
    alias: str


@dataclass
class TaskDetails:
    """Body of ``PATCH /planner/tasks/{id}/details``."""

    description: str = ""
    checklist: list[ChecklistItem] = field(default_factory=list)
    references: list[ExternalReference] = field(default_factory=list)

    @classmethod
    def with_check_items(
        cls,
        description: str,
        items: list[CheckItem],
        references: list[ExternalReference] | None = None,
    ) -> TaskDetails:
        return cls(
            description=description,
            checklist=[ChecklistItem(item.name, item.checked) for item in items],
            references=list(references or []),
        )

    def is_empty(self) -> bool:
        return not (self.description or self.checklist or self.references)

    def to_json(self) -> dict[str, Any]:
        body: dict[str, Any] = {}
        if self.description:
            body["description"] = self.description

        if self.checklist:
            checklist: dict[str, Any] = {}
            order_hint = ORDER_HINT_STEP
            for item in self.checklist:
                # Item keys are client-generated; Graph only needs them unique per task
                checklist[str(uuid.uuid4())] = {
                    "@odata.type": "#microsoft.graph.plannerChecklistItem",
                    "isChecked": item.is_checked,
                    "title": truncate(item.title, CHECKLIST_TITLE_MAX_LENGTH, "checklist item"),
                    "orderHint": order_hint,
                }
                order_hint += ORDER_HINT_STEP
            body["checklist"] = checklist

        if self.references:
            body["references"] = {
                encode_external_reference_url(ref.url): {
                    "@odata.type": "#microsoft.graph.plannerExternalReference",
                    "alias": ref.alias,
                    "type": "Other",
                }
                for ref in self.references
            }

        return body


@dataclass
class NewThread:
    """Body of ``POST /groups/{id}/threads``."""

    topic: str
    seed_message: str = "[trello] Comments migrated from Trello"

    def to_json(self) -> dict[str, Any]:
        return {
            "topic": self.topic[:TITLE_MAX_LENGTH],
            "posts": [{"body": {"contentType": "text", "content": self.seed_message}}],
        }


@dataclass
class ThreadReply:
    """Body of ``POST /groups/{id}/threads/{id}/reply``."""

    content: str

    def to_json(self) -> dict[str, Any]:
        return {"post": {"body": {"contentType": "text", "content": self.content}}}
