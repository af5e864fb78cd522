"""
Value types for messages, conversations and the store snapshot.

All types are frozen dataclasses.  A "changed" message or conversation is a
new object built with :func:`dataclasses.replace`; the store swaps whole
objects and never mutates one in place.
"""

import time
import uuid
from dataclasses import dataclass, field, replace

#: Roles accepted by the chat completions endpoint.
VALID_ROLES: tuple[str, ...] = ("user", "assistant", "system")

DEFAULT_TITLE = "New Chat"


def now_ms() -> int:
    """Current time as integer milliseconds since the epoch."""
    return int(time.time() * 1000)


@dataclass(frozen=True)
class LinkedNote:
    """A note attached to a user message."""

    path: str
    filename: str
    content: str


@dataclass(frozen=True)
class Message:
    """A single conversation turn."""

    id: str
    role: str
    content: str
    timestamp: int
    linked_notes: tuple[LinkedNote, ...] | None = None

    @classmethod
    def create(cls, role: str, content: str,
               linked_notes=None) -> "Message":
        """Build a new message with a fresh id and the current timestamp."""
        ts = now_ms()
        notes = tuple(linked_notes) if linked_notes else None
        return cls(
            id=f"{ts}-{role}-{uuid.uuid4().hex[:8]}",
            role=role,
            content=content,
            timestamp=ts,
            linked_notes=notes,
        )

    def with_content(self, content: str) -> "Message":
        """Return a copy whose content is *content*; every other field is kept."""
        return replace(self, content=content)


@dataclass(frozen=True)
class ModelOption:
    """Model selection of a conversation; ``value`` is sent to the API."""

    value: str
    label: str = ""


@dataclass(frozen=True)
class Conversation:
    """An ordered transcript bound to one model."""

    id: str = field(default_factory=lambda: uuid.uuid4().hex[:12])
    model: ModelOption = field(default_factory=lambda: ModelOption("gpt-4.1"))
    messages: tuple[Message, ...] = ()
    title: str = DEFAULT_TITLE

    def with_messages(self, messages) -> "Conversation":
        return replace(self, messages=tuple(messages))

    def index_of(self, message_id: str, hint: int | None = None) -> int | None:
        """Return the position of *message_id*, or ``None`` when absent.

        Ids are only unique by convention, so when *hint* still points at a
        message carrying the id that position wins over the first match.
        """
        return find_message(self.messages, message_id, hint)


def find_message(messages, message_id: str, hint: int | None = None) -> int | None:
    """Position of *message_id* in *messages* (see :meth:`Conversation.index_of`)."""
    if hint is not None and 0 <= hint < len(messages):
        if messages[hint].id == message_id:
            return hint
    for i, msg in enumerate(messages):
        if msg.id == message_id:
            return i
    return None


@dataclass(frozen=True)
class StoreState:
    """Snapshot of everything the presentation layer renders."""

    conversations: tuple[Conversation, ...] = ()
    active_conversation_id: str | None = None
    messages: tuple[Message, ...] = ()
    is_loading: bool = False
