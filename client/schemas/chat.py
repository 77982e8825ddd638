"""
Chat schemas for conversations, messages and outgoing requests.

These mirror the JSON shapes served by the chat endpoints of the backend.
"""

import mimetypes
from datetime import datetime
from enum import StrEnum
from pathlib import Path
from typing import Dict, List, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field, model_validator


class MessageStatus(StrEnum):
    """
    Delivery status of a chat message.

    ``sent`` -> ``delivered`` -> ``read`` only moves forward; ``failed``
    is terminal and can only be reached before a message is read.
    """

    SENT = "sent"
    DELIVERED = "delivered"
    READ = "read"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (MessageStatus.READ, MessageStatus.FAILED)

    def can_transition_to(self, target: "MessageStatus") -> bool:
        """Check whether moving from this status to ``target`` is allowed."""
        if target == self:
            return True
        if self.is_terminal:
            return False
        if target == MessageStatus.FAILED:
            return True
        return _STATUS_RANK[target] > _STATUS_RANK[self]

    def merge(self, other: "MessageStatus") -> "MessageStatus":
        """
        Pick the status to keep when two observations of a message disagree.

        ``read`` always wins, ``failed`` wins over ``sent``/``delivered``,
        otherwise the furthest status along the lattice is kept.
        """
        if MessageStatus.READ in (self, other):
            return MessageStatus.READ
        if MessageStatus.FAILED in (self, other):
            return MessageStatus.FAILED
        return self if _STATUS_RANK[self] >= _STATUS_RANK[other] else other


_STATUS_RANK: Dict[MessageStatus, int] = {
    MessageStatus.SENT: 0,
    MessageStatus.DELIVERED: 1,
    MessageStatus.READ: 2,
}


class ChatMessage(BaseModel):
    """A single message between a user and an admin."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    id: int
    sender: int
    sender_username: Optional[str] = None
    sender_profile_image: Optional[str] = None
    receiver: int
    receiver_username: Optional[str] = None
    content: str = ""
    attachment_url: Optional[str] = None
    status: MessageStatus = MessageStatus.SENT
    is_admin_message: bool = False
    created_at: datetime
    updated_at: datetime

    def with_status(self, status: MessageStatus) -> "ChatMessage":
        """
        Return a copy with ``status`` applied.

        Transitions the lattice forbids (e.g. ``read`` back to ``sent``)
        leave the message unchanged.
        """
        if not self.status.can_transition_to(status):
            return self
        return self.model_copy(update={"status": status})


class Conversation(BaseModel):
    """A two-party thread as seen by the viewing user."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    id: int
    participants: List[int] = Field(default_factory=list)
    last_message: Optional[ChatMessage] = None
    unread_count: int = Field(default=0, ge=0)
    created_at: datetime
    updated_at: datetime

    def other_participant(self, user_id: Optional[int]) -> Optional[int]:
        """Return the participant that is not ``user_id``, if any."""
        return next((p for p in self.participants if p != user_id), None)


class Attachment(BaseModel):
    """Binary file attached to an outgoing message."""

    model_config = ConfigDict(frozen=True)

    filename: str
    content: bytes
    content_type: str = "application/octet-stream"

    @classmethod
    def from_path(cls, path: Union[str, Path]) -> "Attachment":
        """Read a local file into an attachment, guessing its MIME type."""
        path = Path(path)
        content_type, _ = mimetypes.guess_type(path.name)
        return cls(
            filename=path.name,
            content=path.read_bytes(),
            content_type=content_type or "application/octet-stream"
        )

    def as_file_field(self) -> Tuple[str, bytes, str]:
        return (self.filename, self.content, self.content_type)


class SendMessageData(BaseModel):
    """Outgoing reply in an existing conversation."""

    receiver_id: int
    content: str = ""
    attachment: Optional[Attachment] = None

    @model_validator(mode="after")
    def _require_body(self) -> "SendMessageData":
        if not self.content.strip() and self.attachment is None:
            raise ValueError("A message needs text content or an attachment")
        return self

    def to_json(self) -> Dict[str, object]:
        return {"receiver_id": self.receiver_id, "content": self.content}

    def to_form(self) -> Dict[str, str]:
        return {"receiver_id": str(self.receiver_id), "content": self.content}


class ContactAdminRequest(BaseModel):
    """First message to the support team; the backend picks the admin."""

    message: str = ""
    attachment: Optional[Attachment] = None

    @model_validator(mode="after")
    def _require_body(self) -> "ContactAdminRequest":
        if not self.message.strip() and self.attachment is None:
            raise ValueError("A message needs text content or an attachment")
        return self

    def to_json(self) -> Dict[str, object]:
        return {"message": self.message}

    def to_form(self) -> Dict[str, str]:
        return {"message": self.message}


class MarkReadRequest(BaseModel):
    """Body of the mark-read endpoint."""

    message_ids: List[int] = Field(..., min_length=1)


class ChatSnapshot(BaseModel):
    """Immutable view of the synchronizer state handed to observers."""

    model_config = ConfigDict(frozen=True)

    conversations: Tuple[Conversation, ...] = ()
    active_conversation: Optional[Conversation] = None
    messages: Tuple[ChatMessage, ...] = ()
    failed_messages: Tuple[ChatMessage, ...] = ()
    loading: bool = False
    error: Optional[str] = None
    unread_count: int = 0
    has_unread_messages: bool = False
