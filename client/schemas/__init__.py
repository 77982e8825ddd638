"""
Pydantic schemas for API validation.

This package contains Pydantic models for the chat and auth payloads
exchanged with the backend.
"""

from .auth import AuthResponse, LoginRequest, User
from .chat import (
    Attachment,
    ChatMessage,
    ChatSnapshot,
    ContactAdminRequest,
    Conversation,
    MarkReadRequest,
    MessageStatus,
    SendMessageData,
)

__all__ = [
    "AuthResponse",
    "LoginRequest",
    "User",
    "Attachment",
    "ChatMessage",
    "ChatSnapshot",
    "ContactAdminRequest",
    "Conversation",
    "MarkReadRequest",
    "MessageStatus",
    "SendMessageData",
]
