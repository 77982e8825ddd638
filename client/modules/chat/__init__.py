"""
Chat Synchronization Module

Keeps a polling mirror of the user's conversations and messages.

Key Components:
- ChatService: conversation/message synchronizer with unread aggregation
- Poller: repeating asyncio task with in-flight guard and backoff
"""

from .polling import Poller
from .service import CHAT_API, ChatService, get_chat_service

__all__ = [
    "CHAT_API",
    "ChatService",
    "Poller",
    "get_chat_service",
]
