"""
Chat synchronization service.

This module keeps an eventually-consistent mirror of the user's conversations
and of the messages in the active conversation. The backend has no push
channel, so two pollers refresh the conversation list and the active thread.
Incoming messages are marked as read once they have been fetched.
"""

from datetime import datetime, timezone
from typing import Any, Callable, Iterable, List, Optional, Type, TypeVar

from pydantic import BaseModel

from config import settings
from modules.auth.credential_store import CredentialProvider, get_credential_store
from modules.chat.polling import Poller
from schemas.auth import User
from schemas.chat import (
    Attachment,
    ChatMessage,
    ChatSnapshot,
    ContactAdminRequest,
    Conversation,
    MarkReadRequest,
    MessageStatus,
    SendMessageData,
)
from utils.api_client import ApiClient, get_api_client
from utils.errors import ChatClientError, NotAuthenticatedError
from utils.logging import get_logger, log_chat_event

logger = get_logger("chat.service")

CHAT_API = {
    "MESSAGES": "/api/chat/messages/",
    "MARK_READ": "/api/chat/messages/mark-read/",
    "CONVERSATIONS": "/api/chat/conversations/",
    "ADMIN_CONTACT": "/api/chat/admin-contact/",
}

SnapshotCallback = Callable[[ChatSnapshot], None]
ModelT = TypeVar("ModelT", bound=BaseModel)


class ChatService:
    """
    Synchronizer for conversations and messages.

    The service owns the conversation list, the active conversation and its
    messages. Observers read immutable ``ChatSnapshot``s through
    ``subscribe()`` and never mutate state directly.

    States:
        Idle: not authenticated, no polling, empty state
        Polling: conversations refresh every ``conversation_poll_interval``;
            the active conversation refreshes every ``message_poll_interval``
    """

    def __init__(
        self,
        api_client: Optional[ApiClient] = None,
        credentials: Optional[CredentialProvider] = None,
        *,
        conversation_poll_interval: Optional[float] = None,
        message_poll_interval: Optional[float] = None,
        max_backoff: Optional[float] = None
    ):
        """
        Initialize the chat service.

        Args:
            api_client: REST client (defaults to the global client)
            credentials: Token provider (defaults to the global credential store)
            conversation_poll_interval: Seconds between conversation refreshes
            message_poll_interval: Seconds between active-thread refreshes
            max_backoff: Ceiling for poll delays after failures
        """
        self.api_client = api_client or get_api_client()
        self.credentials = credentials or get_credential_store()

        backoff = max_backoff if max_backoff is not None else settings.poll_max_backoff
        self._conversation_poller = Poller(
            "conversations",
            self._poll_conversations,
            conversation_poll_interval or settings.conversation_poll_interval,
            max_backoff=backoff
        )
        self._message_poller = Poller(
            "messages",
            self._poll_messages,
            message_poll_interval or settings.message_poll_interval,
            max_backoff=backoff
        )

        self._authenticated = False
        self._polling_enabled = False
        self._user: Optional[User] = None

        self._conversations: List[Conversation] = []
        self._active: Optional[Conversation] = None
        self._messages: List[ChatMessage] = []
        self._failed: List[ChatMessage] = []
        # Local ids for failed sends count down from -1 and are never reused
        self._last_failed_id = 0
        self._error: Optional[str] = None
        self._pending = 0

        # Sequence numbers so an older message response never overwrites a newer one
        self._messages_issued = 0
        self._messages_applied = 0

        self._subscribers: List[SnapshotCallback] = []

    # ------------------------------------------------------------------
    # Read-only state
    # ------------------------------------------------------------------

    @property
    def conversations(self) -> List[Conversation]:
        return list(self._conversations)

    @property
    def active_conversation(self) -> Optional[Conversation]:
        return self._active

    @property
    def messages(self) -> List[ChatMessage]:
        return list(self._messages)

    @property
    def failed_messages(self) -> List[ChatMessage]:
        return list(self._failed)

    @property
    def loading(self) -> bool:
        return self._pending > 0

    @property
    def error(self) -> Optional[str]:
        return self._error

    @property
    def unread_count(self) -> int:
        return sum(c.unread_count for c in self._conversations)

    @property
    def has_unread_messages(self) -> bool:
        return self.unread_count > 0

    @property
    def is_authenticated(self) -> bool:
        return self._authenticated

    @property
    def is_polling(self) -> bool:
        return self._conversation_poller.is_running

    @property
    def current_user_id(self) -> Optional[int]:
        return self._user.id if self._user else None

    def snapshot(self) -> ChatSnapshot:
        unread = self.unread_count
        return ChatSnapshot(
            conversations=tuple(self._conversations),
            active_conversation=self._active,
            messages=tuple(self._messages),
            failed_messages=tuple(self._failed),
            loading=self.loading,
            error=self._error,
            unread_count=unread,
            has_unread_messages=unread > 0,
        )

    def subscribe(self, callback: SnapshotCallback) -> Callable[[], None]:
        """
        Register an observer called with a snapshot after every state change.

        Returns:
            Callable that removes the observer again
        """
        self._subscribers.append(callback)

        def unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self, user: Optional[User], poll: bool = True) -> None:
        """
        Enter the Polling state for ``user``.

        Args:
            user: The authenticated user (needed to spot incoming messages)
            poll: Whether to run the background pollers
        """
        if self._user is not None and user is not None and self._user.id != user.id:
            self._reset_state()

        self._authenticated = True
        self._user = user
        self._polling_enabled = poll

        if poll:
            self._conversation_poller.start()
            if self._active is not None:
                self._message_poller.start()

        log_chat_event("started", user_id=self.current_user_id, polling=poll)
        self._notify()

    async def stop(self) -> None:
        """Cancel both pollers; in-memory state is kept."""
        self._polling_enabled = False
        await self._conversation_poller.stop()
        await self._message_poller.stop()

    async def handle_auth_change(self, authenticated: bool, user: Optional[User]) -> None:
        """Auth listener: restart on login, go Idle on logout."""
        await self.stop()

        if authenticated:
            await self.start(user)
            return

        self._authenticated = False
        self._user = None
        self._reset_state()
        log_chat_event("stopped")
        self._notify()

    async def aclose(self) -> None:
        await self.stop()

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.aclose()

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    def set_active_conversation(self, conversation: Optional[Conversation]) -> None:
        """
        Select the conversation later message fetches and polls target.

        Switching to a different conversation clears the message list and
        restarts the message poll.
        """
        previous_id = self._active.id if self._active else None
        self._active = conversation
        new_id = conversation.id if conversation else None

        if new_id != previous_id:
            self._messages = []
            self._messages_applied = self._messages_issued
            self._message_poller.cancel()
            if self._polling_enabled and self._authenticated and conversation is not None:
                self._message_poller.start()
            log_chat_event("active_changed", conversation_id=new_id)

        self._notify()

    async def fetch_conversations(self, surface_errors: bool = True) -> bool:
        """
        Replace the conversation list with the server's.

        If nothing is active yet, the most recently updated conversation is
        selected. On failure the current list is kept.

        Args:
            surface_errors: Whether a failure goes to the error slot or only to the log

        Returns:
            bool: True if the list was refreshed
        """
        if not self._authenticated:
            logger.debug("Skipping conversation fetch, not authenticated")
            return False

        self._begin()
        try:
            token = self._require_token()
            data = await self.api_client.get(CHAT_API["CONVERSATIONS"], token)
            conversations = self._parse_list(data, Conversation)
        except (ChatClientError, ValueError) as e:
            logger.error(f"Error fetching conversations: {e}")
            if surface_errors:
                self._set_error(f"Failed to load conversations: {e}")
            return False
        finally:
            self._end()

        if not self._authenticated:
            return False

        self._conversations = conversations

        if self._active is None:
            if conversations:
                self.set_active_conversation(self._most_recent(conversations))
        else:
            fresh = next((c for c in conversations if c.id == self._active.id), None)
            if fresh is not None:
                self._active = fresh

        log_chat_event("conversations_synced", count=len(conversations), unread=self.unread_count)
        self._notify()
        return True

    async def fetch_messages(self, conversation_id: int, surface_errors: bool = True) -> bool:
        """
        Replace the message list with the server's messages for a conversation.

        Messages addressed to the current user that are not read yet are
        then marked as read (one mark-read call per fetch at most).

        Args:
            conversation_id: Conversation to load
            surface_errors: Whether a failure goes to the error slot or only to the log

        Returns:
            bool: True if the messages were loaded
        """
        if not self._authenticated:
            logger.debug("Skipping message fetch, not authenticated")
            return False

        self._messages_issued += 1
        request_seq = self._messages_issued

        self._begin()
        try:
            token = self._require_token()
            data = await self.api_client.get(
                f"{CHAT_API['MESSAGES']}?conversation={conversation_id}",
                token
            )
            fetched = self._parse_list(data, ChatMessage)
        except (ChatClientError, ValueError) as e:
            logger.error(f"Error fetching messages: {e}", conversation_id=conversation_id)
            if surface_errors:
                self._set_error(f"Failed to load messages: {e}")
            return False
        finally:
            self._end()

        if request_seq <= self._messages_applied or not self._authenticated:
            logger.debug("Dropping stale message response", conversation_id=conversation_id)
            return True

        self._messages = self._merge_statuses(fetched)
        self._messages_applied = request_seq
        self._notify()

        user_id = self.current_user_id
        unread_ids = [
            m.id for m in self._messages
            if m.receiver == user_id and m.status != MessageStatus.READ
        ]
        if unread_ids:
            await self.mark_as_read(unread_ids)

        return True

    async def mark_as_read(self, message_ids: Iterable[int]) -> bool:
        """
        Tell the server these messages were displayed.

        Failures are logged only and leave local statuses untouched; a
        failed read receipt never blocks message display.

        Returns:
            bool: True if the server accepted the receipt
        """
        ids = list(dict.fromkeys(message_ids))
        if not self._authenticated or not ids:
            return False

        try:
            token = self._require_token()
            await self.api_client.post(
                CHAT_API["MARK_READ"],
                MarkReadRequest(message_ids=ids).model_dump(),
                token
            )
        except ChatClientError as e:
            logger.warning(f"Error marking messages as read: {e}", message_ids=ids)
            return False

        marked = set(ids)
        self._messages = [
            m.with_status(MessageStatus.READ) if m.id in marked else m
            for m in self._messages
        ]
        log_chat_event("messages_read", message_ids=ids)
        self._notify()

        # Pull the new unread counts
        await self.fetch_conversations(surface_errors=False)
        return True

    async def send_message(
        self,
        data: Optional[SendMessageData] = None,
        *,
        receiver_id: Optional[int] = None,
        content: str = "",
        attachment: Optional[Attachment] = None
    ) -> Optional[ChatMessage]:
        """
        Send a message, as multipart when an attachment is present.

        On failure the error slot is set and a ``failed`` copy is kept in
        ``failed_messages``; nothing is inserted into the message list.

        Args:
            data: Full request, or pass receiver_id/content/attachment instead

        Returns:
            ChatMessage: The created message if the server returned it

        Raises:
            ValueError: If the message has neither content nor attachment
        """
        if data is None:
            data = SendMessageData(receiver_id=receiver_id, content=content, attachment=attachment)

        if not self._authenticated:
            logger.warning("Not sending message, not authenticated")
            return None

        self._begin()
        try:
            token = self._require_token()
            if data.attachment is not None:
                response = await self.api_client.upload_file(
                    CHAT_API["MESSAGES"],
                    data.to_form(),
                    {"attachment": data.attachment.as_file_field()},
                    token
                )
            else:
                response = await self.api_client.post(CHAT_API["MESSAGES"], data.to_json(), token)
        except ChatClientError as e:
            logger.error(f"Error sending message: {e}", receiver_id=data.receiver_id)
            self._record_failed(data)
            self._set_error(f"Failed to send message: {e}")
            return None
        finally:
            self._end()

        created = self._parse_optional(response, ChatMessage)
        log_chat_event(
            "message_sent",
            conversation_id=self._active.id if self._active else None,
            receiver_id=data.receiver_id,
            attachment=data.attachment is not None
        )

        if self._active is not None:
            await self.fetch_messages(self._active.id, surface_errors=False)
        await self.fetch_conversations(surface_errors=False)
        return created

    async def contact_admin(self, message: str, attachment: Optional[Attachment] = None) -> bool:
        """
        Open (or continue) a thread with the support team.

        The backend picks the admin recipient.

        Returns:
            bool: True if the message was accepted

        Raises:
            ValueError: If the message has neither content nor attachment
        """
        request = ContactAdminRequest(message=message, attachment=attachment)

        if not self._authenticated:
            logger.warning("Not contacting admin, not authenticated")
            return False

        self._begin()
        try:
            token = self._require_token()
            if request.attachment is not None:
                await self.api_client.upload_file(
                    CHAT_API["ADMIN_CONTACT"],
                    request.to_form(),
                    {"attachment": request.attachment.as_file_field()},
                    token
                )
            else:
                await self.api_client.post(CHAT_API["ADMIN_CONTACT"], request.to_json(), token)
        except ChatClientError as e:
            logger.error(f"Error contacting admin: {e}")
            self._set_error(f"Failed to contact admin: {e}")
            return False
        finally:
            self._end()

        log_chat_event("admin_contacted", attachment=request.attachment is not None)

        # Show the new admin thread
        await self.fetch_conversations(surface_errors=False)
        return True

    def clear_error(self) -> None:
        self._error = None
        self._notify()

    def dismiss_failed_message(self, message_id: int) -> None:
        self._failed = [m for m in self._failed if m.id != message_id]
        self._notify()

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _poll_conversations(self) -> bool:
        return await self.fetch_conversations()

    async def _poll_messages(self) -> bool:
        if self._active is None:
            return True
        return await self.fetch_messages(self._active.id)

    def _require_token(self) -> str:
        token = self.credentials.get_token()
        if not token or not token.strip():
            raise NotAuthenticatedError()
        return token

    @staticmethod
    def _parse_list(data: Any, model: Type[ModelT]) -> List[ModelT]:
        if not isinstance(data, list):
            raise ValueError(f"Expected a list of {model.__name__}, got {type(data).__name__}")
        return [model.model_validate(item) for item in data]

    @staticmethod
    def _parse_optional(data: Any, model: Type[ModelT]) -> Optional[ModelT]:
        if not data:
            return None
        try:
            return model.model_validate(data)
        except ValueError as e:
            logger.warning(f"Unexpected {model.__name__} payload: {e}")
            return None

    @staticmethod
    def _most_recent(conversations: List[Conversation]) -> Conversation:
        # max() keeps the first of equal timestamps, i.e. server order on ties
        return max(conversations, key=lambda c: c.updated_at)

    def _merge_statuses(self, fetched: List[ChatMessage]) -> List[ChatMessage]:
        """Keep local read flips the server has not caught up with yet."""
        local = {m.id: m.status for m in self._messages}
        merged = []
        for message in fetched:
            previous = local.get(message.id)
            if previous is not None and previous != message.status:
                message = message.model_copy(update={"status": previous.merge(message.status)})
            merged.append(message)
        return merged

    def _record_failed(self, data: SendMessageData) -> None:
        now = datetime.now(timezone.utc)
        self._last_failed_id -= 1
        self._failed.append(ChatMessage(
            id=self._last_failed_id,
            sender=self.current_user_id or 0,
            receiver=data.receiver_id,
            content=data.content,
            status=MessageStatus.FAILED,
            created_at=now,
            updated_at=now,
        ))

    def _reset_state(self) -> None:
        self._conversations = []
        self._active = None
        self._messages = []
        self._failed = []
        self._error = None
        self._messages_applied = self._messages_issued

    def _set_error(self, message: str) -> None:
        self._error = message
        self._notify()

    def _begin(self) -> None:
        self._pending += 1
        self._notify()

    def _end(self) -> None:
        self._pending -= 1
        self._notify()

    def _notify(self) -> None:
        if not self._subscribers:
            return

        snapshot = self.snapshot()
        for callback in list(self._subscribers):
            try:
                callback(snapshot)
            except Exception as e:
                logger.error(f"Chat observer failed: {e}", exc_info=True)


# Global service instance
_chat_service: Optional[ChatService] = None


def get_chat_service() -> ChatService:
    """
    Get or create the global chat service instance.

    Returns:
        ChatService: Service instance
    """
    global _chat_service
    if _chat_service is None:
        _chat_service = ChatService()
    return _chat_service
