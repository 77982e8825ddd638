"""
Console entry point for the tile-shop chat client.

Restores the stored session (or logs in with the configured credentials),
starts the chat synchronizer and logs conversation updates until
interrupted.
"""

import asyncio
from typing import Optional

from config import settings
from modules.auth.service import AuthService
from modules.chat.service import ChatService
from schemas.chat import ChatSnapshot
from utils.api_client import get_api_client
from utils.errors import ChatClientError
from utils.logging import get_logger, setup_logging

logger = get_logger("main")


class SnapshotLogger:
    """Log a line whenever the unread count or the active thread changes."""

    def __init__(self):
        self._last: Optional[tuple] = None

    def __call__(self, snapshot: ChatSnapshot) -> None:
        active_id = snapshot.active_conversation.id if snapshot.active_conversation else None
        current = (snapshot.unread_count, active_id, len(snapshot.messages), snapshot.error)
        if current == self._last:
            return
        self._last = current

        logger.info(
            "Chat state",
            conversations=len(snapshot.conversations),
            unread=snapshot.unread_count,
            active_conversation=active_id,
            messages=len(snapshot.messages),
            error=snapshot.error,
        )


async def run() -> int:
    """Run the client until cancelled. Returns the process exit code."""
    setup_logging(settings.log_level)
    logger.info("Starting tile-shop chat client", api_base_url=settings.api_base_url)

    api_client = get_api_client()
    auth = AuthService(api_client=api_client)
    chat = ChatService(api_client=api_client, credentials=auth.store)

    auth.subscribe(chat.handle_auth_change)
    chat.subscribe(SnapshotLogger())

    try:
        if not await auth.restore_session():
            if not settings.chat_username:
                logger.error("No stored session and CHAT_USERNAME is not set")
                return 1
            await auth.login(settings.chat_username, settings.chat_password)

        # Polling runs in background tasks; idle here until interrupted
        await asyncio.Event().wait()
    except ChatClientError as e:
        logger.error(f"Could not authenticate: {e}")
        return 1
    finally:
        logger.info("Shutting down tile-shop chat client")
        await chat.aclose()
        await api_client.aclose()

    return 0


def main() -> None:
    try:
        raise SystemExit(asyncio.run(run()))
    except KeyboardInterrupt:
        logger.info("Interrupted")


if __name__ == "__main__":
    main()
