"""
Shared pytest fixtures for the chat client test suite.

HTTP traffic goes through ``httpx.MockTransport`` backed by ``FakeBackend``,
a tiny router that records every request and answers from canned routes.
"""

import logging
from typing import Any, Callable, Dict, List, Optional, Tuple, Union

# Keep third-party loggers quiet during collection
for _name in ("httpx", "httpcore", "asyncio"):
    logging.getLogger(_name).setLevel(logging.WARNING)

import httpx
import pytest

from modules.auth.credential_store import CredentialStore, InMemoryCredentials
from modules.chat.service import ChatService
from schemas.auth import User
from utils.api_client import ApiClient

BASE_URL = "http://testserver"
CURRENT_USER_ID = 1
ADMIN_ID = 99

Handler = Callable[[httpx.Request], httpx.Response]
RouteResponse = Union[httpx.Response, Handler, Exception]


class FakeBackend:
    """Route table for ``httpx.MockTransport`` that records requests."""

    def __init__(self):
        self.requests: List[httpx.Request] = []
        self._routes: Dict[Tuple[str, str], List[RouteResponse]] = {}

    def add(
        self,
        method: str,
        path: str,
        json_body: Any = None,
        status: int = 200,
        response: Optional[RouteResponse] = None,
    ) -> None:
        """
        Queue a response for ``method path``.

        Queued responses are served in order; the last one keeps being
        served once the queue is down to a single entry.
        """
        if response is None:
            response = httpx.Response(status, json=json_body)
        self._routes.setdefault((method.upper(), path), []).append(response)

    def replace(self, method: str, path: str, json_body: Any = None, status: int = 200) -> None:
        self._routes.pop((method.upper(), path), None)
        self.add(method, path, json_body, status)

    def calls(self, method: str, path: str) -> List[httpx.Request]:
        return [
            r for r in self.requests
            if r.method == method.upper() and r.url.path == path
        ]

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)

        queue = self._routes.get((request.method, request.url.path))
        if not queue:
            return httpx.Response(404, json={"detail": "Not found."})

        entry = queue.pop(0) if len(queue) > 1 else queue[0]
        if isinstance(entry, Exception):
            raise entry
        if callable(entry):
            return entry(request)
        return entry


@pytest.fixture
def backend() -> FakeBackend:
    return FakeBackend()


@pytest.fixture
async def api_client(backend):
    client = ApiClient(base_url=BASE_URL, transport=httpx.MockTransport(backend))
    yield client
    await client.aclose()


@pytest.fixture
def user() -> User:
    return User(id=CURRENT_USER_ID, username="alice", email="alice@example.com")


@pytest.fixture
def credentials() -> InMemoryCredentials:
    return InMemoryCredentials("test-token")


@pytest.fixture
def store(tmp_path) -> CredentialStore:
    return CredentialStore(tmp_path / "credentials.json")


@pytest.fixture
async def chat(api_client, credentials, user):
    """An authenticated ChatService with the background pollers disabled."""
    service = ChatService(
        api_client,
        credentials,
        conversation_poll_interval=30,
        message_poll_interval=5,
    )
    await service.start(user, poll=False)
    yield service
    await service.aclose()


@pytest.fixture
def conversation_payload() -> Callable[..., Dict[str, Any]]:
    def build(
        conversation_id: int,
        unread_count: int = 0,
        updated_at: str = "2024-05-01T10:00:00Z",
        participants: Optional[List[int]] = None,
    ) -> Dict[str, Any]:
        return {
            "id": conversation_id,
            "participants": participants or [CURRENT_USER_ID, ADMIN_ID],
            "last_message": None,
            "unread_count": unread_count,
            "created_at": "2024-05-01T09:00:00Z",
            "updated_at": updated_at,
        }

    return build


@pytest.fixture
def message_payload() -> Callable[..., Dict[str, Any]]:
    def build(
        message_id: int,
        sender: int = ADMIN_ID,
        receiver: int = CURRENT_USER_ID,
        status: str = "sent",
        content: str = "Your tiles ship on Monday",
    ) -> Dict[str, Any]:
        return {
            "id": message_id,
            "sender": sender,
            "sender_username": "admin" if sender == ADMIN_ID else "alice",
            "receiver": receiver,
            "receiver_username": "alice" if receiver == CURRENT_USER_ID else "admin",
            "content": content,
            "attachment_url": None,
            "status": status,
            "is_admin_message": sender == ADMIN_ID,
            "created_at": "2024-05-01T10:00:00Z",
            "updated_at": "2024-05-01T10:00:00Z",
        }

    return build
