"""
Authentication service for the chat client.

Logs users in and out against the REST backend, keeps the credential store
in sync and propagates authentication changes to subscribed listeners
(the chat synchronizer starts and stops polling from these).
"""

import inspect
from typing import Awaitable, Callable, List, Optional, Union

from modules.auth.credential_store import CredentialStore, get_credential_store
from schemas.auth import AuthResponse, LoginRequest, User
from utils.api_client import ApiClient, get_api_client
from utils.errors import AuthenticationError, ChatClientError
from utils.logging import get_logger, log_auth_event

logger = get_logger("auth.service")

AUTH_API = {
    "LOGIN": "/api/auth/login/",
    "USER_INFO": "/api/auth/user/",
}

AuthListener = Callable[[bool, Optional[User]], Union[None, Awaitable[None]]]


class AuthService:
    """
    Service for the authentication lifecycle.

    Listeners are called with ``(authenticated, user)`` after every login,
    logout and session restore. They may be plain or async callables.
    """

    def __init__(
        self,
        api_client: Optional[ApiClient] = None,
        store: Optional[CredentialStore] = None
    ):
        self.api_client = api_client or get_api_client()
        self.store = store or get_credential_store()
        self._user: Optional[User] = None
        self._authenticated = False
        self._listeners: List[AuthListener] = []

    @property
    def is_authenticated(self) -> bool:
        return self._authenticated

    @property
    def user(self) -> Optional[User]:
        return self._user

    def subscribe(self, listener: AuthListener) -> Callable[[], None]:
        """
        Register an auth state listener.

        Returns:
            Callable that removes the listener again
        """
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    async def login(self, username: str, password: str) -> User:
        """
        Log in and store the returned token.

        Args:
            username: Login name
            password: Password

        Returns:
            User: The authenticated user

        Raises:
            AuthenticationError: If the backend returns no token
            ChatClientError: If the request fails
        """
        request = LoginRequest(username=username, password=password)

        try:
            response = await self.api_client.post(AUTH_API["LOGIN"], request.model_dump())
        except ChatClientError as e:
            log_auth_event("login_failed", username, error=str(e))
            await self._set_state(False, None)
            raise

        if not isinstance(response, dict) or not response.get("token"):
            log_auth_event("login_failed", username, error="no token")
            await self._set_state(False, None)
            raise AuthenticationError("Login failed: No token received")

        auth = AuthResponse.model_validate(response)
        self.store.set_token(auth.token)
        self.store.set_user(auth.user)

        log_auth_event("logged_in", auth.user.username, user_id=auth.user.id)
        await self._set_state(True, auth.user)
        return auth.user

    async def logout(self) -> None:
        """Clear all stored auth data and notify listeners."""
        username = self._user.username if self._user else None
        self.store.clear_all()
        log_auth_event("logged_out", username)
        await self._set_state(False, None)

    async def restore_session(self) -> bool:
        """
        Confirm a stored token by fetching the user profile.

        A token the backend rejects (401) is wiped. Server errors, network
        failures and unreadable profiles keep it but leave the session
        unauthenticated.

        Returns:
            bool: True if the stored session is valid
        """
        token = self.store.get_token()
        if not token:
            await self._set_state(False, None)
            return False

        try:
            data = await self.api_client.get(AUTH_API["USER_INFO"], token)
        except AuthenticationError as e:
            logger.warning(f"Stored token rejected: {e}")
            self.store.clear_all()
            await self._set_state(False, None)
            return False
        except ChatClientError as e:
            logger.error(f"Error checking authentication: {e}")
            await self._set_state(False, None)
            return False

        try:
            user = User.model_validate(data)
        except ValueError as e:
            logger.error(f"Unexpected user profile payload: {e}")
            await self._set_state(False, None)
            return False

        self.store.set_user(user)
        self.store.mark_session()

        log_auth_event("session_restored", user.username, user_id=user.id)
        await self._set_state(True, user)
        return True

    async def _set_state(self, authenticated: bool, user: Optional[User]) -> None:
        self._authenticated = authenticated
        self._user = user

        for listener in list(self._listeners):
            try:
                result = listener(authenticated, user)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                logger.error(f"Auth listener failed: {e}", exc_info=True)
