"""
HTTP API Client for the Taxi Manager back office.

This module provides the single shared HTTP client used by every dashboard.
Each request gets the current access token attached; a 401 answer is handed
to the refresh coordinator, which refreshes the token once per wave of
failures and replays the rejected requests.
"""

import asyncio
import json
import logging
from typing import Any, Callable, Dict, List, Optional
from urllib.parse import urljoin

import aiohttp
from aiohttp import ClientSession, ClientTimeout, ClientError

from taxi_shared.exceptions import (
    APIResponseError, AuthenticationError, ErrorCode, NetworkError, TokenRefreshError
)
from taxi_shared.interfaces import IAPIClient, ICredentialStore
from taxi_shared.logging_config import AuditLogger
from taxi_shared.models import APIRequest, APIResponse, StorageKey, User, UserRole
from taxi_client.auth.refresh_coordinator import UnauthorizedResponseCoordinator
from taxi_client.auth.request_authenticator import RequestAuthenticator
from taxi_client.auth.token_client import TokenClient
from taxi_client.auth.token_storage import InMemoryCredentialStore

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 10.0
CURRENT_USER_PATH = 'usuarios/me/'


class TaxiManagerAPIClient(IAPIClient):
    """
    Authenticated HTTP client for the Taxi Manager API.

    Args:
        base_url: API root, e.g. ``http://10.0.0.5:8000/api/``
        timeout: Total timeout in seconds for every call, including the
            refresh call and replays
        credential_store: Where tokens and session data are kept
    """

    def __init__(
        self,
        base_url: str,
        timeout: float = DEFAULT_TIMEOUT,
        credential_store: Optional[ICredentialStore] = None
    ):
        self.base_url = base_url if base_url.endswith('/') else base_url + '/'
        self.timeout = ClientTimeout(total=timeout)
        self.credential_store = credential_store or InMemoryCredentialStore()

        self._session: Optional[ClientSession] = None
        self._audit = AuditLogger()
        self._auth_callbacks: List[Callable[[bool], None]] = []

        self.token_client = TokenClient(self._send)
        self.authenticator = RequestAuthenticator(self.credential_store)
        self.coordinator = UnauthorizedResponseCoordinator(
            self.credential_store,
            refresh=self.token_client.refresh,
            on_session_expired=self._on_session_expired,
            audit_logger=self._audit,
            base_url=self.base_url
        )

        logger.info(f"API client initialized for server: {self.base_url}")

    async def __aenter__(self):
        await self._ensure_session()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    async def _ensure_session(self) -> ClientSession:
        if self._session is None or self._session.closed:
            connector = aiohttp.TCPConnector(
                limit=10,
                keepalive_timeout=30,
                enable_cleanup_closed=True
            )
            self._session = ClientSession(
                connector=connector,
                timeout=self.timeout,
                headers={
                    'User-Agent': 'TaxiManagerClient/1.0',
                    'Accept': 'application/json'
                }
            )
        return self._session

    async def close(self) -> None:
        """Close the HTTP session."""
        if self._session and not self._session.closed:
            await self._session.close()
        self._session = None

    def add_auth_callback(self, callback: Callable[[bool], None]) -> None:
        """
        Add callback for authentication state changes.

        Args:
            callback: Called with True after login/restore and False after
                logout or when the session expired for good
        """
        self._auth_callbacks.append(callback)

    def _notify_auth_change(self, is_authenticated: bool) -> None:
        for callback in self._auth_callbacks:
            try:
                callback(is_authenticated)
            except Exception as e:
                logger.error(f"Error in auth callback: {e}")

    def _on_session_expired(self, error: TokenRefreshError) -> None:
        self._notify_auth_change(False)

    # Request pipeline

    async def request(
        self,
        method: str,
        path: str,
        params: Optional[Dict[str, Any]] = None,
        json: Any = None,
        headers: Optional[Dict[str, str]] = None
    ) -> APIResponse:
        """
        Make an authenticated request.

        Args:
            method: HTTP method
            path: Path relative to the API root (``taxis/``)
            params: Query parameters
            json: JSON body
            headers: Extra headers

        Returns:
            The 2xx response, after a transparent token refresh if needed

        Raises:
            APIResponseError: Non-2xx answer that could not be recovered
            NetworkError: Server unreachable or timeout
            TokenRefreshError: The access token expired and could not be
                refreshed; stored credentials are already cleared
        """
        api_request = APIRequest(
            method=method,
            path=path,
            params=params,
            json=json,
            headers=dict(headers or {})
        )
        return await self._dispatch(api_request)

    async def _dispatch(self, request: APIRequest) -> APIResponse:
        await self.authenticator.authenticate(request)
        try:
            return await self._send(request)
        except APIResponseError as e:
            return await self.coordinator.handle(request, e, self._dispatch)

    async def _send(self, request: APIRequest) -> APIResponse:
        """Send one request on the wire, without any token handling."""
        session = await self._ensure_session()
        url = self._build_url(request.path)

        logger.debug(f"Making {request.method} request to {url}")

        try:
            async with session.request(
                method=request.method,
                url=url,
                params=request.params,
                json=request.json,
                headers=request.headers
            ) as response:
                payload = await self._read_payload(response)

                if 200 <= response.status < 300:
                    return APIResponse(
                        status=response.status,
                        data=payload,
                        headers=dict(response.headers),
                        request=request
                    )

                detail = self._extract_detail(payload)
                raise APIResponseError(
                    f"{request.method} {request.path} failed ({response.status}): {detail or 'no detail'}",
                    status_code=response.status,
                    detail=detail,
                    payload=payload,
                    method=request.method,
                    path=request.path
                )

        except asyncio.TimeoutError as e:
            raise NetworkError(
                f"{request.method} {request.path} timed out after {self.timeout.total}s",
                ErrorCode.NETWORK_TIMEOUT,
                context={'path': request.path},
                cause=e,
                user_message="The server took too long to respond."
            )
        except (ClientError, OSError) as e:
            raise NetworkError(
                f"{request.method} {request.path} failed: {e}",
                ErrorCode.NETWORK_CONNECTION_FAILED,
                context={'path': request.path},
                cause=e,
                user_message="Could not connect to the server. Check your network connection."
            )

    def _build_url(self, path: str) -> str:
        return urljoin(self.base_url, path.lstrip('/'))

    async def _read_payload(self, response: aiohttp.ClientResponse) -> Any:
        text = await response.text()
        if not text:
            return None
        try:
            return json.loads(text)
        except json.JSONDecodeError:
            return text

    @staticmethod
    def _extract_detail(payload: Any) -> Optional[str]:
        if isinstance(payload, dict):
            detail = payload.get('detail') or payload.get('error')
            return str(detail) if detail else None
        if isinstance(payload, str) and payload:
            return payload[:200]
        return None

    async def get(self, path: str, params: Optional[Dict[str, Any]] = None) -> APIResponse:
        return await self.request('GET', path, params=params)

    async def post(self, path: str, json: Any = None) -> APIResponse:
        return await self.request('POST', path, json=json)

    async def put(self, path: str, json: Any = None) -> APIResponse:
        return await self.request('PUT', path, json=json)

    async def patch(self, path: str, json: Any = None) -> APIResponse:
        return await self.request('PATCH', path, json=json)

    async def delete(self, path: str) -> APIResponse:
        return await self.request('DELETE', path)

    # Session management

    async def login(self, username: str, password: str) -> User:
        """
        Authenticate and load the user profile.

        Both tokens, the user id and the role are persisted in the
        credential store. If the profile cannot be loaded nothing is kept.

        Raises:
            AuthenticationError: Rejected credentials or unknown role
            NetworkError: Server unreachable
        """
        logger.info(f"Logging in as {username}")

        try:
            pair = await self.token_client.obtain_pair(username, password)
        except AuthenticationError as e:
            self._audit.log_authentication(username, success=False, failure_reason=e.message)
            raise

        await self.credential_store.set(StorageKey.ACCESS_TOKEN.value, pair.access_token)
        await self.credential_store.set(StorageKey.REFRESH_TOKEN.value, pair.refresh_token)
        self.coordinator.wave.forget_issued_token()

        try:
            response = await self.get(CURRENT_USER_PATH)
        except (APIResponseError, NetworkError, TokenRefreshError) as e:
            # Tokens without a user id and role are not a session
            await self.credential_store.clear()
            self.coordinator.wave.forget_issued_token()
            self._audit.log_authentication(username, success=False, failure_reason=e.message)
            raise

        try:
            user = User.from_api(response.data)
        except (KeyError, TypeError, ValueError) as e:
            await self.credential_store.clear()
            self._audit.log_authentication(username, success=False, failure_reason="unknown role")
            raise AuthenticationError(
                f"User {username} has no usable role",
                ErrorCode.AUTH_UNKNOWN_ROLE,
                cause=e,
                user_message="Your account has no role assigned in this application."
            )

        await self.update_user(user)

        self._audit.log_authentication(username, user_id=str(user.id), success=True)
        self._notify_auth_change(True)
        logger.info(f"Logged in as {username} ({user.role.value})")
        return user

    async def logout(self) -> None:
        """Forget every stored credential."""
        user_id = await self._read_quietly(StorageKey.USER_ID)
        await self.credential_store.clear()
        self.coordinator.wave.forget_issued_token()

        self._audit.log_logout(user_id=user_id)
        self._notify_auth_change(False)
        logger.info("Logged out")

    async def restore_session(self) -> Optional[User]:
        """
        Rebuild the user from the credential store.

        Returns:
            The stored user, or None when any of the session keys is missing
            or the store cannot be read (credentials are then cleared)
        """
        try:
            values = await asyncio.gather(*(self.credential_store.get(key.value) for key in StorageKey))
        except Exception as e:
            logger.error(f"Error loading stored session: {e}")
            await self.credential_store.clear()
            return None

        stored = dict(zip(StorageKey, values))
        if not all(stored.values()):
            logger.info("No stored session found")
            return None

        try:
            user = User(
                id=int(stored[StorageKey.USER_ID]),
                username='',
                role=UserRole(stored[StorageKey.USER_ROLE])
            )
        except ValueError as e:
            logger.error(f"Stored session is corrupt, clearing it: {e}")
            await self.credential_store.clear()
            return None

        self._notify_auth_change(True)
        logger.info(f"Restored session for user {user.id} ({user.role.value})")
        return user

    async def update_user(self, user: User) -> None:
        await self.credential_store.set(StorageKey.USER_ID.value, str(user.id))
        await self.credential_store.set(StorageKey.USER_ROLE.value, user.role.value)

    async def is_authenticated(self) -> bool:
        """Whether an access token and user id are stored."""
        access_token = await self._read_quietly(StorageKey.ACCESS_TOKEN)
        user_id = await self._read_quietly(StorageKey.USER_ID)
        return bool(access_token and user_id)

    async def _read_quietly(self, key: StorageKey) -> Optional[str]:
        try:
            return await self.credential_store.get(key.value)
        except Exception as e:
            logger.warning(f"Could not read {key.value}: {e}")
            return None

    # Back-office resources

    async def get_current_user(self) -> User:
        response = await self.get(CURRENT_USER_PATH)
        return User.from_api(response.data)

    async def list_taxis(self) -> List[Dict[str, Any]]:
        return (await self.get('taxis/')).data

    async def list_gastos(self) -> List[Dict[str, Any]]:
        return (await self.get('gastos/')).data

    async def create_gasto(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        return (await self.post('gastos/', json=payload)).data

    async def list_conceptos_gasto(self) -> List[Dict[str, Any]]:
        return (await self.get('conceptos-gasto/')).data

    async def list_ingresos_guardia(self) -> List[Dict[str, Any]]:
        return (await self.get('ingresos-guardia/')).data

    async def create_ingreso_guardia(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        return (await self.post('ingresos-guardia/', json=payload)).data
