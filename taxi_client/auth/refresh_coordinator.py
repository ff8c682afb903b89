"""
Recovery from expired access tokens.

When a request comes back 401 the coordinator refreshes the access token and
replays the request. Requests that fail while a refresh is already running
join that refresh (the "wave") instead of starting their own, so exactly one
refresh call is made no matter how many requests noticed the expired token.
When the refresh fails the stored credentials are cleared before every
request of the wave is rejected with the refresh error.
"""

import asyncio
import logging
from typing import Awaitable, Callable, List, Optional
from urllib.parse import urlsplit

from taxi_shared.exceptions import APIResponseError, ErrorCode, TokenRefreshError
from taxi_shared.interfaces import ICredentialStore
from taxi_shared.logging_config import AuditLogger
from taxi_shared.models import (
    APIRequest, APIResponse, CredentialPair, PendingRequest, StorageKey, WaveState
)
from taxi_client.auth.token_client import TOKEN_OBTAIN_PATH, TOKEN_REFRESH_PATH

logger = logging.getLogger(__name__)

EXEMPT_PATHS = (TOKEN_OBTAIN_PATH, TOKEN_REFRESH_PATH)

Replay = Callable[[APIRequest], Awaitable[APIResponse]]
RefreshExchange = Callable[[str], Awaitable[CredentialPair]]


def is_exempt_path(path: str, base_url: Optional[str] = None) -> bool:
    """
    True for the token-issue and token-refresh endpoints.

    Relative paths are resolved against the API root, so they must match
    exactly. Full URLs match only when they sit under base_url.
    """
    if '://' in path:
        if not base_url or not path.startswith(base_url):
            return False
        path = path[len(base_url):]
    normalized = urlsplit(path).path.lstrip('/')
    return normalized in EXEMPT_PATHS


class RefreshWave:
    """
    State of the current refresh wave.

    IDLE -> REFRESHING -> SUCCEEDED | FAILED -> IDLE. Only one wave can be
    REFRESHING at a time. All transitions happen between awaits on one event
    loop, so no lock is needed.
    """

    def __init__(self):
        self.state = WaveState.IDLE
        self.pending: List[PendingRequest] = []
        self.last_issued_token: Optional[str] = None
        self.waves_started = 0

    @property
    def in_progress(self) -> bool:
        return self.state is WaveState.REFRESHING

    def begin(self) -> None:
        if self.in_progress:
            raise RuntimeError("A token refresh is already in progress")
        self.state = WaveState.REFRESHING
        self.pending = []
        self.waves_started += 1

    def enqueue(self, request: APIRequest) -> 'asyncio.Future[str]':
        """Queue a request; the returned future yields the new access token."""
        if not self.in_progress:
            raise RuntimeError("No token refresh in progress")
        future = asyncio.get_running_loop().create_future()
        self.pending.append(PendingRequest(request=request, future=future))
        return future

    def succeed(self, access_token: str) -> int:
        """Release every queued request with the new token. Returns the queue size."""
        self.state = WaveState.SUCCEEDED
        self.last_issued_token = access_token
        pending = self._drain()
        for item in pending:
            if not item.future.done():
                item.future.set_result(access_token)
        return len(pending)

    def fail(self, error: BaseException) -> int:
        """Reject every queued request with error. Returns the queue size."""
        self.state = WaveState.FAILED
        self.last_issued_token = None
        pending = self._drain()
        for item in pending:
            if not item.future.done():
                item.future.set_exception(error)
        return len(pending)

    def reset(self) -> None:
        self.state = WaveState.IDLE
        self.pending = []

    def forget_issued_token(self) -> None:
        self.last_issued_token = None

    def _drain(self) -> List[PendingRequest]:
        pending, self.pending = self.pending, []
        return pending


class UnauthorizedResponseCoordinator:
    """
    Handles 401 responses for the authenticated HTTP client.

    Args:
        credential_store: Where tokens are read from and persisted to
        refresh: Coroutine function exchanging a refresh token for a pair
        on_session_expired: Called with the refresh error after the stored
            credentials were cleared
        base_url: API root, used to recognize token endpoints given as full URLs
    """

    def __init__(
        self,
        credential_store: ICredentialStore,
        refresh: RefreshExchange,
        on_session_expired: Optional[Callable[[TokenRefreshError], None]] = None,
        audit_logger: Optional[AuditLogger] = None,
        base_url: Optional[str] = None
    ):
        self.credential_store = credential_store
        self.base_url = base_url
        self.wave = RefreshWave()
        self._refresh = refresh
        self._on_session_expired = on_session_expired
        self._audit = audit_logger or AuditLogger()

    async def handle(self, request: APIRequest, error: Exception, replay: Replay) -> APIResponse:
        """
        Recover request from error if it is a recoverable 401, else re-raise.

        Returns the replayed response. Raises the original error for
        non-recoverable cases and TokenRefreshError when the refresh fails.
        """
        if not isinstance(error, APIResponseError) or not error.is_unauthorized:
            raise error

        if is_exempt_path(request.path, self.base_url):
            logger.debug(f"401 from token endpoint {request.path}, not refreshing")
            raise error

        if request.retried:
            logger.info(f"{request.method} {request.path} rejected again after token refresh")
            raise error

        request.retried = True

        if self.wave.in_progress:
            logger.debug(f"Token refresh in progress, queueing {request.method} {request.path}")
            access_token = await self.wave.enqueue(request)
            return await self._replay(request, access_token, replay)

        last_issued = self.wave.last_issued_token
        if last_issued and request.sent_token and request.sent_token != last_issued:
            # Sent before the last refresh completed; the stored token is already newer
            logger.debug(f"{request.method} {request.path} used a superseded token, replaying")
            return await replay(request)

        access_token = await self._run_wave(error)
        return await self._replay(request, access_token, replay)

    async def _replay(self, request: APIRequest, access_token: str, replay: Replay) -> APIResponse:
        request.headers['Authorization'] = f'Bearer {access_token}'
        request.sent_token = access_token
        return await replay(request)

    async def _run_wave(self, trigger: APIResponseError) -> str:
        self.wave.begin()
        logger.info("Access token rejected, refreshing")

        try:
            try:
                access_token, rotated = await self._exchange(trigger)
            except TokenRefreshError as failure:
                waiting = len(self.wave.pending)
                await self._clear_credentials()
                self.wave.fail(failure)

                logger.warning(f"Token refresh failed, rejecting {waiting + 1} request(s): {failure.message}")
                self._audit.log_token_refresh(success=False, waiting_requests=waiting,
                                              failure_reason=failure.message)
                self._notify_session_expired(failure)
                raise

            waiting = self.wave.succeed(access_token)
            logger.info(f"Token refreshed, replaying {waiting + 1} request(s)")
            self._audit.log_token_refresh(success=True, waiting_requests=waiting, rotated=rotated)
            return access_token
        finally:
            if self.wave.in_progress:
                # The driving task was cancelled mid-wave
                self.wave.fail(TokenRefreshError("Token refresh was interrupted", ErrorCode.AUTH_REFRESH_FAILED))
            self.wave.reset()

    async def _exchange(self, trigger: APIResponseError):
        try:
            refresh_token = await self.credential_store.get(StorageKey.REFRESH_TOKEN.value)
        except Exception as e:
            raise TokenRefreshError(f"Could not read refresh token: {e}", cause=e)

        if not refresh_token:
            raise TokenRefreshError(
                "No refresh token stored",
                ErrorCode.AUTH_REFRESH_TOKEN_MISSING,
                cause=trigger
            )

        try:
            pair = await self._refresh(refresh_token)
        except TokenRefreshError:
            raise
        except Exception as e:
            raise TokenRefreshError(f"Token refresh failed: {e}", cause=e)

        try:
            await self.credential_store.set(StorageKey.ACCESS_TOKEN.value, pair.access_token)
            await self.credential_store.set(StorageKey.REFRESH_TOKEN.value, pair.refresh_token or refresh_token)
        except Exception as e:
            raise TokenRefreshError(f"Could not persist refreshed tokens: {e}", cause=e)

        return pair.access_token, pair.refresh_token is not None

    async def _clear_credentials(self) -> None:
        try:
            await self.credential_store.clear()
        except Exception as e:
            logger.error(f"Failed to clear credentials after refresh failure: {e}")
            return
        self._audit.log_credentials_cleared("token refresh failed")

    def _notify_session_expired(self, failure: TokenRefreshError) -> None:
        if self._on_session_expired is None:
            return
        try:
            self._on_session_expired(failure)
        except Exception as e:
            logger.error(f"Error in session expired callback: {e}")
