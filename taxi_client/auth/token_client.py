"""
Token endpoint exchanges.

``token/`` trades username and password for an access/refresh pair and
``token/refresh/`` trades a refresh token for a new access token (and, when
the server rotates them, a new refresh token). Both calls go out on the raw
transport so they are never intercepted by the refresh coordinator.
"""

import logging
from typing import Any, Awaitable, Callable

from taxi_shared.exceptions import (
    APIResponseError, AuthenticationError, ErrorCode, NetworkError, TokenRefreshError
)
from taxi_shared.models import APIRequest, APIResponse, CredentialPair

logger = logging.getLogger(__name__)

TOKEN_OBTAIN_PATH = 'token/'
TOKEN_REFRESH_PATH = 'token/refresh/'

Transport = Callable[[APIRequest], Awaitable[APIResponse]]


class TokenClient:
    """Performs the token-issue and token-refresh calls."""

    def __init__(self, transport: Transport):
        self._transport = transport

    async def obtain_pair(self, username: str, password: str) -> CredentialPair:
        """
        Exchange user credentials for a token pair.

        Raises:
            AuthenticationError: The server rejected the credentials
            NetworkError: The server could not be reached
        """
        request = APIRequest('POST', TOKEN_OBTAIN_PATH, json={'username': username, 'password': password})

        try:
            response = await self._transport(request)
        except APIResponseError as e:
            if 400 <= e.status_code < 500:
                raise AuthenticationError(
                    f"Login rejected: {e.detail or 'invalid credentials'}",
                    ErrorCode.AUTH_INVALID_CREDENTIALS,
                    context={'status_code': e.status_code},
                    cause=e,
                    user_message=e.detail or "Invalid username or password."
                )
            raise

        access, refresh = self._parse_tokens(response.data)
        if not access or not refresh:
            raise AuthenticationError(
                "Token endpoint returned an incomplete token pair",
                ErrorCode.AUTH_INVALID_CREDENTIALS
            )
        return CredentialPair(access_token=access, refresh_token=refresh)

    async def refresh(self, refresh_token: str) -> CredentialPair:
        """
        Exchange a refresh token for a new access token.

        The returned pair has ``refresh_token=None`` when the server did not
        rotate the refresh token.

        Raises:
            TokenRefreshError: On any transport failure, non-2xx answer or
                malformed body
        """
        request = APIRequest('POST', TOKEN_REFRESH_PATH, json={'refresh': refresh_token})

        try:
            response = await self._transport(request)
        except APIResponseError as e:
            raise TokenRefreshError(
                f"Refresh rejected with status {e.status_code}: {e.detail or 'no detail'}",
                context={'status_code': e.status_code},
                cause=e
            )
        except NetworkError as e:
            raise TokenRefreshError(f"Refresh request failed: {e.message}", cause=e)

        access, rotated = self._parse_tokens(response.data)
        if not access:
            raise TokenRefreshError(
                "Refresh response did not contain an access token",
                ErrorCode.AUTH_REFRESH_FAILED,
                context={'status_code': response.status}
            )

        logger.debug(f"Refresh exchange completed (refresh token rotated: {rotated is not None})")
        return CredentialPair(access_token=access, refresh_token=rotated)

    @staticmethod
    def _parse_tokens(payload: Any):
        if not isinstance(payload, dict):
            return None, None

        access = payload.get('access')
        refresh = payload.get('refresh')
        access = access if isinstance(access, str) and access else None
        refresh = refresh if isinstance(refresh, str) and refresh else None
        return access, refresh
