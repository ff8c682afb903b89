"""
Attaches the current access token to outgoing requests.
"""

import logging

from taxi_shared.interfaces import ICredentialStore
from taxi_shared.models import APIRequest, StorageKey

logger = logging.getLogger(__name__)


class RequestAuthenticator:
    """
    Sets ``Authorization: Bearer <token>`` from the credential store.

    A missing token leaves the request as it is; the server will answer 401
    and the refresh coordinator takes over. A storage failure never aborts
    the request.
    """

    def __init__(self, credential_store: ICredentialStore):
        self.credential_store = credential_store

    async def authenticate(self, request: APIRequest) -> APIRequest:
        try:
            access_token = await self.credential_store.get(StorageKey.ACCESS_TOKEN.value)
        except Exception as e:
            logger.warning(f"Could not read access token, sending {request.method} {request.path} without it: {e}")
            return request

        if access_token:
            request.headers['Authorization'] = f'Bearer {access_token}'
            request.sent_token = access_token

        return request
