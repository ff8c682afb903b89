"""
Core data models for the Taxi Manager client.

This module defines the credential and user structures kept in the credential
store, and the request/response descriptors that flow through the
authenticated HTTP client and its token refresh coordinator.
"""

import asyncio
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional


class StorageKey(Enum):
    """Keys used in the credential store."""
    ACCESS_TOKEN = "accessToken"
    REFRESH_TOKEN = "refreshToken"
    USER_ID = "userId"
    USER_ROLE = "userRole"


class UserRole(Enum):
    """Back-office roles; each one gets its own dashboard."""
    ADMINISTRADOR = "administrador"
    VALIDADOR = "validador"
    ENCARGADO = "encargado"


class WaveState(Enum):
    """Lifecycle of one token refresh wave."""
    IDLE = "idle"
    REFRESHING = "refreshing"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


@dataclass
class CredentialPair:
    """Access/refresh token pair issued by the token endpoints."""
    access_token: str
    refresh_token: Optional[str] = None

    def __post_init__(self):
        if not self.access_token:
            raise ValueError("Access token cannot be empty")

    def __repr__(self) -> str:
        # Keep tokens out of logs and tracebacks
        return f"CredentialPair(access_token=<{len(self.access_token)} chars>, rotated={self.refresh_token is not None})"


@dataclass
class User:
    """Authenticated back-office user."""
    id: int
    username: str
    role: UserRole
    email: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None

    @classmethod
    def from_api(cls, payload: Dict[str, Any]) -> 'User':
        """Build a user from the ``usuarios/me/`` response body."""
        return cls(
            id=int(payload['id']),
            username=payload.get('username', ''),
            role=UserRole(payload['rol']),
            email=payload.get('email'),
            first_name=payload.get('first_name'),
            last_name=payload.get('last_name')
        )


@dataclass
class APIRequest:
    """
    An outgoing request as seen by the authenticator and the coordinator.

    ``sent_token`` is the access token attached the last time the request went
    out; ``retried`` is the marker set before a request is replayed after a
    token refresh.
    """
    method: str
    path: str
    params: Optional[Dict[str, Any]] = None
    json: Any = None
    headers: Dict[str, str] = field(default_factory=dict)
    sent_token: Optional[str] = None
    retried: bool = False

    def __post_init__(self):
        self.method = self.method.upper()


@dataclass
class APIResponse:
    """A successful (2xx) response."""
    status: int
    data: Any
    headers: Dict[str, str] = field(default_factory=dict)
    request: Optional[APIRequest] = None


@dataclass
class PendingRequest:
    """A request waiting for the current refresh wave to settle."""
    request: APIRequest
    future: 'asyncio.Future[str]'
