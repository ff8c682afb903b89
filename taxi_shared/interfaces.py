"""
Core interfaces for the Taxi Manager client.

This module defines the abstract interfaces that components must implement
to ensure consistent behavior across the client.
"""

from abc import ABC, abstractmethod
from typing import Any, Dict, Optional

from .models import APIResponse, User


class ICredentialStore(ABC):
    """Async key-value persistence for tokens and session data."""

    @abstractmethod
    async def get(self, key: str) -> Optional[str]:
        """Return the stored value or None."""
        pass

    @abstractmethod
    async def set(self, key: str, value: str) -> None:
        """Store a value under key."""
        pass

    @abstractmethod
    async def remove(self, key: str) -> None:
        """Remove key if present."""
        pass

    @abstractmethod
    async def clear(self) -> None:
        """Remove every stored credential."""
        pass


class IAPIClient(ABC):
    """Interface for the authenticated back-office API client."""

    @abstractmethod
    async def request(
        self,
        method: str,
        path: str,
        params: Optional[Dict[str, Any]] = None,
        json: Any = None,
        headers: Optional[Dict[str, str]] = None
    ) -> APIResponse:
        """Issue an authenticated request."""
        pass

    @abstractmethod
    async def login(self, username: str, password: str) -> User:
        """Obtain a token pair and load the user profile."""
        pass

    @abstractmethod
    async def logout(self) -> None:
        """Forget every stored credential."""
        pass
