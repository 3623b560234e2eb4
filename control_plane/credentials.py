"""Credential sources — where the bearer token and user identity come from."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional

from dashboard.services.config import get_settings


@dataclass(frozen=True)
class Credential:
    """A bearer token and the user it belongs to."""

    token: str
    user_id: str

    @property
    def authorization(self) -> str:
        return f"Bearer {self.token}"


class CredentialSource(ABC):
    """Abstract interface to the authentication provider."""

    @abstractmethod
    async def get_credential(self) -> Optional[Credential]:
        """Return the current credential, or None when signed out."""
        ...


class StaticCredentialSource(CredentialSource):
    """A fixed credential, or none. Useful for scripts and tests."""

    def __init__(self, token: str = "", user_id: str = ""):
        self._credential = Credential(token=token, user_id=user_id) if token else None

    async def get_credential(self) -> Optional[Credential]:
        return self._credential

    def sign_out(self) -> None:
        self._credential = None


class SettingsCredentialSource(CredentialSource):
    """Reads CONTROL_PLANE_TOKEN / CONTROL_PLANE_USER_ID from settings on every call."""

    async def get_credential(self) -> Optional[Credential]:
        settings = get_settings()
        if not settings.control_plane_token:
            return None
        return Credential(
            token=settings.control_plane_token,
            user_id=settings.control_plane_user_id,
        )
