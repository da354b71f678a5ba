"""
Credential issuer interface and an in-memory implementation.
"""

import secrets
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional

from shared.errors import ProviderCallError
from shared.logging import get_logger

from ..models import ClientMetadata


class CredentialIssuer(ABC):
    """The identity provider that owns client secrets.

    ``regenerate_secret`` replaces the secret atomically: the previous one
    stops working the moment the new one exists.
    """

    @abstractmethod
    async def describe(self, client_id: str) -> ClientMetadata:
        """Return name and display metadata for a client."""

    @abstractmethod
    async def regenerate_secret(self, client_id: str) -> str:
        """Issue a new secret and return it."""


class InMemoryCredentialIssuer(CredentialIssuer):
    """Process-local issuer for development and tests."""

    def __init__(self, secret_bytes: int = 32):
        self.secret_bytes = secret_bytes
        self._clients: Dict[str, ClientMetadata] = {}
        self._secrets: Dict[str, str] = {}
        self.regenerate_calls = 0
        self.logger = get_logger("rotation.issuer")

    def add_client(self, client_id: str, client_name: Optional[str] = None, **attributes: Any) -> str:
        """Register a client and return its first secret."""
        self._clients[client_id] = ClientMetadata(
            client_id=client_id,
            client_name=client_name or client_id,
            attributes=dict(attributes),
        )
        self._secrets[client_id] = secrets.token_urlsafe(self.secret_bytes)
        return self._secrets[client_id]

    def current_secret(self, client_id: str) -> Optional[str]:
        return self._secrets.get(client_id)

    async def describe(self, client_id: str) -> ClientMetadata:
        metadata = self._clients.get(client_id)
        if metadata is None:
            raise ProviderCallError("describe", "Unknown client", details={"client_id": client_id})
        return metadata

    async def regenerate_secret(self, client_id: str) -> str:
        if client_id not in self._clients:
            raise ProviderCallError("regenerate_secret", "Unknown client", details={"client_id": client_id})
        self.regenerate_calls += 1
        self._secrets[client_id] = secrets.token_urlsafe(self.secret_bytes)
        self.logger.info("Client secret regenerated", client_id=client_id)
        return self._secrets[client_id]
