"""Shared plumbing for the provider's HTTP adapters."""

import logging
from typing import Dict

import httpx

from ..application.exceptions import ConfigurationError

_PLACEHOLDER_MARKER = "YOUR_"


class BaseClient:
    """Holds the shared httpx client, the API root and the bearer credential."""

    def __init__(self, client: httpx.AsyncClient, token: str, base_url: str):
        """
        Validates the credential before any request is made.

        Args:
            client: The application-wide httpx.AsyncClient.
            token: The provider API key.
            base_url: The API root, with or without a trailing slash.

        Raises:
            ConfigurationError: If the key is empty or still the sample value
                                from .secrets.toml.example.
        """

        if not token or _PLACEHOLDER_MARKER in token.upper():
            raise ConfigurationError(
                f"API key for {self.__class__.__name__} is not set. "
                f"Put it in config/.secrets.toml or export PROVIDER__API_TOKEN."
            )
        if not base_url:
            raise ConfigurationError(f"No base URL configured for {self.__class__.__name__}.")

        self.client = client
        self.token = token
        self.base_url = base_url.rstrip("/")
        self.logger = logging.getLogger(self.__class__.__name__)

    def _url(self, path: str) -> str:
        return f"{self.base_url}/{path.lstrip('/')}"

    def _auth_headers(self) -> Dict[str, str]:
        return {"Authorization": f"Bearer {self.token}"}
