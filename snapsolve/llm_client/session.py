from __future__ import annotations

import logging
from typing import Callable, Mapping

from snapsolve.config.provider_config import ApiProvider, ProviderConfig
from snapsolve.llm_client.base import ProviderClient
from snapsolve.llm_client.gemini_client import GeminiProviderClient
from snapsolve.llm_client.openai_client import OpenAIProviderClient
from snapsolve.utils.error_taxonomy import AuthenticationMissingError

logger = logging.getLogger(__name__)

ClientFactory = Callable[[ProviderConfig], ProviderClient]

DEFAULT_CLIENT_FACTORIES: dict[ApiProvider, ClientFactory] = {
    "openai": lambda config: OpenAIProviderClient(config=config),
    "gemini": lambda config: GeminiProviderClient(config=config),
}


class ProviderSession:
    """Owns the single active provider client for one configuration snapshot."""

    def __init__(
        self,
        config: ProviderConfig,
        *,
        client_factories: Mapping[ApiProvider, ClientFactory] | None = None,
    ) -> None:
        self.config = config
        self._client_factories = dict(client_factories or DEFAULT_CLIENT_FACTORIES)
        self._client: ProviderClient | None = None
        self._closed = False

    @property
    def provider(self) -> ApiProvider:
        return self.config.api_provider

    @property
    def usable(self) -> bool:
        return self.config.has_credential and not self._closed

    def client(self) -> ProviderClient:
        if self._closed:
            raise RuntimeError("Provider session is closed")
        if not self.config.has_credential:
            raise AuthenticationMissingError(
                f"No API key configured for provider: {self.provider}"
            )

        if self._client is None:
            factory = self._client_factories.get(self.provider)
            if factory is None:
                raise ValueError(f"LLM client not configured for provider: {self.provider}")
            self._client = factory(self.config)
            logger.info("Initialized %s provider client", self.provider)
        return self._client

    async def aclose(self) -> None:
        self._closed = True
        client, self._client = self._client, None
        if client is not None:
            await client.aclose()
            logger.info("Closed %s provider client", self.provider)


def build_provider_session(config: ProviderConfig) -> ProviderSession:
    return ProviderSession(config)
