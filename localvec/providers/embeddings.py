"""
Embeddings providers for OpenAI-compatible HTTP APIs.

Failures are reported through EmbeddingsResponse.status rather than raised,
so the document index can turn them into typed errors. Rate-limited
requests (HTTP 429) are retried after each delay in ``retry_policy``.
"""

import logging
import os
import time

import requests

from ..types import EmbeddingsResponse
from .base import get_registry

logger = logging.getLogger(__name__)

DEFAULT_RETRY_POLICY = (2.0, 5.0)


class OpenAIEmbeddings:
    """
    Embeddings using the OpenAI /v1/embeddings endpoint.

    Also works with OpenAI-compatible servers (Ollama, vLLM, LiteLLM) by
    pointing ``endpoint`` at them.

    Authentication (checked in priority order):
    1. api_key parameter (if provided)
    2. LOCALVEC_OPENAI_API_KEY
    3. OPENAI_API_KEY
    """

    def __init__(
        self,
        model: str = "text-embedding-3-small",
        api_key: str | None = None,
        endpoint: str = "https://api.openai.com",
        organization: str | None = None,
        dimensions: int | None = None,
        max_tokens: int = 8000,
        retry_policy: list[float] | tuple[float, ...] = DEFAULT_RETRY_POLICY,
        timeout: float = 120,
    ):
        self.model = model
        self.api_key = (
            api_key
            or os.environ.get("LOCALVEC_OPENAI_API_KEY")
            or os.environ.get("OPENAI_API_KEY")
        )
        self.endpoint = endpoint.rstrip("/")
        self.organization = organization
        self.dimensions = dimensions
        self.max_tokens = max_tokens
        self.retry_policy = tuple(retry_policy)
        self.timeout = timeout

    def _url(self) -> str:
        return f"{self.endpoint}/v1/embeddings"

    def _headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        if self.organization:
            headers["OpenAI-Organization"] = self.organization
        return headers

    def _body(self, inputs: list[str]) -> dict:
        body = {"model": self.model, "input": inputs}
        if self.dimensions:
            body["dimensions"] = self.dimensions
        return body

    def create_embeddings(self, inputs: str | list[str]) -> EmbeddingsResponse:
        """Embed one or more texts, retrying on rate limits."""
        if isinstance(inputs, str):
            inputs = [inputs]

        attempt = 0
        while True:
            try:
                response = requests.post(
                    self._url(),
                    json=self._body(inputs),
                    headers=self._headers(),
                    timeout=(10, self.timeout),  # (connect, read)
                )
            except requests.RequestException as e:
                return EmbeddingsResponse(status="error", message=f"Embeddings request failed: {e}")

            if response.status_code == 429 and attempt < len(self.retry_policy):
                delay = self.retry_policy[attempt]
                attempt += 1
                logger.warning("Embeddings rate limited, retrying in %.1fs", delay)
                time.sleep(delay)
                continue
            break

        if response.status_code == 429:
            return EmbeddingsResponse(
                status="rate_limited",
                message="The embeddings API returned a rate limit error.",
            )
        if not response.ok:
            detail = response.text[:200] if response.text else ""
            return EmbeddingsResponse(
                status="error",
                message=f"The embeddings API returned HTTP {response.status_code}. {detail}".strip(),
            )

        payload = response.json()
        data = sorted(payload.get("data", []), key=lambda d: d.get("index", 0))
        return EmbeddingsResponse(
            status="success",
            output=[d["embedding"] for d in data],
            model=payload.get("model", self.model),
            usage=payload.get("usage"),
        )


class AzureOpenAIEmbeddings(OpenAIEmbeddings):
    """
    Embeddings using an Azure OpenAI deployment.

    The deployment is addressed by URL; the key goes in the api-key header.
    Falls back to AZURE_OPENAI_API_KEY when no api_key is given.
    """

    def __init__(
        self,
        endpoint: str,
        deployment: str,
        api_key: str | None = None,
        api_version: str = "2023-05-15",
        **kwargs,
    ):
        super().__init__(
            model=deployment,
            api_key=api_key or os.environ.get("AZURE_OPENAI_API_KEY"),
            endpoint=endpoint,
            **kwargs,
        )
        self.deployment = deployment
        self.api_version = api_version

    def _url(self) -> str:
        return (
            f"{self.endpoint}/openai/deployments/{self.deployment}"
            f"/embeddings?api-version={self.api_version}"
        )

    def _headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["api-key"] = self.api_key
        return headers

    def _body(self, inputs: list[str]) -> dict:
        body = {"input": inputs}
        if self.dimensions:
            body["dimensions"] = self.dimensions
        return body


# Register providers
_registry = get_registry()
_registry.register_embeddings("openai", OpenAIEmbeddings)
_registry.register_embeddings("azure-openai", AzureOpenAIEmbeddings)
