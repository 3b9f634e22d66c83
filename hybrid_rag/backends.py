"""Provider communication: embeddings and answer generation over the OpenAI API."""

import asyncio
import logging
from typing import Protocol

import openai
from openai import AsyncOpenAI

from .config import RAGConfig
from .errors import EmbeddingFailure

logger = logging.getLogger(__name__)


class Embedder(Protocol):
    async def embed(self, text: str) -> list[float]: ...


class AnswerGenerator(Protocol):
    async def generate(self, prompt: str) -> str: ...


def create_client(config: RAGConfig, api_key: str | None = None, max_retries: int = 2) -> AsyncOpenAI:
    """Build an AsyncOpenAI client from config (api_key overrides the configured key)."""
    return AsyncOpenAI(
        api_key=api_key or config.openai_api_key,
        base_url=config.openai_base_url,
        max_retries=max_retries,
    )


class OpenAIEmbedder:
    """Embedding client; the SDK retries transient errors with backoff before giving up."""

    def __init__(self, config: RAGConfig, client: AsyncOpenAI | None = None):
        self.model = config.embedding_model
        self.client = client or create_client(config, max_retries=config.embedding_max_retries)

    async def embed(self, text: str) -> list[float]:
        """Embed one text.

        Raises:
            EmbeddingFailure: when the provider call fails or returns no vector
        """
        try:
            response = await self.client.embeddings.create(model=self.model, input=text)
        except openai.APIStatusError as e:
            raise EmbeddingFailure(f"embedding request failed with HTTP {e.status_code}: {e.message}") from e
        except openai.OpenAIError as e:
            raise EmbeddingFailure(f"embedding request failed: {e}") from e

        if not response.data:
            raise EmbeddingFailure("embedding response contained no vectors")
        return list(response.data[0].embedding)


class OpenAIChatGenerator:
    """Sends a composed prompt to chat completions and returns the reply text."""

    def __init__(
        self,
        config: RAGConfig,
        client: AsyncOpenAI | None = None,
        temperature: float = 0.2,
        max_tokens: int = 300,
    ):
        self.model = config.chat_model
        self.temperature = temperature
        self.max_tokens = max_tokens
        self.client = client or create_client(config)

    async def generate(self, prompt: str) -> str:
        response = await self.client.chat.completions.create(
            model=self.model,
            messages=[{"role": "user", "content": prompt}],
            temperature=self.temperature,
            max_tokens=self.max_tokens,
        )
        if not response.choices:
            return ""
        return (response.choices[0].message.content or "").strip()


async def check_embedding_health(embedder: Embedder, timeout: float = 10.0) -> tuple[bool, str]:
    """Check that the embedding service is reachable and returns vectors.

    Args:
        embedder: Embedder to probe
        timeout: Seconds to wait for the probe

    Returns:
        Tuple of (is_healthy: bool, message: str)
    """
    try:
        vector = await asyncio.wait_for(embedder.embed("health check"), timeout=timeout)
    except asyncio.TimeoutError:
        return False, f"Embedding health check timed out after {timeout}s. Service may be unresponsive."
    except EmbeddingFailure as e:
        return False, f"Embedding service is unreachable: {e}"

    if not vector:
        return False, "Embedding service is reachable but returned an empty vector."
    return True, f"Embedding service is healthy ({len(vector)} dimensions)."
