"""
Embedding client for vector similarity search.
Supports OpenAI and local sentence-transformers models.
"""

import asyncio
from typing import List, Optional, Tuple

from openai import AsyncOpenAI
from sentence_transformers import SentenceTransformer

from ragchat.shared.config import settings
from ragchat.shared.exceptions import EmbeddingError
from ragchat.shared.tokens import count_tokens


class EmbeddingClient:
    """Unified embedding client."""

    def __init__(
        self,
        provider: Optional[str] = None,
        model: Optional[str] = None,
        api_key: Optional[str] = None
    ):
        self.provider = provider or settings.embedding.provider
        self.model = model or settings.embedding.model
        self._local_model = None

        if self.provider == "openai":
            api_key = api_key or settings.llm.openai_api_key
            if not api_key:
                raise EmbeddingError("OpenAI API key not configured")
            self.client = AsyncOpenAI(api_key=api_key, base_url=settings.llm.base_url)
        elif self.provider == "local":
            self.client = None
        else:
            raise EmbeddingError(f"Unsupported embedding provider: {self.provider}")

    def _get_local_model(self):
        """Lazy load local embedding model."""
        if self._local_model is None:
            try:
                self._local_model = SentenceTransformer(self.model)
            except Exception as e:
                raise EmbeddingError(f"Failed to load local model {self.model}: {str(e)}") from e
        return self._local_model

    async def embed(self, text: str) -> Tuple[List[float], int]:
        """
        Embed a single text.

        Args:
            text: Text to embed

        Returns:
            (vector, number of tokens the text used)
        """
        if self.provider == "openai":
            return await self._embed_openai(text)
        return await self._embed_local(text)

    async def _embed_openai(self, text: str) -> Tuple[List[float], int]:
        """Generate an embedding using the OpenAI API."""
        try:
            response = await self.client.embeddings.create(model=self.model, input=[text])
        except Exception as e:
            raise EmbeddingError(f"OpenAI embedding failed: {str(e)}") from e

        tokens = response.usage.prompt_tokens if response.usage else count_tokens(text)
        return list(response.data[0].embedding), tokens

    async def _embed_local(self, text: str) -> Tuple[List[float], int]:
        """Generate an embedding using the local model."""
        model = self._get_local_model()
        try:
            # encode is synchronous and CPU bound
            vector = await asyncio.to_thread(
                model.encode, text, show_progress_bar=False, convert_to_numpy=True
            )
        except Exception as e:
            raise EmbeddingError(f"Local embedding failed: {str(e)}") from e
        return vector.tolist(), count_tokens(text)
