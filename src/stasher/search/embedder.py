"""LiteLLM embedding client.

All embedding calls (indexing and query) route through one Embedder so the
model is never driven from two threads at once.
"""

from __future__ import annotations

import os
import threading

import litellm

from stasher.config import EmbeddingCfg
from stasher.errors import EmbeddingFailure

# Disable LiteLLM verbose logging unless explicitly enabled
litellm.suppress_debug_info = True

# ------------------------------------------------------------------
# Provider → env var mapping for API key validation
# ------------------------------------------------------------------

PROVIDER_ENV: dict[str, str | None] = {
    "openai": "OPENAI_API_KEY",
    "azure": "AZURE_API_KEY",
    "cohere": "COHERE_API_KEY",
    "gemini": "GEMINI_API_KEY",
    "mistral": "MISTRAL_API_KEY",
    "voyage": "VOYAGE_API_KEY",
    "ollama": None,  # Local, no key required
    "huggingface": None,
}


def provider_of(model: str) -> str:
    return model.split("/")[0].lower() if "/" in model else "openai"


def validate_api_key(model: str) -> None:
    """Check that the required API key env var is set for *model*.

    Raises:
        EmbeddingFailure: If the required key is missing from environment.
    """
    provider = provider_of(model)
    env_var = PROVIDER_ENV.get(provider)
    if env_var is None:
        return

    if not os.getenv(env_var):
        raise EmbeddingFailure(
            f"API key not found for provider '{provider}'. "
            f"Set the {env_var} environment variable.",
            operation="embed",
        )


class Embedder:
    """Text → fixed-length vector via ``litellm.embedding()``.

    Calls are serialised with a mutex; the model behind the provider is a
    single shared instance and is not assumed to be safe for concurrent use.

    Args:
        config: Embedding section of the Stasher config.
    """

    def __init__(self, config: EmbeddingCfg | None = None) -> None:
        self.config = config or EmbeddingCfg()
        self._lock = threading.Lock()

    @property
    def model(self) -> str:
        return self.config.model

    @property
    def dimensions(self) -> int:
        return self.config.dimensions

    def embed(self, text: str) -> list[float]:
        """Embed *text* (truncated to ``max_chars``) and return the vector.

        Raises:
            EmbeddingFailure: The provider call failed or the vector length
                does not match the configured dimensions.
        """
        truncated = text[: self.config.max_chars]
        try:
            with self._lock:
                response = litellm.embedding(
                    model=self.config.model,
                    input=[truncated],
                    num_retries=self.config.num_retries,
                )
            vector = list(response.data[0]["embedding"])
        except Exception as exc:
            raise EmbeddingFailure(
                f"Embedding with '{self.config.model}' failed: {exc}",
                operation="embed",
            ) from exc

        if len(vector) != self.config.dimensions:
            raise EmbeddingFailure(
                f"Model '{self.config.model}' returned {len(vector)} dimensions, "
                f"expected {self.config.dimensions}. Set embedding.dimensions in stasher.yaml.",
                operation="embed",
            )
        return vector
