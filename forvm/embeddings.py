"""
Embedding operations for Forvm.

Provides functions for generating embeddings and computing similarity.
Two providers are supported: a local Ollama server and any
OpenAI-compatible /embeddings endpoint (OpenRouter by default).
"""

import json
import logging
import math
from typing import List, Optional

import requests

from forvm.config import (
    get_embedding_api_key,
    get_embedding_model,
    get_embedding_provider,
    get_ollama_url,
    get_openai_base_url,
)

logger = logging.getLogger(__name__)


def _ollama_embedding(text: str, model: str) -> Optional[List[float]]:
    response = requests.post(
        f"{get_ollama_url()}/api/embeddings",
        json={
            "model": model,
            "prompt": text,
        },
        timeout=30
    )
    response.raise_for_status()
    return response.json().get("embedding")


def _openai_embedding(text: str, model: str) -> Optional[List[float]]:
    api_key = get_embedding_api_key()
    if not api_key:
        logger.warning("No embedding API key configured for the openai provider")
        return None

    response = requests.post(
        f"{get_openai_base_url()}/embeddings",
        json={"model": model, "input": text},
        headers={
            "Authorization": f"Bearer {api_key}",
            "Content-Type": "application/json",
        },
        timeout=30
    )
    response.raise_for_status()
    data = response.json().get("data") or []
    if not data:
        return None
    return data[0].get("embedding")


def get_embedding(text: str, model: Optional[str] = None) -> Optional[List[float]]:
    """
    Get embedding vector for text from the configured provider.

    Args:
        text: Text to embed
        model: Model to use (uses config if not specified)

    Returns:
        List of floats representing the embedding, or None if the provider
        is unavailable or returned something unusable
    """
    if not text or not text.strip():
        return None

    model = model or get_embedding_model()
    provider = get_embedding_provider()

    try:
        if provider == "openai":
            return _openai_embedding(text, model)
        return _ollama_embedding(text, model)
    except requests.exceptions.RequestException as e:
        # Provider unavailable or error - fail gracefully
        logger.warning("Embedding request to %s failed: %s", provider, e)
        return None
    except (KeyError, ValueError, TypeError) as e:
        # Malformed response
        logger.warning("Malformed embedding response from %s: %s", provider, e)
        return None


def cosine_similarity(a, b) -> float:
    """
    Compute cosine similarity between two vectors.

    Args:
        a: First vector (list, numpy array, or JSON string)
        b: Second vector (list, numpy array, or JSON string)

    Returns:
        Similarity score between -1 and 1
    """
    if a is None or b is None:
        return 0.0

    if isinstance(a, str):
        a = json.loads(a)
    if isinstance(b, str):
        b = json.loads(b)

    # Convert to list if numpy array (pgvector returns numpy arrays)
    if hasattr(a, 'tolist'):
        a = a.tolist()
    if hasattr(b, 'tolist'):
        b = b.tolist()

    if len(a) != len(b):
        return 0.0

    dot_product = sum(x * y for x, y in zip(a, b))
    magnitude_a = math.sqrt(sum(x * x for x in a))
    magnitude_b = math.sqrt(sum(x * x for x in b))

    if magnitude_a == 0 or magnitude_b == 0:
        return 0.0

    return dot_product / (magnitude_a * magnitude_b)
