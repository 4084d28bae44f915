"""Issue embeddings: provider contract, lazy caching and an offline hashing embedder."""

from __future__ import annotations

import hashlib
import logging
import math
import re
from collections import Counter
from typing import Protocol, Sequence

from .errors import DegenerateVectorError, EmbeddingUnavailable
from .schemas import Issue
from .store import Store

logger = logging.getLogger(__name__)

TOKEN_RE = re.compile(r"[a-zA-Z0-9']+")


class EmbeddingProvider(Protocol):
    def embed(self, text: str) -> list[float]: ...


def issue_to_text(issue: Issue) -> str:
    parts = [
        issue.title,
        issue.description or "",
        " ".join(issue.labels),
        issue.type or "",
    ]
    return " ".join(part for part in parts if part)


class HashingEmbeddingProvider:
    """Deterministic dense embeddings via token hashing; needs no network access."""

    def __init__(self, dimensions: int = 128) -> None:
        if dimensions < 8:
            raise ValueError("Embedding dimension should be at least 8")
        self.dimensions = dimensions

    def embed(self, text: str) -> list[float]:
        tokens = [token.lower() for token in TOKEN_RE.findall(text)]
        if not tokens:
            raise EmbeddingUnavailable("Cannot embed text without tokens")

        vector = [0.0] * self.dimensions
        for token, count in Counter(tokens).items():
            vector[self._stable_bucket(token)] += count / len(tokens)

        norm = math.sqrt(sum(val * val for val in vector))
        return [val / norm for val in vector]

    def _stable_bucket(self, token: str) -> int:
        digest = hashlib.md5(token.encode("utf-8"), usedforsecurity=False).digest()
        return int.from_bytes(digest[:4], "big") % self.dimensions


def load_embeddings(
    issues: Sequence[Issue],
    provider: EmbeddingProvider,
    store: Store,
) -> list[tuple[str, list[float]]]:
    """Return (issue id, vector) pairs in issue order, embedding and caching misses.

    Issues whose embedding cannot be produced are logged and left out.
    """
    pairs: list[tuple[str, list[float]]] = []
    dimension: int | None = None

    for issue in issues:
        vector = store.get_embedding(issue.id)
        if vector is None:
            try:
                vector = provider.embed(issue_to_text(issue))
            except EmbeddingUnavailable as exc:
                logger.warning("Skipping issue %s: embedding unavailable (%s)", issue.id, exc)
                continue
            store.save_embedding(issue.id, vector)

        if dimension is None:
            dimension = len(vector)
        elif len(vector) != dimension:
            raise DegenerateVectorError(
                f"Embedding for issue {issue.id} has dimension {len(vector)}, expected {dimension}"
            )
        pairs.append((issue.id, vector))

    return pairs
