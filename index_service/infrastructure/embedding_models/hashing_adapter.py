import hashlib
import re
from typing import List

import numpy as np
import structlog

from index_service.application.ports.embedding_model_port import EmbeddingModelPort

log = structlog.get_logger(__name__)

HASHING_MODEL_NAME = "fallback/text-embedding-v1"
HASHING_DIMENSION = 256

_TOKEN_RE = re.compile(r"[a-z0-9]+")


def _digest(token: str, salt: int = 0) -> bytes:
    h = hashlib.sha256(token.encode("utf-8"))
    if salt:
        h.update(bytes([salt]))
    return h.digest()


class HashingEmbeddingAdapter(EmbeddingModelPort):
    """
    Deterministic, offline embedding: signed feature hashing of unigrams and
    bigrams into 256 buckets, L2 normalised. Used when the primary provider is
    unreachable; vectors are not comparable with the primary model's.
    """

    @property
    def model_name(self) -> str:
        return HASHING_MODEL_NAME

    @property
    def dimension(self) -> int:
        return HASHING_DIMENSION

    def embed_one(self, text: str) -> np.ndarray:
        vector = np.zeros(HASHING_DIMENSION, dtype=np.float32)
        tokens = _TOKEN_RE.findall(text.lower())
        for i, token in enumerate(tokens):
            digest = _digest(token)
            vector[int.from_bytes(digest[:4], "big") % HASHING_DIMENSION] += 1.0 if digest[4] & 1 == 0 else -1.0
            if i < len(tokens) - 1:
                bigram = _digest(f"{token}_{tokens[i + 1]}", salt=1)
                sign = 1.0 if bigram[4] & 1 == 0 else -1.0
                vector[int.from_bytes(bigram[:4], "big") % HASHING_DIMENSION] += sign * 0.5

        norm = float(np.linalg.norm(vector))
        if norm > 0:
            vector /= norm
        return vector

    def embed_texts(self, texts: List[str]) -> List[List[float]]:
        return [self.embed_one(text).tolist() for text in texts]
