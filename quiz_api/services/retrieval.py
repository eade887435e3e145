import logging
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Protocol, Sequence

import numpy as np
from openai import OpenAI, OpenAIError

from quiz_api.core.errors import GenerationFailedError
from quiz_api.utils.pdf_extract import extract_text
from quiz_api.utils.text_utils import normalize_text

logger = logging.getLogger(__name__)

SUPPORTED_SUFFIXES = {".txt", ".md", ".pdf"}


@dataclass
class TextChunk:
    text: str
    source: str
    score: float = 0.0


class Retriever(Protocol):
    def retrieve(self, query: str, top_k: int, threshold: float) -> List[TextChunk]: ...


class Embedder(Protocol):
    def embed(self, texts: Sequence[str]) -> List[List[float]]: ...


class OpenAIEmbedder:
    """
    Embeddings via l'API OpenAI. Sans clé, chaque appel échoue
    (le générateur continue alors sans contexte).
    """

    def __init__(
        self,
        api_key: Optional[str],
        model: str = "text-embedding-3-small",
        timeout_seconds: float = 20.0,
        batch_size: int = 64,
    ):
        self.model = model
        self.batch_size = batch_size
        self._client: Optional[OpenAI] = None
        if api_key:
            self._client = OpenAI(api_key=api_key, timeout=timeout_seconds, max_retries=0)

    def embed(self, texts: Sequence[str]) -> List[List[float]]:
        if self._client is None:
            raise GenerationFailedError("OpenAI client not configured")

        vectors: List[List[float]] = []
        for start in range(0, len(texts), self.batch_size):
            batch = list(texts[start:start + self.batch_size])
            try:
                resp = self._client.embeddings.create(model=self.model, input=batch)
            except OpenAIError as e:
                raise GenerationFailedError(f"OpenAI embeddings error: {e}") from e
            vectors.extend(item.embedding for item in sorted(resp.data, key=lambda d: d.index))
        return vectors


def _normalize_rows(matrix: np.ndarray) -> np.ndarray:
    norms = np.linalg.norm(matrix, axis=1, keepdims=True)
    norms[norms == 0] = 1.0
    return matrix / norms


class EmbeddingRetriever:
    """
    Recherche par similarité cosinus sur des passages de référence.

    Les documents (.txt, .md, .pdf) de `base_path` sont découpés en passages
    d'environ `chunk_chars` caractères puis vectorisés au premier appel.
    Chaque requête est vectorisée à son tour ; seuls les passages dont la
    similarité atteint `threshold` sont retenus, les `top_k` meilleurs d'abord.
    """

    def __init__(self, base_path: str, embedder: Embedder, chunk_chars: int = 1000):
        self.base_path = Path(base_path)
        self.embedder = embedder
        self.chunk_chars = chunk_chars
        self._chunks: Optional[List[TextChunk]] = None
        self._matrix: Optional[np.ndarray] = None
        self._lock = threading.Lock()

    def retrieve(self, query: str, top_k: int = 2, threshold: float = 0.5) -> List[TextChunk]:
        query = normalize_text(query)
        if not query or top_k <= 0:
            return []

        chunks, matrix = self._load()
        if not chunks:
            return []

        q = _normalize_rows(np.asarray(self.embedder.embed([query]), dtype=float))[0]
        scores = matrix @ q

        results: List[TextChunk] = []
        for i in np.argsort(-scores, kind="stable")[:top_k]:
            score = float(scores[i])
            if score < threshold:
                break
            results.append(TextChunk(text=chunks[i].text, source=chunks[i].source, score=score))
        return results

    def reload(self) -> None:
        with self._lock:
            self._chunks = None
            self._matrix = None

    # ---------- internals ----------

    def _load(self):
        with self._lock:
            if self._chunks is None:
                chunks = self._read_chunks()
                if chunks:
                    vectors = self.embedder.embed([c.text for c in chunks])
                    self._matrix = _normalize_rows(np.asarray(vectors, dtype=float))
                self._chunks = chunks
                logger.info("Indexed %s reference chunks from %s", len(chunks), self.base_path)
            return self._chunks, self._matrix

    def _read_chunks(self) -> List[TextChunk]:
        if not self.base_path.is_dir():
            logger.info("No reference directory at %s, retrieval disabled", self.base_path)
            return []

        chunks: List[TextChunk] = []
        for path in sorted(self.base_path.rglob("*")):
            if not path.is_file() or path.suffix.lower() not in SUPPORTED_SUFFIXES:
                continue
            if path.suffix.lower() == ".pdf":
                content = extract_text(path)
            else:
                content = path.read_text(encoding="utf-8", errors="ignore")
            chunks.extend(TextChunk(text=text, source=path.name) for text in self._split(content))
        return chunks

    def _split(self, content: str) -> List[str]:
        # Paragraphes regroupés jusqu'à chunk_chars
        out: List[str] = []
        current = ""
        for para in content.split("\n\n"):
            para = normalize_text(para)
            if not para:
                continue
            if current and len(current) + len(para) + 1 > self.chunk_chars:
                out.append(current)
                current = para
            else:
                current = f"{current} {para}".strip()
        if current:
            out.append(current)
        return out
