from types import SimpleNamespace
from unittest.mock import MagicMock

import pytest
from openai import OpenAIError

from quiz_api.core.errors import GenerationFailedError
from quiz_api.services.retrieval import EmbeddingRetriever, OpenAIEmbedder
from quiz_api.utils.text_utils import strip_code_fence

CONCEPTS = ("generat", "yield", "goroutine", "lifetime", "borrow", "context manager")


class ConceptEmbedder:
    """Embedder déterministe : une dimension par notion présente dans le texte."""

    def __init__(self):
        self.calls = []

    def embed(self, texts):
        self.calls.append(list(texts))
        return [[1.0 if c in t.lower() else 0.0 for c in CONCEPTS] for t in texts]


def _write_refs(tmp_path):
    ref = tmp_path / "reference"
    ref.mkdir()
    (ref / "python.md").write_text(
        "Generators in Python programming produce values lazily with yield.\n\n"
        "Context managers wrap setup and teardown with the with statement.",
        encoding="utf-8",
    )
    (ref / "go.txt").write_text("Goroutines are lightweight threads in Go programming.", encoding="utf-8")
    (ref / "notes.bin").write_bytes(b"\x00\x01")
    return ref


def test_inflected_query_matches_on_topic_document(tmp_path):
    ref = tmp_path / "reference"
    ref.mkdir()
    (ref / "gen.md").write_text("A Python generator uses yield to produce values lazily.", encoding="utf-8")

    chunks = EmbeddingRetriever(str(ref), ConceptEmbedder()).retrieve("generators python programming", 2, 0.5)
    assert [c.source for c in chunks] == ["gen.md"]
    assert chunks[0].score == pytest.approx(0.7071, abs=1e-3)


def test_retrieve_best_matching_chunk(tmp_path):
    retriever = EmbeddingRetriever(str(_write_refs(tmp_path)), ConceptEmbedder(), chunk_chars=80)
    chunks = retriever.retrieve("generators and yield", top_k=2, threshold=0.5)

    assert len(chunks) == 1
    assert chunks[0].source == "python.md"
    assert chunks[0].text.startswith("Generators")
    assert chunks[0].score == pytest.approx(1.0)


def test_threshold_filters_weak_matches(tmp_path):
    retriever = EmbeddingRetriever(str(_write_refs(tmp_path)), ConceptEmbedder())
    assert retriever.retrieve("ownership borrowing rust programming", top_k=2, threshold=0.5) == []


def test_results_sorted_and_limited(tmp_path):
    retriever = EmbeddingRetriever(str(_write_refs(tmp_path)), ConceptEmbedder(), chunk_chars=80)
    everything = retriever.retrieve("generators", top_k=10, threshold=0.0)
    assert len(everything) == 3
    scores = [c.score for c in everything]
    assert scores == sorted(scores, reverse=True)

    assert len(retriever.retrieve("generators", top_k=1, threshold=0.0)) == 1


def test_documents_embedded_once(tmp_path):
    embedder = ConceptEmbedder()
    retriever = EmbeddingRetriever(str(_write_refs(tmp_path)), embedder, chunk_chars=80)
    retriever.retrieve("generators")
    retriever.retrieve("goroutines")

    # un appel pour l'index, puis un par requête
    assert len(embedder.calls) == 3
    assert len(embedder.calls[0]) == 3


def test_missing_directory_returns_nothing(tmp_path):
    embedder = ConceptEmbedder()
    retriever = EmbeddingRetriever(str(tmp_path / "absent"), embedder)
    assert retriever.retrieve("generators python programming") == []
    assert embedder.calls == []


def test_reload_picks_up_new_documents(tmp_path):
    ref = _write_refs(tmp_path)
    retriever = EmbeddingRetriever(str(ref), ConceptEmbedder())
    assert retriever.retrieve("lifetimes rust programming") == []

    (ref / "rust.md").write_text("Lifetimes in Rust programming track borrows.", encoding="utf-8")
    retriever.reload()
    assert retriever.retrieve("lifetimes rust programming")[0].source == "rust.md"


def test_embedding_failure_propagates_and_retries(tmp_path):
    ref = _write_refs(tmp_path)
    embedder = ConceptEmbedder()
    retriever = EmbeddingRetriever(str(ref), embedder)

    broken = MagicMock(side_effect=GenerationFailedError("down"))
    retriever.embedder = SimpleNamespace(embed=broken)
    with pytest.raises(GenerationFailedError):
        retriever.retrieve("generators")

    retriever.embedder = embedder
    assert retriever.retrieve("generators yield")[0].source == "python.md"


def test_openai_embedder_without_key():
    with pytest.raises(GenerationFailedError):
        OpenAIEmbedder(None).embed(["anything"])


def test_openai_embedder_batches_and_orders():
    embedder = OpenAIEmbedder("sk-test", model="text-embedding-3-small", batch_size=2)
    client = MagicMock()
    client.embeddings.create.side_effect = lambda model, input: SimpleNamespace(
        data=[SimpleNamespace(index=i, embedding=[float(len(t))]) for i, t in reversed(list(enumerate(input)))]
    )
    embedder._client = client

    assert embedder.embed(["a", "bb", "ccc"]) == [[1.0], [2.0], [3.0]]
    assert client.embeddings.create.call_count == 2
    assert client.embeddings.create.call_args_list[0].kwargs == {"model": "text-embedding-3-small", "input": ["a", "bb"]}


def test_openai_embedder_wraps_api_errors():
    embedder = OpenAIEmbedder("sk-test")
    embedder._client = MagicMock()
    embedder._client.embeddings.create.side_effect = OpenAIError("rate limited")
    with pytest.raises(GenerationFailedError):
        embedder.embed(["x"])


def test_strip_code_fence():
    assert strip_code_fence('```json\n{"a": 1}\n```') == '{"a": 1}'
    assert strip_code_fence('```\n{"a": 1}```') == '{"a": 1}'
    assert strip_code_fence('{"a": 1}') == '{"a": 1}'
