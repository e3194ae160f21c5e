from __future__ import annotations

"""Chunking behavior tests."""

from clone_recall.loaders.chunking import (
    chunk_document,
    clamp_overlap,
    content_document_id,
    link_document_id,
    split_text,
)


def test_short_text_is_single_identical_chunk() -> None:
    text = "Morning run along the river, 8k in 41 minutes."
    chunks = chunk_document("post-1", text, {"source": "strava"})

    assert len(chunks) == 1
    assert chunks[0].id == "post-1"
    assert chunks[0].text == text
    assert chunks[0].metadata == {"source": "strava"}


def test_empty_text_produces_no_chunks() -> None:
    assert split_text("") == []
    assert chunk_document("empty", "") == []


def test_chunks_reconstruct_text_without_overlap() -> None:
    """Concatenating chunks gives back the original text."""
    text = "\n\n".join(f"Paragraph {idx}. " + "words " * 40 for idx in range(30))

    pieces = split_text(text, chunk_size=300)

    assert len(pieces) > 1
    assert "".join(pieces) == text
    assert all(len(piece) <= 300 for piece in pieces)


def test_prefers_paragraph_boundaries() -> None:
    text = "A" * 600 + "\n\n" + "B" * 600

    pieces = split_text(text, chunk_size=1000)

    assert pieces == ["A" * 600 + "\n\n", "B" * 600]


def test_falls_back_to_characters_for_unbroken_text() -> None:
    text = "x" * 2500

    pieces = split_text(text, chunk_size=1000)

    assert [len(piece) for piece in pieces] == [1000, 1000, 500]


def test_overlap_is_bounded_and_respects_chunk_size() -> None:
    text = " ".join(f"token{idx}" for idx in range(400))

    pieces = split_text(text, chunk_size=200, overlap=100)

    assert clamp_overlap(200, 100) == 25
    assert all(len(piece) <= 200 for piece in pieces)
    for previous, current in zip(pieces, pieces[1:]):
        assert current.startswith(previous[-25:])


def test_multi_chunk_ids_and_metadata() -> None:
    text = "sentence one. " * 200
    chunks = chunk_document("doc", text, {"app_id": "7"}, chunk_size=500)

    assert len(chunks) > 1
    assert [chunk.id for chunk in chunks] == [f"doc_chunk_{idx}" for idx in range(len(chunks))]
    for idx, chunk in enumerate(chunks):
        assert chunk.chunk_index == idx
        assert chunk.total_chunks == len(chunks)
        assert chunk.metadata["chunk_index"] == idx
        assert chunk.metadata["total_chunks"] == len(chunks)
        assert chunk.metadata["app_id"] == "7"


def test_document_ids_are_stable_and_namespaced() -> None:
    assert content_document_id(42) == content_document_id("42")
    assert content_document_id(42) != content_document_id(43)
    assert content_document_id(42) != link_document_id(42)
    assert len(content_document_id(1)) == 32
