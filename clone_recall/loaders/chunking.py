from __future__ import annotations

"""Recursive character chunking and deterministic document ids."""

import hashlib
from typing import Any, Sequence

from clone_recall.rag.types import ContentChunk

DEFAULT_CHUNK_SIZE = 1000
DEFAULT_CHUNK_OVERLAP = 0
# paragraph, line, sentence, word, character
SEPARATORS: tuple[str, ...] = ("\n\n", "\n", ". ", " ", "")


def content_document_id(content_id: int | str) -> str:
    """Return the stable vector id for a stored content row."""
    return hashlib.md5(f"social_content:{content_id}".encode("utf-8")).hexdigest()


def link_document_id(link_id: int | str) -> str:
    """Return the stable vector id for an app link."""
    return hashlib.md5(f"app_link:{link_id}".encode("utf-8")).hexdigest()


def clamp_overlap(chunk_size: int, overlap: int) -> int:
    """Keep overlap within an eighth of the chunk size."""
    return max(0, min(overlap, chunk_size // 8))


def _split_keeping_separator(text: str, separator: str) -> list[str]:
    if separator == "":
        return list(text)
    parts = text.split(separator)
    pieces = [part + separator for part in parts[:-1]]
    pieces.append(parts[-1])
    return [piece for piece in pieces if piece]


def _recursive_split(text: str, chunk_size: int, separators: Sequence[str]) -> list[str]:
    if len(text) <= chunk_size:
        return [text] if text else []
    separator = ""
    remaining: Sequence[str] = ()
    for idx, candidate in enumerate(separators):
        if candidate == "" or candidate in text:
            separator = candidate
            remaining = separators[idx + 1 :]
            break

    chunks: list[str] = []
    current = ""
    for piece in _split_keeping_separator(text, separator):
        if len(piece) > chunk_size:
            if current:
                chunks.append(current)
                current = ""
            chunks.extend(_recursive_split(piece, chunk_size, remaining or ("",)))
            continue
        if len(current) + len(piece) > chunk_size:
            chunks.append(current)
            current = piece
        else:
            current += piece
    if current:
        chunks.append(current)
    return chunks


def split_text(
    text: str,
    chunk_size: int = DEFAULT_CHUNK_SIZE,
    overlap: int = DEFAULT_CHUNK_OVERLAP,
) -> list[str]:
    """Split text on paragraph, sentence, then character boundaries.

    Without overlap the returned pieces concatenate back to ``text``. With
    overlap each piece after the first starts with the tail of the previous
    piece, and no piece exceeds ``chunk_size``.
    """
    if not text:
        return []
    if chunk_size <= 0:
        raise ValueError("chunk_size must be positive")
    if len(text) <= chunk_size:
        return [text]
    overlap = clamp_overlap(chunk_size, overlap)
    pieces = _recursive_split(text, chunk_size - overlap, SEPARATORS)
    if not overlap:
        return pieces
    chunks = [pieces[0]]
    for previous, piece in zip(pieces, pieces[1:]):
        chunks.append(previous[-overlap:] + piece)
    return chunks


def chunk_document(
    document_id: str,
    text: str,
    metadata: dict[str, Any] | None = None,
    chunk_size: int = DEFAULT_CHUNK_SIZE,
    overlap: int = DEFAULT_CHUNK_OVERLAP,
) -> list[ContentChunk]:
    """Chunk a document into ContentChunk records with stable ids."""
    pieces = split_text(text, chunk_size=chunk_size, overlap=overlap)
    if not pieces:
        return []
    base_metadata = dict(metadata or {})
    if len(pieces) == 1:
        return [ContentChunk(id=document_id, text=pieces[0], metadata=base_metadata)]

    total = len(pieces)
    chunks: list[ContentChunk] = []
    for idx, piece in enumerate(pieces):
        chunk_metadata = dict(base_metadata)
        chunk_metadata.update({"chunk_index": idx, "total_chunks": total})
        chunks.append(
            ContentChunk(
                id=f"{document_id}_chunk_{idx}",
                text=piece,
                chunk_index=idx,
                total_chunks=total,
                metadata=chunk_metadata,
            )
        )
    return chunks
