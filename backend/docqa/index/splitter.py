from __future__ import annotations

from collections.abc import Iterable

from langchain_text_splitters import RecursiveCharacterTextSplitter

from docqa.index.types import SourceDocument

DEFAULT_SEPARATORS = ["\n\n", "\n", " ", ""]


def build_splitter(
    chunk_size: int = 1000, chunk_overlap: int = 200
) -> RecursiveCharacterTextSplitter:
    """Paragraph, then line, then word, then character splitting."""

    if chunk_size <= 0:
        raise ValueError("chunk_size must be > 0")
    if chunk_overlap < 0:
        raise ValueError("chunk_overlap must be >= 0")
    if chunk_overlap >= chunk_size:
        raise ValueError("chunk_overlap must be smaller than chunk_size")
    return RecursiveCharacterTextSplitter(
        chunk_size=chunk_size,
        chunk_overlap=chunk_overlap,
        separators=list(DEFAULT_SEPARATORS),
    )


def split_documents(
    documents: Iterable[SourceDocument], *, chunk_size: int, chunk_overlap: int
) -> list[SourceDocument]:
    """Split loaded documents into index-sized chunks numbered per source."""

    splitter = build_splitter(chunk_size=chunk_size, chunk_overlap=chunk_overlap)
    chunks: list[SourceDocument] = []
    for document in documents:
        for seq, piece in enumerate(splitter.split_text(document.text)):
            metadata = {**document.metadata, "chunk_seq": seq}
            chunks.append(SourceDocument(text=piece, source_id=document.source_id, metadata=metadata))
    return chunks
