from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Callable

from docx import Document as DocxDocument
from pypdf import PdfReader

from docqa.index.types import SourceDocument

logger = logging.getLogger(__name__)


def _read_text(path: Path) -> str:
    return path.read_text(encoding="utf-8", errors="replace")


def _read_pdf(path: Path) -> str:
    reader = PdfReader(str(path))
    pages = [page.extract_text() or "" for page in reader.pages]
    return "\n\n".join(page.strip() for page in pages if page.strip())


def _read_docx(path: Path) -> str:
    document = DocxDocument(str(path))
    paragraphs = [paragraph.text for paragraph in document.paragraphs]
    return "\n".join(text for text in paragraphs if text.strip())


READERS: dict[str, Callable[[Path], str]] = {
    ".txt": _read_text,
    ".md": _read_text,
    ".pdf": _read_pdf,
    ".docx": _read_docx,
}


def load_documents(docs_dir: str | os.PathLike[str]) -> list[SourceDocument]:
    """Load every supported file under ``docs_dir`` in path order."""

    root = Path(docs_dir).expanduser()
    if not root.is_dir():
        logger.warning("Documents directory %s does not exist", root)
        return []

    documents: list[SourceDocument] = []
    for path in sorted(item for item in root.rglob("*") if item.is_file()):
        reader = READERS.get(path.suffix.lower())
        if reader is None:
            continue
        try:
            text = reader(path)
        except Exception as exc:  # noqa: BLE001
            logger.warning("Skipping unreadable document %s: %s", path, exc)
            continue
        if not text.strip():
            continue
        documents.append(
            SourceDocument(
                text=text,
                source_id=_source_id(path),
                metadata={"source": _source_id(path), "type": path.suffix.lower().lstrip(".")},
            )
        )
    logger.info("Loaded %d documents from %s", len(documents), root)
    return documents


def _source_id(path: Path) -> str:
    resolved = path.resolve()
    try:
        return resolved.relative_to(Path.cwd().resolve()).as_posix()
    except ValueError:
        return resolved.as_posix()
