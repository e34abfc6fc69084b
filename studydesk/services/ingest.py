"""PDF ingestion: download, extract text, split, embed, store."""

import io
import logging
from typing import Optional

import httpx
from pypdf import PdfReader

from studydesk.config import settings

log = logging.getLogger(__name__)


def extract_pdf_text(data: bytes) -> str:
    reader = PdfReader(io.BytesIO(data))
    pages = [page.extract_text() or "" for page in reader.pages]
    return "\n".join(pages).strip()


def split_text(text: str, chunk_size: Optional[int] = None, overlap: Optional[int] = None) -> list[str]:
    """Split into overlapping windows of at most `chunk_size` characters.

    Windows end on whitespace when there is some in the second half of the window.
    """
    chunk_size = chunk_size or settings.CHUNK_SIZE
    overlap = settings.CHUNK_OVERLAP if overlap is None else overlap
    if overlap >= chunk_size:
        raise ValueError("overlap must be smaller than chunk_size")

    text = text.strip()
    chunks: list[str] = []
    start = 0
    while start < len(text):
        end = min(start + chunk_size, len(text))
        if end < len(text):
            cut = max(text.rfind(" ", start, end), text.rfind("\n", start, end))
            if cut > start + chunk_size // 2:
                end = cut
        chunk = text[start:end].strip()
        if chunk:
            chunks.append(chunk)
        if end >= len(text):
            break
        start = max(end - overlap, start + 1)
    return chunks


class PdfIngestor:
    def __init__(self, store, llm, timeout: Optional[float] = None):
        self.store = store
        self.llm = llm
        self.timeout = timeout or settings.DOWNLOAD_TIMEOUT

    def download(self, url: str) -> bytes:
        r = httpx.get(url, timeout=self.timeout, follow_redirects=True)
        r.raise_for_status()
        return r.content

    def embed_pdf(self, pdf_id: str, pdf_url: str) -> int:
        """Embed one stored PDF. Returns the number of chunks saved."""
        log.info(f"Embedding PDF {pdf_id}")
        try:
            text = extract_pdf_text(self.download(pdf_url))
            if not text:
                raise ValueError("No text could be extracted from the PDF")
            log.info(f"Extracted {len(text)} characters")

            chunks = split_text(text)
            log.info(f"Split into {len(chunks)} chunks")

            rows = []
            batch_size = settings.EMBED_BATCH_SIZE
            for i in range(0, len(chunks), batch_size):
                batch = chunks[i:i + batch_size]
                for offset, (chunk, embedding) in enumerate(zip(batch, self.llm.embed_many(batch))):
                    rows.append(
                        {
                            "pdf_id": pdf_id,
                            "chunk_index": i + offset,
                            "content": chunk,
                            "embedding": embedding,
                        }
                    )

            self.store.insert_chunks(rows)
            self.store.set_rag_status(pdf_id, "completed")
        except Exception as e:
            log.error(f"Embedding failed for {pdf_id}: {e}")
            self.store.set_rag_status(pdf_id, "failed")
            raise

        log.info(f"PDF {pdf_id} embedded ({len(rows)} chunks)")
        return len(rows)
