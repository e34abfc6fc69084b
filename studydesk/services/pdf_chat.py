"""Retrieval-augmented chat over the PDFs of one folder."""

import logging
import re
from typing import Optional

from postgrest.exceptions import APIError

from studydesk.config import settings
from studydesk.models import ChatReply, ChunkMatch, Message, Source
from studydesk.prompts import GENERAL_KNOWLEDGE_ONLY, PDF_CHAT_GENERAL, PDF_CHAT_STRICT

log = logging.getLogger(__name__)

NOT_FOUND = "I could not find anything related to your question in the documents."
NO_PDFS = "No PDFs have been uploaded to this folder."
NOT_EMBEDDED = (
    "No PDFs in this folder have finished embedding yet. "
    "Please wait until processing completes after the upload."
)
PREVIEW_CHARS = 150
UNKNOWN_SOURCE = "Unknown"

# A line opening a trailing "Source:" style block, optionally bolded.
_SOURCE_LINE = re.compile(
    r"^\s*(?:\*\*\s*)?(?:sources?|references?|note|참고|출처)\s*(?:\*\*\s*)?[:：]",
    re.IGNORECASE,
)


class RetrievalSetupError(RuntimeError):
    """The vector search function is missing from the database."""


def strip_source_annotations(text: str) -> str:
    """Drop a trailing "Source:" block the model added despite instructions."""
    lines = text.splitlines()
    for i, line in enumerate(lines):
        if _SOURCE_LINE.match(line):
            return "\n".join(lines[:i]).strip()
    return text.strip()


def is_not_found(text: str) -> bool:
    """True only for the fixed not-found sentence, not for hedged answers."""
    return NOT_FOUND.lower().rstrip(".") in text.lower()


def _as_wire(messages: list) -> list[dict]:
    return [m.to_wire() if isinstance(m, Message) else dict(m) for m in messages]


class Retriever:
    """Embeds a query and searches stored chunks of the given PDFs."""

    def __init__(self, store, llm):
        self.store = store
        self.llm = llm

    def search(self, query: str, pdf_ids: list[str], match_count: Optional[int] = None) -> list[ChunkMatch]:
        embedding = self.llm.embed(query)
        try:
            return self.store.match_chunks(embedding, pdf_ids, match_count or settings.MATCH_COUNT)
        except APIError as e:
            message = str(e.message or e)
            if "function" in message or "does not exist" in message:
                raise RetrievalSetupError(
                    "PDF search is not set up. Create the match_pdf_chunks function in Supabase."
                ) from e
            raise


class PdfChatService:
    def __init__(self, store, llm, retriever: Optional[Retriever] = None, threshold: Optional[float] = None):
        self.store = store
        self.llm = llm
        self.retriever = retriever or Retriever(store, llm)
        self.threshold = settings.SIMILARITY_THRESHOLD if threshold is None else threshold

    def answer(self, messages: list, folder_id: str, use_general_knowledge: bool = False) -> ChatReply:
        """Answer the last message of `messages` from the folder's documents."""
        if not messages:
            raise ValueError("messages must not be empty")
        if not folder_id:
            raise ValueError("folder_id is required")

        history = _as_wire(messages)
        question = history[-1]["content"]
        log.info(f"PDF chat question in folder {folder_id} (general knowledge={use_general_knowledge})")

        pdfs = self.store.list_pdfs(folder_id)
        if not pdfs:
            return ChatReply(message=NO_PDFS)
        ready = [p for p in pdfs if p.rag_status == "completed"]
        log.info(f"{len(pdfs)} PDFs, {len(ready)} embedded")
        if not ready:
            return ChatReply(message=NOT_EMBEDDED)

        matches = self.retriever.search(question, [p.id for p in pdfs])
        chunks = [m for m in matches if m.similarity >= self.threshold]
        log.info(f"{len(chunks)}/{len(matches)} chunks at or above {self.threshold}")

        if not chunks:
            if use_general_knowledge:
                reply = self.llm.complete(
                    [{"role": "system", "content": GENERAL_KNOWLEDGE_ONLY}, *history],
                    json_mode=False,
                )
                return ChatReply(message=strip_source_annotations(reply))
            return ChatReply(message=NOT_FOUND)

        names = {p.id: p.filename for p in pdfs}
        sources = [
            Source(
                source_name=names.get(c.pdf_id, UNKNOWN_SOURCE),
                chunk_index=c.chunk_index,
                similarity_score=c.similarity,
                preview_text=c.content[:PREVIEW_CHARS],
            )
            for c in chunks
        ]
        context = "\n\n".join(
            f"[Source {i}: {names.get(c.pdf_id, UNKNOWN_SOURCE)} - chunk {c.chunk_index + 1}]\n{c.content}"
            for i, c in enumerate(chunks, 1)
        )

        if use_general_knowledge:
            system_prompt = PDF_CHAT_GENERAL.format(context=context)
        else:
            system_prompt = PDF_CHAT_STRICT.format(context=context, not_found=NOT_FOUND)

        reply = self.llm.complete(
            [{"role": "system", "content": system_prompt}, *history],
            json_mode=False,
        )
        message = strip_source_annotations(reply) or reply.strip()
        if is_not_found(message):
            # Retrieved passages were not used; showing them would mislead.
            return ChatReply(message=message)
        return ChatReply(message=message, sources=sources)
