"""Supabase-backed storage for folders, PDFs, embeddings and the question bank."""

import logging
import time
from typing import Any, Optional

from supabase import Client, create_client

from studydesk.config import settings
from studydesk.models import (
    Chapter,
    ChunkMatch,
    Folder,
    PdfDocument,
    Question,
    QuestionDraft,
    Section,
)

log = logging.getLogger(__name__)

MATCH_FUNCTION = "match_pdf_chunks"


class StoreClient:
    """Explicitly constructed storage client (no module-level singleton)."""

    def __init__(
        self,
        url: Optional[str] = None,
        key: Optional[str] = None,
        client: Optional[Client] = None,
        bucket: Optional[str] = None,
    ):
        if client is None:
            url = (url or settings.SUPABASE_URL or "").strip()
            key = (key or settings.SUPABASE_KEY or "").strip()
            # Fail here rather than on the first query.
            if not url or not key:
                raise ValueError("SUPABASE_URL / SUPABASE_KEY is not set")
            client = create_client(url, key)
        self.client = client
        self.bucket = bucket or settings.PDF_BUCKET

    def _rows(self, query) -> list[dict[str, Any]]:
        return query.execute().data or []

    # ---- folders ---------------------------------------------------------

    def list_folders(self) -> list[Folder]:
        rows = self._rows(self.client.table("pdf_folders").select("*").order("created_at"))
        return [Folder(**row) for row in rows]

    def create_folder(self, name: str) -> Folder:
        name = name.strip()
        if not name:
            raise ValueError("Folder name must not be empty")
        rows = self._rows(self.client.table("pdf_folders").insert({"name": name}))
        log.info(f"Created folder {name!r}")
        return Folder(**rows[0])

    # ---- PDFs ------------------------------------------------------------

    def list_pdfs(self, folder_id: str) -> list[PdfDocument]:
        rows = self._rows(
            self.client.table("pdfs").select("*").eq("folder_id", folder_id).order("created_at")
        )
        return [PdfDocument(**row) for row in rows]

    def upload_pdf(self, folder_id: str, filename: str, data: bytes) -> PdfDocument:
        """Store the file, then register it with rag_status="pending"."""
        if not filename.lower().endswith(".pdf"):
            raise ValueError("Only PDF files can be uploaded")
        path = f"{folder_id}/{int(time.time() * 1000)}_{filename}"
        storage = self.client.storage.from_(self.bucket)
        storage.upload(path, data, {"content-type": "application/pdf"})
        public_url = storage.get_public_url(path)
        log.info(f"Uploaded {filename} to {path}")

        rows = self._rows(
            self.client.table("pdfs").insert(
                {
                    "folder_id": folder_id,
                    "filename": filename,
                    "file_url": public_url,
                    "rag_status": "pending",
                }
            )
        )
        return PdfDocument(**rows[0])

    def get_pdf(self, pdf_id: str) -> Optional[PdfDocument]:
        rows = self._rows(self.client.table("pdfs").select("*").eq("id", pdf_id))
        return PdfDocument(**rows[0]) if rows else None

    def set_rag_status(self, pdf_id: str, status: str) -> None:
        self.client.table("pdfs").update({"rag_status": status}).eq("id", pdf_id).execute()

    # ---- embeddings ------------------------------------------------------

    def insert_chunks(self, rows: list[dict[str, Any]], batch_size: Optional[int] = None) -> None:
        batch_size = batch_size or settings.EMBED_BATCH_SIZE
        total = (len(rows) + batch_size - 1) // batch_size
        for n, i in enumerate(range(0, len(rows), batch_size), 1):
            batch = rows[i:i + batch_size]
            log.info(f"Saving embedding batch {n}/{total} ({len(batch)} rows)")
            self.client.table("pdf_embeddings").insert(batch).execute()

    def match_chunks(
        self, embedding: list[float], pdf_ids: list[str], match_count: int
    ) -> list[ChunkMatch]:
        rows = self.client.rpc(
            MATCH_FUNCTION,
            {"query_embedding": embedding, "match_count": match_count, "pdf_ids": pdf_ids},
        ).execute().data or []
        return [ChunkMatch(**row) for row in rows]

    # ---- chapters / sections ---------------------------------------------

    def list_chapters(self) -> list[Chapter]:
        rows = self._rows(self.client.table("chapters").select("*").order("order"))
        return [Chapter(**row) for row in rows]

    def create_chapter(self, title: str) -> Chapter:
        title = title.strip()
        if not title:
            raise ValueError("Chapter title must not be empty")
        order = len(self.list_chapters())
        rows = self._rows(self.client.table("chapters").insert({"title": title, "order": order}))
        return Chapter(**rows[0])

    def rename_chapter(self, chapter_id: str, title: str) -> None:
        if not title.strip():
            raise ValueError("Chapter title must not be empty")
        self.client.table("chapters").update({"title": title.strip()}).eq("id", chapter_id).execute()

    def delete_chapter(self, chapter_id: str) -> None:
        self.client.table("chapters").delete().eq("id", chapter_id).execute()

    def reorder_chapters(self, chapter_ids: list[str]) -> None:
        self._reorder("chapters", chapter_ids)

    def list_sections(self, chapter_id: Optional[str] = None) -> list[Section]:
        query = self.client.table("sections").select("*")
        if chapter_id is not None:
            query = query.eq("chapter_id", chapter_id)
        rows = self._rows(query.order("order"))
        return [Section(**row) for row in rows]

    def create_section(self, chapter_id: str, title: str) -> Section:
        title = title.strip()
        if not title:
            raise ValueError("Section title must not be empty")
        order = len(self.list_sections(chapter_id))
        rows = self._rows(
            self.client.table("sections").insert(
                {"chapter_id": chapter_id, "title": title, "order": order}
            )
        )
        return Section(**rows[0])

    def rename_section(self, section_id: str, title: str) -> None:
        if not title.strip():
            raise ValueError("Section title must not be empty")
        self.client.table("sections").update({"title": title.strip()}).eq("id", section_id).execute()

    def delete_section(self, section_id: str) -> None:
        self.client.table("sections").delete().eq("id", section_id).execute()

    def reorder_sections(self, section_ids: list[str]) -> None:
        self._reorder("sections", section_ids)

    # ---- questions -------------------------------------------------------

    def list_questions(self, section_id: str) -> list[Question]:
        rows = self._rows(
            self.client.table("questions").select("*").eq("section_id", section_id).order("order")
        )
        return [Question(**row) for row in rows]

    def get_question(self, question_id: str) -> Optional[Question]:
        rows = self._rows(self.client.table("questions").select("*").eq("id", question_id))
        return Question(**rows[0]) if rows else None

    def create_question(self, draft: QuestionDraft) -> Question:
        payload = draft.model_dump()
        payload["order"] = len(self.list_questions(draft.section_id))
        rows = self._rows(self.client.table("questions").insert(payload))
        return Question(**rows[0])

    def update_question(self, question_id: str, draft: QuestionDraft) -> None:
        payload = draft.model_dump(exclude={"section_id"})
        self.client.table("questions").update(payload).eq("id", question_id).execute()

    def delete_question(self, question_id: str) -> None:
        question = self.get_question(question_id)
        self.client.table("questions").delete().eq("id", question_id).execute()
        if question is not None:
            remaining = [q.id for q in self.list_questions(question.section_id)]
            self._reorder("questions", remaining)

    def reorder_questions(self, question_ids: list[str]) -> None:
        self._reorder("questions", question_ids)

    def _reorder(self, table: str, ids: list[str]) -> None:
        for position, row_id in enumerate(ids):
            self.client.table(table).update({"order": position}).eq("id", row_id).execute()
