"""Streamlit UI: question solving, PDF library and question bank."""

from __future__ import annotations

import logging
import sys
from pathlib import Path

import streamlit as st

ROOT_DIR = Path(__file__).resolve().parents[1]
if str(ROOT_DIR) not in sys.path:
    sys.path.insert(0, str(ROOT_DIR))

from studydesk.config import settings
from studydesk.models import QuestionData, QuestionDraft
from studydesk.services.ingest import PdfIngestor
from studydesk.services.llm import LLMService
from studydesk.services.pdf_chat import PdfChatService
from studydesk.services.store import StoreClient
from studydesk.tutoring.controller import TutoringController
from studydesk.ui_utils import (
    condense_event_timeline,
    normalize_math_text,
    pdf_chat_turn,
    step_progress,
    transcript_rows,
)

logging.basicConfig(level=settings.LOG_LEVEL, format="%(levelname)s: %(message)s")

PAGES = ("Solve", "PDF Library", "Question Bank")


@st.cache_resource
def get_services() -> tuple[StoreClient, LLMService]:
    return StoreClient(), LLMService()


def init_state() -> None:
    """Initialize Streamlit session state keys."""
    st.session_state.setdefault("tutor", None)
    st.session_state.setdefault("active_question_id", None)
    st.session_state.setdefault("pdf_chat", {})
    st.session_state.setdefault("editing_question_id", None)


def get_controller(llm: LLMService) -> TutoringController:
    if st.session_state["tutor"] is None:
        st.session_state["tutor"] = TutoringController(llm)
    return st.session_state["tutor"]


# ---------------------------------------------------------------------------
# Solve
# ---------------------------------------------------------------------------


def render_tutor(controller: TutoringController) -> None:
    for row in transcript_rows(controller.transcript()):
        with st.chat_message(row["role"]):
            if row["style"] == "error":
                st.error(row["text"])
            else:
                st.markdown(row["text"])

    panel = controller.panel()
    if panel.kind == "step":
        with st.container(border=True):
            st.caption(f"Step {panel.step} / {panel.total_steps}")
            st.progress(step_progress(panel.step, panel.total_steps))
            st.markdown(normalize_math_text(panel.question))
            for i, option in enumerate(panel.options):
                if st.button(normalize_math_text(option), key=f"opt-{panel.step}-{i}", use_container_width=True):
                    with st.spinner("Thinking..."):
                        controller.select_option(option, i)
                    st.rerun()
    elif panel.kind == "complete":
        st.success(normalize_math_text(panel.content), icon="🎉")

    prompt = st.chat_input("Ask anything about this problem...", disabled=controller.busy)
    if prompt:
        with st.spinner("Thinking..."):
            controller.submit_free_text(prompt)
        st.rerun()

    state = controller.state
    if state is not None and state.events:
        with st.expander("Tutor activity"):
            st.write(" → ".join(condense_event_timeline(state.events)))
            st.json(state.events)


def solve_page(store: StoreClient, llm: LLMService) -> None:
    st.header("Solve")
    chapters = store.list_chapters()
    if not chapters:
        st.info("No chapters yet. Add questions in the Question Bank first.")
        return

    chapter = st.sidebar.selectbox("Chapter", chapters, format_func=lambda c: c.title)
    sections = store.list_sections(chapter.id)
    if not sections:
        st.info("This chapter has no sections.")
        return
    section = st.sidebar.selectbox("Section", sections, format_func=lambda s: s.title)
    questions = store.list_questions(section.id)
    if not questions:
        st.info("This section has no questions.")
        return

    left, right = st.columns([1, 1])
    with left:
        index = st.radio(
            "Question",
            range(len(questions)),
            format_func=lambda i: f"Question {i + 1}",
            horizontal=True,
        )
        question = questions[index]
        st.markdown(normalize_math_text(question.question_text))
        if question.type == "multiple_choice" and question.choices:
            for i, choice in enumerate(question.choices, 1):
                st.markdown(f"{i}. {normalize_math_text(choice)}")
        with st.expander("Answer and explanation"):
            st.markdown(normalize_math_text(question.answer))
            if question.explanation:
                st.markdown(normalize_math_text(question.explanation))

    with right:
        st.subheader("AI tutor")
        controller = get_controller(llm)
        if st.session_state["active_question_id"] != question.id:
            st.session_state["active_question_id"] = question.id
            with st.spinner("Preparing step 1..."):
                controller.switch_question(QuestionData(**question.model_dump()))
        render_tutor(controller)


# ---------------------------------------------------------------------------
# PDF library
# ---------------------------------------------------------------------------


def pdf_page(store: StoreClient, llm: LLMService) -> None:
    st.header("PDF Library")

    with st.sidebar.form("new-folder", clear_on_submit=True):
        name = st.text_input("New folder")
        if st.form_submit_button("Create") and name.strip():
            store.create_folder(name)
            st.rerun()

    folders = store.list_folders()
    if not folders:
        st.info("Create a folder to start uploading PDFs.")
        return
    folder = st.sidebar.selectbox("Folder", folders, format_func=lambda f: f.name)

    upload = st.file_uploader("Upload a PDF", type=["pdf"])
    if upload is not None and st.button("Upload and embed"):
        pdf = store.upload_pdf(folder.id, upload.name, upload.getvalue())
        with st.spinner(f"Embedding {pdf.filename}..."):
            try:
                count = PdfIngestor(store, llm).embed_pdf(pdf.id, pdf.file_url)
                st.success(f"Embedded {count} chunks.")
            except Exception as e:
                st.error(f"Embedding failed: {e}")

    pdfs = store.list_pdfs(folder.id)
    for pdf in pdfs:
        st.markdown(f"- [{pdf.filename}]({pdf.file_url}) · `{pdf.rag_status}`")

    st.divider()
    st.subheader("Chat with this folder")
    use_general = st.toggle("Also use general knowledge", value=False)
    history = st.session_state["pdf_chat"].setdefault(folder.id, [])
    for turn in history:
        with st.chat_message(turn["role"]):
            st.markdown(normalize_math_text(turn["content"]))
            for source in turn.get("sources", []):
                st.caption(
                    f"{source['source_name']} · chunk {source['chunk_index'] + 1} · "
                    f"{source['similarity_score']:.3f} - {source['preview_text']}"
                )

    prompt = st.chat_input("Ask about your PDFs...")
    if prompt:
        history.append({"role": "user", "content": prompt})
        with st.spinner("Searching documents..."):
            history.append(pdf_chat_turn(PdfChatService(store, llm), history, folder.id, use_general))
        st.rerun()


# ---------------------------------------------------------------------------
# Question bank
# ---------------------------------------------------------------------------


def move(ids: list[str], index: int, delta: int) -> list[str]:
    target = index + delta
    if not 0 <= target < len(ids):
        return ids
    ids = list(ids)
    ids[index], ids[target] = ids[target], ids[index]
    return ids


def question_form(section_id: str, existing=None) -> QuestionDraft | None:
    prefix = existing.id if existing else "new"
    qtype = st.radio(
        "Type",
        ("multiple_choice", "short_answer"),
        index=0 if not existing or existing.type == "multiple_choice" else 1,
        key=f"{prefix}-type",
        horizontal=True,
    )
    text = st.text_area("Question", value=existing.question_text if existing else "", key=f"{prefix}-text")
    choices = None
    if qtype == "multiple_choice":
        old = (existing.choices if existing and existing.choices else None) or ["", "", "", ""]
        choices = [st.text_input(f"Choice {i + 1}", value=c, key=f"{prefix}-c{i}") for i, c in enumerate(old)]
    answer = st.text_input("Answer", value=existing.answer if existing else "", key=f"{prefix}-answer")
    explanation = st.text_area(
        "Explanation", value=(existing.explanation or "") if existing else "", key=f"{prefix}-expl"
    )
    if text:
        st.caption("Preview")
        st.markdown(normalize_math_text(text))
    if not st.button("Save", key=f"{prefix}-save"):
        return None
    try:
        return QuestionDraft(
            section_id=section_id,
            type=qtype,
            question_text=text,
            choices=choices,
            answer=answer,
            explanation=explanation,
        )
    except ValueError as e:
        st.error(f"Please fill in the required fields: {e}")
        return None


def bank_page(store: StoreClient) -> None:
    st.header("Question Bank")

    chapters = store.list_chapters()
    with st.sidebar.form("new-chapter", clear_on_submit=True):
        title = st.text_input("New chapter")
        if st.form_submit_button("Add chapter") and title.strip():
            store.create_chapter(title)
            st.rerun()
    if not chapters:
        st.info("Add a chapter to begin.")
        return

    ids = [c.id for c in chapters]
    for i, chapter in enumerate(chapters):
        cols = st.sidebar.columns([6, 1, 1, 1])
        new_title = cols[0].text_input("Chapter", value=chapter.title, key=f"ch-{chapter.id}", label_visibility="collapsed")
        if new_title.strip() and new_title != chapter.title:
            store.rename_chapter(chapter.id, new_title)
        if cols[1].button("↑", key=f"ch-up-{chapter.id}"):
            store.reorder_chapters(move(ids, i, -1))
            st.rerun()
        if cols[2].button("↓", key=f"ch-down-{chapter.id}"):
            store.reorder_chapters(move(ids, i, 1))
            st.rerun()
        if cols[3].button("✕", key=f"ch-del-{chapter.id}"):
            store.delete_chapter(chapter.id)
            st.rerun()

    chapter = st.selectbox("Chapter", chapters, format_func=lambda c: c.title)
    sections = store.list_sections(chapter.id)
    with st.form("new-section", clear_on_submit=True):
        title = st.text_input("New section")
        if st.form_submit_button("Add section") and title.strip():
            store.create_section(chapter.id, title)
            st.rerun()
    if not sections:
        st.info("Add a section to this chapter.")
        return

    section = st.selectbox("Section", sections, format_func=lambda s: s.title)
    cols = st.columns(3)
    new_name = cols[0].text_input("Rename section", value=section.title, key=f"sec-{section.id}")
    if new_name.strip() and new_name != section.title:
        store.rename_section(section.id, new_name)
    sec_ids = [s.id for s in sections]
    pos = sec_ids.index(section.id)
    if cols[1].button("Move section up"):
        store.reorder_sections(move(sec_ids, pos, -1))
        st.rerun()
    if cols[2].button("Delete section"):
        store.delete_section(section.id)
        st.rerun()

    questions = store.list_questions(section.id)
    q_ids = [q.id for q in questions]
    for i, question in enumerate(questions):
        with st.expander(f"Question {i + 1}: {question.question_text[:60]}"):
            draft = question_form(section.id, question)
            if draft is not None:
                store.update_question(question.id, draft)
                st.success("Question updated.")
                st.rerun()
            cols = st.columns(3)
            if cols[0].button("Up", key=f"q-up-{question.id}"):
                store.reorder_questions(move(q_ids, i, -1))
                st.rerun()
            if cols[1].button("Down", key=f"q-down-{question.id}"):
                store.reorder_questions(move(q_ids, i, 1))
                st.rerun()
            if cols[2].button("Delete", key=f"q-del-{question.id}"):
                store.delete_question(question.id)
                st.rerun()

    st.subheader("New question")
    draft = question_form(section.id)
    if draft is not None:
        store.create_question(draft)
        st.success("Question saved.")
        st.rerun()


st.set_page_config(page_title="Study Desk", layout="wide")
init_state()

try:
    store, llm = get_services()
except ValueError as e:
    st.error(f"Configuration error: {e}")
    st.stop()

page = st.sidebar.radio("Page", PAGES)
if page == "Solve":
    solve_page(store, llm)
elif page == "PDF Library":
    pdf_page(store, llm)
else:
    bank_page(store)
