"""Tests for UI helper utilities."""

from postgrest.exceptions import APIError

from studydesk.models import ChatReply, Message, Source
from studydesk.services.llm import CompletionError
from studydesk.ui_utils import (
    condense_event_timeline,
    normalize_math_text,
    pdf_chat_turn,
    step_progress,
    transcript_rows,
)


def test_normalize_math_text_converts_delimiters_and_newlines():
    text = "Step one.\\n\\(x^2\\) and \\[\\frac{1}{2}\\]"

    assert normalize_math_text(text) == "Step one.\n$x^2$ and $$\\frac{1}{2}$$"


def test_normalize_math_text_keeps_latex_commands_starting_with_n():
    assert normalize_math_text("$a \\neq b$") == "$a \\neq b$"
    assert normalize_math_text("$\\nabla f$") == "$\\nabla f$"


def test_normalize_math_text_wraps_bare_latex():
    assert normalize_math_text("\\frac{3}{4}") == "$\\frac{3}{4}$"
    assert normalize_math_text("plain words") == "plain words"
    assert normalize_math_text(None) == ""


def test_transcript_rows_hides_prompts_and_marks_errors():
    messages = [
        Message(role="system", content="You are a tutor", kind="prompt"),
        Message(role="user", content="Let's start", kind="prompt"),
        Message(role="assistant", content="Step 1?", kind="step"),
        Message(role="user", content="$x = 2$"),
        Message(role="assistant", content="Correct!", kind="text"),
        Message(role="assistant", content="  ", kind="text"),
        Message(role="assistant", content="Error: timeout", kind="error"),
        Message(role="assistant", content="plain prose", kind="raw"),
    ]

    rows = transcript_rows(messages)

    assert rows == [
        {"role": "user", "text": "$x = 2$", "style": "plain"},
        {"role": "assistant", "text": "Correct!", "style": "text"},
        {"role": "assistant", "text": "Error: timeout", "style": "error"},
        {"role": "assistant", "text": "plain prose", "style": "error"},
    ]


def test_condense_event_timeline_dedupes_consecutive_agents():
    events = [
        {"agent": "Judge", "detail": "Step 1: correct"},
        {"agent": "Correction", "detail": "Stalled on step 1"},
        {"agent": "Correction", "detail": "Missing feedback on step 2"},
        {"agent": "", "detail": "ignored"},
        {"agent": "Judge", "detail": "Step 2: wrong"},
    ]

    assert condense_event_timeline(events) == ["Judge", "Correction", "Judge"]


def test_step_progress_is_clamped():
    assert step_progress(1, 4) == 0.0
    assert step_progress(3, 4) == 0.5
    assert step_progress(9, 4) == 1.0
    assert step_progress(None, 4) == 0.0
    assert step_progress(2, None) == 0.0


class FailingChat:
    def __init__(self, error):
        self.error = error

    def answer(self, messages, folder_id, use_general_knowledge=False):
        raise self.error


class AnsweringChat:
    def __init__(self):
        self.calls = []

    def answer(self, messages, folder_id, use_general_knowledge=False):
        self.calls.append((messages, folder_id, use_general_knowledge))
        source = Source(source_name="a.pdf", chunk_index=0, similarity_score=0.9, preview_text="x")
        return ChatReply(message="It is $2x$.", sources=[source])


def test_pdf_chat_turn_returns_reply_with_sources():
    chat = AnsweringChat()
    history = [{"role": "user", "content": "Q?"}]

    turn = pdf_chat_turn(chat, history, "f", True)

    assert turn["content"] == "It is $2x$."
    assert turn["sources"][0]["source_name"] == "a.pdf"
    assert chat.calls == [([{"role": "user", "content": "Q?"}], "f", True)]


def test_pdf_chat_turn_turns_storage_errors_into_replies():
    error = APIError({"message": "permission denied for table pdfs", "code": "42501"})

    turn = pdf_chat_turn(FailingChat(error), [{"role": "user", "content": "Q?"}], "f", False)

    assert turn["role"] == "assistant"
    assert turn["content"].startswith("Error:")
    assert turn["sources"] == []


def test_pdf_chat_turn_turns_completion_errors_into_replies():
    turn = pdf_chat_turn(FailingChat(CompletionError("quota")), [{"role": "user", "content": "Q?"}], "f", False)

    assert turn["content"] == "Error: quota"
