"""Helpers for the Streamlit UI."""

from __future__ import annotations

import logging
import re
from typing import Iterable

from postgrest.exceptions import APIError

from studydesk.models import Message
from studydesk.services.llm import CompletionError
from studydesk.services.pdf_chat import RetrievalSetupError

log = logging.getLogger(__name__)

_LITERAL_NEWLINE = re.compile(r"\\n(?![a-zA-Z])")
_LITERAL_RETURN = re.compile(r"\\r(?![a-zA-Z])")
_INLINE_PARENS = re.compile(r"\\\(([\s\S]+?)\\\)")
_BLOCK_BRACKETS = re.compile(r"\\\[([\s\S]+?)\\\]")
_BARE_LATEX = re.compile(r"\\(?:text[a-z]*|frac|sqrt|sum|int|lim)\{|\d+\s*\\(?:times|cdot|div|pm)\s*\d+")


def normalize_math_text(text: str | None) -> str:
    """Prepare tutor text for Markdown math rendering.

    - literal "\\n" / "\\r" not followed by a letter become real line breaks
      (so "\\nabla" and "\\neq" survive),
    - \\( \\) and \\[ \\] become $ $ and $$ $$,
    - text with LaTeX commands but no $ at all is wrapped in $ $.
    """
    out = _LITERAL_NEWLINE.sub("\n", text or "")
    out = _LITERAL_RETURN.sub("\r", out)
    out = _INLINE_PARENS.sub(lambda m: f"${m.group(1)}$", out)
    out = _BLOCK_BRACKETS.sub(lambda m: f"$${m.group(1)}$$", out)
    if "$" not in out and _BARE_LATEX.search(out):
        out = f"${out}$"
    return out


def transcript_rows(messages: Iterable[Message]) -> list[dict[str, str]]:
    """Return chat rows for display: role, text and a style hint."""
    rows: list[dict[str, str]] = []
    for message in messages:
        if message.role == "system" or message.kind in ("prompt", "step"):
            continue
        text = message.content.strip()
        if not text:
            continue
        style = "error" if message.kind in ("error", "raw") else message.kind or "plain"
        rows.append({"role": message.role, "text": normalize_math_text(text), "style": style})
    return rows


def condense_event_timeline(events: Iterable[dict[str, str]]) -> list[str]:
    """Return the tutor activity timeline with consecutive duplicates removed."""
    timeline: list[str] = []
    for event in events:
        agent = event.get("agent", "").strip()
        if not agent:
            continue
        if not timeline or timeline[-1] != agent:
            timeline.append(agent)
    return timeline


def step_progress(step: int | None, total: int | None) -> float:
    """Fraction of the problem done, for a progress bar."""
    if not step or not total:
        return 0.0
    return max(0.0, min(1.0, (step - 1) / total))


def pdf_chat_turn(service, history: list[dict], folder_id: str, use_general_knowledge: bool) -> dict:
    """Answer the last turn of `history`; failures become an error reply."""
    wire = [{"role": t["role"], "content": t["content"]} for t in history]
    try:
        reply = service.answer(wire, folder_id, use_general_knowledge=use_general_knowledge)
    except (CompletionError, RetrievalSetupError, APIError) as e:
        log.error(f"PDF chat failed: {e}")
        return {"role": "assistant", "content": f"Error: {e}", "sources": []}
    return {
        "role": "assistant",
        "content": reply.message,
        "sources": [s.model_dump() for s in reply.sources],
    }
