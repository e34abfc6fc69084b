#!/usr/bin/env python3
"""Study desk - command line entry point.

Usage:
    python -m studydesk.main tutor --question-id UUID        # Interactive tutoring in the terminal
    python -m studydesk.main embed --pdf-id UUID             # Embed one uploaded PDF
    python -m studydesk.main ask --folder-id UUID "question" # Ask the PDFs of a folder
    python -m studydesk.main ask --folder-id UUID --general "question"
"""

import argparse
import logging
from typing import Callable

from studydesk.config import settings
from studydesk.models import QuestionData
from studydesk.services.ingest import PdfIngestor
from studydesk.services.llm import LLMService
from studydesk.services.pdf_chat import PdfChatService
from studydesk.services.store import StoreClient
from studydesk.tutoring.controller import TutoringController

logging.basicConfig(level=settings.LOG_LEVEL, format="%(levelname)s: %(message)s")
log = logging.getLogger(__name__)

QUIT_WORDS = ("q", "quit", "exit")


def render_turn(controller: TutoringController, emit: Callable[[str], None]) -> None:
    """Print the step panel (or completion banner) of the current session."""
    panel = controller.panel()
    if panel.kind == "step":
        emit(f"\n[Step {panel.step} / {panel.total_steps}] {panel.question}")
        for i, option in enumerate(panel.options, 1):
            emit(f"  {i}. {option}")
    elif panel.kind == "complete":
        emit(f"\n*** Complete! *** {panel.content}")


def run_tutor_session(
    controller: TutoringController,
    question: QuestionData,
    read: Callable[[str], str] = input,
    emit: Callable[[str], None] = print,
) -> TutoringController:
    """Drive one question in the terminal until the student quits."""
    for message in controller.start(question):
        if message.role == "assistant" and message.kind != "step":
            emit(f"Tutor: {message.content}")
    render_turn(controller, emit)

    while True:
        try:
            line = read("> ").strip()
        except EOFError:
            break
        if line.lower() in QUIT_WORDS:
            break
        if not line:
            continue

        panel = controller.panel()
        if panel.kind == "step" and line.isdigit() and 1 <= int(line) <= len(panel.options):
            index = int(line) - 1
            new_messages = controller.select_option(panel.options[index], index)
        else:
            new_messages = controller.submit_free_text(line)

        for message in new_messages:
            if message.role == "assistant" and message.kind != "step":
                emit(f"Tutor: {message.content}")
        render_turn(controller, emit)

    state = controller.state
    if state is not None:
        log.info(
            f"=== Session finished: completed={state.is_completed}, "
            f"steps={state.max_step_observed}/{state.committed_total_steps} ==="
        )
    return controller


def main():
    parser = argparse.ArgumentParser(description="Study desk")
    sub = parser.add_subparsers(dest="command", required=True)

    tutor = sub.add_parser("tutor", help="Solve a stored question step by step")
    tutor.add_argument("--question-id", type=str, required=True)

    embed = sub.add_parser("embed", help="Embed an uploaded PDF")
    embed.add_argument("--pdf-id", type=str, required=True)

    ask = sub.add_parser("ask", help="Ask a question about a folder's PDFs")
    ask.add_argument("--folder-id", type=str, required=True)
    ask.add_argument(
        "--general", action="store_true", help="Allow general knowledge besides the documents"
    )
    ask.add_argument("question", type=str)

    args = parser.parse_args()

    store = StoreClient()
    llm = LLMService()

    if args.command == "tutor":
        question = store.get_question(args.question_id)
        if question is None:
            parser.error(f"Question {args.question_id} not found")
        run_tutor_session(TutoringController(llm), question)

    elif args.command == "embed":
        pdf = store.get_pdf(args.pdf_id)
        if pdf is None:
            parser.error(f"PDF {args.pdf_id} not found")
        count = PdfIngestor(store, llm).embed_pdf(pdf.id, pdf.file_url)
        print(f"Embedded {pdf.filename}: {count} chunks")

    elif args.command == "ask":
        reply = PdfChatService(store, llm).answer(
            [{"role": "user", "content": args.question}],
            args.folder_id,
            use_general_knowledge=args.general,
        )
        print(reply.message)
        for source in reply.sources:
            print(
                f"  - {source.source_name} (chunk {source.chunk_index + 1}, "
                f"similarity {source.similarity_score:.3f})"
            )


if __name__ == "__main__":
    main()
