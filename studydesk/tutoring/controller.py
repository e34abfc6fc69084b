"""Tutoring session controller.

Owns one SessionState per active question and drives the completion service
through the start / option / free-text events of the tutor widget. The UI is a
projection of the state: it reads `panel()` and `transcript()` and never keeps a
second copy of the step counters.
"""

import logging
from dataclasses import dataclass
from typing import Optional, Protocol

from studydesk.models import Message, PendingOption, QuestionData, SessionState, StepRecord
from studydesk.prompts import MISSING_FEEDBACK, STALLED_ADVANCE, START_MESSAGE, build_tutor_prompt
from studydesk.services.llm import CompletionError
from studydesk.tutoring.correction import CorrectionKind, CorrectionProtocol
from studydesk.tutoring.parser import parse_step_records
from studydesk.tutoring.reconciler import (
    BatchResult,
    apply_batch,
    classify_selection,
    is_skip_option,
    needs_advance,
    record_selection_outcome,
)

log = logging.getLogger(__name__)

PROTOCOL_VIOLATION_MARKER = "[The tutor's reply was not in the expected format.]"
HIDDEN_KINDS = ("prompt", "step")


class CompletionClient(Protocol):
    def complete(self, messages: list[dict], json_mode: Optional[bool] = None) -> str:
        ...


@dataclass
class Panel:
    """What the step area of the widget shows."""
    kind: str  # "step" | "complete" | "none"
    step: Optional[int] = None
    total_steps: Optional[int] = None
    question: str = ""
    options: tuple[str, ...] = ()
    content: str = ""


class TutoringController:
    """Runs the step-by-step dialogue for one question at a time."""

    def __init__(self, llm: CompletionClient):
        self.llm = llm
        self.state: Optional[SessionState] = None
        self.corrections = CorrectionProtocol()
        self.question: Optional[QuestionData] = None
        self.busy = False

    # ------------------------------------------------------------------
    # Events
    # ------------------------------------------------------------------

    def start(self, question: QuestionData) -> list[Message]:
        """Open a fresh session for `question` and request step 1."""
        if self.busy:
            log.warning("start ignored: a request is in flight")
            return []
        self.question = question
        self.corrections = CorrectionProtocol()
        try:
            system_prompt = build_tutor_prompt(question)
        except ValueError as e:
            # The session exists but cannot talk to the tutor.
            log.error(f"Cannot tutor question {question.id}: {e}")
            self.state = SessionState(
                question_id=question.id,
                messages=[Message(role="assistant", content=f"Error: {e}", kind="error")],
            )
            return list(self.state.messages)
        self.state = SessionState(
            question_id=question.id,
            messages=[
                Message(role="system", content=system_prompt, kind="prompt"),
                Message(role="user", content=START_MESSAGE, kind="prompt"),
            ],
        )
        log.info(f"Tutoring session {self.state.session_id} started (question={question.id})")
        return self._exchange()

    def switch_question(self, question: QuestionData) -> list[Message]:
        """Discard the current session entirely and start over on `question`."""
        if self.state is not None:
            log.info(f"Discarding session {self.state.session_id}")
        self.state = None
        self.busy = False
        return self.start(question)

    def submit_free_text(self, text: str) -> list[Message]:
        """A question typed by the student; never triggers corrective calls."""
        if not text.strip() or not self._has_prompt() or self.busy:
            return []
        self._append(Message(role="user", content=text.strip()))
        return self._exchange(offset=1)

    def select_option(self, option_text: str, option_index: int) -> list[Message]:
        """The student clicked one of the current step's options."""
        state = self.state
        if state is None or self.busy or state.is_completed:
            return []
        step = state.current_step
        if step is None or step.kind != "step":
            log.warning("Option selected while no step is displayed; ignoring")
            return []

        pending = PendingOption(
            step_number=step.step_number,
            option_index=option_index,
            option_text=option_text,
            # The last option is the standing skip choice, whatever its wording.
            is_skip=is_skip_option(option_text)
            or (len(step.options) > 1 and option_index == len(step.options) - 1),
            correct_option_index=step.correct_option_index,
        )
        state.pending_option = pending
        self._append(
            Message(
                role="user",
                content=option_text,
                wire_content=(
                    f"{option_text}\n\n(Selected option {option_index + 1} "
                    f"on step {pending.step_number})"
                ),
            )
        )
        session_id = state.session_id
        start = len(state.messages) - 1

        self.busy = True
        try:
            result = self._call_and_apply(session_id)
            if result is None or not self._is_current(session_id):
                return self._new_messages(session_id, start)

            feedback = list(result.texts)
            if not feedback:
                feedback = self._repair_missing_feedback(session_id, pending)
                if not self._is_current(session_id):
                    return []

            outcome = classify_selection(pending, feedback, result)
            record_selection_outcome(state, pending.step_number, outcome)
            log.info(f"Step {pending.step_number} option {option_index + 1}: {outcome.value}")
            state.events.append(
                {"agent": "Judge", "detail": f"Step {pending.step_number}: {outcome.value}"}
            )

            if needs_advance(outcome, result):
                self._repair_stalled_advance(session_id, pending, feedback)
        finally:
            if self._is_current(session_id):
                state.pending_option = None
                self.busy = False

        return self._new_messages(session_id, start)

    # ------------------------------------------------------------------
    # Projections
    # ------------------------------------------------------------------

    def panel(self) -> Panel:
        state = self.state
        if state is None or state.current_step is None:
            return Panel(kind="none")
        step = state.current_step
        if step.kind == "complete":
            return Panel(kind="complete", content=step.content or "")
        if step.kind == "step":
            return Panel(
                kind="step",
                step=step.step_number,
                total_steps=state.committed_total_steps,
                question=step.question_prompt or "",
                options=tuple(step.options),
            )
        return Panel(kind="none")

    def transcript(self) -> list[Message]:
        """Visible messages; system turns and step records are filtered at render time."""
        if self.state is None:
            return []
        return [m for m in self.state.messages if m.role != "system" and m.kind not in HIDDEN_KINDS]

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _is_current(self, session_id: str) -> bool:
        return self.state is not None and self.state.session_id == session_id

    def _has_prompt(self) -> bool:
        return self.state is not None and any(m.role == "system" for m in self.state.messages)

    def _append(self, message: Message) -> None:
        self.state.messages.append(message)

    def _wire(self, extra: Optional[str] = None) -> list[dict]:
        wire = [m.to_wire() for m in self.state.messages if m.kind != "error"]
        if extra:
            wire.append({"role": "user", "content": extra})
        return wire

    def _new_messages(self, session_id: str, start: int) -> list[Message]:
        if not self._is_current(session_id):
            return []
        return [m for m in self.state.messages[start:] if m.role != "system"]

    def _exchange(self, offset: int = 0) -> list[Message]:
        """One plain request/response cycle (start and free text)."""
        state = self.state
        session_id = state.session_id
        start = len(state.messages) - offset
        self.busy = True
        try:
            self._call_and_apply(session_id)
        finally:
            if self._is_current(session_id):
                self.busy = False
        return self._new_messages(session_id, start)

    def _request(self, session_id: str, extra: Optional[str] = None) -> Optional[str]:
        """Call the completion service; failures become a transcript entry."""
        try:
            reply = self.llm.complete(self._wire(extra))
        except CompletionError as e:
            if not self._is_current(session_id):
                return None
            log.error(f"Completion failed: {e}")
            self._append(Message(role="assistant", content=f"Error: {e}", kind="error"))
            self.state.events.append({"agent": "Completion", "detail": f"Error: {e}"})
            return None
        if not self._is_current(session_id):
            log.info(f"Discarding reply for superseded session {session_id}")
            return None
        return reply

    def _record_messages(self, records: list[StepRecord]) -> None:
        for r in records:
            shown = r.question_prompt if r.kind == "step" else r.content
            self._append(
                Message(role="assistant", content=shown or "", wire_content=r.to_wire_json(), kind=r.kind)
            )

    def _call_and_apply(self, session_id: str) -> Optional[BatchResult]:
        reply = self._request(session_id)
        if reply is None:
            return None
        records = parse_step_records(reply)
        if not records:
            log.warning(f"Protocol violation: no structured record in reply: {reply[:80]!r}")
            self.state.events.append({"agent": "Parser", "detail": "Protocol violation"})
            self._append(
                Message(
                    role="assistant",
                    content=f"{reply.strip()}\n\n{PROTOCOL_VIOLATION_MARKER}",
                    wire_content=reply,
                    kind="raw",
                )
            )
            return None
        self._record_messages(records)
        return apply_batch(self.state, records)

    def _repair_missing_feedback(self, session_id: str, pending: PendingOption) -> list[str]:
        kind = CorrectionKind.MISSING_FEEDBACK
        if not self.corrections.begin(kind, pending.step_number, pending.option_text):
            log.info(f"Missing-feedback repair already used for step {pending.step_number}")
            return []
        log.warning(f"No feedback for option on step {pending.step_number}; asking again")
        self.state.events.append(
            {"agent": "Correction", "detail": f"Missing feedback on step {pending.step_number}"}
        )
        instruction = MISSING_FEEDBACK.format(option=pending.option_text, step=pending.step_number)
        reply = self._request(session_id, instruction)
        texts: list[str] = []
        if reply is not None:
            records = [r for r in parse_step_records(reply) if r.kind == "text" and r.content]
            self._record_messages(records)
            texts = [r.content for r in records]
        if not texts:
            log.warning("Missing-feedback repair produced no text record")
        if self._is_current(session_id):
            self.corrections.settle(kind, pending.step_number, pending.option_text, bool(texts))
        return texts

    def _repair_stalled_advance(
        self, session_id: str, pending: PendingOption, feedback: list[str]
    ) -> None:
        kind = CorrectionKind.STALLED_ADVANCE
        if not self.corrections.begin(kind, pending.step_number, pending.option_text):
            log.info(f"Stalled-advance repair already used for step {pending.step_number}")
            return
        next_step = pending.step_number + 1
        log.warning(f"Tutor did not advance past step {pending.step_number}; requesting step {next_step}")
        self.state.events.append(
            {"agent": "Correction", "detail": f"Stalled on step {pending.step_number}"}
        )
        instruction = STALLED_ADVANCE.format(
            step=pending.step_number,
            next_step=next_step,
            feedback=" ".join(feedback),
        )
        reply = self._request(session_id, instruction)
        repaired = False
        if reply is not None:
            # Feedback was already shown; only the transition is applied.
            records = [r for r in parse_step_records(reply) if r.kind in ("step", "complete")]
            advancing = [
                r for r in records
                if r.kind == "complete" or r.step_number > pending.step_number
            ]
            if advancing:
                self._record_messages(advancing)
                result = apply_batch(self.state, advancing)
                record_selection_outcome(
                    self.state, pending.step_number,
                    classify_selection(pending, feedback, result),
                )
                repaired = result.moved_on
        if not repaired:
            log.warning(f"Stalled-advance repair failed on step {pending.step_number}")
        if self._is_current(session_id):
            self.corrections.settle(kind, pending.step_number, pending.option_text, repaired)
