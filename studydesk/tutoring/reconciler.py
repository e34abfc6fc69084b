"""Session state transitions for one batch of tutor records.

The model's own step/total numbers are claims; the session keeps the ground truth:
- committed_total_steps is set by the first step seen and only ever goes up,
- max_step_observed only ever goes up,
- is_completed goes False -> True once and stays True.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

from studydesk.models import PendingOption, SessionState, StepRecord

log = logging.getLogger(__name__)

# Fallback correctness lexicon, used only when the step declares no correctIndex.
# Negative phrases are checked first, so "incorrect" never counts as "correct".
# Mixed feedback ("small mistake, but well done") is classified by the first hit;
# that fuzziness is a known limitation of wording-based judgment.
NEGATIVE_PHRASES = (
    "incorrect",
    "not correct",
    "not quite",
    "wrong",
    "mistake",
    "try again",
    "오답",
    "틀렸",
    "틀린",
    "아쉽",
    "다시 생각",
)
POSITIVE_PHRASES = (
    "correct",
    "that's right",
    "well done",
    "great job",
    "good job",
    "exactly",
    "excellent",
    "정답",
    "맞았",
    "맞습니다",
    "잘했",
    "훌륭",
)
SKIP_PHRASES = ("skip this step", "건너뛰기")


class Feedback(str, Enum):
    POSITIVE = "positive"
    NEGATIVE = "negative"
    UNKNOWN = "unknown"


class SelectionOutcome(str, Enum):
    ADVANCED = "advanced"
    CORRECT = "correct"  # correct, but the tutor did not move on
    WRONG = "wrong"
    SKIP = "skip"
    UNDETERMINED = "undetermined"


@dataclass
class BatchResult:
    """What one batch changed."""
    texts: list[str] = field(default_factory=list)
    step: Optional[StepRecord] = None
    complete: Optional[StepRecord] = None
    advanced: bool = False
    completed_now: bool = False

    @property
    def has_text(self) -> bool:
        return bool(self.texts)

    @property
    def moved_on(self) -> bool:
        return self.advanced or self.complete is not None


def is_skip_option(option_text: str) -> bool:
    text = option_text.strip().lower()
    return any(phrase in text for phrase in SKIP_PHRASES)


def classify_feedback(texts: list[str]) -> Feedback:
    joined = " ".join(texts).lower()
    if any(phrase in joined for phrase in NEGATIVE_PHRASES):
        return Feedback.NEGATIVE
    if any(phrase in joined for phrase in POSITIVE_PHRASES):
        return Feedback.POSITIVE
    return Feedback.UNKNOWN


def _current_step_number(state: SessionState) -> int:
    step = state.current_step
    if step is not None and step.kind == "step" and step.step_number:
        return step.step_number
    return 0


def _log_event(state: SessionState, agent: str, detail: str) -> None:
    state.events.append({"agent": agent, "detail": detail})


def _clear_passed_steps(state: SessionState, below: int) -> None:
    for s in [s for s in state.wrong_answer_counts if s < below]:
        del state.wrong_answer_counts[s]


def apply_batch(state: SessionState, records: list[StepRecord]) -> BatchResult:
    """Apply one model reply's records to the session, in priority order:
    complete, else the highest step, else text only (displayed step is kept).
    """
    result = BatchResult(texts=[r.content for r in records if r.kind == "text" and r.content])
    before = _current_step_number(state)

    steps = [r for r in records if r.kind == "step"]
    for r in steps:
        if r.step_number > state.max_step_observed:
            state.max_step_observed = r.step_number

    complete = next((r for r in records if r.kind == "complete"), None)
    if complete is not None:
        result.complete = complete
        result.completed_now = not state.is_completed
        state.is_completed = True
        state.committed_total_steps = max(state.committed_total_steps or 0, state.max_step_observed) or None
        state.current_step = complete
        state.wrong_answer_counts.clear()
        log.info(
            f"Session complete (steps used={state.max_step_observed}, "
            f"committed total={state.committed_total_steps})"
        )
        _log_event(state, "Reconciler", f"Complete after step {state.max_step_observed}")
        return result

    if steps:
        canonical = max(steps, key=lambda r: r.step_number)
        if state.committed_total_steps is None:
            state.committed_total_steps = canonical.total_steps
        elif canonical.step_number > state.committed_total_steps:
            log.warning(
                f"Step {canonical.step_number} exceeds committed total "
                f"{state.committed_total_steps}; raising it"
            )
            _log_event(
                state, "Reconciler",
                f"Total raised {state.committed_total_steps} -> {canonical.step_number}",
            )
            state.committed_total_steps = canonical.step_number
        elif canonical.total_steps != state.committed_total_steps:
            log.info(
                f"Ignoring model total {canonical.total_steps}, "
                f"keeping {state.committed_total_steps}"
            )

        if state.is_completed:
            log.warning(f"Step {canonical.step_number} arrived after completion; not shown")
            _log_event(state, "Reconciler", f"Ignored step {canonical.step_number} after completion")
            return result

        shown = canonical.model_copy(update={"total_steps": state.committed_total_steps})
        state.current_step = shown
        result.step = shown
        result.advanced = canonical.step_number > before
        _clear_passed_steps(state, canonical.step_number)
        return result

    # Text only (or nothing): the previously shown step stays on screen.
    return result


def classify_selection(
    pending: PendingOption, feedback_texts: list[str], result: BatchResult
) -> SelectionOutcome:
    """Judge an option selection.

    The declared correctIndex wins; feedback wording is only a fallback.
    """
    if pending.is_skip:
        return SelectionOutcome.SKIP

    if pending.correct_option_index is not None:
        if pending.option_index != pending.correct_option_index:
            return SelectionOutcome.WRONG
        return SelectionOutcome.ADVANCED if result.moved_on else SelectionOutcome.CORRECT

    judged = classify_feedback(feedback_texts)
    if judged is Feedback.NEGATIVE:
        return SelectionOutcome.WRONG
    if result.moved_on:
        return SelectionOutcome.ADVANCED
    if judged is Feedback.POSITIVE:
        return SelectionOutcome.CORRECT
    return SelectionOutcome.UNDETERMINED


def record_selection_outcome(state: SessionState, step: int, outcome: SelectionOutcome) -> None:
    """Update wrong-answer counts for the step the option belonged to."""
    if outcome is SelectionOutcome.WRONG:
        state.wrong_answer_counts[step] = state.wrong_answer_counts.get(step, 0) + 1
        log.info(f"Wrong answer #{state.wrong_answer_counts[step]} on step {step}")
    elif outcome is not SelectionOutcome.UNDETERMINED:
        state.wrong_answer_counts.pop(step, None)
    # An advance past the step clears it even when this answer was wrong.
    _clear_passed_steps(state, _current_step_number(state) if not state.is_completed else step + 1)


def needs_advance(outcome: SelectionOutcome, result: BatchResult) -> bool:
    """True when the tutor should have moved on but did not."""
    return outcome in (SelectionOutcome.CORRECT, SelectionOutcome.SKIP) and not result.moved_on
