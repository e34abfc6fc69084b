"""Tests for the tutoring session controller, driven by a scripted completion stub."""

from __future__ import annotations

import json

from studydesk.models import QuestionData
from studydesk.prompts import START_MESSAGE
from studydesk.services.llm import CompletionError
from studydesk.tutoring.controller import PROTOCOL_VIOLATION_MARKER, TutoringController

QUESTION = QuestionData(id="q-1", question_text="Solve $2x + 3 = 7$.", answer="$x = 2$")
OTHER_QUESTION = QuestionData(id="q-2", question_text="Compute $3^2$.", answer="9")


class ScriptedLLM:
    """Completion stub returning canned replies in order."""

    def __init__(self, replies, on_call=None):
        self.replies = list(replies)
        self.calls: list[list[dict]] = []
        self.on_call = on_call

    def complete(self, messages, json_mode=None):
        self.calls.append(messages)
        if self.on_call:
            self.on_call(len(self.calls))
        reply = self.replies.pop(0)
        if isinstance(reply, Exception):
            raise reply
        return reply


def step(n, total=2, correct=None, options=("a", "b", "Skip this step")):
    record = {"type": "step", "step": n, "totalSteps": total, "question": f"Step {n}?", "options": list(options)}
    if correct is not None:
        record["correctIndex"] = correct
    return record


def text(content):
    return {"type": "text", "content": content}


def complete(content="All done!"):
    return {"type": "complete", "content": content}


def reply(*records):
    if len(records) == 1:
        return json.dumps(records[0])
    return json.dumps({"responses": list(records)})


def started(replies, first=None):
    llm = ScriptedLLM([reply(first or step(1))] + list(replies))
    controller = TutoringController(llm)
    controller.start(QUESTION)
    return controller, llm


def visible_texts(controller):
    return [m.content for m in controller.transcript()]


def test_start_shows_first_step_and_hides_prompts():
    llm = ScriptedLLM([reply(step(1, total=2, correct=0))])
    controller = TutoringController(llm)

    controller.start(QUESTION)

    panel = controller.panel()
    assert panel.kind == "step"
    assert (panel.step, panel.total_steps) == (1, 2)
    assert panel.options == ("a", "b", "Skip this step")
    assert controller.transcript() == []
    wire = llm.calls[0]
    assert [m["role"] for m in wire] == ["system", "user"]
    assert wire[1]["content"] == START_MESSAGE
    assert "Solve $2x + 3 = 7$." in wire[0]["content"]


def test_correct_option_with_feedback_and_next_step_needs_no_correction():
    controller, llm = started([reply(text("Correct!"), step(2))], first=step(1, correct=0))

    controller.select_option("a", 0)

    assert len(llm.calls) == 2
    assert controller.panel().step == 2
    assert visible_texts(controller) == ["a", "Correct!"]
    assert llm.calls[1][-1]["content"] == "a\n\n(Selected option 1 on step 1)"
    assert controller.state.pending_option is None
    assert not controller.busy


def test_stalled_advance_issues_one_correction_and_applies_next_step():
    controller, llm = started(
        [
            reply(text("well done")),
            reply(text("Great, once more"), step(2)),
        ]
    )

    controller.select_option("a", 0)

    assert len(llm.calls) == 3
    assert '"step":2' in llm.calls[2][-1]["content"]
    assert "well done" in llm.calls[2][-1]["content"]
    assert controller.panel().step == 2
    # Feedback from the corrective reply is not shown a second time.
    assert visible_texts(controller) == ["a", "well done"]


def test_same_stall_from_same_selection_is_not_corrected_twice():
    controller, llm = started(
        [
            reply(text("well done")),
            reply(text("still thinking")),  # correction fails to advance
            reply(text("well done")),
        ]
    )

    controller.select_option("a", 0)
    controller.select_option("a", 0)

    assert len(llm.calls) == 4
    assert controller.panel().step == 1


def test_skip_that_stalls_is_pushed_to_completion():
    controller, llm = started(
        [reply(text("Here is the work for this step.")), reply(complete("Finished!"))],
        first=step(1, total=1),
    )

    controller.select_option("Skip this step", 2)

    assert len(llm.calls) == 3
    assert controller.state.is_completed
    panel = controller.panel()
    assert panel.kind == "complete"
    assert panel.content == "Finished!"


def test_missing_feedback_is_requested_once_and_step_transition_not_repeated():
    controller, llm = started(
        [
            reply(step(2, correct=0)),
            reply(text("Yes, subtracting 3 first is right."), step(3)),
        ],
        first=step(1, correct=0),
    )

    controller.select_option("a", 0)

    assert len(llm.calls) == 3
    assert "no feedback" in llm.calls[2][-1]["content"]
    assert controller.panel().step == 2
    assert visible_texts(controller)[-1] == "Yes, subtracting 3 first is right."


def test_missing_feedback_then_stall_uses_both_corrections():
    controller, llm = started(
        [
            reply(step(1)),  # repeats the step, no feedback
            reply(text("Correct, that is the right move.")),
            reply(step(2)),
        ]
    )

    controller.select_option("a", 0)

    assert len(llm.calls) == 4
    assert controller.panel().step == 2


def test_two_wrong_answers_count_up_then_clear_on_advance():
    controller, llm = started(
        [
            reply(text("Not quite. Hint: subtract first."), step(3, total=4, correct=0)),
            reply(text("Still wrong. The answer is a."), step(3, total=4, correct=0)),
            reply(text("Correct!"), step(4, total=4, correct=0)),
        ],
        first=step(3, total=4, correct=0),
    )

    controller.select_option("b", 1)
    assert controller.state.current_step.step_number == 3
    assert controller.state.wrong_answer_counts[3] == 1

    controller.select_option("b", 1)
    assert controller.state.wrong_answer_counts[3] == 2

    controller.select_option("a", 0)
    assert 3 not in controller.state.wrong_answer_counts
    assert controller.panel().step == 4
    assert len(llm.calls) == 4  # no corrections for wrong answers


def test_completion_error_becomes_transcript_entry_and_keeps_state():
    controller, llm = started(
        [CompletionError("service down"), reply(text("Correct!"), step(2))],
        first=step(1, correct=0),
    )

    controller.select_option("a", 0)

    assert controller.panel().step == 1
    errors = [m for m in controller.transcript() if m.kind == "error"]
    assert [m.content for m in errors] == ["Error: service down"]
    assert not controller.busy

    controller.select_option("a", 0)

    assert controller.panel().step == 2
    assert all("service down" not in m["content"] for m in llm.calls[2])


def test_failed_correction_degrades_to_error_entry():
    controller, llm = started([reply(text("well done")), CompletionError("timeout")])

    controller.select_option("a", 0)

    assert controller.panel().step == 1
    assert visible_texts(controller)[-1] == "Error: timeout"


def test_protocol_violation_is_shown_raw_without_correction():
    controller, llm = started(["Sorry, here is plain prose."])

    controller.select_option("a", 0)

    assert len(llm.calls) == 2
    last = controller.transcript()[-1]
    assert last.kind == "raw"
    assert last.content.startswith("Sorry, here is plain prose.")
    assert PROTOCOL_VIOLATION_MARKER in last.content
    assert controller.panel().step == 1


def test_free_text_keeps_current_step_and_never_corrects():
    controller, llm = started([reply(text("Because 7 - 3 = 4.")), reply(step(1))])

    controller.submit_free_text("Why subtract 3?")
    assert controller.panel().step == 1
    assert visible_texts(controller) == ["Why subtract 3?", "Because 7 - 3 = 4."]

    controller.submit_free_text("And then?")
    assert len(llm.calls) == 3
    assert controller.panel().step == 1


def test_blank_free_text_is_ignored():
    controller, llm = started([])

    assert controller.submit_free_text("   ") == []
    assert len(llm.calls) == 1


def test_after_completion_options_are_ignored_and_banner_stays():
    controller, llm = started(
        [reply(text("Correct!"), complete()), reply(text("Sure."), step(1))],
        first=step(1, total=1, correct=0),
    )
    controller.select_option("a", 0)
    assert controller.state.is_completed

    assert controller.select_option("a", 0) == []
    controller.submit_free_text("Can you recap?")

    assert controller.state.is_completed
    assert controller.panel().kind == "complete"
    assert len(llm.calls) == 3


def test_switch_question_discards_previous_session():
    controller, llm = started([reply(step(1, total=3))])
    old_id = controller.state.session_id
    controller.state.wrong_answer_counts[1] = 1

    controller.switch_question(OTHER_QUESTION)

    assert controller.state.session_id != old_id
    assert controller.state.question_id == "q-2"
    assert controller.state.wrong_answer_counts == {}
    assert controller.state.committed_total_steps == 3
    assert "Compute $3^2$." in llm.calls[1][0]["content"]


def test_late_reply_for_superseded_session_is_not_applied():
    controller = None

    def switch_during_option_call(call_number):
        if call_number == 2:
            controller.switch_question(OTHER_QUESTION)

    llm = ScriptedLLM(
        [
            reply(step(1, total=2)),
            reply(step(1, total=4)),  # first step of the new question
            reply(text("Correct!"), step(2, total=2)),  # stale reply for the old question
        ],
        on_call=switch_during_option_call,
    )
    controller = TutoringController(llm)
    controller.start(QUESTION)

    new_messages = controller.select_option("a", 0)

    assert new_messages == []
    assert controller.state.question_id == "q-2"
    assert controller.panel().step == 1
    assert controller.state.committed_total_steps == 4
    assert "Correct!" not in visible_texts(controller)
    assert not controller.busy


def test_state_invariants_hold_over_a_full_session():
    controller, llm = started(
        [
            reply(text("Correct!"), step(2, total=2)),
            reply(text("Correct!"), step(3, total=2)),
            reply(text("Correct!"), complete()),
        ],
        first=step(1, total=2),
    )
    totals = [controller.state.committed_total_steps]
    maxima = [controller.state.max_step_observed]

    for _ in range(3):
        controller.select_option("a", 0)
        totals.append(controller.state.committed_total_steps)
        maxima.append(controller.state.max_step_observed)

    assert totals == sorted(totals)
    assert maxima == sorted(maxima)
    assert controller.state.is_completed
    assert controller.state.committed_total_steps >= controller.state.max_step_observed == 3


def test_switch_to_question_without_answer_shows_error_and_stays_inert():
    controller, llm = started([])

    new_messages = controller.switch_question(QuestionData(id="q-3", question_text="Compute $2^3$.", answer="  "))

    assert [m.kind for m in new_messages] == ["error"]
    assert controller.state is not None
    assert controller.state.question_id == "q-3"
    assert [m.kind for m in controller.transcript()] == ["error"]
    assert controller.panel().kind == "none"
    assert controller.submit_free_text("Can you help?") == []
    assert controller.select_option("a", 0) == []
    assert len(llm.calls) == 1
    assert not controller.busy


def test_last_option_counts_as_skip_whatever_its_wording():
    controller, llm = started(
        [reply(text("Here is the worked step.")), reply(step(2))],
        first=step(1, options=("a", "b", "Pass")),
    )

    controller.select_option("Pass", 2)

    assert len(llm.calls) == 3
    assert '"step":2' in llm.calls[2][-1]["content"]
    assert controller.panel().step == 2
