"""Bounded corrective follow-up calls.

Each triggering condition gets at most one corrective call. A condition is keyed by
(kind, step, selected option text) and moves IDLE -> IN_FLIGHT -> SETTLED; there is
no way back to IDLE, so a second identical trigger is suppressed.
"""

from enum import Enum


class CorrectionKind(str, Enum):
    MISSING_FEEDBACK = "missing_feedback"
    STALLED_ADVANCE = "stalled_advance"


class CorrectionState(str, Enum):
    IDLE = "idle"
    IN_FLIGHT = "in_flight"
    SETTLED = "settled"


CorrectionKey = tuple[CorrectionKind, int, str]


class CorrectionProtocol:
    """Tracks which corrections were already attempted in one session."""

    def __init__(self) -> None:
        self._states: dict[CorrectionKey, CorrectionState] = {}
        self._outcomes: dict[CorrectionKey, bool] = {}

    @staticmethod
    def key(kind: CorrectionKind, step: int, option_text: str) -> CorrectionKey:
        return (kind, step, option_text.strip())

    def state(self, kind: CorrectionKind, step: int, option_text: str) -> CorrectionState:
        return self._states.get(self.key(kind, step, option_text), CorrectionState.IDLE)

    def begin(self, kind: CorrectionKind, step: int, option_text: str) -> bool:
        """Claim the correction. Returns False if it is running or already done."""
        key = self.key(kind, step, option_text)
        if self._states.get(key, CorrectionState.IDLE) is not CorrectionState.IDLE:
            return False
        self._states[key] = CorrectionState.IN_FLIGHT
        return True

    def settle(self, kind: CorrectionKind, step: int, option_text: str, repaired: bool) -> None:
        key = self.key(kind, step, option_text)
        if self._states.get(key) is not CorrectionState.IN_FLIGHT:
            raise RuntimeError(f"Correction {key} was not in flight")
        self._states[key] = CorrectionState.SETTLED
        self._outcomes[key] = repaired

    def outcome(self, kind: CorrectionKind, step: int, option_text: str) -> bool | None:
        """True/False once settled, None before."""
        return self._outcomes.get(self.key(kind, step, option_text))

    def attempts(self) -> int:
        return len(self._states)
