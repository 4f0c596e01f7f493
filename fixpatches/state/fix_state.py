"""
Fix State
=========
Retry state machine for repairing a single patch.

    INIT → EXTRACTING → AWAITING_FIX → APPLYING → VALIDATING → SUCCEEDED
                ↑             │            │           │
                └── RETRYING ←┴────────────┴───────────┘
    any non-terminal state → EXHAUSTED (attempt budget spent)

EXTRACTING -> RETRYING covers an extraction that finds an inconsistent tree.
SKIPPED (complexity gate) and FAILED (fatal error) are terminal as well.
"""
from enum import Enum
from typing import Dict, FrozenSet, List


class FixState(str, Enum):
    INIT = "init"
    EXTRACTING = "extracting"
    AWAITING_FIX = "awaiting_fix"
    APPLYING = "applying"
    VALIDATING = "validating"
    SUCCEEDED = "succeeded"
    RETRYING = "retrying"
    EXHAUSTED = "exhausted"
    SKIPPED = "skipped"
    FAILED = "failed"


TERMINAL_STATES: FrozenSet[FixState] = frozenset({
    FixState.SUCCEEDED, FixState.EXHAUSTED, FixState.SKIPPED, FixState.FAILED,
})

_TRANSITIONS: Dict[FixState, FrozenSet[FixState]] = {
    FixState.INIT: frozenset({FixState.EXTRACTING}),
    FixState.EXTRACTING: frozenset({
        FixState.SUCCEEDED, FixState.AWAITING_FIX, FixState.SKIPPED, FixState.RETRYING,
    }),
    FixState.AWAITING_FIX: frozenset({FixState.APPLYING, FixState.RETRYING}),
    FixState.APPLYING: frozenset({FixState.VALIDATING, FixState.RETRYING}),
    FixState.VALIDATING: frozenset({FixState.SUCCEEDED, FixState.RETRYING}),
    FixState.RETRYING: frozenset({FixState.EXTRACTING}),
}


class InvalidTransition(RuntimeError):
    pass


class StateTracker:
    """Records the path through the state machine and rejects illegal moves."""

    def __init__(self) -> None:
        self.state = FixState.INIT
        self.history: List[FixState] = [FixState.INIT]

    @property
    def terminal(self) -> bool:
        return self.state in TERMINAL_STATES

    def advance(self, target: FixState) -> FixState:
        if self.terminal:
            raise InvalidTransition(f"{self.state.value} is terminal, cannot move to {target.value}")
        # Exhaustion and fatal failure are reachable from anywhere
        allowed = _TRANSITIONS.get(self.state, frozenset()) | {FixState.EXHAUSTED, FixState.FAILED}
        if target not in allowed:
            raise InvalidTransition(f"{self.state.value} -> {target.value}")
        self.state = target
        self.history.append(target)
        return target

    def path(self) -> List[str]:
        return [s.value for s in self.history]
