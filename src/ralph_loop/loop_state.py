"""Run state for the agent loop."""

from dataclasses import dataclass
from enum import Enum
from typing import Optional

from ralph_loop.classifier import OutputKind


class LoopStatus(str, Enum):
    RUNNING = "RUNNING"
    SUCCEEDED = "SUCCEEDED"
    FAILED_MAX_ITERATIONS = "FAILED_MAX_ITERATIONS"
    FAILED_TOO_MANY_ERRORS = "FAILED_TOO_MANY_ERRORS"


TERMINAL_STATUSES = (
    LoopStatus.SUCCEEDED,
    LoopStatus.FAILED_MAX_ITERATIONS,
    LoopStatus.FAILED_TOO_MANY_ERRORS,
)


@dataclass
class RunState:
    max_iterations: int
    iteration: int = 1
    consecutive_errors: int = 0
    status: LoopStatus = LoopStatus.RUNNING
    invocations: int = 0
    last_output: Optional[str] = None
    last_kind: Optional[OutputKind] = None
    pending_delay_s: float = 0.0  # sleep requested by the last transition

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def exit_code(self) -> Optional[int]:
        """0 on completion, 1 for either failure, None while running."""
        if self.status == LoopStatus.SUCCEEDED:
            return 0
        if self.is_terminal:
            return 1
        return None
