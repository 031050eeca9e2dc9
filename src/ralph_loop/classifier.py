"""Classification of captured agent output.

Output is never parsed. One pass through the loop is classified by two
substring checks, the connection-error check first.
"""

from enum import Enum
from typing import Iterable, Optional

from ralph_loop.constants import COMPLETION_MARKER, TRANSIENT_ERROR_SIGNATURES


class OutputKind(str, Enum):
    TRANSIENT_ERROR = "transient_error"
    COMPLETE = "complete"
    CONTINUE = "continue"


def is_transient_error(
    output: Optional[str],
    signatures: Iterable[str] = TRANSIENT_ERROR_SIGNATURES,
) -> bool:
    """True if any connection-error signature appears in the output."""
    if not output:
        return False
    return any(sig in output for sig in signatures)


def is_complete(output: Optional[str], marker: str = COMPLETION_MARKER) -> bool:
    """True if the completion marker appears anywhere in the output."""
    if not output:
        return False
    return marker in output


def classify_output(output: Optional[str]) -> OutputKind:
    """
    Classify one invocation's merged stdout/stderr.
    
    A connection error wins over the completion marker: an output holding
    both is treated as a failed attempt and retried.
    """
    if is_transient_error(output):
        return OutputKind.TRANSIENT_ERROR
    if is_complete(output):
        return OutputKind.COMPLETE
    return OutputKind.CONTINUE
