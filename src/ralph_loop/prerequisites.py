"""Startup checks for external executables."""

import shutil
from dataclasses import dataclass
from typing import Callable, List, Optional

from ralph_loop.constants import JSON_QUERY_TOOL, JSON_QUERY_TOOL_HINT
from ralph_loop.workers import Worker


@dataclass
class MissingDependency:
    name: str
    hint: str

    def message(self) -> str:
        return f"'{self.name}' command not found. {self.hint}"


def check_prerequisites(
    worker: Worker,
    which: Callable[[str], Optional[str]] = shutil.which,
) -> List[MissingDependency]:
    """Return the executables that cannot be resolved on PATH."""
    missing = []
    if which(worker.executable) is None:
        missing.append(MissingDependency(worker.executable, worker.install_hint))
    if which(JSON_QUERY_TOOL) is None:
        missing.append(MissingDependency(JSON_QUERY_TOOL, JSON_QUERY_TOOL_HINT))
    return missing
