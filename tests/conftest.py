"""Shared fixtures: scripted invokers and recorded sleeps, no real agents."""

from pathlib import Path
from typing import List

import pytest

from ralph_loop.config import RunConfig
from ralph_loop.workers import AgentInvoker


class ScriptedInvoker(AgentInvoker):
    """Returns canned outputs in order and records every call."""

    def __init__(self, outputs: List[str]):
        self.outputs = list(outputs)
        self.calls = []

    def invoke(self, project_root: Path, prompt_text: str) -> str:
        self.calls.append((project_root, prompt_text))
        if not self.outputs:
            raise AssertionError("Invoker called more times than scripted")
        return self.outputs.pop(0)


class RecordingSleep:
    def __init__(self):
        self.delays = []

    def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)


class Lines:
    def __init__(self):
        self.lines = []

    def __call__(self, text: str = "") -> None:
        self.lines.append(text)

    @property
    def text(self) -> str:
        return "\n".join(self.lines)


@pytest.fixture
def sleep():
    return RecordingSleep()


@pytest.fixture
def echo():
    return Lines()


@pytest.fixture
def make_config(tmp_path):
    def _make(max_iterations: int = 5, worker: str = "cursor", **kwargs) -> RunConfig:
        prompt = tmp_path / "prompt.md"
        if not prompt.exists():
            prompt.write_text("Work on the next story in prd.json.")
        values = {
            "worker": worker,
            "max_iterations": max_iterations,
            "project_root": tmp_path,
            "prompt_path": prompt,
            "retry_base_delay_s": 10,
            "iteration_delay_s": 2,
        }
        values.update(kwargs)
        return RunConfig(**values)
    return _make
