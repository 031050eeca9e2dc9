"""Worker registry and agent invokers.

A worker binds the loop to one agent CLI: which executable to call, with
which non-interactive flags, and from which directory. New agents are added
with register_worker(); the loop itself never changes.
"""

import os
import signal
import subprocess
import sys
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Dict, List, Optional, TextIO


class UnknownWorkerError(Exception):
    """Raised when a worker key is not registered."""
    pass


@dataclass(frozen=True)
class Worker:
    """A named agent CLI and how to invoke it non-interactively."""
    key: str
    display_name: str
    executable: str
    install_hint: str
    command_builder: Callable[["Worker", Path, str], List[str]]
    chdir: bool = False  # start the process inside the project root

    def build_command(self, project_root: Path, prompt_text: str) -> List[str]:
        return self.command_builder(self, project_root, prompt_text)


def _cursor_command(worker: Worker, project_root: Path, prompt_text: str) -> List[str]:
    # --print: non-interactive, enables shell execution
    # --force: allow commands unless explicitly denied
    return [
        worker.executable,
        "--print",
        "--force",
        "--workspace", str(project_root),
        "--output-format", "text",
        prompt_text,
    ]


def _amp_command(worker: Worker, project_root: Path, prompt_text: str) -> List[str]:
    # --yes auto-approves commands
    return [worker.executable, "--yes", "--print", prompt_text]


WORKERS: Dict[str, Worker] = {}


def register_worker(worker: Worker) -> Worker:
    """Register a worker variant under its key (replaces an existing one)."""
    WORKERS[worker.key] = worker
    return worker


def get_worker(key: str) -> Worker:
    """Look up a worker by key."""
    try:
        return WORKERS[key]
    except KeyError:
        raise UnknownWorkerError(
            f"Unknown worker '{key}'. Available workers: {', '.join(WORKERS)}"
        ) from None


register_worker(Worker(
    key="cursor",
    display_name="Cursor CLI",
    executable="agent",
    install_hint="Please install Cursor CLI: https://cursor.com/docs/cli",
    command_builder=_cursor_command,
))

register_worker(Worker(
    key="amp",
    display_name="Amp",
    executable="amp",
    install_hint="Please install Amp: https://ampcode.com",
    command_builder=_amp_command,
    chdir=True,
))


# =============================================================================
# INVOKERS
# =============================================================================

def _kill_process_group(proc: subprocess.Popen) -> None:
    """
    Kill the agent and everything it spawned.
    
    Agent CLIs spawn subprocesses that share the output pipe; the read loop
    only ends once the whole group is gone.
    """
    if not hasattr(os, "killpg"):
        proc.kill()
        return
    try:
        os.killpg(proc.pid, signal.SIGKILL)
    except ProcessLookupError:
        pass


class AgentInvoker(ABC):
    """Runs one agent pass and returns its merged output text."""

    @abstractmethod
    def invoke(self, project_root: Path, prompt_text: str) -> str:
        """
        Run the agent once against project_root.
        
        Blocks until the agent exits. Returns stdout and stderr merged.
        """
        pass


class SubprocessInvoker(AgentInvoker):
    """Invoke a registered worker as a child process.
    
    Output is teed line by line to `stream` while the agent runs, so the
    operator sees progress; the full text is returned once it exits.
    The exit status is ignored: only the text is classified.
    """

    def __init__(
        self,
        worker: Worker,
        stream: Optional[TextIO] = None,
        timeout_s: Optional[float] = None,
        popen: Callable[..., subprocess.Popen] = subprocess.Popen,
    ):
        self.worker = worker
        self.stream = stream if stream is not None else sys.stderr
        self.timeout_s = timeout_s
        self._popen = popen

    def invoke(self, project_root: Path, prompt_text: str) -> str:
        cmd = self.worker.build_command(project_root, prompt_text)
        cwd = str(project_root) if self.worker.chdir else None

        if os.environ.get("RALPH_DEBUG"):
            print(f"[DEBUG] worker={self.worker.key}, cwd={cwd}, argv0={cmd[0]}, prompt_chars={len(prompt_text)}")

        try:
            proc = self._popen(
                cmd,
                cwd=cwd,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                stdin=subprocess.DEVNULL,
                text=True,
                errors="replace",
                start_new_session=True,  # own process group
            )
        except OSError as e:
            # Surface launch failures as output so the loop can classify them
            message = f"Failed to start {self.worker.display_name}: {e}\n"
            self._tee(message)
            return message

        timed_out = threading.Event()
        timer = None
        if self.timeout_s:
            def _kill():
                timed_out.set()
                _kill_process_group(proc)
            timer = threading.Timer(self.timeout_s, _kill)
            timer.daemon = True
            timer.start()

        chunks = []
        try:
            for line in proc.stdout:
                chunks.append(line)
                self._tee(line)
            proc.wait()
        finally:
            if timer is not None:
                timer.cancel()
            proc.stdout.close()

        if timed_out.is_set():
            message = f"\n{self.worker.display_name} timed out after {self.timeout_s:g} seconds\n"
            chunks.append(message)
            self._tee(message)

        return "".join(chunks)

    def _tee(self, text: str) -> None:
        self.stream.write(text)
        self.stream.flush()
