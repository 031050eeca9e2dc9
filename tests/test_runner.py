"""Tests for run setup around the loop (bookkeeping and branch selection)."""

import json
import subprocess

from ralph_loop.constants import COMPLETION_MARKER
from ralph_loop.loop_state import LoopStatus
from ralph_loop.project import ProjectPaths
from ralph_loop.runner import prepare_project, run_ralph, start_branch
from ralph_loop.workers import get_worker

from conftest import ScriptedInvoker


def no_git(cmd, **kwargs):
    raise AssertionError(f"git should not run: {cmd}")


class TestPrepareProject:
    def test_first_run(self, make_config):
        config = make_config()
        (config.project_root / "prd.json").write_text(json.dumps({"branchName": "ralph/a"}))
        paths = prepare_project(config, get_worker("amp"))
        assert paths.last_branch.read_text().strip() == "ralph/a"
        assert "Worker: Amp" in paths.progress.read_text()

    def test_branch_change_archives(self, make_config):
        config = make_config()
        root = config.project_root
        (root / "prd.json").write_text(json.dumps({"branchName": "ralph/b"}))
        (root / ".last-branch").write_text("ralph/a")
        (root / "progress.txt").write_text("notes from a")
        prepare_project(config, get_worker("cursor"))
        archived = list((root / "archive").glob("*-a/progress.txt"))
        assert len(archived) == 1
        assert archived[0].read_text() == "notes from a"
        assert (root / ".last-branch").read_text().strip() == "ralph/b"


class TestStartBranch:
    def test_skip_flag(self, make_config, echo):
        config = make_config(skip_git=True)
        assert start_branch(config, ProjectPaths(config.project_root), echo, git_run=no_git) is None

    def test_no_prd_warns(self, make_config, echo):
        config = make_config()
        assert start_branch(config, ProjectPaths(config.project_root), echo, git_run=no_git) is None
        assert "No prd.json found" in echo.text

    def test_no_branch_name_warns(self, make_config, echo):
        config = make_config()
        (config.project_root / "prd.json").write_text("{}")
        assert start_branch(config, ProjectPaths(config.project_root), echo, git_run=no_git) is None
        assert "No branchName in prd.json" in echo.text

    def test_checks_out_prd_branch(self, make_config, echo):
        config = make_config()
        (config.project_root / "prd.json").write_text(json.dumps({"branchName": "ralph/a"}))
        calls = []

        def git(cmd, **kwargs):
            calls.append(cmd[1:])
            out = "ralph/a\n" if cmd[1:] == ["branch", "--show-current"] else ""
            return subprocess.CompletedProcess(cmd, 0, stdout=out, stderr="")

        result = start_branch(config, ProjectPaths(config.project_root), echo, git_run=git)
        assert result.branch == "ralph/a"
        assert calls == [["branch", "--show-current"]]


class TestRunRalph:
    def test_full_run_with_scripted_agent(self, make_config, sleep, echo):
        config = make_config(max_iterations=3, skip_git=True)
        invoker = ScriptedInvoker(["working", COMPLETION_MARKER])
        state = run_ralph(config, invoker=invoker, sleep=sleep, echo=echo, git_run=no_git)
        assert state.status == LoopStatus.SUCCEEDED
        assert invoker.calls[0][1] == "Work on the next story in prd.json."
        assert "Ralph - Autonomous AI Agent Loop" in echo.text
        assert "Max iterations: 3" in echo.text

    def test_graph_mode(self, make_config, sleep, echo):
        config = make_config(max_iterations=2, skip_git=True)
        state = run_ralph(
            config,
            invoker=ScriptedInvoker(["a", "b"]),
            use_graph=True,
            sleep=sleep,
            echo=echo,
            git_run=no_git,
        )
        assert state.status == LoopStatus.FAILED_MAX_ITERATIONS
        assert sleep.delays == [2]
