"""Thin runner: project bookkeeping, branch setup, then the agent loop."""

import subprocess
import time
from typing import Callable, Optional

import click

from ralph_loop.agent_loop import print_banner, run_agent_loop
from ralph_loop.config import RunConfig
from ralph_loop.git_branch import BranchSetupResult, setup_git_branch
from ralph_loop.loop_state import RunState
from ralph_loop.project import (
    ProjectPaths,
    archive_previous_run,
    init_progress_file,
    read_branch_name,
    record_last_branch,
)
from ralph_loop.workers import AgentInvoker, SubprocessInvoker, Worker, get_worker


def prepare_project(config: RunConfig, worker: Worker) -> ProjectPaths:
    """Archive a finished run, remember the branch, ensure a progress log."""
    paths = ProjectPaths(config.project_root)
    archive_previous_run(paths, worker.display_name)
    record_last_branch(paths)
    init_progress_file(paths.progress, worker.display_name)
    return paths


def start_branch(
    config: RunConfig,
    paths: ProjectPaths,
    echo: Callable[[str], None] = click.echo,
    git_run: Callable[..., subprocess.CompletedProcess] = subprocess.run,
) -> Optional[BranchSetupResult]:
    """Switch to prd.json's branchName. Skipped with a warning when absent."""
    if config.skip_git:
        return None
    if not paths.prd.exists():
        echo("Warning: No prd.json found. Skipping git branch setup.")
        return None
    branch = read_branch_name(paths.prd)
    if not branch:
        echo("Warning: No branchName in prd.json. Skipping git branch setup.")
        return None
    return setup_git_branch(config.project_root, branch, run=git_run, echo=echo)


def run_ralph(
    config: RunConfig,
    invoker: Optional[AgentInvoker] = None,
    use_graph: bool = False,
    sleep: Callable[[float], None] = time.sleep,
    echo: Callable[[str], None] = click.echo,
    git_run: Callable[..., subprocess.CompletedProcess] = subprocess.run,
) -> RunState:
    """
    Main entry point: prepare the project, then loop until done.
    
    Args:
        config: Run configuration
        invoker: Agent invoker (default: subprocess invoker for config.worker)
        use_graph: If True, run through the LangGraph wrapper for tracing
    
    Returns:
        Terminal RunState
    
    Raises:
        ConfigError: If the prompt file is missing
        GitError: If the branch checkout fails
    """
    worker = get_worker(config.worker)
    prompt_text = config.read_prompt()
    
    paths = prepare_project(config, worker)
    print_banner(worker.display_name, config.max_iterations, echo)
    start_branch(config, paths, echo, git_run)
    
    if invoker is None:
        invoker = SubprocessInvoker(worker, timeout_s=config.invoke_timeout_s)
    
    if use_graph:
        from ralph_loop.loop_graph import run_loop_graph
        return run_loop_graph(config, invoker, prompt_text, sleep=sleep, echo=echo)
    
    return run_agent_loop(config, invoker, prompt_text, sleep=sleep, echo=echo)
