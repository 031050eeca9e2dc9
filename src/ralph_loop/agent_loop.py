"""Agent loop - drives repeated agent invocations until the PRD is done.

One pass: invoke the agent, classify its output, then either retry the
same iteration after a linear backoff, stop on completion, or move on to
the next iteration. `advance` is the whole state machine and has no side
effects; `run_agent_loop` adds the invoking, sleeping and printing.
"""

import dataclasses
import time
from typing import Callable

import click

from ralph_loop.classifier import OutputKind, classify_output
from ralph_loop.config import RunConfig
from ralph_loop.constants import (
    ITERATION_DELAY_S,
    MAX_CONSECUTIVE_ERRORS,
    RETRY_BASE_DELAY_S,
)
from ralph_loop.loop_state import LoopStatus, RunState
from ralph_loop.workers import AgentInvoker, get_worker


RULE = "═" * 55


def initial_state(max_iterations: int) -> RunState:
    """Running(1, 0)."""
    if max_iterations < 1:
        raise ValueError(f"max_iterations must be >= 1, got {max_iterations}")
    return RunState(max_iterations=max_iterations)


def backoff_delay(consecutive_errors: int, base: float = RETRY_BASE_DELAY_S) -> float:
    """Wait before retry number `consecutive_errors` of a streak: base x n."""
    return base * consecutive_errors


def advance(
    state: RunState,
    output: str,
    retry_base_delay_s: float = RETRY_BASE_DELAY_S,
    iteration_delay_s: float = ITERATION_DELAY_S,
    max_consecutive_errors: int = MAX_CONSECUTIVE_ERRORS,
) -> RunState:
    """
    Apply one invocation's output to the run state.
    
    Transitions:
        transient error -> retry same iteration (or FAILED_TOO_MANY_ERRORS
                           once the streak reaches the retry budget)
        completion      -> SUCCEEDED
        anything else   -> next iteration (or FAILED_MAX_ITERATIONS once
                           the counter passes max_iterations)
    
    Returns a new RunState; `pending_delay_s` is how long the caller should
    sleep before the next invocation.
    
    Raises:
        ValueError: If the state is already terminal.
    """
    if state.is_terminal:
        raise ValueError(f"Cannot advance a finished run (status={state.status.value})")
    
    kind = classify_output(output)
    nxt = dataclasses.replace(
        state,
        invocations=state.invocations + 1,
        last_output=output,
        last_kind=kind,
        pending_delay_s=0.0,
    )
    
    if kind == OutputKind.TRANSIENT_ERROR:
        nxt.consecutive_errors = state.consecutive_errors + 1
        if nxt.consecutive_errors >= max_consecutive_errors:
            nxt.status = LoopStatus.FAILED_TOO_MANY_ERRORS
        else:
            nxt.pending_delay_s = backoff_delay(nxt.consecutive_errors, retry_base_delay_s)
        return nxt
    
    nxt.consecutive_errors = 0
    
    if kind == OutputKind.COMPLETE:
        nxt.status = LoopStatus.SUCCEEDED
        return nxt
    
    nxt.iteration = state.iteration + 1
    if nxt.iteration > nxt.max_iterations:
        nxt.status = LoopStatus.FAILED_MAX_ITERATIONS
    else:
        nxt.pending_delay_s = iteration_delay_s
    return nxt


# =============================================================================
# OPERATOR OUTPUT
# =============================================================================

def print_banner(worker_name: str, max_iterations: int, echo: Callable[[str], None] = click.echo) -> None:
    echo("")
    echo("╔═══════════════════════════════════════════════════════╗")
    echo("║  Ralph - Autonomous AI Agent Loop                     ║")
    echo("╠═══════════════════════════════════════════════════════╣")
    echo(f"║  Worker: {worker_name}")
    echo(f"║  Max iterations: {str(max_iterations):<36}║")
    echo("╚═══════════════════════════════════════════════════════╝")


def print_iteration_header(state: RunState, worker_name: str, echo: Callable[[str], None] = click.echo) -> None:
    echo("")
    echo(RULE)
    echo(f"  Ralph Iteration {state.iteration} of {state.max_iterations} ({worker_name})")
    echo(RULE)


def report_transition(
    state: RunState,
    config: RunConfig,
    worker_name: str,
    echo: Callable[[str], None] = click.echo,
) -> None:
    """Print what the last transition means for the operator."""
    if state.status == LoopStatus.FAILED_TOO_MANY_ERRORS:
        echo("")
        echo(f"⚠️  Connection error detected ({state.consecutive_errors} consecutive)")
        echo("❌ Too many consecutive connection errors. Stopping.")
        echo(f"   Check your network connection and {worker_name} status.")
    elif state.status == LoopStatus.SUCCEEDED:
        echo("")
        echo("✅ Ralph completed all tasks!")
        echo(f"Completed at iteration {state.iteration} of {state.max_iterations}")
    elif state.status == LoopStatus.FAILED_MAX_ITERATIONS:
        echo(f"Iteration {state.max_iterations} complete. Continuing...")
        echo("")
        echo(f"Ralph reached max iterations ({state.max_iterations}) without completing all tasks.")
        echo(f"Check {config.progress_path} for status.")
    elif state.last_kind == OutputKind.TRANSIENT_ERROR:
        echo("")
        echo(f"⚠️  Connection error detected ({state.consecutive_errors} consecutive)")
        echo(f"   Waiting {state.pending_delay_s:g}s before retry...")
    else:
        echo(f"Iteration {state.iteration - 1} complete. Continuing...")


# =============================================================================
# DRIVER
# =============================================================================

def invoke_once(
    state: RunState,
    config: RunConfig,
    invoker: AgentInvoker,
    prompt_text: str,
) -> RunState:
    """Run the agent for the current iteration and apply its output."""
    output = invoker.invoke(config.project_root, prompt_text)
    return advance(
        state,
        output or "",
        retry_base_delay_s=config.retry_base_delay_s,
        iteration_delay_s=config.iteration_delay_s,
    )


def run_agent_loop(
    config: RunConfig,
    invoker: AgentInvoker,
    prompt_text: str,
    sleep: Callable[[float], None] = time.sleep,
    echo: Callable[[str], None] = click.echo,
) -> RunState:
    """
    Main agent loop.
    
    Blocks on each invocation and each delay. Returns the terminal
    RunState; callers turn `state.exit_code` into the process exit code.
    """
    worker_name = get_worker(config.worker).display_name
    state = initial_state(config.max_iterations)
    
    while not state.is_terminal:
        print_iteration_header(state, worker_name, echo)
        state = invoke_once(state, config, invoker, prompt_text)
        report_transition(state, config, worker_name, echo)
        if not state.is_terminal and state.pending_delay_s > 0:
            sleep(state.pending_delay_s)
    
    return state
