"""LangGraph wrapper for the agent loop - trace harness only.

Wraps the same `advance` transition in a StateGraph so that every agent
invocation and every wait shows up as a node in LangGraph Studio.

Same semantics as run_agent_loop, just structured visibility.
"""

from typing import Any, Callable, Optional
from typing_extensions import TypedDict

from langgraph.graph import StateGraph, END

from ralph_loop.agent_loop import (
    initial_state,
    invoke_once,
    print_iteration_header,
    report_transition,
)
from ralph_loop.classifier import OutputKind
from ralph_loop.config import RunConfig
from ralph_loop.constants import MAX_CONSECUTIVE_ERRORS
from ralph_loop.loop_state import LoopStatus, RunState
from ralph_loop.workers import AgentInvoker, get_worker


class LoopGraphState(TypedDict):
    """State for the loop graph - mirrors RunState fields."""
    max_iterations: int
    iteration: int
    consecutive_errors: int
    status: LoopStatus
    invocations: int
    last_output: Optional[str]
    last_kind: Optional[OutputKind]
    pending_delay_s: float
    # Collaborators (passed through state)
    run_config: Any
    invoker: Any
    prompt_text: str
    sleep: Any
    echo: Any


def state_to_run_state(state: LoopGraphState) -> RunState:
    """Convert graph state to RunState dataclass."""
    return RunState(
        max_iterations=state["max_iterations"],
        iteration=state["iteration"],
        consecutive_errors=state["consecutive_errors"],
        status=state["status"],
        invocations=state["invocations"],
        last_output=state.get("last_output"),
        last_kind=state.get("last_kind"),
        pending_delay_s=state["pending_delay_s"],
    )


def run_state_to_dict(rs: RunState) -> dict:
    """RunState fields as a partial graph state update."""
    return {
        "max_iterations": rs.max_iterations,
        "iteration": rs.iteration,
        "consecutive_errors": rs.consecutive_errors,
        "status": rs.status,
        "invocations": rs.invocations,
        "last_output": rs.last_output,
        "last_kind": rs.last_kind,
        "pending_delay_s": rs.pending_delay_s,
    }


# --- Graph Nodes ---

def node_invoke(state: LoopGraphState) -> dict:
    """Run the agent once and apply the transition."""
    config: RunConfig = state["run_config"]
    worker_name = get_worker(config.worker).display_name
    rs = state_to_run_state(state)
    print_iteration_header(rs, worker_name, state["echo"])
    rs = invoke_once(rs, config, state["invoker"], state["prompt_text"])
    report_transition(rs, config, worker_name, state["echo"])
    return run_state_to_dict(rs)


def node_wait(state: LoopGraphState) -> dict:
    """Sleep for the delay requested by the last transition."""
    if state["pending_delay_s"] > 0:
        state["sleep"](state["pending_delay_s"])
    return {"pending_delay_s": 0.0}


# --- Conditional Edges ---

def should_continue(state: LoopGraphState) -> str:
    """End on any terminal status, otherwise wait and invoke again."""
    if state["status"] == LoopStatus.RUNNING:
        return "wait"
    return "end"


# --- Graph Builder ---

def build_loop_graph() -> StateGraph:
    """
    Build the loop graph.
    
    Flow:
        invoke -> (terminal?) -> end
               -> (running)   -> wait -> invoke
    """
    graph = StateGraph(LoopGraphState)
    
    graph.add_node("invoke", node_invoke)
    graph.add_node("wait", node_wait)
    
    graph.set_entry_point("invoke")
    
    graph.add_conditional_edges(
        "invoke",
        should_continue,
        {
            "end": END,
            "wait": "wait",
        }
    )
    graph.add_edge("wait", "invoke")
    
    return graph


def recursion_limit_for(max_iterations: int) -> int:
    """
    Upper bound on graph steps for one run.
    
    Each iteration takes at most MAX_CONSECUTIVE_ERRORS invocations (the
    error streak resets on any clean output), each followed by a wait.
    """
    return 2 * MAX_CONSECUTIVE_ERRORS * max_iterations + 10


def run_loop_graph(
    config: RunConfig,
    invoker: AgentInvoker,
    prompt_text: str,
    sleep: Callable[[float], None],
    echo: Callable[[str], None],
) -> RunState:
    """
    Run the loop graph and return the terminal RunState.
    
    This is the traced equivalent of run_agent_loop().
    """
    compiled = build_loop_graph().compile()
    
    initial: LoopGraphState = {
        **run_state_to_dict(initial_state(config.max_iterations)),
        "run_config": config,
        "invoker": invoker,
        "prompt_text": prompt_text,
        "sleep": sleep,
        "echo": echo,
    }
    
    final_state = compiled.invoke(
        initial,
        config={"recursion_limit": recursion_limit_for(config.max_iterations)},
    )
    
    return state_to_run_state(final_state)


# Pre-compiled graph for Studio discovery
loop_graph = build_loop_graph().compile()
