"""Tests for the agent loop state machine (no real agents, no real sleeps)."""

import pytest

from ralph_loop.agent_loop import advance, backoff_delay, initial_state, run_agent_loop
from ralph_loop.classifier import OutputKind
from ralph_loop.constants import COMPLETION_MARKER
from ralph_loop.loop_state import LoopStatus

from conftest import ScriptedInvoker

DONE = f"All stories pass. {COMPLETION_MARKER}"
NET = "Error: ConnectError: ECONNRESET"
WORK = "Implemented a story. Committed."


class TestAdvance:
    """Single transitions of the pure state machine."""

    def test_initial_state(self):
        state = initial_state(5)
        assert (state.iteration, state.consecutive_errors) == (1, 0)
        assert state.status == LoopStatus.RUNNING
        assert state.exit_code is None

    def test_initial_state_rejects_zero(self):
        with pytest.raises(ValueError):
            initial_state(0)

    def test_continue_advances_iteration(self):
        state = advance(initial_state(5), WORK, iteration_delay_s=2)
        assert state.iteration == 2
        assert state.status == LoopStatus.RUNNING
        assert state.pending_delay_s == 2
        assert state.last_kind == OutputKind.CONTINUE

    def test_transient_error_keeps_iteration(self):
        state = advance(initial_state(5), NET, retry_base_delay_s=10)
        assert state.iteration == 1
        assert state.consecutive_errors == 1
        assert state.pending_delay_s == 10
        assert state.invocations == 1

    def test_completion_succeeds(self):
        state = advance(initial_state(5), DONE)
        assert state.status == LoopStatus.SUCCEEDED
        assert state.exit_code == 0

    def test_does_not_mutate_input(self):
        start = initial_state(5)
        advance(start, WORK)
        assert start.iteration == 1
        assert start.invocations == 0

    def test_terminal_state_cannot_advance(self):
        state = advance(initial_state(1), DONE)
        with pytest.raises(ValueError):
            advance(state, WORK)

    def test_error_and_completion_is_error(self):
        state = advance(initial_state(5), f"{NET}\n{DONE}")
        assert state.status == LoopStatus.RUNNING
        assert state.consecutive_errors == 1


class TestBackoff:
    @pytest.mark.parametrize("streak,expected", [(1, 10), (2, 20), (3, 30)])
    def test_linear(self, streak, expected):
        assert backoff_delay(streak, base=10) == expected

    def test_waits_grow_within_a_streak(self, make_config, sleep, echo):
        invoker = ScriptedInvoker([NET, NET, DONE])
        run_agent_loop(make_config(), invoker, "prompt", sleep=sleep, echo=echo)
        assert sleep.delays == [10, 20]


class TestCompletion:
    @pytest.mark.parametrize("k", [1, 3, 5])
    def test_completion_short_circuits_budget(self, make_config, sleep, echo, k):
        """Completion at invocation k stops the run after exactly k calls."""
        invoker = ScriptedInvoker([WORK] * (k - 1) + [DONE])
        state = run_agent_loop(make_config(max_iterations=5), invoker, "prompt", sleep=sleep, echo=echo)
        assert state.status == LoopStatus.SUCCEEDED
        assert state.iteration == k
        assert len(invoker.calls) == k
        assert "Ralph completed all tasks!" in echo.text
        assert f"Completed at iteration {k} of 5" in echo.text


class TestTransientErrors:
    def test_retries_do_not_consume_iterations(self, make_config, sleep, echo):
        """Two errors in a row stay on iteration 1 with the streak at 2."""
        invoker = ScriptedInvoker([NET, NET, DONE])
        state = run_agent_loop(make_config(max_iterations=1), invoker, "prompt", sleep=sleep, echo=echo)
        assert state.status == LoopStatus.SUCCEEDED
        assert state.iteration == 1
        assert state.invocations == 3
        assert echo.text.count("Ralph Iteration 1 of 1") == 3

    def test_streak_counter_after_n_errors(self):
        state = initial_state(5)
        for n in (1, 2):
            state = advance(state, NET)
            assert state.consecutive_errors == n
            assert state.iteration == 1

    def test_budget_aborts_after_three(self, make_config, sleep, echo):
        invoker = ScriptedInvoker([NET, NET, NET, DONE])
        state = run_agent_loop(make_config(), invoker, "prompt", sleep=sleep, echo=echo)
        assert state.status == LoopStatus.FAILED_TOO_MANY_ERRORS
        assert state.exit_code == 1
        assert len(invoker.calls) == 3
        assert invoker.outputs == [DONE]
        assert sleep.delays == [10, 20]
        assert "Too many consecutive connection errors" in echo.text
        assert "Cursor CLI status" in echo.text

    def test_clean_output_resets_streak(self, make_config, sleep, echo):
        """Two errors, a clean pass, then it takes three more to abort."""
        invoker = ScriptedInvoker([NET, NET, WORK, NET, NET, NET])
        state = run_agent_loop(make_config(max_iterations=5), invoker, "prompt", sleep=sleep, echo=echo)
        assert state.status == LoopStatus.FAILED_TOO_MANY_ERRORS
        assert state.iteration == 2
        assert state.invocations == 6
        assert sleep.delays == [10, 20, 2, 10, 20]


class TestMaxIterations:
    @pytest.mark.parametrize("max_iterations", [1, 3])
    def test_exactly_max_invocations(self, make_config, sleep, echo, max_iterations):
        invoker = ScriptedInvoker([WORK] * max_iterations)
        config = make_config(max_iterations=max_iterations)
        state = run_agent_loop(config, invoker, "prompt", sleep=sleep, echo=echo)
        assert state.status == LoopStatus.FAILED_MAX_ITERATIONS
        assert state.exit_code == 1
        assert len(invoker.calls) == max_iterations
        assert state.iteration == max_iterations + 1
        assert sleep.delays == [2] * (max_iterations - 1)
        assert f"reached max iterations ({max_iterations})" in echo.text
        for n in range(1, max_iterations + 1):
            assert f"Iteration {n} complete. Continuing..." in echo.lines
        assert str(config.progress_path) in echo.text


class TestScenario:
    def test_retry_then_complete(self, make_config, sleep, echo):
        """max=5: work, ECONNRESET, then completion on the retried iteration 2."""
        invoker = ScriptedInvoker([WORK, "fetch failed: ECONNRESET", DONE])
        state = run_agent_loop(make_config(max_iterations=5), invoker, "the prompt", sleep=sleep, echo=echo)
        assert state.status == LoopStatus.SUCCEEDED
        assert state.iteration == 2
        assert state.invocations == 3
        assert sleep.delays == [2, 10]
        assert all(call[1] == "the prompt" for call in invoker.calls)
        assert "Waiting 10s before retry..." in echo.text
