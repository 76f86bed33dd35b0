from __future__ import annotations

import asyncio

import pytest

from lexbot.workflow.steps import Fatal, Ok, Retryable, Step, StepInterpreter


class Flaky(Exception):
    code = 503


def counting_step(results):
    calls = []

    async def run(state):
        calls.append(state)
        result = results[min(len(calls), len(results)) - 1]
        if isinstance(result, Exception):
            raise result
        return result

    return run, calls


def test_steps_thread_state_in_order():
    async def add_one(state):
        return Ok(state + [len(state)])

    done = []
    interpreter = StepInterpreter(
        [Step("first", add_one), Step("second", add_one)],
        max_attempts=1,
        on_step_done=lambda name, state: done.append((name, list(state))),
    )
    assert asyncio.run(interpreter.run([])) == [0, 1]
    assert done == [("first", [0]), ("second", [0, 1])]


def test_retryable_then_ok():
    run, calls = counting_step([Retryable(Flaky()), Flaky(), Ok("done")])
    interpreter = StepInterpreter([Step("flaky", run)], max_attempts=5, base_delay=0, max_delay=0)
    assert asyncio.run(interpreter.run("start")) == "done"
    assert len(calls) == 3


def test_fatal_stops_immediately():
    run, calls = counting_step([Fatal(ValueError("bad"))])
    interpreter = StepInterpreter([Step("bad", run)], max_attempts=5, base_delay=0, max_delay=0)
    with pytest.raises(ValueError, match="bad"):
        asyncio.run(interpreter.run("start"))
    assert len(calls) == 1


def test_non_retryable_exception_is_fatal():
    run, calls = counting_step([KeyError("missing")])
    interpreter = StepInterpreter([Step("lookup", run)], max_attempts=5, base_delay=0, max_delay=0)
    with pytest.raises(KeyError):
        asyncio.run(interpreter.run("start"))
    assert len(calls) == 1


def test_retry_budget_is_per_step():
    first, first_calls = counting_step([Flaky(), Ok("a")])
    second, second_calls = counting_step([Flaky(), Flaky(), Flaky()])
    interpreter = StepInterpreter(
        [Step("first", first), Step("second", second)], max_attempts=3, base_delay=0, max_delay=0
    )
    with pytest.raises(Flaky):
        asyncio.run(interpreter.run("start"))
    assert len(first_calls) == 2
    assert len(second_calls) == 3


def test_invalid_attempts():
    with pytest.raises(ValueError):
        StepInterpreter([], max_attempts=0)


def test_transient_step_error_is_retried():
    from lexbot.errors import TransientStepError

    run, calls = counting_step([TransientStepError("busy"), Ok("done")])
    interpreter = StepInterpreter([Step("busy", run)], max_attempts=2, base_delay=0, max_delay=0)
    assert asyncio.run(interpreter.run("start")) == "done"
    assert len(calls) == 2
