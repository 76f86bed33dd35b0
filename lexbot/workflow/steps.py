"""Named-step interpreter with per-step exponential backoff.

A step receives the previous state and returns ``Ok(state)``,
``Retryable(error)`` or ``Fatal(error)``. Exceptions raised by a step are
sorted into the last two with ``is_retryable_exception``. Each step has its own
retry budget; when it runs out, or on ``Fatal``, the step's error is raised.
"""
from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Awaitable, Callable, Generic, List, Optional, TypeVar, Union

from lexbot.config import settings
from lexbot.utils.backoff import backoff_delay, is_retryable_exception
from lexbot.utils.logging import get_logger

log = get_logger(__name__)

S = TypeVar("S")


@dataclass(frozen=True)
class Ok(Generic[S]):
    state: S


@dataclass(frozen=True)
class Retryable:
    error: BaseException


@dataclass(frozen=True)
class Fatal:
    error: BaseException


StepResult = Union[Ok[S], Retryable, Fatal]


@dataclass(frozen=True)
class Step(Generic[S]):
    name: str
    run: Callable[[S], Awaitable[StepResult]]


class StepInterpreter(Generic[S]):
    def __init__(
        self,
        steps: List[Step[S]],
        *,
        max_attempts: Optional[int] = None,
        base_delay: Optional[float] = None,
        max_delay: Optional[float] = None,
        on_step_done: Optional[Callable[[str, S], None]] = None,
    ):
        self.steps = steps
        self.max_attempts = max_attempts if max_attempts is not None else settings.RETRY_MAX_ATTEMPTS
        self.base_delay = base_delay if base_delay is not None else settings.RETRY_BASE_DELAY
        self.max_delay = max_delay if max_delay is not None else settings.RETRY_MAX_DELAY
        self.on_step_done = on_step_done
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")

    async def _run_step(self, step: Step[S], state: S) -> S:
        attempt = 0
        while True:
            attempt += 1
            try:
                result = await step.run(state)
            except Exception as exc:
                result = Retryable(exc) if is_retryable_exception(exc) else Fatal(exc)

            if isinstance(result, Ok):
                return result.state
            if isinstance(result, Fatal) or attempt >= self.max_attempts:
                raise result.error

            delay = backoff_delay(attempt, self.base_delay, self.max_delay)
            log.warning(
                "retrying_step",
                extra={
                    "extra_fields": {
                        "step": step.name,
                        "attempt": attempt,
                        "delay": round(delay, 3),
                        "error": result.error.__class__.__name__,
                    }
                },
            )
            await asyncio.sleep(delay)

    async def run(self, state: S) -> S:
        for step in self.steps:
            state = await self._run_step(step, state)
            if self.on_step_done is not None:
                self.on_step_done(step.name, state)
        return state


__all__ = ["Ok", "Retryable", "Fatal", "Step", "StepInterpreter", "StepResult"]
