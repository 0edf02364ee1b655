"""Minimal saga runner: ordered steps, each with an optional compensation."""

import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Optional

logger = logging.getLogger(__name__)

Action = Callable[[], Awaitable[Any]]
Compensation = Callable[[Any], Awaitable[None]]
CompensationFailureHandler = Callable[["SagaStep", Any, BaseException, BaseException], None]


@dataclass
class SagaStep:
    """
    One unit of work in a saga.

    ``compensation`` receives the value ``action`` returned and must undo it.
    """

    name: str
    action: Action
    compensation: Optional[Compensation] = None


@dataclass
class Saga:
    """
    Run steps in order; on failure undo completed steps in reverse.

    A compensation that itself fails is handed to ``on_compensation_failure``
    together with the step, its result, the compensation error and the
    original error. The original error is always the one re-raised.
    """

    name: str
    steps: list[SagaStep] = field(default_factory=list)
    on_compensation_failure: Optional[CompensationFailureHandler] = None

    def add_step(self, name: str, action: Action, compensation: Optional[Compensation] = None) -> "Saga":
        self.steps.append(SagaStep(name, action, compensation))
        return self

    async def run(self) -> list[Any]:
        completed: list[tuple[SagaStep, Any]] = []

        for step in self.steps:
            try:
                result = await step.action()
            except Exception as error:
                logger.warning(
                    "Saga step failed; compensating",
                    extra={
                        "saga": self.name,
                        "step": step.name,
                        "completed_steps": [s.name for s, _ in completed],
                        "error": repr(error),
                    }
                )
                await self._compensate(completed, error)
                raise
            completed.append((step, result))

        return [result for _, result in completed]

    async def _compensate(self, completed: list[tuple[SagaStep, Any]], error: BaseException) -> None:
        for step, result in reversed(completed):
            if step.compensation is None:
                continue
            try:
                await step.compensation(result)
            except Exception as compensation_error:
                logger.error(
                    "Saga compensation failed",
                    extra={
                        "saga": self.name,
                        "step": step.name,
                        "error": repr(compensation_error),
                        "original_error": repr(error),
                    }
                )
                if self.on_compensation_failure is not None:
                    self.on_compensation_failure(step, result, compensation_error, error)
            else:
                logger.info(
                    "Saga step compensated",
                    extra={"saga": self.name, "step": step.name}
                )
