"""
Saga

An ordered list of steps, each an action with an optional compensation.
When step N fails, the compensations of steps N-1..1 run in reverse order
and the original error is re-raised. Compensations are best effort: a
compensation that raises or returns ``False`` is recorded and logged, and
the remaining compensations still run.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable

logger = logging.getLogger(__name__)

Action = Callable[[dict[str, Any]], Awaitable[Any]]
Compensation = Callable[[Any], Awaitable[Any]]


@dataclass
class SagaStep:
    name: str
    action: Action
    compensation: Compensation | None = None


@dataclass
class Saga:
    """
    Run steps in order, undoing completed steps on failure.

    Each action receives the results of the steps before it, keyed by step
    name. Each compensation receives the result of its own action.
    """

    name: str
    steps: list[SagaStep] = field(default_factory=list)
    results: dict[str, Any] = field(default_factory=dict)
    compensated: list[str] = field(default_factory=list)
    compensation_failures: list[str] = field(default_factory=list)

    def step(
        self,
        name: str,
        action: Action,
        compensation: Compensation | None = None,
    ) -> "Saga":
        self.steps.append(SagaStep(name, action, compensation))
        return self

    async def run(self) -> dict[str, Any]:
        completed: list[SagaStep] = []
        for step in self.steps:
            try:
                self.results[step.name] = await step.action(self.results)
            except Exception as e:
                logger.info(f"Saga {self.name}: step '{step.name}' failed: {e!r}")
                await self._compensate(completed)
                raise
            completed.append(step)
        return self.results

    async def _compensate(self, completed: list[SagaStep]) -> None:
        for step in reversed(completed):
            if step.compensation is None:
                continue
            try:
                outcome = await step.compensation(self.results[step.name])
            except Exception as e:
                logger.error(f"Saga {self.name}: compensation '{step.name}' raised: {e!r}")
                self.compensation_failures.append(step.name)
                continue
            if outcome is False:
                logger.error(f"Saga {self.name}: compensation '{step.name}' failed")
                self.compensation_failures.append(step.name)
            else:
                self.compensated.append(step.name)
