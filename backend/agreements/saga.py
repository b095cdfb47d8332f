"""
Saga runner for multi-step transitions.

A saga is an ordered list of steps. Each step may register a compensation;
when a later step fails, the compensations of the steps that completed run
in reverse order and the original error is re-raised.
"""

from typing import Dict, Any, Optional, Callable, Awaitable, List
import logging

logger = logging.getLogger(__name__)

# Step signature: async def action(context) -> Optional[Dict[str, Any]]
# The returned dict (if any) is merged into the shared context.
StepAction = Callable[[Dict[str, Any]], Awaitable[Optional[Dict[str, Any]]]]
StepCompensation = Callable[[Dict[str, Any]], Awaitable[Any]]


class SagaStep:
    def __init__(self, name: str, action: StepAction, compensation: Optional[StepCompensation] = None):
        self.name = name
        self.action = action
        self.compensation = compensation

    def __repr__(self):
        return f"SagaStep({self.name})"


class Saga:
    """
    Runs steps in order with a shared context dict.

    Example:
        saga = Saga("accept_offer", [
            SagaStep("accept", accept, compensation=unaccept),
            SagaStep("payment_hub", register_payment),
        ])
        context = await saga.run({"agreementNumber": "SFI123456789"})
    """

    def __init__(self, name: str, steps: List[SagaStep], log: Optional[logging.Logger] = None):
        self.name = name
        self.steps = list(steps)
        self.log = log or logger

    def add_step(self, step: SagaStep, before: Optional[str] = None) -> "Saga":
        """Append a step, or insert it ahead of the named step"""
        if before is None:
            self.steps.append(step)
            return self
        for index, existing in enumerate(self.steps):
            if existing.name == before:
                self.steps.insert(index, step)
                return self
        raise KeyError(f"No step named '{before}' in saga {self.name}")

    async def run(self, context: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        context = dict(context or {})
        completed: List[SagaStep] = []

        for step in self.steps:
            try:
                result = await step.action(context)
            except Exception as e:
                self.log.error(f"[SAGA] {self.name}: step '{step.name}' failed: {e}")
                await self._compensate(completed, context)
                raise
            if result:
                context.update(result)
            completed.append(step)
            self.log.debug(f"[SAGA] {self.name}: step '{step.name}' completed")

        return context

    async def _compensate(self, completed: List[SagaStep], context: Dict[str, Any]) -> None:
        for step in reversed(completed):
            if step.compensation is None:
                continue
            try:
                self.log.info(f"[SAGA] {self.name}: compensating '{step.name}'")
                await step.compensation(context)
            except Exception:
                # run() re-raises the step error
                self.log.exception(f"[SAGA] {self.name}: compensation for '{step.name}' failed")
