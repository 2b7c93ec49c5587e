"""
Sequential multi-step workflows over the document store.

The store has no transactions, so checkout and cancellation run as an ordered
list of steps. A fatal step aborts the workflow and re-raises its error; a
best-effort step is logged and recorded, and the workflow carries on. Nothing
is rolled back.
"""
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List

logger = logging.getLogger(__name__)

StepAction = Callable[[Dict[str, Any]], Awaitable[Any]]


@dataclass
class Step:
    """
    One step of a workflow.

    Attributes:
        name: Step name, also the key of its result
        action: Coroutine function receiving the results of earlier steps
        fatal: Whether a failure aborts the workflow
    """
    name: str
    action: StepAction
    fatal: bool = True


@dataclass
class WorkflowResult:
    results: Dict[str, Any] = field(default_factory=dict)
    completed: List[str] = field(default_factory=list)
    failures: Dict[str, str] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return not self.failures


class Workflow:
    def __init__(self, name: str):
        self.name = name
        self.steps: List[Step] = []

    def add(self, name: str, action: StepAction, fatal: bool = True) -> "Workflow":
        self.steps.append(Step(name=name, action=action, fatal=fatal))
        return self

    def best_effort(self, name: str, action: StepAction) -> "Workflow":
        return self.add(name, action, fatal=False)

    async def run(self) -> WorkflowResult:
        """
        Run the steps in order.

        Returns:
            WorkflowResult with each completed step's return value and the
            errors of failed best-effort steps

        Raises:
            Exception: the error of the first failing fatal step
        """
        outcome = WorkflowResult()
        for step in self.steps:
            try:
                outcome.results[step.name] = await step.action(outcome.results)
            except Exception as e:
                if step.fatal:
                    logger.error(f"{self.name}: step '{step.name}' failed, aborting: {e}")
                    raise
                logger.warning(f"{self.name}: best-effort step '{step.name}' failed, continuing: {e}")
                outcome.failures[step.name] = str(e)
                continue
            outcome.completed.append(step.name)
        return outcome
