# memberledger/flows/progress.py
import logging
from enum import Enum
from typing import Callable, List, Optional

logger = logging.getLogger(__name__)


class FlowStep(Enum):
    INITIALISING = "Performing initial steps."
    BUILDING = "Building and verifying transaction."
    SIGNING = "Signing transaction."
    COLLECTING = "Collecting counterparty signature."
    FINALISING = "Finalising transaction."
    DONE = "Done."

    @property
    def label(self) -> str:
        return self.value


STEPS: List[FlowStep] = list(FlowStep)


class ProgressTracker:
    """
    Forward-only step tracker for one flow run. Subscribers are called with
    each new step (e.g. to stream progress to a caller).
    """

    def __init__(self, flow_name: str):
        self.flow_name = flow_name
        self._current: Optional[FlowStep] = None
        self._history: List[FlowStep] = []
        self._subscribers: List[Callable[[FlowStep], None]] = []

    @property
    def current_step(self) -> Optional[FlowStep]:
        return self._current

    @current_step.setter
    def current_step(self, step: FlowStep) -> None:
        if self._current is not None and STEPS.index(step) <= STEPS.index(self._current):
            raise RuntimeError(f"{self.flow_name}: cannot move from {self._current.name} back to {step.name}")
        self._current = step
        self._history.append(step)
        logger.info("%s: %s %s", self.flow_name, step.name, step.label)
        for callback in self._subscribers:
            callback(step)

    @property
    def history(self) -> List[FlowStep]:
        return list(self._history)

    def subscribe(self, callback: Callable[[FlowStep], None]) -> None:
        self._subscribers.append(callback)
