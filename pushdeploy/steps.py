"""Step runner: uniform execution and reporting of pipeline steps."""

import logging
from typing import Any, Callable

from pydantic import BaseModel

from pushdeploy.exceptions import DeployError, StepError
from pushdeploy.hooks import Hooks

logger = logging.getLogger(__name__)


class StepResult(BaseModel):
    """Outcome of one pipeline step. outcome 0 means success."""

    name: str
    outcome: int
    message: str | None = None

    @property
    def ok(self) -> bool:
        return self.outcome == 0


class StepRunner:
    """Runs steps and notifies hooks.on_step after each one.

    The runner decides nothing: it reports the outcome back unchanged and
    leaves the failure policy to the caller.
    """

    def __init__(self, hooks: Hooks | None = None):
        self.hooks = hooks or Hooks()
        self.results: list[StepResult] = []

    def run(self, name: str, func: Callable[..., Any], *args: Any) -> StepResult:
        """Invoke a step and record its result.

        A step returns an int outcome (None counts as success) or raises.
        DeployError and OSError become outcome 1 with their text as message;
        anything else propagates.
        """
        message = None
        try:
            returned = func(*args)
            outcome = int(returned or 0)
        except StepError as e:
            outcome = 1
            message = e.message
        except (DeployError, OSError) as e:
            outcome = 1
            message = str(e)

        result = StepResult(name=name, outcome=outcome, message=message)
        self.results.append(result)
        self._notify(name, outcome)
        return result

    def _notify(self, name: str, outcome: int) -> None:
        try:
            self.hooks.on_step(name, outcome)
        except Exception:
            logger.warning(f"on_step hook raised for step {name}; ignored", exc_info=True)
