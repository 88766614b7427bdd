"""Step presentation sinks.

The Flow Controller's only observable output besides its return values is a
stream of :class:`StepRender` requests and summary placeholder updates. Two
sinks are provided:

- StepHistory: keeps the ordered list of rendered steps the way a wizard
  widget would, for embedding and tests.
- LoggingPresenter: writes every request to the log, for the CLI.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Protocol

from pipeline_wizard.models import StepRender
from pipeline_wizard.states import StepKind, WizardState

logger = logging.getLogger(__name__)


class StepPresenter(Protocol):
    def present(self, render: StepRender) -> None: ...

    def set_summary_placeholder(self, text: str | None) -> None: ...


@dataclass
class StepEntry:
    state: WizardState
    step: StepKind
    message: str | None = None


class StepHistory:
    """Ordered list of rendered steps.

    A render with ``insert_after`` drops every step after the last step in
    that state before appending; ``replace_current`` only relabels the last
    step's state.
    """

    def __init__(self) -> None:
        self.steps: list[StepEntry] = []
        self.renders: list[StepRender] = []
        self.placeholder: str | None = None

    @property
    def current(self) -> StepEntry | None:
        return self.steps[-1] if self.steps else None

    @property
    def states(self) -> list[WizardState]:
        return [entry.state for entry in self.steps]

    def present(self, render: StepRender) -> None:
        self.renders.append(render)

        if render.replace_current and self.steps:
            self.steps[-1].state = render.state
            return

        if render.insert_after is not None:
            for index in range(len(self.steps) - 1, -1, -1):
                if self.steps[index].state == render.insert_after:
                    del self.steps[index + 1 :]
                    break

        self.steps.append(StepEntry(state=render.state, step=render.step, message=render.message))

    def set_summary_placeholder(self, text: str | None) -> None:
        self.placeholder = text


class LoggingPresenter:
    """Logs step renders instead of drawing them."""

    def present(self, render: StepRender) -> None:
        if render.message:
            logger.info("[%s] %s: %s", render.step.value, render.state.value, render.message)
        else:
            logger.info("[%s] %s", render.step.value, render.state.value)

    def set_summary_placeholder(self, text: str | None) -> None:
        logger.debug("Summary placeholder: %s", text)
