from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from typing import TypeVar

from app.core.errors import ProvisioningStepError


T = TypeVar("T")


@dataclass(frozen=True)
class Compensation:
    step: str
    action: Callable[[], None]


class Saga:
    """Forward steps with a LIFO stack of compensations.

    A failing step unwinds every compensation pushed so far, newest first. Each
    compensation error is logged and recorded without stopping the unwind, and
    the failing step is re-raised as ProvisioningStepError.
    """

    def __init__(self, *, name: str, logger: logging.Logger | None = None) -> None:
        self.name = name
        self._logger = logger or logging.getLogger("app.provisioning")
        self._stack: list[Compensation] = []
        self.completed_steps: list[str] = []

    @property
    def pending_compensations(self) -> list[str]:
        return [entry.step for entry in reversed(self._stack)]

    def push(self, step: str, action: Callable[[], None], *, unwind_after: str | None = None) -> None:
        """Add a compensation on top of the stack.

        With ``unwind_after`` the entry goes directly beneath the named pending
        compensation, so it runs right after that one instead of first.
        """
        entry = Compensation(step=step, action=action)
        if unwind_after is not None:
            for index in range(len(self._stack) - 1, -1, -1):
                if self._stack[index].step == unwind_after:
                    self._stack.insert(index, entry)
                    return
        self._stack.append(entry)

    def run(
        self,
        step: str,
        action: Callable[[], T],
        *,
        compensate: Callable[[T], None] | None = None,
        compensation_step: str | None = None,
        unwind_after: str | None = None,
    ) -> T:
        self._logger.debug("saga step started saga=%s step=%s", self.name, step)
        try:
            result = action()
        except Exception as exc:
            self._logger.error(
                "saga step failed saga=%s step=%s error=%s; compensating %s step(s)",
                self.name,
                step,
                exc,
                len(self._stack),
            )
            self.unwind()
            raise ProvisioningStepError(step=step, cause=exc) from exc

        self.completed_steps.append(step)
        if compensate is not None:
            self.push(
                compensation_step or f"undo_{step}",
                lambda: compensate(result),
                unwind_after=unwind_after,
            )
        return result

    def unwind(self) -> list[tuple[str, str]]:
        failures: list[tuple[str, str]] = []
        while self._stack:
            entry = self._stack.pop()
            try:
                entry.action()
            except Exception as exc:
                self._logger.warning(
                    "compensation failed saga=%s step=%s error=%s",
                    self.name,
                    entry.step,
                    exc,
                )
                failures.append((entry.step, str(exc)))
            else:
                self._logger.info("compensation done saga=%s step=%s", self.name, entry.step)
        return failures
