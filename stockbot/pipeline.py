from __future__ import annotations

from dataclasses import dataclass, field
from typing import Awaitable, Callable, List, Optional

from .errors import StockBotError
from .models import LineEvent, ParsedCommand


@dataclass
class Turn:
    """Mutable context passed through each step while handling one event."""
    event: LineEvent
    admitted: bool = False
    command: Optional[ParsedCommand] = None
    error: Optional[StockBotError] = None
    stopped: bool = False
    trace: List[str] = field(default_factory=list)

    @property
    def actor_key(self) -> str:
        return self.event.actor_key

    @property
    def created_by(self) -> str:
        return self.event.created_by

    def stop(self, reason: str) -> None:
        # Later steps are skipped unless marked always_run.
        self.stopped = True
        self.trace.append(f"stop:{reason}")


@dataclass
class PipelineStep:
    """Step descriptor for the event pipeline runner."""
    name: str
    fn: Callable[[Turn], Awaitable[None]]
    skip_if: Optional[Callable[[Turn], bool]] = None
    always_run: bool = False


class Pipeline:
    """Ordered async step runner for deterministic event handling."""

    def __init__(self, steps: List[PipelineStep]) -> None:
        """Purpose: Initialize the runner with an ordered list of steps.
        Inputs/Outputs: Input is a list of PipelineStep; no return value.
        Side Effects / State: Stores the step list for later execution.
        Dependencies: None beyond PipelineStep definitions.
        Failure Modes: None; assumes valid coroutine functions in steps.
        If Removed: Events are never deduplicated, decoded or routed.
        Testing Notes: Provide a minimal step list and ensure order is preserved.
        """
        self._steps = steps

    async def run(self, turn: Turn) -> None:
        """Purpose: Execute steps in order with stop/skip/always-run rules.
        Inputs/Outputs: Input is a Turn; no return value.
        Side Effects / State: Steps mutate the turn and may reply to the user.
        Dependencies: PipelineStep.fn and PipelineStep.skip_if semantics.
        Failure Modes: Exceptions in step functions propagate to the caller.
        If Removed: The webhook cannot process events.
        Testing Notes: A stopped turn runs only always_run steps afterwards.
        """
        # Honor always_run first, then the stop flag, then skip_if.
        for step in self._steps:
            if step.always_run:
                await step.fn(turn)
                continue
            if turn.stopped:
                continue
            if step.skip_if and step.skip_if(turn):
                continue
            turn.trace.append(step.name)
            await step.fn(turn)
