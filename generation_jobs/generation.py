"""Phased generation pipelines run by workers."""

from collections.abc import Awaitable, Callable
from typing import Any, Optional

PhaseFunc = Callable[[dict, Any], Awaitable[Any]]
FinalizeFunc = Callable[[dict, Any], Awaitable[str]]


class Phase:
    """One resumable step of a pipeline."""

    def __init__(self, number: int, name: str, func: PhaseFunc):
        self.number = number
        self.name = name
        self.func = func

    def __repr__(self) -> str:
        return f"Phase({self.number}, {self.name!r})"


class GenerationPipeline:
    """
    Ordered generation phases plus a finalizer.

    Phases are numbered from 1 in registration order. Each one receives the
    job's input snapshot and the checkpoint data left by the previous phase,
    and returns the data to checkpoint. The finalizer turns the last data
    into a result reference.

    Usage:
        pipeline = GenerationPipeline()

        @pipeline.phase("workouts")
        async def build_workouts(snapshot, data):
            ...

        @pipeline.finalizer
        async def save_plan(snapshot, data):
            return plan_id
    """

    def __init__(self):
        self._phases: list[Phase] = []
        self._finalizer: Optional[FinalizeFunc] = None

    def phase(self, name: str):
        """Decorator to register the next phase."""

        def decorator(func: PhaseFunc):
            self.add_phase(name, func)
            return func

        return decorator

    def add_phase(self, name: str, func: PhaseFunc) -> Phase:
        if any(p.name == name for p in self._phases):
            raise ValueError(f"Phase {name!r} is already registered")
        phase = Phase(len(self._phases) + 1, name, func)
        self._phases.append(phase)
        return phase

    def finalizer(self, func: FinalizeFunc):
        """Decorator to register the finalizer."""
        self._finalizer = func
        return func

    @property
    def phases(self) -> tuple[Phase, ...]:
        return tuple(self._phases)

    def phases_after(self, checkpoint_phase: int) -> list[Phase]:
        """Phases still to run for a job checkpointed at ``checkpoint_phase``."""
        return [p for p in self._phases if p.number > checkpoint_phase]

    async def finalize(self, input_snapshot: dict, data: Any) -> str:
        if self._finalizer is None:
            raise RuntimeError("Pipeline has no finalizer registered")
        return await self._finalizer(input_snapshot, data)
