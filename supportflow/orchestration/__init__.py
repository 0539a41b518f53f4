"""Conversation orchestration: the per-pass pipeline and its scheduler."""

from supportflow.orchestration.engine import OrchestrationEngine
from supportflow.orchestration.lock import LockCoordinator
from supportflow.orchestration.result import PassOutcome, PassResult, StepTiming
from supportflow.orchestration.scheduler import OrchestratorScheduler, TickSummary
from supportflow.orchestration.tool_loop import LoopState, LoopStateMachine, ToolCallLoop

__all__ = [
    "LockCoordinator",
    "LoopState",
    "LoopStateMachine",
    "OrchestrationEngine",
    "OrchestratorScheduler",
    "PassOutcome",
    "PassResult",
    "StepTiming",
    "TickSummary",
    "ToolCallLoop",
]
