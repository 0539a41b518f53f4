"""Exception hierarchy for the orchestration engine."""


class SupportFlowError(Exception):
    """Base exception for SupportFlow."""

    pass


class StageError(SupportFlowError):
    """A pipeline stage could not produce its output."""

    def __init__(self, stage: str, message: str) -> None:
        super().__init__(f"{stage}: {message}")
        self.stage = stage


class PerceptionError(StageError):
    """The latest customer message could not be classified."""

    def __init__(self, message: str) -> None:
        super().__init__("perception", message)


class InvalidPlannerOutput(SupportFlowError):
    """The planner returned a step missing its required fields."""

    pass


class ConversationNotFound(SupportFlowError):
    """The conversation id does not exist in the store."""

    pass
