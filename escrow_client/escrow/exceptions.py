class WorkflowError(Exception):
    """Base class for escrow workflow failures.

    `cause` (also set as __cause__) is the ledger or gateway error behind it.
    """

    def __init__(self, message="", cause=None):
        super().__init__(message)
        self.message = message
        self.cause = cause
        self.__cause__ = cause

    @property
    def error_type(self):
        return type(self).__name__


class InvalidTransition(WorkflowError):
    def __init__(self, current, target):
        super().__init__(f"Transition {current} -> {target} is not allowed")
        self.current = current
        self.target = target


class ActionInProgress(WorkflowError):
    """Another payment action already holds this milestone."""


class FundingFailed(WorkflowError):
    """Escrow funding could not be completed. The user must retry funding."""


class ReleaseFailed(WorkflowError):
    """Escrow is funded but the milestone payout failed. Only release is retried."""
