"""
Escrow workflow states and the transitions allowed between them.

The funding protocol is create -> gateway -> verify -> release. Every move of
a WorkflowRun goes through ALLOWED_TRANSITIONS, so skipping or reordering a
step raises InvalidTransition instead of reaching the ledger.
"""

from .exceptions import InvalidTransition


class WorkflowState:
    FUNDING_REQUIRED = 'funding_required'
    FUNDING_STALLED = 'funding_stalled'
    FUNDING_COMPLETE = 'funding_complete'
    AWAITING_GATEWAY = 'awaiting_gateway'
    VERIFYING_PAYMENT = 'verifying_payment'
    RELEASING = 'releasing'
    RELEASE_OUTCOME = 'release_outcome'
    FUNDING_FAILED = 'funding_failed'
    RELEASE_FAILED = 'release_failed'
    DONE = 'done'

    CHOICES = (
        FUNDING_REQUIRED,
        FUNDING_STALLED,
        FUNDING_COMPLETE,
        AWAITING_GATEWAY,
        VERIFYING_PAYMENT,
        RELEASING,
        RELEASE_OUTCOME,
        FUNDING_FAILED,
        RELEASE_FAILED,
        DONE,
    )

    ENTRY_STATES = (FUNDING_REQUIRED, FUNDING_STALLED, FUNDING_COMPLETE)
    TERMINAL_STATES = (FUNDING_FAILED, RELEASE_FAILED, DONE)


ALLOWED_TRANSITIONS = {
    WorkflowState.FUNDING_REQUIRED: {
        WorkflowState.AWAITING_GATEWAY,
        WorkflowState.FUNDING_STALLED,
        WorkflowState.FUNDING_COMPLETE,
        WorkflowState.FUNDING_FAILED,
    },
    WorkflowState.FUNDING_STALLED: {
        WorkflowState.FUNDING_REQUIRED,
        WorkflowState.FUNDING_FAILED,
    },
    WorkflowState.FUNDING_COMPLETE: {
        WorkflowState.RELEASING,
    },
    WorkflowState.AWAITING_GATEWAY: {
        WorkflowState.VERIFYING_PAYMENT,
        # user dismissed the checkout
        WorkflowState.FUNDING_REQUIRED,
        WorkflowState.FUNDING_FAILED,
    },
    WorkflowState.VERIFYING_PAYMENT: {
        WorkflowState.RELEASING,
        WorkflowState.FUNDING_FAILED,
        # bid funding stops once the escrow is verified
        WorkflowState.DONE,
    },
    WorkflowState.RELEASING: {
        WorkflowState.RELEASE_OUTCOME,
        WorkflowState.RELEASE_FAILED,
    },
    WorkflowState.RELEASE_OUTCOME: {
        WorkflowState.DONE,
    },
    WorkflowState.FUNDING_FAILED: set(),
    WorkflowState.RELEASE_FAILED: set(),
    WorkflowState.DONE: set(),
}

# State a failed run falls back to: what the user can safely retry from.
STABLE_STATES = {
    WorkflowState.FUNDING_REQUIRED: WorkflowState.FUNDING_REQUIRED,
    WorkflowState.FUNDING_STALLED: WorkflowState.FUNDING_REQUIRED,
    WorkflowState.AWAITING_GATEWAY: WorkflowState.FUNDING_REQUIRED,
    WorkflowState.VERIFYING_PAYMENT: WorkflowState.FUNDING_REQUIRED,
    WorkflowState.FUNDING_FAILED: WorkflowState.FUNDING_REQUIRED,
    WorkflowState.FUNDING_COMPLETE: WorkflowState.FUNDING_COMPLETE,
    WorkflowState.RELEASING: WorkflowState.FUNDING_COMPLETE,
    WorkflowState.RELEASE_FAILED: WorkflowState.FUNDING_COMPLETE,
    WorkflowState.RELEASE_OUTCOME: WorkflowState.FUNDING_COMPLETE,
    WorkflowState.DONE: WorkflowState.FUNDING_COMPLETE,
}


def can_transition(current, target):
    return target in ALLOWED_TRANSITIONS.get(current, ())


class WorkflowRun:
    """One pass of the escrow workflow for a single milestone or bid."""

    def __init__(self, initial):
        if initial not in WorkflowState.ENTRY_STATES:
            raise InvalidTransition(None, initial)
        self.state = initial
        self.trace = [initial]

    def advance(self, target):
        if not can_transition(self.state, target):
            raise InvalidTransition(self.state, target)
        self.state = target
        self.trace.append(target)
        return target

    @property
    def is_terminal(self):
        return self.state in WorkflowState.TERMINAL_STATES

    @property
    def stable_state(self):
        return STABLE_STATES[self.state]

    def visited(self, state):
        return state in self.trace
