import pytest

from escrow.exceptions import ActionInProgress, InvalidTransition
from escrow.locks import MilestoneActionLock
from escrow.states import ALLOWED_TRANSITIONS, WorkflowRun, WorkflowState, can_transition


class TestTransitionTable:
    def test_every_state_is_declared(self):
        assert set(ALLOWED_TRANSITIONS) == set(WorkflowState.CHOICES)
        for targets in ALLOWED_TRANSITIONS.values():
            assert targets <= set(WorkflowState.CHOICES)

    def test_cannot_verify_before_gateway(self):
        assert not can_transition(WorkflowState.FUNDING_REQUIRED, WorkflowState.VERIFYING_PAYMENT)

        run = WorkflowRun(WorkflowState.FUNDING_REQUIRED)
        with pytest.raises(InvalidTransition):
            run.advance(WorkflowState.VERIFYING_PAYMENT)
        assert run.state == WorkflowState.FUNDING_REQUIRED

    def test_cannot_release_before_funding(self):
        run = WorkflowRun(WorkflowState.FUNDING_REQUIRED)
        with pytest.raises(InvalidTransition):
            run.advance(WorkflowState.RELEASING)

    def test_completed_escrow_never_creates(self):
        assert ALLOWED_TRANSITIONS[WorkflowState.FUNDING_COMPLETE] == {WorkflowState.RELEASING}

    def test_terminal_states_have_no_exit(self):
        for state in WorkflowState.TERMINAL_STATES:
            assert ALLOWED_TRANSITIONS[state] == set()

    def test_full_funding_path(self):
        run = WorkflowRun(WorkflowState.FUNDING_REQUIRED)
        for state in (
            WorkflowState.AWAITING_GATEWAY,
            WorkflowState.VERIFYING_PAYMENT,
            WorkflowState.RELEASING,
            WorkflowState.RELEASE_OUTCOME,
            WorkflowState.DONE,
        ):
            run.advance(state)

        assert run.is_terminal
        assert run.trace[0] == WorkflowState.FUNDING_REQUIRED
        assert run.trace[-1] == WorkflowState.DONE

    def test_stable_state_after_failures(self):
        funding = WorkflowRun(WorkflowState.FUNDING_REQUIRED)
        funding.advance(WorkflowState.FUNDING_FAILED)
        assert funding.stable_state == WorkflowState.FUNDING_REQUIRED

        release = WorkflowRun(WorkflowState.FUNDING_COMPLETE)
        release.advance(WorkflowState.RELEASING)
        release.advance(WorkflowState.RELEASE_FAILED)
        assert release.stable_state == WorkflowState.FUNDING_COMPLETE

    def test_run_must_start_at_entry_state(self):
        with pytest.raises(InvalidTransition):
            WorkflowRun(WorkflowState.RELEASING)


class TestMilestoneActionLock:
    def test_second_acquire_fails_fast(self):
        lock = MilestoneActionLock()

        with lock.hold('p_1', 0):
            assert lock.is_held('p_1', 0)
            with pytest.raises(ActionInProgress):
                lock.acquire('p_1', 0)
            # other milestones are independent
            with lock.hold('p_1', 1):
                pass

        assert not lock.is_held('p_1', 0)

    def test_released_on_error(self):
        lock = MilestoneActionLock()

        with pytest.raises(RuntimeError):
            with lock.hold('p_1', 0):
                raise RuntimeError('boom')

        assert not lock.is_held('p_1', 0)
