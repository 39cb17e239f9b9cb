from decimal import Decimal

from journal.store import EntryStatus, JournalEntry, LocalPaymentJournal
from ledger.exceptions import NotFound, ServerError
from milestones.status import MilestoneStatus

from .conftest import make_milestone


class TestRefresh:
    def test_returns_resolved_statuses(self, milestone_service, ledger):
        ledger.milestones = [
            make_milestone(0, is_completed=True, payment_released=True, auto_released=True),
            make_milestone(1, is_completed=True),
        ]

        rows = milestone_service.refresh('p_1')

        assert [row['status'] for row in rows] == [MilestoneStatus.AUTO_PAID, MilestoneStatus.PENDING_APPROVAL]
        assert rows[0]['milestone'].index == 0
        assert rows[1]['journal_entry'] is None

    def test_reconciles_confirmed_payment(self, milestone_service, ledger):
        journal = LocalPaymentJournal('p_1')
        journal.record_submission(3, JournalEntry.create(3, EntryStatus.SUBMITTED, amount=2500, payment_id='po_2'))
        ledger.milestones = [
            make_milestone(3, is_completed=True, payment_released=True, auto_released=False),
        ]

        rows = milestone_service.refresh('p_1')

        assert rows[0]['submitted'] is False
        assert rows[0]['journal_entry'].payment_id == 'po_2'
        assert 3 not in LocalPaymentJournal('p_1').submitted()

    def test_unconfirmed_payment_stays_submitted(self, milestone_service, ledger):
        LocalPaymentJournal('p_1').record_submission(0, JournalEntry.create(0, EntryStatus.SUBMITTED))
        ledger.milestones = [make_milestone(0, is_completed=True, payment_initiated=True)]

        rows = milestone_service.refresh('p_1')

        assert rows[0]['submitted'] is True
        assert rows[0]['status'] == MilestoneStatus.PAYMENT_INITIATED


class TestMilestoneActions:
    def test_complete(self, milestone_service, ledger):
        result = milestone_service.complete('p_1', 0, 'All screens delivered', 'https://files.test/design.zip')

        assert result['status'] == 'success'
        assert result['milestone_status'] == MilestoneStatus.PENDING_APPROVAL
        assert ledger.calls == [('complete_milestone', 'p_1', 0, 'All screens delivered', 'https://files.test/design.zip')]

    def test_approve_with_automatic_payout(self, milestone_service):
        result = milestone_service.approve('p_1', 0, amount=Decimal('5000'), title='Design')

        assert result['status'] == 'success'
        assert result['milestone_status'] == MilestoneStatus.AUTO_PAID
        entry = LocalPaymentJournal('p_1').get(0)
        assert entry.status == EntryStatus.TRANSFERRED
        assert entry.payment_id == 'tr_1'
        assert entry.amount == Decimal('5000')

    def test_approve_with_manual_payout(self, milestone_service, ledger):
        ledger.approval = {
            'payment_released': False,
            'payment_initiated': True,
            'manual_processing': True,
            'payment_result': {'success': False, 'message': 'No bank details on file'},
        }

        result = milestone_service.approve('p_1', 1)

        assert result['status'] == 'manual_processing'
        assert result['milestone_status'] == MilestoneStatus.MANUAL_PROCESSING
        assert LocalPaymentJournal('p_1').is_submitted(1)

    def test_reject(self, milestone_service, ledger):
        result = milestone_service.reject('p_1', 1, title='Build')

        assert result['status'] == 'success'
        assert LocalPaymentJournal('p_1').get(1).status == EntryStatus.REJECTED
        assert ledger.call_names == ['reject_milestone']

    def test_ledger_errors_become_results(self, milestone_service, ledger):
        ledger.errors['approve_milestone'] = ServerError('down', 500)
        ledger.errors['reject_milestone'] = NotFound('Milestone not found', 404)

        approve = milestone_service.approve('p_1', 0)
        reject = milestone_service.reject('p_1', 0)

        assert (approve['status'], approve['message'], approve['error_type']) == ('error', 'Backend Server Error', 'ServerError')
        assert reject['message'] == 'Not Found'
        assert LocalPaymentJournal('p_1').history() == {}

    def test_actions_take_the_milestone_lock(self, milestone_service, ledger, lock):
        with lock.hold('p_1', 0):
            result = milestone_service.approve('p_1', 0)

        assert result['error_type'] == 'ActionInProgress'
        assert ledger.calls == []
        assert not lock.is_held('p_1', 0)
