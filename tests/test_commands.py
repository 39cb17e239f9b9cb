from io import StringIO
from unittest import mock

import pytest
from django.core.management import call_command
from django.core.management.base import CommandError

from journal.store import EntryStatus, JournalEntry, LocalPaymentJournal
from ledger.exceptions import LedgerError, NetworkError

from .conftest import FakeLedger, make_milestone


@pytest.fixture
def fake_ledger():
    ledger = FakeLedger(milestones=[
        make_milestone(0, title='Design', is_completed=True, payment_released=True, auto_released=True),
        make_milestone(1, title='Build', is_completed=True, payment_released=True, auto_released=False),
        make_milestone(2, title='Launch'),
    ])
    with mock.patch('escrow.management.commands.escrow_status.EscrowLedgerClient', return_value=ledger), \
            mock.patch('milestones.services.EscrowLedgerClient', return_value=ledger):
        yield ledger


class TestEscrowStatusCommand:
    def test_prints_escrow_and_milestones(self, fake_ledger):
        fake_ledger.status = 'completed'
        fake_ledger.order_id = 'order_1'
        out = StringIO()

        call_command('escrow_status', 'p_1', stdout=out)

        output = out.getvalue()
        assert 'Escrow for project p_1: completed' in output
        assert 'order_1' in output
        assert '[0] Design: Paid Automatically' in output
        assert '[1] Build: Manual Processing' in output
        assert '[2] Launch: Pending' in output

    def test_ledger_failure(self, fake_ledger):
        fake_ledger.errors['get_escrow_status'] = NetworkError('refused')

        with pytest.raises(CommandError, match='Network Error'):
            call_command('escrow_status', 'p_1', stdout=StringIO())

    def test_malformed_ledger_response(self, fake_ledger):
        fake_ledger.errors['get_escrow_status'] = LedgerError("Malformed ledger response: {'is_completed': ['Must be a valid boolean.']}")

        with pytest.raises(CommandError, match='Ledger Error: Malformed ledger response'):
            call_command('escrow_status', 'p_1', stdout=StringIO())


class TestReconcilePaymentsCommand:
    def test_reports_confirmed_and_pending(self, fake_ledger):
        journal = LocalPaymentJournal('p_1')
        journal.record_submission(1, JournalEntry.create(1, EntryStatus.SUBMITTED))
        journal.record_submission(2, JournalEntry.create(2, EntryStatus.SUBMITTED))
        out = StringIO()

        call_command('reconcile_payments', 'p_1', stdout=out)

        output = out.getvalue()
        assert 'Confirmed by ledger: 1' in output
        assert 'Still awaiting manual processing: 2' in output
        assert LocalPaymentJournal('p_1').submitted() == frozenset({2})

    def test_nothing_to_reconcile(self, fake_ledger):
        out = StringIO()

        call_command('reconcile_payments', 'p_1', stdout=out)

        assert 'No submitted payments were confirmed.' in out.getvalue()

    def test_ledger_failure(self, fake_ledger):
        fake_ledger.errors['get_milestones'] = NetworkError('refused')

        with pytest.raises(CommandError):
            call_command('reconcile_payments', 'p_1', stdout=StringIO())
