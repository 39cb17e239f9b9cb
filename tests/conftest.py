from dataclasses import replace
from decimal import Decimal

import pytest
from django.core.cache import caches

from escrow.locks import MilestoneActionLock
from escrow.services import EscrowWorkflowService
from gateway.outcomes import GatewayCancelled, GatewayProof, GatewaySuccess
from ledger.entities import (
    Bid,
    BidStatus,
    EscrowAccount,
    EscrowOrder,
    EscrowStatus,
    Milestone,
    ReleaseResult,
)
from ledger.exceptions import Conflict
from milestones.services import MilestoneService


def make_milestone(index=0, **flags):
    defaults = {
        'title': f"Milestone {index + 1}",
        'amount': Decimal('5000'),
    }
    defaults.update(flags)
    return Milestone(index=index, **defaults)


class FakeLedger:
    """
    In-memory stand-in for EscrowLedgerClient.

    Behaves like the real ledger for the escrow lifecycle: creating an escrow
    while one is pending/completed is a Conflict, verification completes it,
    reset drops it. `errors` maps a method name to an exception (or a list of
    exceptions raised on successive calls).
    """

    def __init__(self, status=EscrowStatus.NOT_CREATED, milestones=None):
        self.status = status
        self.amount = Decimal('0')
        self.order_id = None
        self.milestones = list(milestones if milestones is not None else [make_milestone(0), make_milestone(1)])
        self.calls = []
        self.errors = {}
        self.verified = True
        self.release_result = ReleaseResult(automatic_transfer=True, payout_id='po_1')
        self.approval = {
            'payment_released': True,
            'payment_initiated': True,
            'manual_processing': False,
            'payment_result': {'transfer_id': 'tr_1'},
        }
        self._orders = 0

    @property
    def call_names(self):
        return [call[0] for call in self.calls]

    def account(self):
        return EscrowAccount(
            project_id='p_1',
            status=self.status,
            amount=self.amount,
            currency='INR',
            order_id=self.order_id,
            milestones=list(self.milestones),
        )

    def _call(self, name, *args):
        self.calls.append((name,) + args)
        error = self.errors.get(name)
        if isinstance(error, list):
            error = error.pop(0) if error else None
        if error is not None:
            raise error

    def _update(self, index, **flags):
        self.milestones = [
            replace(m, **flags) if m.index == index else m
            for m in self.milestones
        ]

    def get_escrow_status(self, project_id):
        self._call('get_escrow_status', project_id)
        return self.account()

    def create_escrow(self, project_id, amount):
        self._call('create_escrow', project_id, amount)
        if self.status in (EscrowStatus.PENDING, EscrowStatus.COMPLETED):
            raise Conflict("Escrow payment already exists for this project", 400)
        self._orders += 1
        self.status = EscrowStatus.PENDING
        self.amount = Decimal(str(amount))
        self.order_id = f"order_{self._orders}"
        return EscrowOrder(order_id=self.order_id, amount=self.amount, currency='INR')

    def verify_escrow(self, project_id, proof):
        self._call('verify_escrow', project_id, proof)
        if self.verified:
            self.status = EscrowStatus.COMPLETED
        return self.verified

    def reset_escrow(self, project_id):
        self._call('reset_escrow', project_id)
        self.status = EscrowStatus.NOT_CREATED
        self.order_id = None

    def release_milestone(self, project_id, index):
        self._call('release_milestone', project_id, index)
        result = self.release_result
        self._update(
            index,
            is_completed=True,
            payment_released=True,
            auto_released=result.automatic_transfer,
            payment_initiated=True,
            manual_processing=result.manual_processing_required,
        )
        return result

    def get_milestones(self, project_id):
        self._call('get_milestones', project_id)
        return list(self.milestones)

    def complete_milestone(self, project_id, index, notes='', evidence=''):
        self._call('complete_milestone', project_id, index, notes, evidence)
        self._update(index, is_completed=True, completion_notes=notes, evidence=evidence)

    def approve_milestone(self, project_id, index):
        self._call('approve_milestone', project_id, index)
        return dict(self.approval)

    def reject_milestone(self, project_id, index):
        self._call('reject_milestone', project_id, index)
        self._update(index, is_completed=False)

    def accept_bid(self, bid_id, final_amount):
        self._call('accept_bid', bid_id, final_amount)
        return Bid(
            id=bid_id,
            project_id='p_1',
            freelancer_id='f_1',
            amount=Decimal(str(final_amount)),
            status=BidStatus.PENDING_PAYMENT,
        )


class FakeCheckout:
    """Single checkout session resolving to a preset outcome."""

    def __init__(self, outcome, on_open=None):
        self.outcome = outcome
        self.on_open = on_open
        self.options = None

    def open(self, options):
        self.options = options
        if self.on_open:
            self.on_open(options)
        if isinstance(self.outcome, Exception):
            raise self.outcome
        return self.outcome


class FakeCheckoutFactory:
    """Hands out a fresh FakeCheckout per funding attempt."""

    def __init__(self):
        self.outcome = GatewaySuccess(GatewayProof(payment_id='pay_1', signature='sig_1', order_id='order_1'))
        self.on_open = None
        self.sessions = []

    def cancel(self, reason='dismissed'):
        self.outcome = GatewayCancelled(reason=reason)

    def __call__(self):
        session = FakeCheckout(self.outcome, self.on_open)
        self.sessions.append(session)
        return session


@pytest.fixture(autouse=True)
def journal_cache(settings, tmp_path):
    """Each test gets its own empty journal cache."""
    settings.CACHES = {
        'default': {'BACKEND': 'django.core.cache.backends.locmem.LocMemCache'},
        'journal': {
            'BACKEND': 'django.core.cache.backends.locmem.LocMemCache',
            'LOCATION': f"journal-{tmp_path.name}",
            'TIMEOUT': None,
        },
    }
    settings.JOURNAL_CACHE_ALIAS = 'journal'
    caches['journal'].clear()
    yield caches['journal']
    caches['journal'].clear()


@pytest.fixture
def ledger():
    return FakeLedger()


@pytest.fixture
def checkout():
    return FakeCheckoutFactory()


@pytest.fixture
def lock():
    return MilestoneActionLock()


@pytest.fixture
def workflow(ledger, checkout, lock):
    return EscrowWorkflowService(ledger=ledger, checkout_factory=checkout, lock=lock)


@pytest.fixture
def milestone_service(ledger, lock):
    return MilestoneService(ledger=ledger, lock=lock)
