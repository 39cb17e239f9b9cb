import logging
from dataclasses import replace

from gateway.exceptions import GatewayError
from gateway.outcomes import CheckoutOptions
from gateway.providers import get_checkout_provider
from journal.store import EntryStatus, JournalEntry, LocalPaymentJournal
from ledger.client import EscrowLedgerClient
from ledger.entities import BidStatus, EscrowStatus, Project, ProjectStatus
from ledger.exceptions import Conflict, LedgerError, Unauthorized
from ledger.validators import milestone_index, positive_amount, require_project
from milestones.status import MilestoneStatus

from .audit import record_outcome
from .exceptions import ActionInProgress, FundingFailed, ReleaseFailed
from .locks import action_lock
from .states import WorkflowRun, WorkflowState

logger = logging.getLogger(__name__)

ENTRY_STATES = {
    EscrowStatus.NOT_CREATED: WorkflowState.FUNDING_REQUIRED,
    EscrowStatus.PENDING: WorkflowState.FUNDING_STALLED,
    EscrowStatus.COMPLETED: WorkflowState.FUNDING_COMPLETE,
}

# User-facing category per ledger error type; the type itself goes to the logs.
ERROR_MESSAGES = {
    'ServerError': 'Backend Server Error',
    'NetworkError': 'Network Error',
    'Unauthorized': 'Authorization Failed',
    'NotFound': 'Not Found',
    'Conflict': 'Escrow Conflict',
}

VERIFICATION_FAILED = 'Payment Verification Failed'
RELEASE_FAILED = 'Release Failed'

# Project-wide lock slot held while an escrow is being funded.
FUNDING_SLOT = 'funding'


def error_message(error, fallback):
    return ERROR_MESSAGES.get(getattr(error, 'error_type', None), fallback)


class EscrowWorkflowService:
    """
    Drives escrow funding and milestone release against the ledger.

    Every public method returns a result dict:
        status: success | manual_processing | cancelled | error
        state / stable_state: final WorkflowState and the state a retry starts from
        message, error_type, exception: set when status is error
        milestone_status, journal_entry: set once a release outcome is known
        trace: states visited, in order
    """

    def __init__(self, ledger=None, checkout_factory=None, journal_factory=None, lock=None):
        self.ledger = ledger or EscrowLedgerClient()
        self.checkout_factory = checkout_factory or get_checkout_provider
        self.journal_factory = journal_factory or LocalPaymentJournal
        self.lock = lock or action_lock

    def pay_milestone(self, project_id, amount, index):
        """
        Fund the project escrow if needed, then release milestone `index`.

        An escrow that is already completed goes straight to release; a
        pending (stalled) escrow is reset once and recreated.
        """
        require_project(project_id)
        index = milestone_index(index)
        amount = positive_amount(amount)

        try:
            with self.lock.hold(project_id, index):
                result = self._pay_milestone(project_id, amount, index)
        except ActionInProgress as e:
            result = self._busy(e)

        record_outcome('pay_milestone', project_id, result, subject=f"milestone {index}")
        return result

    def fund_bid(self, bid, project, final_amount=None):
        """
        Accept a bid and fund the project escrow.

        `project` is a Project or a project id. `final_amount` defaults to the
        project's final amount, then its budget.

        `pending` bids are accepted first and come back as `pending_payment`;
        `pending_payment` bids go straight to funding. The returned bid is
        `accepted` only once the ledger has verified the escrow payment, and
        the returned project is then `active` with its final amount set.
        """
        if not isinstance(project, Project):
            project = Project(id=require_project(project), budget=None)
        project_id = require_project(project.id)
        if final_amount is None:
            final_amount = project.final_amount or project.budget
        final_amount = positive_amount(final_amount)

        if bid.status not in (BidStatus.PENDING, BidStatus.PENDING_PAYMENT):
            logger.warning(f"Bid {bid.id} cannot be funded in status {bid.status}")
            result = self._result(
                None, 'error',
                message=f"Bid cannot be funded while {bid.status}",
                bid=bid,
            )
            record_outcome('fund_bid', project_id, result, subject=f"bid {bid.id}")
            return result

        try:
            with self.lock.hold(project_id, FUNDING_SLOT):
                result = self._fund_bid(bid, project, final_amount)
        except ActionInProgress as e:
            result = self._busy(e, bid=bid)

        record_outcome('fund_bid', project_id, result, subject=f"bid {bid.id}")
        return result

    def _pay_milestone(self, project_id, amount, index):
        run, account, failure = self._start(project_id)
        if failure:
            return failure

        milestone = account.milestone(index)
        title = milestone.title if milestone else ''

        if run.state != WorkflowState.FUNDING_COMPLETE:
            description = f"Milestone {index + 1} payment" + (f": {title}" if title else '')
            # one funding attempt per project, whichever milestone started it
            with self.lock.hold(project_id, FUNDING_SLOT):
                failure = self._fund(run, project_id, amount, description)
            if failure:
                return failure

        return self._release(run, project_id, index, amount, title)

    def _fund_bid(self, bid, project, final_amount):
        project_id = project.id
        if bid.status == BidStatus.PENDING:
            try:
                bid = self.ledger.accept_bid(bid.id, final_amount)
            except LedgerError as e:
                self._log_error(project_id, 'Bid acceptance', e)
                return self._result(
                    None, 'error',
                    message=error_message(e, 'Bid Acceptance Failed'),
                    error_type=e.error_type, exception=e, bid=bid,
                )
            logger.info(f"Bid {bid.id} accepted, awaiting escrow funding")

        run, account, failure = self._start(project_id)
        if failure:
            failure['bid'] = bid
            return failure

        if run.state != WorkflowState.FUNDING_COMPLETE:
            failure = self._fund(run, project_id, final_amount, f"Escrow funding for project {project_id}")
            if failure:
                failure['bid'] = bid
                return failure

        if run.state == WorkflowState.VERIFYING_PAYMENT:
            run.advance(WorkflowState.DONE)
        bid = bid.with_status(BidStatus.ACCEPTED)
        logger.info(f"Escrow funded for project {project_id}, bid {bid.id} accepted")
        project = replace(project, status=ProjectStatus.ACTIVE, final_amount=final_amount)
        return self._result(run, 'success', message='Escrow funded', bid=bid, project=project)

    def _start(self, project_id):
        try:
            account = self.ledger.get_escrow_status(project_id)
        except LedgerError as e:
            self._log_error(project_id, 'Escrow status lookup', e)
            return None, None, self._result(
                None, 'error',
                message=error_message(e, 'Backend Server Error'),
                error_type=e.error_type, exception=e,
            )

        run = WorkflowRun(ENTRY_STATES[account.status])
        logger.info(f"Escrow for project {project_id} is {account.status}, starting at {run.state}")
        return run, account, None

    def _fund(self, run, project_id, amount, description):
        """
        Move `run` from FUNDING_REQUIRED / FUNDING_STALLED to a funded escrow.

        Returns a finished result (error or cancelled), or None once the run
        sits in VERIFYING_PAYMENT with a verified payment or in FUNDING_COMPLETE.
        """
        reset_done = False

        while True:
            if run.state == WorkflowState.FUNDING_COMPLETE:
                return None

            if run.state == WorkflowState.FUNDING_STALLED:
                if reset_done:
                    error = Conflict("Escrow is still pending after reset")
                    return self._fail(run, FundingFailed, project_id, 'Escrow reset', error, 'Escrow Conflict')
                try:
                    self.ledger.reset_escrow(project_id)
                except LedgerError as e:
                    return self._fail(run, FundingFailed, project_id, 'Escrow reset', e, 'Escrow Conflict')
                reset_done = True
                run.advance(WorkflowState.FUNDING_REQUIRED)

            try:
                order = self.ledger.create_escrow(project_id, amount)
            except Conflict as e:
                logger.warning(f"Escrow already exists for project {project_id}: {e.message}")
                try:
                    account = self.ledger.get_escrow_status(project_id)
                except LedgerError as lookup_error:
                    return self._fail(run, FundingFailed, project_id, 'Escrow status lookup', lookup_error, 'Escrow Conflict')
                if account.status == EscrowStatus.COMPLETED:
                    run.advance(WorkflowState.FUNDING_COMPLETE)
                else:
                    run.advance(WorkflowState.FUNDING_STALLED)
                continue
            except LedgerError as e:
                return self._fail(run, FundingFailed, project_id, 'Escrow creation', e, 'Backend Server Error')

            run.advance(WorkflowState.AWAITING_GATEWAY)
            options = CheckoutOptions(
                amount=order.amount,
                currency=order.currency,
                order_id=order.order_id,
                description=description,
            )
            try:
                outcome = self.checkout_factory().open(options)
            except GatewayError as e:
                return self._fail(run, FundingFailed, project_id, 'Checkout', e, VERIFICATION_FAILED)

            if outcome.cancelled:
                # nothing is undone on the ledger: the pending escrow is reset on the next attempt
                run.advance(WorkflowState.FUNDING_REQUIRED)
                logger.info(f"Checkout for project {project_id} cancelled ({outcome.reason})")
                return self._result(run, 'cancelled', message='Payment cancelled')

            run.advance(WorkflowState.VERIFYING_PAYMENT)
            try:
                verified = self.ledger.verify_escrow(project_id, outcome.proof)
            except Unauthorized as e:
                return self._fail(run, FundingFailed, project_id, 'Payment verification', e, VERIFICATION_FAILED, force=True)
            except LedgerError as e:
                return self._fail(run, FundingFailed, project_id, 'Payment verification', e, VERIFICATION_FAILED)

            if not verified:
                error = FundingFailed(f"Payment {outcome.proof.payment_id} was not verified")
                logger.error(
                    f"Payment verification failed for project {project_id}: {error.message}",
                    extra={'error_type': error.error_type, 'project_id': project_id},
                )
                run.advance(WorkflowState.FUNDING_FAILED)
                return self._result(
                    run, 'error', message=VERIFICATION_FAILED,
                    error_type=error.error_type, exception=error,
                )

            logger.info(f"Escrow payment {outcome.proof.payment_id} verified for project {project_id}")
            return None

    def _release(self, run, project_id, index, amount, title):
        run.advance(WorkflowState.RELEASING)
        try:
            release = self.ledger.release_milestone(project_id, index)
        except LedgerError as e:
            return self._fail(run, ReleaseFailed, project_id, f"Milestone {index} release", e, RELEASE_FAILED)

        run.advance(WorkflowState.RELEASE_OUTCOME)
        journal = self.journal_factory(project_id)
        paid = release.amount if release.amount is not None else amount

        if release.automatic_transfer:
            entry = journal.record_history(index, JournalEntry.create(
                index, EntryStatus.TRANSFERRED, amount=paid, title=title,
                payment_id=release.transfer_id or release.payout_id,
            ))
            status, milestone_status, message = 'success', MilestoneStatus.AUTO_PAID, 'Payment transferred'
        elif release.manual_processing_required:
            entry = journal.record_submission(index, JournalEntry.create(
                index, EntryStatus.SUBMITTED, amount=paid, title=title,
                payment_id=release.payout_id,
            ))
            status, milestone_status, message = (
                'manual_processing', MilestoneStatus.MANUAL_PROCESSING, 'Payment submitted for manual processing'
            )
            logger.warning(f"Milestone {index} payout for project {project_id} needs manual processing ({release.payout_id})")
        else:
            entry = journal.record_history(index, JournalEntry.create(
                index, EntryStatus.COMPLETED, amount=paid, title=title,
                payment_id=release.payout_id,
            ))
            status, milestone_status, message = 'success', MilestoneStatus.COMPLETED, 'Payment released'

        run.advance(WorkflowState.DONE)
        return self._result(
            run, status, message=message,
            milestone_status=milestone_status, journal_entry=entry, release=release,
        )

    def _fail(self, run, error_class, project_id, step, cause, fallback, force=False):
        target = WorkflowState.RELEASE_FAILED if error_class is ReleaseFailed else WorkflowState.FUNDING_FAILED
        run.advance(target)
        self._log_error(project_id, step, cause)
        error = error_class(f"{step} failed: {cause}", cause=cause)
        return self._result(
            run, 'error',
            message=fallback if force else error_message(cause, fallback),
            error_type=cause.error_type,
            exception=error,
        )

    def _busy(self, error, **extra):
        return self._result(
            None, 'error',
            message='A payment action is already in progress',
            error_type=error.error_type, exception=error, **extra,
        )

    @staticmethod
    def _log_error(project_id, step, error):
        logger.error(
            f"{step} failed for project {project_id} ({error.error_type}): {str(error)}",
            extra={'error_type': error.error_type, 'project_id': project_id},
        )

    @staticmethod
    def _result(run, status, message='', **extra):
        result = {
            'status': status,
            'state': run.state if run else None,
            'stable_state': run.stable_state if run else None,
            'message': message,
            'error_type': None,
            'exception': None,
            'milestone_status': None,
            'journal_entry': None,
            'trace': list(run.trace) if run else [],
        }
        result.update(extra)
        return result
