import logging

from escrow.audit import record_outcome
from escrow.exceptions import ActionInProgress
from escrow.locks import action_lock
from escrow.services import error_message
from journal.store import EntryStatus, JournalEntry, LocalPaymentJournal
from ledger.client import EscrowLedgerClient
from ledger.exceptions import LedgerError
from ledger.validators import milestone_index, require_project

from .status import MilestoneStatus, resolve

logger = logging.getLogger(__name__)


class MilestoneService:
    """Freelancer and client actions on individual milestones."""

    def __init__(self, ledger=None, journal_factory=None, lock=None):
        self.ledger = ledger or EscrowLedgerClient()
        self.journal_factory = journal_factory or LocalPaymentJournal
        self.lock = lock or action_lock

    def refresh(self, project_id):
        """
        Fetch milestones from the ledger and reconcile the local journal.

        Returns:
            list of {'milestone', 'status', 'journal_entry', 'submitted'} dicts
        """
        require_project(project_id)
        milestones = self.ledger.get_milestones(project_id)
        journal = self.journal_factory(project_id)

        removed = journal.reconcile(milestones)
        if removed:
            logger.info(f"Ledger confirmed payments for project {project_id}, milestones {removed}")

        return [
            {
                'milestone': milestone,
                'status': resolve(milestone),
                'journal_entry': journal.get(milestone.index),
                'submitted': journal.is_submitted(milestone.index),
            }
            for milestone in milestones
        ]

    def complete(self, project_id, index, notes='', evidence=''):
        """Freelancer marks milestone `index` as done and sends it for review."""
        require_project(project_id)
        index = milestone_index(index)

        def action():
            self.ledger.complete_milestone(project_id, index, notes, evidence)
            return {
                'status': 'success',
                'message': 'Milestone submitted for review',
                'milestone_status': MilestoneStatus.PENDING_APPROVAL,
            }

        return self._locked('complete_milestone', project_id, index, action)

    def approve(self, project_id, index, amount=None, title=''):
        """
        Client approves milestone `index`; the ledger attempts the payout.

        A payout that did not go through automatically is recorded as
        submitted in the journal until the ledger reports it released.
        """
        require_project(project_id)
        index = milestone_index(index)

        def action():
            data = self.ledger.approve_milestone(project_id, index)
            payment = data.get('payment_result') or {}
            payment_id = payment.get('transfer_id') or payment.get('payout_id')
            paid = payment.get('amount') if payment.get('amount') is not None else amount
            journal = self.journal_factory(project_id)

            if data['payment_released'] and not data['manual_processing']:
                entry = journal.record_history(index, JournalEntry.create(
                    index, EntryStatus.TRANSFERRED, amount=paid, title=title, payment_id=payment_id,
                ))
                return {
                    'status': 'success',
                    'message': 'Milestone approved and payment released',
                    'milestone_status': MilestoneStatus.AUTO_PAID,
                    'journal_entry': entry,
                }

            entry = journal.record_submission(index, JournalEntry.create(
                index, EntryStatus.SUBMITTED, amount=paid, title=title, payment_id=payment_id,
            ))
            logger.warning(
                f"Milestone {index} approved for project {project_id} but payout needs manual processing: "
                f"{payment.get('message', '')}"
            )
            return {
                'status': 'manual_processing',
                'message': 'Milestone approved, payment requires manual processing',
                'milestone_status': MilestoneStatus.MANUAL_PROCESSING,
                'journal_entry': entry,
            }

        return self._locked('approve_milestone', project_id, index, action)

    def reject(self, project_id, index, title=''):
        """Client sends milestone `index` back to the freelancer for rework."""
        require_project(project_id)
        index = milestone_index(index)

        def action():
            self.ledger.reject_milestone(project_id, index)
            entry = self.journal_factory(project_id).record_history(
                index, JournalEntry.create(index, EntryStatus.REJECTED, title=title),
            )
            return {
                'status': 'success',
                'message': 'Milestone sent back for rework',
                'milestone_status': MilestoneStatus.PENDING,
                'journal_entry': entry,
            }

        return self._locked('reject_milestone', project_id, index, action)

    def _locked(self, name, project_id, index, action):
        try:
            with self.lock.hold(project_id, index):
                result = action()
        except ActionInProgress as e:
            result = {'status': 'error', 'message': 'A payment action is already in progress', 'error_type': e.error_type}
        except LedgerError as e:
            logger.error(
                f"{name} failed for project {project_id}, milestone {index} ({e.error_type}): {str(e)}",
                extra={'error_type': e.error_type, 'project_id': project_id},
            )
            result = {
                'status': 'error',
                'message': error_message(e, 'Backend Server Error'),
                'error_type': e.error_type,
                'exception': e,
            }

        record_outcome(name, project_id, result, subject=f"milestone {index}")
        return result
