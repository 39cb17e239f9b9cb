"""
Canonical milestone status.

Every consumer derives a milestone's display status through `resolve`; the
raw flags (is_completed, payment_released, auto_released, payment_initiated,
manual_processing) must not be interpreted anywhere else.
"""

from collections.abc import Mapping

from ledger.entities import Milestone
from ledger.serializers import MilestoneSerializer


class MilestoneStatus:
    PENDING = 'pending'
    PAYMENT_INITIATED = 'payment_initiated'
    PENDING_APPROVAL = 'pending_approval'
    COMPLETED = 'completed'
    MANUAL_PROCESSING = 'manual_processing'
    AUTO_PAID = 'auto_paid'

    CHOICES = (
        PENDING,
        PAYMENT_INITIATED,
        PENDING_APPROVAL,
        COMPLETED,
        MANUAL_PROCESSING,
        AUTO_PAID,
    )


STATUS_LABELS = {
    MilestoneStatus.PENDING: 'Pending',
    MilestoneStatus.PAYMENT_INITIATED: 'Payment Initiated',
    MilestoneStatus.PENDING_APPROVAL: 'Pending Approval',
    MilestoneStatus.COMPLETED: 'Completed',
    MilestoneStatus.MANUAL_PROCESSING: 'Manual Processing',
    MilestoneStatus.AUTO_PAID: 'Paid Automatically',
}


def resolve(milestone):
    """
    Map a milestone's raw flags to one canonical status.

    Accepts a Milestone or a raw ledger mapping. The ordering matters:
    auto_released is checked before manual_processing because a failed
    automatic payout still sets payment_released.
    """
    if isinstance(milestone, Mapping):
        milestone = _from_mapping(milestone)

    if not milestone.is_completed:
        # payment pipeline may start before the completion flag syncs
        if milestone.payment_initiated:
            return MilestoneStatus.PAYMENT_INITIATED
        return MilestoneStatus.PENDING

    if not milestone.payment_released:
        if milestone.payment_initiated:
            return MilestoneStatus.PAYMENT_INITIATED
        return MilestoneStatus.PENDING_APPROVAL

    if milestone.auto_released is True:
        return MilestoneStatus.AUTO_PAID
    if milestone.auto_released is False:
        return MilestoneStatus.MANUAL_PROCESSING
    if milestone.manual_processing and milestone.payment_initiated:
        return MilestoneStatus.MANUAL_PROCESSING
    return MilestoneStatus.COMPLETED


def resolve_all(milestones):
    """Canonical status for each milestone, keyed by milestone index."""
    statuses = {}
    for position, milestone in enumerate(milestones):
        if isinstance(milestone, Mapping):
            milestone = _from_mapping(milestone, default_index=position)
        statuses[milestone.index] = resolve(milestone)
    return statuses


def label(status):
    return STATUS_LABELS.get(status, status)


def _from_mapping(data, default_index=0) -> Milestone:
    serializer = MilestoneSerializer(data=dict(data))
    serializer.is_valid(raise_exception=True)
    return serializer.to_entity(index=default_index)
