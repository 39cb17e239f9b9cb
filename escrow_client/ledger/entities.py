"""
Client-side value objects for the escrow ledger.

The ledger server owns all of this state; these objects are rebuilt from
validated payloads on every read and are never persisted locally.
"""

from dataclasses import dataclass, field, replace
from datetime import date
from decimal import Decimal
from typing import List, Optional


class EscrowStatus:
    NOT_CREATED = 'not_created'
    PENDING = 'pending'
    COMPLETED = 'completed'

    CHOICES = (NOT_CREATED, PENDING, COMPLETED)


class BidStatus:
    PENDING = 'pending'
    PENDING_PAYMENT = 'pending_payment'
    ACCEPTED = 'accepted'
    REJECTED = 'rejected'
    WITHDRAWN = 'withdrawn'

    CHOICES = (PENDING, PENDING_PAYMENT, ACCEPTED, REJECTED, WITHDRAWN)


class ProjectStatus:
    OPEN = 'open'
    ACTIVE = 'active'
    COMPLETED = 'completed'
    CANCELLED = 'cancelled'

    CHOICES = (OPEN, ACTIVE, COMPLETED, CANCELLED)


@dataclass(frozen=True)
class Project:
    id: str
    budget: Decimal
    status: str = ProjectStatus.OPEN
    final_amount: Optional[Decimal] = None


@dataclass(frozen=True)
class Bid:
    id: str
    project_id: str
    freelancer_id: str
    amount: Decimal
    status: str = BidStatus.PENDING

    @property
    def is_accepted(self) -> bool:
        # pending_payment means accepted-but-unfunded and must not count
        return self.status == BidStatus.ACCEPTED

    def with_status(self, status: str) -> 'Bid':
        return replace(self, status=status)


@dataclass(frozen=True)
class Milestone:
    index: int
    title: str = ''
    description: str = ''
    amount: Decimal = Decimal('0')
    due_date: Optional[date] = None
    is_completed: bool = False
    payment_released: bool = False
    auto_released: Optional[bool] = None
    payment_initiated: bool = False
    manual_processing: bool = False
    completion_notes: str = ''
    evidence: str = ''


@dataclass(frozen=True)
class EscrowAccount:
    project_id: str
    status: str = EscrowStatus.NOT_CREATED
    amount: Decimal = Decimal('0')
    currency: str = ''
    order_id: Optional[str] = None
    milestones: List[Milestone] = field(default_factory=list)

    def milestone(self, index: int) -> Optional[Milestone]:
        for milestone in self.milestones:
            if milestone.index == index:
                return milestone
        return None


@dataclass(frozen=True)
class EscrowOrder:
    order_id: str
    amount: Decimal
    currency: str


@dataclass(frozen=True)
class ReleaseResult:
    automatic_transfer: bool = False
    manual_processing_required: bool = False
    payout_id: Optional[str] = None
    transfer_id: Optional[str] = None
    amount: Optional[Decimal] = None
    payment_status: Optional[str] = None
