import json
import logging
from dataclasses import asdict, dataclass, replace
from datetime import datetime
from decimal import Decimal
from typing import Optional

from django.conf import settings
from django.core.cache import caches
from django.core.serializers.json import DjangoJSONEncoder
from django.utils import timezone
from django.utils.dateparse import parse_datetime

logger = logging.getLogger(__name__)


class EntryStatus:
    SUBMITTED = 'submitted'
    COMPLETED = 'completed'
    REJECTED = 'rejected'
    TRANSFERRED = 'transferred'

    CHOICES = (SUBMITTED, COMPLETED, REJECTED, TRANSFERRED)


@dataclass(frozen=True)
class JournalEntry:
    milestone_index: int
    amount: Decimal
    title: str
    payment_id: Optional[str]
    timestamp: datetime
    status: str

    @classmethod
    def create(cls, milestone_index, status, amount=None, title='', payment_id=None, now=None):
        if status not in EntryStatus.CHOICES:
            raise ValueError(f"Unknown journal entry status: {status}")
        return cls(
            milestone_index=milestone_index,
            amount=Decimal(str(amount)) if amount is not None else Decimal('0'),
            title=title or '',
            payment_id=payment_id,
            timestamp=now or timezone.now(),
            status=status,
        )

    def to_dict(self):
        return asdict(self)

    @classmethod
    def from_dict(cls, data):
        timestamp = data.get('timestamp')
        if isinstance(timestamp, str):
            timestamp = parse_datetime(timestamp)
        return cls(
            milestone_index=int(data['milestone_index']),
            amount=Decimal(str(data.get('amount') or '0')),
            title=data.get('title') or '',
            payment_id=data.get('payment_id'),
            timestamp=timestamp or timezone.now(),
            status=data.get('status') or EntryStatus.SUBMITTED,
        )


class LocalPaymentJournal:
    """
    Client-side record of payment actions the ledger has not confirmed yet.

    Two values are kept per project in the journal cache:
    `submitted_payments_{project_id}` (JSON list of milestone indices awaiting
    manual processing) and `payment_history_{project_id}` (JSON map of
    milestone index to the latest entry). The journal is advisory only: the
    ledger always wins, and concurrent writers simply overwrite each other.
    """

    def __init__(self, project_id, cache_alias=None):
        if not project_id:
            raise ValueError("Project ID is required")
        self.project_id = str(project_id)
        self.cache = caches[cache_alias or settings.JOURNAL_CACHE_ALIAS]
        self._submitted = set()
        self._history = {}
        self.load()

    @property
    def submitted_key(self):
        return f"submitted_payments_{self.project_id}"

    @property
    def history_key(self):
        return f"payment_history_{self.project_id}"

    def load(self):
        self._submitted = set(int(index) for index in self._read(self.submitted_key, []))
        self._history = {
            int(index): JournalEntry.from_dict(entry)
            for index, entry in self._read(self.history_key, {}).items()
        }
        return self

    def save(self):
        self.cache.set(self.submitted_key, json.dumps(sorted(self._submitted)), None)
        self.cache.set(
            self.history_key,
            json.dumps({str(index): entry.to_dict() for index, entry in self._history.items()}, cls=DjangoJSONEncoder),
            None,
        )

    def record_submission(self, index, entry):
        """Remember a payment the ledger handed to manual processing."""
        entry = replace(entry, milestone_index=index)
        self._submitted.add(index)
        self._history[index] = entry
        self.save()
        logger.info(f"Journal {self.project_id}: milestone {index} submitted ({entry.payment_id})")
        return entry

    def record_history(self, index, entry):
        entry = replace(entry, milestone_index=index)
        self._history[index] = entry
        self.save()
        logger.info(f"Journal {self.project_id}: milestone {index} recorded as {entry.status}")
        return entry

    def get(self, index):
        return self._history.get(index)

    def is_submitted(self, index):
        return index in self._submitted

    def submitted(self):
        return frozenset(self._submitted)

    def history(self):
        return dict(self._history)

    def clear_if_confirmed(self, index, server_milestone):
        """Drop `index` from the submitted set once the ledger reports the
        payment released. Returns True if something was removed."""
        if index not in self._submitted or not server_milestone.payment_released:
            return False
        self._submitted.discard(index)
        self.save()
        logger.info(f"Journal {self.project_id}: milestone {index} confirmed by ledger")
        return True

    def reconcile(self, milestones):
        """
        Reconcile against a fresh milestone list from the ledger.

        Reloads first so writes from other processes are not lost.

        Returns:
            list of milestone indices removed from the submitted set
        """
        self.load()
        removed = []
        for milestone in milestones:
            if self.clear_if_confirmed(milestone.index, milestone):
                removed.append(milestone.index)
        return removed

    def clear(self):
        self._submitted = set()
        self._history = {}
        self.cache.delete_many([self.submitted_key, self.history_key])

    def _read(self, key, default):
        raw = self.cache.get(key)
        if raw is None:
            return default
        try:
            value = json.loads(raw) if isinstance(raw, (str, bytes)) else raw
        except ValueError:
            logger.warning(f"Discarding unreadable journal value {key}")
            return default
        if not isinstance(value, type(default)):
            logger.warning(f"Discarding journal value {key} of unexpected type {type(value).__name__}")
            return default
        return value
