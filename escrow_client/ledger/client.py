import logging

import requests
from django.conf import settings
from rest_framework import serializers

from .entities import BidStatus
from .exceptions import (
    Conflict,
    LedgerError,
    NetworkError,
    NotFound,
    ServerError,
    Unauthorized,
)
from .serializers import (
    BidSerializer,
    EscrowOrderSerializer,
    EscrowStatusSerializer,
    EscrowVerifySerializer,
    MilestoneApprovalSerializer,
    ReleaseResultSerializer,
    parse_milestones,
)
from .validators import milestone_index, positive_amount, require_project

logger = logging.getLogger(__name__)

# The ledger reports a duplicate escrow as a plain 400 with one of these phrases.
CONFLICT_MARKERS = ('already exists', 'duplicate')
SIGNATURE_MARKERS = ('signature',)


class EscrowLedgerClient:
    """
    Request/response wrapper around the escrow and milestone REST API.

    Every call either returns parsed entities or raises a LedgerError
    subclass. Transport failures are retried up to `retries` times since the
    ledger treats these calls as idempotent; nothing else is retried.

    Usage:
        client = EscrowLedgerClient(credential=lambda: session.token)
        order = client.create_escrow("p_1", Decimal("10000"))
    """

    def __init__(self, base_url=None, credential=None, timeout=None, retries=None, session=None):
        self.base_url = (base_url or settings.LEDGER_BASE_URL).rstrip('/')
        self.credential = settings.LEDGER_AUTH_TOKEN if credential is None else credential
        self.timeout = settings.LEDGER_TIMEOUT if timeout is None else timeout
        self.retries = settings.LEDGER_NETWORK_RETRIES if retries is None else retries
        self.default_currency = settings.DEFAULT_CURRENCY
        self.session = session or requests.Session()

    # Escrow

    def create_escrow(self, project_id, amount):
        require_project(project_id)
        amount = positive_amount(amount)

        logger.info(f"Creating escrow for project {project_id}, amount: {amount}")
        data = self._post('/escrow/create', {
            'project_id': project_id,
            'final_amount': float(amount),
        })
        order = self._parse(EscrowOrderSerializer, data).to_entity(self.default_currency)
        logger.info(f"Escrow order created for project {project_id}. Order: {order.order_id}")
        return order

    def verify_escrow(self, project_id, proof):
        require_project(project_id)
        logger.info(f"Verifying escrow payment {proof.payment_id} for project {project_id}")
        data = self._post('/escrow/verify', {
            'project_id': project_id,
            'payment_id': proof.payment_id,
            'signature': proof.signature,
        })
        verified = self._parse(EscrowVerifySerializer, data).validated_data['verified']
        logger.info(f"Escrow verification result for project {project_id}: {verified}")
        return verified

    def get_escrow_status(self, project_id):
        require_project(project_id)
        data = self._post('/escrow/status', {'project_id': project_id})
        serializer = self._parse(EscrowStatusSerializer, data)
        try:
            return serializer.to_entity(project_id, self.default_currency)
        except serializers.ValidationError as e:
            raise LedgerError(f"Malformed ledger response: {e.detail}", payload={'data': data}) from e

    def reset_escrow(self, project_id):
        require_project(project_id)
        logger.warning(f"Resetting stalled escrow for project {project_id}")
        self._post('/escrow/reset', {'project_id': project_id})

    def release_milestone(self, project_id, index):
        require_project(project_id)
        index = milestone_index(index)
        logger.info(f"Releasing milestone {index} payment for project {project_id}")
        data = self._post('/escrow/release-milestone', {
            'project_id': project_id,
            'milestone_index': index,
        })
        result = self._parse(ReleaseResultSerializer, data).to_entity()
        logger.info(
            f"Milestone {index} release for project {project_id}: "
            f"automatic={result.automatic_transfer} manual={result.manual_processing_required} "
            f"payout={result.payout_id}"
        )
        return result

    # Milestones

    def get_milestones(self, project_id):
        require_project(project_id)
        data = self._post('/milestone/list', {'project_id': project_id})
        items = data.get('milestones', []) if isinstance(data, dict) else data
        try:
            return parse_milestones(items)
        except serializers.ValidationError as e:
            raise LedgerError(f"Malformed milestone list: {e.detail}", payload={'data': data}) from e

    def complete_milestone(self, project_id, index, notes='', evidence=''):
        require_project(project_id)
        index = milestone_index(index)
        logger.info(f"Submitting completion of milestone {index} for project {project_id}")
        self._post('/milestone/complete', {
            'project_id': project_id,
            'milestone_index': index,
            'completion_notes': notes or '',
            'evidence': evidence or '',
        })

    def approve_milestone(self, project_id, index):
        require_project(project_id)
        index = milestone_index(index)
        logger.info(f"Approving milestone {index} for project {project_id}")
        data = self._post('/milestone/approve', {
            'project_id': project_id,
            'milestone_index': index,
        })
        return dict(self._parse(MilestoneApprovalSerializer, data).validated_data)

    def reject_milestone(self, project_id, index):
        require_project(project_id)
        index = milestone_index(index)
        logger.info(f"Rejecting milestone {index} for project {project_id}")
        self._post('/milestone/reject', {
            'project_id': project_id,
            'milestone_index': index,
        })

    # Bids

    def accept_bid(self, bid_id, final_amount):
        if not bid_id:
            raise ValueError("Bid ID is required")
        final_amount = positive_amount(final_amount)
        logger.info(f"Accepting bid {bid_id} with final amount {final_amount}")
        data = self._post('/bid/accept', {
            'bid_id': bid_id,
            'final_amount': float(final_amount),
        })
        payload = data.get('bid', data) if isinstance(data, dict) else {}
        bid = self._parse(BidSerializer, payload or {}).to_entity(bid_id, final_amount)
        if bid.status == BidStatus.ACCEPTED:
            # escrow is not funded yet, whatever the ledger echoes back
            bid = bid.with_status(BidStatus.PENDING_PAYMENT)
        return bid

    # Transport

    def _headers(self):
        token = self.credential() if callable(self.credential) else self.credential
        headers = {'Content-Type': 'application/json'}
        if token:
            headers['Authorization'] = f'Bearer {token}'
        return headers

    def _post(self, path, payload):
        url = f"{self.base_url}{path}"
        attempts = max(self.retries, 0) + 1

        for attempt in range(1, attempts + 1):
            try:
                response = self.session.post(url, json=payload, headers=self._headers(), timeout=self.timeout)
            except requests.exceptions.RequestException as e:
                logger.warning(f"Ledger request {path} failed (attempt {attempt}/{attempts}): {str(e)}")
                if attempt == attempts:
                    raise NetworkError(f"Unable to connect to ledger: {str(e)}") from e
                continue
            return self._unwrap(path, response)

    def _unwrap(self, path, response):
        try:
            body = response.json()
        except ValueError:
            body = {}
        if not isinstance(body, dict):
            body = {'data': body}

        status_code = response.status_code
        message = body.get('message') or response.reason or ''

        if status_code >= 500:
            logger.error(f"Ledger {path} returned {status_code}: {message}")
            raise ServerError(message or 'Backend Server Error', status_code, body)
        if status_code >= 400 or body.get('status') is False:
            error = self._client_error(status_code, message, body)
            logger.error(f"Ledger {path} rejected request ({error.error_type}, {status_code}): {message}")
            raise error

        data = body.get('data', body)
        return data if data is not None else {}

    @staticmethod
    def _client_error(status_code, message, body):
        lowered = message.lower()
        if status_code in (401, 403) or any(marker in lowered for marker in SIGNATURE_MARKERS):
            error_class = Unauthorized
        elif status_code == 404:
            error_class = NotFound
        elif status_code == 409 or any(marker in lowered for marker in CONFLICT_MARKERS):
            error_class = Conflict
        else:
            error_class = LedgerError
        return error_class(message, status_code, body)

    @staticmethod
    def _parse(serializer_class, data):
        serializer = serializer_class(data=data if data is not None else {})
        if not serializer.is_valid():
            raise LedgerError(f"Malformed ledger response: {serializer.errors}", payload={'data': data})
        return serializer
