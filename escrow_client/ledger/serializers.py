from decimal import Decimal

from rest_framework import serializers

from .entities import (
    Bid,
    BidStatus,
    EscrowAccount,
    EscrowOrder,
    EscrowStatus,
    Milestone,
    ReleaseResult,
)


class AmountField(serializers.DecimalField):
    """Decimal amount with no precision limit (the ledger may send floats)."""

    def __init__(self, **kwargs):
        kwargs.setdefault('max_digits', None)
        kwargs.setdefault('decimal_places', None)
        super().__init__(**kwargs)


class LenientDateField(serializers.DateField):
    """Accepts plain dates as well as ISO timestamps, keeping the date part."""

    def to_internal_value(self, value):
        if isinstance(value, str) and 'T' in value:
            value = value.split('T', 1)[0]
        return super().to_internal_value(value)


class MilestoneSerializer(serializers.Serializer):
    index = serializers.IntegerField(required=False, min_value=0)
    title = serializers.CharField(required=False, allow_blank=True, default='')
    description = serializers.CharField(required=False, allow_blank=True, allow_null=True, default='')
    amount = AmountField(required=False, default=Decimal('0'))
    due_date = LenientDateField(required=False, allow_null=True, default=None)
    # The ledger stores flags as 0/1; BooleanField normalises both forms.
    is_completed = serializers.BooleanField(required=False, default=False)
    payment_released = serializers.BooleanField(required=False, default=False)
    auto_released = serializers.BooleanField(required=False, allow_null=True, default=None)
    payment_initiated = serializers.BooleanField(required=False, default=False)
    manual_processing = serializers.BooleanField(required=False, default=False)
    completion_notes = serializers.CharField(required=False, allow_blank=True, allow_null=True, default='')
    evidence = serializers.CharField(required=False, allow_blank=True, allow_null=True, default='')

    def to_entity(self, index=None):
        data = dict(self.validated_data)
        if data.get('index') is None:
            if index is None:
                raise serializers.ValidationError({'index': 'Milestone index is required.'})
            data['index'] = index
        for text_field in ('description', 'completion_notes', 'evidence'):
            data[text_field] = data.get(text_field) or ''
        return Milestone(**data)


def parse_milestones(items):
    """Validate a list of milestone payloads, indexing them by position when
    the ledger omits an explicit index."""
    milestones = []
    for position, item in enumerate(items or []):
        serializer = MilestoneSerializer(data=item)
        serializer.is_valid(raise_exception=True)
        milestones.append(serializer.to_entity(index=position))
    return milestones


class EscrowOrderSerializer(serializers.Serializer):
    order_id = serializers.CharField()
    amount = AmountField()
    currency = serializers.CharField(required=False, allow_blank=True, default='')

    def to_entity(self, default_currency=''):
        data = self.validated_data
        return EscrowOrder(
            order_id=data['order_id'],
            amount=data['amount'],
            currency=data['currency'] or default_currency,
        )


class EscrowVerifySerializer(serializers.Serializer):
    verified = serializers.BooleanField(required=False, default=True)


class EscrowStatusSerializer(serializers.Serializer):
    project_id = serializers.CharField(required=False)
    escrow_status = serializers.CharField(required=False, allow_null=True, allow_blank=True, default=EscrowStatus.NOT_CREATED)
    escrow_amount = AmountField(required=False, allow_null=True, default=Decimal('0'))
    escrow_order_id = serializers.CharField(required=False, allow_null=True, allow_blank=True, default=None)
    currency = serializers.CharField(required=False, allow_blank=True, default='')
    milestones = serializers.ListField(child=serializers.DictField(), required=False, default=list)

    def validate_escrow_status(self, value):
        # failed/cancelled escrows can be recreated, so they read as not_created
        if value not in EscrowStatus.CHOICES:
            return EscrowStatus.NOT_CREATED
        return value

    def to_entity(self, project_id, default_currency=''):
        data = self.validated_data
        return EscrowAccount(
            project_id=data.get('project_id') or project_id,
            status=data['escrow_status'],
            amount=data['escrow_amount'] or Decimal('0'),
            currency=data['currency'] or default_currency,
            order_id=data['escrow_order_id'] or None,
            milestones=parse_milestones(data['milestones']),
        )


class ReleaseResultSerializer(serializers.Serializer):
    automatic_transfer = serializers.BooleanField(required=False, default=False)
    manual_processing_required = serializers.BooleanField(required=False, default=False)
    payout_id = serializers.CharField(required=False, allow_null=True, default=None)
    transfer_id = serializers.CharField(required=False, allow_null=True, default=None)
    amount = AmountField(required=False, allow_null=True, default=None)
    payment_status = serializers.CharField(required=False, allow_null=True, default=None)
    payment_details = serializers.DictField(required=False, allow_null=True, default=None)

    def validate(self, attrs):
        details = attrs.pop('payment_details', None) or {}
        if not attrs.get('transfer_id') and details.get('transfer_id'):
            attrs['transfer_id'] = str(details['transfer_id'])
        # Older ledger builds only report payment_status
        if attrs.get('payment_status') == 'pending_manual':
            attrs['manual_processing_required'] = True
        if attrs.get('payment_status') == 'transferred':
            attrs['automatic_transfer'] = True
        return attrs

    def to_entity(self):
        return ReleaseResult(**self.validated_data)


class MilestoneApprovalSerializer(serializers.Serializer):
    payment_released = serializers.BooleanField(required=False, default=False)
    payment_initiated = serializers.BooleanField(required=False, default=True)
    manual_processing = serializers.BooleanField(required=False, default=False)
    payment_result = serializers.DictField(required=False, allow_null=True, default=dict)


class BidSerializer(serializers.Serializer):
    id = serializers.CharField(required=False)
    project_id = serializers.CharField(required=False, allow_blank=True, default='')
    freelancer_id = serializers.CharField(required=False, allow_blank=True, default='')
    bid_amount = AmountField(required=False, allow_null=True, default=None)
    status = serializers.ChoiceField(choices=BidStatus.CHOICES, required=False, default=BidStatus.PENDING_PAYMENT)

    def to_internal_value(self, data):
        # Bids come back as Mongo-style documents keyed by _id
        if isinstance(data, dict) and 'id' not in data and '_id' in data:
            data = {**data, 'id': data['_id']}
        return super().to_internal_value(data)

    def to_entity(self, bid_id, final_amount=None):
        data = self.validated_data
        amount = data.get('bid_amount')
        if amount is None:
            amount = final_amount if final_amount is not None else Decimal('0')
        return Bid(
            id=data.get('id') or bid_id,
            project_id=data['project_id'],
            freelancer_id=data['freelancer_id'],
            amount=Decimal(str(amount)),
            status=data['status'],
        )
