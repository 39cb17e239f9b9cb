from rest_framework import serializers


class CheckoutResponseSerializer(serializers.Serializer):
    """
    Success payload handed to the checkout `handler` callback.

    The hosted checkout reports `razorpay_*` keys; plain `payment_id` /
    `signature` / `order_id` are accepted as well.
    """

    payment_id = serializers.CharField(required=False)
    signature = serializers.CharField(required=False)
    order_id = serializers.CharField(required=False, allow_null=True)
    razorpay_payment_id = serializers.CharField(required=False)
    razorpay_signature = serializers.CharField(required=False)
    razorpay_order_id = serializers.CharField(required=False, allow_null=True)

    def validate(self, attrs):
        payment_id = attrs.get('payment_id') or attrs.get('razorpay_payment_id')
        signature = attrs.get('signature') or attrs.get('razorpay_signature')
        if not payment_id or not signature:
            raise serializers.ValidationError("Checkout response must include a payment id and signature.")
        return {
            'payment_id': payment_id,
            'signature': signature,
            'order_id': attrs.get('order_id') or attrs.get('razorpay_order_id'),
        }
