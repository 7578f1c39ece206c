from rest_framework import serializers


class PaymentIntentRequestSerializer(serializers.Serializer):
    # Omit to pay for the current cart at checkout
    orderNumber = serializers.CharField(required=False, allow_blank=True, max_length=20)
