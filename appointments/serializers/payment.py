from rest_framework import serializers


class PaymentSerializer(serializers.Serializer):
    appointmentId = serializers.IntegerField(min_value=1)
    cardNumber = serializers.CharField(max_length=32, write_only=True)
    cardHolder = serializers.CharField(max_length=128)
    expiry = serializers.CharField(max_length=7)
    cvv = serializers.CharField(max_length=4, write_only=True)
    amount = serializers.DecimalField(required=False, max_digits=10, decimal_places=2, min_value=0)
