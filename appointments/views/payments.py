from rest_framework import status
from rest_framework.decorators import api_view, permission_classes, throttle_classes
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response

from appointments.serializers.payment import PaymentSerializer
from appointments.services.booking import format_appointment
from appointments.services.payments import format_payment, record_payment
from appointments.throttles import BookingRateThrottle


@api_view(['POST'])
@permission_classes([IsAuthenticated])
@throttle_classes([BookingRateThrottle])
def create_payment(request):
    """Pay the consultation fee for one of the caller's appointments.

    Only brand and last four digits come back; the card number and CVV
    are never echoed or stored.
    """
    s = PaymentSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    vd = s.validated_data
    payment = record_payment(
        request.user, vd['appointmentId'],
        card_number=vd['cardNumber'], card_holder=vd['cardHolder'],
        expiry=vd['expiry'], cvv=vd['cvv'], amount=vd.get('amount'),
    )
    return Response({
        'ok': True,
        'payment': format_payment(payment),
        'appointment': format_appointment(payment.appointment),
    }, status=status.HTTP_201_CREATED)
