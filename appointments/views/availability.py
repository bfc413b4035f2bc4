from rest_framework.decorators import api_view, permission_classes
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response

from appointments.serializers.booking import AvailabilityQuerySerializer
from appointments.services.slots import available_slots


@api_view(['GET'])
@permission_classes([IsAuthenticated])
def availability(request):
    """Free slots for a doctor on a date.

    Query params:
      - doctorId: doctor id
      - date: YYYY-MM-DD, today or later

    Never cached: the answer changes with every booking.
    """
    s = AvailabilityQuerySerializer(data=request.query_params)
    s.is_valid(raise_exception=True)
    doctor_id = s.validated_data['doctorId']
    day = s.validated_data['date']
    slots = available_slots(doctor_id, day)
    return Response({'ok': True, 'doctorId': doctor_id, 'date': day.isoformat(), 'slots': slots})
