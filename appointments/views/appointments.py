"""
Appointment endpoints: booking, listing and status changes.

All rules live in ``appointments.services``; these views validate the
request shape, call one service function and wrap the result.  Errors
raised by the services are rendered by the project exception handler.
"""
from __future__ import annotations

from rest_framework import status
from rest_framework.decorators import api_view, permission_classes, throttle_classes
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response

from appointments.exceptions import AuthorizationError, NotFoundError
from appointments.models import Appointment
from appointments.pagination import pagination_meta, resolve_page
from appointments.permissions import IsStaffRole, is_staff_user
from appointments.serializers.booking import (
    AppointmentListQuerySerializer,
    BookingSerializer,
    CancelSerializer,
    RescheduleSerializer,
)
from appointments.services.booking import (
    appointments_for,
    book_appointment,
    format_appointment,
    reschedule_appointment,
)
from appointments.services.lifecycle import cancel_appointment, complete_appointment, confirm_appointment
from appointments.throttles import BookingRateThrottle


def _ok(appt: Appointment, code: int = status.HTTP_200_OK) -> Response:
    return Response({'ok': True, 'appointment': format_appointment(appt)}, status=code)


@api_view(['GET', 'POST'])
@permission_classes([IsAuthenticated])
@throttle_classes([BookingRateThrottle])
def appointments(request):
    """GET lists the caller's appointments (``filter=upcoming|past|all``); POST books one."""
    if request.method == 'POST':
        s = BookingSerializer(data=request.data)
        s.is_valid(raise_exception=True)
        vd = s.validated_data
        appt = book_appointment(request.user, vd['doctorId'], vd['date'], vd['time'], vd.get('notes'))
        return _ok(appt, status.HTTP_201_CREATED)

    s = AppointmentListQuerySerializer(data=request.query_params)
    s.is_valid(raise_exception=True)
    vd = s.validated_data
    items = appointments_for(request.user, which=vd['filter'])
    total = len(items)
    page, page_size = resolve_page(vd.get('page'), vd.get('pageSize'))
    if page and page_size:
        start = (page - 1) * page_size
        items = items[start:start + page_size]
    return Response({
        'ok': True,
        'data': [format_appointment(a) for a in items],
        'pagination': pagination_meta(total, page, page_size),
    })


@api_view(['GET'])
@permission_classes([IsAuthenticated])
def appointment_detail(request, pk: int):
    appt = Appointment.objects.select_related('doctor').filter(id=pk).first()
    if appt is None:
        raise NotFoundError(f'Appointment {pk} not found.', code='appointment_not_found')
    if appt.user_id != request.user.id and not is_staff_user(request.user):
        raise AuthorizationError('You do not have permission to view this appointment.')
    data = format_appointment(appt)
    data['transitions'] = [
        {
            'from': t.from_status,
            'to': t.to_status,
            'operator': t.operator.username if t.operator else '',
            'reason': t.reason,
            'timestamp': t.timestamp.isoformat(),
        }
        for t in appt.transitions.select_related('operator').order_by('timestamp', 'id')
    ]
    return Response({'ok': True, 'appointment': data})


@api_view(['PATCH'])
@permission_classes([IsAuthenticated])
@throttle_classes([BookingRateThrottle])
def appointment_reschedule(request, pk: int):
    """Move the appointment to a new slot; the response carries the new record."""
    s = RescheduleSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    new = reschedule_appointment(request.user, pk, s.validated_data['date'], s.validated_data['time'])
    return Response({'ok': True, 'appointment': format_appointment(new), 'previousId': pk})


@api_view(['PATCH'])
@permission_classes([IsAuthenticated])
def appointment_cancel(request, pk: int):
    s = CancelSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    return _ok(cancel_appointment(request.user, pk, reason=s.validated_data.get('reason')))


@api_view(['PATCH', 'PUT'])
@permission_classes([IsAuthenticated])
def appointment_confirm(request, pk: int):
    return _ok(confirm_appointment(request.user, pk))


@api_view(['PATCH'])
@permission_classes([IsAuthenticated, IsStaffRole])
def appointment_complete(request, pk: int):
    return _ok(complete_appointment(request.user, pk))
