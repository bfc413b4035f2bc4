from rest_framework import status
from rest_framework.decorators import api_view, permission_classes
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response

from appointments.pagination import pagination_meta, resolve_page
from appointments.serializers.feedback import FeedbackListQuerySerializer, FeedbackSerializer
from appointments.services.feedback import format_feedback, list_feedback, submit_feedback


@api_view(['GET', 'POST'])
@permission_classes([IsAuthenticated])
def feedback(request):
    """POST submits feedback; GET lists it (own entries, or all for staff)."""
    if request.method == 'POST':
        s = FeedbackSerializer(data=request.data)
        s.is_valid(raise_exception=True)
        fb = submit_feedback(request.user, s.validated_data['content'], s.validated_data.get('rating'))
        return Response({'ok': True, 'feedback': format_feedback(fb)}, status=status.HTTP_201_CREATED)

    s = FeedbackListQuerySerializer(data=request.query_params)
    s.is_valid(raise_exception=True)
    page, page_size = resolve_page(s.validated_data.get('page'), s.validated_data.get('pageSize'))
    items, total = list_feedback(request.user, page=page, page_size=page_size)
    return Response({'ok': True, 'data': items,
                     'pagination': pagination_meta(total, page, page_size)})
