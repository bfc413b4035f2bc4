import hashlib

from django.conf import settings
from django.core.cache import cache
from rest_framework.decorators import api_view, permission_classes
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response

from appointments.pagination import pagination_meta, resolve_page
from appointments.serializers.doctor import DoctorSearchQuerySerializer
from appointments.services.doctors import format_doctor, get_doctor, search_doctors


def doctor_cache_key(specialty, location, min_rating, q, page, page_size) -> str:
    # free text never goes into the key as-is; memcached rejects spaces and long keys
    filters = '|'.join(str(v) for v in (
        (specialty or '').lower(), (location or '').lower(), min_rating, q or '', page, page_size,
    ))
    return f"doctors:{hashlib.md5(filters.encode('utf-8')).hexdigest()}"


@api_view(['GET'])
@permission_classes([IsAuthenticated])
def doctor_list(request):
    """Search doctors.
    Query params:
      - specialty: exact match, case insensitive
      - location: substring
      - rating: minimum rating
      - q: name or specialty contains
      - page, pageSize: pagination (optional; either one alone pages with defaults)
    """
    s = DoctorSearchQuerySerializer(data=request.query_params)
    s.is_valid(raise_exception=True)
    vd = s.validated_data
    specialty = (vd.get('specialty') or '').strip() or None
    location = (vd.get('location') or '').strip() or None
    q = (vd.get('q') or '').strip() or None
    min_rating = vd.get('rating')
    page, page_size = resolve_page(vd.get('page'), vd.get('pageSize'))

    cache_key = doctor_cache_key(specialty, location, min_rating, q, page, page_size)
    cached = cache.get(cache_key)
    if cached:
        return Response(cached)

    doctors, total = search_doctors(specialty=specialty, location=location, min_rating=min_rating,
                                    q=q, page=page, page_size=page_size)
    payload = {'ok': True, 'data': doctors, 'pagination': pagination_meta(total, page, page_size)}
    cache.set(cache_key, payload, settings.DOCTOR_CACHE_SECONDS)
    return Response(payload)


@api_view(['GET'])
@permission_classes([IsAuthenticated])
def doctor_detail(request, pk: int):
    return Response({'ok': True, 'doctor': format_doctor(get_doctor(pk))})
