from typing import Optional

from django.db.models import Q

from appointments.exceptions import NotFoundError
from appointments.models import Doctor


def get_doctor(doctor_id) -> Doctor:
    doctor = Doctor.objects.filter(id=doctor_id).first()
    if doctor is None:
        raise NotFoundError(f'Doctor {doctor_id} not found.', code='doctor_not_found')
    return doctor


def lock_doctor(doctor_id) -> Doctor:
    """Fetch the doctor row with ``SELECT ... FOR UPDATE``; call inside a transaction."""
    doctor = Doctor.objects.select_for_update().filter(id=doctor_id).first()
    if doctor is None:
        raise NotFoundError(f'Doctor {doctor_id} not found.', code='doctor_not_found')
    return doctor


def search_doctors(*, specialty: Optional[str] = None, location: Optional[str] = None,
                   min_rating: Optional[float] = None, q: Optional[str] = None,
                   page: Optional[int] = None, page_size: Optional[int] = None) -> tuple[list[dict], int]:
    qs = Doctor.objects.all()
    if specialty:
        qs = qs.filter(specialty__iexact=specialty)
    if location:
        qs = qs.filter(location__icontains=location)
    if min_rating is not None:
        qs = qs.filter(rating__gte=min_rating)
    if q:
        qs = qs.filter(Q(name__icontains=q) | Q(specialty__icontains=q))
    qs = qs.order_by('-rating', 'name', 'id')

    total = qs.count()
    if page and page_size:
        start = (page - 1) * page_size
        qs = qs[start:start + page_size]
    return [format_doctor(d) for d in qs], total


def format_doctor(doctor: Doctor) -> dict:
    return {
        'id': doctor.id,
        'name': doctor.name,
        'specialty': doctor.specialty,
        'location': doctor.location,
        'rating': float(doctor.rating),
        'consultationFee': str(doctor.consultation_fee),
        'experience': doctor.experience,
    }
