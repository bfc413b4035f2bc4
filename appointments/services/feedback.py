from typing import Optional

import bleach
import structlog

from appointments.exceptions import BookingValidationError
from appointments.models import Feedback, User
from appointments.permissions import is_staff_user

logger = structlog.get_logger(__name__)


def submit_feedback(user: User, content: str, rating: Optional[int] = None) -> Feedback:
    text = bleach.clean(content or '', tags=[], strip=True).strip()
    if not text:
        raise BookingValidationError('Feedback content is required.', code='empty_feedback')
    fb = Feedback.objects.create(user=user, content=text, rating=rating)
    logger.info('feedback_submitted', feedback_id=fb.id, user_id=user.id, rating=rating)
    return fb


def list_feedback(user: User, *, page: Optional[int] = None, page_size: Optional[int] = None) -> tuple[list[dict], int]:
    """Staff see all feedback, everyone else only their own."""
    qs = Feedback.objects.select_related('user').order_by('-created_at', '-id')
    if not is_staff_user(user):
        qs = qs.filter(user=user)
    total = qs.count()
    if page and page_size:
        start = (page - 1) * page_size
        qs = qs[start:start + page_size]
    return [format_feedback(f) for f in qs], total


def format_feedback(fb: Feedback) -> dict:
    return {
        'id': fb.id,
        'userId': fb.user_id,
        'userName': fb.user.get_full_name() or fb.user.username,
        'content': fb.content,
        'rating': fb.rating,
        'createdAt': fb.created_at.isoformat(),
    }
