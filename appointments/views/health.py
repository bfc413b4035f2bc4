import structlog
from django.db import DatabaseError, connections
from django.http import JsonResponse

logger = structlog.get_logger(__name__)


def healthz(request):
    try:
        with connections['default'].cursor() as c:
            c.execute('SELECT 1')
            row = c.fetchone()
        return JsonResponse({'ok': True, 'db': bool(row and row[0] == 1)})
    except DatabaseError as e:
        # unauthenticated endpoint: details go to the log only
        logger.error('healthz_db_unavailable', error=str(e), exc_info=True)
        return JsonResponse({'ok': False, 'db': False}, status=503)
