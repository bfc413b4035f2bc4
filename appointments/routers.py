"""
URL mappings for the booking API.

Trailing slashes are omitted (``APPEND_SLASH = False``).
"""
from django.urls import include, path

from .auth_views import jwt_logout_view, jwt_refresh_view, login_view, register_view
from .views import appointments, availability, doctors, feedback, health, payments

urlpatterns = [
    path('metrics', include('django_prometheus.urls')),
    path('healthz', health.healthz, name='healthz'),

    path('api/auth/login', login_view, name='login_view'),
    path('api/auth/register', register_view, name='register_view'),
    path('api/auth/refresh', jwt_refresh_view, name='jwt_refresh'),
    path('api/auth/logout', jwt_logout_view, name='jwt_logout'),

    path('api/doctors', doctors.doctor_list, name='doctor_list'),
    path('api/doctors/<int:pk>', doctors.doctor_detail, name='doctor_detail'),
    path('api/availability', availability.availability, name='availability'),

    path('api/appointments', appointments.appointments, name='appointments'),
    path('api/appointments/<int:pk>', appointments.appointment_detail, name='appointment_detail'),
    path('api/appointments/<int:pk>/reschedule', appointments.appointment_reschedule,
         name='appointment_reschedule'),
    path('api/appointments/<int:pk>/cancel', appointments.appointment_cancel, name='appointment_cancel'),
    path('api/appointments/<int:pk>/confirm', appointments.appointment_confirm, name='appointment_confirm'),
    path('api/appointments/<int:pk>/complete', appointments.appointment_complete, name='appointment_complete'),

    path('api/payments', payments.create_payment, name='create_payment'),
    path('api/feedback', feedback.feedback, name='feedback'),
]
