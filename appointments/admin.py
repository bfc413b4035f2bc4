"""
Django admin registrations.  Appointments are read-mostly here: status
changes should go through the API so that transitions are recorded.
"""
from django.contrib import admin

from .models import Appointment, AppointmentTransition, Doctor, Feedback, Payment, User


@admin.register(User)
class UserAdmin(admin.ModelAdmin):
    list_display = ('username', 'email', 'role', 'is_staff', 'is_superuser')
    list_filter = ('role',)
    search_fields = ('username', 'email', 'first_name', 'last_name', 'phone')


@admin.register(Doctor)
class DoctorAdmin(admin.ModelAdmin):
    list_display = ('id', 'name', 'specialty', 'location', 'rating', 'consultation_fee')
    list_filter = ('specialty',)
    search_fields = ('name', 'specialty', 'location')


class AppointmentTransitionInline(admin.TabularInline):
    model = AppointmentTransition
    extra = 0
    readonly_fields = ('from_status', 'to_status', 'operator', 'reason', 'timestamp')
    can_delete = False


@admin.register(Appointment)
class AppointmentAdmin(admin.ModelAdmin):
    list_display = ('id', 'user', 'doctor', 'date', 'time', 'status', 'created_at')
    list_filter = ('status', 'date', 'doctor__specialty')
    search_fields = ('user__username', 'doctor__name')
    # slot and ownership change only through the booking API, which records transitions
    readonly_fields = ('user', 'doctor', 'date', 'time', 'status', 'rescheduled_to', 'created_at', 'updated_at')
    inlines = [AppointmentTransitionInline]

    def has_add_permission(self, request):
        return False


@admin.register(Payment)
class PaymentAdmin(admin.ModelAdmin):
    list_display = ('id', 'appointment', 'amount', 'status', 'card_brand', 'card_last4', 'created_at')
    list_filter = ('status', 'card_brand')
    readonly_fields = ('card_fingerprint',)


@admin.register(Feedback)
class FeedbackAdmin(admin.ModelAdmin):
    list_display = ('id', 'user', 'rating', 'created_at')
