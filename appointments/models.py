"""
Database models for the clinic booking backend.

Users book appointments with doctors on a fixed daily grid of time
slots.  Appointments are never deleted: cancellation and rescheduling
are status changes recorded in :class:`AppointmentTransition`.  The
single-booking rule for a slot lives in the schema as a plain unique
column (``active_slot``), filled while the appointment holds its slot and
cleared on cancellation.  NULLs never collide in a unique index, so the
rule holds on every backend, partial indexes or not, even when two
requests race.
"""
from __future__ import annotations

from django.contrib.auth.models import AbstractUser
from django.core.validators import MaxValueValidator, MinValueValidator
from django.db import models


class User(AbstractUser):
    """Custom user model with a role.

    Patients book and manage their own appointments; staff may confirm,
    complete or cancel any appointment.
    """
    ROLE_PATIENT = 'patient'
    ROLE_STAFF = 'staff'
    ROLE_CHOICES = [
        (ROLE_PATIENT, 'Patient'),
        (ROLE_STAFF, 'Staff'),
    ]
    role = models.CharField(max_length=10, choices=ROLE_CHOICES, default=ROLE_PATIENT)
    phone = models.CharField(max_length=20, blank=True)
    address = models.CharField(max_length=255, blank=True)

    def __str__(self) -> str:
        return f"{self.username} ({self.role})"


class Doctor(models.Model):
    """A bookable doctor.  Read-only from the booking workflow's point of view."""
    name = models.CharField(max_length=255)
    specialty = models.CharField(max_length=100, db_index=True)
    location = models.CharField(max_length=255, blank=True, db_index=True)
    rating = models.DecimalField(
        max_digits=2, decimal_places=1, default=0,
        validators=[MinValueValidator(0), MaxValueValidator(5)],
    )
    consultation_fee = models.DecimalField(max_digits=10, decimal_places=2, default=0)
    experience = models.CharField(max_length=100, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    def __str__(self) -> str:
        return f"Dr. {self.name} ({self.specialty})"


class Appointment(models.Model):
    STATUS_PENDING = 'pending'
    STATUS_CONFIRMED = 'confirmed'
    STATUS_COMPLETED = 'completed'
    STATUS_CANCELLED = 'cancelled'
    STATUS_CHOICES = [
        (STATUS_PENDING, 'Pending'),
        (STATUS_CONFIRMED, 'Confirmed'),
        (STATUS_COMPLETED, 'Completed'),
        (STATUS_CANCELLED, 'Cancelled'),
    ]
    ACTIVE_STATUSES = (STATUS_PENDING, STATUS_CONFIRMED)
    TERMINAL_STATUSES = (STATUS_COMPLETED, STATUS_CANCELLED)

    user = models.ForeignKey(User, on_delete=models.PROTECT, related_name='appointments')
    doctor = models.ForeignKey(Doctor, on_delete=models.PROTECT, related_name='appointments')
    date = models.DateField()
    # Slot label from the canonical grid, e.g. "09:00 AM"
    time = models.CharField(max_length=8)
    notes = models.TextField(blank=True)
    status = models.CharField(max_length=16, choices=STATUS_CHOICES, default=STATUS_PENDING, db_index=True)
    rescheduled_to = models.OneToOneField(
        'self', null=True, blank=True, on_delete=models.SET_NULL, related_name='rescheduled_from'
    )
    # "<doctor>:<date>:<time>" unless cancelled; kept in sync by save()
    active_slot = models.CharField(max_length=64, null=True, blank=True, unique=True, editable=False)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        indexes = [
            models.Index(fields=['doctor', 'date', 'status'], name='appt_doctor_date_status_idx'),
            models.Index(fields=['user', 'date'], name='appt_user_date_idx'),
        ]

    @property
    def is_terminal(self) -> bool:
        return self.status in self.TERMINAL_STATUSES

    @staticmethod
    def slot_key(doctor_id, date, time) -> str:
        return f"{doctor_id}:{date}:{time}"

    def save(self, *args, **kwargs):
        if self.status == self.STATUS_CANCELLED:
            self.active_slot = None
        else:
            self.active_slot = self.slot_key(self.doctor_id, self.date, self.time)
        update_fields = kwargs.get('update_fields')
        if update_fields is not None:
            kwargs['update_fields'] = {*update_fields, 'active_slot'}
        super().save(*args, **kwargs)

    def __str__(self) -> str:
        return f"Appointment #{self.pk} d={self.doctor_id} {self.date} {self.time} [{self.status}]"


class AppointmentTransition(models.Model):
    """Records a status change of an appointment (``from_status`` is empty on creation)."""
    appointment = models.ForeignKey(Appointment, related_name='transitions', on_delete=models.CASCADE)
    from_status = models.CharField(max_length=16, null=True, blank=True)
    to_status = models.CharField(max_length=16)
    operator = models.ForeignKey(
        User, null=True, blank=True, on_delete=models.SET_NULL, related_name='appointment_transitions'
    )
    reason = models.CharField(max_length=255, blank=True)
    timestamp = models.DateTimeField(auto_now_add=True)

    def __str__(self) -> str:
        return f"{self.appointment_id}: {self.from_status} → {self.to_status}"


class Payment(models.Model):
    """Payment for an appointment.

    Only tokenized card metadata is stored: brand, last four digits and
    a keyed fingerprint.  The full number and the CVV never reach the
    database.
    """
    STATUS_COMPLETED = 'completed'
    STATUS_FAILED = 'failed'
    STATUS_CHOICES = [
        (STATUS_COMPLETED, 'Completed'),
        (STATUS_FAILED, 'Failed'),
    ]
    appointment = models.ForeignKey(Appointment, on_delete=models.PROTECT, related_name='payments')
    card_holder = models.CharField(max_length=128)
    card_brand = models.CharField(max_length=16, blank=True)
    card_last4 = models.CharField(max_length=4)
    card_fingerprint = models.CharField(max_length=64, db_index=True)
    amount = models.DecimalField(max_digits=10, decimal_places=2)
    status = models.CharField(max_length=16, choices=STATUS_CHOICES, default=STATUS_COMPLETED)
    # Set only while completed: one completed payment per appointment
    settled_for = models.OneToOneField(
        Appointment, null=True, blank=True, editable=False,
        on_delete=models.PROTECT, related_name='settled_payment',
    )
    created_at = models.DateTimeField(auto_now_add=True)

    def save(self, *args, **kwargs):
        self.settled_for_id = self.appointment_id if self.status == self.STATUS_COMPLETED else None
        update_fields = kwargs.get('update_fields')
        if update_fields is not None:
            kwargs['update_fields'] = {*update_fields, 'settled_for'}
        super().save(*args, **kwargs)

    def __str__(self) -> str:
        return f"Payment {self.pk} appt={self.appointment_id} ****{self.card_last4} {self.amount}"


class Feedback(models.Model):
    user = models.ForeignKey(User, on_delete=models.CASCADE, related_name='feedback')
    content = models.TextField()
    rating = models.PositiveSmallIntegerField(
        null=True, blank=True, validators=[MinValueValidator(1), MaxValueValidator(5)]
    )
    created_at = models.DateTimeField(auto_now_add=True)

    def __str__(self) -> str:
        return f"Feedback {self.pk} by {self.user_id}"
